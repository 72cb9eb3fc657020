"""
SQLite-backed fixtures.

Each test gets its own database file under ``tmp_path`` so sessions on
different threads see the same committed state.
"""

import pytest

from split_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from split_services.expense_service import ExpenseService
from split_services.sql_repository import SqlExpenseRepository


@pytest.fixture
def sql_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path}/split.db")
    create_tables(engine)
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_repository(sql_engine, settings, deterministic_clock):
    return SqlExpenseRepository(
        get_session_factory(),
        policy=settings.to_policy(),
        clock=deterministic_clock,
    )


@pytest.fixture
def sql_service(sql_repository, settings, directory, event_bus, deterministic_clock):
    counter = iter(range(1, 1_000_000))
    return ExpenseService(
        sql_repository,
        settings=settings,
        directory=directory,
        events=event_bus,
        clock=deterministic_clock,
        id_factory=lambda: f"sql-{next(counter)}",
    )
