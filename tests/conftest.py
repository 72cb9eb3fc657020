"""
Pytest fixtures for the split kernel test suite.

Provides:
- Structured logging setup and a JSON log capture fixture
- A deterministic clock
- In-memory repository, directory and event bus wired into an ExpenseService
- Small builders for Money and raw expense input

SQLite-backed fixtures live in tests/persistence/conftest.py.
"""

import json
import logging
from datetime import UTC, datetime
from io import StringIO

import pytest

from split_config.schema import SplitSettings
from split_kernel.domain.clock import DeterministicClock
from split_kernel.domain.values import Money
from split_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from split_services.collaborators import InMemoryDirectory, InMemoryEventBus
from split_services.expense_service import ExpenseService
from split_services.memory_repository import InMemoryExpenseRepository
from split_services.ports import DirectoryEntry


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture split_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.create_expense(...)
            logs = captured_logs()
            assert any(r["message"] == "expense_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("split_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for settlement locks"
    )


# =============================================================================
# Builders
# =============================================================================


def usd(minor_units: int) -> Money:
    return Money.from_minor(minor_units, "USD")


def wire(minor_units: int, scale: int = 2) -> dict:
    return {"minor_units": minor_units, "scale": scale}


@pytest.fixture
def money():
    """USD Money from minor units: ``money(1050)`` is $10.50."""
    return usd


@pytest.fixture
def amount():
    """Boundary amount dict from minor units."""
    return wire


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def settings():
    return SplitSettings(max_conflict_retries=5, lock_timeout_seconds=2.0)


@pytest.fixture
def memory_repository(settings):
    return InMemoryExpenseRepository(lock_timeout_seconds=settings.lock_timeout_seconds)


@pytest.fixture
def directory():
    return InMemoryDirectory(
        [
            DirectoryEntry("alice", "Alice"),
            DirectoryEntry("bob", "Bob"),
            DirectoryEntry("carol", "Carol"),
            DirectoryEntry("dave", "Dave"),
        ]
    )


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def service(memory_repository, settings, directory, event_bus, deterministic_clock):
    counter = iter(range(1, 1_000_000))
    return ExpenseService(
        memory_repository,
        settings=settings,
        directory=directory,
        events=event_bus,
        clock=deterministic_clock,
        id_factory=lambda: f"exp-{next(counter)}",
    )


@pytest.fixture
def dinner_input(amount):
    """$30.00 split equally between alice, bob and carol; alice paid."""
    return {
        "description": "Dinner",
        "category": "food",
        "date": "2024-03-01",
        "total_amount": amount(3000),
        "split_method": "EQUALLY",
        "participants": [
            {"user_id": "alice"},
            {"user_id": "bob"},
            {"user_id": "carol"},
        ],
        "payer_id": "alice",
    }
