"""
Module: split_kernel.models.expense
Responsibility: ORM persistence for expenses, their per-participant
    settlement records and applied settlement idempotency keys.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from selectors/, domain/, or outer layers.

Invariants enforced:
    - One settlement record per (expense, participant): composite primary key.
    - Optimistic concurrency: every UPDATE of a settlement record checks and
      increments ``version`` (version_id_col); a concurrent writer makes the
      UPDATE match zero rows and SQLAlchemy raises StaleDataError.
    - A settlement idempotency key is applied at most once per expense
      (composite primary key).
    - Amounts are BigInteger minor units; never floats.

Failure modes:
    - IntegrityError on duplicate expense id or duplicate idempotency key.
    - StaleDataError when a settlement record was changed by another writer.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from split_kernel.db.base import Base, TrackedBase


class ExpenseRow(TrackedBase):
    """
    One persisted expense.

    Contract:
        ``document`` holds the creation inputs; the balance sheet is never
        stored and is recomputed on load.  The scalar columns duplicate
        document fields that queries filter or sort on.
    """

    __tablename__ = "split_expenses"

    __table_args__ = (
        Index("idx_split_expense_creator", "creator_id"),
        Index("idx_split_expense_group", "group_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_minor_units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")
    creator_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_personal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    occurred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    settlement_records: Mapped[list["SettlementRecordRow"]] = relationship(
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="SettlementRecordRow.position",
    )

    def __repr__(self) -> str:
        return f"<ExpenseRow {self.id} {self.total_minor_units} {self.currency}>"


class SettlementRecordRow(Base):
    """
    Settlement state of one participant on one expense.

    Contract:
        ``version`` is the optimistic-lock counter.  Writers never assign
        it; SQLAlchemy increments it on every UPDATE and adds
        ``WHERE version = :loaded`` to the statement.
    """

    __tablename__ = "split_settlement_records"

    __table_args__ = (
        Index("idx_split_settlement_participant", "participant_id"),
    )

    expense_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("split_expenses.id", ondelete="CASCADE"), primary_key=True,
    )
    participant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_payer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    net_minor_units: Mapped[int] = mapped_column(BigInteger, nullable=False)
    settled_minor_units: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    fully_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allocations: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    expense: Mapped[ExpenseRow] = relationship(back_populates="settlement_records")

    # Versions start at 0 to match freshly opened ledger records.
    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": lambda current: 0 if current is None else current + 1,
    }

    def __repr__(self) -> str:
        return (
            f"<SettlementRecordRow {self.expense_id}/{self.participant_id} "
            f"{self.settled_minor_units}/{abs(self.net_minor_units)} v{self.version}>"
        )


class SettlementKeyRow(Base):
    """An idempotency key already applied to an expense's settlement records."""

    __tablename__ = "split_settlement_keys"

    expense_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("split_expenses.id", ondelete="CASCADE"), primary_key=True,
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
