"""
Module: split_kernel.selectors.expense_selector
Responsibility: Read-only queries over persisted expenses, settlement
    records and applied settlement keys.
Architecture position: Kernel > Selectors.  Reads models/ only.

The selector answers "which rows" questions; rebuilding domain objects from
the rows is the repository's job.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select

from split_kernel.models.expense import ExpenseRow, SettlementKeyRow, SettlementRecordRow
from split_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ExpenseListing:
    """One row of an expense listing."""

    expense_id: str
    description: str
    created_at: datetime | None


class ExpenseSelector(BaseSelector[ExpenseRow]):
    """Queries for expenses and their settlement records."""

    def get_document(self, expense_id: str) -> dict[str, Any] | None:
        row = self.session.get(ExpenseRow, expense_id)
        return dict(row.document) if row is not None else None

    def exists(self, expense_id: str) -> bool:
        stmt = select(ExpenseRow.id).where(ExpenseRow.id == expense_id)
        return self.session.execute(stmt).first() is not None

    def settlement_rows(self, expense_id: str) -> list[SettlementRecordRow]:
        """All settlement records of an expense, in roster order."""
        stmt = (
            select(SettlementRecordRow)
            .where(SettlementRecordRow.expense_id == expense_id)
            .order_by(SettlementRecordRow.position)
        )
        return list(self.session.scalars(stmt))

    def applied_keys(self, expense_id: str) -> frozenset[str]:
        stmt = select(SettlementKeyRow.idempotency_key).where(
            SettlementKeyRow.expense_id == expense_id
        )
        return frozenset(self.session.scalars(stmt))

    def list_for_user(
        self,
        user_id: str,
        *,
        as_creator: bool = False,
        as_payer: bool = False,
        as_participant: bool = False,
    ) -> list[ExpenseListing]:
        """
        Expenses a user is involved in, newest first.

        Each flag adds one kind of involvement; a row matching any enabled
        kind is returned once.
        """
        conditions = []
        if as_creator:
            conditions.append(ExpenseRow.creator_id == user_id)
        if as_payer:
            conditions.append(
                ExpenseRow.id.in_(
                    select(SettlementRecordRow.expense_id).where(
                        SettlementRecordRow.participant_id == user_id,
                        SettlementRecordRow.is_payer.is_(True),
                    )
                )
            )
        if as_participant:
            conditions.append(
                ExpenseRow.id.in_(
                    select(SettlementRecordRow.expense_id).where(
                        SettlementRecordRow.participant_id == user_id,
                    )
                )
            )
        if not conditions:
            return []

        stmt = (
            select(ExpenseRow.id, ExpenseRow.description, ExpenseRow.created_at)
            .where(or_(*conditions))
            .order_by(ExpenseRow.created_at.desc(), ExpenseRow.id.desc())
        )
        return [
            ExpenseListing(expense_id=row.id, description=row.description, created_at=row.created_at)
            for row in self.session.execute(stmt)
        ]
