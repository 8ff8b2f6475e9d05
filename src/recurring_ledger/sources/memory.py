"""In-memory sources implementing the due-template query.

Used for local dry runs and by the test suite. Each store keeps plain
lists and dicts; nothing is shared between instances.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

import structlog

from recurring_ledger.models import (
    Budget,
    BudgetTemplate,
    CreateBudgetInput,
    CreateTransactionInput,
    Recurrence,
    Transaction,
    TransactionTemplate,
)
from recurring_ledger.recurrence import period_elapsed
from recurring_ledger.sources.base import TemplateSourceError

logger = structlog.get_logger(__name__)


def _within_range(start: date, end: date | None, now: datetime) -> bool:
    today = now.date()
    return start <= today and (end is None or end >= today)


class MemoryBudgetTemplateSource:
    """Budget templates held in a dict keyed by id."""

    def __init__(self, templates: list[BudgetTemplate] | None = None):
        self._templates: dict[int, BudgetTemplate] = {t.id: t for t in templates or []}

    def add(self, template: BudgetTemplate) -> None:
        self._templates[template.id] = template

    def get(self, template_id: int) -> BudgetTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateSourceError(f"Budget template {template_id} not found") from None

    async def get_due(self, now: datetime) -> list[BudgetTemplate]:
        due = [
            replace(t)
            for t in sorted(self._templates.values(), key=lambda t: t.id)
            if t.active
            and t.recurrence != Recurrence.NONE
            and _within_range(t.start_date, t.end_date, now)
            and period_elapsed(t.recurrence, t.last_executed_at, now)
        ]
        logger.debug("due_budget_templates", count=len(due))
        return due

    async def mark_executed(self, template_id: int, when: datetime) -> None:
        self.get(template_id).last_executed_at = when


class MemoryTransactionTemplateSource:
    """Transaction templates held in a dict keyed by id."""

    def __init__(self, templates: list[TransactionTemplate] | None = None):
        self._templates: dict[int, TransactionTemplate] = {
            t.id: t for t in templates or []
        }

    def add(self, template: TransactionTemplate) -> None:
        self._templates[template.id] = template

    def get(self, template_id: int) -> TransactionTemplate:
        try:
            return self._templates[template_id]
        except KeyError:
            raise TemplateSourceError(
                f"Transaction template {template_id} not found"
            ) from None

    async def get_due(self, now: datetime) -> list[TransactionTemplate]:
        due = [
            replace(t)
            for t in sorted(self._templates.values(), key=lambda t: t.id)
            if t.recurrence != Recurrence.NONE
            and _within_range(t.start_date, t.end_date, now)
            and t.installments_remaining
            and period_elapsed(t.recurrence, t.last_executed_at, now)
        ]
        logger.debug("due_transaction_templates", count=len(due))
        return due

    async def mark_executed(self, template_id: int, when: datetime) -> None:
        template = self.get(template_id)
        template.last_executed_at = when
        template.installment_current += 1


class MemoryBudgetStore:
    """Budgets appended to a list with sequential ids."""

    def __init__(self) -> None:
        self.budgets: list[Budget] = []

    async def check_duplicate(
        self,
        template_id: int,
        account_id: int | None,
        category_id: int | None,
        period_start: datetime,
        period_end: datetime,
    ) -> bool:
        return any(
            b.template_id == template_id
            and b.account_id == account_id
            and b.category_id == category_id
            and b.period_start == period_start
            and b.period_end == period_end
            for b in self.budgets
        )

    async def create(self, data: CreateBudgetInput) -> Budget:
        budget = Budget(
            id=len(self.budgets) + 1,
            template_id=data.template_id,
            period_start=data.period_start,
            period_end=data.period_end,
            amount_limit=data.amount_limit,
            account_id=data.account_id,
            category_id=data.category_id,
            name=data.name,
            note=data.note,
        )
        self.budgets.append(budget)
        return budget


class MemoryTransactionStore:
    """Transactions appended to a list with sequential ids."""

    def __init__(self) -> None:
        self.transactions: list[Transaction] = []

    async def check_duplicate(self, template_id: int, due_date: date) -> bool:
        return any(
            t.template_id == template_id and t.due_date == due_date
            for t in self.transactions
        )

    async def create(self, data: CreateTransactionInput) -> Transaction:
        transaction = Transaction(
            id=len(self.transactions) + 1,
            type=data.type,
            amount=data.amount,
            account_id=data.account_id,
            category_id=data.category_id,
            date=data.date,
            template_id=data.template_id,
            due_date=data.due_date,
            destination_account_id=data.destination_account_id,
            note=data.note,
        )
        self.transactions.append(transaction)
        return transaction
