"""Repository contracts the generation jobs depend on."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Protocol

from recurring_ledger.models import (
    Budget,
    BudgetTemplate,
    CreateBudgetInput,
    CreateTransactionInput,
    Transaction,
    TransactionTemplate,
)


class SourceError(Exception):
    """Base exception for repository failures."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class TemplateSourceError(SourceError):
    """Fetching or stamping templates failed."""

    pass


class RecordStoreError(SourceError):
    """Checking or creating a generated record failed."""

    pass


class BudgetTemplateSource(Protocol):
    """Returns budget templates due for generation and stamps executions."""

    async def get_due(self, now: datetime) -> list[BudgetTemplate]: ...

    async def mark_executed(self, template_id: int, when: datetime) -> None: ...


class TransactionTemplateSource(Protocol):
    """Returns transaction templates due for generation and stamps executions.

    ``mark_executed`` also advances the template's completed-occurrence
    counter (``installment_current``).
    """

    async def get_due(self, now: datetime) -> list[TransactionTemplate]: ...

    async def mark_executed(self, template_id: int, when: datetime) -> None: ...


class BudgetStore(Protocol):
    """Persists budgets generated from templates."""

    async def check_duplicate(
        self,
        template_id: int,
        account_id: int | None,
        category_id: int | None,
        period_start: datetime,
        period_end: datetime,
    ) -> bool: ...

    async def create(self, data: CreateBudgetInput) -> Budget: ...


class TransactionStore(Protocol):
    """Persists transactions generated from templates."""

    async def check_duplicate(self, template_id: int, due_date: date) -> bool: ...

    async def create(self, data: CreateTransactionInput) -> Transaction: ...
