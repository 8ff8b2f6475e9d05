"""Jobs that turn due templates into budgets and transactions.

Both jobs follow the same shape: fetch due templates, process each one on
its own, and stamp ``last_executed_at`` only after a record was created.
A template that fails is logged and left unstamped, so the next scheduled
run picks it up again.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from recurring_ledger.config import get_settings
from recurring_ledger.models import (
    BudgetTemplate,
    CreateBudgetInput,
    CreateTransactionInput,
    TransactionTemplate,
)
from recurring_ledger.recurrence import local_now, next_due_date, next_period
from recurring_ledger.sources.base import (
    BudgetStore,
    BudgetTemplateSource,
    TransactionStore,
    TransactionTemplateSource,
)

logger = structlog.get_logger(__name__)


class GenerationError(Exception):
    """A generation run could not start (the template source failed)."""

    pass


@dataclass
class RunStats:
    """Per-run counters, reported in logs only."""

    created: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"created": self.created, "skipped": self.skipped, "failed": self.failed}


class GenerationJob:
    """Fetch-and-process loop shared by the budget and transaction jobs.

    Subclasses set ``name`` and ``kind`` and implement ``_process_template``,
    returning True when a record was created and False when skipped.
    """

    name = "generation"
    kind = "template"

    def __init__(self, templates: Any, schedule: str):
        self._templates = templates
        self._schedule = schedule
        self._logger = logger.bind(job=self.name)

    @property
    def schedule(self) -> str:
        return self._schedule

    async def run(self, now: datetime | None = None) -> RunStats:
        """Generate records for all templates due at ``now``.

        Raises:
            GenerationError: If the due templates could not be fetched.
        """
        now = now or local_now()
        started = time.monotonic()
        self._logger.info(f"{self.name}_starting", now=now.isoformat())

        try:
            templates = await self._templates.get_due(now)
        except Exception as e:
            self._logger.error("fetch_due_templates_failed", error=str(e))
            raise GenerationError(
                f"Failed to fetch due {self.kind} templates: {e}"
            ) from e

        stats = RunStats()
        if not templates:
            self._logger.info("no_due_templates")
            return stats

        self._logger.info("processing_templates", count=len(templates))

        for template in templates:
            try:
                created = await self._process_template(template, now)
            except Exception as e:
                stats.failed += 1
                self._logger.error(
                    "template_failed", template_id=template.id, error=str(e)
                )
                continue
            if created:
                stats.created += 1
            else:
                stats.skipped += 1

        self._logger.info(
            f"{self.name}_completed",
            duration=round(time.monotonic() - started, 3),
            **stats.to_dict(),
        )
        return stats

    async def _process_template(self, template: Any, now: datetime) -> bool:
        raise NotImplementedError

    async def _stamp(self, template_id: int, record_id: int, now: datetime) -> None:
        """Stamp a template whose record already exists."""
        try:
            await self._templates.mark_executed(template_id, now)
        except Exception as e:
            self._logger.error(
                "stamp_failed_after_create",
                template_id=template_id,
                record_id=record_id,
                error=str(e),
            )
            raise


class BudgetGenerationJob(GenerationJob):
    """Creates the next budget period for every due budget template."""

    name = "budget_generation"
    kind = "budget"

    def __init__(
        self,
        templates: BudgetTemplateSource,
        budgets: BudgetStore,
        schedule: str | None = None,
    ):
        super().__init__(templates, schedule or get_settings().budget_job_schedule)
        self._budgets = budgets

    async def _process_template(self, template: BudgetTemplate, now: datetime) -> bool:
        """Create one budget; returns False when the template was skipped."""
        period_start, period_end = next_period(
            template.recurrence, template.start_date, now
        )

        if template.end_date is not None and period_start.date() > template.end_date:
            self._logger.debug(
                "template_expired",
                template_id=template.id,
                end_date=template.end_date.isoformat(),
            )
            return False

        exists = await self._budgets.check_duplicate(
            template.id,
            template.account_id,
            template.category_id,
            period_start,
            period_end,
        )
        if exists:
            self._logger.debug(
                "budget_exists_skipping",
                template_id=template.id,
                period_start=period_start.isoformat(),
                period_end=period_end.isoformat(),
            )
            return False

        name = None
        if template.name:
            name = f"{template.name} ({period_start:%Y-%m-%d})"

        budget = await self._budgets.create(
            CreateBudgetInput(
                template_id=template.id,
                account_id=template.account_id,
                category_id=template.category_id,
                period_start=period_start,
                period_end=period_end,
                amount_limit=template.amount_limit,
                name=name,
                note=template.note,
            )
        )
        await self._stamp(template.id, budget.id, now)

        self._logger.info(
            "budget_created",
            budget_id=budget.id,
            template_id=template.id,
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
            amount_limit=template.amount_limit,
        )
        return True


def installment_note(template: TransactionTemplate) -> str | None:
    """Build the generated transaction's note, tagging installment progress."""
    if template.installment_count is None:
        return template.note
    progress = f"Installment {template.installment_current + 1}/{template.installment_count}"
    if template.note:
        return f"{template.note} ({progress})"
    return progress


class TransactionGenerationJob(GenerationJob):
    """Creates the next occurrence for every due transaction template."""

    name = "transaction_generation"
    kind = "transaction"

    def __init__(
        self,
        templates: TransactionTemplateSource,
        transactions: TransactionStore,
        schedule: str | None = None,
    ):
        super().__init__(
            templates, schedule or get_settings().transaction_job_schedule
        )
        self._transactions = transactions

    async def _process_template(
        self, template: TransactionTemplate, now: datetime
    ) -> bool:
        """Create one transaction; returns False when it is not due yet."""
        due_on = next_due_date(
            template.recurrence, template.start_date, template.installment_current
        )

        if due_on > now.date():
            self._logger.debug(
                "transaction_not_due",
                template_id=template.id,
                next_date=due_on.isoformat(),
            )
            return False

        if template.end_date is not None and due_on > template.end_date:
            self._logger.debug(
                "template_expired",
                template_id=template.id,
                end_date=template.end_date.isoformat(),
            )
            return False

        # Left over from a run whose stamp failed: advance the counter only
        if await self._transactions.check_duplicate(template.id, due_on):
            self._logger.warning(
                "transaction_exists_stamping",
                template_id=template.id,
                due_on=due_on.isoformat(),
            )
            await self._templates.mark_executed(template.id, now)
            return False

        transaction = await self._transactions.create(
            CreateTransactionInput(
                template_id=template.id,
                type=template.type,
                amount=template.amount,
                account_id=template.account_id,
                category_id=template.category_id,
                destination_account_id=template.destination_account_id,
                date=now,
                due_date=due_on,
                note=installment_note(template),
            )
        )
        await self._stamp(template.id, transaction.id, now)

        self._logger.info(
            "transaction_created",
            transaction_id=transaction.id,
            template_id=template.id,
            due_on=due_on.isoformat(),
            amount=template.amount,
            type=template.type.value,
        )
        return True
