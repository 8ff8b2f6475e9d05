"""Tests for the budget and transaction generation jobs."""

from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest

from recurring_ledger.jobs import (
    BudgetGenerationJob,
    GenerationError,
    RunStats,
    TransactionGenerationJob,
    installment_note,
)
from recurring_ledger.models import Budget, Recurrence
from recurring_ledger.sources.base import RecordStoreError, TemplateSourceError
from recurring_ledger.sources.memory import (
    MemoryBudgetStore,
    MemoryTransactionStore,
    MemoryTransactionTemplateSource,
)

NOW = datetime(2024, 2, 15, 0, 0, 1)


class FailingBudgetStore(MemoryBudgetStore):
    """Budget store whose create fails for selected template ids."""

    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)

    async def create(self, data):
        if data.template_id in self.failing_ids:
            raise RecordStoreError("insert failed")
        return await super().create(data)


class FailingTransactionStore(MemoryTransactionStore):
    """Transaction store whose create fails for selected template ids."""

    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)

    async def create(self, data):
        if data.template_id in self.failing_ids:
            raise RecordStoreError("insert failed")
        return await super().create(data)


class TestRunStats:
    """Tests for RunStats counters."""

    def test_defaults_to_zero(self):
        """A fresh stats object has no work recorded."""
        assert RunStats().to_dict() == {"created": 0, "skipped": 0, "failed": 0}


class TestBudgetJobIdentity:
    """Tests for budget job name and schedule."""

    def test_name_and_default_schedule(self, budget_templates, budget_store):
        """Job exposes its name and the configured schedule."""
        job = BudgetGenerationJob(budget_templates, budget_store)

        assert job.name == "budget_generation"
        assert job.schedule == "00:00"

    def test_custom_schedule(self, budget_templates, budget_store):
        """Schedule can be overridden per instance."""
        job = BudgetGenerationJob(budget_templates, budget_store, schedule="02:30")

        assert job.schedule == "02:30"


class TestBudgetGeneration:
    """Tests for BudgetGenerationJob.run."""

    @pytest.mark.asyncio
    async def test_no_due_templates(self, budget_templates, budget_store):
        """An empty due list is a successful no-op."""
        job = BudgetGenerationJob(budget_templates, budget_store)

        stats = await job.run(NOW)

        assert stats == RunStats()
        assert budget_store.budgets == []

    @pytest.mark.asyncio
    async def test_creates_budget_for_clamped_period(
        self, budget_templates, budget_store, budget_template_factory
    ):
        """A due monthly template produces the Feb 29 period and is stamped."""
        budget_templates.add(budget_template_factory(1))
        job = BudgetGenerationJob(budget_templates, budget_store)

        stats = await job.run(NOW)

        assert stats.created == 1
        budget = budget_store.budgets[0]
        assert budget.template_id == 1
        assert budget.account_id == 10
        assert budget.amount_limit == 50_000
        assert budget.note == "Household"
        assert budget.period_start == datetime(2024, 2, 29)
        assert budget.period_end == datetime(2024, 2, 29, 23, 59, 59)
        assert budget_templates.get(1).last_executed_at == NOW

    @pytest.mark.asyncio
    async def test_named_template_names_budget(
        self, budget_templates, budget_store, budget_template_factory
    ):
        """Template name plus period start becomes the budget name."""
        budget_templates.add(budget_template_factory(1, name="Groceries"))
        job = BudgetGenerationJob(budget_templates, budget_store)

        await job.run(NOW)

        assert budget_store.budgets[0].name == "Groceries (2024-02-29)"

    @pytest.mark.asyncio
    async def test_run_twice_is_idempotent(
        self, budget_templates, budget_store, budget_template_factory
    ):
        """A second run at the same moment creates nothing."""
        budget_templates.add(budget_template_factory(1))
        job = BudgetGenerationJob(budget_templates, budget_store)

        first = await job.run(NOW)
        second = await job.run(NOW)

        assert first.created == 1
        assert second.created == 0
        assert len(budget_store.budgets) == 1

    @pytest.mark.asyncio
    async def test_existing_budget_is_skipped(
        self, budget_templates, budget_store, budget_template_factory
    ):
        """The duplicate check skips without creating or stamping."""
        budget_templates.add(budget_template_factory(1))
        budget_store.budgets.append(
            Budget(
                id=99,
                template_id=1,
                account_id=10,
                period_start=datetime(2024, 2, 29),
                period_end=datetime(2024, 2, 29, 23, 59, 59),
                amount_limit=50_000,
            )
        )
        job = BudgetGenerationJob(budget_templates, budget_store)

        stats = await job.run(NOW)

        assert stats.skipped == 1
        assert stats.created == 0
        assert len(budget_store.budgets) == 1
        assert budget_templates.get(1).last_executed_at is None

    @pytest.mark.asyncio
    async def test_period_after_end_date_is_skipped(
        self, budget_templates, budget_store, budget_template_factory
    ):
        """A template ending before its next period start creates nothing."""
        budget_templates.add(budget_template_factory(1, end_date=date(2024, 2, 20)))
        job = BudgetGenerationJob(budget_templates, budget_store)

        stats = await job.run(NOW)

        assert stats.skipped == 1
        assert budget_store.budgets == []

    @pytest.mark.asyncio
    async def test_failure_isolation(self, budget_templates, budget_template_factory):
        """The 2nd of 3 templates failing leaves the others created and stamped."""
        for template_id in (1, 2, 3):
            budget_templates.add(budget_template_factory(template_id))
        store = FailingBudgetStore(failing_ids={2})
        job = BudgetGenerationJob(budget_templates, store)

        stats = await job.run(NOW)

        assert stats == RunStats(created=2, skipped=0, failed=1)
        assert [b.template_id for b in store.budgets] == [1, 3]
        assert budget_templates.get(1).last_executed_at == NOW
        assert budget_templates.get(2).last_executed_at is None
        assert budget_templates.get(3).last_executed_at == NOW

        due = await budget_templates.get_due(NOW)
        assert [t.id for t in due] == [2]

    @pytest.mark.asyncio
    async def test_failed_template_retried_next_run(
        self, budget_templates, budget_template_factory
    ):
        """Once the store recovers the unstamped template is generated."""
        for template_id in (1, 2, 3):
            budget_templates.add(budget_template_factory(template_id))
        store = FailingBudgetStore(failing_ids={2})
        job = BudgetGenerationJob(budget_templates, store)
        await job.run(NOW)

        store.failing_ids.clear()
        stats = await job.run(NOW)

        assert stats.created == 1
        assert sorted(b.template_id for b in store.budgets) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_duplicate_check_error_counts_failure(
        self, budget_templates, budget_template_factory
    ):
        """A failing duplicate check is a per-template failure."""
        budget_templates.add(budget_template_factory(1))
        store = MemoryBudgetStore()
        store.check_duplicate = AsyncMock(side_effect=RecordStoreError("timeout"))
        job = BudgetGenerationJob(budget_templates, store)

        stats = await job.run(NOW)

        assert stats.failed == 1
        assert store.budgets == []

    @pytest.mark.asyncio
    async def test_source_error_aborts_run(self, budget_store):
        """A failing due query raises GenerationError."""
        source = AsyncMock()
        source.get_due = AsyncMock(side_effect=TemplateSourceError("db down"))
        job = BudgetGenerationJob(source, budget_store)

        with pytest.raises(GenerationError, match="db down"):
            await job.run(NOW)

    @pytest.mark.asyncio
    async def test_uses_current_time_by_default(
        self, budget_templates, budget_store, budget_template_factory
    ):
        """Without an explicit now the job still runs."""
        budget_templates.add(budget_template_factory(1, recurrence=Recurrence.WEEKLY))
        job = BudgetGenerationJob(budget_templates, budget_store)

        stats = await job.run()

        assert stats.created == 1
        assert budget_store.budgets[0].period_start.weekday() == 0


class TestInstallmentNote:
    """Tests for installment_note."""

    def test_plain_template_keeps_note(self, transaction_template_factory):
        """Templates without installments copy their note."""
        template = transaction_template_factory(note="Monthly rent")

        assert installment_note(template) == "Monthly rent"

    def test_installment_without_note(self, transaction_template_factory):
        """Installment progress becomes the note."""
        template = transaction_template_factory(installment_count=12)

        assert installment_note(template) == "Installment 1/12"

    def test_installment_appended_to_note(self, transaction_template_factory):
        """Installment progress is appended in parentheses."""
        template = transaction_template_factory(
            note="Laptop", installment_count=3, installment_current=2
        )

        assert installment_note(template) == "Laptop (Installment 3/3)"


class TestTransactionGeneration:
    """Tests for TransactionGenerationJob.run."""

    def test_name_and_default_schedule(self, transaction_templates, transaction_store):
        """Job exposes its name and the configured schedule."""
        job = TransactionGenerationJob(transaction_templates, transaction_store)

        assert job.name == "transaction_generation"
        assert job.schedule == "00:00"

    @pytest.mark.asyncio
    async def test_creates_transaction_on_due_date(
        self, transaction_templates, transaction_store, transaction_template_factory
    ):
        """A template due today produces a transaction and advances its counter."""
        transaction_templates.add(transaction_template_factory(1))
        job = TransactionGenerationJob(transaction_templates, transaction_store)
        now = datetime(2024, 1, 15, 0, 0, 1)

        stats = await job.run(now)

        assert stats.created == 1
        transaction = transaction_store.transactions[0]
        assert transaction.template_id == 1
        assert transaction.amount == 120_000
        assert transaction.account_id == 10
        assert transaction.category_id == 20
        assert transaction.date == now
        template = transaction_templates.get(1)
        assert template.installment_current == 1
        assert template.last_executed_at == now

    @pytest.mark.asyncio
    async def test_not_yet_due_is_skipped(
        self, transaction_templates, transaction_store, transaction_template_factory
    ):
        """A due-query hit whose next date is still ahead is skipped."""
        transaction_templates.add(
            transaction_template_factory(
                1,
                installment_current=1,
                last_executed_at=datetime(2024, 1, 10),
            )
        )
        job = TransactionGenerationJob(transaction_templates, transaction_store)

        stats = await job.run(datetime(2024, 2, 10, 0, 0, 1))

        assert stats.skipped == 1
        assert transaction_store.transactions == []
        assert transaction_templates.get(1).installment_current == 1

    @pytest.mark.asyncio
    async def test_due_date_after_end_date_is_skipped(
        self, transaction_store, transaction_template_factory
    ):
        """Occurrences past the end date are never generated."""
        source = AsyncMock()
        source.get_due = AsyncMock(
            return_value=[
                transaction_template_factory(
                    1,
                    start_date=date(2024, 1, 31),
                    end_date=date(2024, 3, 15),
                    installment_current=2,
                )
            ]
        )
        job = TransactionGenerationJob(source, transaction_store)

        stats = await job.run(datetime(2024, 4, 2, 0, 0, 1))

        assert stats.skipped == 1
        assert transaction_store.transactions == []

    @pytest.mark.asyncio
    async def test_run_twice_is_idempotent(
        self, transaction_templates, transaction_store, transaction_template_factory
    ):
        """The second run at the same moment finds nothing due."""
        transaction_templates.add(transaction_template_factory(1))
        job = TransactionGenerationJob(transaction_templates, transaction_store)
        now = datetime(2024, 1, 15, 0, 0, 1)

        await job.run(now)
        second = await job.run(now)

        assert second.created == 0
        assert len(transaction_store.transactions) == 1

    @pytest.mark.asyncio
    async def test_last_installment_completes_plan(
        self, transaction_templates, transaction_store, transaction_template_factory
    ):
        """After the final installment the template is no longer due."""
        transaction_templates.add(
            transaction_template_factory(
                1, note="Laptop", installment_count=3, installment_current=2
            )
        )
        job = TransactionGenerationJob(transaction_templates, transaction_store)

        await job.run(datetime(2024, 3, 15, 0, 0, 1))

        assert transaction_store.transactions[0].note == "Laptop (Installment 3/3)"
        assert await transaction_templates.get_due(datetime(2024, 4, 15, 0, 0, 1)) == []

    @pytest.mark.asyncio
    async def test_failure_isolation(
        self, transaction_templates, transaction_template_factory
    ):
        """A failing create leaves that template due and the rest processed."""
        for template_id in (1, 2, 3):
            transaction_templates.add(transaction_template_factory(template_id))
        store = FailingTransactionStore(failing_ids={2})
        job = TransactionGenerationJob(transaction_templates, store)
        now = datetime(2024, 1, 15, 0, 0, 1)

        stats = await job.run(now)

        assert stats == RunStats(created=2, skipped=0, failed=1)
        assert transaction_templates.get(2).installment_current == 0
        assert transaction_templates.get(2).last_executed_at is None
        assert [t.id for t in await transaction_templates.get_due(now)] == [2]

    @pytest.mark.asyncio
    async def test_mark_executed_failure_counts_failure(
        self, transaction_store, transaction_template_factory
    ):
        """A stamp failure is reported as a failed template."""
        source = AsyncMock()
        source.get_due = AsyncMock(return_value=[transaction_template_factory(1)])
        source.mark_executed = AsyncMock(side_effect=TemplateSourceError("locked"))
        job = TransactionGenerationJob(source, transaction_store)

        stats = await job.run(datetime(2024, 1, 15, 0, 0, 1))

        assert stats.failed == 1

    @pytest.mark.asyncio
    async def test_source_error_aborts_run(self, transaction_store):
        """A failing due query raises GenerationError."""
        source = AsyncMock()
        source.get_due = AsyncMock(side_effect=TemplateSourceError("db down"))
        job = TransactionGenerationJob(source, transaction_store)

        with pytest.raises(GenerationError):
            await job.run(datetime(2024, 1, 15))


class FlakyStampSource(MemoryTransactionTemplateSource):
    """Transaction source whose first stamp fails."""

    def __init__(self, templates):
        super().__init__(templates)
        self.stamp_failures = 1

    async def mark_executed(self, template_id, when):
        if self.stamp_failures:
            self.stamp_failures -= 1
            raise TemplateSourceError("locked")
        await super().mark_executed(template_id, when)


class TestStampFailureRecovery:
    """Tests for a record created whose template stamp then failed."""

    @pytest.mark.asyncio
    async def test_next_run_does_not_duplicate_transaction(
        self, transaction_store, transaction_template_factory
    ):
        """The retry finds the occurrence already created and only advances."""
        source = FlakyStampSource([transaction_template_factory(1)])
        job = TransactionGenerationJob(source, transaction_store)

        first = await job.run(datetime(2024, 1, 15, 0, 0, 1))
        second = await job.run(datetime(2024, 1, 16, 0, 0, 1))

        assert first.failed == 1
        assert second == RunStats(created=0, skipped=1, failed=0)
        assert len(transaction_store.transactions) == 1
        assert transaction_store.transactions[0].due_date == date(2024, 1, 15)
        assert source.get(1).installment_current == 1

    @pytest.mark.asyncio
    async def test_created_transaction_records_due_date(
        self, transaction_templates, transaction_store, transaction_template_factory
    ):
        """Each transaction carries the occurrence it was generated for."""
        transaction_templates.add(transaction_template_factory(1, installment_current=1))
        job = TransactionGenerationJob(transaction_templates, transaction_store)

        await job.run(datetime(2024, 2, 16, 0, 0, 1))

        assert transaction_store.transactions[0].due_date == date(2024, 2, 15)

    @pytest.mark.asyncio
    async def test_budget_stamp_failure_is_retried_without_duplicate(
        self, budget_store, budget_template_factory
    ):
        """The budget duplicate check absorbs the retry after a stamp failure."""
        source = AsyncMock()
        source.get_due = AsyncMock(return_value=[budget_template_factory(1)])
        source.mark_executed = AsyncMock(side_effect=TemplateSourceError("locked"))
        job = BudgetGenerationJob(source, budget_store)

        first = await job.run(NOW)
        second = await job.run(NOW)

        assert first.failed == 1
        assert second.skipped == 1
        assert len(budget_store.budgets) == 1


class TestSharedRunLoop:
    """Tests for behavior common to both jobs."""

    @pytest.mark.parametrize(
        "job_class,kind",
        [(BudgetGenerationJob, "budget"), (TransactionGenerationJob, "transaction")],
    )
    @pytest.mark.asyncio
    async def test_fetch_error_names_template_kind(self, job_class, kind):
        """The GenerationError says which templates could not be fetched."""
        source = AsyncMock()
        source.get_due = AsyncMock(side_effect=TemplateSourceError("db down"))
        job = job_class(source, AsyncMock())

        with pytest.raises(GenerationError, match=f"due {kind} templates"):
            await job.run(NOW)
