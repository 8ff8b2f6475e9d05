"""Recurring ledger - scheduled generation of budgets and transactions from templates."""

__version__ = "0.1.0"

from recurring_ledger.config import configure_logging, get_settings
from recurring_ledger.jobs import (
    BudgetGenerationJob,
    GenerationError,
    RunStats,
    TransactionGenerationJob,
)
from recurring_ledger.models import (
    Budget,
    BudgetTemplate,
    Recurrence,
    Transaction,
    TransactionTemplate,
    TransactionType,
)
from recurring_ledger.recurrence import next_due_date, next_period
from recurring_ledger.scheduler import Job, JobScheduler, next_fire_time, parse_schedule

__all__ = [
    # Version
    "__version__",
    # Models
    "Recurrence",
    "TransactionType",
    "BudgetTemplate",
    "TransactionTemplate",
    "Budget",
    "Transaction",
    # Recurrence
    "next_period",
    "next_due_date",
    # Jobs
    "BudgetGenerationJob",
    "TransactionGenerationJob",
    "RunStats",
    "GenerationError",
    # Scheduler
    "Job",
    "JobScheduler",
    "parse_schedule",
    "next_fire_time",
    # Config
    "get_settings",
    "configure_logging",
]
