"""Template sources and record stores for the generation jobs."""

from recurring_ledger.sources.base import (
    BudgetStore,
    BudgetTemplateSource,
    RecordStoreError,
    SourceError,
    TemplateSourceError,
    TransactionStore,
    TransactionTemplateSource,
)
from recurring_ledger.sources.ledger_api import (
    APIBudgetStore,
    APIBudgetTemplateSource,
    APITransactionStore,
    APITransactionTemplateSource,
    LedgerAPIClient,
    LedgerAPIError,
    RateLimitError,
)
from recurring_ledger.sources.memory import (
    MemoryBudgetStore,
    MemoryBudgetTemplateSource,
    MemoryTransactionStore,
    MemoryTransactionTemplateSource,
)

__all__ = [
    # Contracts
    "BudgetTemplateSource",
    "TransactionTemplateSource",
    "BudgetStore",
    "TransactionStore",
    # Errors
    "SourceError",
    "TemplateSourceError",
    "RecordStoreError",
    "LedgerAPIError",
    "RateLimitError",
    # HTTP
    "LedgerAPIClient",
    "APIBudgetTemplateSource",
    "APITransactionTemplateSource",
    "APIBudgetStore",
    "APITransactionStore",
    # In-memory
    "MemoryBudgetTemplateSource",
    "MemoryTransactionTemplateSource",
    "MemoryBudgetStore",
    "MemoryTransactionStore",
]
