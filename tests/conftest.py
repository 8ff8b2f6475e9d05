"""Pytest configuration and fixtures."""

import os
from datetime import date
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_API_URL", "http://localhost:8080")
os.environ.setdefault("LEDGER_API_TOKEN", "test-token")

from recurring_ledger.config.settings import get_settings  # noqa: E402
from recurring_ledger.models import (  # noqa: E402
    BudgetTemplate,
    Recurrence,
    TransactionTemplate,
    TransactionType,
)
from recurring_ledger.sources.memory import (  # noqa: E402
    MemoryBudgetStore,
    MemoryBudgetTemplateSource,
    MemoryTransactionStore,
    MemoryTransactionTemplateSource,
)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Drop cached settings so env changes in one test don't leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client


def make_budget_template(template_id: int = 1, **overrides) -> BudgetTemplate:
    """Build a monthly account budget template with sensible defaults."""
    values = {
        "id": template_id,
        "amount_limit": 50_000,
        "recurrence": Recurrence.MONTHLY,
        "start_date": date(2024, 1, 31),
        "account_id": 10,
        "note": "Household",
    }
    values.update(overrides)
    return BudgetTemplate(**values)


def make_transaction_template(template_id: int = 1, **overrides) -> TransactionTemplate:
    """Build a monthly expense template with sensible defaults."""
    values = {
        "id": template_id,
        "name": "Rent",
        "type": TransactionType.EXPENSE,
        "amount": 120_000,
        "account_id": 10,
        "category_id": 20,
        "recurrence": Recurrence.MONTHLY,
        "start_date": date(2024, 1, 15),
    }
    values.update(overrides)
    return TransactionTemplate(**values)


@pytest.fixture
def budget_templates():
    return MemoryBudgetTemplateSource()


@pytest.fixture
def budget_store():
    return MemoryBudgetStore()


@pytest.fixture
def transaction_templates():
    return MemoryTransactionTemplateSource()


@pytest.fixture
def transaction_store():
    return MemoryTransactionStore()


@pytest.fixture
def mock_budget_template_payload():
    """Budget template as returned by the ledger API."""
    return {
        "id": 7,
        "accountId": 3,
        "amountLimit": 25000,
        "recurrence": "monthly",
        "startDate": "2024-01-31T00:00:00Z",
        "endDate": None,
        "name": "Dining out",
        "note": "Keep it reasonable",
        "active": True,
        "lastExecutedAt": None,
    }


@pytest.fixture
def mock_transaction_template_payload():
    """Transaction template as returned by the ledger API."""
    return {
        "id": 9,
        "name": "Phone plan",
        "type": "expense",
        "amount": 4500,
        "accountId": 3,
        "categoryId": 5,
        "recurrence": "monthly",
        "startDate": "2024-01-15",
        "installmentCount": 12,
        "installmentCurrent": 2,
        "note": None,
        "lastExecutedAt": "2024-03-15T00:00:01+00:00",
    }


@pytest.fixture
def budget_template_factory():
    """Factory for budget templates."""
    return make_budget_template


@pytest.fixture
def transaction_template_factory():
    """Factory for transaction templates."""
    return make_transaction_template
