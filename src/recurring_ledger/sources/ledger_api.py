"""Ledger CRUD API client and the template/record sources built on it."""

import asyncio
from datetime import date, datetime
from typing import Any, Callable, TypeVar, cast

import httpx
import structlog

from recurring_ledger.config import get_settings
from recurring_ledger.models import (
    Budget,
    BudgetTemplate,
    CreateBudgetInput,
    CreateTransactionInput,
    Transaction,
    TransactionTemplate,
)
from recurring_ledger.sources.base import (
    RecordStoreError,
    SourceError,
    TemplateSourceError,
)

logger = structlog.get_logger(__name__)


class LedgerAPIError(SourceError):
    """The ledger API returned an error or could not be reached."""

    pass


class RateLimitError(LedgerAPIError):
    """Rate limit exceeded."""

    pass


# The request never reached the server, so resending cannot duplicate a write
_UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


def _is_retryable(method: str, error: httpx.RequestError) -> bool:
    """GETs retry on any transport error; writes only when nothing was sent."""
    return method == "GET" or isinstance(error, _UNSENT_ERRORS)


class LedgerAPIClient:
    """Async client for the ledger CRUD API with bearer-token auth."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ledger_api_url).rstrip("/")
        if token is None and settings.ledger_api_token is not None:
            token = settings.ledger_api_token.get_secret_value()
        self._token = token
        self._timeout = timeout or settings.ledger_api_timeout
        self._max_retries = (
            max_retries if max_retries is not None else settings.ledger_api_max_retries
        )

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with auth token."""
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make an API request, retrying transport errors with backoff."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                headers=self._get_headers(),
            )

            if response.status_code == 429:
                retry_after = int(response.headers.get("Retry-After", "60"))
                raise RateLimitError(
                    f"Rate limited, retry after {retry_after}s",
                    status_code=429,
                    details={"retry_after": retry_after},
                )

            if response.status_code >= 400:
                try:
                    error_detail = response.json() if response.content else {}
                except ValueError:
                    error_detail = {
                        "raw": response.text[:500]
                        if response.text
                        else "empty response"
                    }
                raise LedgerAPIError(
                    f"API error: {response.status_code}",
                    status_code=response.status_code,
                    details=error_detail,
                )

            return response.json() if response.content else {}

        except httpx.RequestError as e:
            if retry_count < self._max_retries and _is_retryable(method, e):
                await asyncio.sleep(2**retry_count)  # Exponential backoff
                return await self._request(method, path, params, json, retry_count + 1)
            raise LedgerAPIError(f"Request failed: {e}") from e

    async def get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make GET request."""
        return await self._request("GET", path, params=params)

    async def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Make POST request."""
        return await self._request("POST", path, params=params, json=json)

    @staticmethod
    def _extract_items(result: Any) -> list[dict[str, Any]]:
        """Return list of items from a list or paged response."""
        if isinstance(result, list):
            return result
        if isinstance(result, dict):
            items = result.get("data")
            if isinstance(items, list):
                return items
        return []

    @staticmethod
    def _as_object(result: Any) -> dict[str, Any]:
        if not isinstance(result, dict):
            raise LedgerAPIError("Invalid response format")
        return cast(dict[str, Any], result)

    # === Budget templates ===

    async def list_due_budget_templates(self, now: datetime) -> list[dict[str, Any]]:
        """List budget templates due for generation at ``now``."""
        result = await self.get("/budget-templates/due", params={"at": now.isoformat()})
        return self._extract_items(result)

    async def mark_budget_template_executed(self, template_id: int, when: datetime) -> None:
        """Stamp a budget template's last execution time."""
        await self.post(
            f"/budget-templates/{template_id}/executed",
            json={"executedAt": when.isoformat()},
        )

    # === Budgets ===

    async def budget_exists(
        self,
        template_id: int,
        account_id: int | None,
        category_id: int | None,
        period_start: datetime,
        period_end: datetime,
    ) -> bool:
        """Check whether a budget already covers this template and period."""
        params: dict[str, Any] = {
            "templateId": template_id,
            "periodStart": period_start.isoformat(),
            "periodEnd": period_end.isoformat(),
        }
        if account_id is not None:
            params["accountId"] = account_id
        if category_id is not None:
            params["categoryId"] = category_id
        result = self._as_object(await self.get("/budgets/exists", params=params))
        return bool(result.get("exists", False))

    async def create_budget(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a new budget."""
        return self._as_object(await self.post("/budgets", json=data))

    # === Transaction templates ===

    async def list_due_transaction_templates(self, now: datetime) -> list[dict[str, Any]]:
        """List transaction templates due for generation at ``now``."""
        result = await self.get(
            "/transaction-templates/due", params={"at": now.isoformat()}
        )
        return self._extract_items(result)

    async def mark_transaction_template_executed(
        self, template_id: int, when: datetime
    ) -> None:
        """Stamp a transaction template and advance its installment counter."""
        await self.post(
            f"/transaction-templates/{template_id}/executed",
            json={"executedAt": when.isoformat()},
        )

    # === Transactions ===

    async def transaction_exists(self, template_id: int, due_date: date) -> bool:
        """Check whether a transaction already covers this template occurrence."""
        params = {"templateId": template_id, "dueDate": due_date.isoformat()}
        result = self._as_object(await self.get("/transactions/exists", params=params))
        return bool(result.get("exists", False))

    async def create_transaction(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a new transaction."""
        return self._as_object(await self.post("/transactions", json=data))


T = TypeVar("T")


def _parse_each(
    items: list[dict[str, Any]], parse: Callable[[dict[str, Any]], T], kind: str
) -> list[T]:
    """Parse rows one at a time, dropping any row that is malformed."""
    parsed: list[T] = []
    for item in items:
        try:
            parsed.append(parse(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.error(
                "template_parse_failed",
                kind=kind,
                template_id=item.get("id") if isinstance(item, dict) else None,
                error=str(e),
            )
    return parsed


class APIBudgetTemplateSource:
    """Budget template source backed by the ledger API."""

    def __init__(self, client: LedgerAPIClient):
        self._client = client

    async def get_due(self, now: datetime) -> list[BudgetTemplate]:
        try:
            items = await self._client.list_due_budget_templates(now)
        except LedgerAPIError as e:
            raise TemplateSourceError(str(e), e.status_code, e.details) from e
        return _parse_each(items, BudgetTemplate.from_dict, "budget")

    async def mark_executed(self, template_id: int, when: datetime) -> None:
        try:
            await self._client.mark_budget_template_executed(template_id, when)
        except LedgerAPIError as e:
            raise TemplateSourceError(str(e), e.status_code, e.details) from e


class APITransactionTemplateSource:
    """Transaction template source backed by the ledger API."""

    def __init__(self, client: LedgerAPIClient):
        self._client = client

    async def get_due(self, now: datetime) -> list[TransactionTemplate]:
        try:
            items = await self._client.list_due_transaction_templates(now)
        except LedgerAPIError as e:
            raise TemplateSourceError(str(e), e.status_code, e.details) from e
        return _parse_each(items, TransactionTemplate.from_dict, "transaction")

    async def mark_executed(self, template_id: int, when: datetime) -> None:
        try:
            await self._client.mark_transaction_template_executed(template_id, when)
        except LedgerAPIError as e:
            raise TemplateSourceError(str(e), e.status_code, e.details) from e


class APIBudgetStore:
    """Budget store backed by the ledger API."""

    def __init__(self, client: LedgerAPIClient):
        self._client = client

    async def check_duplicate(
        self,
        template_id: int,
        account_id: int | None,
        category_id: int | None,
        period_start: datetime,
        period_end: datetime,
    ) -> bool:
        try:
            return await self._client.budget_exists(
                template_id, account_id, category_id, period_start, period_end
            )
        except LedgerAPIError as e:
            raise RecordStoreError(str(e), e.status_code, e.details) from e

    async def create(self, data: CreateBudgetInput) -> Budget:
        try:
            result = await self._client.create_budget(data.to_dict())
        except LedgerAPIError as e:
            raise RecordStoreError(str(e), e.status_code, e.details) from e
        return Budget.from_dict(result)


class APITransactionStore:
    """Transaction store backed by the ledger API."""

    def __init__(self, client: LedgerAPIClient):
        self._client = client

    async def check_duplicate(self, template_id: int, due_date: date) -> bool:
        try:
            return await self._client.transaction_exists(template_id, due_date)
        except LedgerAPIError as e:
            raise RecordStoreError(str(e), e.status_code, e.details) from e

    async def create(self, data: CreateTransactionInput) -> Transaction:
        try:
            result = await self._client.create_transaction(data.to_dict())
        except LedgerAPIError as e:
            raise RecordStoreError(str(e), e.status_code, e.details) from e
        return Transaction.from_dict(result)
