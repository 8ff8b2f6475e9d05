"""Template and generated-record types shared by the jobs and sources.

The CRUD API speaks camelCase JSON with amounts in cents, so every type here
has ``from_dict``/``to_dict`` helpers mirroring that wire shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


class Recurrence(str, Enum):
    """How often a template generates a new record."""

    NONE = "none"
    DAILY = "daily"  # transaction templates only
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: str | Recurrence | None) -> Recurrence:
        """Parse a wire value, treating unknown strings as NONE."""
        if isinstance(value, Recurrence):
            return value
        try:
            return cls((value or "none").lower())
        except ValueError:
            return cls.NONE


class TransactionType(str, Enum):
    """Kinds of transactions a template can produce."""

    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if "T" in text:
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _isoformat(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class BudgetTemplate:
    """User-defined rule for a recurring budget."""

    id: int
    amount_limit: int
    recurrence: Recurrence
    start_date: date
    account_id: int | None = None
    category_id: int | None = None
    end_date: date | None = None
    name: str | None = None
    note: str | None = None
    active: bool = True
    last_executed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.account_id is None and self.category_id is None:
            raise ValueError(
                f"Budget template {self.id} needs an account or a category"
            )
        self.recurrence = Recurrence.parse(self.recurrence)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BudgetTemplate:
        start_date = _parse_date(data["startDate"])
        if start_date is None:
            raise ValueError("Budget template is missing startDate")
        return cls(
            id=int(data["id"]),
            amount_limit=int(data["amountLimit"]),
            recurrence=Recurrence.parse(data.get("recurrence")),
            start_date=start_date,
            account_id=data.get("accountId"),
            category_id=data.get("categoryId"),
            end_date=_parse_date(data.get("endDate")),
            name=data.get("name"),
            note=data.get("note"),
            active=data.get("active", True),
            last_executed_at=_parse_datetime(data.get("lastExecutedAt")),
        )


@dataclass
class TransactionTemplate:
    """User-defined rule for a recurring (optionally installment) transaction."""

    id: int
    name: str
    type: TransactionType
    amount: int
    account_id: int
    category_id: int
    recurrence: Recurrence
    start_date: date
    destination_account_id: int | None = None
    end_date: date | None = None
    installment_count: int | None = None
    installment_current: int = 0
    note: str | None = None
    last_executed_at: datetime | None = None

    def __post_init__(self) -> None:
        self.type = TransactionType(self.type)
        self.recurrence = Recurrence.parse(self.recurrence)

    @property
    def installments_remaining(self) -> bool:
        """True while an installment plan still has payments left."""
        if self.installment_count is None:
            return True
        return self.installment_current < self.installment_count

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionTemplate:
        start_date = _parse_date(data["startDate"])
        if start_date is None:
            raise ValueError("Transaction template is missing startDate")
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            type=TransactionType(data["type"]),
            amount=int(data["amount"]),
            account_id=int(data["accountId"]),
            category_id=int(data["categoryId"]),
            recurrence=Recurrence.parse(data.get("recurrence")),
            start_date=start_date,
            destination_account_id=data.get("destinationAccountId"),
            end_date=_parse_date(data.get("endDate")),
            installment_count=data.get("installmentCount"),
            installment_current=int(data.get("installmentCurrent") or 0),
            note=data.get("note"),
            last_executed_at=_parse_datetime(data.get("lastExecutedAt")),
        )


@dataclass
class CreateBudgetInput:
    """Payload for creating a budget from a template."""

    template_id: int
    period_start: datetime
    period_end: datetime
    amount_limit: int
    account_id: int | None = None
    category_id: int | None = None
    name: str | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "templateId": self.template_id,
            "accountId": self.account_id,
            "categoryId": self.category_id,
            "periodStart": _isoformat(self.period_start),
            "periodEnd": _isoformat(self.period_end),
            "amountLimit": self.amount_limit,
            "name": self.name,
            "note": self.note,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass
class Budget:
    """A concrete budget for one period."""

    id: int
    template_id: int | None
    period_start: datetime
    period_end: datetime
    amount_limit: int
    account_id: int | None = None
    category_id: int | None = None
    name: str | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Budget:
        return cls(
            id=int(data["id"]),
            template_id=data.get("templateId"),
            period_start=datetime.fromisoformat(data["periodStart"]),
            period_end=datetime.fromisoformat(data["periodEnd"]),
            amount_limit=int(data["amountLimit"]),
            account_id=data.get("accountId"),
            category_id=data.get("categoryId"),
            name=data.get("name"),
            note=data.get("note"),
        )


@dataclass
class CreateTransactionInput:
    """Payload for creating a transaction from a template."""

    template_id: int
    type: TransactionType
    amount: int
    account_id: int
    category_id: int
    date: datetime
    due_date: date | None = None
    destination_account_id: int | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "templateId": self.template_id,
            "type": self.type.value,
            "amount": self.amount,
            "accountId": self.account_id,
            "categoryId": self.category_id,
            "destinationAccountId": self.destination_account_id,
            "date": _isoformat(self.date),
            "dueDate": _isoformat(self.due_date),
            "note": self.note,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass
class Transaction:
    """A single generated transaction."""

    id: int
    type: TransactionType
    amount: int
    account_id: int
    category_id: int
    date: datetime
    template_id: int | None = None
    due_date: date | None = None
    destination_account_id: int | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        return cls(
            id=int(data["id"]),
            type=TransactionType(data["type"]),
            amount=int(data["amount"]),
            account_id=int(data["accountId"]),
            category_id=int(data["categoryId"]),
            date=datetime.fromisoformat(data["date"]),
            template_id=data.get("templateId"),
            due_date=_parse_date(data.get("dueDate")),
            destination_account_id=data.get("destinationAccountId"),
            note=data.get("note"),
        )
