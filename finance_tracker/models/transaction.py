"""
Transaction Models

These models define the strict schemas for every money movement.

A transaction is one of:
- income:   money arriving in `account_id`
- expense:  money leaving `account_id`
- transfer: money moving from `account_id` to `to_account_id`, optionally
            costing a `transfer_fee` that is lost (charged to the source only)

Amounts are always positive magnitudes; the direction comes from the type.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Fields whose change requires balance recomputation
BALANCE_FIELDS = ("amount", "type", "account_id", "to_account_id", "transfer_fee")


class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


def coerce_timestamp(value: Any) -> Any:
    """
    Accept a calendar date, a datetime or an ISO-8601 string and return a
    datetime. A bare date becomes midnight of that day.

    Timezone-aware values are converted to naive UTC so every stored
    timestamp compares with every other.

    Anything else is passed through so pydantic reports the type error.
    """
    if isinstance(value, datetime):
        return _naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Date cannot be empty")
        try:
            return _naive_utc(datetime.fromisoformat(text))
        except ValueError:
            pass
        try:
            return datetime.combine(date.fromisoformat(text), time.min)
        except ValueError:
            raise ValueError(f"Malformed date: {value!r}")
    return value


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class TransactionCreate(BaseModel):
    """
    Payload for recording a new transaction.

    Cross-field rules (transfer destination, distinct accounts) live in
    TransactionValidator so they surface as typed ledger errors.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Positive magnitude of the movement"
    )
    type: TransactionType
    account_id: UUID = Field(
        ...,
        description="Source account (the only account for income/expense)"
    )
    to_account_id: Optional[UUID] = Field(
        default=None,
        description="Destination account, transfers only"
    )
    transfer_fee: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        decimal_places=2,
        description="Cost of the transfer, deducted from the source only"
    )
    date: datetime = Field(
        ...,
        description="When the movement happened (user supplied)"
    )
    description: Optional[str] = Field(default=None, max_length=200)
    category_id: Optional[str] = None
    category_name: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('date', mode='before')
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        return coerce_timestamp(v)


class TransactionPatch(BaseModel):
    """
    Partial update. Only the fields explicitly set are applied.

    Setting any of BALANCE_FIELDS to a different value triggers
    revert-then-apply in the ledger engine; anything else is metadata only.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    type: Optional[TransactionType] = None
    account_id: Optional[UUID] = None
    to_account_id: Optional[UUID] = None
    transfer_fee: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=200)
    category_id: Optional[str] = None
    category_name: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('date', mode='before')
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        if v is None:
            return v
        return coerce_timestamp(v)

    def changes(self) -> dict[str, Any]:
        """Fields the caller explicitly set."""
        return self.model_dump(exclude_unset=True)


class Transaction(TransactionCreate):
    """
    A persisted transaction.

    Never mutated directly: created, edited and deleted only through the
    ledger engine, which keeps account balances in step.
    """

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="User who recorded the transaction"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Server write timestamp"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last update timestamp"
    )

    @property
    def is_transfer(self) -> bool:
        return self.type == TransactionType.TRANSFER

    def balance_fields(self) -> tuple:
        """The values that determine this transaction's balance effect."""
        return tuple(getattr(self, name) for name in BALANCE_FIELDS)

    def referenced_accounts(self) -> list[UUID]:
        """Accounts this transaction touches, source first."""
        if self.is_transfer and self.to_account_id is not None:
            return [self.account_id, self.to_account_id]
        return [self.account_id]


class ValidationIssue(BaseModel):
    """A single validation issue found on a transaction payload."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'same_account')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
