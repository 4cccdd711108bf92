"""
Account Models

An account is a named pot of money (checking, savings, a credit card...)
whose balance is a running total of every transaction that references it.

CRITICAL: `balance` is written ONLY by the ledger engine, inside the same
atomic unit as the transaction that changes it. AccountPatch deliberately
has no balance field.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccountType(str, Enum):
    """Supported account types."""
    CHECKING = "Checking"
    SAVINGS = "Savings"
    CREDIT = "Credit"
    INVESTMENT = "Investment"
    CASH = "Cash"
    LOAN = "Loan"


class AccountCreate(BaseModel):
    """Payload for opening a new account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name of the account"
    )
    account_type: AccountType = Field(
        ...,
        description="Kind of account"
    )
    opening_balance: Decimal = Field(
        default=Decimal("0"),
        decimal_places=2,
        description="Balance the account starts with (may be negative, e.g. a loan)"
    )
    bg_gradient: Optional[str] = Field(
        default=None,
        max_length=100,
        description="CSS class or hex code used by the dashboard card"
    )


class AccountPatch(BaseModel):
    """Metadata-only account update. Balance cannot be patched."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    account_type: Optional[AccountType] = None
    bg_gradient: Optional[str] = Field(default=None, max_length=100)

    @field_validator('name', 'account_type', mode='before')
    @classmethod
    def reject_clearing(cls, v: Any) -> Any:
        """Name and type can be changed, not removed."""
        if v is None:
            raise ValueError("Field cannot be cleared")
        return v


class Account(BaseModel):
    """
    A persisted account.

    `opening_balance` is kept alongside `balance` so the ledger invariant
    (balance == opening_balance + sum of transaction effects) can be
    re-checked at any time.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique account ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="User who owns the account"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100
    )
    account_type: AccountType
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance (signed)"
    )
    opening_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance at creation time"
    )
    bg_gradient: Optional[str] = None

    # Optimistic concurrency counter, bumped on every balance write
    version: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def open(cls, owner_id: str, payload: AccountCreate) -> "Account":
        """Build a new account; its balance starts at the opening balance."""
        return cls(
            owner_id=owner_id,
            name=payload.name,
            account_type=payload.account_type,
            balance=payload.opening_balance,
            opening_balance=payload.opening_balance,
            bg_gradient=payload.bg_gradient,
        )
