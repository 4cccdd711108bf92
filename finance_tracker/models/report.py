"""
Read-side result models.

Produced by the query layer and the ledger reconciliation check. Pure
data: nothing here is ever persisted.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class CycleRange(BaseModel):
    """A budget cycle window. Both ends are inclusive."""

    start: datetime
    end: datetime

    @model_validator(mode='after')
    def validate_order(self) -> 'CycleRange':
        if self.end < self.start:
            raise ValueError("Cycle end cannot be before start")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class BudgetStatus(BaseModel):
    """How much of a category budget the current cycle has used."""

    category_name: str
    limit: Decimal
    spent: Decimal = Decimal("0")

    @property
    def remaining(self) -> Decimal:
        return self.limit - self.spent

    @property
    def is_over_budget(self) -> bool:
        return self.spent > self.limit


class CashFlowSummary(BaseModel):
    """Income against expenses inside one cycle. Transfers are excluded."""

    cycle: CycleRange
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class BalanceDrift(BaseModel):
    """An account whose stored balance disagrees with its transaction history."""

    account_id: UUID
    account_name: str
    stored_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored_balance - self.expected_balance
