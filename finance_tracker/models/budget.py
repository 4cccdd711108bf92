"""
Budget, Category and User Settings Models

These are read-side collaborators of the ledger: budgets are compared
against expense totals per category, categories label transactions and
user settings pick the day a budget cycle starts on. None of them touch
account balances.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CategoryType(str, Enum):
    """Whether a category labels money in or money out."""
    INCOME = "income"
    EXPENSE = "expense"


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"


class BudgetCreate(BaseModel):
    """Payload for a category spending limit."""
    model_config = ConfigDict(str_strip_whitespace=True)

    category_name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Category the limit applies to"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        decimal_places=2,
        description="Spending limit per cycle"
    )


class Budget(BudgetCreate):
    """A persisted budget. One per (owner, category_name)."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class BudgetPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    category_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)

    @field_validator('category_name', 'amount', mode='before')
    @classmethod
    def reject_clearing(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Field cannot be cleared")
        return v


class Category(BaseModel):
    """
    A transaction category.

    Default categories have no id and no owner; custom ones are stored
    per user.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[UUID] = None
    owner_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    category_type: CategoryType
    color: Optional[str] = Field(default=None, max_length=20)
    icon: Optional[str] = Field(default=None, max_length=50)
    created_at: Optional[datetime] = None

    @property
    def is_default(self) -> bool:
        return self.id is None


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(name="Salary", category_type=CategoryType.INCOME, color="#10B981", icon="Wallet"),
    Category(name="Freelance", category_type=CategoryType.INCOME, color="#34D399", icon="Laptop"),
    Category(name="Housing", category_type=CategoryType.EXPENSE, color="#F87171", icon="Home"),
    Category(name="Food", category_type=CategoryType.EXPENSE, color="#FBBF24", icon="Utensils"),
    Category(name="Transportation", category_type=CategoryType.EXPENSE, color="#60A5FA", icon="Car"),
    Category(name="Utilities", category_type=CategoryType.EXPENSE, color="#A78BFA", icon="Zap"),
    Category(name="Entertainment", category_type=CategoryType.EXPENSE, color="#F472B6", icon="Film"),
    Category(name="Health", category_type=CategoryType.EXPENSE, color="#EF4444", icon="Heart"),
    Category(name="Shopping", category_type=CategoryType.EXPENSE, color="#F59E0B", icon="ShoppingBag"),
)


class UserSettings(BaseModel):
    """
    Per-user preferences.

    A user who never saved settings reads as these defaults.
    """

    owner_id: str = Field(..., min_length=1)
    cycle_start_day: int = Field(
        default=1,
        ge=1,
        le=31,
        description="Day of month a budget cycle starts on"
    )
    currency: str = Field(default="USD ($)", max_length=20)
    language: str = Field(default="English (US)", max_length=50)
    theme: Theme = Theme.DARK


class UserSettingsPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cycle_start_day: Optional[int] = Field(default=None, ge=1, le=31)
    currency: Optional[str] = Field(default=None, max_length=20)
    language: Optional[str] = Field(default=None, max_length=50)
    theme: Optional[Theme] = None
