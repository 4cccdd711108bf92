"""
Data Models Package

This package contains all Pydantic models used in the Finance Tracker.
All data flowing through the system must conform to these schemas.
"""

from finance_tracker.models.account import (
    Account,
    AccountCreate,
    AccountPatch,
    AccountType,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_tracker.models.budget import (
    DEFAULT_CATEGORIES,
    Budget,
    BudgetCreate,
    BudgetPatch,
    Category,
    CategoryType,
    Theme,
    UserSettings,
    UserSettingsPatch,
)
from finance_tracker.models.report import (
    BalanceDrift,
    BudgetStatus,
    CashFlowSummary,
    CycleRange,
)
from finance_tracker.models.transaction import (
    BALANCE_FIELDS,
    Transaction,
    TransactionCreate,
    TransactionPatch,
    TransactionType,
    ValidationIssue,
)

__all__ = [
    # Account models
    "Account",
    "AccountCreate",
    "AccountPatch",
    "AccountType",
    # Transaction models
    "BALANCE_FIELDS",
    "Transaction",
    "TransactionCreate",
    "TransactionPatch",
    "TransactionType",
    "ValidationIssue",
    # Budget / category / settings models
    "DEFAULT_CATEGORIES",
    "Budget",
    "BudgetCreate",
    "BudgetPatch",
    "Category",
    "CategoryType",
    "Theme",
    "UserSettings",
    "UserSettingsPatch",
    # Report models
    "BalanceDrift",
    "BudgetStatus",
    "CashFlowSummary",
    "CycleRange",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
