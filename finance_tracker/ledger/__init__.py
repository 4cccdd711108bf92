"""
Ledger package.

The delta rule and the error taxonomy are importable on their own; the
engine lives in finance_tracker.ledger.engine since it depends on the
validation and storage layers, which in turn raise ledger errors.
"""

from finance_tracker.ledger.delta import (
    affects_balance,
    apply_effects,
    balance_effects,
    reversal_effects,
    touched_accounts,
)
from finance_tracker.ledger.errors import (
    AccountInUseError,
    AccountNotFoundError,
    ConflictRetryExhaustedError,
    InvalidTransferError,
    LedgerError,
    TransactionNotFoundError,
    TransactionValidationError,
)

__all__ = [
    # Delta rule
    "affects_balance",
    "apply_effects",
    "balance_effects",
    "reversal_effects",
    "touched_accounts",
    # Errors
    "AccountInUseError",
    "AccountNotFoundError",
    "ConflictRetryExhaustedError",
    "InvalidTransferError",
    "LedgerError",
    "TransactionNotFoundError",
    "TransactionValidationError",
]
