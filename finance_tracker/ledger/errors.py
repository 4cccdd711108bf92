"""
Ledger error taxonomy.

Every ledger error aborts the whole atomic unit: no partial balance
mutation persists. The only exception is the opt-in SKIP missing-account
policy, which is logged and audited rather than raised.
"""

from typing import Iterable, Optional
from uuid import UUID

from finance_tracker.models.transaction import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class AccountNotFoundError(LedgerError):
    """A referenced account does not resolve (or belongs to someone else)."""

    def __init__(self, account_ids: Iterable[UUID]):
        self.account_ids = list(account_ids)
        ids = ", ".join(str(a) for a in self.account_ids)
        super().__init__(f"Account not found: {ids}")


class InvalidTransferError(LedgerError):
    """Transfer without a destination, or with source == destination."""
    pass


class TransactionNotFoundError(LedgerError):
    """The transaction to update or delete does not exist for this owner."""

    def __init__(self, transaction_id: UUID):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class TransactionValidationError(LedgerError):
    """
    Payload failed validation: negative amount, malformed date, missing
    required field...

    Carries every issue found, not just the first.
    """

    def __init__(self, issues: list[ValidationIssue], message: Optional[str] = None):
        self.issues = issues
        if message is None:
            message = "; ".join(f"{i.field}: {i.message}" for i in issues) or "Invalid transaction"
        super().__init__(message)


class ConflictRetryExhaustedError(LedgerError):
    """Concurrent writes could not be serialized within the retry budget."""

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Ledger {operation} gave up after {attempts} conflicting attempt(s)"
        )


class AccountInUseError(LedgerError):
    """Account deletion refused while transactions still reference it."""

    def __init__(self, account_id: UUID, reference_count: int):
        self.account_id = account_id
        self.reference_count = reference_count
        super().__init__(
            f"Account {account_id} is referenced by {reference_count} transaction(s)"
        )
