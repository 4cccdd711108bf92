"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking
- Required field presence
- Format validation (amount >= 0, two decimal places, parseable date)
- Done by the pydantic models; failures become ValidationIssues

STAGE 2 - LEDGER RULES:
- A transfer names a destination
- A transfer's source and destination differ
- A non-transfer carries no destination and no fee

Account existence and ownership are NOT checked here: they need the
accounts read inside the ledger's atomic unit.

IMPORTANT: Validation NEVER silently fixes a payload the user got wrong.
The only rewrite is normalization of fields that have no meaning for the
transaction type.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Union

import structlog
from pydantic import ValidationError

from finance_tracker.ledger.errors import InvalidTransferError, TransactionValidationError
from finance_tracker.models.transaction import (
    Transaction,
    TransactionCreate,
    TransactionPatch,
    TransactionType,
    ValidationIssue,
)

logger = structlog.get_logger(__name__)


CreatePayload = Union[TransactionCreate, Mapping[str, Any]]
PatchPayload = Union[TransactionPatch, Mapping[str, Any]]


def issues_from_error(error: ValidationError) -> list[ValidationIssue]:
    """Flatten a pydantic ValidationError into ValidationIssues."""
    issues = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "payload"
        issues.append(ValidationIssue(
            field=location,
            issue_type=detail.get("type", "invalid_value"),
            message=detail.get("msg", "Invalid value"),
        ))
    return issues


class TransactionValidator:
    """
    Turns raw payloads into fully valid Transaction states.

    Stage 1: Schema validation (pydantic)
    Stage 2: Ledger rules (transfer shape)
    """

    def build_create(self, owner_id: str, payload: CreatePayload) -> Transaction:
        """
        Validate a create payload and build the transaction to insert.

        Raises:
            TransactionValidationError: Schema failures, all of them
            InvalidTransferError: Transfer without destination or to itself
        """
        if isinstance(payload, TransactionCreate):
            data = payload.model_dump()
        else:
            try:
                data = TransactionCreate.model_validate(dict(payload)).model_dump()
            except ValidationError as e:
                raise TransactionValidationError(issues_from_error(e))

        try:
            transaction = Transaction(owner_id=owner_id, **data)
        except ValidationError as e:
            raise TransactionValidationError(issues_from_error(e))

        self.check_transfer(transaction)
        return self.normalize(transaction)

    def build_final_state(self, persisted: Transaction, patch: PatchPayload) -> Transaction:
        """
        Overlay a patch on the persisted state and validate the result.

        Only fields the patch explicitly sets are applied; an explicit None
        clears an optional field (and fails for a required one).

        Raises:
            TransactionValidationError: Patch or final state is malformed
            InvalidTransferError: Final state is a malformed transfer
        """
        if not isinstance(patch, TransactionPatch):
            try:
                patch = TransactionPatch.model_validate(dict(patch))
            except ValidationError as e:
                raise TransactionValidationError(issues_from_error(e))

        data = persisted.model_dump()
        data.update(patch.changes())
        data["updated_at"] = datetime.utcnow()

        try:
            final = Transaction.model_validate(data)
        except ValidationError as e:
            raise TransactionValidationError(issues_from_error(e))

        self.check_transfer(final)
        return self.normalize(final)

    def check_transfer(self, transaction: Transaction) -> None:
        """
        Stage 2 transfer rules.

        Raises:
            InvalidTransferError: Missing destination, or source == destination
        """
        if transaction.type != TransactionType.TRANSFER:
            return

        if transaction.to_account_id is None:
            raise InvalidTransferError("Transfer requires a destination account")

        if transaction.to_account_id == transaction.account_id:
            raise InvalidTransferError("Transfer source and destination must be different accounts")

    def normalize(self, transaction: Transaction) -> Transaction:
        """Drop destination and fee from non-transfers."""
        if transaction.type == TransactionType.TRANSFER:
            return transaction

        if transaction.to_account_id is None and transaction.transfer_fee == 0:
            return transaction

        logger.debug(
            "transfer_fields_dropped",
            transaction_id=str(transaction.id),
            transaction_type=transaction.type.value,
        )
        return transaction.model_copy(
            update={"to_account_id": None, "transfer_fee": Decimal("0")}
        )
