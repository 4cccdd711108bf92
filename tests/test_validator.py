"""Tests for TransactionValidator."""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from finance_tracker.ledger.errors import InvalidTransferError, TransactionValidationError
from finance_tracker.models.transaction import (
    Transaction,
    TransactionCreate,
    TransactionPatch,
    TransactionType,
)
from finance_tracker.validation import TransactionValidator


@pytest.fixture
def validator():
    return TransactionValidator()


@pytest.fixture
def persisted():
    return Transaction(
        owner_id="user-1",
        amount=Decimal("100"),
        type=TransactionType.TRANSFER,
        account_id=uuid4(),
        to_account_id=uuid4(),
        transfer_fee=Decimal("2"),
        date=datetime(2024, 3, 10),
        notes="original",
    )


class TestBuildCreate:

    def test_from_mapping(self, validator):
        account_id = uuid4()
        tx = validator.build_create("user-1", {
            "amount": "42.10",
            "type": "income",
            "account_id": str(account_id),
            "date": "2024-03-10",
        })

        assert tx.owner_id == "user-1"
        assert tx.amount == Decimal("42.10")
        assert tx.account_id == account_id
        assert tx.created_at is not None

    def test_from_model(self, validator):
        payload = TransactionCreate(
            amount=Decimal("1"),
            type=TransactionType.EXPENSE,
            account_id=uuid4(),
            date=datetime(2024, 3, 10),
        )
        assert validator.build_create("user-1", payload).amount == Decimal("1")

    def test_issues_carry_field_and_type(self, validator):
        with pytest.raises(TransactionValidationError) as exc_info:
            validator.build_create("user-1", {
                "amount": "-1",
                "type": "refund",
                "account_id": uuid4(),
                "date": "2024-03-10",
            })

        issues = {issue.field: issue for issue in exc_info.value.issues}
        assert set(issues) == {"amount", "type"}
        assert issues["amount"].issue_type == "greater_than_equal"

    def test_empty_owner_rejected(self, validator):
        with pytest.raises(TransactionValidationError):
            validator.build_create("", {
                "amount": "1",
                "type": "expense",
                "account_id": uuid4(),
                "date": "2024-03-10",
            })


class TestBuildFinalState:

    def test_overlay_keeps_unset_fields(self, validator, persisted):
        final = validator.build_final_state(persisted, {"amount": "150"})

        assert final.id == persisted.id
        assert final.amount == Decimal("150")
        assert final.to_account_id == persisted.to_account_id
        assert final.notes == "original"
        assert final.created_at == persisted.created_at
        assert final.updated_at >= persisted.updated_at

    def test_explicit_none_clears_optional_field(self, validator, persisted):
        final = validator.build_final_state(persisted, TransactionPatch(notes=None))
        assert final.notes is None

    def test_explicit_none_on_required_field(self, validator, persisted):
        with pytest.raises(TransactionValidationError) as exc_info:
            validator.build_final_state(persisted, {"amount": None})
        assert exc_info.value.issues[0].field == "amount"

    def test_unknown_patch_field(self, validator, persisted):
        with pytest.raises(TransactionValidationError) as exc_info:
            validator.build_final_state(persisted, {"balance": "1"})
        assert exc_info.value.issues[0].issue_type == "extra_forbidden"

    def test_type_change_normalizes(self, validator, persisted):
        final = validator.build_final_state(persisted, {"type": "expense"})
        assert final.to_account_id is None
        assert final.transfer_fee == Decimal("0")

    def test_transfer_onto_itself(self, validator, persisted):
        with pytest.raises(InvalidTransferError):
            validator.build_final_state(persisted, {"to_account_id": persisted.account_id})

    def test_clearing_destination_of_transfer(self, validator, persisted):
        with pytest.raises(InvalidTransferError):
            validator.build_final_state(persisted, {"to_account_id": None})
