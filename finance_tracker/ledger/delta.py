"""
Balance Delta Rule

Maps a transaction to the signed balance change it causes on each account
it touches:

    income:   source += amount
    expense:  source -= amount
    transfer: source -= amount + fee, destination += amount

The fee is never credited anywhere. Reversal is the exact negation, so a
create followed by a delete always nets to zero (Decimal arithmetic, no
rounding).

These are pure functions over the balance fields of a transaction; all
reads and writes happen in the engine.
"""

from decimal import Decimal
from typing import Iterable, Mapping
from uuid import UUID

from finance_tracker.models.transaction import Transaction, TransactionType


def balance_effects(tx: Transaction) -> dict[UUID, Decimal]:
    """Signed change per account caused by applying `tx`."""
    effects: dict[UUID, Decimal] = {}

    if tx.type == TransactionType.INCOME:
        effects[tx.account_id] = tx.amount
    elif tx.type == TransactionType.EXPENSE:
        effects[tx.account_id] = -tx.amount
    elif tx.type == TransactionType.TRANSFER:
        if tx.to_account_id is None:
            raise ValueError("Transfer without destination has no defined effect")
        effects[tx.account_id] = -(tx.amount + tx.transfer_fee)
        # Source == destination is rejected upstream; summing keeps this total anyway
        effects[tx.to_account_id] = effects.get(tx.to_account_id, Decimal("0")) + tx.amount
    else:
        raise ValueError(f"Unknown transaction type: {tx.type}")

    return effects


def reversal_effects(tx: Transaction) -> dict[UUID, Decimal]:
    """Signed change per account that undoes `tx`."""
    return {account_id: -delta for account_id, delta in balance_effects(tx).items()}


def affects_balance(old: Transaction, new: Transaction) -> bool:
    """True if moving from `old` to `new` needs a balance recomputation."""
    return old.balance_fields() != new.balance_fields()


def touched_accounts(*states: Transaction) -> list[UUID]:
    """Distinct account ids referenced by any of `states`, in first-seen order."""
    seen: list[UUID] = []
    for state in states:
        for account_id in state.referenced_accounts():
            if account_id not in seen:
                seen.append(account_id)
    return seen


def apply_effects(
    balances: dict[UUID, Decimal],
    effects: Mapping[UUID, Decimal],
    skip: Iterable[UUID] = (),
) -> None:
    """Add `effects` onto `balances` in place, ignoring accounts in `skip`."""
    skipped = set(skip)
    for account_id, delta in effects.items():
        if account_id in skipped:
            continue
        balances[account_id] = balances[account_id] + delta
