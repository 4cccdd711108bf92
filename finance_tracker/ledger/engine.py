"""
Ledger Engine

The single writer of account balances. Every transaction mutation runs as
one atomic unit:

    CREATE:  validate -> read accounts -> apply effect -> insert + write balances
    UPDATE:  re-read persisted -> overlay patch -> (metadata only | revert old
             effect, apply new effect) -> update + write balances
    DELETE:  re-read persisted -> revert effect -> delete + write balances

CRITICAL: Within one unit, every touched account is read before any write,
and reversal and forward effects are computed on the same in-memory
balances. Writes are conditional on the version read, so a concurrent
writer makes the unit roll back and retry instead of applying a stale
balance.

Audit events are written after commit. A failed audit write never undoes a
committed ledger change.
"""

from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import LedgerSettings, MissingAccountPolicy, get_settings
from finance_tracker.ledger.delta import (
    affects_balance,
    apply_effects,
    balance_effects,
    reversal_effects,
    touched_accounts,
)
from finance_tracker.ledger.errors import (
    AccountNotFoundError,
    ConflictRetryExhaustedError,
    LedgerError,
    TransactionNotFoundError,
)
from finance_tracker.models.account import Account
from finance_tracker.models.report import BalanceDrift
from finance_tracker.models.transaction import Transaction
from finance_tracker.services.storage import (
    AccountStorageInterface,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    StorageError,
    TransactionStorageInterface,
    WriteConflictError,
)
from finance_tracker.validation import TransactionValidator
from finance_tracker.validation.validator import CreatePayload, PatchPayload

logger = structlog.get_logger(__name__)

BalanceChanges = dict[UUID, tuple]

# Fields compared to describe an update; timestamps are not user edits
_TRACKED_FIELDS = (
    "amount",
    "type",
    "account_id",
    "to_account_id",
    "transfer_fee",
    "date",
    "description",
    "category_id",
    "category_name",
    "notes",
)


def changed_fields(before: Transaction, after: Transaction) -> list[str]:
    return [name for name in _TRACKED_FIELDS if getattr(before, name) != getattr(after, name)]


class LedgerEngine:
    """
    Keeps account balances consistent with the transaction history.

    Usage:
        engine = LedgerEngine(ledger_storage, account_storage, transaction_storage)
        tx = await engine.create_transaction("user-1", {...})
        tx = await engine.update_transaction("user-1", tx, {"amount": "300"})
        await engine.delete_transaction("user-1", tx)
    """

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        account_storage: AccountStorageInterface,
        transaction_storage: TransactionStorageInterface,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = ledger_storage
        self._accounts = account_storage
        self._transactions = transaction_storage
        self._settings = settings or get_settings().ledger
        self._validator = validator or TransactionValidator()
        self._audit = audit_logger or AuditLogger()

    @property
    def missing_account_policy(self) -> MissingAccountPolicy:
        return self._settings.missing_account_policy

    # ===== PUBLIC OPERATIONS =====

    async def create_transaction(
        self,
        owner_id: str,
        payload: CreatePayload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a new transaction and apply its balance effect.

        Raises:
            TransactionValidationError: Malformed payload
            InvalidTransferError: Transfer without destination or to itself
            AccountNotFoundError: A referenced account is missing or not owned
            ConflictRetryExhaustedError: Concurrent writers kept winning
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            transaction = self._validator.build_create(owner_id, payload)

            async def unit(uow: LedgerUnitOfWork) -> BalanceChanges:
                referenced = transaction.referenced_accounts()
                accounts = await self._load_accounts(uow, owner_id, referenced)
                missing = [a for a in referenced if a not in accounts]
                if missing:
                    raise AccountNotFoundError(missing)

                balances = {account_id: account.balance for account_id, account in accounts.items()}
                apply_effects(balances, balance_effects(transaction))

                await uow.insert_transaction(transaction)
                return await self._write_balances(uow, accounts, balances)

            changes = await self._run_atomic("create", owner_id, correlation_id, unit)

        except (LedgerError, StorageError) as e:
            await self._record_failure("create", e, owner_id, None, correlation_id)
            raise

        logger.info(
            "transaction_created",
            transaction_id=str(transaction.id),
            owner_id=owner_id,
            transaction_type=transaction.type.value,
            amount=str(transaction.amount),
            accounts_written=len(changes),
        )
        await self._audit.log_transaction_created(
            transaction_id=transaction.id,
            owner_id=owner_id,
            transaction_type=transaction.type.value,
            amount=transaction.amount,
            balance_changes=changes,
            correlation_id=correlation_id,
        )
        return transaction

    async def update_transaction(
        self,
        owner_id: str,
        old_transaction: Transaction,
        patch: PatchPayload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Apply a patch to a transaction, recomputing balances if needed.

        The persisted state is re-read inside the atomic unit and is the
        base the patch is applied to; `old_transaction` only names the
        record. If no balance field changes, no account is read or written.

        Raises:
            As create_transaction, plus TransactionNotFoundError
        """
        correlation_id = correlation_id or create_correlation_id()

        async def unit(uow: LedgerUnitOfWork) -> tuple[Transaction, Transaction, BalanceChanges, list[UUID]]:
            persisted = await self._load_persisted(uow, owner_id, old_transaction)
            final = self._validator.build_final_state(persisted, patch)

            if not affects_balance(persisted, final):
                await uow.update_transaction(final)
                return persisted, final, {}, []

            # Read every touched account before any write
            accounts = await self._load_accounts(uow, owner_id, touched_accounts(persisted, final))

            missing_final = [a for a in final.referenced_accounts() if a not in accounts]
            if missing_final:
                raise AccountNotFoundError(missing_final)

            missing_old = [a for a in persisted.referenced_accounts() if a not in accounts]
            skipped = self._resolve_missing(missing_old, persisted.id, "update")

            balances = {account_id: account.balance for account_id, account in accounts.items()}
            apply_effects(balances, reversal_effects(persisted), skip=skipped)
            apply_effects(balances, balance_effects(final))

            await uow.update_transaction(final)
            changes = await self._write_balances(uow, accounts, balances)
            return persisted, final, changes, skipped

        try:
            persisted, final, changes, skipped = await self._run_atomic(
                "update", owner_id, correlation_id, unit
            )
        except (LedgerError, StorageError) as e:
            await self._record_failure("update", e, owner_id, old_transaction.id, correlation_id)
            raise

        fields = changed_fields(persisted, final)
        logger.info(
            "transaction_updated",
            transaction_id=str(final.id),
            owner_id=owner_id,
            fields=fields,
            metadata_only=not affects_balance(persisted, final),
            accounts_written=len(changes),
        )
        if skipped:
            await self._audit.log_balance_update_skipped(
                transaction_id=final.id,
                owner_id=owner_id,
                account_ids=skipped,
                operation="update",
                correlation_id=correlation_id,
            )
        await self._audit.log_transaction_updated(
            transaction_id=final.id,
            owner_id=owner_id,
            fields=fields,
            balance_changes=changes,
            correlation_id=correlation_id,
        )
        return final

    async def delete_transaction(
        self,
        owner_id: str,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a transaction and revert its balance effect.

        Raises:
            TransactionNotFoundError: No such transaction for this owner
            AccountNotFoundError: A referenced account is gone (abort policy)
            ConflictRetryExhaustedError: Concurrent writers kept winning
        """
        correlation_id = correlation_id or create_correlation_id()

        async def unit(uow: LedgerUnitOfWork) -> tuple[BalanceChanges, list[UUID]]:
            persisted = await self._load_persisted(uow, owner_id, transaction)

            referenced = persisted.referenced_accounts()
            accounts = await self._load_accounts(uow, owner_id, referenced)
            missing = [a for a in referenced if a not in accounts]
            skipped = self._resolve_missing(missing, persisted.id, "delete")

            balances = {account_id: account.balance for account_id, account in accounts.items()}
            apply_effects(balances, reversal_effects(persisted), skip=skipped)

            await uow.delete_transaction(persisted.id)
            return await self._write_balances(uow, accounts, balances), skipped

        try:
            changes, skipped = await self._run_atomic("delete", owner_id, correlation_id, unit)
        except (LedgerError, StorageError) as e:
            await self._record_failure("delete", e, owner_id, transaction.id, correlation_id)
            raise

        logger.info(
            "transaction_deleted",
            transaction_id=str(transaction.id),
            owner_id=owner_id,
            accounts_written=len(changes),
        )
        if skipped:
            await self._audit.log_balance_update_skipped(
                transaction_id=transaction.id,
                owner_id=owner_id,
                account_ids=skipped,
                operation="delete",
                correlation_id=correlation_id,
            )
        await self._audit.log_transaction_deleted(
            transaction_id=transaction.id,
            owner_id=owner_id,
            balance_changes=changes,
            correlation_id=correlation_id,
        )

    async def reconcile(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[BalanceDrift]:
        """
        Compare stored balances with opening balance + transaction history.

        Read-only: drift is reported, logged and audited, never corrected.
        The two reads are not one snapshot, so run it when no ledger write
        is in flight for this user.
        """
        correlation_id = correlation_id or create_correlation_id()

        accounts = await self._accounts.list_accounts(owner_id)
        transactions = await self._transactions.list_all_transactions(owner_id)

        expected = {account.id: account.opening_balance for account in accounts}
        for transaction in transactions:
            for account_id, delta in balance_effects(transaction).items():
                if account_id in expected:
                    expected[account_id] += delta

        drifts = [
            BalanceDrift(
                account_id=account.id,
                account_name=account.name,
                stored_balance=account.balance,
                expected_balance=expected[account.id],
            )
            for account in accounts
            if account.balance != expected[account.id]
        ]

        for drift in drifts:
            logger.error(
                "balance_drift_detected",
                account_id=str(drift.account_id),
                owner_id=owner_id,
                stored=str(drift.stored_balance),
                expected=str(drift.expected_balance),
            )
            await self._audit.log_balance_drift(
                account_id=drift.account_id,
                owner_id=owner_id,
                stored=drift.stored_balance,
                expected=drift.expected_balance,
                correlation_id=correlation_id,
            )

        logger.info(
            "ledger_reconciled",
            owner_id=owner_id,
            accounts=len(accounts),
            transactions=len(transactions),
            drifts=len(drifts),
        )
        return drifts

    # ===== ATOMIC UNIT HELPERS =====

    async def _run_atomic(
        self,
        operation: str,
        owner_id: str,
        correlation_id: UUID,
        work: Callable[[LedgerUnitOfWork], Awaitable[Any]],
    ) -> Any:
        """
        Run `work` inside a unit of work, retrying the whole unit on
        WriteConflictError with bounded exponential backoff.
        """
        attempts = self._settings.max_conflict_retries
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_multiplier,
                max=self._settings.retry_wait_max,
            ),
            retry=retry_if_exception_type(WriteConflictError),
        )

        result = None
        try:
            async for attempt in retrying:
                with attempt:
                    async with self._storage.unit_of_work() as uow:
                        result = await work(uow)

                outcome = attempt.retry_state.outcome
                if outcome is not None and outcome.failed and isinstance(outcome.exception(), WriteConflictError):
                    number = attempt.retry_state.attempt_number
                    logger.warning(
                        "ledger_write_conflict",
                        operation=operation,
                        attempt=number,
                        max_attempts=attempts,
                        error=str(outcome.exception()),
                    )
                    await self._audit.log_write_conflict(
                        operation=operation,
                        attempt=number,
                        owner_id=owner_id,
                        correlation_id=correlation_id,
                    )
        except RetryError as e:
            raise ConflictRetryExhaustedError(operation, attempts) from e.last_attempt.exception()

        return result

    async def _load_persisted(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        snapshot: Transaction,
    ) -> Transaction:
        persisted = await uow.get_transaction(snapshot.id)
        if persisted is None or persisted.owner_id != owner_id:
            raise TransactionNotFoundError(snapshot.id)

        if persisted != snapshot:
            logger.warning(
                "stale_transaction_snapshot",
                transaction_id=str(snapshot.id),
                owner_id=owner_id,
            )
        return persisted

    async def _load_accounts(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        account_ids: list[UUID],
    ) -> dict[UUID, Account]:
        """Read accounts in one pass; accounts of other owners read as missing."""
        accounts = await uow.get_accounts(account_ids)
        return {
            account_id: accounts[account_id]
            for account_id in account_ids
            if account_id in accounts and accounts[account_id].owner_id == owner_id
        }

    def _resolve_missing(
        self,
        missing: list[UUID],
        transaction_id: UUID,
        operation: str,
    ) -> list[UUID]:
        """
        Apply the missing-account policy to accounts only the persisted
        state references.

        Returns the accounts whose balance write is skipped.
        """
        if not missing:
            return []

        if self.missing_account_policy == MissingAccountPolicy.ABORT:
            raise AccountNotFoundError(missing)

        logger.warning(
            "balance_update_skipped",
            transaction_id=str(transaction_id),
            operation=operation,
            missing_accounts=[str(a) for a in missing],
        )
        return missing

    async def _write_balances(
        self,
        uow: LedgerUnitOfWork,
        accounts: dict[UUID, Account],
        balances: dict,
    ) -> BalanceChanges:
        """Write only balances that actually changed. Returns (before, after) per account."""
        changes: BalanceChanges = {}
        for account_id, account in accounts.items():
            new_balance = balances[account_id]
            if new_balance == account.balance:
                continue
            await uow.save_balance(account, new_balance)
            changes[account_id] = (account.balance, new_balance)
        return changes

    async def _record_failure(
        self,
        operation: str,
        error: Exception,
        owner_id: str,
        transaction_id: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        logger.warning(
            "ledger_operation_failed",
            operation=operation,
            owner_id=owner_id,
            transaction_id=str(transaction_id) if transaction_id else None,
            error_type=type(error).__name__,
            error=str(error),
        )
        await self._audit.log_operation_failed(
            operation=operation,
            error=error,
            owner_id=owner_id,
            entity_id=transaction_id,
            correlation_id=correlation_id,
        )
