"""
Abstract Storage Interface

We define an abstract interface for storage operations.
This allows us to:
1. Swap SQLite for another database later
2. Use throwaway databases for testing
3. Keep ledger logic decoupled from storage implementation

The stores are simple keyed-record stores: no balance logic lives here.
The ledger engine is the only writer of Account.balance, and it writes
through a LedgerUnitOfWork so the transaction record and every touched
balance commit together.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from finance_tracker.models.account import Account, AccountPatch
from finance_tracker.models.audit import AuditEvent
from finance_tracker.models.budget import (
    Budget,
    BudgetPatch,
    Category,
    UserSettings,
    UserSettingsPatch,
)
from finance_tracker.models.transaction import Transaction


class LedgerUnitOfWork(ABC):
    """
    One atomic read-compute-write scope.

    Everything written through a unit of work commits when the scope exits
    normally and is rolled back when it exits with an exception.
    """

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Read a transaction inside the scope."""
        pass

    @abstractmethod
    async def get_accounts(self, account_ids: list[UUID]) -> dict[UUID, Account]:
        """
        Read several accounts in one pass.

        Returns:
            Mapping of id to account; ids that do not resolve are absent
        """
        pass

    @abstractmethod
    async def save_balance(self, account: Account, balance: Decimal) -> None:
        """
        Write a new balance for an account read in this scope.

        Raises:
            WriteConflictError: If the account changed since it was read
        """
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> None:
        """Replace the stored fields of an existing transaction."""
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> None:
        pass


class LedgerStorageInterface(ABC):
    """Factory for atomic ledger scopes."""

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[LedgerUnitOfWork]:
        """
        Open an atomic scope.

        Usage:
            async with storage.unit_of_work() as uow:
                accounts = await uow.get_accounts([...])
                await uow.save_balance(account, new_balance)
                await uow.insert_transaction(tx)

        Raises:
            WriteConflictError: If the scope could not be opened or
                committed because of a concurrent writer
        """
        pass


class AccountStorageInterface(ABC):
    """
    Abstract interface for account storage.

    Note there is no way to set a balance here.
    """

    @abstractmethod
    async def create_account(self, account: Account) -> Account:
        """
        Persist a new account.

        Raises:
            DuplicateError: If the id already exists
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        """
        Apply a metadata patch.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """
        Delete an account.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    async def list_accounts(self, owner_id: str) -> list[Account]:
        """All accounts of a user, oldest first."""
        pass

    @abstractmethod
    async def count_references(self, account_id: UUID) -> int:
        """Number of transactions naming the account as source or destination."""
        pass


class TransactionStorageInterface(ABC):
    """Read access to transactions. Writes go through LedgerUnitOfWork."""

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        List a user's transactions, newest first.

        Args:
            owner_id: User whose transactions to list
            date_from: Only transactions on or after this moment
            date_to: Only transactions on or before this moment
            account_id: Only transactions touching this account
            limit: Maximum number of results (None for all)
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def list_all_transactions(self, owner_id: str) -> list[Transaction]:
        """Every transaction of a user, oldest first."""
        pass


class BudgetStorageInterface(ABC):

    @abstractmethod
    async def save_budget(self, budget: Budget) -> Budget:
        """
        Raises:
            DuplicateError: If the owner already has a budget for the category
        """
        pass

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def update_budget(self, budget_id: UUID, patch: BudgetPatch) -> Budget:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budgets(self, owner_id: str) -> list[Budget]:
        """A user's budgets ordered by category name."""
        pass


class CategoryStorageInterface(ABC):
    """Custom categories only; defaults live in code."""

    @abstractmethod
    async def add_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def delete_category(self, category_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_categories(self, owner_id: str) -> list[Category]:
        pass


class SettingsStorageInterface(ABC):

    @abstractmethod
    async def get_settings(self, owner_id: str) -> Optional[UserSettings]:
        """Stored settings, or None if the user never saved any."""
        pass

    @abstractmethod
    async def update_settings(self, owner_id: str, patch: UserSettingsPatch) -> UserSettings:
        """Merge a patch into the stored settings, creating them if needed."""
        pass


class DataManagementInterface(ABC):

    @abstractmethod
    async def purge_owner(self, owner_id: str) -> dict[str, int]:
        """
        Delete every record of a user in one atomic unit.

        Returns:
            Number of deleted rows per table
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one user action in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one entity in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class WriteConflictError(StorageError):
    """A concurrent writer changed a record read in the current unit of work."""
    pass
