"""
Main Orchestrator for Finance Tracker

This module ties together all the components and defines the
user-facing flows for:
1. Accounts (open -> edit -> close)
2. Transactions (delegated to the LedgerEngine)
3. Budgets, categories and settings
4. Clearing all of a user's data

DESIGN DECISION: The orchestrator enforces the boundaries:
- Account balances change only through the LedgerEngine
- An account referenced by transactions cannot be deleted
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from typing import Any, Mapping, Optional, Union
from uuid import UUID, uuid4

import structlog

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import Settings, get_settings
from finance_tracker.ledger.engine import LedgerEngine
from finance_tracker.ledger.errors import AccountInUseError, AccountNotFoundError
from finance_tracker.models.account import Account, AccountCreate, AccountPatch
from finance_tracker.models.audit import AuditEventBuilder
from finance_tracker.models.budget import (
    DEFAULT_CATEGORIES,
    Budget,
    BudgetCreate,
    BudgetPatch,
    Category,
    CategoryType,
    UserSettings,
    UserSettingsPatch,
)
from finance_tracker.queries import QueryExecutor
from finance_tracker.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    CategoryStorageInterface,
    DataManagementInterface,
    DuplicateError,
    NotFoundError,
    SettingsStorageInterface,
    SQLiteAccountStorage,
    SQLiteAuditStorage,
    SQLiteBudgetStorage,
    SQLiteCategoryStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    SQLiteSettingsStorage,
    SQLiteTransactionStorage,
)
from finance_tracker.validation import TransactionValidator

logger = structlog.get_logger(__name__)


class AccountService:
    """
    Account lifecycle.

    An account's balance starts at its opening balance and is afterwards
    owned by the LedgerEngine; nothing here writes it.
    """

    def __init__(
        self,
        account_storage: AccountStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = account_storage
        self._audit_logger = audit_logger

    async def open_account(
        self,
        owner_id: str,
        payload: Union[AccountCreate, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()

        if not isinstance(payload, AccountCreate):
            payload = AccountCreate.model_validate(dict(payload))

        account = await self._storage.create_account(Account.open(owner_id, payload))

        logger.info("account_opened", account_id=str(account.id), owner_id=owner_id)
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.account_created(
                account_id=account.id,
                owner_id=owner_id,
                name=account.name,
                opening_balance=account.opening_balance,
                correlation_id=correlation_id,
            ))
        return account

    async def get_account(self, owner_id: str, account_id: UUID) -> Account:
        """
        Raises:
            AccountNotFoundError: No such account for this owner
        """
        account = await self._storage.get_account(account_id)
        if account is None or account.owner_id != owner_id:
            raise AccountNotFoundError([account_id])
        return account

    async def update_account(
        self,
        owner_id: str,
        account_id: UUID,
        patch: Union[AccountPatch, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """Edit name, type or card style. The balance is not editable."""
        correlation_id = correlation_id or create_correlation_id()

        if not isinstance(patch, AccountPatch):
            patch = AccountPatch.model_validate(dict(patch))

        await self.get_account(owner_id, account_id)
        account = await self._storage.update_account(account_id, patch)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.account_updated(
                account_id=account_id,
                owner_id=owner_id,
                fields=sorted(patch.model_dump(exclude_unset=True)),
                correlation_id=correlation_id,
            ))
        return account

    async def delete_account(
        self,
        owner_id: str,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete an account that no transaction references.

        Raises:
            AccountNotFoundError: No such account for this owner
            AccountInUseError: Transactions still reference the account
        """
        correlation_id = correlation_id or create_correlation_id()
        await self.get_account(owner_id, account_id)

        references = await self._storage.count_references(account_id)
        if references:
            raise AccountInUseError(account_id, references)

        if not await self._storage.delete_account(account_id):
            # A transaction or a concurrent delete got in first
            references = await self._storage.count_references(account_id)
            if references:
                raise AccountInUseError(account_id, references)
            raise AccountNotFoundError([account_id])

        logger.info("account_deleted", account_id=str(account_id), owner_id=owner_id)
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.account_deleted(
                account_id=account_id,
                owner_id=owner_id,
                correlation_id=correlation_id,
            ))


class BudgetService:
    """Budgets, custom categories, user settings and data clearing."""

    def __init__(
        self,
        budget_storage: BudgetStorageInterface,
        category_storage: CategoryStorageInterface,
        settings_storage: SettingsStorageInterface,
        data_management: DataManagementInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._budgets = budget_storage
        self._categories = category_storage
        self._settings = settings_storage
        self._data = data_management
        self._audit_logger = audit_logger

    # ===== BUDGETS =====

    async def save_budget(
        self,
        owner_id: str,
        payload: Union[BudgetCreate, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Raises:
            DuplicateError: The user already has a budget for this category
        """
        correlation_id = correlation_id or create_correlation_id()

        if not isinstance(payload, BudgetCreate):
            payload = BudgetCreate.model_validate(dict(payload))

        budget = await self._budgets.save_budget(Budget(owner_id=owner_id, **payload.model_dump()))

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.budget_saved(
                budget_id=budget.id,
                owner_id=owner_id,
                category_name=budget.category_name,
                amount=budget.amount,
                correlation_id=correlation_id,
            ))
        return budget

    async def update_budget(
        self,
        owner_id: str,
        budget_id: UUID,
        patch: Union[BudgetPatch, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()

        if not isinstance(patch, BudgetPatch):
            patch = BudgetPatch.model_validate(dict(patch))

        await self._owned_budget(owner_id, budget_id)
        budget = await self._budgets.update_budget(budget_id, patch)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.budget_saved(
                budget_id=budget.id,
                owner_id=owner_id,
                category_name=budget.category_name,
                amount=budget.amount,
                correlation_id=correlation_id,
            ))
        return budget

    async def delete_budget(
        self,
        owner_id: str,
        budget_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        await self._owned_budget(owner_id, budget_id)
        await self._budgets.delete_budget(budget_id)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.budget_deleted(
                budget_id=budget_id,
                owner_id=owner_id,
                correlation_id=correlation_id,
            ))

    async def _owned_budget(self, owner_id: str, budget_id: UUID) -> Budget:
        budget = await self._budgets.get_budget(budget_id)
        if budget is None or budget.owner_id != owner_id:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    # ===== CATEGORIES =====

    async def add_category(
        self,
        owner_id: str,
        name: str,
        category_type: CategoryType,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Category:
        """
        Add a custom category.

        Raises:
            DuplicateError: A default or custom category of the same type
                already has this name
        """
        category = Category(
            id=uuid4(),
            owner_id=owner_id,
            name=name,
            category_type=category_type,
            color=color,
            icon=icon,
        )

        existing = list(DEFAULT_CATEGORIES) + await self._categories.list_categories(owner_id)
        for other in existing:
            if other.category_type == category.category_type and other.name.lower() == category.name.lower():
                raise DuplicateError(f"Category '{category.name}' already exists")

        return await self._categories.add_category(category)

    async def delete_category(self, owner_id: str, category_id: UUID) -> None:
        """
        Transactions keep their category name; only the category entry goes.

        Raises:
            NotFoundError: No such custom category for this owner
        """
        owned = {c.id for c in await self._categories.list_categories(owner_id)}
        if category_id not in owned:
            raise NotFoundError(f"Category not found: {category_id}")
        await self._categories.delete_category(category_id)

    # ===== SETTINGS =====

    async def update_settings(
        self,
        owner_id: str,
        patch: Union[UserSettingsPatch, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> UserSettings:
        correlation_id = correlation_id or create_correlation_id()

        if not isinstance(patch, UserSettingsPatch):
            patch = UserSettingsPatch.model_validate(dict(patch))

        settings = await self._settings.update_settings(owner_id, patch)

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.settings_updated(
                owner_id=owner_id,
                fields=sorted(patch.model_dump(exclude_unset=True, exclude_none=True)),
                correlation_id=correlation_id,
            ))
        return settings

    # ===== DATA MANAGEMENT =====

    async def clear_all_data(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """
        Delete every account, transaction, budget, custom category and
        setting of a user in one atomic unit. The audit trail is kept.
        """
        correlation_id = correlation_id or create_correlation_id()
        counts = await self._data.purge_owner(owner_id)

        logger.warning("user_data_purged", owner_id=owner_id, **counts)
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.user_data_purged(
                owner_id=owner_id,
                counts=counts,
                correlation_id=correlation_id,
            ))
        return counts


class AppComponents:
    """Everything a front end needs, wired to one SQLite database."""

    def __init__(
        self,
        client: SQLiteClient,
        ledger: LedgerEngine,
        accounts: AccountService,
        budgets: BudgetService,
        queries: QueryExecutor,
        audit_logger: AuditLogger,
        audit_storage: AuditStorageInterface,
    ):
        self.client = client
        self.ledger = ledger
        self.accounts = accounts
        self.budgets = budgets
        self.queries = queries
        self.audit_logger = audit_logger
        self.audit_storage = audit_storage

    async def close(self) -> None:
        await self.client.close()


async def create_app_components(
    settings: Optional[Settings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Opens the database, creates missing tables and wires every service
    to it.

    Args:
        settings: Root settings. Defaults to get_settings().

    Returns:
        AppComponents; call `close()` when done
    """
    settings = settings or get_settings()

    client = SQLiteClient(settings.database)
    await client.connect()
    await client.init_schema()

    audit_storage = SQLiteAuditStorage(client)
    audit_logger = AuditLogger(audit_storage)

    account_storage = SQLiteAccountStorage(client)
    transaction_storage = SQLiteTransactionStorage(client)
    budget_storage = SQLiteBudgetStorage(client)
    category_storage = SQLiteCategoryStorage(client)
    settings_storage = SQLiteSettingsStorage(client)
    ledger_storage = SQLiteLedgerStorage(client)

    ledger = LedgerEngine(
        ledger_storage,
        account_storage,
        transaction_storage,
        settings=settings.ledger,
        validator=TransactionValidator(),
        audit_logger=audit_logger,
    )

    components = AppComponents(
        client=client,
        ledger=ledger,
        accounts=AccountService(account_storage, audit_logger),
        budgets=BudgetService(
            budget_storage,
            category_storage,
            settings_storage,
            ledger_storage,
            audit_logger,
        ),
        queries=QueryExecutor(
            account_storage,
            transaction_storage,
            budget_storage,
            category_storage,
            settings_storage,
        ),
        audit_logger=audit_logger,
        audit_storage=audit_storage,
    )

    logger.info(
        "app_components_ready",
        environment=settings.app.app_environment,
        db_path=settings.database.path,
        missing_account_policy=settings.ledger.missing_account_policy.value,
    )
    return components
