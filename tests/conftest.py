"""Shared fixtures: a fresh SQLite database per test."""

from decimal import Decimal

import pytest
import pytest_asyncio

from finance_tracker.audit import AuditLogger
from finance_tracker.config import DatabaseSettings, LedgerSettings, MissingAccountPolicy
from finance_tracker.ledger.engine import LedgerEngine
from finance_tracker.models.account import Account, AccountCreate, AccountType
from finance_tracker.services.storage import (
    SQLiteAccountStorage,
    SQLiteAuditStorage,
    SQLiteBudgetStorage,
    SQLiteCategoryStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    SQLiteSettingsStorage,
    SQLiteTransactionStorage,
)

OWNER = "user-1"
OTHER_OWNER = "user-2"


@pytest_asyncio.fixture
async def client(tmp_path) -> SQLiteClient:
    """Temporary database with the schema created."""
    client = SQLiteClient(DatabaseSettings(path=str(tmp_path / "ledger.db")))
    await client.connect()
    await client.init_schema()
    yield client
    await client.close()


@pytest.fixture
def account_storage(client) -> SQLiteAccountStorage:
    return SQLiteAccountStorage(client)


@pytest.fixture
def transaction_storage(client) -> SQLiteTransactionStorage:
    return SQLiteTransactionStorage(client)


@pytest.fixture
def ledger_storage(client) -> SQLiteLedgerStorage:
    return SQLiteLedgerStorage(client)


@pytest.fixture
def budget_storage(client) -> SQLiteBudgetStorage:
    return SQLiteBudgetStorage(client)


@pytest.fixture
def category_storage(client) -> SQLiteCategoryStorage:
    return SQLiteCategoryStorage(client)


@pytest.fixture
def settings_storage(client) -> SQLiteSettingsStorage:
    return SQLiteSettingsStorage(client)


@pytest.fixture
def audit_storage(client) -> SQLiteAuditStorage:
    return SQLiteAuditStorage(client)


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    """No backoff so conflict retries don't slow the suite down."""
    return LedgerSettings(
        max_conflict_retries=3,
        retry_wait_multiplier=0,
        retry_wait_max=0,
        missing_account_policy=MissingAccountPolicy.ABORT,
    )


@pytest.fixture
def engine(ledger_storage, account_storage, transaction_storage, audit_storage, ledger_settings) -> LedgerEngine:
    return LedgerEngine(
        ledger_storage,
        account_storage,
        transaction_storage,
        settings=ledger_settings,
        audit_logger=AuditLogger(audit_storage),
    )


@pytest.fixture
def open_account(account_storage):
    """Factory: persist an account with an opening balance."""

    async def _open(name: str, balance: str = "0", owner_id: str = OWNER) -> Account:
        payload = AccountCreate(
            name=name,
            account_type=AccountType.CHECKING,
            opening_balance=Decimal(balance),
        )
        return await account_storage.create_account(Account.open(owner_id, payload))

    return _open


@pytest.fixture
def balance_of(account_storage):
    """Factory: current stored balance of an account."""

    async def _balance(account: Account) -> Decimal:
        stored = await account_storage.get_account(account.id)
        return stored.balance

    return _balance
