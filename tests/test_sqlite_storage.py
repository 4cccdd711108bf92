"""
Tests for the SQLite storage layer.

Covers the atomic unit of work (commit/rollback, version-checked balance
writes) and the plain keyed-record stores.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from finance_tracker.config import DatabaseSettings
from finance_tracker.models.account import AccountPatch, AccountType
from finance_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finance_tracker.models.budget import (
    Budget,
    BudgetPatch,
    Category,
    CategoryType,
    Theme,
    UserSettingsPatch,
)
from finance_tracker.models.transaction import Transaction, TransactionType
from finance_tracker.services.storage import (
    DuplicateError,
    NotFoundError,
    SQLiteClient,
    StorageError,
    WriteConflictError,
)

from tests.conftest import OTHER_OWNER, OWNER


def make_transaction(account, amount="10", when=datetime(2024, 3, 10, 12, 0), owner_id=OWNER, **extra):
    return Transaction(
        owner_id=owner_id,
        amount=Decimal(amount),
        type=extra.pop("type", TransactionType.EXPENSE),
        account_id=account.id,
        date=when,
        **extra,
    )


async def insert(ledger_storage, *transactions):
    async with ledger_storage.unit_of_work() as uow:
        for transaction in transactions:
            await uow.insert_transaction(transaction)


async def count_transactions(client) -> int:
    async with client.connection() as conn:
        cursor = await conn.execute("SELECT COUNT(*) FROM transactions")
        row = await cursor.fetchone()
    return row[0]


class TestSQLiteClient:
    """Connection handling and schema creation."""

    @pytest.mark.asyncio
    async def test_connect_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "ledger.db"
        async with SQLiteClient(DatabaseSettings(path=str(db_path))) as client:
            await client.init_schema()
            assert client.is_connected
        assert db_path.exists()
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_init_schema_is_idempotent(self, client):
        await client.init_schema()
        await client.init_schema()

    @pytest.mark.asyncio
    async def test_concurrent_first_use_opens_one_connection(self, tmp_path):
        client = SQLiteClient(DatabaseSettings(path=str(tmp_path / "race.db")))

        first, second = await asyncio.gather(client.connect(), client.connect())

        assert first is second
        await client.close()
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_in_memory_shared_by_concurrent_callers(self):
        """Callers racing on first use see one in-memory database."""
        client = SQLiteClient(DatabaseSettings(path=":memory:"))

        await asyncio.gather(client.init_schema(), client.init_schema())
        async with client.connection() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM accounts")
            row = await cursor.fetchone()

        assert row[0] == 0
        await client.close()

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        async with SQLiteClient(DatabaseSettings(path=":memory:")) as client:
            await client.init_schema()
            assert client.is_memory

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, client, open_account, account_storage):
        account = await open_account("A", "100")

        with pytest.raises(RuntimeError):
            async with client.transaction() as conn:
                await conn.execute("UPDATE accounts SET name = 'changed' WHERE id = ?", (str(account.id),))
                raise RuntimeError("boom")

        stored = await account_storage.get_account(account.id)
        assert stored.name == "A"


class TestLedgerUnitOfWork:
    """The atomic scope the ledger engine writes through."""

    @pytest.mark.asyncio
    async def test_balance_write_bumps_version(self, ledger_storage, open_account, account_storage):
        account = await open_account("A", "100")

        async with ledger_storage.unit_of_work() as uow:
            accounts = await uow.get_accounts([account.id])
            await uow.save_balance(accounts[account.id], Decimal("75.25"))

        stored = await account_storage.get_account(account.id)
        assert stored.balance == Decimal("75.25")
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, client, ledger_storage, open_account, account_storage):
        """A balance write based on an outdated read is refused and rolled back."""
        account = await open_account("A", "100")

        async with ledger_storage.unit_of_work() as uow:
            await uow.save_balance(account, Decimal("90"))

        with pytest.raises(WriteConflictError):
            async with ledger_storage.unit_of_work() as uow:
                await uow.insert_transaction(make_transaction(account))
                await uow.save_balance(account, Decimal("80"))

        stored = await account_storage.get_account(account.id)
        assert stored.balance == Decimal("90")
        assert await count_transactions(client) == 0

    @pytest.mark.asyncio
    async def test_missing_accounts_absent_from_result(self, ledger_storage, open_account):
        account = await open_account("A", "100")
        ghost = uuid4()

        async with ledger_storage.unit_of_work() as uow:
            accounts = await uow.get_accounts([account.id, ghost])

        assert set(accounts) == {account.id}

    @pytest.mark.asyncio
    async def test_transaction_round_trip(self, ledger_storage, open_account):
        source = await open_account("A", "100")
        destination = await open_account("B", "0")
        transaction = make_transaction(
            source,
            amount="12.34",
            type=TransactionType.TRANSFER,
            to_account_id=destination.id,
            transfer_fee=Decimal("0.50"),
            notes="rent share",
        )

        await insert(ledger_storage, transaction)
        async with ledger_storage.unit_of_work() as uow:
            stored = await uow.get_transaction(transaction.id)

        assert stored == transaction

    @pytest.mark.asyncio
    async def test_duplicate_insert(self, ledger_storage, open_account):
        account = await open_account("A")
        transaction = make_transaction(account)
        await insert(ledger_storage, transaction)

        with pytest.raises(DuplicateError):
            await insert(ledger_storage, transaction)

    @pytest.mark.asyncio
    async def test_update_and_delete_missing_transaction(self, ledger_storage, open_account):
        account = await open_account("A")
        transaction = make_transaction(account)

        with pytest.raises(NotFoundError):
            async with ledger_storage.unit_of_work() as uow:
                await uow.update_transaction(transaction)

        with pytest.raises(NotFoundError):
            async with ledger_storage.unit_of_work() as uow:
                await uow.delete_transaction(transaction.id)


class TestAccountStorage:

    @pytest.mark.asyncio
    async def test_list_is_per_owner_oldest_first(self, open_account, account_storage):
        first = await open_account("First")
        second = await open_account("Second")
        await open_account("Theirs", owner_id=OTHER_OWNER)

        accounts = await account_storage.list_accounts(OWNER)

        assert [a.id for a in accounts] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_patch_never_touches_balance(self, open_account, account_storage):
        account = await open_account("Old name", "250")

        updated = await account_storage.update_account(
            account.id,
            AccountPatch(name="New name", account_type=AccountType.SAVINGS),
        )

        assert updated.name == "New name"
        assert updated.account_type == AccountType.SAVINGS
        assert updated.balance == Decimal("250")

    @pytest.mark.asyncio
    async def test_update_missing_account(self, account_storage):
        with pytest.raises(NotFoundError):
            await account_storage.update_account(uuid4(), AccountPatch(name="x"))

    @pytest.mark.asyncio
    async def test_referenced_account_not_deleted(self, open_account, account_storage, ledger_storage):
        source = await open_account("A")
        destination = await open_account("B")
        await insert(ledger_storage, make_transaction(
            source,
            type=TransactionType.TRANSFER,
            to_account_id=destination.id,
        ))

        assert await account_storage.count_references(destination.id) == 1
        assert await account_storage.delete_account(destination.id) is False
        assert await account_storage.get_account(destination.id) is not None

    @pytest.mark.asyncio
    async def test_unreferenced_account_deleted(self, open_account, account_storage):
        account = await open_account("A")

        assert await account_storage.delete_account(account.id) is True
        assert await account_storage.get_account(account.id) is None


class TestTransactionStorage:

    @pytest.mark.asyncio
    async def test_newest_first_with_limit(self, open_account, ledger_storage, transaction_storage):
        account = await open_account("A")
        old = make_transaction(account, when=datetime(2024, 1, 1))
        mid = make_transaction(account, when=datetime(2024, 2, 1))
        new = make_transaction(account, when=datetime(2024, 3, 1))
        await insert(ledger_storage, mid, old, new)

        listed = await transaction_storage.list_transactions(OWNER, limit=2)
        assert [t.id for t in listed] == [new.id, mid.id]

        paged = await transaction_storage.list_transactions(OWNER, limit=2, offset=2)
        assert [t.id for t in paged] == [old.id]

        everything = await transaction_storage.list_all_transactions(OWNER)
        assert [t.id for t in everything] == [old.id, mid.id, new.id]

    @pytest.mark.asyncio
    async def test_date_bounds_are_inclusive(self, open_account, ledger_storage, transaction_storage):
        account = await open_account("A")
        at_start = make_transaction(account, when=datetime(2024, 3, 1))
        at_end = make_transaction(account, when=datetime(2024, 3, 31, 23, 59, 59, 999999))
        after = make_transaction(account, when=datetime(2024, 4, 1))
        await insert(ledger_storage, at_start, at_end, after)

        listed = await transaction_storage.list_transactions(
            OWNER,
            date_from=datetime(2024, 3, 1),
            date_to=datetime(2024, 3, 31, 23, 59, 59, 999999),
        )

        assert {t.id for t in listed} == {at_start.id, at_end.id}

    @pytest.mark.asyncio
    async def test_account_filter_matches_destination(self, open_account, ledger_storage, transaction_storage):
        a = await open_account("A")
        b = await open_account("B")
        into_b = make_transaction(a, type=TransactionType.TRANSFER, to_account_id=b.id)
        only_a = make_transaction(a)
        await insert(ledger_storage, into_b, only_a)

        listed = await transaction_storage.list_transactions(OWNER, account_id=b.id)

        assert [t.id for t in listed] == [into_b.id]

    @pytest.mark.asyncio
    async def test_other_owner_not_listed(self, open_account, ledger_storage, transaction_storage):
        theirs = await open_account("Theirs", owner_id=OTHER_OWNER)
        await insert(ledger_storage, make_transaction(theirs, owner_id=OTHER_OWNER))

        assert await transaction_storage.list_transactions(OWNER) == []


class TestBudgetStorage:

    @pytest.mark.asyncio
    async def test_one_budget_per_category(self, budget_storage):
        await budget_storage.save_budget(Budget(owner_id=OWNER, category_name="Food", amount=Decimal("300")))

        with pytest.raises(DuplicateError):
            await budget_storage.save_budget(Budget(owner_id=OWNER, category_name="Food", amount=Decimal("1")))

        # Same category for another user is fine
        await budget_storage.save_budget(Budget(owner_id=OTHER_OWNER, category_name="Food", amount=Decimal("1")))

    @pytest.mark.asyncio
    async def test_listed_by_category_name(self, budget_storage):
        for name in ("Shopping", "Food", "Housing"):
            await budget_storage.save_budget(Budget(owner_id=OWNER, category_name=name, amount=Decimal("10")))

        budgets = await budget_storage.list_budgets(OWNER)

        assert [b.category_name for b in budgets] == ["Food", "Housing", "Shopping"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, budget_storage):
        budget = await budget_storage.save_budget(
            Budget(owner_id=OWNER, category_name="Food", amount=Decimal("300"))
        )

        updated = await budget_storage.update_budget(budget.id, BudgetPatch(amount=Decimal("350")))
        assert updated.amount == Decimal("350")
        assert updated.category_name == "Food"

        assert await budget_storage.delete_budget(budget.id) is True
        assert await budget_storage.get_budget(budget.id) is None
        assert await budget_storage.delete_budget(budget.id) is False

    @pytest.mark.asyncio
    async def test_amount_cannot_be_cleared(self, budget_storage):
        """An explicit None never reaches the amount column."""
        budget = await budget_storage.save_budget(
            Budget(owner_id=OWNER, category_name="Food", amount=Decimal("50"))
        )

        with pytest.raises(ValidationError):
            BudgetPatch.model_validate({"amount": None})

        updated = await budget_storage.update_budget(
            budget.id, BudgetPatch.model_construct(amount=None, category_name="Groceries")
        )

        assert updated.amount == Decimal("50")
        assert updated.category_name == "Groceries"
        listed = await budget_storage.list_budgets(OWNER)
        assert [(b.category_name, b.amount) for b in listed] == [("Groceries", Decimal("50"))]


class TestCategoryAndSettingsStorage:

    @pytest.mark.asyncio
    async def test_custom_categories(self, category_storage):
        category = await category_storage.add_category(Category(
            id=uuid4(),
            owner_id=OWNER,
            name="Pets",
            category_type=CategoryType.EXPENSE,
            color="#123456",
        ))

        listed = await category_storage.list_categories(OWNER)
        assert [c.name for c in listed] == ["Pets"]
        assert listed[0].created_at == category.created_at

        assert await category_storage.delete_category(category.id) is True
        assert await category_storage.list_categories(OWNER) == []

    @pytest.mark.asyncio
    async def test_default_category_cannot_be_stored(self, category_storage):
        with pytest.raises(StorageError):
            await category_storage.add_category(Category(name="Food", category_type=CategoryType.EXPENSE))

    @pytest.mark.asyncio
    async def test_settings_created_then_merged(self, settings_storage):
        assert await settings_storage.get_settings(OWNER) is None

        created = await settings_storage.update_settings(OWNER, UserSettingsPatch(cycle_start_day=15))
        assert created.cycle_start_day == 15
        assert created.currency == "USD ($)"

        merged = await settings_storage.update_settings(OWNER, UserSettingsPatch(theme=Theme.LIGHT))
        assert merged.cycle_start_day == 15
        assert merged.theme == Theme.LIGHT
        assert await settings_storage.get_settings(OWNER) == merged


class TestPurgeAndAudit:

    @pytest.mark.asyncio
    async def test_purge_owner(
        self, open_account, ledger_storage, budget_storage, settings_storage, account_storage,
    ):
        mine = await open_account("Mine")
        theirs = await open_account("Theirs", owner_id=OTHER_OWNER)
        await insert(ledger_storage, make_transaction(mine), make_transaction(mine))
        await budget_storage.save_budget(Budget(owner_id=OWNER, category_name="Food", amount=Decimal("1")))
        await settings_storage.update_settings(OWNER, UserSettingsPatch(cycle_start_day=3))

        counts = await ledger_storage.purge_owner(OWNER)

        assert counts == {
            "transactions": 2,
            "budgets": 1,
            "categories": 0,
            "accounts": 1,
            "user_settings": 1,
        }
        assert await account_storage.list_accounts(OWNER) == []
        assert await account_storage.get_account(theirs.id) is not None

    @pytest.mark.asyncio
    async def test_audit_events_round_trip(self, audit_storage):
        correlation_id = uuid4()
        account_id = uuid4()
        first = AuditEventBuilder.account_created(account_id, OWNER, "A", Decimal("5"), correlation_id)
        second = AuditEventBuilder.account_deleted(account_id, OWNER, correlation_id)

        assert await audit_storage.append_event(first) is True
        assert await audit_storage.append_event(second) is True

        by_correlation = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_id for e in by_correlation] == [first.event_id, second.event_id]
        assert by_correlation[0].details == {"name": "A", "opening_balance": "5"}

        by_entity = await audit_storage.get_events_by_entity("account", account_id)
        assert [e.event_type for e in by_entity] == [
            AuditEventType.ACCOUNT_CREATED,
            AuditEventType.ACCOUNT_DELETED,
        ]

    @pytest.mark.asyncio
    async def test_duplicate_audit_event_is_not_fatal(self, audit_storage):
        event = AuditEvent(event_type=AuditEventType.BUDGET_DELETED, description="x")

        assert await audit_storage.append_event(event) is True
        assert await audit_storage.append_event(event) is False
