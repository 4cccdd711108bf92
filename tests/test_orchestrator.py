"""
End-to-end tests through create_app_components.

Exercises the wiring a front end uses: accounts, ledger, budgets,
settings and clearing data, all on one SQLite file.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from pydantic import ValidationError

from finance_tracker.config import get_settings
from finance_tracker.ledger.errors import AccountInUseError, AccountNotFoundError
from finance_tracker.models.account import AccountType
from finance_tracker.models.audit import AuditEventType
from finance_tracker.models.budget import CategoryType
from finance_tracker.orchestrator import create_app_components
from finance_tracker.services.storage import DuplicateError, NotFoundError

from tests.conftest import OTHER_OWNER, OWNER


@pytest_asyncio.fixture
async def app(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_DB_PATH", str(tmp_path / "app.db"))
    monkeypatch.setenv("LEDGER_RETRY_WAIT_MULTIPLIER", "0")
    get_settings.cache_clear()

    components = await create_app_components()
    yield components
    await components.close()
    get_settings.cache_clear()


class TestAccountService:

    @pytest.mark.asyncio
    async def test_open_and_rename(self, app):
        account = await app.accounts.open_account(OWNER, {
            "name": "Checking",
            "account_type": "Checking",
            "opening_balance": "1000",
        })

        renamed = await app.accounts.update_account(OWNER, account.id, {"name": "Everyday"})

        assert renamed.name == "Everyday"
        assert renamed.balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_name_and_type_cannot_be_cleared(self, app):
        account = await app.accounts.open_account(OWNER, {
            "name": "Checking",
            "account_type": "Checking",
            "bg_gradient": "blue",
        })

        for field in ("name", "account_type"):
            with pytest.raises(ValidationError):
                await app.accounts.update_account(OWNER, account.id, {field: None})

        cleared = await app.accounts.update_account(OWNER, account.id, {"bg_gradient": None})

        assert cleared.bg_gradient is None
        stored = await app.accounts.get_account(OWNER, account.id)
        assert stored.name == "Checking"
        assert stored.account_type == AccountType.CHECKING
        assert stored.bg_gradient is None

    @pytest.mark.asyncio
    async def test_other_owner_cannot_touch_account(self, app):
        account = await app.accounts.open_account(OWNER, {"name": "A", "account_type": "Cash"})

        with pytest.raises(AccountNotFoundError):
            await app.accounts.update_account(OTHER_OWNER, account.id, {"name": "mine now"})

        with pytest.raises(AccountNotFoundError):
            await app.accounts.delete_account(OTHER_OWNER, account.id)

    @pytest.mark.asyncio
    async def test_delete_refused_while_referenced(self, app):
        a = await app.accounts.open_account(OWNER, {"name": "A", "account_type": "Checking"})
        b = await app.accounts.open_account(OWNER, {"name": "B", "account_type": "Savings"})
        tx = await app.ledger.create_transaction(OWNER, {
            "amount": "50",
            "type": "transfer",
            "account_id": a.id,
            "to_account_id": b.id,
            "date": "2024-03-01",
        })

        with pytest.raises(AccountInUseError) as exc_info:
            await app.accounts.delete_account(OWNER, b.id)
        assert exc_info.value.reference_count == 1

        await app.ledger.delete_transaction(OWNER, tx)
        await app.accounts.delete_account(OWNER, b.id)

        assert [acc.id for acc in await app.queries.accounts(OWNER)] == [a.id]

    @pytest.mark.asyncio
    async def test_account_lifecycle_is_audited(self, app):
        account = await app.accounts.open_account(OWNER, {"name": "A", "account_type": "Cash"})
        await app.accounts.delete_account(OWNER, account.id)

        events = await app.audit_storage.get_events_by_entity("account", account.id)
        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_CREATED,
            AuditEventType.ACCOUNT_DELETED,
        ]


class TestBudgetService:

    @pytest.mark.asyncio
    async def test_budget_flow(self, app):
        budget = await app.budgets.save_budget(OWNER, {"category_name": "Food", "amount": "300"})

        with pytest.raises(DuplicateError):
            await app.budgets.save_budget(OWNER, {"category_name": "Food", "amount": "10"})

        updated = await app.budgets.update_budget(OWNER, budget.id, {"amount": "400"})
        assert updated.amount == Decimal("400")

        with pytest.raises(NotFoundError):
            await app.budgets.delete_budget(OTHER_OWNER, budget.id)

        await app.budgets.delete_budget(OWNER, budget.id)
        assert await app.queries.budgets(OWNER) == []

    @pytest.mark.asyncio
    async def test_custom_category_names_are_unique(self, app):
        await app.budgets.add_category(OWNER, "Pets", CategoryType.EXPENSE)

        with pytest.raises(DuplicateError):
            await app.budgets.add_category(OWNER, "pets", CategoryType.EXPENSE)

        with pytest.raises(DuplicateError):
            await app.budgets.add_category(OWNER, "Salary", CategoryType.INCOME)

    @pytest.mark.asyncio
    async def test_delete_category_of_other_owner(self, app):
        category = await app.budgets.add_category(OWNER, "Pets", CategoryType.EXPENSE)

        with pytest.raises(NotFoundError):
            await app.budgets.delete_category(OTHER_OWNER, category.id)

        await app.budgets.delete_category(OWNER, category.id)
        with pytest.raises(NotFoundError):
            await app.budgets.delete_category(OWNER, uuid4())

    @pytest.mark.asyncio
    async def test_settings_drive_the_cycle(self, app):
        await app.budgets.update_settings(OWNER, {"cycle_start_day": 25})

        cycle = await app.queries.current_cycle(OWNER, date(2024, 3, 10))

        assert cycle.start.date() == date(2024, 2, 25)

    @pytest.mark.asyncio
    async def test_clear_all_data(self, app):
        a = await app.accounts.open_account(OWNER, {"name": "A", "account_type": "Cash", "opening_balance": "10"})
        await app.ledger.create_transaction(OWNER, {
            "amount": "5", "type": "expense", "account_id": a.id, "date": "2024-03-01",
        })
        await app.budgets.save_budget(OWNER, {"category_name": "Food", "amount": "300"})
        theirs = await app.accounts.open_account(OTHER_OWNER, {"name": "T", "account_type": "Cash"})

        counts = await app.budgets.clear_all_data(OWNER)

        assert counts["accounts"] == 1
        assert counts["transactions"] == 1
        assert counts["budgets"] == 1
        assert await app.queries.accounts(OWNER) == []
        assert [acc.id for acc in await app.queries.accounts(OTHER_OWNER)] == [theirs.id]

        recent = await app.audit_storage.get_recent_events(limit=1)
        assert recent[0].event_type == AuditEventType.USER_DATA_PURGED
