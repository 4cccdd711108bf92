"""
Query Execution Engine

DESIGN DECISION: Reads are DETERMINISTIC and never write.
Every figure shown to the user (totals, budget usage, cash flow) is
computed here from stored records, never cached or estimated.

Aggregation happens in Python over Decimal values: amounts are stored as
TEXT, so summing in SQL would go through floats.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

import structlog

from finance_tracker.config import get_settings
from finance_tracker.models.account import Account
from finance_tracker.models.budget import (
    DEFAULT_CATEGORIES,
    Budget,
    Category,
    CategoryType,
    UserSettings,
)
from finance_tracker.models.report import BudgetStatus, CashFlowSummary, CycleRange
from finance_tracker.models.transaction import Transaction, TransactionType
from finance_tracker.queries.cycle import get_cycle_range
from finance_tracker.services.storage import (
    AccountStorageInterface,
    BudgetStorageInterface,
    CategoryStorageInterface,
    SettingsStorageInterface,
    StorageError,
    TransactionStorageInterface,
)

logger = structlog.get_logger(__name__)

Reference = Union[date, datetime]


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class QueryExecutor:
    """
    Read-side views over the stores.

    GUARANTEES:
    - Only returns real data from storage
    - Never writes
    - Empty results are empty lists / zero totals, never errors
    """

    def __init__(
        self,
        account_storage: AccountStorageInterface,
        transaction_storage: TransactionStorageInterface,
        budget_storage: BudgetStorageInterface,
        category_storage: CategoryStorageInterface,
        settings_storage: SettingsStorageInterface,
    ):
        self._accounts = account_storage
        self._transactions = transaction_storage
        self._budgets = budget_storage
        self._categories = category_storage
        self._user_settings = settings_storage
        self._settings = get_settings().app

    async def recent_transactions(self, owner_id: str, limit: Optional[int] = None) -> list[Transaction]:
        """Newest transactions first."""
        if limit is None:
            limit = self._settings.recent_transactions_limit
        return await self._run(
            "recent_transactions",
            self._transactions.list_transactions(owner_id, limit=limit),
        )

    async def transactions(self, owner_id: str, cycle: Optional[CycleRange] = None) -> list[Transaction]:
        """All transactions, or those inside `cycle`, newest first."""
        if cycle is None:
            return await self._run("transactions", self._transactions.list_transactions(owner_id))
        return await self._run(
            "transactions",
            self._transactions.list_transactions(owner_id, date_from=cycle.start, date_to=cycle.end),
        )

    async def accounts(self, owner_id: str) -> list[Account]:
        return await self._run("accounts", self._accounts.list_accounts(owner_id))

    async def total_balance(self, owner_id: str) -> Decimal:
        """Sum of all account balances (credit accounts may be negative)."""
        accounts = await self.accounts(owner_id)
        return sum((account.balance for account in accounts), Decimal("0"))

    async def categories(
        self,
        owner_id: str,
        category_type: Optional[CategoryType] = None,
    ) -> list[Category]:
        """Default categories followed by the user's custom ones."""
        custom = await self._run("categories", self._categories.list_categories(owner_id))
        categories = list(DEFAULT_CATEGORIES) + custom
        if category_type is not None:
            categories = [c for c in categories if c.category_type == category_type]
        return categories

    async def budgets(self, owner_id: str) -> list[Budget]:
        """Budgets ordered by category name."""
        return await self._run("budgets", self._budgets.list_budgets(owner_id))

    async def user_settings(self, owner_id: str) -> UserSettings:
        """Stored settings, or the defaults for a user who never saved any."""
        stored = await self._run("user_settings", self._user_settings.get_settings(owner_id))
        if stored is not None:
            return stored
        return UserSettings(
            owner_id=owner_id,
            cycle_start_day=self._settings.default_cycle_start_day,
            currency=self._settings.default_currency,
        )

    async def current_cycle(self, owner_id: str, reference: Optional[Reference] = None) -> CycleRange:
        """The user's budget cycle containing `reference` (default: now)."""
        user_settings = await self.user_settings(owner_id)
        return get_cycle_range(reference or datetime.utcnow(), user_settings.cycle_start_day)

    async def budget_vs_actual(
        self,
        owner_id: str,
        reference: Optional[Reference] = None,
    ) -> list[BudgetStatus]:
        """
        Expense spending per budgeted category within the cycle.

        Only expenses count; income and transfers never consume a budget.
        Transactions without a category count towards no budget.
        """
        budgets = await self.budgets(owner_id)
        if not budgets:
            return []

        cycle = await self.current_cycle(owner_id, reference)
        spent: dict[str, Decimal] = {}
        for transaction in await self.transactions(owner_id, cycle):
            if transaction.type != TransactionType.EXPENSE or not transaction.category_name:
                continue
            spent[transaction.category_name] = (
                spent.get(transaction.category_name, Decimal("0")) + transaction.amount
            )

        return [
            BudgetStatus(
                category_name=budget.category_name,
                limit=budget.amount,
                spent=spent.get(budget.category_name, Decimal("0")),
            )
            for budget in budgets
        ]

    async def cash_flow(
        self,
        owner_id: str,
        reference: Optional[Reference] = None,
    ) -> CashFlowSummary:
        """Income and expense totals within the cycle. Transfers are excluded."""
        cycle = await self.current_cycle(owner_id, reference)
        summary = CashFlowSummary(cycle=cycle)

        for transaction in await self.transactions(owner_id, cycle):
            if transaction.type == TransactionType.INCOME:
                summary.income += transaction.amount
            elif transaction.type == TransactionType.EXPENSE:
                summary.expense += transaction.amount
            else:
                continue
            summary.transaction_count += 1

        return summary

    async def _run(self, query_name: str, awaitable):
        try:
            return await awaitable
        except StorageError as e:
            logger.error("query_failed", query=query_name, error=str(e))
            raise QueryExecutionError(f"{query_name} failed: {e}") from e
