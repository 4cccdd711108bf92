"""
SQLite Storage Implementation

SQLite is the storage backend because it gives us real multi-statement
transactions on a single file: the ledger needs the transaction record and
every touched account balance to commit together.

TRADEOFFS:
- One shared connection per process, so units of work are serialized by an
  asyncio.Lock (operations on disjoint accounts queue instead of running in
  parallel; personal-finance volumes make this fine)
- Decimals are stored as TEXT to avoid float rounding
- We filter and aggregate in Python where SQL on TEXT decimals would be lossy

The connection runs in autocommit mode; atomic scopes issue an explicit
BEGIN IMMEDIATE so the write lock is taken before the first read, and
account writes are additionally guarded by a version column.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import aiosqlite
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from finance_tracker.config import DatabaseSettings, get_settings
from finance_tracker.models.account import Account, AccountPatch, AccountType
from finance_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_tracker.models.budget import (
    Budget,
    BudgetPatch,
    Category,
    CategoryType,
    Theme,
    UserSettings,
    UserSettingsPatch,
)
from finance_tracker.models.transaction import Transaction, TransactionType
from finance_tracker.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DataManagementInterface,
    DuplicateError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    SettingsStorageInterface,
    StorageError,
    TransactionStorageInterface,
    WriteConflictError,
)

logger = structlog.get_logger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id               TEXT PRIMARY KEY,
        owner_id         TEXT NOT NULL,
        name             TEXT NOT NULL,
        account_type     TEXT NOT NULL,
        balance          TEXT NOT NULL DEFAULT '0',
        opening_balance  TEXT NOT NULL DEFAULT '0',
        bg_gradient      TEXT,
        version          INTEGER NOT NULL DEFAULT 0,
        created_at       TEXT NOT NULL,
        updated_at       TEXT NOT NULL
    )
    """,
    # No foreign keys on account_id/to_account_id: orphaned references are
    # tolerated on read and handled by the ledger's missing-account policy
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id               TEXT PRIMARY KEY,
        owner_id         TEXT NOT NULL,
        amount           TEXT NOT NULL,
        transaction_type TEXT NOT NULL,
        account_id       TEXT NOT NULL,
        to_account_id    TEXT,
        transfer_fee     TEXT NOT NULL DEFAULT '0',
        date             TEXT NOT NULL,
        description      TEXT,
        category_id      TEXT,
        category_name    TEXT,
        notes            TEXT,
        created_at       TEXT NOT NULL,
        updated_at       TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS budgets (
        id               TEXT PRIMARY KEY,
        owner_id         TEXT NOT NULL,
        category_name    TEXT NOT NULL,
        amount           TEXT NOT NULL,
        created_at       TEXT NOT NULL,
        updated_at       TEXT NOT NULL,
        UNIQUE(owner_id, category_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id               TEXT PRIMARY KEY,
        owner_id         TEXT NOT NULL,
        name             TEXT NOT NULL,
        category_type    TEXT NOT NULL,
        color            TEXT,
        icon             TEXT,
        created_at       TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        owner_id         TEXT PRIMARY KEY,
        cycle_start_day  INTEGER NOT NULL DEFAULT 1,
        currency         TEXT NOT NULL,
        language         TEXT NOT NULL,
        theme            TEXT NOT NULL,
        updated_at       TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        event_id         TEXT PRIMARY KEY,
        timestamp        TEXT NOT NULL,
        event_type       TEXT NOT NULL,
        severity         TEXT NOT NULL,
        owner_id         TEXT,
        entity_type      TEXT,
        entity_id        TEXT,
        correlation_id   TEXT,
        description      TEXT NOT NULL,
        details_json     TEXT,
        error_code       TEXT,
        error_message    TEXT,
        is_user_action   INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_accounts_owner ON accounts(owner_id)",
    "CREATE INDEX IF NOT EXISTS ix_transactions_owner_date ON transactions(owner_id, date)",
    "CREATE INDEX IF NOT EXISTS ix_transactions_account ON transactions(account_id)",
    "CREATE INDEX IF NOT EXISTS ix_transactions_to_account ON transactions(to_account_id)",
    "CREATE INDEX IF NOT EXISTS ix_budgets_owner ON budgets(owner_id)",
    "CREATE INDEX IF NOT EXISTS ix_audit_log_correlation ON audit_log(correlation_id)",
    "CREATE INDEX IF NOT EXISTS ix_audit_log_entity ON audit_log(entity_type, entity_id)",
)

ACCOUNT_COLUMNS = (
    "id, owner_id, name, account_type, balance, opening_balance, "
    "bg_gradient, version, created_at, updated_at"
)

TRANSACTION_COLUMNS = (
    "id, owner_id, amount, transaction_type, account_id, to_account_id, "
    "transfer_fee, date, description, category_id, category_name, notes, "
    "created_at, updated_at"
)

AUDIT_COLUMNS = (
    "event_id, timestamp, event_type, severity, owner_id, entity_type, "
    "entity_id, correlation_id, description, details_json, error_code, "
    "error_message, is_user_action"
)


def _ts(value: datetime) -> str:
    """Fixed-width ISO timestamp so TEXT ordering matches time ordering."""
    return value.isoformat(timespec="microseconds")


def _is_lock_error(error: Exception) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _row_to_account(row: tuple) -> Account:
    return Account(
        id=UUID(row[0]),
        owner_id=row[1],
        name=row[2],
        account_type=AccountType(row[3]),
        balance=Decimal(row[4]),
        opening_balance=Decimal(row[5]),
        bg_gradient=row[6],
        version=row[7],
        created_at=datetime.fromisoformat(row[8]),
        updated_at=datetime.fromisoformat(row[9]),
    )


def _row_to_transaction(row: tuple) -> Transaction:
    return Transaction(
        id=UUID(row[0]),
        owner_id=row[1],
        amount=Decimal(row[2]),
        type=TransactionType(row[3]),
        account_id=UUID(row[4]),
        to_account_id=UUID(row[5]) if row[5] else None,
        transfer_fee=Decimal(row[6]),
        date=datetime.fromisoformat(row[7]),
        description=row[8],
        category_id=row[9],
        category_name=row[10],
        notes=row[11],
        created_at=datetime.fromisoformat(row[12]),
        updated_at=datetime.fromisoformat(row[13]),
    )


def _transaction_params(tx: Transaction) -> tuple:
    return (
        str(tx.id),
        tx.owner_id,
        str(tx.amount),
        tx.type.value,
        str(tx.account_id),
        str(tx.to_account_id) if tx.to_account_id else None,
        str(tx.transfer_fee),
        _ts(tx.date),
        tx.description,
        tx.category_id,
        tx.category_name,
        tx.notes,
        _ts(tx.created_at),
        _ts(tx.updated_at),
    )


def _row_to_budget(row: tuple) -> Budget:
    return Budget(
        id=UUID(row[0]),
        owner_id=row[1],
        category_name=row[2],
        amount=Decimal(row[3]),
        created_at=datetime.fromisoformat(row[4]),
        updated_at=datetime.fromisoformat(row[5]),
    )


def _row_to_event(row: tuple) -> AuditEvent:
    return AuditEvent(
        event_id=UUID(row[0]),
        timestamp=datetime.fromisoformat(row[1]),
        event_type=AuditEventType(row[2]),
        severity=AuditSeverity(row[3]),
        owner_id=row[4],
        entity_type=row[5],
        entity_id=UUID(row[6]) if row[6] else None,
        correlation_id=UUID(row[7]) if row[7] else None,
        description=row[8],
        details=json.loads(row[9]) if row[9] else {},
        error_code=row[10],
        error_message=row[11],
        is_user_action=bool(row[12]),
    )


class SQLiteClient:
    """
    Low-level SQLite connection wrapper.

    Owns the single aiosqlite connection and hands out serialized access to
    it, either in autocommit mode (`connection()`) or as an atomic scope
    (`transaction()`).

    Usage:
        async with SQLiteClient(settings) as client:
            await client.init_schema()
            async with client.transaction() as conn:
                await conn.execute("UPDATE ...")
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._conn: Optional[aiosqlite.Connection] = None
        # Guards opening the connection and, once open, every use of it
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def is_memory(self) -> bool:
        return self._settings.path == ":memory:"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    async def connect(self) -> aiosqlite.Connection:
        """
        Open the connection (idempotent).

        WAL mode lets readers in other processes see committed data while a
        writer holds the lock.
        """
        if self._conn is not None:
            return self._conn

        async with self._lock:
            if self._conn is None:
                self._conn = await self._open()
        return self._conn

    async def _open(self) -> aiosqlite.Connection:
        path = self._settings.path
        try:
            if not self.is_memory:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(path, isolation_level=None)
            if self._settings.wal_mode and not self.is_memory:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(f"PRAGMA busy_timeout={int(self._settings.busy_timeout_ms)}")
        except (aiosqlite.Error, OSError) as e:
            raise ConnectionError(f"Failed to open database {path}: {e}")

        logger.info("sqlite_connected", db_path=path)
        return conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("sqlite_closed", db_path=self._settings.path)

    async def init_schema(self) -> None:
        """Create tables and indexes if missing."""
        async with self.transaction() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive access to the connection in autocommit mode."""
        conn = await self.connect()
        async with self._lock:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Atomic scope: commits on success, rolls back on any exception.

        A locked database (another process holding the write lock past the
        busy timeout) surfaces as WriteConflictError so callers can retry.
        """
        conn = await self.connect()
        async with self._lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except aiosqlite.OperationalError as e:
                if _is_lock_error(e):
                    raise WriteConflictError(f"Database is locked: {e}") from e
                raise StorageError(f"Failed to begin transaction: {e}") from e

            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise

            try:
                await conn.execute("COMMIT")
            except aiosqlite.OperationalError as e:
                await conn.execute("ROLLBACK")
                if _is_lock_error(e):
                    raise WriteConflictError(f"Commit blocked by a concurrent writer: {e}") from e
                raise StorageError(f"Failed to commit: {e}") from e

    async def __aenter__(self) -> "SQLiteClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class SQLiteUnitOfWork(LedgerUnitOfWork):
    """LedgerUnitOfWork bound to an open SQLite transaction."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        cursor = await self._conn.execute(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ?",
            (str(transaction_id),),
        )
        row = await cursor.fetchone()
        return _row_to_transaction(row) if row else None

    async def get_accounts(self, account_ids: list[UUID]) -> dict[UUID, Account]:
        if not account_ids:
            return {}
        placeholders = ", ".join("?" for _ in account_ids)
        cursor = await self._conn.execute(
            f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id IN ({placeholders})",
            tuple(str(a) for a in account_ids),
        )
        rows = await cursor.fetchall()
        accounts = [_row_to_account(row) for row in rows]
        return {account.id: account for account in accounts}

    async def save_balance(self, account: Account, balance: Decimal) -> None:
        cursor = await self._conn.execute(
            """
            UPDATE accounts
            SET balance = ?, version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (str(balance), _ts(datetime.utcnow()), str(account.id), account.version),
        )
        if cursor.rowcount != 1:
            raise WriteConflictError(
                f"Account {account.id} changed since version {account.version}"
            )

    async def insert_transaction(self, transaction: Transaction) -> None:
        try:
            await self._conn.execute(
                f"INSERT INTO transactions ({TRANSACTION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _transaction_params(transaction),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(f"Transaction already exists: {transaction.id}") from e

    async def update_transaction(self, transaction: Transaction) -> None:
        params = _transaction_params(transaction)
        cursor = await self._conn.execute(
            """
            UPDATE transactions
            SET owner_id = ?, amount = ?, transaction_type = ?, account_id = ?,
                to_account_id = ?, transfer_fee = ?, date = ?, description = ?,
                category_id = ?, category_name = ?, notes = ?, created_at = ?,
                updated_at = ?
            WHERE id = ?
            """,
            params[1:] + params[:1],
        )
        if cursor.rowcount != 1:
            raise NotFoundError(f"Transaction not found: {transaction.id}")

    async def delete_transaction(self, transaction_id: UUID) -> None:
        cursor = await self._conn.execute(
            "DELETE FROM transactions WHERE id = ?",
            (str(transaction_id),),
        )
        if cursor.rowcount != 1:
            raise NotFoundError(f"Transaction not found: {transaction_id}")


class SQLiteLedgerStorage(LedgerStorageInterface, DataManagementInterface):
    """Atomic ledger scopes and whole-user purge on top of SQLiteClient."""

    def __init__(self, client: SQLiteClient):
        self._client = client

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[LedgerUnitOfWork]:
        async with self._client.transaction() as conn:
            yield SQLiteUnitOfWork(conn)

    async def purge_owner(self, owner_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        async with self._client.transaction() as conn:
            for table in ("transactions", "budgets", "categories", "accounts", "user_settings"):
                cursor = await conn.execute(
                    f"DELETE FROM {table} WHERE owner_id = ?",
                    (owner_id,),
                )
                counts[table] = cursor.rowcount
        return counts


class SQLiteAccountStorage(AccountStorageInterface):
    """Account records. Balance is never written here."""

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def create_account(self, account: Account) -> Account:
        try:
            async with self._client.connection() as conn:
                await conn.execute(
                    f"INSERT INTO accounts ({ACCOUNT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        str(account.id),
                        account.owner_id,
                        account.name,
                        account.account_type.value,
                        str(account.balance),
                        str(account.opening_balance),
                        account.bg_gradient,
                        account.version,
                        _ts(account.created_at),
                        _ts(account.updated_at),
                    ),
                )
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(f"Account already exists: {account.id}") from e
        return account

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?",
                (str(account_id),),
            )
            row = await cursor.fetchone()
        return _row_to_account(row) if row else None

    async def update_account(self, account_id: UUID, patch: AccountPatch) -> Account:
        async with self._client.transaction() as conn:
            cursor = await conn.execute(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE id = ?",
                (str(account_id),),
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Account not found: {account_id}")

            account = _row_to_account(row).model_copy(
                update={**patch.model_dump(exclude_unset=True), "updated_at": datetime.utcnow()}
            )
            await conn.execute(
                """
                UPDATE accounts
                SET name = ?, account_type = ?, bg_gradient = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    account.name,
                    account.account_type.value,
                    account.bg_gradient,
                    _ts(account.updated_at),
                    str(account_id),
                ),
            )
        return account

    async def delete_account(self, account_id: UUID) -> bool:
        """
        Delete an account only if no transaction references it.

        The reference check and the delete run in one statement so a
        transaction created concurrently cannot slip in between.
        """
        async with self._client.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM accounts
                WHERE id = ?
                  AND NOT EXISTS (
                      SELECT 1 FROM transactions
                      WHERE account_id = ? OR to_account_id = ?
                  )
                """,
                (str(account_id), str(account_id), str(account_id)),
            )
            return cursor.rowcount == 1

    async def list_accounts(self, owner_id: str) -> list[Account]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE owner_id = ? ORDER BY created_at, rowid",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_account(row) for row in rows]

    async def count_references(self, account_id: UUID) -> int:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE account_id = ? OR to_account_id = ?",
                (str(account_id), str(account_id)),
            )
            row = await cursor.fetchone()
        return row[0]


class SQLiteTransactionStorage(TransactionStorageInterface):
    """Read-only view of transactions."""

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ?",
                (str(transaction_id),),
            )
            row = await cursor.fetchone()
        return _row_to_transaction(row) if row else None

    async def list_transactions(
        self,
        owner_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        account_id: Optional[UUID] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        sql = f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE owner_id = ?"
        params: list[Any] = [owner_id]

        if date_from:
            sql += " AND date >= ?"
            params.append(_ts(date_from))

        if date_to:
            sql += " AND date <= ?"
            params.append(_ts(date_to))

        if account_id:
            sql += " AND (account_id = ? OR to_account_id = ?)"
            params.extend([str(account_id), str(account_id)])

        sql += " ORDER BY date DESC, created_at DESC"

        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(offset)

        async with self._client.connection() as conn:
            cursor = await conn.execute(sql, tuple(params))
            rows = await cursor.fetchall()

        return [_row_to_transaction(row) for row in rows]

    async def list_all_transactions(self, owner_id: str) -> list[Transaction]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                f"SELECT {TRANSACTION_COLUMNS} FROM transactions "
                "WHERE owner_id = ? ORDER BY date ASC, created_at ASC",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_transaction(row) for row in rows]


class SQLiteBudgetStorage(BudgetStorageInterface):

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def save_budget(self, budget: Budget) -> Budget:
        try:
            async with self._client.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO budgets (id, owner_id, category_name, amount, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(budget.id),
                        budget.owner_id,
                        budget.category_name,
                        str(budget.amount),
                        _ts(budget.created_at),
                        _ts(budget.updated_at),
                    ),
                )
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(
                f"Budget for category '{budget.category_name}' already exists"
            ) from e
        return budget

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                "SELECT id, owner_id, category_name, amount, created_at, updated_at "
                "FROM budgets WHERE id = ?",
                (str(budget_id),),
            )
            row = await cursor.fetchone()
        return _row_to_budget(row) if row else None

    async def update_budget(self, budget_id: UUID, patch: BudgetPatch) -> Budget:
        try:
            async with self._client.transaction() as conn:
                cursor = await conn.execute(
                    "SELECT id, owner_id, category_name, amount, created_at, updated_at "
                    "FROM budgets WHERE id = ?",
                    (str(budget_id),),
                )
                row = await cursor.fetchone()
                if row is None:
                    raise NotFoundError(f"Budget not found: {budget_id}")

                changes = patch.model_dump(exclude_unset=True, exclude_none=True)
                budget = _row_to_budget(row).model_copy(
                    update={**changes, "updated_at": datetime.utcnow()}
                )
                await conn.execute(
                    "UPDATE budgets SET category_name = ?, amount = ?, updated_at = ? WHERE id = ?",
                    (budget.category_name, str(budget.amount), _ts(budget.updated_at), str(budget_id)),
                )
        except aiosqlite.IntegrityError as e:
            raise DuplicateError(f"Budget for category '{patch.category_name}' already exists") from e
        return budget

    async def delete_budget(self, budget_id: UUID) -> bool:
        async with self._client.connection() as conn:
            cursor = await conn.execute("DELETE FROM budgets WHERE id = ?", (str(budget_id),))
            return cursor.rowcount == 1

    async def list_budgets(self, owner_id: str) -> list[Budget]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                "SELECT id, owner_id, category_name, amount, created_at, updated_at "
                "FROM budgets WHERE owner_id = ? ORDER BY category_name ASC",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_budget(row) for row in rows]


class SQLiteCategoryStorage(CategoryStorageInterface):

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def add_category(self, category: Category) -> Category:
        if category.id is None or category.owner_id is None:
            raise StorageError("Custom categories need an id and an owner")
        created_at = category.created_at or datetime.utcnow()
        async with self._client.connection() as conn:
            await conn.execute(
                """
                INSERT INTO categories (id, owner_id, name, category_type, color, icon, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(category.id),
                    category.owner_id,
                    category.name,
                    category.category_type.value,
                    category.color,
                    category.icon,
                    _ts(created_at),
                ),
            )
        return category.model_copy(update={"created_at": created_at})

    async def delete_category(self, category_id: UUID) -> bool:
        async with self._client.connection() as conn:
            cursor = await conn.execute("DELETE FROM categories WHERE id = ?", (str(category_id),))
            return cursor.rowcount == 1

    async def list_categories(self, owner_id: str) -> list[Category]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                "SELECT id, owner_id, name, category_type, color, icon, created_at "
                "FROM categories WHERE owner_id = ? ORDER BY name",
                (owner_id,),
            )
            rows = await cursor.fetchall()
        return [
            Category(
                id=UUID(row[0]),
                owner_id=row[1],
                name=row[2],
                category_type=CategoryType(row[3]),
                color=row[4],
                icon=row[5],
                created_at=datetime.fromisoformat(row[6]),
            )
            for row in rows
        ]


class SQLiteSettingsStorage(SettingsStorageInterface):

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def get_settings(self, owner_id: str) -> Optional[UserSettings]:
        async with self._client.connection() as conn:
            cursor = await conn.execute(
                "SELECT owner_id, cycle_start_day, currency, language, theme "
                "FROM user_settings WHERE owner_id = ?",
                (owner_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return UserSettings(
            owner_id=row[0],
            cycle_start_day=row[1],
            currency=row[2],
            language=row[3],
            theme=Theme(row[4]),
        )

    async def update_settings(self, owner_id: str, patch: UserSettingsPatch) -> UserSettings:
        async with self._client.transaction() as conn:
            cursor = await conn.execute(
                "SELECT owner_id, cycle_start_day, currency, language, theme "
                "FROM user_settings WHERE owner_id = ?",
                (owner_id,),
            )
            row = await cursor.fetchone()
            current = (
                UserSettings(
                    owner_id=row[0],
                    cycle_start_day=row[1],
                    currency=row[2],
                    language=row[3],
                    theme=Theme(row[4]),
                )
                if row
                else UserSettings(owner_id=owner_id)
            )
            merged = current.model_copy(update=patch.model_dump(exclude_unset=True, exclude_none=True))
            await conn.execute(
                """
                INSERT INTO user_settings (owner_id, cycle_start_day, currency, language, theme, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id) DO UPDATE SET
                    cycle_start_day = excluded.cycle_start_day,
                    currency = excluded.currency,
                    language = excluded.language,
                    theme = excluded.theme,
                    updated_at = excluded.updated_at
                """,
                (
                    owner_id,
                    merged.cycle_start_day,
                    merged.currency,
                    merged.language,
                    merged.theme.value,
                    _ts(datetime.utcnow()),
                ),
            )
        return merged


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: SQLiteClient):
        self._client = client

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            async with self._client.connection() as conn:
                await conn.execute(
                    f"INSERT INTO audit_log ({AUDIT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    event.to_row(),
                )
            return True
        except aiosqlite.Error as e:
            # Audit logging should not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._select(
            "WHERE correlation_id = ? ORDER BY timestamp ASC, rowid ASC",
            (str(correlation_id),),
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return await self._select(
            "WHERE entity_type = ? AND entity_id = ? ORDER BY timestamp ASC, rowid ASC",
            (entity_type, str(entity_id)),
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._select("ORDER BY timestamp DESC, rowid DESC LIMIT ?", (limit,))

    async def _select(self, clause: str, params: tuple) -> list[AuditEvent]:
        try:
            async with self._client.connection() as conn:
                cursor = await conn.execute(
                    f"SELECT {AUDIT_COLUMNS} FROM audit_log {clause}",
                    params,
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to get audit events: {e}") from e
        return [_row_to_event(row) for row in rows]
