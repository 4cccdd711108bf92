"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLite as the backend, but designed to be swappable.
"""

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
from finance_tracker.services.storage.sqlite import (
    SQLiteAccountStorage,
    SQLiteAuditStorage,
    SQLiteBudgetStorage,
    SQLiteCategoryStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    SQLiteSettingsStorage,
    SQLiteTransactionStorage,
    SQLiteUnitOfWork,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "CategoryStorageInterface",
    "DataManagementInterface",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "SettingsStorageInterface",
    "TransactionStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "WriteConflictError",
    # SQLite implementation
    "SQLiteAccountStorage",
    "SQLiteAuditStorage",
    "SQLiteBudgetStorage",
    "SQLiteCategoryStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
    "SQLiteSettingsStorage",
    "SQLiteTransactionStorage",
    "SQLiteUnitOfWork",
]
