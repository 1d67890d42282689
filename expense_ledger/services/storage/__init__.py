"""Storage services package."""

from expense_ledger.services.storage.blob import LocalBlobStore
from expense_ledger.services.storage.interface import (
    BlobStorageError,
    BlobStoreInterface,
    CorruptRecordError,
    DbError,
    ExpenseRepositoryInterface,
    MerchantStoreInterface,
    SettingsStoreInterface,
    StorageError,
)
from expense_ledger.services.storage.sql import (
    SqlExpenseRepository,
    SqlMerchantStore,
    SqlSettingsStore,
    create_engine_from_settings,
    init_schema,
)

__all__ = [
    "BlobStorageError",
    "BlobStoreInterface",
    "CorruptRecordError",
    "DbError",
    "ExpenseRepositoryInterface",
    "LocalBlobStore",
    "MerchantStoreInterface",
    "SettingsStoreInterface",
    "SqlExpenseRepository",
    "SqlMerchantStore",
    "SqlSettingsStore",
    "StorageError",
    "create_engine_from_settings",
    "init_schema",
]
