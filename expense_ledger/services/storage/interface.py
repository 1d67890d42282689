"""
Abstract Storage Interfaces

DESIGN DECISION: Business logic talks to storage only through these
interfaces. This allows us to:
1. Run on SQLite locally and PostgreSQL in production
2. Use temporary databases and directories in tests
3. Keep the orchestrator free of SQL and file handling

The interfaces are intentionally small - just the operations the
expense workflow needs.
"""

from abc import ABC, abstractmethod
from typing import Optional

from expense_ledger.models.expense import Expense, ExpenseState
from expense_ledger.models.merchant import Merchant


class BlobStoreInterface(ABC):
    """Byte storage for receipt images, addressed by key."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> None:
        """
        Store bytes under a key, replacing anything already there.

        Raises:
            BlobStorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """
        Read the bytes stored under a key.

        Returns:
            The bytes, or None if nothing is stored under the key
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """
        Remove a key. Deleting a missing key is not an error.

        Raises:
            BlobStorageError: If removal fails
        """
        pass


class ExpenseRepositoryInterface(ABC):
    """
    Persistence for expenses in every lifecycle state.

    Any implementation must write a full expense in a single statement:
    either the whole row image lands or nothing does.
    """

    @abstractmethod
    async def save(self, expense: Expense) -> Expense:
        """
        Insert or replace an expense by ID.

        Args:
            expense: Row image produced by a lifecycle transition

        Returns:
            The saved expense

        Raises:
            DbError: If the write fails
        """
        pass

    @abstractmethod
    async def get_by_id(self, expense_id: str) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Returns:
            The expense if found, None otherwise

        Raises:
            CorruptRecordError: If the stored row is not a valid expense
        """
        pass

    @abstractmethod
    async def list_all(self, user_id: Optional[str] = None) -> list[Expense]:
        """
        All expenses, newest expense date first (undated last, then by capture time).

        Args:
            user_id: Only this user's expenses when given
        """
        pass

    @abstractmethod
    async def list_by_state(
        self,
        state: ExpenseState,
        user_id: Optional[str] = None,
    ) -> list[Expense]:
        """Expenses in one lifecycle state, ordered like list_all."""
        pass

    @abstractmethod
    async def delete(self, expense_id: str) -> Optional[Expense]:
        """
        Delete an expense.

        Returns:
            The deleted expense, or None if it did not exist
        """
        pass


class SettingsStoreInterface(ABC):
    """User-level settings. Currently just the base currency."""

    @abstractmethod
    async def get_base_currency(self) -> str:
        """The base currency, or the configured default if never set."""
        pass

    @abstractmethod
    async def set_base_currency(self, currency: str) -> str:
        """
        Change the base currency.

        Returns:
            The stored (upper-cased) code

        Raises:
            InvalidCurrencyError: If the code is not ISO 4217
        """
        pass


class MerchantStoreInterface(ABC):
    """Merchants known to the ledger, unique by normalized name."""

    @abstractmethod
    async def get_by_id(self, merchant_id: str) -> Optional[Merchant]:
        pass

    @abstractmethod
    async def get_by_name(self, name: str) -> Optional[Merchant]:
        """Case-insensitive lookup."""
        pass

    @abstractmethod
    async def get_or_create(self, display_name: str) -> Merchant:
        """Return the merchant with this name, creating it (without category) if new."""
        pass

    @abstractmethod
    async def list_all(self) -> list[Merchant]:
        """All merchants ordered by display name."""
        pass

    @abstractmethod
    async def update_category(
        self,
        merchant_id: str,
        category: Optional[str],
    ) -> Optional[Merchant]:
        """
        Set or clear a merchant's category.

        Returns:
            The updated merchant, or None if it does not exist
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class BlobStorageError(StorageError):
    """Reading or writing a blob failed."""
    pass


class DbError(StorageError):
    """A database statement failed."""
    pass


class CorruptRecordError(DbError):
    """A stored row does not form a valid expense for its state."""
    pass
