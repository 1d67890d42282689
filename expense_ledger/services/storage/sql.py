"""
SQL Storage Implementation (SQLAlchemy Core, async)

DESIGN DECISION: One `expenses` table holds every lifecycle state. The
`state` column is the discriminator and the remaining columns are the
superset of all variants; reading a row validates it back into the
matching pydantic variant.

Writes are a single INSERT ... ON CONFLICT (id) DO UPDATE of the full
row image, so a save either lands completely or not at all. A CHECK
constraint rejects confirmed rows missing any required column even if
a caller bypasses the models.

TRADEOFFS:
- SQLite stores datetimes without a zone. Everything is written as UTC
  and UTC is re-attached on read.
- Schema is created with metadata.create_all; there are no migrations.
"""

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    select,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from expense_ledger.config import CurrencySettings, StorageSettings, get_settings
from expense_ledger.models.expense import (
    ConfirmedExpense,
    Expense,
    ExpenseAdapter,
    ExpenseState,
    PendingReviewExpense,
    new_expense_id,
    utc_now,
)
from expense_ledger.models.merchant import Merchant, normalize_merchant_name
from expense_ledger.services.currency.money import InvalidCurrencyError, is_valid_currency
from expense_ledger.services.storage.interface import (
    CorruptRecordError,
    DbError,
    ExpenseRepositoryInterface,
    MerchantStoreInterface,
    SettingsStoreInterface,
)


logger = structlog.get_logger(__name__)

metadata = MetaData()

expenses_table = Table(
    "expenses",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(255), nullable=False, index=True),
    Column("state", String(20), nullable=False, index=True),
    Column("image_key", String(512)),
    Column("amount", BigInteger),
    Column("currency", String(3)),
    Column("base_amount", BigInteger),
    Column("base_currency", String(3)),
    Column("merchant", String(200)),
    Column("description", Text),
    Column("categories", JSON, nullable=False),
    Column("expense_date", DateTime(timezone=True)),
    Column("extraction_metadata", JSON),
    Column("captured_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("confirmed_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint(
        "state IN ('pending', 'pending-review', 'confirmed')",
        name="ck_expenses_state",
    ),
    CheckConstraint(
        "state != 'confirmed' OR ("
        "amount IS NOT NULL AND currency IS NOT NULL "
        "AND base_amount IS NOT NULL AND base_currency IS NOT NULL "
        "AND merchant IS NOT NULL AND expense_date IS NOT NULL "
        "AND confirmed_at IS NOT NULL)",
        name="ck_expenses_confirmed_complete",
    ),
)

settings_table = Table(
    "settings",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("base_currency", String(3), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

merchants_table = Table(
    "merchants",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False, unique=True),
    Column("display_name", String(200), nullable=False),
    Column("category", String(100)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

# The settings table is a single row
SETTINGS_ROW_ID = 1


# =============================================================================
# ENGINE
# =============================================================================

def create_engine_from_settings(settings: Optional[StorageSettings] = None) -> AsyncEngine:
    """Async engine for the configured database URL."""
    settings = settings or get_settings().storage
    return create_async_engine(settings.database_url, echo=False)


async def init_schema(engine: AsyncEngine) -> None:
    """Create any missing tables."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
    except SQLAlchemyError as e:
        raise DbError(f"Failed to create schema: {describe_error(e)}") from e


# =============================================================================
# HELPERS
# =============================================================================

def describe_error(error: BaseException) -> str:
    """Error message including its chain of causes."""
    parts = []
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        parts.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or getattr(current, "orig", None)
    return " <- ".join(parts)


def _to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _upsert(engine: AsyncEngine, table: Table, values: dict[str, Any], key: str):
    """Dialect-specific INSERT ... ON CONFLICT (key) DO UPDATE."""
    dialect = engine.dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    elif dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    else:
        raise DbError(f"Unsupported database dialect for upsert: {dialect}")

    return stmt.on_conflict_do_update(
        index_elements=[table.c[key]],
        set_={name: stmt.excluded[name] for name in values if name != key},
    )


# =============================================================================
# EXPENSES
# =============================================================================

def expense_to_row(expense: Expense) -> dict[str, Any]:
    """Full row image for an expense; columns its state lacks are NULL."""
    row: dict[str, Any] = {
        "id": expense.id,
        "user_id": expense.user_id,
        "state": expense.state,
        "image_key": expense.image_key,
        "amount": None,
        "currency": None,
        "base_amount": None,
        "base_currency": None,
        "merchant": None,
        "description": None,
        "categories": [],
        "expense_date": None,
        "extraction_metadata": None,
        "captured_at": _to_db_datetime(expense.captured_at),
        "created_at": _to_db_datetime(expense.created_at),
        "confirmed_at": None,
        "updated_at": _to_db_datetime(utc_now()),
    }

    if isinstance(expense, (PendingReviewExpense, ConfirmedExpense)):
        row.update(
            amount=expense.amount,
            currency=expense.currency,
            merchant=expense.merchant,
            description=expense.description,
            categories=list(expense.categories),
            expense_date=_to_db_datetime(expense.expense_date),
            extraction_metadata=(
                expense.extraction_metadata.model_dump(mode="json")
                if expense.extraction_metadata else None
            ),
        )

    if isinstance(expense, ConfirmedExpense):
        row.update(
            base_amount=expense.base_amount,
            base_currency=expense.base_currency,
            confirmed_at=_to_db_datetime(expense.confirmed_at),
        )

    return row


def row_to_expense(row: RowMapping) -> Expense:
    """
    Validate a stored row back into its variant.

    Raises:
        CorruptRecordError: If the row does not satisfy its state's model
    """
    state = row["state"]
    data: dict[str, Any] = {
        "id": row["id"],
        "user_id": row["user_id"],
        "state": state,
        "image_key": row["image_key"],
        "captured_at": _from_db_datetime(row["captured_at"]),
        "created_at": _from_db_datetime(row["created_at"]),
    }

    if state in (ExpenseState.PENDING_REVIEW.value, ExpenseState.CONFIRMED.value):
        data.update(
            amount=row["amount"],
            currency=row["currency"],
            merchant=row["merchant"],
            description=row["description"],
            categories=row["categories"] or [],
            expense_date=_from_db_datetime(row["expense_date"]),
            extraction_metadata=row["extraction_metadata"],
        )

    if state == ExpenseState.CONFIRMED.value:
        data.update(
            base_amount=row["base_amount"],
            base_currency=row["base_currency"],
            confirmed_at=_from_db_datetime(row["confirmed_at"]),
        )

    try:
        return ExpenseAdapter.validate_python(data)
    except ValidationError as e:
        raise CorruptRecordError(f"Stored expense {row['id']} is invalid: {e}") from e


class SqlExpenseRepository(ExpenseRepositoryInterface):
    """Expense repository on any SQLAlchemy async engine (SQLite or PostgreSQL)."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    def _ordered_select(self):
        return select(expenses_table).order_by(
            expenses_table.c.expense_date.desc().nulls_last(),
            expenses_table.c.captured_at.desc(),
        )

    async def save(self, expense: Expense) -> Expense:
        stmt = _upsert(self._engine, expenses_table, expense_to_row(expense), "id")
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise DbError(f"Failed to save expense {expense.id}: {describe_error(e)}") from e
        return expense

    async def get_by_id(self, expense_id: str) -> Optional[Expense]:
        stmt = select(expenses_table).where(expenses_table.c.id == expense_id)
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            raise DbError(f"Failed to get expense {expense_id}: {describe_error(e)}") from e
        return row_to_expense(row) if row is not None else None

    async def _list(self, stmt) -> list[Expense]:
        try:
            async with self._engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            raise DbError(f"Failed to list expenses: {describe_error(e)}") from e
        return [row_to_expense(row) for row in rows]

    async def list_all(self, user_id: Optional[str] = None) -> list[Expense]:
        stmt = self._ordered_select()
        if user_id is not None:
            stmt = stmt.where(expenses_table.c.user_id == user_id)
        return await self._list(stmt)

    async def list_by_state(
        self,
        state: ExpenseState,
        user_id: Optional[str] = None,
    ) -> list[Expense]:
        stmt = self._ordered_select().where(
            expenses_table.c.state == ExpenseState(state).value
        )
        if user_id is not None:
            stmt = stmt.where(expenses_table.c.user_id == user_id)
        return await self._list(stmt)

    async def delete(self, expense_id: str) -> Optional[Expense]:
        try:
            async with self._engine.begin() as conn:
                row = (await conn.execute(
                    select(expenses_table).where(expenses_table.c.id == expense_id)
                )).mappings().first()
                if row is None:
                    return None
                await conn.execute(
                    delete(expenses_table).where(expenses_table.c.id == expense_id)
                )
        except SQLAlchemyError as e:
            raise DbError(f"Failed to delete expense {expense_id}: {describe_error(e)}") from e

        logger.info("expense_row_deleted", expense_id=expense_id, state=row["state"])
        return row_to_expense(row)


# =============================================================================
# SETTINGS
# =============================================================================

class SqlSettingsStore(SettingsStoreInterface):
    """Singleton settings row (id = 1)."""

    def __init__(self, engine: AsyncEngine, currency_settings: Optional[CurrencySettings] = None):
        self._engine = engine
        self._default_base_currency = (
            currency_settings or get_settings().currency
        ).default_base_currency

    async def get_base_currency(self) -> str:
        stmt = select(settings_table.c.base_currency).where(settings_table.c.id == SETTINGS_ROW_ID)
        try:
            async with self._engine.connect() as conn:
                value = (await conn.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DbError(f"Failed to read settings: {describe_error(e)}") from e
        return value or self._default_base_currency

    async def set_base_currency(self, currency: str) -> str:
        code = currency.strip().upper()
        if not is_valid_currency(code):
            raise InvalidCurrencyError(currency)

        stmt = _upsert(
            self._engine,
            settings_table,
            {"id": SETTINGS_ROW_ID, "base_currency": code, "updated_at": utc_now()},
            "id",
        )
        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise DbError(f"Failed to save settings: {describe_error(e)}") from e

        logger.info("base_currency_changed", base_currency=code)
        return code


# =============================================================================
# MERCHANTS
# =============================================================================

def _row_to_merchant(row: RowMapping) -> Merchant:
    return Merchant(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        category=row["category"],
        created_at=_from_db_datetime(row["created_at"]),
    )


class SqlMerchantStore(MerchantStoreInterface):
    """Merchants table, unique on the normalized name."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    async def _first(self, stmt) -> Optional[Merchant]:
        try:
            async with self._engine.connect() as conn:
                row = (await conn.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            raise DbError(f"Failed to read merchant: {describe_error(e)}") from e
        return _row_to_merchant(row) if row is not None else None

    async def get_by_id(self, merchant_id: str) -> Optional[Merchant]:
        return await self._first(
            select(merchants_table).where(merchants_table.c.id == merchant_id)
        )

    async def get_by_name(self, name: str) -> Optional[Merchant]:
        return await self._first(
            select(merchants_table).where(
                merchants_table.c.name == normalize_merchant_name(name)
            )
        )

    async def get_or_create(self, display_name: str) -> Merchant:
        name = normalize_merchant_name(display_name)
        existing = await self.get_by_name(name)
        if existing is not None:
            return existing

        values = {
            "id": new_expense_id(),
            "name": name,
            "display_name": display_name.strip(),
            "category": None,
            "created_at": utc_now(),
        }
        dialect = self._engine.dialect.name
        if dialect == "sqlite":
            stmt = sqlite.insert(merchants_table).values(**values)
        elif dialect == "postgresql":
            stmt = postgresql.insert(merchants_table).values(**values)
        else:
            raise DbError(f"Unsupported database dialect for upsert: {dialect}")
        # A concurrent insert of the same name wins; we read it back below
        stmt = stmt.on_conflict_do_nothing(index_elements=[merchants_table.c.name])

        try:
            async with self._engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise DbError(f"Failed to create merchant {name!r}: {describe_error(e)}") from e

        created = await self.get_by_name(name)
        if created is None:
            raise DbError(f"Merchant {name!r} missing after insert")
        return created

    async def list_all(self) -> list[Merchant]:
        stmt = select(merchants_table).order_by(merchants_table.c.display_name)
        try:
            async with self._engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            raise DbError(f"Failed to list merchants: {describe_error(e)}") from e
        return [_row_to_merchant(row) for row in rows]

    async def update_category(
        self,
        merchant_id: str,
        category: Optional[str],
    ) -> Optional[Merchant]:
        stmt = (
            update(merchants_table)
            .where(merchants_table.c.id == merchant_id)
            .values(category=category)
        )
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise DbError(f"Failed to update merchant {merchant_id}: {describe_error(e)}") from e

        if result.rowcount == 0:
            return None
        return await self.get_by_id(merchant_id)
