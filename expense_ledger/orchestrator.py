"""
Main Orchestrator for Expense Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Capture (image -> blob -> pending -> extraction -> review or auto-confirm)
2. Confirm (pending-review + user fixes -> confirmed)
3. Update, list, delete and health checks

DESIGN DECISION: The orchestrator enforces the boundaries:
- The blob is written before any expense row points at it
- Every persisted row is the output of a pure lifecycle transition
- Extraction failures are absorbed HERE and nowhere else: capture
  always returns something the user can review
- Storage and conversion failures propagate
- Every step is audited
"""

import re
import time
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from expense_ledger import lifecycle
from expense_ledger.audit import AuditLogger, create_correlation_id
from expense_ledger.config import AppSettings, Settings, get_settings
from expense_ledger.lifecycle import (
    ExpenseAlreadyConfirmedError,
    ExpenseNotFoundError,
    ExpenseNotPendingReviewError,
    MissingRequiredFieldsError,
)
from expense_ledger.models.expense import (
    CaptureResult,
    Confirmation,
    ConfirmedExpense,
    Expense,
    ExpenseChanges,
    ExpenseState,
    ExtractionResult,
    ExtractionSummary,
    ImageUpload,
    OllamaHealth,
    PendingReviewExpense,
    utc_now,
)
from expense_ledger.models.merchant import Merchant
from expense_ledger.services.currency import (
    CurrencyConversionError,
    CurrencyService,
    InvalidCurrencyError,
    is_valid_currency,
)
from expense_ledger.services.extraction import ExtractionService
from expense_ledger.services.storage import (
    BlobStorageError,
    BlobStoreInterface,
    ExpenseRepositoryInterface,
    LocalBlobStore,
    MerchantStoreInterface,
    SettingsStoreInterface,
    SqlExpenseRepository,
    SqlMerchantStore,
    SqlSettingsStore,
    create_engine_from_settings,
    init_schema,
)


logger = structlog.get_logger(__name__)

IMAGE_KEY_PREFIX = "expenses"
_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

# Confirm overrides that fall back to the stored value when passed as None
CONFIRM_KEEP_ON_NULL = frozenset({"amount", "currency", "merchant", "expense_date", "categories"})


class InvalidImageError(ValueError):
    """The uploaded file is empty, too large or not an accepted image type."""
    pass


def build_image_key(file_name: str, now_ms: Optional[int] = None) -> str:
    """
    Blob key for a new receipt image.

    Format: expenses/<epoch-ms>-<8 hex chars>-<sanitized file name>
    """
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    safe_name = _UNSAFE_FILE_CHARS.sub("_", file_name.strip()).strip("._")[-100:] or "upload"
    return f"{IMAGE_KEY_PREFIX}/{now_ms}-{uuid4().hex[:8]}-{safe_name}"


class ExpenseService:
    """
    Orchestrates the expense flows.

    Capture flow:
    1. Validate the upload
    2. Store image -> blob key
    3. Create + persist pending expense
    4. Extract (failures become success=False data)
    5. Apply extraction + persist pending-review
    6. If nothing is missing: convert, confirm, persist

    Collaborators are injected; the defaults are the local implementations.
    """

    def __init__(
        self,
        repository: ExpenseRepositoryInterface,
        settings_store: SettingsStoreInterface,
        blob_store: Optional[BlobStoreInterface] = None,
        extraction_service: Optional[ExtractionService] = None,
        currency_service: Optional[CurrencyService] = None,
        merchant_store: Optional[MerchantStoreInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._expenses = repository
        self._settings_store = settings_store
        self._blobs = blob_store or LocalBlobStore()
        self._extraction = extraction_service or ExtractionService()
        self._currency = currency_service or CurrencyService()
        self._merchants = merchant_store
        self._audit = audit_logger or AuditLogger()
        self._app_settings = app_settings or get_settings().app

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _validate_upload(self, image_bytes: bytes, file_name: str, content_type: str) -> ImageUpload:
        try:
            upload = ImageUpload(
                file_name=file_name or "upload",
                file_size_bytes=len(image_bytes),
                content_type=content_type,
            )
        except ValidationError as e:
            raise InvalidImageError(f"Invalid image upload: {e.errors()[0]['msg']}") from e

        if upload.file_size_bytes > self._app_settings.max_upload_size_bytes:
            raise InvalidImageError(
                f"Image is {upload.file_size_bytes} bytes; "
                f"the limit is {self._app_settings.max_upload_size_mb} MB"
            )
        if upload.content_type not in self._app_settings.supported_content_types_list:
            raise InvalidImageError(f"Unsupported image type: {upload.content_type}")
        return upload

    async def _store_image(
        self,
        image_bytes: bytes,
        file_name: str,
        content_type: str,
        correlation_id: UUID,
    ) -> str:
        upload = self._validate_upload(image_bytes, file_name, content_type)
        image_key = build_image_key(upload.file_name)

        try:
            await self._blobs.put(image_key, image_bytes, upload.content_type)
        except BlobStorageError as e:
            await self._audit.log_external_service_error(
                service="blob_store",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

        await self._audit.log_image_stored(
            image_key=image_key,
            content_type=upload.content_type,
            size_bytes=upload.file_size_bytes,
            correlation_id=correlation_id,
        )
        return image_key

    async def _get_or_raise(self, expense_id: str) -> Expense:
        expense = await self._expenses.get_by_id(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(expense_id)
        return expense

    async def _convert_to_base(
        self,
        amount: int,
        currency: str,
        correlation_id: Optional[UUID],
    ) -> tuple[int, str]:
        """Strict conversion into the current base currency."""
        base_currency = await self._settings_store.get_base_currency()
        try:
            base_amount = await self._currency.convert(amount, currency, base_currency)
        except CurrencyConversionError as e:
            await self._audit.log_external_service_error(
                service="exchange_rates",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise
        return base_amount, base_currency

    async def _register_merchant(self, display_name: str) -> None:
        if self._merchants is not None:
            await self._merchants.get_or_create(display_name)

    async def _run_extraction(
        self,
        image_bytes: bytes,
        expense_id: str,
        correlation_id: UUID,
    ) -> ExtractionResult:
        """Extraction with every failure turned into a success=False result."""
        try:
            result = await self._extraction.extract_from_image(image_bytes)
        except Exception as e:
            # Whatever went wrong, the user still gets a review form
            logger.warning(
                "extraction_absorbed",
                expense_id=expense_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            result = ExtractionResult.failed(str(e) or type(e).__name__)

        if not result.success:
            await self._audit.log_extraction_failed(
                expense_id=expense_id,
                error_message=result.error or "unknown error",
                correlation_id=correlation_id,
            )
        return result

    async def _confirm(
        self,
        pending_review: PendingReviewExpense,
        overrides: ExpenseChanges,
        automatic: bool,
        correlation_id: Optional[UUID],
    ) -> ConfirmedExpense:
        # A null override keeps the stored value; only description can be cleared
        kept = {
            name: value
            for name, value in overrides.changed_fields().items()
            if value is not None or name not in CONFIRM_KEEP_ON_NULL
        }
        merged = (
            lifecycle.update(pending_review, ExpenseChanges(**kept))
            if kept else pending_review
        )

        missing = lifecycle.get_missing_fields(merged)
        if missing:
            raise MissingRequiredFieldsError(merged.id, missing)

        base_amount, base_currency = await self._convert_to_base(
            merged.amount, merged.currency, correlation_id
        )

        confirmed = lifecycle.confirm(
            merged,
            Confirmation(
                amount=merged.amount,
                currency=merged.currency,
                base_amount=base_amount,
                base_currency=base_currency,
                merchant=merged.merchant,
                expense_date=merged.expense_date,
                description=merged.description,
                categories=list(merged.categories),
            ),
        )

        await self._register_merchant(confirmed.merchant)
        await self._expenses.save(confirmed)

        await self._audit.log_expense_confirmed(
            expense_id=confirmed.id,
            amount=confirmed.amount,
            currency=confirmed.currency,
            base_amount=confirmed.base_amount,
            base_currency=confirmed.base_currency,
            automatic=automatic,
            correlation_id=correlation_id,
        )
        return confirmed

    # =========================================================================
    # CAPTURE
    # =========================================================================

    async def capture(
        self,
        user_id: str,
        image_bytes: bytes,
        file_name: str,
        content_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> CaptureResult:
        """
        Capture a receipt image.

        Returns:
            CaptureResult, even when extraction failed

        Raises:
            InvalidImageError: If the upload is rejected (nothing stored)
            BlobStorageError: If the image cannot be stored (no expense created)
            DbError: If an expense row cannot be written
            CurrencyConversionError: If auto-confirm cannot convert; the
                expense stays persisted in pending-review
        """
        correlation_id = correlation_id or create_correlation_id()

        image_key = await self._store_image(image_bytes, file_name, content_type, correlation_id)

        pending = lifecycle.create_pending(user_id, image_key)
        await self._expenses.save(pending)
        await self._audit.log_expense_created(
            expense_id=pending.id,
            user_id=user_id,
            correlation_id=correlation_id,
        )

        extraction = await self._run_extraction(image_bytes, pending.id, correlation_id)

        pending_review = lifecycle.apply_extraction(pending, extraction)
        await self._expenses.save(pending_review)

        summary = ExtractionSummary.from_result(extraction)
        missing = lifecycle.get_missing_fields(pending_review)

        if extraction.success:
            await self._audit.log_extraction_completed(
                expense_id=pending_review.id,
                missing_fields=missing,
                timing=extraction.timing.model_dump(),
                correlation_id=correlation_id,
            )

        if missing:
            return CaptureResult(expense=pending_review, extraction=summary, needs_review=True)

        confirmed = await self._confirm(
            pending_review,
            ExpenseChanges(),
            automatic=True,
            correlation_id=correlation_id,
        )
        return CaptureResult(expense=confirmed, extraction=summary, needs_review=False)

    # =========================================================================
    # CONFIRM / UPDATE
    # =========================================================================

    async def confirm_existing(
        self,
        expense_id: str,
        overrides: Optional[ExpenseChanges] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ConfirmedExpense:
        """
        Confirm a pending-review expense, applying the user's fixes first.

        Raises:
            ExpenseNotFoundError: No such expense
            ExpenseAlreadyConfirmedError: It is already confirmed
            ExpenseNotPendingReviewError: It is still pending
            MissingRequiredFieldsError: Required fields are still empty
            CurrencyConversionError: The base amount cannot be computed
        """
        expense = await self._get_or_raise(expense_id)

        if isinstance(expense, ConfirmedExpense):
            raise ExpenseAlreadyConfirmedError(expense.id)
        if not isinstance(expense, PendingReviewExpense):
            raise ExpenseNotPendingReviewError(expense.id, expense.state)

        return await self._confirm(
            expense,
            overrides or ExpenseChanges(),
            automatic=False,
            correlation_id=correlation_id,
        )

    async def _revise_confirmed(
        self,
        expense: ConfirmedExpense,
        changes: ExpenseChanges,
    ) -> ConfirmedExpense:
        fields = changes.changed_fields()
        amount = fields.get("amount") if fields.get("amount") is not None else expense.amount
        currency = fields.get("currency") if fields.get("currency") is not None else expense.currency

        if amount != expense.amount or currency != expense.currency:
            base_amount, base_currency = await self._convert_to_base(amount, currency, None)
        else:
            base_amount, base_currency = expense.base_amount, expense.base_currency

        revised = lifecycle.revise_confirmed(
            expense,
            changes,
            base_amount=base_amount,
            base_currency=base_currency,
        )

        if revised.merchant != expense.merchant:
            await self._register_merchant(revised.merchant)
        await self._expenses.save(revised)

        await self._audit.log_expense_updated(
            expense_id=revised.id,
            state=revised.state,
            changed_fields=list(fields),
        )
        return revised

    async def update_confirmed(
        self,
        expense_id: str,
        changes: ExpenseChanges,
    ) -> ConfirmedExpense:
        """
        Edit a confirmed expense.

        The base amount is recomputed (strictly, against the current base
        currency) only when amount or currency actually changed.
        """
        expense = await self._get_or_raise(expense_id)
        if not isinstance(expense, ConfirmedExpense):
            raise ExpenseNotPendingReviewError(
                expense.id,
                expense.state,
                message=f"Expense {expense.id} is '{expense.state}', expected 'confirmed'",
            )
        return await self._revise_confirmed(expense, changes)

    async def update(self, expense_id: str, changes: ExpenseChanges) -> Expense:
        """
        Edit an expense in whichever state allows editing.

        pending-review -> pending-review, confirmed -> confirmed.
        A pending expense cannot be edited yet.
        """
        expense = await self._get_or_raise(expense_id)

        if isinstance(expense, ConfirmedExpense):
            return await self._revise_confirmed(expense, changes)

        if isinstance(expense, PendingReviewExpense):
            updated = lifecycle.update(expense, changes)
            await self._expenses.save(updated)
            await self._audit.log_expense_updated(
                expense_id=updated.id,
                state=updated.state,
                changed_fields=list(changes.changed_fields()),
            )
            return updated

        raise ExpenseNotPendingReviewError(expense.id, expense.state)

    # =========================================================================
    # DIRECT ENTRY
    # =========================================================================

    async def create_direct(
        self,
        user_name: str,
        merchant: str,
        currency: str,
        amount: int,
        image_bytes: bytes,
        file_name: str,
        content_type: str,
        expense_date: Optional[datetime] = None,
    ) -> ConfirmedExpense:
        """
        Create a confirmed expense without extraction (shortcuts, integrations).

        Args:
            amount: Amount in the smallest unit of `currency`

        Raises:
            InvalidCurrencyError: If the currency code is unknown
            InvalidImageError: If the upload is rejected
            CurrencyConversionError: If the base amount cannot be computed
        """
        correlation_id = create_correlation_id()
        user_id = user_name.strip().lower()
        currency = currency.strip().upper()
        merchant = merchant.strip()

        if not is_valid_currency(currency):
            raise InvalidCurrencyError(currency)

        image_key = await self._store_image(image_bytes, file_name, content_type, correlation_id)
        base_amount, base_currency = await self._convert_to_base(amount, currency, correlation_id)

        confirmed = lifecycle.create_confirmed(
            user_id,
            image_key,
            Confirmation(
                amount=amount,
                currency=currency,
                base_amount=base_amount,
                base_currency=base_currency,
                merchant=merchant,
                expense_date=expense_date or utc_now(),
            ),
        )

        await self._register_merchant(confirmed.merchant)
        await self._expenses.save(confirmed)

        await self._audit.log_expense_created(
            expense_id=confirmed.id,
            user_id=user_id,
            correlation_id=correlation_id,
        )
        await self._audit.log_expense_confirmed(
            expense_id=confirmed.id,
            amount=confirmed.amount,
            currency=confirmed.currency,
            base_amount=confirmed.base_amount,
            base_currency=confirmed.base_currency,
            automatic=False,
            correlation_id=correlation_id,
        )
        return confirmed

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_by_id(self, expense_id: str) -> Optional[Expense]:
        return await self._expenses.get_by_id(expense_id)

    async def list_expenses(self, user_id: Optional[str] = None) -> list[Expense]:
        return await self._expenses.list_all(user_id)

    async def list_pending_review(self, user_id: Optional[str] = None) -> list[Expense]:
        return await self._expenses.list_by_state(ExpenseState.PENDING_REVIEW, user_id)

    async def list_confirmed(self, user_id: Optional[str] = None) -> list[Expense]:
        return await self._expenses.list_by_state(ExpenseState.CONFIRMED, user_id)

    async def list_merchants(self) -> list[Merchant]:
        if self._merchants is None:
            return []
        return await self._merchants.list_all()

    def get_missing_fields(self, expense: Expense) -> list[str]:
        """Fields still needed to confirm; empty for any state but pending-review."""
        if isinstance(expense, PendingReviewExpense):
            return lifecycle.get_missing_fields(expense)
        return []

    async def get_display_amount_in_base(self, expense: Expense) -> Optional[int]:
        """
        Display amount in the base currency, best effort.

        Confirmed expenses already carry it. Expenses under review are
        converted in fallback mode, so an unreachable rate API shows a
        1:1 figure instead of failing the listing.
        """
        if isinstance(expense, ConfirmedExpense):
            return expense.base_amount
        if isinstance(expense, PendingReviewExpense) and expense.amount is not None and expense.currency:
            base_currency = await self._settings_store.get_base_currency()
            return await self._currency.convert_with_fallback(
                expense.amount, expense.currency, base_currency
            )
        return None

    async def check_extraction_health(self) -> OllamaHealth:
        return await self._extraction.check_ollama_health()

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(self, expense_id: str) -> None:
        """
        Delete an expense, then its image.

        The row goes first: an orphaned blob is acceptable garbage, a row
        pointing at a missing blob is not. A failed blob removal is logged.

        Raises:
            ExpenseNotFoundError: No such expense
        """
        deleted = await self._expenses.delete(expense_id)
        if deleted is None:
            raise ExpenseNotFoundError(expense_id)

        await self._audit.log_expense_deleted(expense_id=expense_id)

        if deleted.image_key:
            try:
                await self._blobs.delete(deleted.image_key)
            except BlobStorageError as e:
                logger.warning(
                    "orphaned_blob",
                    expense_id=expense_id,
                    image_key=deleted.image_key,
                    error=str(e),
                )


async def create_expense_service(settings: Optional[Settings] = None) -> ExpenseService:
    """
    Factory function to create a fully wired ExpenseService.

    Builds the database engine, creates missing tables and wires the
    default local components.
    """
    settings = settings or get_settings()
    storage_settings = settings.storage

    engine = create_engine_from_settings(storage_settings)
    await init_schema(engine)

    return ExpenseService(
        repository=SqlExpenseRepository(engine),
        settings_store=SqlSettingsStore(engine, settings.currency),
        blob_store=LocalBlobStore(settings=storage_settings),
        extraction_service=ExtractionService(settings.ollama),
        currency_service=CurrencyService(settings.currency),
        merchant_store=SqlMerchantStore(engine),
        audit_logger=AuditLogger(),
        app_settings=settings.app,
    )
