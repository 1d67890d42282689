"""
Expense Lifecycle State Machine

    pending --apply_extraction--> pending-review --confirm--> confirmed
                                        |  ^                     |  ^
                                        +--+ update              +--+ revise_confirmed

Every function here is pure: it takes the current expense plus input
and returns a NEW expense. Nothing is mutated and nothing touches
storage, the network or the clock unless `now` is left to default.

DESIGN DECISION: Transitions trust their caller to have resolved
missing data. The orchestrator calls get_missing_fields() before
confirm(); if it does not, constructing the ConfirmedExpense fails
pydantic validation, so an incomplete confirmed expense still cannot
be produced.
"""

from datetime import datetime, timezone
from typing import Optional

from expense_ledger.lifecycle.errors import (
    ExpenseAlreadyConfirmedError,
    ExpenseNotPendingReviewError,
)
from expense_ledger.models.expense import (
    REQUIRED_CONFIRM_FIELDS,
    Confirmation,
    ConfirmedExpense,
    Expense,
    ExpenseChanges,
    ExtractionMetadata,
    ExtractionResult,
    PendingExpense,
    PendingReviewExpense,
    new_expense_id,
    utc_now,
)


# =============================================================================
# TYPE GUARDS
# =============================================================================

def is_pending(expense: Expense) -> bool:
    return isinstance(expense, PendingExpense)


def is_pending_review(expense: Expense) -> bool:
    return isinstance(expense, PendingReviewExpense)


def is_confirmed(expense: Expense) -> bool:
    return isinstance(expense, ConfirmedExpense)


def _identity(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "user_id": expense.user_id,
        "image_key": expense.image_key,
        "captured_at": expense.captured_at,
        "created_at": expense.created_at,
    }


def _require_pending_review(expense: Expense) -> PendingReviewExpense:
    if isinstance(expense, PendingReviewExpense):
        return expense
    if isinstance(expense, ConfirmedExpense):
        raise ExpenseAlreadyConfirmedError(expense.id)
    raise ExpenseNotPendingReviewError(expense.id, expense.state)


def parse_expense_date(value: Optional[str]) -> Optional[datetime]:
    """
    Turn the extractor's ISO date string into an aware datetime.

    Returns None for missing or unreadable values; a bad date is a
    field for the user to fill in, not a failure.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# TRANSITIONS
# =============================================================================

def create_pending(
    user_id: str,
    image_key: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    expense_id: Optional[str] = None,
) -> PendingExpense:
    """Start a new expense for a freshly captured receipt."""
    now = now or utc_now()
    return PendingExpense(
        id=expense_id or new_expense_id(),
        user_id=user_id,
        image_key=image_key,
        captured_at=now,
        created_at=now,
    )


def apply_extraction(
    pending: PendingExpense,
    extraction: Optional[ExtractionResult],
) -> PendingReviewExpense:
    """
    Move a pending expense into review using whatever extraction produced.

    Always succeeds. With no extraction, or one without data, every
    data field is null and the error (if any) is kept for the reviewer.
    """
    if not isinstance(pending, PendingExpense):
        raise ExpenseNotPendingReviewError(
            pending.id,
            pending.state,
            message=f"Expense {pending.id} is '{pending.state}', extraction only applies to 'pending'",
        )

    if extraction is None:
        return PendingReviewExpense(**_identity(pending))

    metadata = ExtractionMetadata(
        ocr_text=extraction.ocr_text,
        error=extraction.error,
        timing=extraction.timing,
    )

    data = extraction.data
    if data is None:
        return PendingReviewExpense(**_identity(pending), extraction_metadata=metadata)

    return PendingReviewExpense(
        **_identity(pending),
        amount=data.amount,
        currency=data.currency,
        merchant=data.merchant or None,
        description=None,
        categories=list(data.category),
        expense_date=parse_expense_date(data.date),
        extraction_metadata=metadata,
    )


def get_missing_fields(pending_review: PendingReviewExpense) -> list[str]:
    """Required-for-confirm fields that are still null or blank, in a stable order."""
    return [
        name for name in REQUIRED_CONFIRM_FIELDS
        if getattr(pending_review, name) in (None, "")
    ]


def can_confirm(pending_review: PendingReviewExpense) -> bool:
    return not get_missing_fields(pending_review)


def confirm(
    pending_review: PendingReviewExpense,
    confirmation: Confirmation,
    *,
    now: Optional[datetime] = None,
) -> ConfirmedExpense:
    """
    Build the confirmed expense from a reviewed one.

    Description and categories fall back to the reviewed values when the
    confirmation leaves them out.
    """
    pending_review = _require_pending_review(pending_review)

    if "description" in confirmation.model_fields_set:
        description = confirmation.description
    else:
        description = pending_review.description

    categories = (
        list(confirmation.categories)
        if confirmation.categories is not None
        else list(pending_review.categories)
    )

    return ConfirmedExpense(
        **_identity(pending_review),
        amount=confirmation.amount,
        currency=confirmation.currency,
        base_amount=confirmation.base_amount,
        base_currency=confirmation.base_currency,
        merchant=confirmation.merchant,
        description=description,
        categories=categories,
        expense_date=confirmation.expense_date,
        extraction_metadata=pending_review.extraction_metadata,
        confirmed_at=now or utc_now(),
    )


def update(
    pending_review: PendingReviewExpense,
    changes: ExpenseChanges,
) -> PendingReviewExpense:
    """
    Apply a partial edit to an expense under review.

    Only legal in pending-review; confirmed expenses go through
    revise_confirmed() so their base amount stays consistent.
    """
    pending_review = _require_pending_review(pending_review)
    data = pending_review.model_dump()
    data.update(changes.changed_fields())
    return PendingReviewExpense.model_validate(data)


def revise_confirmed(
    confirmed: ConfirmedExpense,
    changes: ExpenseChanges,
    *,
    base_amount: int,
    base_currency: str,
) -> ConfirmedExpense:
    """
    Edit a confirmed expense (confirmed -> confirmed).

    The caller supplies the base amount: recomputed when amount or
    currency changed, passed through otherwise. Fields that are
    required on a confirmed expense cannot be cleared.
    """
    if not isinstance(confirmed, ConfirmedExpense):
        raise ExpenseNotPendingReviewError(
            confirmed.id,
            confirmed.state,
            message=f"Expense {confirmed.id} is '{confirmed.state}', expected 'confirmed'",
        )

    data = confirmed.model_dump()
    for name, value in changes.changed_fields().items():
        # None means "clear" only for the optional description
        if value is None and name != "description":
            continue
        data[name] = value
    data["base_amount"] = base_amount
    data["base_currency"] = base_currency
    return ConfirmedExpense.model_validate(data)


def create_confirmed(
    user_id: str,
    image_key: Optional[str],
    confirmation: Confirmation,
    *,
    now: Optional[datetime] = None,
) -> ConfirmedExpense:
    """Build a confirmed expense directly from complete input, skipping extraction."""
    now = now or utc_now()
    pending = create_pending(user_id, image_key, now=now)
    return confirm(apply_extraction(pending, None), confirmation, now=now)


# =============================================================================
# DISPLAY HELPERS
# =============================================================================

def get_display_amount(expense: Expense) -> Optional[int]:
    """
    Amount to show in lists.

    Confirmed expenses show the base-currency amount; expenses under
    review show their unconverted amount; pending ones have none.
    """
    if isinstance(expense, ConfirmedExpense):
        return expense.base_amount
    if isinstance(expense, PendingReviewExpense):
        return expense.amount
    return None


def get_display_date(expense: Expense) -> datetime:
    """The receipt date when known, otherwise when it was captured."""
    expense_date = getattr(expense, "expense_date", None)
    return expense_date or expense.captured_at
