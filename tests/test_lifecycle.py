"""
Tests for the expense lifecycle state machine.

All transitions are pure, so these run without storage or network.
"""

import pytest
from datetime import datetime, timedelta, timezone

from expense_ledger.lifecycle import (
    ExpenseAlreadyConfirmedError,
    ExpenseNotPendingReviewError,
    apply_extraction,
    can_confirm,
    confirm,
    create_confirmed,
    create_pending,
    get_display_amount,
    get_display_date,
    get_missing_fields,
    is_confirmed,
    is_pending,
    is_pending_review,
    parse_expense_date,
    revise_confirmed,
    update,
)
from expense_ledger.models.expense import (
    Confirmation,
    ConfirmedExpense,
    ExpenseChanges,
    ExtractedExpense,
    ExtractionResult,
    ExtractionTiming,
    PendingReviewExpense,
)


CAPTURED = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
RECEIPT_DATE = datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc)


def full_extraction() -> ExtractionResult:
    return ExtractionResult(
        success=True,
        data=ExtractedExpense(
            amount=4599,
            currency="EUR",
            date="2024-03-14T09:30:00",
            merchant="Café Central",
            category=["Food & Dining", "Coffee", "Vienna"],
        ),
        ocr_text="CAFE CENTRAL\nTOTAL 45,99 EUR",
        raw_llm_response="{}",
        timing=ExtractionTiming(ocr_ms=120, llm_ms=900, total_ms=1021),
    )


def reviewed(**fields) -> PendingReviewExpense:
    pending = create_pending("alice", "expenses/1-abc-receipt.png", now=CAPTURED)
    return update(apply_extraction(pending, None), ExpenseChanges(**fields))


def confirmation(**overrides) -> Confirmation:
    data = {
        "amount": 4599,
        "currency": "EUR",
        "base_amount": 9198,
        "base_currency": "USD",
        "merchant": "Café Central",
        "expense_date": RECEIPT_DATE,
    }
    data.update(overrides)
    return Confirmation(**data)


class TestCreatePending:
    """Tests for starting an expense."""

    def test_create_pending(self):
        """Test the pending expense carries identity and nothing else."""
        pending = create_pending("alice", "expenses/key.png", now=CAPTURED, expense_id="exp-1")
        assert is_pending(pending)
        assert pending.id == "exp-1"
        assert pending.captured_at == CAPTURED
        assert pending.created_at == CAPTURED
        assert pending.image_key == "expenses/key.png"

    def test_generated_ids_are_unique(self):
        first = create_pending("alice")
        second = create_pending("alice")
        assert first.id != second.id


class TestApplyExtraction:
    """Tests for pending -> pending-review."""

    def test_full_extraction_fills_fields(self):
        """Test all extracted data lands on the reviewed expense."""
        pending = create_pending("alice", "expenses/key.png", now=CAPTURED)
        review = apply_extraction(pending, full_extraction())

        assert is_pending_review(review)
        assert review.amount == 4599
        assert review.currency == "EUR"
        assert review.merchant == "Café Central"
        assert review.categories == ["Food & Dining", "Coffee", "Vienna"]
        assert review.expense_date == RECEIPT_DATE
        assert review.description is None
        assert review.extraction_metadata.ocr_text.startswith("CAFE CENTRAL")
        assert review.extraction_metadata.timing.total_ms == 1021

    def test_identity_preserved(self):
        """Test id, user, image key and timestamps survive the transition."""
        pending = create_pending("alice", "expenses/key.png", now=CAPTURED)
        review = apply_extraction(pending, full_extraction())
        assert (review.id, review.user_id, review.image_key) == (
            pending.id, pending.user_id, pending.image_key,
        )
        assert review.captured_at == pending.captured_at
        assert review.created_at == pending.created_at

    def test_no_extraction(self):
        """Test a missing extraction gives an all-null expense."""
        review = apply_extraction(create_pending("alice"), None)
        assert get_missing_fields(review) == ["amount", "currency", "merchant", "expense_date"]
        assert review.extraction_metadata is None

    def test_failed_extraction_keeps_error(self):
        """Test the error is kept for the reviewer when extraction failed."""
        review = apply_extraction(
            create_pending("alice"),
            ExtractionResult.failed("LLM extraction failed (model: x): timeout"),
        )
        assert review.amount is None
        assert review.extraction_metadata.error == "LLM extraction failed (model: x): timeout"

    def test_unreadable_date_becomes_null(self):
        """Test a bad date string is treated as missing, not as a failure."""
        result = ExtractionResult(
            success=True,
            data=ExtractedExpense(amount=100, currency="USD", merchant="Shop", date="not a date"),
        )
        review = apply_extraction(create_pending("alice"), result)
        assert review.expense_date is None
        assert get_missing_fields(review) == ["expense_date"]

    def test_rejects_non_pending(self):
        """Test extraction cannot be applied twice."""
        review = apply_extraction(create_pending("alice"), None)
        with pytest.raises(ExpenseNotPendingReviewError):
            apply_extraction(review, full_extraction())


class TestMissingFields:
    """Tests for completeness checks."""

    def test_complete_expense(self):
        review = reviewed(amount=100, currency="USD", merchant="Shop", expense_date=RECEIPT_DATE)
        assert get_missing_fields(review) == []
        assert can_confirm(review)

    def test_reports_in_stable_order(self):
        """Test missing fields come back in declaration order."""
        review = reviewed(merchant="Shop")
        assert get_missing_fields(review) == ["amount", "currency", "expense_date"]
        assert not can_confirm(review)

    def test_description_is_not_required(self):
        review = reviewed(amount=100, currency="USD", merchant="Shop", expense_date=RECEIPT_DATE)
        assert review.description is None
        assert can_confirm(review)


class TestConfirm:
    """Tests for pending-review -> confirmed."""

    def test_confirm_produces_complete_expense(self):
        """Test that no required field of the confirmed expense is null."""
        review = apply_extraction(create_pending("alice", now=CAPTURED), full_extraction())
        confirmed = confirm(review, confirmation(), now=CAPTURED)

        assert is_confirmed(confirmed)
        for name in ("amount", "currency", "base_amount", "base_currency", "merchant", "expense_date"):
            assert getattr(confirmed, name) is not None
        assert confirmed.base_amount == 9198
        assert confirmed.confirmed_at == CAPTURED
        assert confirmed.id == review.id

    def test_categories_fall_back_to_review(self):
        """Test categories left out of the confirmation keep the reviewed values."""
        review = apply_extraction(create_pending("alice"), full_extraction())
        confirmed = confirm(review, confirmation())
        assert confirmed.categories == ["Food & Dining", "Coffee", "Vienna"]

    def test_confirmation_categories_win(self):
        review = apply_extraction(create_pending("alice"), full_extraction())
        confirmed = confirm(review, confirmation(categories=["Travel"]))
        assert confirmed.categories == ["Travel"]

    def test_description_fallback_and_clear(self):
        """Test description falls back unless explicitly passed, even as None."""
        review = reviewed(description="Team coffee")
        assert confirm(review, confirmation()).description == "Team coffee"
        assert confirm(review, confirmation(description=None)).description is None

    def test_extraction_metadata_carried(self):
        review = apply_extraction(create_pending("alice"), full_extraction())
        confirmed = confirm(review, confirmation())
        assert confirmed.extraction_metadata == review.extraction_metadata

    def test_confirm_twice_rejected(self):
        """Test a confirmed expense cannot be confirmed again."""
        confirmed = confirm(reviewed(), confirmation())
        with pytest.raises(ExpenseAlreadyConfirmedError) as exc_info:
            confirm(confirmed, confirmation())
        assert exc_info.value.current_state == "confirmed"
        assert isinstance(exc_info.value, ExpenseNotPendingReviewError)

    def test_confirm_pending_rejected(self):
        pending = create_pending("alice")
        with pytest.raises(ExpenseNotPendingReviewError) as exc_info:
            confirm(pending, confirmation())
        assert exc_info.value.current_state == "pending"


class TestUpdate:
    """Tests for pending-review -> pending-review edits."""

    def test_partial_update(self):
        """Test only explicitly passed fields change."""
        review = apply_extraction(create_pending("alice"), full_extraction())
        updated = update(review, ExpenseChanges(merchant="Café Sacher"))
        assert updated.merchant == "Café Sacher"
        assert updated.amount == review.amount
        assert updated.categories == review.categories
        assert review.merchant == "Café Central"

    def test_explicit_none_clears(self):
        review = reviewed(description="Team coffee")
        assert update(review, ExpenseChanges(description=None)).description is None

    def test_update_rejects_confirmed(self):
        """Test confirmed expenses must go through revise_confirmed."""
        confirmed = confirm(reviewed(), confirmation())
        with pytest.raises(ExpenseAlreadyConfirmedError):
            update(confirmed, ExpenseChanges(merchant="Other"))

    def test_update_rejects_pending(self):
        with pytest.raises(ExpenseNotPendingReviewError):
            update(create_pending("alice"), ExpenseChanges(merchant="Other"))


class TestReviseConfirmed:
    """Tests for confirmed -> confirmed edits."""

    def test_revise_applies_changes_and_base(self):
        confirmed = confirm(reviewed(), confirmation())
        revised = revise_confirmed(
            confirmed,
            ExpenseChanges(amount=5000),
            base_amount=10000,
            base_currency="USD",
        )
        assert revised.amount == 5000
        assert revised.base_amount == 10000
        assert revised.confirmed_at == confirmed.confirmed_at

    def test_required_fields_cannot_be_cleared(self):
        """Test None for a required field is ignored instead of nulling it."""
        confirmed = confirm(reviewed(), confirmation(description="Coffee"))
        revised = revise_confirmed(
            confirmed,
            ExpenseChanges(merchant=None, description=None),
            base_amount=confirmed.base_amount,
            base_currency=confirmed.base_currency,
        )
        assert revised.merchant == "Café Central"
        assert revised.description is None

    def test_revise_rejects_review(self):
        with pytest.raises(ExpenseNotPendingReviewError):
            revise_confirmed(reviewed(), ExpenseChanges(), base_amount=0, base_currency="USD")


class TestCreateConfirmed:
    """Tests for direct creation."""

    def test_create_confirmed(self):
        expense = create_confirmed("alice", None, confirmation(), now=CAPTURED)
        assert isinstance(expense, ConfirmedExpense)
        assert expense.captured_at == CAPTURED
        assert expense.extraction_metadata is None


class TestDisplayHelpers:
    """Tests for list display helpers."""

    def test_display_amount_by_state(self):
        """Test each state shows the right amount."""
        review = reviewed(amount=4599, currency="EUR")
        confirmed = confirm(review, confirmation())
        assert get_display_amount(create_pending("alice")) is None
        assert get_display_amount(review) == 4599
        assert get_display_amount(confirmed) == 9198

    def test_display_date_falls_back_to_capture(self):
        pending = create_pending("alice", now=CAPTURED)
        assert get_display_date(pending) == CAPTURED

        review = reviewed(expense_date=RECEIPT_DATE)
        assert get_display_date(review) == RECEIPT_DATE


class TestParseExpenseDate:
    """Tests for extractor date parsing."""

    def test_naive_date_is_utc(self):
        assert parse_expense_date("2024-03-14") == datetime(2024, 3, 14, tzinfo=timezone.utc)

    def test_offset_kept(self):
        parsed = parse_expense_date("2024-03-14T09:30:00+02:00")
        assert parsed.utcoffset() == timedelta(hours=2)

    @pytest.mark.parametrize("value", [None, "", "14th of March"])
    def test_unreadable(self, value):
        assert parse_expense_date(value) is None
