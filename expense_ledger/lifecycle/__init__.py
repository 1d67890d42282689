"""Expense lifecycle: pure state transitions and domain errors."""

from expense_ledger.lifecycle.errors import (
    ExpenseAlreadyConfirmedError,
    ExpenseDomainError,
    ExpenseNotFoundError,
    ExpenseNotPendingReviewError,
    MissingRequiredFieldsError,
)
from expense_ledger.lifecycle.transitions import (
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

__all__ = [
    # Errors
    "ExpenseAlreadyConfirmedError",
    "ExpenseDomainError",
    "ExpenseNotFoundError",
    "ExpenseNotPendingReviewError",
    "MissingRequiredFieldsError",
    # Transitions
    "apply_extraction",
    "can_confirm",
    "confirm",
    "create_confirmed",
    "create_pending",
    "get_display_amount",
    "get_display_date",
    "get_missing_fields",
    "is_confirmed",
    "is_pending",
    "is_pending_review",
    "parse_expense_date",
    "revise_confirmed",
    "update",
]
