"""
Domain errors for the expense lifecycle.

These are returned to the caller as-is (the UI shows them verbatim)
and are never retried. Each names the expense and what is wrong with it.
"""

from typing import Sequence


class ExpenseDomainError(Exception):
    """Base exception for expense lifecycle violations."""
    pass


class ExpenseNotFoundError(ExpenseDomainError):
    """No expense exists with the given ID."""

    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense {expense_id} not found")


class ExpenseNotPendingReviewError(ExpenseDomainError):
    """The operation needs a pending-review expense but got another state."""

    def __init__(self, expense_id: str, current_state: str, message: str = ""):
        self.expense_id = expense_id
        self.current_state = current_state
        super().__init__(
            message or f"Expense {expense_id} is '{current_state}', expected 'pending-review'"
        )


class ExpenseAlreadyConfirmedError(ExpenseNotPendingReviewError):
    """The expense is already confirmed; confirming again is rejected."""

    def __init__(self, expense_id: str):
        super().__init__(
            expense_id,
            "confirmed",
            message=f"Expense {expense_id} is already confirmed",
        )


class MissingRequiredFieldsError(ExpenseDomainError):
    """Confirmation attempted while required fields are still empty."""

    def __init__(self, expense_id: str, missing_fields: Sequence[str]):
        self.expense_id = expense_id
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Expense {expense_id} is missing required fields: {', '.join(self.missing_fields)}"
        )
