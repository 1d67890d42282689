"""
Data Models Package

This package contains all Pydantic models used in Expense Ledger.
All data flowing through the system must conform to these schemas.
"""

from expense_ledger.models.expense import (
    REQUIRED_CONFIRM_FIELDS,
    Ambiguity,
    CaptureResult,
    Confirmation,
    ConfirmedExpense,
    Expense,
    ExpenseAdapter,
    ExpenseChanges,
    ExpenseState,
    ExtractedExpense,
    ExtractionMetadata,
    ExtractionResult,
    ExtractionSummary,
    ExtractionTiming,
    ImageUpload,
    OllamaHealth,
    PendingExpense,
    PendingReviewExpense,
    new_expense_id,
    utc_now,
)
from expense_ledger.models.merchant import Merchant, normalize_merchant_name
from expense_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "REQUIRED_CONFIRM_FIELDS",
    "Ambiguity",
    "CaptureResult",
    "Confirmation",
    "ConfirmedExpense",
    "Expense",
    "ExpenseAdapter",
    "ExpenseChanges",
    "ExpenseState",
    "ExtractedExpense",
    "ExtractionMetadata",
    "ExtractionResult",
    "ExtractionSummary",
    "ExtractionTiming",
    "ImageUpload",
    "OllamaHealth",
    "PendingExpense",
    "PendingReviewExpense",
    "new_expense_id",
    "utc_now",
    # Merchant models
    "Merchant",
    "normalize_merchant_name",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
