"""
Core Data Models for Expense Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Make invalid expense states unrepresentable
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Stay immutable, so every state change produces a new value

DESIGN DECISION: An expense is a discriminated union over its lifecycle
state, not one model with optional fields for every stage. A
ConfirmedExpense declares amount, currency, base amount, merchant and
date as required, so "confirmed but missing the amount" cannot be built.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)


CURRENCY_PATTERN = r"^[A-Z]{3}$"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_expense_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class ExpenseState(str, Enum):
    """
    Lifecycle states of an expense.

    There is no catch-all "draft" state: every expense is in exactly
    one of these, and each has its own model below.
    """
    PENDING = "pending"                 # Image captured, extraction not applied yet
    PENDING_REVIEW = "pending-review"   # Extraction applied, awaiting user fixes
    CONFIRMED = "confirmed"             # All required fields present, base amount computed


# Fields a pending-review expense must have before it can be confirmed.
REQUIRED_CONFIRM_FIELDS: tuple[str, ...] = ("amount", "currency", "merchant", "expense_date")


# =============================================================================
# EXTRACTION MODELS
# =============================================================================

class ExtractionTiming(BaseModel):
    """How long each extraction stage took, in milliseconds."""
    model_config = ConfigDict(frozen=True)

    ocr_ms: int = Field(default=0, ge=0)
    llm_ms: int = Field(default=0, ge=0)
    total_ms: int = Field(default=0, ge=0)


class Ambiguity(BaseModel):
    """Advisory flag raised by the LLM. Reserved metadata; nothing branches on it."""
    model_config = ConfigDict(frozen=True)

    reason: str


class ExtractedExpense(BaseModel):
    """
    Structured fields the LLM pulled out of the OCR text.

    CRITICAL: Values here are already normalized by the parser:
    amount is an integer in the smallest unit of `currency`,
    currency is an upper-case ISO code, date is an ISO 8601 string.
    Every field is individually nullable - partial extraction is normal.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    amount: Optional[int] = Field(
        default=None,
        ge=0,
        description="Amount in the currency's smallest unit"
    )
    currency: Optional[str] = Field(
        default=None,
        pattern=CURRENCY_PATTERN,
        description="ISO 4217 currency code"
    )
    date: Optional[str] = Field(
        default=None,
        description="Transaction date/time as an ISO 8601 string"
    )
    merchant: Optional[str] = Field(
        default=None,
        description="Business or recipient name"
    )
    category: list[str] = Field(
        default_factory=list,
        description="1-3 free-text tags: main category, subcategory, location"
    )
    ambiguous: Optional[Ambiguity] = None


class ExtractionResult(BaseModel):
    """
    Outcome of the OCR -> LLM pipeline for one image.

    A failed extraction is still a result: success=False, data=None
    and an error string the user can see while reviewing.
    """
    model_config = ConfigDict(frozen=True)

    success: bool
    data: Optional[ExtractedExpense] = None
    ocr_text: str = ""
    raw_llm_response: str = ""
    timing: ExtractionTiming = Field(default_factory=ExtractionTiming)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, timing: Optional[ExtractionTiming] = None) -> "ExtractionResult":
        """Build the result used when extraction raised before producing data."""
        return cls(
            success=False,
            data=None,
            timing=timing or ExtractionTiming(),
            error=error,
        )


class ExtractionMetadata(BaseModel):
    """What the reviewer sees about the extraction that produced an expense."""
    model_config = ConfigDict(frozen=True)

    ocr_text: str = ""
    error: Optional[str] = None
    timing: Optional[ExtractionTiming] = None


class OllamaHealth(BaseModel):
    """
    Diagnostic snapshot of the LLM backend.

    The three flags are independent failure modes and must not be merged:
    unreachable, reachable without a configured model, or configured
    with a model that is not installed.
    """

    available: bool
    configured: bool
    model_available: bool
    models: list[str] = Field(default_factory=list)
    host: str
    model: str
    error: Optional[str] = None


# =============================================================================
# EXPENSE VARIANTS
# =============================================================================

class _ExpenseIdentity(BaseModel):
    """Fields every expense carries regardless of state."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_expense_id,
        min_length=1,
        description="Unique expense ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the expense"
    )
    image_key: Optional[str] = Field(
        default=None,
        description="Blob store key of the receipt image"
    )
    captured_at: datetime = Field(
        default_factory=utc_now,
        description="When the receipt was captured"
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the expense record was created"
    )


class PendingExpense(_ExpenseIdentity):
    """An expense whose image is stored but not yet extracted."""

    state: Literal["pending"] = "pending"


class PendingReviewExpense(_ExpenseIdentity):
    """
    An expense with extraction applied, waiting for the user.

    All data fields are nullable: the extraction might have found
    nothing, and the user fills the gaps before confirming.
    """

    state: Literal["pending-review"] = "pending-review"

    amount: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    merchant: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    categories: list[str] = Field(default_factory=list)
    expense_date: Optional[datetime] = None
    extraction_metadata: Optional[ExtractionMetadata] = None

    @field_validator('merchant')
    @classmethod
    def blank_merchant_is_none(cls, v: Optional[str]) -> Optional[str]:
        # A blank merchant is still missing for confirmation purposes
        return v or None


class ConfirmedExpense(_ExpenseIdentity):
    """
    A complete expense.

    CRITICAL: amount, currency, base_amount, base_currency, merchant and
    expense_date are required here. Code holding a ConfirmedExpense never
    needs to null-check them.
    """

    state: Literal["confirmed"] = "confirmed"

    amount: int = Field(..., ge=0, description="Amount in smallest unit of `currency`")
    currency: str = Field(..., pattern=CURRENCY_PATTERN)
    base_amount: int = Field(..., ge=0, description="Amount in smallest unit of `base_currency`")
    base_currency: str = Field(..., pattern=CURRENCY_PATTERN)
    merchant: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    categories: list[str] = Field(default_factory=list)
    expense_date: datetime
    extraction_metadata: Optional[ExtractionMetadata] = None
    confirmed_at: datetime = Field(default_factory=utc_now)


Expense = Annotated[
    Union[PendingExpense, PendingReviewExpense, ConfirmedExpense],
    Field(discriminator="state"),
]

ExpenseAdapter: TypeAdapter[Expense] = TypeAdapter(Expense)


# =============================================================================
# INPUT MODELS
# =============================================================================

class Confirmation(BaseModel):
    """
    Everything needed to turn a pending-review expense into a confirmed one.

    The caller (orchestrator) resolves missing fields and computes the
    base amount before building this.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    amount: int = Field(..., ge=0)
    currency: str = Field(..., pattern=CURRENCY_PATTERN)
    base_amount: int = Field(..., ge=0)
    base_currency: str = Field(..., pattern=CURRENCY_PATTERN)
    merchant: str = Field(..., min_length=1, max_length=200)
    expense_date: datetime
    description: Optional[str] = None
    categories: Optional[list[str]] = None


class ExpenseChanges(BaseModel):
    """
    Partial edit of an expense's user-editable fields.

    Only fields explicitly passed count as changes (see `changed_fields`),
    so `ExpenseChanges(description=None)` clears the description while
    `ExpenseChanges()` changes nothing.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    amount: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    merchant: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    categories: Optional[list[str]] = None
    expense_date: Optional[datetime] = None

    @field_validator('currency', mode='before')
    @classmethod
    def uppercase_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('merchant')
    @classmethod
    def blank_merchant_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    def changed_fields(self) -> dict:
        """The explicitly provided fields and their values."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class ImageUpload(BaseModel):
    """Represents an uploaded receipt image before it is stored."""

    upload_id: str = Field(default_factory=new_expense_id)
    uploaded_at: datetime = Field(default_factory=utc_now)
    file_name: str = Field(default="upload.png", min_length=1)
    file_size_bytes: int = Field(gt=0)
    content_type: str

    @field_validator('content_type')
    @classmethod
    def normalize_content_type(cls, v: str) -> str:
        return v.strip().lower()


# =============================================================================
# CAPTURE RESULT
# =============================================================================

class ExtractionSummary(BaseModel):
    """The slice of the extraction result returned to the caller of capture."""

    success: bool
    data: Optional[ExtractedExpense] = None
    error: Optional[str] = None
    timing: ExtractionTiming = Field(default_factory=ExtractionTiming)

    @classmethod
    def from_result(cls, result: ExtractionResult) -> "ExtractionSummary":
        return cls(
            success=result.success,
            data=result.data,
            error=result.error,
            timing=result.timing,
        )


class CaptureResult(BaseModel):
    """
    What capture always returns, even when extraction failed.

    needs_review is True whenever the expense stayed in pending-review.
    """

    expense: Expense
    extraction: ExtractionSummary
    needs_review: bool
