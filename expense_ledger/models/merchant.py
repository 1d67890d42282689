"""
Merchant model.

Merchants group expenses under a normalized name and may carry a
category tag of their own. They live beside the expense lifecycle,
not inside it: an expense stores its merchant as free text.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from expense_ledger.models.expense import new_expense_id, utc_now


def normalize_merchant_name(display_name: str) -> str:
    """Key used for case-insensitive merchant lookup."""
    return display_name.strip().lower()


class Merchant(BaseModel):
    """A merchant known to the ledger."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_expense_id)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Normalized (lower-case) merchant name, unique"
    )
    display_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Name as first entered"
    )
    category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Optional category tag for this merchant"
    )
    created_at: datetime = Field(default_factory=utc_now)
