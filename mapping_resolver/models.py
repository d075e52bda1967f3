"""Mapping Resolver Data Models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryMapping(BaseModel):
    """Ledger category -> accounting destination account.

    Unique per source category id; cached for the duration of one run.
    """
    model_config = ConfigDict(frozen=True)

    source_category_id: str = Field(..., description="Ledger category id")
    destination_account_id: str = Field(..., description="Accounting account id")
    destination_account_code: Optional[str] = Field(default=None, description="Account code used on line items")
    destination_name: str = Field(..., description="Shared name of the category and the account")
