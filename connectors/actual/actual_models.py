"""Actual Budget API models.

These map to the ledger server's JSON payloads and are converted into the
system-neutral types in /core/models/ at the client boundary.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models.sync import LedgerTransaction

CENTS = Decimal(100)


class ActualBaseModel(BaseModel):
    """Base model for Actual entities."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ActualBudgetFile(ActualBaseModel):
    """Budget file as listed by /sync/list-user-files."""
    file_id: str = Field(..., alias="fileId")
    name: Optional[str] = None
    group_id: Optional[str] = Field(None, alias="groupId")
    deleted: bool = False


class ActualCategoryGroup(ActualBaseModel):
    id: str
    name: str
    is_income: bool = False
    hidden: bool = False


class ActualCategory(ActualBaseModel):
    id: str
    name: str
    group_id: Optional[str] = Field(None, alias="cat_group")
    is_income: bool = False
    hidden: bool = False


class ActualTransaction(ActualBaseModel):
    """Transaction as stored by Actual.

    `amount` is in integer minor units (cents); negative is an outflow.
    """
    id: str
    date: date
    amount: int
    account: Optional[str] = None
    payee: Optional[str] = None
    payee_name: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None
    cleared: bool = False
    reconciled: bool = False

    def to_ledger(self) -> LedgerTransaction:
        return LedgerTransaction(
            id=self.id,
            date=self.date,
            amount=Decimal(self.amount) / CENTS,
            payee_id=self.payee,
            payee_name=self.payee_name,
            category_id=self.category,
            notes=self.notes or "",
            cleared=self.cleared,
            reconciled=self.reconciled,
        )
