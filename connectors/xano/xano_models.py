"""Xano staging-store models.

Wire names differ from the engine's StagedRecord (account_id vs
destination_account_id, xero_ref vs accounting_ref); aliases map between them.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from core.models.sync import StagedRecord, StagedStatus


class XanoStagedRecord(BaseModel):
    """Record in the `staged_records` table, keyed by transaction_id."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[int] = None
    transaction_id: str
    date: date
    amount: Decimal
    payee_name: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    account_id: str
    account_code: Optional[str] = None
    status: StagedStatus = StagedStatus.STAGED
    xero_ref: Optional[str] = None

    @classmethod
    def from_staged(cls, record: StagedRecord) -> "XanoStagedRecord":
        return cls(
            transaction_id=record.transaction_id,
            date=record.date,
            amount=record.amount,
            payee_name=record.payee_name,
            description=record.description,
            category_id=record.category_id,
            account_id=record.destination_account_id,
            account_code=record.destination_account_code,
            status=record.status,
            xero_ref=record.accounting_ref,
        )

    def to_staged(self) -> StagedRecord:
        return StagedRecord(
            transaction_id=self.transaction_id,
            date=self.date,
            amount=self.amount,
            payee_name=self.payee_name,
            description=self.description,
            category_id=self.category_id,
            destination_account_id=self.account_id,
            destination_account_code=self.account_code,
            status=self.status,
            accounting_ref=self.xero_ref,
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})
