"""Xero Accounting API models.

Maps to the PascalCase JSON of https://api.xero.com/api.xro/2.0.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from connectors.base import ClientRequestError
from core.models.sync import AccountingDocumentRef, StagedRecord

BILL = "ACCPAY"
SALES_INVOICE = "ACCREC"

UNKNOWN_CONTACT = "Unknown payee"


class XeroBaseModel(BaseModel):
    """Base model for Xero entities."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class XeroAccount(XeroBaseModel):
    """Chart-of-accounts entry. Maps to: /Accounts"""
    account_id: str = Field(..., alias="AccountID")
    code: Optional[str] = Field(None, alias="Code")
    name: str = Field(..., alias="Name")
    type: Optional[str] = Field(None, alias="Type")
    status: Optional[str] = Field(None, alias="Status")


class XeroInvoice(XeroBaseModel):
    """Invoice or bill. Maps to: /Invoices"""
    invoice_id: str = Field(..., alias="InvoiceID")
    type: str = Field(..., alias="Type")
    reference: Optional[str] = Field(None, alias="Reference")
    invoice_number: Optional[str] = Field(None, alias="InvoiceNumber")
    status: Optional[str] = Field(None, alias="Status")

    @property
    def is_void(self) -> bool:
        return self.status in ("DELETED", "VOIDED")

    def to_ref(self) -> AccountingDocumentRef:
        return AccountingDocumentRef(
            document_id=self.invoice_id,
            document_type=self.type,
            reference=self.reference or "",
            document_number=self.invoice_number,
            status=self.status,
        )


def document_type_for(amount: Decimal) -> str:
    """Outflows become bills (ACCPAY), inflows sales invoices (ACCREC)."""
    return BILL if amount < 0 else SALES_INVOICE


def build_invoice_payload(record: StagedRecord) -> Dict[str, Any]:
    """Xero invoice payload for a staged record. Reference is the transaction id."""
    line: Dict[str, Any] = {
        "Description": record.description or record.payee_name or record.transaction_id,
        "Quantity": 1,
        "UnitAmount": str(abs(record.amount)),
        "AccountCode": record.destination_account_code,
    }
    return {
        "Type": document_type_for(record.amount),
        "Contact": {"Name": record.payee_name or UNKNOWN_CONTACT},
        "Date": record.date.isoformat(),
        "DueDate": record.date.isoformat(),
        "Reference": record.transaction_id,
        "LineAmountTypes": "NoTax",
        "Status": "AUTHORISED",
        "LineItems": [line],
    }


def parse_invoices(body: Any, path: str = "/Invoices") -> List[XeroInvoice]:
    """Invoices from an `{"Invoices": [...]}` envelope."""
    if not isinstance(body, dict) or not isinstance(body.get("Invoices"), list):
        raise ClientRequestError(f"xero: unexpected response shape from {path}: missing 'Invoices'")
    return [XeroInvoice.model_validate(item) for item in body["Invoices"]]
