"""Xero (accounting) connector."""

from connectors.xero.xero_auth import XeroAuthConfig, XeroAuthProvider
from connectors.xero.xero_client import XeroApiConfig, XeroClient
from connectors.xero.xero_models import (
    BILL,
    SALES_INVOICE,
    XeroAccount,
    XeroInvoice,
    build_invoice_payload,
    document_type_for,
)

__all__ = [
    "BILL",
    "SALES_INVOICE",
    "XeroAccount",
    "XeroApiConfig",
    "XeroAuthConfig",
    "XeroAuthProvider",
    "XeroClient",
    "XeroInvoice",
    "build_invoice_payload",
    "document_type_for",
]
