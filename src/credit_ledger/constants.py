"""Enumerations and fixed values shared across the credit ledger modules.

Centralises domain constants so that the data access layer (DAL), the ledger
engine, the business logic layer (BLL) and the CLI rely on a single source of
truth for sheet names, transaction kinds and reporting defaults.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Number of calendar months kept by the monthly series.
MONTHLY_WINDOW = 6

# Label shown for client groups whose supplier record no longer exists.
UNKNOWN_SUPPLIER_LABEL = "Unknown supplier"

DEFAULT_CURRENCY_CODE = "DOP"


class TransactionType(str, Enum):
    """Enumerate the two events a client ledger can record."""

    SALE = "SALE"
    PAYMENT = "PAYMENT"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    SUPPLIERS = "Suppliers"
    CLIENTS = "Clients"
    TRANSACTIONS = "Transactions"
    CURRENCY = "Currency"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MONTHLY_WINDOW",
    "UNKNOWN_SUPPLIER_LABEL",
    "DEFAULT_CURRENCY_CODE",
    "TransactionType",
    "SheetName",
]
