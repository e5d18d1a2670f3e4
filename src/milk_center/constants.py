"""Enumerations shared across the Milk Center modules.

Keeps storage keys, payment methods and report periods in one place so the
data layer, the business layer and the CLI agree on the exact identifiers
that end up in the key-value store.
"""

from __future__ import annotations

from enum import Enum


# Schema version expected in config.ini before any collection is mutated.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DATE_FORMAT = "%Y-%m-%d"


class PaymentMethod(str, Enum):
    """Enumerate the ways a customer or supplier payment can be settled."""

    CASH = "cash"
    BANK = "bank"
    UPI = "upi"
    OTHER = "other"


class StorageKey(str, Enum):
    """Fixed keys under which each entity collection is stored."""

    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"
    PAYMENTS = "payments"
    SUPPLIERS = "suppliers"
    SUPPLIER_PAYMENTS = "supplierPayments"
    CUSTOMER_PRODUCT_RATES = "customerProductRates"
    SUPPLIER_PRODUCT_RATES = "supplierProductRates"
    STOCK_ENTRIES = "stockEntries"
    STOCK_RECORDS = "stockRecords"


class ReportPeriod(str, Enum):
    """Preset date windows offered for ledger reports."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DATE_FORMAT",
    "PaymentMethod",
    "StorageKey",
    "ReportPeriod",
]
