"""Enumerations shared across the Courtside POS modules.

Centralises domain constants so that the checkout orchestrator, the
transaction service, the workbook data layer, and the CLI rely on a single
source of truth for stock states, payment methods, and error taxonomy.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_LOW_STOCK_THRESHOLD = 3
DEFAULT_CARD_DECLINE_RATE = Decimal("0.10")
DEFAULT_PAYMENT_TIMEOUT = 30.0
DEFAULT_PRODUCT_LIST_LIMIT = 8
ALL_CATEGORIES = "All"


class StockState(str, Enum):
    """Tri-state summary of a stock count against the low-stock threshold."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms at the till."""

    CASH = "cash"
    CARD = "card"


class ErrorKind(str, Enum):
    """Top-level classification of a failed checkout attempt."""

    INVENTORY_MISMATCH = "inventory_mismatch"
    PAYMENT_FAILURE = "payment_failure"
    UNEXPECTED_ERROR = "unexpected_error"


class IssueType(str, Enum):
    """Specific reason attached to a checkout failure."""

    VARIANT_NOT_FOUND = "variant_not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    PAYMENT_DECLINED = "payment_declined"
    TIMEOUT = "timeout"


class AddToCartStatus(str, Enum):
    """Outcome reported by ``CheckoutSession.add_to_cart``."""

    ADDED = "added"
    VARIANT_REQUIRED = "variant_required"
    VARIANT_INVALID = "variant_invalid"
    OUT_OF_STOCK = "out_of_stock"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    PRODUCTS = "Products"
    VARIANTS = "Variants"
    CUSTOMERS = "Customers"
    SALES = "Sales"
    SALE_LINES = "SaleLines"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_CARD_DECLINE_RATE",
    "DEFAULT_PAYMENT_TIMEOUT",
    "DEFAULT_PRODUCT_LIST_LIMIT",
    "ALL_CATEGORIES",
    "StockState",
    "PaymentMethod",
    "ErrorKind",
    "IssueType",
    "AddToCartStatus",
    "SheetName",
]
