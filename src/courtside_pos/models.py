"""Domain records for the checkout transaction pipeline.

Every record is a frozen dataclass so that snapshots handed to the
transaction service cannot be mutated mid-flight. Monetary values are
:class:`~decimal.Decimal` throughout; quantities are plain integers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Union

from .constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    ErrorKind,
    IssueType,
    PaymentMethod,
    StockState,
)


ZERO = Decimal("0")


def compute_stock_state(stock: int, low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> StockState:
    """Derive the stock state that corresponds to ``stock``.

    Args:
        stock (int): Units currently on hand.
        low_stock_threshold (int): Highest count still reported as low stock.

    Returns:
        StockState: ``OUT_OF_STOCK`` at zero or below, ``LOW_STOCK`` up to and
            including the threshold, otherwise ``IN_STOCK``.
    """
    if stock <= 0:
        return StockState.OUT_OF_STOCK
    if stock <= low_stock_threshold:
        return StockState.LOW_STOCK
    return StockState.IN_STOCK


def cart_key(product_id: str, variant_id: Optional[str] = None) -> str:
    """Build the composite cart line key for a product and optional variant."""
    if variant_id is not None:
        return f"{product_id}_{variant_id}"
    return f"{product_id}"


@dataclass(frozen=True)
class Variant:
    """Priced, stocked sub-option of a product (court tier, size, ...)."""

    variant_id: str
    name: str
    price: Decimal
    stock: int
    stock_state: StockState

    @property
    def is_available(self) -> bool:
        return self.stock > 0 and self.stock_state is not StockState.OUT_OF_STOCK


@dataclass(frozen=True)
class Product:
    """Sellable catalog item.

    When ``has_variants`` is set the product's own ``price``, ``stock`` and
    ``stock_state`` are ignored for transacting; only variant figures apply.
    """

    product_id: str
    name: str
    category: str
    price: Decimal
    stock: int
    stock_state: StockState
    has_variants: bool = False
    variants: Tuple[Variant, ...] = ()

    @property
    def is_available(self) -> bool:
        return self.stock > 0 and self.stock_state is not StockState.OUT_OF_STOCK

    def find_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None


@dataclass(frozen=True)
class Customer:
    """Optional customer attached to a sale; members receive a discount."""

    customer_id: str
    name: str
    email: str = ""
    phone: str = ""
    is_member: bool = False
    member_discount: Decimal = ZERO

    def __post_init__(self) -> None:
        if not ZERO <= self.member_discount < Decimal("1"):
            raise ValueError(
                f"Member discount must be in [0, 1), got {self.member_discount}"
            )

    @property
    def effective_discount(self) -> Decimal:
        """Discount fraction that applies at checkout (zero for non-members)."""
        if self.is_member and self.member_discount > ZERO:
            return self.member_discount
        return ZERO


@dataclass(frozen=True)
class CartLine:
    """One product/variant entry of an in-progress sale."""

    product: Product
    variant: Optional[Variant]
    quantity: int

    @property
    def key(self) -> str:
        return cart_key(
            self.product.product_id,
            self.variant.variant_id if self.variant is not None else None,
        )

    @property
    def unit_price(self) -> Decimal:
        return self.variant.price if self.variant is not None else self.product.price

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartTotals:
    """Derived totals for a cart; never stored apart from their inputs."""

    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class TransactionRequest:
    """Immutable snapshot of a checkout attempt handed to the service."""

    customer: Optional[Customer]
    lines: Tuple[CartLine, ...]
    payment_method: PaymentMethod
    amount_tendered: Decimal
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    change: Decimal = ZERO


@dataclass(frozen=True)
class LineItem:
    """Denormalized sale line captured at the moment of sale."""

    product_id: str
    variant_id: Optional[str]
    product_name: str
    variant_name: Optional[str]
    unit_price: Decimal
    quantity: int

    @classmethod
    def from_cart_line(cls, line: CartLine) -> "LineItem":
        variant = line.variant
        return cls(
            product_id=line.product.product_id,
            variant_id=variant.variant_id if variant is not None else None,
            product_name=line.product.name,
            variant_name=variant.name if variant is not None else None,
            unit_price=line.unit_price,
            quantity=line.quantity,
        )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Transaction:
    """Append-only record of a committed sale."""

    transaction_id: str
    timestamp: datetime
    customer: Optional[Customer]
    items: Tuple[LineItem, ...]
    payment_method: PaymentMethod
    amount_tendered: Decimal
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    change: Decimal

    def to_dict(self) -> Dict[str, Any]:
        """Render the record in its exchanged JSON shape.

        Monetary values are emitted as strings to preserve precision.
        """
        customer = self.customer
        return {
            "id": self.transaction_id,
            "timestamp": self.timestamp.isoformat(),
            "customer": None
            if customer is None
            else {
                "id": customer.customer_id,
                "name": customer.name,
                "email": customer.email,
                "phone": customer.phone,
                "isMember": customer.is_member,
                "memberDiscount": str(customer.member_discount),
            },
            "items": [
                {
                    "productId": item.product_id,
                    "variantId": item.variant_id,
                    "productName": item.product_name,
                    "variantName": item.variant_name,
                    "unitPrice": str(item.unit_price),
                    "quantity": item.quantity,
                }
                for item in self.items
            ],
            "paymentMethod": self.payment_method.value,
            "amountTendered": str(self.amount_tendered),
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "tax": str(self.tax),
            "total": str(self.total),
            "change": str(self.change),
        }


@dataclass(frozen=True)
class InventoryUpdate:
    """Stock decrement the inventory system must apply for one sale line."""

    product_id: str
    variant_id: Optional[str]
    quantity: int


@dataclass(frozen=True)
class InventoryIssue:
    """A single availability problem found while checking a cart line."""

    issue_type: IssueType
    product_name: str
    variant_name: Optional[str] = None
    requested: Optional[int] = None
    available: Optional[int] = None

    @property
    def label(self) -> str:
        if self.variant_name:
            return f"{self.product_name} - {self.variant_name}"
        return self.product_name


@dataclass(frozen=True)
class TransactionError:
    """Typed failure outcome of a checkout attempt.

    Mutually exclusive with :class:`TransactionSuccess`; a failed attempt
    never carries a partial transaction.
    """

    kind: ErrorKind
    message: str
    details: Optional[str] = None
    issue_type: Optional[IssueType] = None
    issues: Tuple[InventoryIssue, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TransactionSuccess:
    """Successful outcome: the sale record plus the decrements it implies."""

    transaction: Transaction
    inventory_updates: Tuple[InventoryUpdate, ...]


TransactionOutcome = Union[TransactionSuccess, TransactionError]


__all__ = [
    "ZERO",
    "compute_stock_state",
    "cart_key",
    "Variant",
    "Product",
    "Customer",
    "CartLine",
    "CartTotals",
    "TransactionRequest",
    "LineItem",
    "Transaction",
    "InventoryUpdate",
    "InventoryIssue",
    "TransactionError",
    "TransactionSuccess",
    "TransactionOutcome",
]
