"""Checkout session orchestration.

A :class:`CheckoutSession` owns the mutable state of one till: the cart, the
selected customer, the payment inputs, and the product search filters. It
derives totals on demand, gates payment submission, and runs each checkout
attempt through :func:`~courtside_pos.transaction_service.process_transaction`.

The attempt lifecycle is an explicit state value rather than a set of flags::

    Idle -> Processing -> Succeeded(transaction) -> Idle   (cart reset)
                       -> Failed(error)          -> Idle   (cart intact)

``Succeeded`` and ``Failed`` rest until acknowledged or until the next
attempt starts, so an error and a transaction can never be held at once.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union

from . import log
from .constants import (
    ALL_CATEGORIES,
    DEFAULT_PRODUCT_LIST_LIMIT,
    AddToCartStatus,
    ErrorKind,
    PaymentMethod,
    StockState,
)
from .models import (
    ZERO,
    CartLine,
    CartTotals,
    Customer,
    Product,
    Transaction,
    TransactionError,
    TransactionOutcome,
    TransactionRequest,
    TransactionSuccess,
    Variant,
)
from .payment import PaymentGateway
from .repositories import InventorySink, MissingReferenceError, ProductRepository
from .transaction_service import process_transaction


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Processing:
    pass


@dataclass(frozen=True)
class Succeeded:
    transaction: Transaction


@dataclass(frozen=True)
class Failed:
    error: TransactionError


SessionState = Union[Idle, Processing, Succeeded, Failed]


def calculate_totals(
    lines: Sequence[CartLine],
    customer: Optional[Customer],
    tax_rate: Decimal,
) -> CartTotals:
    """Compute subtotal, member discount, tax, and total for ``lines``.

    ``discount = subtotal * d`` for a member discount fraction ``d``;
    ``tax = (subtotal - discount) * tax_rate``; ``total`` adds them up.
    """
    subtotal = sum((line.line_total for line in lines), ZERO)
    discount = subtotal * customer.effective_discount if customer is not None else ZERO
    tax = (subtotal - discount) * tax_rate if tax_rate > ZERO else ZERO
    total = subtotal - discount + tax
    return CartTotals(subtotal=subtotal, discount=discount, tax=tax, total=total)


def filter_products(
    products: Sequence[Product],
    *,
    query: str = "",
    category: str = ALL_CATEGORIES,
    limit: Optional[int] = DEFAULT_PRODUCT_LIST_LIMIT,
) -> List[Product]:
    """Filter by category, then by case-insensitive name match, then truncate."""
    matches = list(products)
    if category != ALL_CATEGORIES:
        matches = [product for product in matches if product.category == category]
    needle = query.strip().lower()
    if needle:
        matches = [product for product in matches if needle in product.name.lower()]
    if limit is not None:
        matches = matches[:limit]
    return matches


def search_customers(customers: Sequence[Customer], query: str) -> List[Customer]:
    """Return customers whose name, email, or phone contains ``query``."""
    needle = query.strip().lower()
    if not needle:
        return list(customers)
    return [
        customer
        for customer in customers
        if needle in customer.name.lower()
        or needle in customer.email.lower()
        or needle in customer.phone.lower()
    ]


class CheckoutSession:
    """Long-lived state of one checkout till.

    Args:
        gateway (PaymentGateway): Card authorizer used by the transaction
            service.
        tax_rate (Decimal): Fraction applied after the member discount.
        sink (InventorySink | None): Receives each committed sale with its
            stock decrements. A raising sink turns the attempt into an
            ``unexpected_error``.
        products (ProductRepository | None): Source for product search.
        payment_timeout (float | None): Upper bound in seconds on the gateway
            call; ``None`` or ``0`` waits indefinitely.
        product_list_limit (int | None): Maximum products returned by
            :meth:`filtered_products`.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        *,
        tax_rate: Decimal = ZERO,
        sink: Optional[InventorySink] = None,
        products: Optional[ProductRepository] = None,
        payment_timeout: Optional[float] = None,
        product_list_limit: Optional[int] = DEFAULT_PRODUCT_LIST_LIMIT,
    ) -> None:
        self.gateway = gateway
        self.tax_rate = tax_rate
        self.sink = sink
        self.products = products
        self.payment_timeout = payment_timeout
        self.product_list_limit = product_list_limit

        self._lines: Dict[str, CartLine] = {}
        self.selected_customer: Optional[Customer] = None
        self.payment_method: Optional[PaymentMethod] = None
        self.amount_tendered: Decimal = ZERO
        self.search_query = ""
        self.selected_category = ALL_CATEGORIES
        self.selected_variants: Dict[str, str] = {}
        self.state: SessionState = Idle()

    # -- derived views ---------------------------------------------------

    @property
    def cart_lines(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines.values())

    @property
    def is_processing(self) -> bool:
        return isinstance(self.state, Processing)

    @property
    def last_transaction(self) -> Optional[Transaction]:
        return self.state.transaction if isinstance(self.state, Succeeded) else None

    @property
    def last_error(self) -> Optional[TransactionError]:
        return self.state.error if isinstance(self.state, Failed) else None

    def compute_totals(self) -> CartTotals:
        return calculate_totals(self.cart_lines, self.selected_customer, self.tax_rate)

    @property
    def change(self) -> Decimal:
        """Cash change due; zero for card or while nothing is tendered."""
        if self.payment_method is PaymentMethod.CASH and self.amount_tendered > ZERO:
            return self.amount_tendered - self.compute_totals().total
        return ZERO

    def can_process_payment(self) -> bool:
        if not self._lines or self.payment_method is None:
            return False
        if self.payment_method is PaymentMethod.CASH:
            return self.amount_tendered >= self.compute_totals().total
        return True

    def filtered_products(self) -> List[Product]:
        if self.products is None:
            raise RuntimeError("No product repository configured for this session")
        return filter_products(
            self.products.list_products(),
            query=self.search_query,
            category=self.selected_category,
            limit=self.product_list_limit,
        )

    # -- cart ------------------------------------------------------------

    def add_to_cart(self, product: Product, variant: Optional[Variant] = None) -> AddToCartStatus:
        """Add one unit of ``product`` (or of its ``variant``) to the cart.

        When ``variant`` is omitted for a product with variants, the variant
        remembered by :meth:`select_variant` is used. Unavailable or
        ambiguous selections leave the cart untouched and are reported
        through the returned status.
        """
        if product.has_variants:
            if variant is None:
                remembered = self.selected_variants.get(product.product_id)
                if remembered is not None:
                    variant = product.find_variant(remembered)
            if variant is None:
                log.warning("Variant selection required for '%s'", product.name)
                return AddToCartStatus.VARIANT_REQUIRED
            current = product.find_variant(variant.variant_id)
            if current is None:
                log.warning("Variant '%s' does not belong to '%s'", variant.variant_id, product.name)
                return AddToCartStatus.VARIANT_INVALID
            if not current.is_available:
                log.warning("Variant '%s - %s' is out of stock", product.name, current.name)
                return AddToCartStatus.OUT_OF_STOCK
            variant = current
        else:
            if variant is not None:
                log.warning("Product '%s' has no variants; got '%s'", product.name, variant.variant_id)
                return AddToCartStatus.VARIANT_INVALID
            if not product.is_available:
                log.warning("Product '%s' is out of stock", product.name)
                return AddToCartStatus.OUT_OF_STOCK

        line = CartLine(product=product, variant=variant, quantity=1)
        existing = self._lines.get(line.key)
        if existing is not None:
            self._lines[line.key] = replace(existing, quantity=existing.quantity + 1)
        else:
            self._lines[line.key] = line
        return AddToCartStatus.ADDED

    def change_quantity(self, key: str, delta: int) -> None:
        """Adjust a line's quantity; reaching zero or below removes the line."""
        existing = self._lines.get(key)
        if existing is None:
            log.debug("Ignoring quantity change for unknown cart line '%s'", key)
            return
        quantity = existing.quantity + delta
        if quantity <= 0:
            del self._lines[key]
        else:
            self._lines[key] = replace(existing, quantity=quantity)

    def remove_line(self, key: str) -> None:
        self._lines.pop(key, None)

    def clear_cart(self) -> None:
        self._lines.clear()

    # -- customer, payment, filters ----------------------------------------

    def select_customer(self, customer: Customer) -> None:
        self.selected_customer = customer

    def clear_customer(self) -> None:
        self.selected_customer = None

    def select_payment_method(self, method: Optional[PaymentMethod]) -> None:
        self.payment_method = method

    def set_amount_tendered(self, amount: Decimal) -> None:
        if amount < ZERO:
            raise ValueError(f"Amount tendered must be zero or positive, got {amount}")
        self.amount_tendered = amount

    def set_search_query(self, query: str) -> None:
        self.search_query = query

    def select_category(self, category: str) -> None:
        self.selected_category = category

    def select_variant(self, product_id: str, variant_id: str) -> None:
        self.selected_variants[product_id] = variant_id

    # -- checkout ----------------------------------------------------------

    def _current_lines(self) -> Tuple[CartLine, ...]:
        """Re-read every cart line's product from the repository.

        Lines keep the product captured at add-to-cart time; another till may
        have sold stock since. A variant the product no longer carries stays
        on the line so the inventory check reports it as not found, and a
        product missing from the repository is treated as out of stock.
        """
        if self.products is None:
            return self.cart_lines
        lines = []
        for line in self.cart_lines:
            try:
                product = self.products.get_product(line.product.product_id)
            except MissingReferenceError:
                log.warning("Product '%s' is no longer in the catalog", line.product.name)
                product = replace(line.product, stock=0, stock_state=StockState.OUT_OF_STOCK)
            variant = line.variant
            if variant is not None:
                variant = product.find_variant(variant.variant_id) or variant
            lines.append(replace(line, product=product, variant=variant))
        return tuple(lines)

    def build_request(self) -> TransactionRequest:
        """Snapshot the current session into a :class:`TransactionRequest`.

        Stock and prices are read from the product repository at this moment
        when one is configured, so the request never carries stale figures.
        """
        if self.payment_method is None:
            raise ValueError("A payment method must be selected before checkout")
        lines = self._current_lines()
        totals = calculate_totals(lines, self.selected_customer, self.tax_rate)
        is_cash = self.payment_method is PaymentMethod.CASH
        return TransactionRequest(
            customer=self.selected_customer,
            lines=lines,
            payment_method=self.payment_method,
            amount_tendered=self.amount_tendered if is_cash else totals.total,
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            total=totals.total,
            change=self.amount_tendered - totals.total if is_cash else ZERO,
        )

    async def process_payment(self) -> Optional[TransactionOutcome]:
        """Run one checkout attempt and apply its outcome to the session.

        Returns ``None`` without side effects when an attempt is already in
        flight or :meth:`can_process_payment` is false. On success the session
        resets; on any failure the cart, customer, and payment inputs are left
        exactly as they were.
        """
        if self.is_processing:
            log.info("Ignoring checkout submission while another attempt is processing")
            return None
        if not self.can_process_payment():
            log.info("Ignoring checkout submission: payment cannot be processed yet")
            return None

        self.state = Processing()
        try:
            outcome = await self._attempt()
            if isinstance(outcome, TransactionSuccess):
                self._reset_after_sale()
                self.state = Succeeded(outcome.transaction)
            else:
                self.state = Failed(outcome)
            return outcome
        finally:
            if isinstance(self.state, Processing):
                self.state = Idle()

    async def _attempt(self) -> TransactionOutcome:
        try:
            request = self.build_request()
            outcome = await process_transaction(request, self.gateway, timeout=self.payment_timeout)
            if isinstance(outcome, TransactionSuccess) and self.sink is not None:
                self.sink.commit(outcome.transaction, outcome.inventory_updates)
            return outcome
        except Exception as exc:
            log.exception("Unexpected error while processing checkout")
            return TransactionError(
                kind=ErrorKind.UNEXPECTED_ERROR,
                message="An unexpected error occurred",
                details=str(exc) or "Please try again or contact support.",
            )

    def _reset_after_sale(self) -> None:
        self._lines.clear()
        self.selected_variants.clear()
        self.selected_customer = None
        self.payment_method = None
        self.amount_tendered = ZERO
        self.search_query = ""
        self.selected_category = ALL_CATEGORIES

    def dismiss_error(self) -> None:
        if isinstance(self.state, Failed):
            self.state = Idle()

    def acknowledge_transaction(self) -> None:
        if isinstance(self.state, Succeeded):
            self.state = Idle()


__all__ = [
    "Idle",
    "Processing",
    "Succeeded",
    "Failed",
    "SessionState",
    "calculate_totals",
    "filter_products",
    "search_customers",
    "CheckoutSession",
]
