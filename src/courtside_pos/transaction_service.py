"""Decision logic that turns a checkout snapshot into a sale or a typed error.

The service runs three steps in strict order and stops at the first failing
one:

1. Inventory availability for every cart line.
2. Payment: an amount check for cash, a gateway authorization for card.
3. Commit: build the :class:`~courtside_pos.models.Transaction` record and the
   inventory decrements it implies.

Expected failures come back as :class:`~courtside_pos.models.TransactionError`
values. The service never applies inventory changes itself and never mutates
the request it receives.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from . import log
from .constants import ErrorKind, IssueType, PaymentMethod, StockState
from .models import (
    CartLine,
    InventoryIssue,
    InventoryUpdate,
    LineItem,
    Transaction,
    TransactionError,
    TransactionOutcome,
    TransactionRequest,
    TransactionSuccess,
)
from .payment import PaymentGateway, PaymentRequest


_ISSUE_MESSAGES = {
    IssueType.INSUFFICIENT_STOCK: "Insufficient inventory",
    IssueType.OUT_OF_STOCK: "Item out of stock",
    IssueType.VARIANT_NOT_FOUND: "Variant not found",
}


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_transaction_id(*, prefix: str = "TXN-", when: Optional[datetime] = None) -> str:
    """Generate a sortable transaction identifier from a UTC timestamp.

    Args:
        prefix (str): Designator prepended to the identifier.
        when (datetime | None): Moment encoded in the identifier. Defaults to
            the current UTC time.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _check_stock(
    *,
    stock: int,
    stock_state: StockState,
    requested: int,
    product_name: str,
    variant_name: Optional[str],
) -> Optional[InventoryIssue]:
    if stock_state is StockState.OUT_OF_STOCK or stock <= 0:
        return InventoryIssue(
            issue_type=IssueType.OUT_OF_STOCK,
            product_name=product_name,
            variant_name=variant_name,
            requested=requested,
            available=max(stock, 0),
        )
    if stock < requested:
        return InventoryIssue(
            issue_type=IssueType.INSUFFICIENT_STOCK,
            product_name=product_name,
            variant_name=variant_name,
            requested=requested,
            available=stock,
        )
    return None


def check_inventory_availability(lines: Sequence[CartLine]) -> List[InventoryIssue]:
    """Collect every availability problem across ``lines`` in cart order.

    Variant products are checked against the variant found by id on the
    product snapshot, never against the variant object carried by the line,
    so a variant that has since disappeared is reported as
    ``variant_not_found``.
    """
    issues: List[InventoryIssue] = []
    for line in lines:
        product = line.product
        if product.has_variants:
            requested_variant = line.variant
            current = (
                product.find_variant(requested_variant.variant_id)
                if requested_variant is not None
                else None
            )
            if current is None:
                issues.append(
                    InventoryIssue(
                        issue_type=IssueType.VARIANT_NOT_FOUND,
                        product_name=product.name,
                        variant_name=requested_variant.name if requested_variant is not None else None,
                        requested=line.quantity,
                    )
                )
                continue
            issue = _check_stock(
                stock=current.stock,
                stock_state=current.stock_state,
                requested=line.quantity,
                product_name=product.name,
                variant_name=current.name,
            )
        else:
            issue = _check_stock(
                stock=product.stock,
                stock_state=product.stock_state,
                requested=line.quantity,
                product_name=product.name,
                variant_name=None,
            )
        if issue is not None:
            issues.append(issue)
    return issues


def build_inventory_error(issues: Sequence[InventoryIssue]) -> TransactionError:
    """Summarize inventory issues into an error keyed on the first one."""

    first = issues[0]
    if first.issue_type is IssueType.INSUFFICIENT_STOCK:
        details = f"{first.label}: Requested {first.requested}, but only {first.available} available."
    elif first.issue_type is IssueType.OUT_OF_STOCK:
        details = f"{first.label} is now out of stock."
    else:
        details = f"{first.label} is no longer available."
    return TransactionError(
        kind=ErrorKind.INVENTORY_MISMATCH,
        message=_ISSUE_MESSAGES[first.issue_type],
        details=details,
        issue_type=first.issue_type,
        issues=tuple(issues),
    )


async def attempt_payment(
    request: TransactionRequest,
    gateway: PaymentGateway,
    *,
    timeout: Optional[float] = None,
) -> Optional[TransactionError]:
    """Settle payment for ``request`` and return an error when it fails.

    Cash never reaches the gateway; it only has to cover the total. Card
    payments make exactly one gateway call, bounded by ``timeout`` seconds
    when given.

    Returns:
        TransactionError | None: ``None`` when payment succeeded.
    """
    if request.payment_method is PaymentMethod.CASH:
        if request.amount_tendered < request.total:
            shortfall = request.total - request.amount_tendered
            return TransactionError(
                kind=ErrorKind.PAYMENT_FAILURE,
                message=(
                    f"Insufficient amount. Total is ${request.total:.2f} but only "
                    f"${request.amount_tendered:.2f} was tendered (short by ${shortfall:.2f})."
                ),
                details=f"Please provide at least ${request.total:.2f}.",
                issue_type=IssueType.INSUFFICIENT_AMOUNT,
            )
        return None

    payment_request = PaymentRequest(
        method=request.payment_method,
        amount=request.amount_tendered,
        total=request.total,
    )
    try:
        if timeout:
            result = await asyncio.wait_for(gateway.authorize(payment_request), timeout=timeout)
        else:
            result = await gateway.authorize(payment_request)
    except asyncio.TimeoutError:
        log.warning("Payment gateway did not answer within %s seconds", timeout)
        return TransactionError(
            kind=ErrorKind.PAYMENT_FAILURE,
            message="Payment timed out. The card was not charged.",
            details="Please try again or use a different payment method.",
            issue_type=IssueType.TIMEOUT,
        )

    if not result.approved:
        return TransactionError(
            kind=ErrorKind.PAYMENT_FAILURE,
            message="Card payment was declined. Please try a different payment method.",
            details="Please check your payment method and try again.",
            issue_type=IssueType.PAYMENT_DECLINED,
        )
    return None


def build_transaction(request: TransactionRequest, *, transaction_id: str, timestamp: datetime) -> Transaction:
    """Materialize the sale record, copying totals verbatim from ``request``."""

    return Transaction(
        transaction_id=transaction_id,
        timestamp=timestamp,
        customer=request.customer,
        items=tuple(LineItem.from_cart_line(line) for line in request.lines),
        payment_method=request.payment_method,
        amount_tendered=request.amount_tendered,
        subtotal=request.subtotal,
        discount=request.discount,
        tax=request.tax,
        total=request.total,
        change=request.change,
    )


def build_inventory_updates(lines: Sequence[CartLine]) -> Tuple[InventoryUpdate, ...]:
    """Describe one decrement per cart line, variant-aware."""

    return tuple(
        InventoryUpdate(
            product_id=line.product.product_id,
            variant_id=line.variant.variant_id if line.variant is not None else None,
            quantity=line.quantity,
        )
        for line in lines
    )


async def process_transaction(
    request: TransactionRequest,
    gateway: PaymentGateway,
    *,
    timeout: Optional[float] = None,
    timestamp: Optional[datetime] = None,
) -> TransactionOutcome:
    """Decide the outcome of a checkout attempt.

    Args:
        request (TransactionRequest): Frozen snapshot of the sale.
        gateway (PaymentGateway): Card authorizer; unused for cash.
        timeout (float | None): Upper bound in seconds on the gateway call.
        timestamp (datetime | None): Commit time override, mainly for tests.

    Returns:
        TransactionOutcome: A :class:`TransactionSuccess` carrying the record
            and its inventory decrements, or a :class:`TransactionError`.

    Raises:
        ValueError: If ``request`` holds no lines. This is a caller defect,
            not an expected failure.
    """
    if not request.lines:
        raise ValueError("Transaction request contains no cart lines")

    issues = check_inventory_availability(request.lines)
    if issues:
        error = build_inventory_error(issues)
        log.warning("Inventory check failed: %s (%d issue(s))", error.details, len(issues))
        return error

    payment_error = await attempt_payment(request, gateway, timeout=timeout)
    if payment_error is not None:
        log.warning("Payment failed: %s", payment_error.message)
        return payment_error

    moment = _resolve_timestamp(timestamp)
    transaction = build_transaction(
        request,
        transaction_id=generate_transaction_id(when=moment),
        timestamp=moment,
    )
    updates = build_inventory_updates(request.lines)
    log.info(
        "Committed transaction '%s' (%s, total=%s, lines=%d)",
        transaction.transaction_id,
        transaction.payment_method.value,
        transaction.total,
        len(transaction.items),
    )
    return TransactionSuccess(transaction=transaction, inventory_updates=updates)


__all__ = [
    "generate_transaction_id",
    "check_inventory_availability",
    "build_inventory_error",
    "attempt_payment",
    "build_transaction",
    "build_inventory_updates",
    "process_transaction",
]
