"""Integration tests walking checkout flows through every layer.

These scenarios drive a :class:`CheckoutSession` against the workbook-backed
catalog, persist the result, and reload it to confirm what landed on disk.
"""

from __future__ import annotations

import asyncio
import random
from decimal import Decimal

from courtside_pos import data_manager, repositories, sales
from courtside_pos.checkout import CheckoutSession, Idle, Succeeded
from courtside_pos.constants import AddToCartStatus, ErrorKind, IssueType, PaymentMethod, StockState
from courtside_pos.payment import SimulatedCardGateway

from conftest import ApprovingGateway


def _session(context, catalog, gateway=None) -> CheckoutSession:
    if gateway is None:
        gateway = SimulatedCardGateway(context.settings.card_decline_rate, rng=random.Random(1))
    return CheckoutSession(
        gateway,
        tax_rate=context.settings.tax_rate,
        sink=catalog,
        products=catalog,
        payment_timeout=context.settings.payment_timeout,
        product_list_limit=context.settings.product_list_limit,
    )


def test_checkout_lifecycle_flow(runtime_context):
    """Ring up a member sale, persist it, and read it back from disk."""

    context = runtime_context
    catalog = repositories.WorkbookCatalog(context)
    session = _session(context, catalog)

    session.select_category("Court Rental")
    court = next(product for product in session.filtered_products() if product.has_variants)
    session.select_variant(court.product_id, "premium")
    assert session.add_to_cart(court) is AddToCartStatus.ADDED
    session.add_to_cart(catalog.get_product("5"))
    session.select_customer(catalog.get_customer("4"))
    session.select_payment_method(PaymentMethod.CARD)

    totals = session.compute_totals()
    assert totals.subtotal == Decimal("68")
    assert totals.discount == Decimal("10.20")

    asyncio.run(session.process_payment())

    assert isinstance(session.state, Succeeded)
    transaction = session.last_transaction
    assert transaction.total == totals.total
    assert transaction.customer.customer_id == "4"
    session.acknowledge_transaction()
    assert isinstance(session.state, Idle)

    # Persist and reload so the assertions reflect what a later run would see.
    repositories.persist_context(context)
    context = repositories.refresh_context(context)
    reloaded = repositories.WorkbookCatalog(context)

    premium = reloaded.get_product("2").find_variant("premium")
    assert premium.stock == 1
    assert premium.stock_state is StockState.LOW_STOCK
    assert reloaded.get_product("5").stock == 14

    header, lines = sales.get_sale(context, transaction.transaction_id)
    assert header.customer_id == "4"
    assert header.payment_method == "card"
    assert header.amount_tendered == header.total
    assert [(line.product_name, line.variant_name, line.quantity) for line in lines] == [
        ("Court Rental - 2 Hours", "Premium Court", 1),
        ("Balls (3 pack)", None, 1),
    ]


def test_sequential_sales_exhaust_stock(runtime_context):
    """Each committed sale is visible to the next session's inventory check."""

    catalog = repositories.WorkbookCatalog(runtime_context)

    first = _session(runtime_context, catalog)
    first.add_to_cart(catalog.get_product("8"))
    first.select_payment_method(PaymentMethod.CASH)
    first.set_amount_tendered(Decimal("5"))
    asyncio.run(first.process_payment())
    assert first.last_transaction is not None

    towel = catalog.get_product("8")
    assert towel.stock == 0
    assert towel.stock_state is StockState.OUT_OF_STOCK

    second = _session(runtime_context, catalog)
    assert second.add_to_cart(towel) is AddToCartStatus.OUT_OF_STOCK
    assert second.can_process_payment() is False


def test_stale_cart_is_refused_before_payment(runtime_context):
    """A cart built before another till sold the last unit never reaches the gateway."""

    catalog = repositories.WorkbookCatalog(runtime_context)
    towel = catalog.get_product("8")

    gateway = ApprovingGateway()
    slow = _session(runtime_context, catalog, gateway)
    slow.add_to_cart(towel)
    slow.select_payment_method(PaymentMethod.CARD)

    fast = _session(runtime_context, catalog)
    fast.add_to_cart(towel)
    fast.select_payment_method(PaymentMethod.CARD)
    asyncio.run(fast.process_payment())
    assert fast.last_transaction is not None

    asyncio.run(slow.process_payment())

    assert slow.last_error.kind is ErrorKind.INVENTORY_MISMATCH
    assert slow.last_error.issue_type is IssueType.OUT_OF_STOCK
    assert gateway.calls == []
    assert len(slow.cart_lines) == 1
    assert catalog.get_product("8").stock == 0
    assert len(list(data_manager.iter_sales(runtime_context.workbook))) == 1
