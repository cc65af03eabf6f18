"""Tests for the catalog collaborators and the runtime context."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from courtside_pos import data_manager, repositories
from courtside_pos.constants import PaymentMethod, StockState
from courtside_pos.models import InventoryUpdate, LineItem, Transaction


FIXED_MOMENT = datetime(2025, 3, 14, 9, 26, 53, tzinfo=timezone.utc)


def _transaction(*items: LineItem, transaction_id: str = "TXN-20250314092653000000", customer=None) -> Transaction:
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    return Transaction(
        transaction_id=transaction_id,
        timestamp=FIXED_MOMENT,
        customer=customer,
        items=tuple(items),
        payment_method=PaymentMethod.CARD,
        amount_tendered=subtotal,
        subtotal=subtotal,
        discount=Decimal("0"),
        tax=Decimal("0"),
        total=subtotal,
        change=Decimal("0"),
    )


def _item(product_id, variant_id, product_name, variant_name, price, quantity) -> LineItem:
    return LineItem(product_id, variant_id, product_name, variant_name, Decimal(price), quantity)


# ---------------------------------------------------------------------------
# In-memory catalog
# ---------------------------------------------------------------------------


def test_in_memory_lookups(catalog, balls, member):
    assert catalog.get_product("5") is balls
    assert catalog.get_customer("1") is member
    assert len(catalog.list_products()) == 4
    assert len(catalog.list_customers()) == 2


def test_in_memory_lookups_raise_missing_reference(catalog):
    with pytest.raises(repositories.MissingReferenceError):
        catalog.get_product("404")
    with pytest.raises(repositories.MissingReferenceError):
        catalog.get_customer("404")


def test_in_memory_commit_decrements_and_records(catalog, balls):
    transaction = _transaction(_item("5", None, "Balls (3 pack)", None, "8", 13))

    catalog.commit(transaction, [InventoryUpdate("5", None, 13)])

    updated = catalog.get_product("5")
    assert updated.stock == 2
    assert updated.stock_state is StockState.LOW_STOCK
    assert balls.stock == 15
    assert catalog.transactions == [transaction]


def test_in_memory_commit_is_all_or_nothing(catalog):
    transaction = _transaction(_item("5", None, "Balls (3 pack)", None, "8", 1))
    updates = [InventoryUpdate("5", None, 1), InventoryUpdate("2", "premium", 3)]

    with pytest.raises(repositories.BusinessRuleViolation):
        catalog.commit(transaction, updates)

    assert catalog.get_product("5").stock == 15
    assert catalog.get_product("2").find_variant("premium").stock == 2
    assert catalog.transactions == []


def test_in_memory_commit_rejects_unknown_variant(catalog):
    with pytest.raises(repositories.MissingReferenceError):
        catalog.commit(_transaction(), [InventoryUpdate("2", "platinum", 1)])


def test_in_memory_commit_rejects_non_positive_quantity(catalog):
    with pytest.raises(repositories.BusinessRuleViolation):
        catalog.commit(_transaction(), [InventoryUpdate("5", None, 0)])


def test_repeated_updates_for_same_line_accumulate(catalog):
    updates = [InventoryUpdate("8", None, 1), InventoryUpdate("8", None, 1)]

    with pytest.raises(repositories.BusinessRuleViolation):
        catalog.commit(_transaction(), updates)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_load_runtime_context_resolves_relative_data_file(config_factory):
    bundle = config_factory(make_relative=True)

    context = repositories.load_runtime_context(bundle.config_path)

    assert context.settings.data_file == bundle.workbook_path.resolve()
    assert context.settings.store_name == "Test Courts"
    assert context.settings.tax_rate == Decimal("0.10")


def test_load_runtime_context_missing_workbook(config_factory):
    bundle = config_factory()
    bundle.workbook_path.unlink()

    with pytest.raises(FileNotFoundError):
        repositories.load_runtime_context(bundle.config_path)


def test_ensure_schema_version_rejects_mismatch(config_factory):
    bundle = config_factory(schema_version="0.9.0")
    context = repositories.load_runtime_context(bundle.config_path)

    with pytest.raises(RuntimeError, match="schema mismatch"):
        repositories.ensure_schema_version(context)


def test_cache_buckets_are_created_and_invalidated(runtime_context):
    bucket = repositories.get_cache_bucket(runtime_context, "products")
    bucket["marker"] = True

    assert repositories.get_cache_bucket(runtime_context, "products") is bucket

    repositories.invalidate_cache(runtime_context, "products", "unknown")
    assert "marker" not in repositories.get_cache_bucket(runtime_context, "products")


def test_refresh_context_drops_cache_and_unsaved_edits(runtime_context):
    catalog = repositories.WorkbookCatalog(runtime_context)
    catalog.list_products()
    data_manager.update_product(runtime_context.workbook, "5", field_values={"Stock": 0})

    refreshed = repositories.refresh_context(runtime_context)

    assert refreshed.settings is runtime_context.settings
    assert refreshed._cache == {}
    assert repositories.WorkbookCatalog(refreshed).get_product("5").stock == 15


# ---------------------------------------------------------------------------
# Workbook catalog
# ---------------------------------------------------------------------------


def test_workbook_catalog_assembles_variant_products(runtime_context):
    catalog = repositories.WorkbookCatalog(runtime_context)

    court = catalog.get_product("2")

    assert court.has_variants is True
    assert [variant.variant_id for variant in court.variants] == ["standard", "premium", "championship"]
    assert court.find_variant("championship").stock_state is StockState.OUT_OF_STOCK
    assert catalog.get_product("8").stock_state is StockState.LOW_STOCK


def test_workbook_catalog_customers(runtime_context):
    catalog = repositories.WorkbookCatalog(runtime_context)

    emily = catalog.get_customer("4")

    assert emily.is_member is True
    assert emily.effective_discount == Decimal("0.15")
    assert [customer.customer_id for customer in catalog.list_customers()] == ["1", "2", "3", "4"]
    with pytest.raises(repositories.MissingReferenceError):
        catalog.get_customer("99")


def test_workbook_catalog_reads_are_cached(runtime_context):
    catalog = repositories.WorkbookCatalog(runtime_context)

    first = catalog.get_product("5")
    data_manager.update_product(runtime_context.workbook, "5", field_values={"Stock": 1})

    assert catalog.get_product("5") is first


def test_workbook_commit_updates_rows_and_ledger(runtime_context, member):
    catalog = repositories.WorkbookCatalog(runtime_context)
    transaction = _transaction(
        _item("2", "premium", "Court Rental - 2 Hours", "Premium Court", "60", 2),
        _item("5", None, "Balls (3 pack)", None, "8", 1),
        customer=member,
    )
    updates = [InventoryUpdate("2", "premium", 2), InventoryUpdate("5", None, 1)]

    catalog.commit(transaction, updates)

    premium = catalog.get_product("2").find_variant("premium")
    assert premium.stock == 0
    assert premium.stock_state is StockState.OUT_OF_STOCK
    assert catalog.get_product("5").stock == 14

    sales = list(data_manager.iter_sales(runtime_context.workbook))
    assert [sale.transaction_id for sale in sales] == [transaction.transaction_id]
    assert sales[0].customer_id == "1"
    assert sales[0].payment_method == "card"
    assert sales[0].timestamp_iso == FIXED_MOMENT.isoformat()
    lines = list(data_manager.iter_sale_lines(runtime_context.workbook))
    assert [(line.product_id, line.variant_id, line.quantity) for line in lines] == [
        ("2", "premium", 2),
        ("5", None, 1),
    ]


def test_workbook_commit_rejects_oversell_without_writing(runtime_context):
    catalog = repositories.WorkbookCatalog(runtime_context)
    updates = [InventoryUpdate("5", None, 1), InventoryUpdate("8", None, 2)]

    with pytest.raises(repositories.BusinessRuleViolation):
        catalog.commit(_transaction(), updates)

    assert catalog.get_product("5").stock == 15
    assert list(data_manager.iter_sales(runtime_context.workbook)) == []


def test_sale_rows_from_guest_transaction():
    transaction = _transaction(_item("5", None, "Balls (3 pack)", None, "8", 2))

    header, lines = repositories.sale_rows_from_transaction(transaction)

    assert header.customer_id is None
    assert header.total == Decimal("16")
    assert lines[0].transaction_id == transaction.transaction_id
    assert lines[0].variant_name is None
