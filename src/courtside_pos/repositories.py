"""Catalog, customer, and inventory collaborators of the checkout core.

The checkout orchestrator never touches storage directly. It reads products
and customers through :class:`ProductRepository` / :class:`CustomerRepository`
and hands committed sales to an :class:`InventorySink`. Two implementations
are provided: :class:`InMemoryCatalog` for tests and embedding, and
:class:`WorkbookCatalog`, which backs all three interfaces with the master
workbook through the data access layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, EXPECTED_SCHEMA_VERSION, StockState
from .models import (
    Customer,
    InventoryUpdate,
    Product,
    Transaction,
    Variant,
    compute_stock_state,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, variant, customer, or sale is unknown."""


class ProductRepository(Protocol):
    def list_products(self) -> List[Product]:
        ...

    def get_product(self, product_id: str) -> Product:
        ...


class CustomerRepository(Protocol):
    def list_customers(self) -> List[Customer]:
        ...

    def get_customer(self, customer_id: str) -> Customer:
        ...


class InventorySink(Protocol):
    """Applies a committed sale and its stock decrements as one unit."""

    def commit(self, transaction: Transaction, updates: Sequence[InventoryUpdate]) -> None:
        ...


def _decrement_plan(
    products: Dict[str, Product],
    updates: Sequence[InventoryUpdate],
) -> Dict[Tuple[str, Optional[str]], int]:
    """Validate ``updates`` against ``products`` and return resulting stock.

    Nothing is mutated here; callers apply the plan only when every entry
    validated, which keeps the decrement all-or-nothing.
    """
    remaining: Dict[Tuple[str, Optional[str]], int] = {}
    for update in updates:
        if update.quantity <= 0:
            raise BusinessRuleViolation(f"Decrement quantity must be positive, got {update.quantity}")
        product = products.get(update.product_id)
        if product is None:
            raise MissingReferenceError(f"Unknown product id: {update.product_id}")
        key = (update.product_id, update.variant_id)
        if update.variant_id is None:
            current = remaining.get(key, product.stock)
            label = product.name
        else:
            variant = product.find_variant(update.variant_id)
            if variant is None:
                raise MissingReferenceError(f"Unknown variant id: {update.product_id}/{update.variant_id}")
            current = remaining.get(key, variant.stock)
            label = f"{product.name} - {variant.name}"
        if current < update.quantity:
            log.error("Refusing decrement of %d for '%s' with %d on hand", update.quantity, label, current)
            raise BusinessRuleViolation(
                f"Cannot decrement {update.quantity} of '{label}': only {current} on hand"
            )
        remaining[key] = current - update.quantity
    return remaining


class InMemoryCatalog:
    """Dictionary-backed products, customers, and sale ledger.

    Stored products are immutable; commits replace them with decremented
    copies, so references handed out earlier keep their original figures.
    """

    def __init__(
        self,
        products: Iterable[Product] = (),
        customers: Iterable[Customer] = (),
        *,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ) -> None:
        self._products: Dict[str, Product] = {product.product_id: product for product in products}
        self._customers: Dict[str, Customer] = {customer.customer_id: customer for customer in customers}
        self.low_stock_threshold = low_stock_threshold
        self.transactions: List[Transaction] = []

    def list_products(self) -> List[Product]:
        return list(self._products.values())

    def get_product(self, product_id: str) -> Product:
        try:
            return self._products[product_id]
        except KeyError as exc:
            raise MissingReferenceError(f"Unknown product id: {product_id}") from exc

    def list_customers(self) -> List[Customer]:
        return list(self._customers.values())

    def get_customer(self, customer_id: str) -> Customer:
        try:
            return self._customers[customer_id]
        except KeyError as exc:
            raise MissingReferenceError(f"Unknown customer id: {customer_id}") from exc

    def commit(self, transaction: Transaction, updates: Sequence[InventoryUpdate]) -> None:
        plan = _decrement_plan(self._products, updates)
        for (product_id, variant_id), stock in plan.items():
            product = self._products[product_id]
            state = compute_stock_state(stock, self.low_stock_threshold)
            if variant_id is None:
                self._products[product_id] = replace(product, stock=stock, stock_state=state)
            else:
                variants = tuple(
                    replace(variant, stock=stock, stock_state=state)
                    if variant.variant_id == variant_id
                    else variant
                    for variant in product.variants
                )
                self._products[product_id] = replace(product, variants=variants)
        self.transactions.append(transaction)
        log.info("Committed transaction '%s' to in-memory catalog", transaction.transaction_id)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )
    data_manager.ensure_sheets(context.workbook)
    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, dropping unsaved edits and every cached query."""
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


def get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to ``name``, creating it on demand."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after mutating workbook state; unknown names are ignored."""

    if not names:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def product_from_rows(row: data_manager.ProductRow, variant_rows: Sequence[data_manager.VariantRow]) -> Product:
    """Assemble a domain :class:`Product` from its sheet rows."""

    variants = tuple(
        Variant(
            variant_id=variant.variant_id,
            name=variant.variant_name,
            price=variant.price,
            stock=variant.stock,
            stock_state=StockState(variant.stock_state),
        )
        for variant in variant_rows
    )
    return Product(
        product_id=row.product_id,
        name=row.product_name,
        category=row.category,
        price=row.price,
        stock=row.stock,
        stock_state=StockState(row.stock_state),
        has_variants=row.has_variants,
        variants=variants,
    )


def customer_from_row(row: data_manager.CustomerRow) -> Customer:
    return Customer(
        customer_id=row.customer_id,
        name=row.customer_name,
        email=row.email,
        phone=row.phone,
        is_member=row.is_member,
        member_discount=row.member_discount,
    )


def sale_rows_from_transaction(
    transaction: Transaction,
) -> Tuple[data_manager.SaleRow, List[data_manager.SaleLineRow]]:
    """Split a :class:`Transaction` into its ``Sales`` and ``SaleLines`` rows."""

    header = data_manager.SaleRow(
        transaction_id=transaction.transaction_id,
        timestamp_iso=transaction.timestamp.isoformat(),
        customer_id=transaction.customer.customer_id if transaction.customer is not None else None,
        payment_method=transaction.payment_method.value,
        amount_tendered=transaction.amount_tendered,
        subtotal=transaction.subtotal,
        discount=transaction.discount,
        tax=transaction.tax,
        total=transaction.total,
        change=transaction.change,
    )
    lines = [
        data_manager.SaleLineRow(
            transaction_id=transaction.transaction_id,
            product_id=item.product_id,
            variant_id=item.variant_id,
            product_name=item.product_name,
            variant_name=item.variant_name,
            unit_price=item.unit_price,
            quantity=item.quantity,
        )
        for item in transaction.items
    ]
    return header, lines


class WorkbookCatalog:
    """Workbook-backed products, customers, and inventory sink.

    Reads are memoized in the context cache; a commit invalidates the
    affected buckets. Changes stay in memory until :func:`persist_context`.
    """

    def __init__(self, context: RuntimeContext) -> None:
        self.context = context

    def _products_bucket(self) -> Dict[str, Any]:
        bucket = get_cache_bucket(self.context, "products")
        if "all" not in bucket:
            variants_by_product: Dict[str, List[data_manager.VariantRow]] = {}
            for variant in data_manager.iter_variants(self.context.workbook):
                variants_by_product.setdefault(variant.product_id, []).append(variant)
            products = [
                product_from_rows(row, variants_by_product.get(row.product_id, ()))
                for row in data_manager.iter_products(self.context.workbook)
            ]
            bucket["all"] = products
            bucket["by_id"] = {product.product_id: product for product in products}
            log.debug("Populated products cache with %d entries", len(products))
        return bucket

    def _customers_bucket(self) -> Dict[str, Any]:
        bucket = get_cache_bucket(self.context, "customers")
        if "all" not in bucket:
            customers = [customer_from_row(row) for row in data_manager.iter_customers(self.context.workbook)]
            bucket["all"] = customers
            bucket["by_id"] = {customer.customer_id: customer for customer in customers}
            log.debug("Populated customers cache with %d entries", len(customers))
        return bucket

    def list_products(self) -> List[Product]:
        return list(self._products_bucket()["all"])

    def get_product(self, product_id: str) -> Product:
        try:
            return self._products_bucket()["by_id"][product_id]
        except KeyError as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise MissingReferenceError(f"Unknown product id: {product_id}") from exc

    def list_customers(self) -> List[Customer]:
        return list(self._customers_bucket()["all"])

    def get_customer(self, customer_id: str) -> Customer:
        try:
            return self._customers_bucket()["by_id"][customer_id]
        except KeyError as exc:
            log.warning("Customer lookup failed for id '%s'", customer_id)
            raise MissingReferenceError(f"Unknown customer id: {customer_id}") from exc

    def commit(self, transaction: Transaction, updates: Sequence[InventoryUpdate]) -> None:
        """Decrement stock and append the sale, all or nothing.

        Raises:
            BusinessRuleViolation: If any decrement would drive stock below
                zero. No row is touched in that case.
            MissingReferenceError: If an update names an unknown product or
                variant.
        """
        plan = _decrement_plan(self._products_bucket()["by_id"], updates)
        threshold = self.context.settings.low_stock_threshold
        workbook = self.context.workbook
        for (product_id, variant_id), stock in plan.items():
            values = {"Stock": stock, "StockState": compute_stock_state(stock, threshold).value}
            if variant_id is None:
                data_manager.update_product(workbook, product_id, field_values=values)
            else:
                data_manager.update_variant(workbook, product_id, variant_id, field_values=values)
        header, lines = sale_rows_from_transaction(transaction)
        data_manager.append_sale(workbook, header, lines)
        invalidate_cache(self.context, "products", "sales")
        log.info(
            "Recorded sale '%s' with %d line(s) and %d stock decrement(s)",
            transaction.transaction_id,
            len(lines),
            len(plan),
        )


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "ProductRepository",
    "CustomerRepository",
    "InventorySink",
    "InMemoryCatalog",
    "RuntimeContext",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "get_cache_bucket",
    "invalidate_cache",
    "product_from_rows",
    "customer_from_row",
    "sale_rows_from_transaction",
    "WorkbookCatalog",
]
