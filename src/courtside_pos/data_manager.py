"""Data access layer for the Courtside POS.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CARD_DECLINE_RATE,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_PAYMENT_TIMEOUT,
    DEFAULT_PRODUCT_LIST_LIMIT,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
VARIANTS_SHEET = SheetName.VARIANTS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
SALES_SHEET = SheetName.SALES.value
SALE_LINES_SHEET = SheetName.SALE_LINES.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "ProductName",
        "Category",
        "Price",
        "Stock",
        "StockState",
        "HasVariants",
    ],
    VARIANTS_SHEET: [
        "ProductID",
        "VariantID",
        "VariantName",
        "Price",
        "Stock",
        "StockState",
    ],
    CUSTOMERS_SHEET: [
        "CustomerID",
        "CustomerName",
        "Email",
        "Phone",
        "IsMember",
        "MemberDiscount",
    ],
    SALES_SHEET: [
        "TransactionID",
        "Timestamp",
        "CustomerID",
        "PaymentMethod",
        "AmountTendered",
        "Subtotal",
        "Discount",
        "Tax",
        "Total",
        "Change",
    ],
    SALE_LINES_SHEET: [
        "TransactionID",
        "ProductID",
        "VariantID",
        "ProductName",
        "VariantName",
        "UnitPrice",
        "Quantity",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    tax_rate: Decimal = Decimal("0")
    card_decline_rate: Decimal = DEFAULT_CARD_DECLINE_RATE
    payment_timeout: float = DEFAULT_PAYMENT_TIMEOUT
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    product_list_limit: int = DEFAULT_PRODUCT_LIST_LIMIT


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    category: str
    price: Decimal
    stock: int
    stock_state: str
    has_variants: bool


@dataclass(frozen=True)
class VariantRow:
    """In-memory view of a row from the ``Variants`` sheet."""

    product_id: str
    variant_id: str
    variant_name: str
    price: Decimal
    stock: int
    stock_state: str


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    customer_name: str
    email: str
    phone: str
    is_member: bool
    member_discount: Decimal


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    transaction_id: str
    timestamp_iso: str
    customer_id: Optional[str]
    payment_method: str
    amount_tendered: Decimal
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    change: Decimal


@dataclass(frozen=True)
class SaleLineRow:
    """In-memory view of a row from the ``SaleLines`` sheet."""

    transaction_id: str
    product_id: str
    variant_id: Optional[str]
    product_name: str
    variant_name: Optional[str]
    unit_price: Decimal
    quantity: int


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _parse_rate(raw: str, option: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{option} must be a decimal number, got {raw!r}") from exc
    if not Decimal("0") <= value < Decimal("1"):
        raise ValueError(f"{option} must be in [0, 1), got {value}")
    return value


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. The ``[Checkout]`` section and each
    of its options are optional and fall back to package defaults. Relative
    ``DataFile`` entries are anchored to ``base_path`` (or the working
    directory) and resolved to an absolute path.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required ``[System]`` options is missing.
        ValueError: If a checkout rate or number cannot be parsed or is out of
            range.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    tax_rate = _parse_rate(parser.get("Checkout", "TaxRate", fallback="0"), "TaxRate")
    decline_rate = _parse_rate(
        parser.get("Checkout", "CardDeclineRate", fallback=str(DEFAULT_CARD_DECLINE_RATE)),
        "CardDeclineRate",
    )
    payment_timeout = parser.getfloat("Checkout", "PaymentTimeout", fallback=DEFAULT_PAYMENT_TIMEOUT)
    low_stock_threshold = parser.getint("Checkout", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    product_list_limit = parser.getint("Checkout", "ProductListLimit", fallback=DEFAULT_PRODUCT_LIST_LIMIT)
    if payment_timeout < 0:
        raise ValueError(f"PaymentTimeout must not be negative, got {payment_timeout}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        tax_rate=tax_rate,
        card_decline_rate=decline_rate,
        payment_timeout=payment_timeout,
        low_stock_threshold=low_stock_threshold,
        product_list_limit=product_list_limit,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _iter_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_variants(workbook: Workbook) -> Iterable[VariantRow]:
    """Iterate over variant records stored on the ``Variants`` worksheet.

    Rows come back in sheet order, which is also the display order of a
    product's variants.
    """

    for raw in _iter_rows(workbook, VARIANTS_SHEET):
        yield deserialize_variant(raw)


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over the ``Customers`` worksheet and yield typed records."""

    for raw in _iter_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sale headers from the ``Sales`` worksheet in ledger order."""

    for raw in _iter_rows(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_sale_lines(workbook: Workbook) -> Iterable[SaleLineRow]:
    """Stream sale lines from the ``SaleLines`` worksheet in ledger order."""

    for raw in _iter_rows(workbook, SALE_LINES_SHEET):
        yield deserialize_sale_line(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_variant(workbook: Workbook, record: VariantRow) -> None:
    """Append a variant record to the ``Variants`` worksheet."""

    workbook[VARIANTS_SHEET].append(serialize_variant(record))


def append_customer(workbook: Workbook, record: CustomerRow) -> None:
    """Append a customer record to the ``Customers`` worksheet."""

    workbook[CUSTOMERS_SHEET].append(serialize_customer(record))


def append_sale(workbook: Workbook, record: SaleRow, lines: Sequence[SaleLineRow]) -> None:
    """Append a sale header and all of its lines.

    Numerical fields remain :class:`~decimal.Decimal` instances after
    serialization, allowing Excel to preserve precision when the workbook is
    saved.
    """

    workbook[SALES_SHEET].append(serialize_sale(record))
    lines_sheet = workbook[SALE_LINES_SHEET]
    for line in lines:
        lines_sheet.append(serialize_sale_line(line))


def _header_map(workbook: Workbook, sheet_name: str) -> dict[Any, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _update_row(workbook: Workbook, sheet_name: str, row_index: int, field_values: Mapping[str, Any]) -> None:
    header_map = _header_map(workbook, sheet_name)
    unknown = [name for name in field_values if name not in header_map]
    if unknown:
        raise KeyError(f"Unknown {sheet_name} field(s): {', '.join(unknown)}")

    sheet = workbook[sheet_name]
    for name, value in field_values.items():
        sheet.cell(row=row_index, column=header_map[name], value=value)


def update_product(workbook: Workbook, product_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Update selected columns for an existing product.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, {"ProductID": product_id})
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")
    _update_row(workbook, PRODUCTS_SHEET, row_index, field_values)


def update_variant(
    workbook: Workbook,
    product_id: str,
    variant_id: str,
    *,
    field_values: Mapping[str, Any],
) -> None:
    """Update selected columns for an existing variant of ``product_id``.

    Raises:
        KeyError: If the variant or any referenced column cannot be found.
    """

    row_index = locate_row(
        workbook,
        VARIANTS_SHEET,
        {"ProductID": product_id, "VariantID": variant_id},
    )
    if row_index is None:
        raise KeyError(f"Variant not found: {product_id}/{variant_id}")
    _update_row(workbook, VARIANTS_SHEET, row_index, field_values)


def locate_row(workbook: Workbook, sheet_name: str, keys: Mapping[str, object]) -> Optional[int]:
    """Find the first row whose key columns all match ``keys``.

    Cell values are compared as strings so that identifiers Excel stored as
    numbers still match their textual form.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        keys (Mapping[str, object]): Header titles mapped to the values they
            must hold.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If a key column is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    for column in keys:
        if column not in header_map:
            raise KeyError(f"Unknown column: {column}")

    wanted = {header_map[column] - 1: str(value) for column, value in keys.items()}
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if all(row[col] is not None and str(row[col]) == value for col, value in wanted.items()):
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    return [
        record.product_id,
        record.product_name,
        record.category,
        record.price,
        record.stock,
        record.stock_state,
        record.has_variants,
    ]


def serialize_variant(record: VariantRow) -> list[object]:
    return [
        record.product_id,
        record.variant_id,
        record.variant_name,
        record.price,
        record.stock,
        record.stock_state,
    ]


def serialize_customer(record: CustomerRow) -> list[object]:
    return [
        record.customer_id,
        record.customer_name,
        record.email,
        record.phone,
        record.is_member,
        record.member_discount,
    ]


def serialize_sale(record: SaleRow) -> list[object]:
    return [
        record.transaction_id,
        record.timestamp_iso,
        record.customer_id,
        record.payment_method,
        record.amount_tendered,
        record.subtotal,
        record.discount,
        record.tax,
        record.total,
        record.change,
    ]


def serialize_sale_line(record: SaleLineRow) -> list[object]:
    return [
        record.transaction_id,
        record.product_id,
        record.variant_id,
        record.product_name,
        record.variant_name,
        record.unit_price,
        record.quantity,
    ]


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_int(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifier and name fields are coerced to ``str`` to avoid surprises
    caused by Excel automatically interpreting numbers.
    """

    product_id, product_name, category, price, stock, stock_state, has_variants = raw_row[:7]
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name),
        category=str(category) if category is not None else "",
        price=_to_decimal(price),
        stock=_to_int(stock),
        stock_state=str(stock_state) if stock_state is not None else "",
        has_variants=bool(has_variants),
    )


def deserialize_variant(raw_row: Sequence[object]) -> VariantRow:
    """Convert a raw worksheet row into a strongly typed variant record."""

    product_id, variant_id, variant_name, price, stock, stock_state = raw_row[:6]
    return VariantRow(
        product_id=str(product_id),
        variant_id=str(variant_id),
        variant_name=str(variant_name),
        price=_to_decimal(price),
        stock=_to_int(stock),
        stock_state=str(stock_state) if stock_state is not None else "",
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    """Convert a raw worksheet row into a strongly typed customer record."""

    customer_id, customer_name, email, phone, is_member, member_discount = raw_row[:6]
    return CustomerRow(
        customer_id=str(customer_id),
        customer_name=str(customer_name),
        email=str(email) if email is not None else "",
        phone=str(phone) if phone is not None else "",
        is_member=bool(is_member),
        member_discount=_to_decimal(member_discount, default="0"),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw worksheet row into a strongly typed sale header."""

    (
        transaction_id,
        timestamp_iso,
        customer_id,
        payment_method,
        amount_tendered,
        subtotal,
        discount,
        tax,
        total,
        change,
    ) = raw_row[:10]
    return SaleRow(
        transaction_id=str(transaction_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        customer_id=_to_optional_str(customer_id),
        payment_method=str(payment_method) if payment_method is not None else "",
        amount_tendered=_to_decimal(amount_tendered),
        subtotal=_to_decimal(subtotal),
        discount=_to_decimal(discount),
        tax=_to_decimal(tax),
        total=_to_decimal(total),
        change=_to_decimal(change),
    )


def deserialize_sale_line(raw_row: Sequence[object]) -> SaleLineRow:
    """Convert a raw worksheet row into a strongly typed sale line."""

    transaction_id, product_id, variant_id, product_name, variant_name, unit_price, quantity = raw_row[:7]
    return SaleLineRow(
        transaction_id=str(transaction_id),
        product_id=str(product_id),
        variant_id=_to_optional_str(variant_id),
        product_name=str(product_name) if product_name is not None else "",
        variant_name=_to_optional_str(variant_name),
        unit_price=_to_decimal(unit_price),
        quantity=_to_int(quantity),
    )


def ensure_sheets(workbook: Workbook) -> None:
    """Verify that every expected sheet is present in ``workbook``.

    Raises:
        KeyError: Naming the first missing sheet.
    """

    for sheet_name in SHEET_COLUMNS:
        if sheet_name not in workbook.sheetnames:
            log.error("Workbook is missing sheet '%s'", sheet_name)
            raise KeyError(f"Workbook is missing sheet: {sheet_name}")
