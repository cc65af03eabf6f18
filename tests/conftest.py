"""Shared pytest fixtures and utilities for Courtside POS tests."""

from __future__ import annotations

import asyncio
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, List

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from courtside_pos import constants, repositories  # noqa: E402
from courtside_pos.constants import StockState  # noqa: E402
from courtside_pos.models import Customer, Product, Variant  # noqa: E402
from courtside_pos.payment import PaymentRequest, PaymentResult  # noqa: E402
from courtside_pos.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Checkout]\n"
    "TaxRate = {tax_rate}\n"
    "CardDeclineRate = {decline_rate}\n"
    "PaymentTimeout = 5\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


# ---------------------------------------------------------------------------
# Payment gateway fakes
# ---------------------------------------------------------------------------


class ApprovingGateway:
    """Approves every call and records what it was asked."""

    def __init__(self) -> None:
        self.calls: List[PaymentRequest] = []

    async def authorize(self, request: PaymentRequest) -> PaymentResult:
        self.calls.append(request)
        return PaymentResult(approved=True, reference="AUTH-TEST")


class DecliningGateway(ApprovingGateway):
    async def authorize(self, request: PaymentRequest) -> PaymentResult:
        self.calls.append(request)
        return PaymentResult(approved=False, reason="payment_declined")


class HangingGateway(ApprovingGateway):
    """Never answers until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def authorize(self, request: PaymentRequest) -> PaymentResult:
        self.calls.append(request)
        await self.release.wait()
        return PaymentResult(approved=True, reference="AUTH-LATE")


class ExplodingGateway(ApprovingGateway):
    async def authorize(self, request: PaymentRequest) -> PaymentResult:
        self.calls.append(request)
        raise ConnectionError("gateway unreachable")


@pytest.fixture
def approving_gateway() -> ApprovingGateway:
    return ApprovingGateway()


@pytest.fixture
def declining_gateway() -> DecliningGateway:
    return DecliningGateway()


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def court_rental() -> Product:
    """Variant product mirroring the two-hour court booking."""

    return Product(
        product_id="2",
        name="Court Rental - 2 Hours",
        category="Court Rental",
        price=Decimal("45.00"),
        stock=0,
        stock_state=StockState.IN_STOCK,
        has_variants=True,
        variants=(
            Variant("standard", "Standard Court", Decimal("45.00"), 5, StockState.IN_STOCK),
            Variant("premium", "Premium Court", Decimal("60.00"), 2, StockState.LOW_STOCK),
            Variant("championship", "Championship Court", Decimal("75.00"), 0, StockState.OUT_OF_STOCK),
        ),
    )


@pytest.fixture
def racket_rental() -> Product:
    """Non-variant product that is out of stock."""

    return Product(
        product_id="3",
        name="Racket Rental",
        category="Equipment",
        price=Decimal("5.00"),
        stock=0,
        stock_state=StockState.OUT_OF_STOCK,
    )


@pytest.fixture
def balls() -> Product:
    return Product(
        product_id="5",
        name="Balls (3 pack)",
        category="Equipment",
        price=Decimal("8.00"),
        stock=15,
        stock_state=StockState.IN_STOCK,
    )


@pytest.fixture
def towel() -> Product:
    return Product(
        product_id="8",
        name="Towel Rental",
        category="Equipment",
        price=Decimal("2.00"),
        stock=1,
        stock_state=StockState.LOW_STOCK,
    )


@pytest.fixture
def member() -> Customer:
    return Customer(
        customer_id="1",
        name="John Smith",
        email="john.smith@example.com",
        phone="+1-555-0101",
        is_member=True,
        member_discount=Decimal("0.10"),
    )


@pytest.fixture
def guest_customer() -> Customer:
    return Customer(
        customer_id="3",
        name="Mike Davis",
        email="mike.davis@example.com",
        phone="+1-555-0103",
    )


@pytest.fixture
def catalog(court_rental, racket_rental, balls, towel, member, guest_customer) -> repositories.InMemoryCatalog:
    return repositories.InMemoryCatalog(
        [court_rental, racket_rental, balls, towel],
        [member, guest_customer],
    )


# ---------------------------------------------------------------------------
# Workbook fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        seed_catalog: bool = True,
        filename: str = "courtside_master.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed_catalog=seed_catalog, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh seeded master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Courts",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        tax_rate: str = "0.10",
        decline_rate: str = "0",
        seed_catalog: bool = True,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed_catalog=seed_catalog)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                tax_rate=tax_rate,
                decline_rate=decline_rate,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> Iterator[repositories.RuntimeContext]:
    """Load the runtime context for tests through the public API."""

    context = repositories.load_runtime_context(config_file)
    repositories.ensure_schema_version(context)
    yield context
