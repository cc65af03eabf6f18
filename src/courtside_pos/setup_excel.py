"""Utility for initializing the Courtside POS master workbook.

The module doubles as a script (``courtside-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager

CONFIG_FILE = data_manager.CONFIG_FILE_NAME

# ProductID, ProductName, Category, Price, Stock, StockState, HasVariants
SAMPLE_PRODUCTS: Sequence[Sequence[object]] = [
    ("1", "Court Rental - 1 Hour", "Court Rental", 25, 10, "in_stock", False),
    ("2", "Court Rental - 2 Hours", "Court Rental", 45, 0, "in_stock", True),
    ("3", "Racket Rental", "Equipment", 5, 0, "out_of_stock", False),
    ("4", "Racket Rental - Premium", "Equipment", 8, 0, "in_stock", True),
    ("5", "Balls (3 pack)", "Equipment", 8, 15, "in_stock", False),
    ("6", "Water Bottle", "Beverages", 3, 0, "in_stock", True),
    ("7", "Energy Drink", "Beverages", 4, 5, "in_stock", False),
    ("8", "Towel Rental", "Equipment", 2, 1, "low_stock", False),
    ("9", "Grip Tape", "Equipment", 6, 20, "in_stock", False),
]

# ProductID, VariantID, VariantName, Price, Stock, StockState
SAMPLE_VARIANTS: Sequence[Sequence[object]] = [
    ("2", "standard", "Standard Court", 45, 5, "in_stock"),
    ("2", "premium", "Premium Court", 60, 2, "low_stock"),
    ("2", "championship", "Championship Court", 75, 0, "out_of_stock"),
    ("4", "beginner", "Beginner", 8, 10, "in_stock"),
    ("4", "intermediate", "Intermediate", 12, 3, "low_stock"),
    ("4", "professional", "Professional", 15, 0, "out_of_stock"),
    ("6", "small", "Small (500ml)", 3, 0, "out_of_stock"),
    ("6", "large", "Large (1L)", 5, 8, "in_stock"),
]

# CustomerID, CustomerName, Email, Phone, IsMember, MemberDiscount
SAMPLE_CUSTOMERS: Sequence[Sequence[object]] = [
    ("1", "John Smith", "john.smith@example.com", "+1-555-0101", True, 0.1),
    ("2", "Sarah Johnson", "sarah.j@example.com", "+1-555-0102", True, 0.1),
    ("3", "Mike Davis", "mike.davis@example.com", "+1-555-0103", False, 0),
    ("4", "Emily Wilson", "emily.w@example.com", "+1-555-0104", True, 0.15),
]


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    seed_catalog: bool = True,
    overwrite: bool = False,
) -> Path:
    """Create the Courtside POS master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists. ``seed_catalog`` fills
    the product, variant, and customer sheets with a small sample catalog.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    if seed_catalog:
        for sheet_name, rows in (
            (data_manager.PRODUCTS_SHEET, SAMPLE_PRODUCTS),
            (data_manager.VARIANTS_SHEET, SAMPLE_VARIANTS),
            (data_manager.CUSTOMERS_SHEET, SAMPLE_CUSTOMERS),
        ):
            for row in rows:
                workbook[sheet_name].append(list(row))

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, seed_catalog: bool = True, overwrite: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` in ``config_path``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return create_master_workbook(settings.data_file, seed_catalog=seed_catalog, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Courtside POS data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--empty",
        action="store_true",
        help="Create the sheets without the sample catalog.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Courtside POS Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, seed_catalog=not args.empty, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
