"""Command-line entry points for the Courtside POS.

All orchestration in this module is limited to argparse wiring, translating
arguments into calls on the checkout session and the ledger, and printing
results. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
import asyncio
import random
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import log, repositories, sales
from .checkout import CheckoutSession, filter_products, search_customers
from .constants import ALL_CATEGORIES, AddToCartStatus, PaymentMethod
from .models import TransactionError
from .payment import SimulatedCardGateway


EXIT_OK = 0
EXIT_TRANSACTION_FAILED = 4


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[repositories.RuntimeContext, argparse.Namespace], int]
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="courtside-cli",
        description="Point-of-sale checkout tools for the Courtside workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [
        register_products_command(subparsers),
        register_customers_command(subparsers),
        register_checkout_command(subparsers),
        register_sales_command(subparsers),
        register_sale_command(subparsers),
        register_summary_command(subparsers),
    ]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products with their stock, optionally filtered."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--category", default=ALL_CATEGORIES)
        parser.add_argument("--all", action="store_true", help="Do not truncate the listing.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "List customers, optionally filtered by name, email, or phone."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_customers)


def register_checkout_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``checkout``."""
    name = "checkout"
    help_text = "Ring up a sale and commit it to the workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            help="PRODUCT_ID[:VARIANT_ID][=QTY]; repeat for each line.",
        )
        parser.add_argument("--customer", dest="customer_id", default=None)
        parser.add_argument(
            "--payment",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--tendered", default="0")
        parser.add_argument("--seed", type=int, default=None, help="Seed for the simulated card gateway.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_checkout, writes=True)


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    name = "sales"
    help_text = "Display the sales ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Display one sale with its lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display sales totals overall and per payment method."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary)


def load_runtime_context(config_path: Optional[Path] = None) -> repositories.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = repositories.load_runtime_context(config_path)
    repositories.ensure_schema_version(context)
    return context


def dispatch_command(
    context: repositories.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_item_spec(raw: str) -> Tuple[str, Optional[str], int]:
    """Split ``PRODUCT_ID[:VARIANT_ID][=QTY]`` into its parts.

    Raises:
        ValueError: If the quantity is not a positive integer or the product
            id is empty.
    """
    spec, _, quantity_raw = raw.partition("=")
    product_id, _, variant_id = spec.partition(":")
    if not product_id:
        raise ValueError(f"Missing product id in item '{raw}'")
    try:
        quantity = int(quantity_raw) if quantity_raw else 1
    except ValueError as exc:
        raise ValueError(f"Invalid quantity in item '{raw}'") from exc
    if quantity <= 0:
        raise ValueError(f"Quantity must be greater than zero in item '{raw}'")
    return product_id, variant_id or None, quantity


def parse_money(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc


def build_session(
    context: repositories.RuntimeContext,
    catalog: repositories.WorkbookCatalog,
    *,
    seed: Optional[int] = None,
) -> CheckoutSession:
    """Wire a checkout session to the workbook catalog and configured gateway."""
    settings = context.settings
    gateway = SimulatedCardGateway(
        settings.card_decline_rate,
        rng=random.Random(seed) if seed is not None else None,
    )
    return CheckoutSession(
        gateway,
        tax_rate=settings.tax_rate,
        sink=catalog,
        products=catalog,
        payment_timeout=settings.payment_timeout,
        product_list_limit=settings.product_list_limit,
    )


def fill_cart(
    session: CheckoutSession,
    catalog: repositories.WorkbookCatalog,
    items: Sequence[str],
) -> None:
    """Add each ``--item`` to the session cart.

    Raises:
        MissingReferenceError: For unknown product or variant ids.
        BusinessRuleViolation: When the cart rejects an item.
    """
    for raw in items:
        product_id, variant_id, quantity = parse_item_spec(raw)
        product = catalog.get_product(product_id)
        variant = None
        if variant_id is not None:
            variant = product.find_variant(variant_id)
            if variant is None:
                raise repositories.MissingReferenceError(f"Unknown variant id: {product_id}/{variant_id}")
        for _ in range(quantity):
            status = session.add_to_cart(product, variant)
            if status is not AddToCartStatus.ADDED:
                raise repositories.BusinessRuleViolation(
                    f"Cannot add '{product.name}' to cart: {status.value}"
                )


def format_error(error: TransactionError) -> str:
    lines = [f"Checkout failed [{error.kind.value}]: {error.message}"]
    if error.details:
        lines.append(f"  {error.details}")
    for issue in error.issues[1:]:
        lines.append(f"  also: {issue.issue_type.value} for {issue.label}")
    return "\n".join(lines)


def run_products(context: repositories.RuntimeContext, args: argparse.Namespace) -> int:
    """List products through the workbook catalog."""
    catalog = repositories.WorkbookCatalog(context)
    limit = None if args.all else context.settings.product_list_limit
    for product in filter_products(catalog.list_products(), query=args.search, category=args.category, limit=limit):
        if product.has_variants:
            print(f"{product.product_id:>6}  {product.name} [{product.category}]")
            for variant in product.variants:
                print(
                    f"{'':>6}    {product.product_id}:{variant.variant_id:<14} {variant.name:<22} "
                    f"${variant.price:>8.2f}  {variant.stock:>4}  {variant.stock_state.value}"
                )
        else:
            print(
                f"{product.product_id:>6}  {product.name} [{product.category}]  "
                f"${product.price:.2f}  {product.stock}  {product.stock_state.value}"
            )
    return EXIT_OK


def run_customers(context: repositories.RuntimeContext, args: argparse.Namespace) -> int:
    """List customers through the workbook catalog."""
    catalog = repositories.WorkbookCatalog(context)
    for customer in search_customers(catalog.list_customers(), args.search):
        member = f"member -{customer.member_discount * 100:.0f}%" if customer.is_member else "guest"
        print(f"{customer.customer_id:>6}  {customer.name:<20} {customer.email:<28} {customer.phone:<14} {member}")
    return EXIT_OK


def run_checkout(context: repositories.RuntimeContext, args: argparse.Namespace) -> int:
    """Build a cart from arguments and run one checkout attempt."""
    catalog = repositories.WorkbookCatalog(context)
    session = build_session(context, catalog, seed=args.seed)
    fill_cart(session, catalog, args.items)
    if args.customer_id:
        session.select_customer(catalog.get_customer(args.customer_id))
    session.select_payment_method(PaymentMethod(args.payment))
    session.set_amount_tendered(parse_money(args.tendered))

    totals = session.compute_totals()
    if not session.can_process_payment():
        raise repositories.BusinessRuleViolation(
            f"Payment cannot be processed: ${session.amount_tendered:.2f} tendered for a ${totals.total:.2f} total"
        )

    outcome = asyncio.run(session.process_payment())
    if isinstance(outcome, TransactionError):
        print(format_error(outcome))
        return EXIT_TRANSACTION_FAILED

    transaction = session.last_transaction
    if transaction is None:
        raise RuntimeError("Checkout finished without a transaction")
    print(f"Transaction {transaction.transaction_id}")
    print(f"  Subtotal  ${transaction.subtotal:.2f}")
    if transaction.discount:
        print(f"  Discount -${transaction.discount:.2f}")
    print(f"  Tax       ${transaction.tax:.2f}")
    print(f"  Total     ${transaction.total:.2f} ({transaction.payment_method.value})")
    if transaction.change > 0:
        print(f"  Change    ${transaction.change:.2f}")
    return EXIT_OK


def run_sales(context: repositories.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the sales ledger."""
    for sale in sales.list_sales(context):
        print(f"{sale.transaction_id}  {sale.timestamp_iso}  {sale.payment_method:<5} ${sale.total:.2f}")
    return EXIT_OK


def run_sale(context: repositories.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one sale and its lines."""
    sale, lines = sales.get_sale(context, args.transaction_id)
    print(f"{sale.transaction_id}  {sale.timestamp_iso}  customer={sale.customer_id or 'guest'}")
    for line in lines:
        label = f"{line.product_name} - {line.variant_name}" if line.variant_name else line.product_name
        print(f"  {line.quantity} x {label} @ ${line.unit_price:.2f}")
    print(f"  Total ${sale.total:.2f} ({sale.payment_method}), tendered ${sale.amount_tendered:.2f}, change ${sale.change:.2f}")
    return EXIT_OK


def run_summary(context: repositories.RuntimeContext, args: argparse.Namespace) -> int:
    """Print aggregate ledger figures."""
    summary = sales.summarize_sales(context)
    print(f"Sales     {summary.count}")
    print(f"Subtotal  ${summary.subtotal:.2f}")
    print(f"Discount  ${summary.discount:.2f}")
    print(f"Tax       ${summary.tax:.2f}")
    print(f"Total     ${summary.total:.2f}")
    for method, amount in sorted(summary.by_payment_method.items()):
        print(f"  {method:<6}  ${amount:.2f}")
    return EXIT_OK


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, repositories.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: repositories.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        repositories.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == EXIT_OK and command_table[args.command].writes:
            persist_workbook(context)
        return exit_code
    except Exception as error:
        return handle_cli_error(error)
