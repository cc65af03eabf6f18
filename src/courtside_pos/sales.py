"""Read-only queries over the persisted sales ledger.

Sales are append-only: the checkout core writes them through
:class:`~courtside_pos.repositories.WorkbookCatalog` and nothing here mutates
them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from . import data_manager, log
from .repositories import MissingReferenceError, RuntimeContext, get_cache_bucket


@dataclass(frozen=True)
class SalesSummary:
    """Aggregate figures across the ledger."""

    count: int
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    by_payment_method: Dict[str, Decimal]


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sales cache bucket on demand.

    The bucket holds ``all`` sale headers in ledger order, a ``by_id``
    lookup, and ``lines`` grouped by transaction id.
    """
    bucket = get_cache_bucket(context, "sales")
    if "all" not in bucket:
        sales = list(data_manager.iter_sales(context.workbook))
        lines: Dict[str, List[data_manager.SaleLineRow]] = {}
        for line in data_manager.iter_sale_lines(context.workbook):
            lines.setdefault(line.transaction_id, []).append(line)
        bucket["all"] = sales
        bucket["by_id"] = {sale.transaction_id: sale for sale in sales}
        bucket["lines"] = lines
        log.debug("Populated sales cache with %d entries", len(sales))
    return bucket


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRow]:
    """Return a copy of every sale header in ledger order."""
    return list(_ensure_sales_cache(context)["all"])


def get_sale(
    context: RuntimeContext,
    transaction_id: str,
) -> Tuple[data_manager.SaleRow, List[data_manager.SaleLineRow]]:
    """Resolve a sale and its lines by transaction id.

    Raises:
        MissingReferenceError: If the ledger lacks ``transaction_id``.
    """
    cache = _ensure_sales_cache(context)
    try:
        sale = cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc
    return sale, list(cache["lines"].get(transaction_id, ()))


def summarize_sales(context: RuntimeContext) -> SalesSummary:
    """Sum the ledger's amounts overall and per payment method."""
    subtotal = discount = tax = total = Decimal("0")
    by_method: Dict[str, Decimal] = {}
    sales = _ensure_sales_cache(context)["all"]
    for sale in sales:
        subtotal += sale.subtotal
        discount += sale.discount
        tax += sale.tax
        total += sale.total
        by_method[sale.payment_method] = by_method.get(sale.payment_method, Decimal("0")) + sale.total
    return SalesSummary(
        count=len(sales),
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=total,
        by_payment_method=by_method,
    )


__all__ = ["SalesSummary", "list_sales", "get_sale", "summarize_sales"]
