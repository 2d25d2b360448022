"""Ledger aggregation engine.

Pure functions that derive balances, supplier groupings and monthly series
from an :class:`~credit_ledger.entities.EntityStore` snapshot. Nothing here
touches the workbook, the cache, or the formatting service: callers pass in
collections and receive freshly computed values, so repeated calls with the
same inputs always return equal results.

Monetary sums use :class:`~decimal.Decimal` throughout and are never rounded;
rounding is a presentation concern handled by :mod:`credit_ledger.formatting`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .constants import MONTHLY_WINDOW, UNKNOWN_SUPPLIER_LABEL, TransactionType
from .entities import Client, Supplier, Transaction


ZERO = Decimal("0")

# Sentinel accepted by ``compute_monthly_series`` meaning "every supplier".
ALL_SUPPLIERS = "all"


@dataclass(frozen=True)
class Balance:
    """Sold, paid and pending amounts for a client or a group of clients."""

    sold: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def pending(self) -> Decimal:
        return self.sold - self.paid

    def __add__(self, other: "Balance") -> "Balance":
        if not isinstance(other, Balance):
            return NotImplemented
        return Balance(sold=self.sold + other.sold, paid=self.paid + other.paid)


@dataclass(frozen=True)
class SupplierSummary:
    """Aggregate balance of every client attached to one supplier."""

    supplier: Supplier
    sold: Decimal
    paid: Decimal
    pending: Decimal


@dataclass(frozen=True)
class ClientGroup:
    """Clients sharing a supplier reference, with their combined debt.

    ``supplier`` is ``None`` when no supplier record matches ``supplier_id``.
    """

    supplier_id: str
    supplier: Optional[Supplier]
    clients: Tuple[Client, ...]
    total_pending: Decimal

    @property
    def label(self) -> str:
        return self.supplier.name if self.supplier is not None else UNKNOWN_SUPPLIER_LABEL


@dataclass(frozen=True)
class MonthlyBucket:
    """Sold and paid totals for one calendar month."""

    year: int
    month: int
    sold: Decimal
    paid: Decimal

    @property
    def key(self) -> Tuple[int, int]:
        return (self.year, self.month)


def _sum_transactions(transactions: Iterable[Transaction]) -> Balance:
    sold = ZERO
    paid = ZERO
    for transaction in transactions:
        if transaction.transaction_type is TransactionType.SALE:
            sold += transaction.amount
        elif transaction.transaction_type is TransactionType.PAYMENT:
            paid += transaction.amount
    return Balance(sold=sold, paid=paid)


def compute_client_balance(client: Client) -> Balance:
    """Return the sold, paid and pending amounts of a single client.

    Args:
        client (Client): Client whose transactions should be summed.

    Returns:
        Balance: ``sold`` is the sum of SALE amounts, ``paid`` the sum of
            PAYMENT amounts and ``pending`` their difference. A client without
            transactions yields zeros; an overpaid client has a negative
            ``pending``.
    """

    return _sum_transactions(client.transactions)


def compute_balance(clients: Iterable[Client]) -> Balance:
    """Return the combined balance of several clients.

    The result is always the sum of the per-client balances so group and
    global totals can never drift from what each client reports.
    """

    total = Balance()
    for client in clients:
        total = total + compute_client_balance(client)
    return total


def _ranking_key(pending: Decimal, supplier: Optional[Supplier], supplier_id: str) -> Tuple[Decimal, str, str]:
    name = supplier.name.casefold() if supplier is not None else ""
    return (-pending, name, supplier_id)


def compute_supplier_summaries(
    suppliers: Sequence[Supplier],
    clients: Sequence[Client],
) -> List[SupplierSummary]:
    """Summarise every supplier's clients, highest pending balance first.

    Each supplier in ``suppliers`` is reported exactly once, including
    suppliers with no clients (their figures are zero). Clients pointing at a
    supplier missing from ``suppliers`` are ignored here; they surface through
    :func:`group_clients_by_supplier` instead.

    Args:
        suppliers (Sequence[Supplier]): Suppliers to report on.
        clients (Sequence[Client]): Every client in the store. No name filter
            is applied.

    Returns:
        list[SupplierSummary]: Summaries ordered by descending ``pending``.
            Equal balances are ordered by supplier name (case-insensitive)
            and then by supplier id.
    """

    members: Dict[str, List[Client]] = {supplier.supplier_id: [] for supplier in suppliers}
    for client in clients:
        bucket = members.get(client.supplier_id)
        if bucket is not None:
            bucket.append(client)

    summaries = []
    for supplier in suppliers:
        balance = compute_balance(members[supplier.supplier_id])
        summaries.append(
            SupplierSummary(
                supplier=supplier,
                sold=balance.sold,
                paid=balance.paid,
                pending=balance.pending,
            )
        )
    summaries.sort(key=lambda item: _ranking_key(item.pending, item.supplier, item.supplier.supplier_id))
    return summaries


def filter_clients_by_name(clients: Iterable[Client], name_filter: Optional[str] = None) -> List[Client]:
    """Keep clients whose name contains ``name_filter``, ignoring case.

    A missing or empty filter keeps every client. Whitespace is part of the
    needle, so ``" "`` keeps only names containing a space.
    """

    needle = (name_filter or "").casefold()
    if not needle:
        return list(clients)
    return [client for client in clients if needle in client.name.casefold()]


def group_clients_by_supplier(
    clients: Sequence[Client],
    suppliers: Sequence[Supplier],
    name_filter: Optional[str] = None,
) -> List[ClientGroup]:
    """Partition clients by supplier and rank the groups by outstanding debt.

    Args:
        clients (Sequence[Client]): Every client in the store.
        suppliers (Sequence[Supplier]): Every supplier in the store, used to
            resolve the group's supplier record.
        name_filter (str | None): Optional case-insensitive substring applied
            to client names before grouping.

    Returns:
        list[ClientGroup]: One group per ``supplier_id`` present among the
            filtered clients, ordered by descending ``total_pending``. Groups
            whose supplier record is missing are kept with ``supplier=None``.
            Members keep their input order. An empty client set gives an empty
            list.
    """

    supplier_map = {supplier.supplier_id: supplier for supplier in suppliers}
    partitions: Dict[str, List[Client]] = {}
    for client in filter_clients_by_name(clients, name_filter):
        partitions.setdefault(client.supplier_id, []).append(client)

    groups = [
        ClientGroup(
            supplier_id=supplier_id,
            supplier=supplier_map.get(supplier_id),
            clients=tuple(members),
            total_pending=compute_balance(members).pending,
        )
        for supplier_id, members in partitions.items()
    ]
    groups.sort(key=lambda group: _ranking_key(group.total_pending, group.supplier, group.supplier_id))
    return groups


def compute_monthly_series(
    clients: Iterable[Client],
    supplier_id: Optional[str] = None,
    *,
    window: int = MONTHLY_WINDOW,
) -> List[MonthlyBucket]:
    """Bucket transactions into calendar months and keep the most recent ones.

    Args:
        clients (Iterable[Client]): Clients whose transactions are bucketed.
        supplier_id (str | None): Restrict the series to clients of this
            supplier. ``None`` or :data:`ALL_SUPPLIERS` uses every client.
        window (int): Maximum number of buckets returned, counted from the
            most recent month backwards.

    Returns:
        list[MonthlyBucket]: Buckets in ascending ``(year, month)`` order.
            Only months that contain at least one transaction appear.

    Raises:
        ValueError: If ``window`` is not positive.
    """

    if window <= 0:
        raise ValueError("window must be a positive number of months")

    if supplier_id is not None and supplier_id != ALL_SUPPLIERS:
        clients = [client for client in clients if client.supplier_id == supplier_id]

    totals: Dict[Tuple[int, int], List[Decimal]] = {}
    for client in clients:
        for transaction in client.transactions:
            key = (transaction.date.year, transaction.date.month)
            sold_paid = totals.setdefault(key, [ZERO, ZERO])
            if transaction.transaction_type is TransactionType.SALE:
                sold_paid[0] += transaction.amount
            elif transaction.transaction_type is TransactionType.PAYMENT:
                sold_paid[1] += transaction.amount

    recent_keys = sorted(totals)[-window:]
    return [
        MonthlyBucket(year=year, month=month, sold=totals[(year, month)][0], paid=totals[(year, month)][1])
        for year, month in recent_keys
    ]


__all__ = [
    "ALL_SUPPLIERS",
    "Balance",
    "SupplierSummary",
    "ClientGroup",
    "MonthlyBucket",
    "compute_client_balance",
    "compute_balance",
    "compute_supplier_summaries",
    "filter_clients_by_name",
    "group_clients_by_supplier",
    "compute_monthly_series",
]
