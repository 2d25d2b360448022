"""In-memory entity store for the credit ledger.

The store is a pure data container: suppliers, clients and the transactions
each client owns. Every record is an immutable dataclass and the store itself
is frozen, so a mutation always produces a brand new snapshot. Readers holding
a snapshot therefore never observe a half-applied change.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from .constants import TransactionType


@dataclass(frozen=True)
class Supplier:
    """Party on whose behalf credit is extended to clients."""

    supplier_id: str
    name: str
    created_at: datetime
    description: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    """A single SALE or PAYMENT event recorded against a client."""

    transaction_id: str
    transaction_type: TransactionType
    amount: Decimal
    date: datetime
    note: Optional[str] = None


@dataclass(frozen=True)
class Client:
    """Debtor attached to exactly one supplier.

    ``transactions`` is kept most-recent-first, which is the order the
    presentation layer lists them in. Aggregations never rely on it.
    """

    client_id: str
    name: str
    supplier_id: str
    transactions: Tuple[Transaction, ...] = ()

    def with_transaction(self, transaction: Transaction) -> "Client":
        return replace(self, transactions=(transaction, *self.transactions))


@dataclass(frozen=True)
class EntityStore:
    """Immutable snapshot of every supplier and client known to the ledger."""

    suppliers: Tuple[Supplier, ...] = field(default_factory=tuple)
    clients: Tuple[Client, ...] = field(default_factory=tuple)

    def find_supplier(self, supplier_id: str) -> Optional[Supplier]:
        for supplier in self.suppliers:
            if supplier.supplier_id == supplier_id:
                return supplier
        return None

    def find_client(self, client_id: str) -> Optional[Client]:
        for client in self.clients:
            if client.client_id == client_id:
                return client
        return None

    def clients_of(self, supplier_id: str) -> Tuple[Client, ...]:
        return tuple(client for client in self.clients if client.supplier_id == supplier_id)

    def with_suppliers(self, suppliers: Iterable[Supplier]) -> "EntityStore":
        return replace(self, suppliers=tuple(suppliers))

    def with_clients(self, clients: Iterable[Client]) -> "EntityStore":
        return replace(self, clients=tuple(clients))


__all__ = ["Supplier", "Transaction", "Client", "EntityStore"]
