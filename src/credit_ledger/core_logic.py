"""Business logic layer for the credit ledger.

This module owns the runtime context and every mutation entry point. Commands
are validated here before they reach the entity store; once accepted, the
context receives a new immutable :class:`~credit_ledger.entities.EntityStore`
snapshot and the in-memory workbook is synchronised through the Data Access
Layer (DAL). Report queries delegate to the pure functions of
:mod:`credit_ledger.ledger` and are cached per context until the next
mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple
from uuid import uuid4

from openpyxl.workbook import Workbook

from . import data_manager, formatting, ledger, log
from .constants import EXPECTED_SCHEMA_VERSION, SheetName, TransactionType
from .entities import Client, EntityStore, Supplier, Transaction


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation):
    """Raised when command input is malformed (blank name, bad amount, ...)."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced supplier or client is unknown."""


class IntegrityViolation(BusinessRuleViolation):
    """Raised when a mutation would leave clients without their supplier."""


@dataclass
class RuntimeContext:
    """Container for configuration, workbook and the current store snapshot.

    ``store`` and ``currency`` are replaced wholesale by mutations, never
    edited in place.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: EntityStore = field(default_factory=EntityStore)
    currency: formatting.CurrencyConfig = field(default_factory=formatting.CurrencyConfig)
    _cache: Dict[str, Dict[Hashable, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class CreateSupplierCommand:
    """User intent for registering a supplier."""

    name: str
    description: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class UpdateSupplierCommand:
    """User intent for renaming or re-describing a supplier.

    ``None`` leaves the corresponding field untouched; an empty description
    clears it.
    """

    supplier_id: str
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class CreateClientCommand:
    """User intent for registering a client under a supplier."""

    name: str
    supplier_id: str


@dataclass(frozen=True)
class UpdateClientCommand:
    """User intent for renaming a client or moving it to another supplier."""

    client_id: str
    name: Optional[str] = None
    supplier_id: Optional[str] = None


@dataclass(frozen=True)
class TransactionCommand:
    """User intent for appending a SALE or PAYMENT to a client.

    ``amount`` is the raw user input; it is parsed and validated by
    :func:`parse_amount` before anything is recorded.
    """

    client_id: str
    transaction_type: TransactionType
    amount: object
    note: Optional[str] = None
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[Hashable, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are plain dictionaries that store derived report results so that
    repeated renders of the same snapshot do not recompute them.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after replacing the store snapshot."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _cached_report(context: RuntimeContext, key: Hashable, compute: Callable[[], Any]) -> Any:
    bucket = _get_cache_bucket(context, "reports")
    if key not in bucket:
        bucket[key] = compute()
        log.debug("Computed report %s", key)
    return bucket[key]


def load_store(
    workbook: Workbook,
    *,
    default_currency: str = formatting.CurrencyConfig().code,
) -> Tuple[EntityStore, formatting.CurrencyConfig]:
    """Load every persisted collection, discarding the ones that are corrupted.

    Suppliers, clients (with their transactions) and the currency record are
    checked independently. A collection that fails its shape check is replaced
    by an empty one, its sheets are reset in the in-memory workbook, and a
    warning is logged; loading itself never fails because of bad data.

    Args:
        workbook (Workbook): Workbook opened by the DAL.
        default_currency (str): Currency code used when no valid currency
            record is stored.

    Returns:
        tuple[EntityStore, CurrencyConfig]: Store snapshot and active currency
            configuration.
    """

    try:
        suppliers = data_manager.load_suppliers(workbook)
    except data_manager.CorruptedStateError as exc:
        log.warning("Discarding corrupted supplier collection: %s", exc)
        data_manager.reset_sheet(workbook, SheetName.SUPPLIERS.value)
        suppliers = ()

    try:
        clients = data_manager.load_clients(workbook)
    except data_manager.CorruptedStateError as exc:
        log.warning("Discarding corrupted client collection: %s", exc)
        data_manager.reset_sheet(workbook, SheetName.CLIENTS.value)
        data_manager.reset_sheet(workbook, SheetName.TRANSACTIONS.value)
        clients = ()

    try:
        currency = data_manager.load_currency(workbook)
    except data_manager.CorruptedStateError as exc:
        log.warning("Discarding corrupted currency configuration: %s", exc)
        data_manager.reset_sheet(workbook, SheetName.CURRENCY.value)
        currency = None

    if currency is None:
        currency = formatting.config_for(default_currency)

    log.info("Loaded %d suppliers and %d clients", len(suppliers), len(clients))
    return EntityStore(suppliers=suppliers, clients=clients), currency


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings, the workbook and the entity store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

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
    store, currency = load_store(workbook, default_currency=settings.default_currency)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, store=store, currency=currency)


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

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory workbook to the configured data file.

    Persistence is a separate step from the mutation itself: a failure here
    leaves the in-memory snapshot ahead of the file on disk.
    """
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly loaded store and an empty
            cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store, currency = load_store(workbook, default_currency=context.settings.default_currency)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, store=store, currency=currency)


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier from a UTC timestamp.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{suffix}``
            where ``suffix`` is six random hex digits, so ids minted within the
            same microsecond stay distinct.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid4().hex[:6]}"


def require_name(value: Optional[str], *, label: str) -> str:
    """Return ``value`` trimmed, rejecting blank names.

    Raises:
        ValidationError: If ``value`` is ``None`` or only whitespace.
    """
    name = (value or "").strip()
    if not name:
        log.warning("Rejected blank %s name", label)
        raise ValidationError(f"{label.capitalize()} name must not be empty")
    return name


def parse_amount(raw: object) -> Decimal:
    """Parse user input into a strictly positive, finite amount.

    Floats are converted through ``str`` so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValidationError: If ``raw`` is not numeric, not finite, or not greater
            than zero.
    """
    if isinstance(raw, bool) or raw is None:
        log.warning("Rejected non-numeric amount %r", raw)
        raise ValidationError(f"Amount must be a number: {raw!r}")
    try:
        amount = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        log.warning("Rejected non-numeric amount %r", raw)
        raise ValidationError(f"Amount must be a number: {raw!r}") from exc
    if not amount.is_finite() or amount <= 0:
        log.warning("Rejected non-positive amount %r", raw)
        raise ValidationError(f"Amount must be greater than zero: {raw!r}")
    return amount


def _optional_note(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = value.strip()
    return text or None


def _commit(context: RuntimeContext, store: EntityStore, *, suppliers: bool = False, clients: bool = False) -> None:
    """Swap in ``store`` and mirror the changed collections into the workbook."""

    if suppliers:
        data_manager.write_suppliers(context.workbook, store.suppliers)
    if clients:
        data_manager.write_clients(context.workbook, store.clients)
    context.store = store
    _invalidate_cache(context, "reports")


def list_suppliers(context: RuntimeContext) -> List[Supplier]:
    """Return every supplier in creation order."""

    return list(context.store.suppliers)


def list_clients(context: RuntimeContext) -> List[Client]:
    """Return every client in creation order."""

    return list(context.store.clients)


def get_supplier(context: RuntimeContext, supplier_id: str) -> Supplier:
    """Retrieve a supplier by identifier.

    Raises:
        MissingReferenceError: When no supplier matches ``supplier_id``.
    """

    supplier = context.store.find_supplier(supplier_id)
    if supplier is None:
        log.warning("Supplier lookup failed for id '%s'", supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {supplier_id}")
    return supplier


def get_client(context: RuntimeContext, client_id: str) -> Client:
    """Retrieve a client by identifier.

    Raises:
        MissingReferenceError: When no client matches ``client_id``.
    """

    client = context.store.find_client(client_id)
    if client is None:
        log.warning("Client lookup failed for id '%s'", client_id)
        raise MissingReferenceError(f"Unknown client id: {client_id}")
    return client


def create_supplier(context: RuntimeContext, command: CreateSupplierCommand) -> Supplier:
    """Validate and register a new supplier.

    Raises:
        ValidationError: If the name is blank.
    """
    name = require_name(command.name, label="supplier")
    timestamp = _resolve_timestamp(command.timestamp)
    supplier = Supplier(
        supplier_id=generate_id("S", when=timestamp),
        name=name,
        description=_optional_note(command.description),
        created_at=timestamp,
    )
    store = context.store.with_suppliers((*context.store.suppliers, supplier))
    _commit(context, store, suppliers=True)
    log.info("Created supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def update_supplier(context: RuntimeContext, command: UpdateSupplierCommand) -> Supplier:
    """Rename or re-describe an existing supplier.

    Raises:
        MissingReferenceError: If the supplier does not exist.
        ValidationError: If a new name is supplied but blank.
    """
    current = get_supplier(context, command.supplier_id)
    updated = current
    if command.name is not None:
        updated = replace(updated, name=require_name(command.name, label="supplier"))
    if command.description is not None:
        updated = replace(updated, description=_optional_note(command.description))

    store = context.store.with_suppliers(
        updated if supplier.supplier_id == current.supplier_id else supplier
        for supplier in context.store.suppliers
    )
    _commit(context, store, suppliers=True)
    log.info("Updated supplier '%s'", updated.supplier_id)
    return updated


def delete_supplier(context: RuntimeContext, supplier_id: str) -> Supplier:
    """Remove a supplier that no client references.

    Raises:
        MissingReferenceError: If the supplier does not exist.
        IntegrityViolation: If at least one client still references it. Both
            collections are left untouched.
    """
    supplier = get_supplier(context, supplier_id)
    dependants = len(context.store.clients_of(supplier_id))
    if dependants:
        log.warning(
            "Refused to delete supplier '%s' referenced by %d client(s)",
            supplier_id,
            dependants,
        )
        raise IntegrityViolation(
            f"Supplier '{supplier.name}' still has {dependants} associated client(s)"
        )

    store = context.store.with_suppliers(
        item for item in context.store.suppliers if item.supplier_id != supplier_id
    )
    _commit(context, store, suppliers=True)
    log.info("Deleted supplier '%s'", supplier_id)
    return supplier


def _require_existing_supplier(context: RuntimeContext, supplier_id: Optional[str]) -> str:
    if not context.store.suppliers:
        log.warning("Rejected client mutation because no suppliers exist")
        raise ValidationError("Register a supplier before adding clients")
    if not supplier_id or context.store.find_supplier(supplier_id) is None:
        log.warning("Rejected client mutation for unknown supplier '%s'", supplier_id)
        raise ValidationError(f"Client must reference an existing supplier: {supplier_id!r}")
    return supplier_id


def create_client(context: RuntimeContext, command: CreateClientCommand) -> Client:
    """Validate and register a new client with an empty ledger.

    Raises:
        ValidationError: If the name is blank, no supplier exists, or the
            supplier reference is unknown.
    """
    name = require_name(command.name, label="client")
    supplier_id = _require_existing_supplier(context, command.supplier_id)
    client = Client(client_id=generate_id("C"), name=name, supplier_id=supplier_id)
    store = context.store.with_clients((*context.store.clients, client))
    _commit(context, store, clients=True)
    log.info("Created client '%s' (%s) under supplier '%s'", client.client_id, client.name, supplier_id)
    return client


def update_client(context: RuntimeContext, command: UpdateClientCommand) -> Client:
    """Rename a client or attach it to another supplier.

    Raises:
        MissingReferenceError: If the client does not exist.
        ValidationError: If the new name is blank or the new supplier unknown.
    """
    current = get_client(context, command.client_id)
    updated = current
    if command.name is not None:
        updated = replace(updated, name=require_name(command.name, label="client"))
    if command.supplier_id is not None and command.supplier_id != current.supplier_id:
        updated = replace(updated, supplier_id=_require_existing_supplier(context, command.supplier_id))

    store = context.store.with_clients(
        updated if client.client_id == current.client_id else client
        for client in context.store.clients
    )
    _commit(context, store, clients=True)
    log.info("Updated client '%s'", updated.client_id)
    return updated


def delete_client(context: RuntimeContext, client_id: str) -> Client:
    """Remove a client together with the transactions it owns.

    Raises:
        MissingReferenceError: If the client does not exist.
    """
    client = get_client(context, client_id)
    store = context.store.with_clients(
        item for item in context.store.clients if item.client_id != client_id
    )
    _commit(context, store, clients=True)
    log.info(
        "Deleted client '%s' and %d transaction(s)",
        client_id,
        len(client.transactions),
    )
    return client


def record_transaction(context: RuntimeContext, command: TransactionCommand) -> Transaction:
    """Validate and append a SALE or PAYMENT to a client's ledger.

    The amount is validated before anything else changes, so a rejected
    command leaves the store, the workbook and the cache untouched.

    Returns:
        Transaction: Newly appended transaction.

    Raises:
        ValidationError: If the type is unsupported or the amount is not a
            positive number.
        MissingReferenceError: If the client does not exist.
    """
    try:
        kind = TransactionType(command.transaction_type)
    except ValueError as exc:
        log.error("Unsupported transaction type provided: %s", command.transaction_type)
        raise ValidationError(f"Unsupported transaction type: {command.transaction_type}") from exc
    amount = parse_amount(command.amount)
    client = get_client(context, command.client_id)

    timestamp = _resolve_timestamp(command.timestamp)
    transaction = Transaction(
        transaction_id=generate_id("T", when=timestamp),
        transaction_type=kind,
        amount=amount,
        date=timestamp,
        note=_optional_note(command.note),
    )
    updated = client.with_transaction(transaction)
    store = context.store.with_clients(
        updated if item.client_id == client.client_id else item
        for item in context.store.clients
    )
    _commit(context, store, clients=True)
    log.info(
        "Recorded %s transaction '%s' for client '%s' (amount=%s)",
        kind.value,
        transaction.transaction_id,
        client.client_id,
        amount,
    )
    return transaction


def update_currency(
    context: RuntimeContext,
    code: str,
    *,
    show_decimals: Optional[bool] = None,
) -> formatting.CurrencyConfig:
    """Switch the display currency and decimal flag.

    Raises:
        ValidationError: If ``code`` is not a supported currency.
    """
    try:
        spec = formatting.get_currency(code)
    except KeyError as exc:
        log.warning("Rejected unsupported currency '%s'", code)
        raise ValidationError(str(exc.args[0])) from exc

    decimals = context.currency.show_decimals if show_decimals is None else show_decimals
    config = formatting.CurrencyConfig(code=spec.code, locale=spec.locale, show_decimals=decimals)
    data_manager.write_currency(context.workbook, config)
    context.currency = config
    log.info("Currency set to %s (%s, decimals=%s)", config.code, config.locale, config.show_decimals)
    return config


def client_balance(context: RuntimeContext, client_id: str) -> ledger.Balance:
    """Return the balance of one client.

    Raises:
        MissingReferenceError: If the client does not exist.
    """
    return ledger.compute_client_balance(get_client(context, client_id))


def portfolio_totals(context: RuntimeContext) -> ledger.Balance:
    """Return global sold/paid/pending across every client."""

    store = context.store
    return _cached_report(context, ("totals",), lambda: ledger.compute_balance(store.clients))


def supplier_summaries(context: RuntimeContext) -> List[ledger.SupplierSummary]:
    """Return per-supplier summaries ordered by descending pending balance."""

    store = context.store
    return _cached_report(
        context,
        ("suppliers",),
        lambda: ledger.compute_supplier_summaries(store.suppliers, store.clients),
    )


def grouped_clients(context: RuntimeContext, name_filter: Optional[str] = None) -> List[ledger.ClientGroup]:
    """Return clients grouped by supplier, optionally filtered by name."""

    store = context.store
    needle = (name_filter or "").casefold()
    return _cached_report(
        context,
        ("groups", needle),
        lambda: ledger.group_clients_by_supplier(store.clients, store.suppliers, needle),
    )


def monthly_series(context: RuntimeContext, supplier_id: Optional[str] = None) -> List[ledger.MonthlyBucket]:
    """Return the recent monthly sold/paid buckets, optionally per supplier."""

    store = context.store
    key = supplier_id or ledger.ALL_SUPPLIERS
    return _cached_report(
        context,
        ("monthly", key),
        lambda: ledger.compute_monthly_series(store.clients, key),
    )


def format_amount(context: RuntimeContext, value: Decimal) -> str:
    """Render ``value`` with the context's currency configuration."""

    return formatting.format_amount(value, context.currency)


def month_label(context: RuntimeContext, bucket: ledger.MonthlyBucket) -> str:
    """Render a bucket's month in the context's locale."""

    return formatting.format_month_label(bucket.year, bucket.month, context.currency.locale)
