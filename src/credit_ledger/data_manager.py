"""Data access layer for the credit ledger.

This module provides low-level helpers that read from and write to the master
workbook. Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Collection operations: loading the supplier, client and currency
   collections into entity objects and rewriting a sheet from a snapshot.

Each collection is shape-checked as a whole. Loaders raise
:class:`CorruptedStateError` instead of returning partial data so that the
caller can decide to discard the affected collection.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_CURRENCY_CODE, SheetName, TransactionType
from .entities import Client, Supplier, Transaction
from .formatting import CurrencyConfig, get_currency


CONFIG_FILE_NAME = "config.ini"
SUPPLIERS_SHEET = SheetName.SUPPLIERS.value
CLIENTS_SHEET = SheetName.CLIENTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
CURRENCY_SHEET = SheetName.CURRENCY.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SUPPLIERS_SHEET: ["SupplierID", "SupplierName", "Description", "CreatedAt"],
    CLIENTS_SHEET: ["ClientID", "ClientName", "SupplierID"],
    TRANSACTIONS_SHEET: ["TransactionID", "ClientID", "TransactionType", "Amount", "Date", "Note"],
    CURRENCY_SHEET: ["Code", "Locale", "ShowDecimals"],
}


class CorruptedStateError(ValueError):
    """Raised when a persisted collection fails its shape check."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_currency: str = DEFAULT_CURRENCY_CODE


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
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback. The
    ``[Defaults] Currency`` entry is optional; an unsupported code falls back
    to ``DEFAULT_CURRENCY_CODE`` with a warning.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    default_currency = parser.get("Defaults", "Currency", fallback=DEFAULT_CURRENCY_CODE).strip().upper()
    try:
        get_currency(default_currency)
    except KeyError:
        log.warning(
            "Unsupported default currency '%s' in configuration; using %s",
            default_currency,
            DEFAULT_CURRENCY_CODE,
        )
        default_currency = DEFAULT_CURRENCY_CODE

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_currency=default_currency,
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
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _require_sheet(workbook: Workbook, sheet_name: str):
    if sheet_name not in workbook.sheetnames:
        raise CorruptedStateError(f"Missing sheet: {sheet_name}")
    sheet = workbook[sheet_name]
    header = [cell.value for cell in sheet[1]]
    expected = list(SHEET_COLUMNS[sheet_name])
    if header[: len(expected)] != expected:
        raise CorruptedStateError(f"Unexpected header on sheet '{sheet_name}': {header}")
    return sheet


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[object, ...]]:
    """Yield the data rows of ``sheet_name`` trimmed to the known columns.

    The header row and fully empty rows are skipped.
    """

    sheet = _require_sheet(workbook, sheet_name)
    width = len(SHEET_COLUMNS[sheet_name])
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        if any(cell is not None for cell in raw):
            yield tuple(raw) + (None,) * (width - len(raw))


def _clear_rows(sheet) -> None:
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _required_text(value: object, column: str) -> str:
    text = _optional_text(value)
    if text is None or not text.strip():
        raise CorruptedStateError(f"Column '{column}' must not be blank")
    return text


def _parse_timestamp(value: object, column: str) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(_required_text(value, column))
        except ValueError as exc:
            raise CorruptedStateError(f"Invalid timestamp in column '{column}': {value!r}") from exc
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def _parse_amount(value: object) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise CorruptedStateError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise CorruptedStateError(f"Stored amount must be positive: {value!r}")
    return amount


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"true", "yes", "1"}:
        return True
    if text in {"false", "no", "0"}:
        return False
    raise CorruptedStateError(f"Invalid boolean: {value!r}")


def serialize_supplier(record: Supplier) -> list[object]:
    """Convert a supplier into the ``Suppliers`` column ordering."""

    return [record.supplier_id, record.name, record.description, record.created_at.isoformat()]


def serialize_client(record: Client) -> list[object]:
    """Convert a client into the ``Clients`` column ordering."""

    return [record.client_id, record.name, record.supplier_id]


def serialize_transaction(client_id: str, record: Transaction) -> list[object]:
    """Convert a transaction into the ``Transactions`` column ordering.

    The amount is written as text: an Excel number cell is a binary float and
    would round amounts with more than about 15 significant digits.
    """

    return [
        record.transaction_id,
        client_id,
        record.transaction_type.value,
        str(record.amount),
        record.date.isoformat(),
        record.note,
    ]


def serialize_currency(config: CurrencyConfig) -> list[object]:
    return [config.code, config.locale, config.show_decimals]


def deserialize_supplier(raw_row: Sequence[object]) -> Supplier:
    """Convert a raw ``Suppliers`` row into a :class:`Supplier`.

    Raises:
        CorruptedStateError: If a required cell is blank or the creation
            timestamp cannot be parsed.
    """

    supplier_id, name, description, created_at = raw_row[:4]
    return Supplier(
        supplier_id=_required_text(supplier_id, "SupplierID"),
        name=_required_text(name, "SupplierName"),
        description=_optional_text(description),
        created_at=_parse_timestamp(created_at, "CreatedAt"),
    )


def deserialize_client(raw_row: Sequence[object]) -> Client:
    """Convert a raw ``Clients`` row into a :class:`Client` without transactions."""

    client_id, name, supplier_id = raw_row[:3]
    return Client(
        client_id=_required_text(client_id, "ClientID"),
        name=_required_text(name, "ClientName"),
        supplier_id=_required_text(supplier_id, "SupplierID"),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> Tuple[str, Transaction]:
    """Convert a raw ``Transactions`` row into ``(client_id, Transaction)``.

    Raises:
        CorruptedStateError: If the type is unknown, the amount is not a
            positive number, or the date cannot be parsed.
    """

    transaction_id, client_id, transaction_type, amount, date, note = raw_row[:6]
    try:
        kind = TransactionType(str(transaction_type))
    except ValueError as exc:
        raise CorruptedStateError(f"Unknown transaction type: {transaction_type!r}") from exc

    transaction = Transaction(
        transaction_id=_required_text(transaction_id, "TransactionID"),
        transaction_type=kind,
        amount=_parse_amount(amount),
        date=_parse_timestamp(date, "Date"),
        note=_optional_text(note),
    )
    return _required_text(client_id, "ClientID"), transaction


def _reject_duplicates(identifiers: Iterable[str], label: str) -> None:
    seen = set()
    for identifier in identifiers:
        if identifier in seen:
            raise CorruptedStateError(f"Duplicate {label} id: {identifier}")
        seen.add(identifier)


def load_suppliers(workbook: Workbook) -> Tuple[Supplier, ...]:
    """Load the supplier collection in sheet order.

    Raises:
        CorruptedStateError: If the sheet or any of its rows is invalid.
    """

    suppliers = tuple(deserialize_supplier(raw) for raw in _iter_rows(workbook, SUPPLIERS_SHEET))
    _reject_duplicates((supplier.supplier_id for supplier in suppliers), "supplier")
    return suppliers


def load_clients(workbook: Workbook) -> Tuple[Client, ...]:
    """Load clients together with the transactions they own.

    Transactions are attached to their client in sheet order, which is the
    most-recent-first order the store keeps.

    Raises:
        CorruptedStateError: If either sheet is invalid or a transaction points
            at a client that does not exist.
    """

    clients = [deserialize_client(raw) for raw in _iter_rows(workbook, CLIENTS_SHEET)]
    _reject_duplicates((client.client_id for client in clients), "client")

    owned: Dict[str, List[Transaction]] = {client.client_id: [] for client in clients}
    transaction_ids = []
    for raw in _iter_rows(workbook, TRANSACTIONS_SHEET):
        client_id, transaction = deserialize_transaction(raw)
        if client_id not in owned:
            raise CorruptedStateError(
                f"Transaction '{transaction.transaction_id}' references unknown client '{client_id}'"
            )
        owned[client_id].append(transaction)
        transaction_ids.append(transaction.transaction_id)
    _reject_duplicates(transaction_ids, "transaction")

    return tuple(
        Client(
            client_id=client.client_id,
            name=client.name,
            supplier_id=client.supplier_id,
            transactions=tuple(owned[client.client_id]),
        )
        for client in clients
    )


def load_currency(workbook: Workbook) -> Optional[CurrencyConfig]:
    """Load the stored currency configuration.

    Returns:
        CurrencyConfig | None: The first stored record, or ``None`` when the
            sheet holds no record yet.

    Raises:
        CorruptedStateError: If the sheet or its record is invalid.
    """

    for code, locale, show_decimals in _iter_rows(workbook, CURRENCY_SHEET):
        code_text = _required_text(code, "Code").upper()
        try:
            spec = get_currency(code_text)
        except KeyError as exc:
            raise CorruptedStateError(str(exc)) from exc
        return CurrencyConfig(
            code=spec.code,
            locale=_optional_text(locale) or spec.locale,
            show_decimals=_parse_bool(show_decimals) if show_decimals is not None else True,
        )
    return None


def write_suppliers(workbook: Workbook, suppliers: Iterable[Supplier]) -> None:
    """Replace the ``Suppliers`` sheet contents with ``suppliers``."""

    sheet = _require_sheet(workbook, SUPPLIERS_SHEET)
    _clear_rows(sheet)
    for supplier in suppliers:
        sheet.append(serialize_supplier(supplier))


def write_clients(workbook: Workbook, clients: Iterable[Client]) -> None:
    """Replace the ``Clients`` and ``Transactions`` sheets with ``clients``."""

    client_sheet = _require_sheet(workbook, CLIENTS_SHEET)
    transaction_sheet = _require_sheet(workbook, TRANSACTIONS_SHEET)
    _clear_rows(client_sheet)
    _clear_rows(transaction_sheet)
    for client in clients:
        client_sheet.append(serialize_client(client))
        for transaction in client.transactions:
            transaction_sheet.append(serialize_transaction(client.client_id, transaction))


def write_currency(workbook: Workbook, config: CurrencyConfig) -> None:
    """Replace the stored currency configuration with ``config``."""

    sheet = _require_sheet(workbook, CURRENCY_SHEET)
    _clear_rows(sheet)
    sheet.append(serialize_currency(config))


def reset_sheet(workbook: Workbook, sheet_name: str) -> None:
    """Recreate ``sheet_name`` with only its header row.

    Used after a corrupted collection has been discarded so that the next save
    writes a well-formed sheet.
    """

    if sheet_name in workbook.sheetnames:
        workbook.remove(workbook[sheet_name])
    sheet = workbook.create_sheet(title=sheet_name)
    sheet.append(list(SHEET_COLUMNS[sheet_name]))
