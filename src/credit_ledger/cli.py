"""Command-line entry points for the credit ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the reports it returns. Keeping the CLI thin ensures the
same parser configuration can be reused by tests, scripts, or any alternative
front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, formatting, log
from .constants import TransactionType


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Track credit extended to clients on behalf of suppliers.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as new clients and payments."""
    specs = {
        "add-supplier": register_add_supplier_command(subparsers),
        "edit-supplier": register_edit_supplier_command(subparsers),
        "remove-supplier": register_remove_supplier_command(subparsers),
        "add-client": register_add_client_command(subparsers),
        "edit-client": register_edit_client_command(subparsers),
        "remove-client": register_remove_client_command(subparsers),
        "sale": register_transaction_command(subparsers, TransactionType.SALE),
        "payment": register_transaction_command(subparsers, TransactionType.PAYMENT),
        "set-currency": register_set_currency_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "dashboard": register_dashboard_command(subparsers),
        "clients": register_clients_command(subparsers),
        "history": register_history_command(subparsers),
        "suppliers": register_suppliers_command(subparsers),
        "currencies": register_currencies_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Register a new supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier, mutates=True)


def register_edit_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-supplier``."""
    name = "edit-supplier"
    help_text = "Rename or re-describe a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_supplier, mutates=True)


def register_remove_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-supplier``."""
    name = "remove-supplier"
    help_text = "Delete a supplier that has no clients."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_supplier, mutates=True)


def register_add_client_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-client``."""
    name = "add-client"
    help_text = "Register a new client under a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--supplier-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_client, mutates=True)


def register_edit_client_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-client``."""
    name = "edit-client"
    help_text = "Rename a client or move it to another supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--supplier-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_client, mutates=True)


def register_remove_client_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-client``."""
    name = "remove-client"
    help_text = "Delete a client and its transactions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_client, mutates=True)


def register_transaction_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    transaction_type: TransactionType,
) -> CommandSpec:
    """Register the parser and executor for ``sale`` or ``payment``."""
    name = transaction_type.value.lower()
    if transaction_type is TransactionType.SALE:
        help_text = "Record credit extended to a client."
    else:
        help_text = "Record a payment received from a client."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--note", default=None)
        parser.set_defaults(command=name, transaction_type=transaction_type.value)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transaction, mutates=True)


def register_set_currency_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-currency``."""
    name = "set-currency"
    help_text = "Choose the display currency."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--code", required=True)
        parser.add_argument(
            "--decimals",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Show or hide cents in amounts.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_currency, mutates=True)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display totals, supplier ranking and the monthly series."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier", default=None, help="Restrict the monthly series to one supplier id.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_clients_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``clients``."""
    name = "clients"
    help_text = "Display clients grouped by supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="", help="Case-insensitive name filter.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_clients)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "Display one client's balance and transactions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--client-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_history)


def register_suppliers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``suppliers``."""
    name = "suppliers"
    help_text = "List registered suppliers."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_suppliers)


def register_currencies_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``currencies``."""
    name = "currencies"
    help_text = "List supported currencies."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_currencies)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else None
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
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


def translate_add_supplier(args: argparse.Namespace) -> core_logic.CreateSupplierCommand:
    """Translate CLI args into a create-supplier command object."""
    return core_logic.CreateSupplierCommand(name=args.name, description=args.description)


def translate_edit_supplier(args: argparse.Namespace) -> core_logic.UpdateSupplierCommand:
    """Translate CLI args into an update-supplier command object."""
    return core_logic.UpdateSupplierCommand(
        supplier_id=args.supplier_id,
        name=args.name,
        description=args.description,
    )


def translate_add_client(args: argparse.Namespace) -> core_logic.CreateClientCommand:
    """Translate CLI args into a create-client command object."""
    return core_logic.CreateClientCommand(name=args.name, supplier_id=args.supplier_id)


def translate_edit_client(args: argparse.Namespace) -> core_logic.UpdateClientCommand:
    """Translate CLI args into an update-client command object."""
    return core_logic.UpdateClientCommand(
        client_id=args.client_id,
        name=args.name,
        supplier_id=args.supplier_id,
    )


def translate_transaction(args: argparse.Namespace) -> core_logic.TransactionCommand:
    """Translate CLI args into a transaction command object.

    The amount is passed through as text; the business layer parses it.
    """
    return core_logic.TransactionCommand(
        client_id=args.client_id,
        transaction_type=TransactionType(args.transaction_type),
        amount=args.amount,
        note=args.note,
    )


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the create-supplier workflow in the BLL."""
    supplier = core_logic.create_supplier(context, translate_add_supplier(args))
    print(f"Supplier created: {supplier.supplier_id} ({supplier.name})")
    return 0


def run_edit_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-supplier workflow in the BLL."""
    supplier = core_logic.update_supplier(context, translate_edit_supplier(args))
    print(f"Supplier updated: {supplier.supplier_id} ({supplier.name})")
    return 0


def run_remove_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-supplier workflow in the BLL."""
    supplier = core_logic.delete_supplier(context, args.supplier_id)
    print(f"Supplier deleted: {supplier.supplier_id} ({supplier.name})")
    return 0


def run_add_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the create-client workflow in the BLL."""
    client = core_logic.create_client(context, translate_add_client(args))
    print(f"Client created: {client.client_id} ({client.name})")
    return 0


def run_edit_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-client workflow in the BLL."""
    client = core_logic.update_client(context, translate_edit_client(args))
    print(f"Client updated: {client.client_id} ({client.name})")
    return 0


def run_remove_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-client workflow in the BLL."""
    client = core_logic.delete_client(context, args.client_id)
    print(f"Client deleted: {client.client_id} ({client.name})")
    return 0


def run_transaction(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale/payment workflow in the BLL."""
    transaction = core_logic.record_transaction(context, translate_transaction(args))
    balance = core_logic.client_balance(context, args.client_id)
    print(
        f"{transaction.transaction_type.value} recorded: "
        f"{core_logic.format_amount(context, transaction.amount)} "
        f"(pending {core_logic.format_amount(context, balance.pending)})"
    )
    return 0


def run_set_currency(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the currency change in the BLL."""
    config = core_logic.update_currency(context, args.code, show_decimals=args.decimals)
    print(f"Currency set to {config.code}: {core_logic.format_amount(context, formatting.SAMPLE_AMOUNT)}")
    return 0


def render_dashboard(context: core_logic.RuntimeContext, supplier_id: Optional[str] = None) -> List[str]:
    """Build the dashboard report lines."""
    def money(value):
        return core_logic.format_amount(context, value)

    totals = core_logic.portfolio_totals(context)
    lines = [
        context.settings.business_name,
        f"  Total credit: {money(totals.sold)}",
        f"  Total paid:   {money(totals.paid)}",
        f"  Pending:      {money(totals.pending)}",
        "",
        "Suppliers by pending balance:",
    ]
    summaries = core_logic.supplier_summaries(context)
    if not summaries:
        lines.append("  (no suppliers)")
    for summary in summaries:
        lines.append(
            f"  {summary.supplier.name}: pending {money(summary.pending)}, "
            f"paid {money(summary.paid)}, sold {money(summary.sold)}"
        )

    lines.extend(["", "Monthly activity:"])
    series = core_logic.monthly_series(context, supplier_id)
    if not series:
        lines.append("  (no transactions)")
    for bucket in series:
        lines.append(
            f"  {core_logic.month_label(context, bucket)} {bucket.year}: "
            f"sold {money(bucket.sold)}, paid {money(bucket.paid)}"
        )
    return lines


def render_client_groups(context: core_logic.RuntimeContext, search: str = "") -> List[str]:
    """Build the grouped client listing lines."""
    groups = core_logic.grouped_clients(context, search)
    if not groups:
        return ["(no clients)"]
    lines = []
    for group in groups:
        lines.append(f"{group.label} [{group.supplier_id}]: total debt {core_logic.format_amount(context, group.total_pending)}")
        for client in group.clients:
            balance = core_logic.client_balance(context, client.client_id)
            status = "owes" if balance.pending > 0 else "balance"
            lines.append(
                f"  {client.client_id} {client.name}: {status} "
                f"{core_logic.format_amount(context, abs(balance.pending))} "
                f"(credit {core_logic.format_amount(context, balance.sold)})"
            )
    return lines


def render_history(context: core_logic.RuntimeContext, client_id: str) -> List[str]:
    """Build the transaction history lines for one client."""
    client = core_logic.get_client(context, client_id)
    balance = core_logic.client_balance(context, client_id)
    lines = [
        f"{client.name} [{client.client_id}]",
        f"  Sold {core_logic.format_amount(context, balance.sold)}, "
        f"paid {core_logic.format_amount(context, balance.paid)}, "
        f"pending {core_logic.format_amount(context, balance.pending)}",
    ]
    for transaction in client.transactions:
        sign = "+" if transaction.transaction_type is TransactionType.SALE else "-"
        note = f"  {transaction.note}" if transaction.note else ""
        lines.append(
            f"  {transaction.date:%Y-%m-%d} {transaction.transaction_type.value:<7} "
            f"{sign}{core_logic.format_amount(context, transaction.amount)}{note}"
        )
    return lines


def _emit(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dashboard report."""
    _emit(render_dashboard(context, getattr(args, "supplier", None)))
    return 0


def run_clients(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the grouped client report."""
    _emit(render_client_groups(context, getattr(args, "search", "")))
    return 0


def run_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the client history report."""
    _emit(render_history(context, args.client_id))
    return 0


def run_suppliers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supplier listing."""
    suppliers = core_logic.list_suppliers(context)
    if not suppliers:
        _emit(["(no suppliers)"])
    for supplier in suppliers:
        description = f" - {supplier.description}" if supplier.description else ""
        print(f"{supplier.supplier_id} {supplier.name}{description} (since {supplier.created_at:%Y-%m-%d})")
    return 0


def run_currencies(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the currency listing."""
    for spec in formatting.SUPPORTED_CURRENCIES.values():
        marker = "*" if spec.code == context.currency.code else " "
        print(f"{marker} {spec.code} {spec.name}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
