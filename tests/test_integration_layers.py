"""Integration tests describing the end-to-end credit ledger workflows.

These scenarios exercise the data access layer, the business logic layer and
the CLI together against a real workbook on disk.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import openpyxl
import pytest

from credit_ledger import cli, constants, core_logic


def _ids(context: core_logic.RuntimeContext):
    """Return supplier and client ids keyed by name for CLI follow-ups."""

    suppliers = {supplier.name: supplier.supplier_id for supplier in core_logic.list_suppliers(context)}
    clients = {client.name: client.client_id for client in core_logic.list_clients(context)}
    return suppliers, clients


def test_credit_and_payment_lifecycle_flow(runtime_context):
    """Register parties, record activity, persist, and reload the reports."""

    context = runtime_context
    acme = core_logic.create_supplier(context, core_logic.CreateSupplierCommand(name="Acme"))
    juan = core_logic.create_client(
        context, core_logic.CreateClientCommand(name="Juan", supplier_id=acme.supplier_id)
    )

    # Persist and reload so writes go to disk before subsequent operations.
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    for kind, amount, month in (
        (constants.TransactionType.SALE, "500", 1),
        (constants.TransactionType.PAYMENT, "200", 2),
        (constants.TransactionType.SALE, "100", 3),
    ):
        core_logic.record_transaction(
            context,
            core_logic.TransactionCommand(
                client_id=juan.client_id,
                transaction_type=kind,
                amount=amount,
                timestamp=datetime(2025, month, 1, 12, tzinfo=UTC),
            ),
        )
    core_logic.persist_context(context)

    reloaded = core_logic.refresh_context(context)
    balance = core_logic.client_balance(reloaded, juan.client_id)
    assert (balance.sold, balance.paid, balance.pending) == (Decimal("600"), Decimal("200"), Decimal("400"))
    assert [bucket.key for bucket in core_logic.monthly_series(reloaded)] == [(2025, 1), (2025, 2), (2025, 3)]
    (summary,) = core_logic.supplier_summaries(reloaded)
    assert summary.supplier == acme
    assert summary.pending == Decimal("400")
    history = core_logic.get_client(reloaded, juan.client_id).transactions
    assert [transaction.date.month for transaction in history] == [3, 2, 1]


def test_refresh_discards_unsaved_mutations(runtime_context):
    core_logic.create_supplier(runtime_context, core_logic.CreateSupplierCommand(name="Unsaved"))

    reloaded = core_logic.refresh_context(runtime_context)

    assert core_logic.list_suppliers(reloaded) == []


def test_currency_change_survives_reload(runtime_context):
    core_logic.update_currency(runtime_context, "USD", show_decimals=False)
    core_logic.persist_context(runtime_context)

    reloaded = core_logic.refresh_context(runtime_context)

    assert reloaded.currency.code == "USD"
    assert core_logic.format_amount(reloaded, Decimal("1234.56")) == "$1,235"


def test_cli_supplier_client_and_sale_flow(config_factory, capsys):
    """Drive the ledger purely through ``cli.main`` and verify the file."""

    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]

    assert cli.main([*config, "add-supplier", "--name", "Acme", "--description", "Snacks"]) == 0
    suppliers, _ = _ids(core_logic.load_runtime_context(bundle.config_path))
    assert cli.main([*config, "add-client", "--name", "Juan", "--supplier-id", suppliers["Acme"]]) == 0
    _, clients = _ids(core_logic.load_runtime_context(bundle.config_path))

    assert cli.main([*config, "sale", "--client-id", clients["Juan"], "--amount", "500"]) == 0
    assert cli.main([*config, "payment", "--client-id", clients["Juan"], "--amount", "200.50"]) == 0
    capsys.readouterr()

    assert cli.main([*config, "dashboard"]) == 0
    output = capsys.readouterr().out
    assert "Test Business" in output
    assert "Acme: pending RD$299.50" in output

    assert cli.main([*config, "clients", "--search", "JU"]) == 0
    assert f"{clients['Juan']} Juan: owes RD$299.50" in capsys.readouterr().out

    workbook = openpyxl.load_workbook(bundle.workbook_path)
    rows = list(workbook["Transactions"].iter_rows(min_row=2, values_only=True))
    assert [row[2] for row in rows] == ["PAYMENT", "SALE"]
    assert all(row[1] == clients["Juan"] for row in rows)


def test_cli_rejected_commands_leave_workbook_unchanged(config_factory):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "add-supplier", "--name", "Acme"]) == 0
    suppliers, _ = _ids(core_logic.load_runtime_context(bundle.config_path))
    assert cli.main([*config, "add-client", "--name", "Juan", "--supplier-id", suppliers["Acme"]]) == 0
    _, clients = _ids(core_logic.load_runtime_context(bundle.config_path))
    before = bundle.workbook_path.read_bytes()

    assert cli.main([*config, "remove-supplier", "--supplier-id", suppliers["Acme"]]) == 2
    assert cli.main([*config, "sale", "--client-id", clients["Juan"], "--amount", "abc"]) == 2
    assert cli.main([*config, "sale", "--client-id", clients["Juan"], "--amount", "0"]) == 2
    assert cli.main([*config, "add-client", "--name", "Ana", "--supplier-id", "S-missing"]) == 2
    assert cli.main([*config, "history", "--client-id", "C-missing"]) == 2

    assert bundle.workbook_path.read_bytes() == before
    context = core_logic.load_runtime_context(bundle.config_path)
    assert [supplier.name for supplier in core_logic.list_suppliers(context)] == ["Acme"]
    assert core_logic.portfolio_totals(context).sold == Decimal("0")


def test_cli_remove_client_then_supplier_flow(config_factory):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "add-supplier", "--name", "Acme"]) == 0
    suppliers, _ = _ids(core_logic.load_runtime_context(bundle.config_path))
    assert cli.main([*config, "add-client", "--name", "Juan", "--supplier-id", suppliers["Acme"]]) == 0
    _, clients = _ids(core_logic.load_runtime_context(bundle.config_path))
    assert cli.main([*config, "sale", "--client-id", clients["Juan"], "--amount", "10"]) == 0

    assert cli.main([*config, "remove-client", "--client-id", clients["Juan"]]) == 0
    assert cli.main([*config, "remove-supplier", "--supplier-id", suppliers["Acme"]]) == 0

    context = core_logic.load_runtime_context(bundle.config_path)
    assert context.store.suppliers == ()
    assert context.store.clients == ()


def test_cli_missing_config_returns_not_found(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "dashboard"]) == 3


def test_cli_finds_config_in_parent_directory(config_factory, monkeypatch, capsys):
    """Without --config the CLI walks up from the working directory."""

    bundle = config_factory()
    nested = bundle.directory / "nested" / "deeper"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert cli.main(["add-supplier", "--name", "Acme"]) == 0
    capsys.readouterr()
    assert cli.main(["suppliers"]) == 0
    assert "Acme" in capsys.readouterr().out

    context = core_logic.load_runtime_context(bundle.config_path)
    assert [supplier.name for supplier in core_logic.list_suppliers(context)] == ["Acme"]


def test_cli_schema_mismatch_is_rejected(config_factory):
    bundle = config_factory(schema_version="0.1.0")

    assert cli.main(["--config", str(bundle.config_path), "add-supplier", "--name", "Acme"]) == 1


def test_default_currency_from_config_seeds_new_workbook(config_factory, capsys):
    bundle = config_factory(currency="EUR")

    # The workbook was created with DOP, so the stored record wins over the config default.
    context = core_logic.load_runtime_context(bundle.config_path)
    assert context.currency.code == "DOP"
    assert context.settings.default_currency == "EUR"

    assert cli.main(["--config", str(bundle.config_path), "set-currency", "--code", "EUR"]) == 0
    assert "12.345,67 €" in capsys.readouterr().out
    assert core_logic.load_runtime_context(bundle.config_path).currency.code == "EUR"


def test_corrupted_collection_is_discarded_on_load(config_factory):
    """A broken client sheet empties clients but keeps suppliers usable."""

    bundle = config_factory()
    context = core_logic.load_runtime_context(bundle.config_path)
    acme = core_logic.create_supplier(context, core_logic.CreateSupplierCommand(name="Acme"))
    juan = core_logic.create_client(
        context, core_logic.CreateClientCommand(name="Juan", supplier_id=acme.supplier_id)
    )
    core_logic.record_transaction(
        context,
        core_logic.TransactionCommand(
            client_id=juan.client_id, transaction_type=constants.TransactionType.SALE, amount="25"
        ),
    )
    core_logic.persist_context(context)

    workbook = openpyxl.load_workbook(bundle.workbook_path)
    workbook["Transactions"].cell(row=2, column=4).value = "not a number"
    workbook.save(bundle.workbook_path)

    recovered = core_logic.load_runtime_context(bundle.config_path)
    assert [supplier.name for supplier in core_logic.list_suppliers(recovered)] == ["Acme"]
    assert core_logic.list_clients(recovered) == []
    assert core_logic.portfolio_totals(recovered).pending == Decimal("0")

    # The application keeps working and the next save writes clean sheets.
    core_logic.create_client(
        recovered, core_logic.CreateClientCommand(name="Ana", supplier_id=acme.supplier_id)
    )
    core_logic.persist_context(recovered)
    again = core_logic.load_runtime_context(bundle.config_path)
    assert [client.name for client in core_logic.list_clients(again)] == ["Ana"]


@pytest.mark.parametrize("sheet_name", ["Suppliers", "Currency"])
def test_missing_sheet_is_recreated(config_factory, sheet_name):
    bundle = config_factory()
    workbook = openpyxl.load_workbook(bundle.workbook_path)
    del workbook[sheet_name]
    workbook.save(bundle.workbook_path)

    context = core_logic.load_runtime_context(bundle.config_path)

    assert sheet_name in context.workbook.sheetnames
    assert context.currency.code == constants.DEFAULT_CURRENCY_CODE
    assert core_logic.list_suppliers(context) == []
