"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from decimal import Decimal

import openpyxl
import pytest

from accounting_reports import cli, core_logic, data_manager
from accounting_reports.constants import FilterType


READ_COMMANDS = {"summary", "accounts", "trial", "journal", "monthly"}
WRITE_COMMANDS = {"export"}


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()

    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "accounting-reports"
    assert "Accounting" in (parser.description or "")


def test_configure_subcommands_registers_every_command():
    parser = cli.build_parser()

    table = cli.configure_subcommands(parser)

    assert set(table) == READ_COMMANDS | WRITE_COMMANDS
    for name, spec in table.items():
        assert spec.name == name
        assert spec.help_text


def test_filter_arguments_default_to_all():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(["summary"])

    assert args.command == "summary"
    assert args.filter_type == "ALL"
    assert args.json is False
    assert args.config is None


def test_filter_choices_are_enforced():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(["summary", "--filter", "WEEKLY"])


def test_build_command_table_rejects_duplicates():
    spec = cli.CommandSpec(name="dup", help_text="x", register=lambda action: None, execute=lambda c, a: 0)

    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


def test_dispatch_command_unknown_command(runtime_context):
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="bogus"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(), {})


def test_translate_filter_builds_date_filter():
    args = argparse.Namespace(
        filter_type="MONTHLY", year=2024, month=2, start_date=None, end_date=None
    )

    date_filter = cli.translate_filter(args)

    assert date_filter == core_logic.DateFilter(FilterType.MONTHLY, year=2024, month=2)


def test_translate_filter_rejects_inverted_range():
    args = argparse.Namespace(
        filter_type="CUSTOM", year=None, month=None, start_date="2024-02-01", end_date="2024-01-01"
    )

    with pytest.raises(core_logic.InvalidFilterError):
        cli.translate_filter(args)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (core_logic.InvalidFilterError("bad"), cli.EXIT_INVALID_REQUEST),
        (core_logic.ReportError("bad"), cli.EXIT_INVALID_REQUEST),
        (FileNotFoundError("missing"), cli.EXIT_MISSING_DATA),
        (RuntimeError("schema"), cli.EXIT_ERROR),
        (KeyError("option"), cli.EXIT_ERROR),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def test_format_money():
    assert cli.format_money(Decimal("1234.5")) == "1,234.50"


def test_render_journal_on_empty_snapshot():
    assert cli.render_journal(core_logic.empty_snapshot()) == ["No journal entries."]


def test_render_accounts_lists_every_category():
    lines = cli.render_accounts(core_logic.empty_snapshot())

    for category in ("Assets", "Liabilities", "Equity", "Income", "Expenses"):
        assert category in lines
    assert sum(1 for line in lines if line.startswith("  ")) == 13


# ---------------------------------------------------------------------------
# End-to-end main()
# ---------------------------------------------------------------------------


def test_main_summary_prints_metrics(config_bundle, capsys):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "summary"])

    out = capsys.readouterr().out
    assert exit_code == cli.EXIT_OK
    assert "Period: All time" in out
    assert "1,700.00" in out
    assert "(40.0%)" in out


def test_main_summary_json(config_bundle, capsys):
    exit_code = cli.main(
        ["--config", str(config_bundle.config_path), "summary", "--filter", "YEARLY", "--year", "2024", "--json"]
    )

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_OK
    assert payload["totalRevenue"] == 1500.0
    assert payload["totalCOGS"] == 900.0
    assert payload["accountsReceivable"] == 750.0
    assert payload["period"] == "Year 2024"


def test_main_journal_json_is_newest_first(config_bundle, capsys):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "journal", "--json"])

    entries = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_OK
    assert [entry["id"] for entry in entries] == [
        "JE-SALE-002",
        "JE-PAY-200",
        "JE-SALE-001",
        "JE-PURCH-010",
        "JE-SALE-003",
    ]


def test_main_monthly_text(config_bundle, capsys):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "monthly"])

    lines = capsys.readouterr().out.splitlines()
    assert exit_code == cli.EXIT_OK
    assert lines[0].split() == ["Month", "Sales", "COGS", "Expenses", "Profit"]
    assert [line.split()[0] for line in lines[1:]] == ["Jan", "Feb", "Dec"]


def test_main_trial_text(config_bundle, capsys):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "trial"])

    lines = capsys.readouterr().out.splitlines()
    assert exit_code == cli.EXIT_OK
    assert lines[0].split() == ["Code", "Name", "Type", "Debit", "Credit"]
    assert len(lines) == 15
    payable = next(line for line in lines if line.startswith("2010"))
    assert payable.split()[-2:] == ["-", "300.00"]
    assert lines[-1].split() == ["Total", "2,370.00", "3,050.00"]


def test_main_trial_json(config_bundle, capsys):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "trial", "--json"])

    trial = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_OK
    assert trial["totalDebit"] == 2370.0
    assert trial["totalCredit"] == 3050.0
    cogs = next(row for row in trial["rows"] if row["code"] == "5010")
    assert cogs == {"code": "5010", "name": "Cost of Goods Sold", "type": "COGS", "debit": 1020.0, "credit": 0.0}


def test_main_reads_json_dir(config_bundle, json_dir, capsys):
    exit_code = cli.main(
        ["--config", str(config_bundle.config_path), "--json-dir", str(json_dir), "accounts", "--json"]
    )

    chart = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_OK
    receivable = next(account for account in chart["assets"] if account["code"] == "1030")
    assert receivable["balance"] == 750.0


def test_main_export_uses_configured_file(config_bundle, capsys):
    exit_code = cli.main(["--config", str(config_bundle.config_path), "export"])

    assert exit_code == cli.EXIT_OK
    assert config_bundle.export_path.exists()
    assert "Report written to" in capsys.readouterr().out
    workbook = openpyxl.load_workbook(config_bundle.export_path)
    try:
        assert "Summary" in workbook.sheetnames
    finally:
        workbook.close()


def test_main_export_with_explicit_output(config_bundle, tmp_path):
    destination = tmp_path / "explicit.xlsx"

    exit_code = cli.main(
        ["--config", str(config_bundle.config_path), "export", "--output", str(destination)]
    )

    assert exit_code == cli.EXIT_OK
    assert destination.exists()


def test_main_invalid_filter_returns_invalid_request(config_bundle):
    exit_code = cli.main(
        [
            "--config",
            str(config_bundle.config_path),
            "summary",
            "--filter",
            "CUSTOM",
            "--start-date",
            "2024-02-01",
            "--end-date",
            "2024-01-01",
        ]
    )

    assert exit_code == cli.EXIT_INVALID_REQUEST


def test_main_missing_config_returns_missing_data(tmp_path):
    exit_code = cli.main(["--config", str(tmp_path / "absent.ini"), "summary"])

    assert exit_code == cli.EXIT_MISSING_DATA


def test_main_missing_workbook_returns_missing_data(config_bundle):
    config_bundle.workbook_path.unlink()

    exit_code = cli.main(["--config", str(config_bundle.config_path), "summary"])

    assert exit_code == cli.EXIT_MISSING_DATA


def test_main_schema_mismatch_returns_error(config_factory):
    bundle = config_factory(schema_version="0.9.0")

    exit_code = cli.main(["--config", str(bundle.config_path), "summary"])

    assert exit_code == cli.EXIT_ERROR


def test_run_export_without_destination(config_bundle):
    context = core_logic.load_runtime_context(config_bundle.config_path)
    settings = data_manager.ConfigSettings(
        data_file=context.settings.data_file,
        company_name=context.settings.company_name,
        schema_version=context.settings.schema_version,
    )
    args = argparse.Namespace(command="export", output=None, filter_type="ALL",
                              year=None, month=None, start_date=None, end_date=None)

    with pytest.raises(core_logic.ReportError):
        cli.run_export(core_logic.RuntimeContext(settings=settings, loader=context.loader), args)
