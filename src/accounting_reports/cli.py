"""Command-line entry points for the accounting reports.

All orchestration in this module is limited to argparse wiring, translating
arguments into a :class:`~accounting_reports.core_logic.DateFilter`, and
rendering snapshots as text or JSON. Aggregation stays in ``core_logic``.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import FilterType
from .session import ReportSession


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID_REQUEST = 2
EXIT_MISSING_DATA = 3


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="accounting-reports",
        description="Accounting reports built from sales, inventory, customer and supplier data.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to an upward search from the working directory).",
    )
    parser.add_argument(
        "--json-dir",
        type=Path,
        default=None,
        help="Read <endpoint>.json payload dumps from this folder instead of the workbook.",
    )
    return parser


def add_filter_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Attach the shared date filter options to a sub-command parser."""
    parser.add_argument(
        "--filter",
        dest="filter_type",
        choices=[member.value for member in FilterType],
        default=FilterType.ALL.value,
    )
    parser.add_argument("--year", type=int, default=None)
    parser.add_argument("--month", type=int, default=None)
    parser.add_argument("--start-date", default=None, help="CUSTOM range start (YYYY-MM-DD).")
    parser.add_argument("--end-date", default=None, help="CUSTOM range end, inclusive (YYYY-MM-DD).")
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    read_specs = register_read_commands(subparsers)
    write_specs = register_write_commands(subparsers)
    return build_command_table([*read_specs.values(), *write_specs.values()])


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the commands that print a report section."""
    specs = {
        "summary": register_report_command(
            "summary", "Display the financial summary and margins.", render_summary, "financialSummary"
        ),
        "accounts": register_report_command(
            "accounts", "Display the chart of accounts.", render_accounts, "chartOfAccounts"
        ),
        "trial": register_report_command(
            "trial", "Display the trial balance.", render_trial, "trialBalance"
        ),
        "journal": register_report_command(
            "journal", "Display synthesized journal entries.", render_journal, "journalEntries"
        ),
        "monthly": register_report_command(
            "monthly", "Display the monthly profit series.", render_monthly, "monthlyProfitData"
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the commands that write files."""
    specs = {
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_report_command(
    name: str,
    help_text: str,
    renderer: Callable[[core_logic.AccountingSnapshot], List[str]],
    payload_key: str,
) -> CommandSpec:
    """Build the :class:`CommandSpec` of a read-only report command."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_filter_arguments(parser)
        parser.add_argument("--json", action="store_true", help="Print the section as JSON.")
        parser.set_defaults(command=name)
        return parser

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        snapshot = load_snapshot(context, args)
        if snapshot is None:
            return EXIT_MISSING_DATA
        if getattr(args, "json", False):
            emit([json.dumps(snapshot.as_payload()[payload_key], indent=2)])
        else:
            emit(renderer(snapshot))
        return EXIT_OK

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write the full report to an Excel workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        add_filter_arguments(parser)
        parser.add_argument(
            "--output",
            type=Path,
            default=None,
            help="Destination .xlsx (defaults to [Reports] ExportFile).",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


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


def translate_filter(args: argparse.Namespace) -> core_logic.DateFilter:
    """Translate CLI args into a validated date filter."""
    return core_logic.DateFilter.create(
        getattr(args, "filter_type", FilterType.ALL.value),
        year=getattr(args, "year", None),
        month=getattr(args, "month", None),
        start_date=getattr(args, "start_date", None),
        end_date=getattr(args, "end_date", None),
    )


def load_snapshot(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> Optional[core_logic.AccountingSnapshot]:
    """Run one refresh for the requested filter; ``None`` when data is unavailable."""
    session = ReportSession.from_context(context, date_filter=translate_filter(args))
    session.refresh()
    if session.error_message is not None:
        log.error("Report data unavailable: %s", session.error_message)
        return None
    return session.snapshot


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Build the report and write it to the requested workbook."""
    destination = args.output or context.settings.export_file
    if destination is None:
        raise core_logic.ReportError("No --output given and no [Reports] ExportFile configured")
    snapshot = load_snapshot(context, args)
    if snapshot is None:
        return EXIT_MISSING_DATA
    written = core_logic.export_snapshot(snapshot, destination)
    emit([f"Report written to {written}"])
    return EXIT_OK


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_money(value: Decimal) -> str:
    return f"{value:,.2f}"


def render_summary(snapshot: core_logic.AccountingSnapshot) -> List[str]:
    metrics = snapshot.metrics
    totals = snapshot.financial_summary.totals
    lines = [
        f"Period: {snapshot.financial_summary.period}",
        f"Revenue:            {format_money(metrics.total_revenue)}",
        f"Cost of goods sold: {format_money(metrics.total_cogs)}",
        f"Gross profit:       {format_money(metrics.gross_profit)} ({metrics.gross_margin}%)",
        f"Operating expenses: {format_money(metrics.total_expenses)}",
        f"Net profit:         {format_money(metrics.net_profit)} ({metrics.net_margin}%)",
        f"Total assets:       {format_money(metrics.total_assets)}",
        f"Total liabilities:  {format_money(metrics.total_liabilities)}",
        f"Total equity:       {format_money(metrics.total_equity)}",
        f"Receivable:         {format_money(totals.accounts_receivable)}",
        f"Payable:            {format_money(totals.accounts_payable)}",
        f"Inventory value:    {format_money(totals.total_inventory_value)}",
    ]
    if snapshot.financial_summary.missing_date_records:
        lines.append(f"Records without dates: {snapshot.financial_summary.missing_date_records}")
    return lines


def render_accounts(snapshot: core_logic.AccountingSnapshot) -> List[str]:
    lines: List[str] = []
    for category, accounts in snapshot.chart_of_accounts.categories().items():
        lines.append(category.title())
        for account in accounts:
            lines.append(
                f"  {account.code}  {account.name:<22} {account.type.value:<18} {format_money(account.balance):>14}"
            )
    return lines


def render_trial(snapshot: core_logic.AccountingSnapshot) -> List[str]:
    trial_balance = snapshot.trial_balance
    lines = [f"{'Code':<6}{'Name':<24}{'Type':<18}{'Debit':>14} {'Credit':>14}"]
    for row in trial_balance.rows:
        debit = format_money(row.debit) if row.type in core_logic.DEBIT_ACCOUNT_TYPES else "-"
        credit = "-" if row.type in core_logic.DEBIT_ACCOUNT_TYPES else format_money(row.credit)
        lines.append(f"{row.code:<6}{row.name:<24}{row.type.value:<18}{debit:>14} {credit:>14}")
    lines.append(
        f"{'':<6}{'Total':<24}{'':<18}"
        f"{format_money(trial_balance.total_debit):>14} {format_money(trial_balance.total_credit):>14}"
    )
    return lines


def render_journal(snapshot: core_logic.AccountingSnapshot) -> List[str]:
    lines: List[str] = []
    for entry in snapshot.journal_entries:
        when = entry.date.date().isoformat() if entry.date else "-"
        lines.append(f"{entry.entry_id}  {when}  {entry.type.value}  {entry.reference}  [{entry.status}]")
        for line in entry.lines:
            lines.append(
                f"    {line.account:<22} Dr {format_money(line.debit):>12}  Cr {format_money(line.credit):>12}"
            )
    return lines or ["No journal entries."]


def render_monthly(snapshot: core_logic.AccountingSnapshot) -> List[str]:
    lines = [f"{'Month':<6} {'Sales':>14} {'COGS':>14} {'Expenses':>12} {'Profit':>14}"]
    for point in snapshot.monthly_profit_data:
        lines.append(
            f"{point.month:<6} {format_money(point.sales):>14} {format_money(point.cogs):>14} "
            f"{format_money(point.expenses):>12} {format_money(point.profit):>14}"
        )
    return lines


def emit(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.ReportError):
        log.error("%s", error)
        return EXIT_INVALID_REQUEST
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return EXIT_MISSING_DATA
    log.error("%s", error)
    return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = core_logic.load_runtime_context(
            getattr(args, "config", None),
            json_dir=getattr(args, "json_dir", None),
        )
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
