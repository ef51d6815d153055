"""Tests for the report session: refresh sequencing, filter changes and load failures."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from accounting_reports import core_logic, data_manager
from accounting_reports.constants import FilterType
from accounting_reports.data_manager import Collections, LedgerInputs, SaleRecord
from accounting_reports.session import RefreshTicket, ReportSession


def _collections():
    return Collections(
        sales=(
            SaleRecord(sale_id="1", total_amount=Decimal("1000"), payment_status="PAID",
                       payment_method="CASH", sale_date=datetime(2023, 5, 1)),
            SaleRecord(sale_id="2", total_amount=Decimal("400"), payment_status="PAID",
                       payment_method="CASH", sale_date=datetime(2024, 5, 1)),
        ),
    )


class CountingLoader:
    """Loader double that records how often it was called."""

    def __init__(self, result=None, error=None):
        self.result = result if result is not None else _collections()
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def loader():
    return CountingLoader()


@pytest.fixture
def session(loader, options):
    return ReportSession(loader, options=options)


def test_initial_state_is_zeroed(session):
    assert session.snapshot == core_logic.empty_snapshot()
    assert session.collections is None
    assert session.error_message is None
    assert session.applied_sequence == 0
    assert session.date_filter == core_logic.DateFilter()


def test_refresh_installs_snapshot(session, loader):
    assert session.refresh() is True

    assert loader.calls == 1
    assert session.applied_sequence == 1
    assert session.snapshot.metrics.total_revenue == Decimal("1400")
    assert session.collections == loader.result


def test_refresh_reloads_every_time(session, loader):
    session.refresh()
    session.refresh()

    assert loader.calls == 2
    assert session.applied_sequence == 2


def test_stale_result_is_discarded(session):
    """The later request wins even when the earlier one completes last."""

    first = session.begin_refresh()
    second = session.begin_refresh()
    newer = core_logic.build_accounting_snapshot(_collections())
    older = core_logic.empty_snapshot()

    assert session.apply(second, newer) is True
    assert session.apply(first, older) is False

    assert session.snapshot is newer
    assert session.applied_sequence == second.sequence


def test_reapplying_same_ticket_is_ignored(session):
    ticket = session.begin_refresh()
    snapshot = core_logic.empty_snapshot()

    assert session.apply(ticket, snapshot) is True
    assert session.apply(ticket, core_logic.build_accounting_snapshot(_collections())) is False
    assert session.snapshot is snapshot


def test_ticket_captures_filter_at_start(session):
    yearly = core_logic.DateFilter(FilterType.YEARLY, year=2023)
    session.date_filter = yearly

    ticket = session.begin_refresh()
    session.date_filter = core_logic.DateFilter()

    assert ticket == RefreshTicket(sequence=1, date_filter=yearly)
    computed = session.compute(ticket, _collections())
    assert computed.metrics.total_revenue == Decimal("1000")


@pytest.mark.parametrize(
    "error",
    [
        data_manager.DataSourceError("sales.json is not valid JSON"),
        FileNotFoundError("Workbook not found"),
        KeyError("Worksheet not found: Sales"),
    ],
)
def test_loader_failure_installs_empty_snapshot(options, error):
    ledger = LedgerInputs(cash_balance=Decimal("50"))
    session = ReportSession(CountingLoader(error=error), ledger=ledger, options=options)

    assert session.refresh() is True

    assert session.error_message is not None
    assert session.snapshot == core_logic.empty_snapshot(ledger)
    assert session.snapshot.metrics.cash_balance == Decimal("50")
    assert session.collections is None


def test_successful_refresh_clears_error(options):
    loader = CountingLoader(error=FileNotFoundError("missing"))
    session = ReportSession(loader, options=options)
    session.refresh()
    assert session.error_message is not None

    loader.error = None
    session.refresh()

    assert session.error_message is None
    assert session.snapshot.metrics.total_revenue == Decimal("1400")


def test_set_filter_recomputes_without_reloading(session, loader):
    session.refresh()

    changed = session.set_filter(core_logic.DateFilter(FilterType.YEARLY, year=2024))

    assert changed is True
    assert loader.calls == 1
    assert session.snapshot.metrics.total_revenue == Decimal("400")
    assert session.snapshot.financial_summary.period == "Year 2024"


def test_set_filter_before_first_load_only_records_filter(session, loader):
    yearly = core_logic.DateFilter(FilterType.YEARLY, year=2024)

    assert session.set_filter(yearly) is False

    assert session.date_filter == yearly
    assert loader.calls == 0
    assert session.snapshot.metrics.total_revenue == 0


def test_from_context_uses_settings(runtime_context, now):
    session = ReportSession.from_context(
        runtime_context,
        date_filter=core_logic.DateFilter(FilterType.YEARLY, year=2024),
        now=now,
    )

    session.refresh()

    assert session.error_message is None
    assert session.snapshot.raw_counts.total_sales == 2
    assert session.snapshot.metrics.total_revenue == Decimal("1500")


def test_unreadable_workbook_installs_empty_snapshot(tmp_path, options):
    path = tmp_path / "corrupt.xlsx"
    path.write_bytes(b"PK\x03\x04 truncated")
    session = ReportSession(core_logic.workbook_loader(path), options=options)

    assert session.refresh() is True

    assert "not a readable workbook" in session.error_message
    assert session.snapshot == core_logic.empty_snapshot()
