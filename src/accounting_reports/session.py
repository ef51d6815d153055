"""Caller-side state for an interactive accounting report.

The aggregation functions are pure; something still has to remember the
selected date filter, re-run the pipeline when it changes and decide which
result is on display. :class:`ReportSession` does that for a single viewer.

Refreshes are numbered. A result is only installed when no newer request
has already been installed, so when several refreshes overlap the last
completed computation wins and stale results are dropped.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from . import core_logic, data_manager, log
from .core_logic import AccountingSnapshot, DateFilter, ReportOptions
from .data_manager import Collections, LedgerInputs


@dataclass(frozen=True)
class RefreshTicket:
    """Sequence number and filter captured when a refresh starts."""

    sequence: int
    date_filter: DateFilter


class ReportSession:
    """Hold the active filter and the snapshot currently on display."""

    def __init__(
        self,
        loader: core_logic.CollectionLoader,
        *,
        ledger: Optional[LedgerInputs] = None,
        options: Optional[ReportOptions] = None,
        date_filter: Optional[DateFilter] = None,
    ) -> None:
        self._loader = loader
        self._ledger = ledger or LedgerInputs()
        self._options = options or ReportOptions()
        self._sequence = itertools.count(1)
        self._applied_sequence = 0
        self.date_filter = date_filter or DateFilter()
        self.collections: Optional[Collections] = None
        self.snapshot: AccountingSnapshot = core_logic.empty_snapshot(self._ledger)
        self.error_message: Optional[str] = None

    @classmethod
    def from_context(
        cls,
        context: core_logic.RuntimeContext,
        *,
        date_filter: Optional[DateFilter] = None,
        now: Optional[datetime] = None,
    ) -> "ReportSession":
        return cls(
            context.loader,
            ledger=context.ledger,
            options=context.report_options(now),
            date_filter=date_filter,
        )

    @property
    def applied_sequence(self) -> int:
        return self._applied_sequence

    def begin_refresh(self) -> RefreshTicket:
        """Reserve the next sequence number for a computation about to start."""

        return RefreshTicket(sequence=next(self._sequence), date_filter=self.date_filter)

    def apply(
        self,
        ticket: RefreshTicket,
        snapshot: AccountingSnapshot,
        *,
        error_message: Optional[str] = None,
    ) -> bool:
        """Install ``snapshot`` unless a newer computation already landed.

        Returns:
            bool: ``True`` when the snapshot is now on display, ``False`` when
                it was discarded as stale.
        """

        if ticket.sequence <= self._applied_sequence:
            log.warning(
                "Discarding stale snapshot #%d; #%d is already displayed",
                ticket.sequence,
                self._applied_sequence,
            )
            return False

        self._applied_sequence = ticket.sequence
        self.snapshot = snapshot
        self.error_message = error_message
        return True

    def compute(self, ticket: RefreshTicket, collections: Optional[Collections]) -> AccountingSnapshot:
        return core_logic.build_accounting_snapshot(
            collections,
            date_filter=ticket.date_filter,
            ledger=self._ledger,
            options=self._options,
        )

    def refresh(self) -> bool:
        """Fetch fresh collections and rebuild the snapshot.

        A loader failure installs the zeroed snapshot and records the error
        message instead of raising.

        Returns:
            bool: Whether the result was installed.
        """

        ticket = self.begin_refresh()
        try:
            collections = self._loader()
        except (data_manager.DataSourceError, FileNotFoundError, KeyError) as exc:
            log.error("Unable to load report data: %s", exc)
            return self.apply(ticket, core_logic.empty_snapshot(self._ledger), error_message=str(exc))

        self.collections = collections
        return self.apply(ticket, self.compute(ticket, collections))

    def set_filter(self, date_filter: DateFilter) -> bool:
        """Switch the date filter and recompute from the last loaded collections.

        Before the first successful load this only records the filter and
        keeps the zeroed snapshot.
        """

        self.date_filter = date_filter
        log.info("Date filter changed to %s", date_filter.describe())
        if self.collections is None:
            return False
        ticket = self.begin_refresh()
        return self.apply(ticket, self.compute(ticket, self.collections))
