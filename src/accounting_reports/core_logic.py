"""Business logic layer for the accounting reports.

This module derives an accounting view from the four source collections
loaded by the Data Access Layer (DAL): a chart of accounts, synthesized
journal entries, a monthly profit series and summary metrics. Every
aggregation function is pure; the only I/O lives in the runtime context
helpers at the bottom of the module, which delegate to ``data_manager``.

The balance sheet is balanced by construction: equity is derived as
``assets - liabilities`` and split into retained earnings (net profit) and a
residual owner's equity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from . import data_manager, log
from .constants import (
    ACCOUNT_NAMES,
    COGS_RATIO,
    EXPECTED_SCHEMA_VERSION,
    MONTHS_PER_YEAR,
    PAYMENT_JOURNAL_LIMIT,
    POSTED_STATUS,
    PURCHASE_JOURNAL_LIMIT,
    SALE_JOURNAL_LIMIT,
    AccountCode,
    AccountType,
    Endpoint,
    FilterType,
    JournalType,
    MissingDatePolicy,
    MonthOrder,
    MovementType,
    PaymentMethod,
    PaymentStatus,
    ReportSheet,
)
from .data_manager import (
    Collections,
    CustomerRecord,
    InventoryMovement,
    LedgerInputs,
    SaleRecord,
    SupplierRecord,
)


ZERO = Decimal("0")
HUNDRED = Decimal("100")
ONE_DECIMAL = Decimal("0.1")
DEBIT_ACCOUNT_TYPES = (AccountType.CURRENT_ASSET, AccountType.COGS, AccountType.OPERATING)

DateLike = Union[date, datetime, str, None]
CollectionLoader = Callable[[], Collections]


class ReportError(Exception):
    """Raised when a report request cannot be honoured."""


class InvalidFilterError(ReportError):
    """Raised when date filter parameters are inconsistent or unknown."""


# ---------------------------------------------------------------------------
# Options and dates
# ---------------------------------------------------------------------------


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` normalized, or the current UTC time as a naive value."""

    if candidate is not None:
        return data_manager.normalize_datetime(candidate)
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True)
class ReportOptions:
    """Knobs that shape a report without changing its algorithm.

    ``now`` is the moment used for records without a date (under the
    ``NOW`` policy) and for YEARLY/MONTHLY filters without an explicit
    period. When ``None`` the current UTC time is taken once per report.
    """

    now: Optional[datetime] = None
    missing_dates: MissingDatePolicy = MissingDatePolicy.NOW
    month_order: MonthOrder = MonthOrder.FIRST_SEEN


class DateResolver:
    """Resolve the effective date of records and flag the ones without one.

    A single resolver is shared by every stage of a report so a record that
    falls back to "now" is logged and counted exactly once, and every stage
    sees the same reference moment.
    """

    def __init__(self, options: Optional[ReportOptions] = None) -> None:
        options = options or ReportOptions()
        self.now = _resolve_timestamp(options.now)
        self.policy = options.missing_dates
        self._flagged: Dict[int, Any] = {}

    @property
    def fallback_count(self) -> int:
        return len(self._flagged)

    def resolve(self, record: Any, candidates: Sequence[Optional[datetime]]) -> Optional[datetime]:
        # Records built by hand may carry aware datetimes or plain dates.
        for candidate in candidates:
            moment = data_manager.parse_datetime(candidate)
            if moment is not None:
                return moment

        key = id(record)
        if key not in self._flagged:
            self._flagged[key] = record
            log.warning(
                "%s without a usable date (%s policy): %r",
                type(record).__name__,
                self.policy.value,
                record,
            )
        return self.now if self.policy is MissingDatePolicy.NOW else None

    def sale_date(self, sale: SaleRecord) -> Optional[datetime]:
        return self.resolve(sale, (sale.sale_date, sale.created_at, sale.date))

    def movement_date(self, movement: InventoryMovement) -> Optional[datetime]:
        return self.resolve(movement, (movement.date, movement.created_at))

    def payment_date(self, supplier: SupplierRecord) -> Optional[datetime]:
        return self.resolve(supplier, (supplier.last_payment_date,))

    def record_date(self, record: Any) -> Optional[datetime]:
        """Effective date of any record: sale date, creation date, then plain date."""

        candidates = [getattr(record, name, None) for name in ("sale_date", "created_at", "date")]
        return self.resolve(record, candidates)


def _parse_bound(value: DateLike, label: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = data_manager.parse_datetime(value)
    if parsed is None:
        raise InvalidFilterError(f"Invalid {label}: {value!r}")
    return parsed.date()


def _coerce_filter_type(value: Union[FilterType, str]) -> FilterType:
    if isinstance(value, FilterType):
        return value
    try:
        return FilterType(str(value).strip().upper())
    except ValueError as exc:
        log.error("Unknown filter type requested: %r", value)
        raise InvalidFilterError(f"Unknown filter type: {value}") from exc


@dataclass(frozen=True)
class DateFilter:
    """Date scope applied to sales before aggregation.

    Build instances through :meth:`create` when values come from user input;
    it validates the month and the custom range. The filter type may be given
    by name to either constructor.
    """

    filter_type: FilterType = FilterType.ALL
    year: Optional[int] = None
    month: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "filter_type", _coerce_filter_type(self.filter_type))

    @classmethod
    def create(
        cls,
        filter_type: Union[FilterType, str] = FilterType.ALL,
        *,
        year: Optional[int] = None,
        month: Optional[int] = None,
        start_date: DateLike = None,
        end_date: DateLike = None,
    ) -> "DateFilter":
        """Validate raw filter parameters and return a :class:`DateFilter`.

        Raises:
            InvalidFilterError: For an unknown filter type, a month outside
                1-12, unparsable bounds or a start date after the end date.
        """

        filter_type = _coerce_filter_type(filter_type)

        if month is not None and not 1 <= int(month) <= 12:
            log.error("Month out of range: %s", month)
            raise InvalidFilterError(f"Month must be between 1 and 12, got {month}")

        start = _parse_bound(start_date, "start date")
        end = _parse_bound(end_date, "end date")
        if start is not None and end is not None and start > end:
            log.error("Custom range starts after it ends: %s > %s", start, end)
            raise InvalidFilterError(f"Start date {start} is after end date {end}")

        return cls(
            filter_type=filter_type,
            year=int(year) if year is not None else None,
            month=int(month) if month is not None else None,
            start_date=start,
            end_date=end,
        )

    def describe(self) -> str:
        if self.filter_type is FilterType.YEARLY:
            return f"Year {self.year}" if self.year is not None else "Current year"
        if self.filter_type is FilterType.MONTHLY:
            if self.year is not None and self.month is not None:
                return f"{self.year}-{self.month:02d}"
            return "Current month"
        if self.filter_type is FilterType.CUSTOM and self.start_date and self.end_date:
            return f"{self.start_date.isoformat()} to {self.end_date.isoformat()}"
        return "All time"


# ---------------------------------------------------------------------------
# Derived entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Account:
    """A named balance bucket of the chart of accounts."""

    code: str
    name: str
    balance: Decimal
    type: AccountType


@dataclass(frozen=True)
class AccountTotals:
    """Scalar aggregates computed alongside the chart of accounts."""

    total_sales_revenue: Decimal = ZERO
    total_cogs: Decimal = ZERO
    total_inventory_value: Decimal = ZERO
    accounts_receivable: Decimal = ZERO
    accounts_payable: Decimal = ZERO
    total_operating_expenses: Decimal = ZERO
    total_assets: Decimal = ZERO
    total_liabilities: Decimal = ZERO
    total_equity: Decimal = ZERO
    gross_profit: Decimal = ZERO
    net_profit: Decimal = ZERO
    retained_earnings: Decimal = ZERO
    owners_equity: Decimal = ZERO
    supplier_purchases: Decimal = ZERO
    supplier_payments: Decimal = ZERO


@dataclass(frozen=True)
class ChartOfAccounts:
    """Accounts grouped in the five fixed categories."""

    assets: Tuple[Account, ...] = ()
    liabilities: Tuple[Account, ...] = ()
    equity: Tuple[Account, ...] = ()
    income: Tuple[Account, ...] = ()
    expenses: Tuple[Account, ...] = ()
    totals: AccountTotals = field(default_factory=AccountTotals)

    def categories(self) -> Dict[str, Tuple[Account, ...]]:
        return {
            "assets": self.assets,
            "liabilities": self.liabilities,
            "equity": self.equity,
            "income": self.income,
            "expenses": self.expenses,
        }

    def find(self, code: Union[AccountCode, str]) -> Optional[Account]:
        wanted = code.value if isinstance(code, AccountCode) else code
        for accounts in self.categories().values():
            for account in accounts:
                if account.code == wanted:
                    return account
        return None


@dataclass(frozen=True)
class JournalLine:
    account: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO


@dataclass(frozen=True)
class JournalEntry:
    """A balanced debit/credit record synthesized from a business event."""

    entry_id: str
    date: Optional[datetime]
    type: JournalType
    reference: str
    lines: Tuple[JournalLine, ...]
    status: str = POSTED_STATUS

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class MonthlyProfitPoint:
    month: str
    sales: Decimal
    cogs: Decimal
    expenses: Decimal
    profit: Decimal


@dataclass(frozen=True)
class FinancialMetrics:
    """Summary figures read off a chart of accounts.

    Margins are percentages rounded to one decimal and kept as strings;
    re-derive from the numeric fields for further arithmetic.
    """

    total_revenue: Decimal = ZERO
    total_cogs: Decimal = ZERO
    total_expenses: Decimal = ZERO
    gross_profit: Decimal = ZERO
    net_profit: Decimal = ZERO
    gross_margin: str = "0.0"
    net_margin: str = "0.0"
    total_assets: Decimal = ZERO
    total_liabilities: Decimal = ZERO
    total_equity: Decimal = ZERO
    cash_balance: Decimal = ZERO
    bank_balance: Decimal = ZERO


@dataclass(frozen=True)
class RawCounts:
    total_sales: int = 0
    total_inventory_items: int = 0
    total_customers: int = 0
    total_suppliers: int = 0


@dataclass(frozen=True)
class FinancialSummary:
    """Metrics plus the balance-sheet aggregates and report context."""

    metrics: FinancialMetrics
    totals: AccountTotals
    period: str
    missing_date_records: int = 0


@dataclass(frozen=True)
class TrialBalanceRow:
    """One account placed in the debit or the credit column."""

    code: str
    name: str
    type: AccountType
    debit: Decimal = ZERO
    credit: Decimal = ZERO


@dataclass(frozen=True)
class TrialBalance:
    """Every account of a chart listed with its column totals.

    The totals are reported as computed; the derived chart does not
    guarantee that they agree.
    """

    rows: Tuple[TrialBalanceRow, ...] = ()
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO

    @property
    def difference(self) -> Decimal:
        return self.total_debit - self.total_credit


@dataclass(frozen=True)
class AccountingSnapshot:
    """Immutable result of one full aggregation run."""

    chart_of_accounts: ChartOfAccounts
    journal_entries: Tuple[JournalEntry, ...]
    monthly_profit_data: Tuple[MonthlyProfitPoint, ...]
    raw_counts: RawCounts
    financial_summary: FinancialSummary

    @property
    def metrics(self) -> FinancialMetrics:
        return self.financial_summary.metrics

    @property
    def trial_balance(self) -> TrialBalance:
        return build_trial_balance(self.chart_of_accounts)

    def as_payload(self) -> Dict[str, Any]:
        """Render the snapshot as the JSON-ready structure consumed by views."""

        return {
            "chartOfAccounts": {
                category: [_account_payload(account) for account in accounts]
                for category, accounts in self.chart_of_accounts.categories().items()
            },
            "journalEntries": [_entry_payload(entry) for entry in self.journal_entries],
            "monthlyProfitData": [
                {
                    "month": point.month,
                    "sales": float(point.sales),
                    "cogs": float(point.cogs),
                    "expenses": float(point.expenses),
                    "profit": float(point.profit),
                }
                for point in self.monthly_profit_data
            ],
            "rawCounts": {
                "totalSales": self.raw_counts.total_sales,
                "totalInventoryItems": self.raw_counts.total_inventory_items,
                "totalCustomers": self.raw_counts.total_customers,
                "totalSuppliers": self.raw_counts.total_suppliers,
            },
            "financialSummary": _summary_payload(self.financial_summary),
            "trialBalance": _trial_balance_payload(self.trial_balance),
        }


def _account_payload(account: Account) -> Dict[str, Any]:
    return {
        "code": account.code,
        "name": account.name,
        "balance": float(account.balance),
        "type": account.type.value,
    }


def _entry_payload(entry: JournalEntry) -> Dict[str, Any]:
    return {
        "id": entry.entry_id,
        "date": entry.date.isoformat() if entry.date else None,
        "type": entry.type.value,
        "reference": entry.reference,
        "entries": [
            {"account": line.account, "debit": float(line.debit), "credit": float(line.credit)}
            for line in entry.lines
        ],
        "status": entry.status,
    }


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.upper() if part == "cogs" else part.title() for part in rest)


def _summary_payload(summary: FinancialSummary) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for source in (summary.totals, summary.metrics):
        for key, value in vars(source).items():
            payload[_camel(key)] = float(value) if isinstance(value, Decimal) else value
    payload["period"] = summary.period
    payload["missingDateRecords"] = summary.missing_date_records
    return payload


def _trial_balance_payload(trial_balance: TrialBalance) -> Dict[str, Any]:
    return {
        "rows": [
            {
                "code": row.code,
                "name": row.name,
                "type": row.type.value,
                "debit": float(row.debit),
                "credit": float(row.credit),
            }
            for row in trial_balance.rows
        ],
        "totalDebit": float(trial_balance.total_debit),
        "totalCredit": float(trial_balance.total_credit),
    }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def _cogs(amount: Decimal) -> Decimal:
    return amount * COGS_RATIO


def _pad(identifier: str) -> str:
    return identifier.rjust(3, "0")


def filter_by_date(
    records: Any,
    date_filter: Optional[DateFilter] = None,
    *,
    endpoint: Endpoint = Endpoint.SALES,
    dates: Optional[DateResolver] = None,
) -> Tuple[Any, ...]:
    """Keep the records whose effective date falls inside ``date_filter``.

    ALL passes everything through. YEARLY keeps the matching calendar year
    and MONTHLY additionally the 1-indexed month; a missing year or month
    means the one of the resolver's reference moment. CUSTOM keeps the
    inclusive range from the start day's midnight to the last microsecond of
    the end day, and filters nothing when either bound is missing. Records
    whose date is excluded by the missing-date policy never match a
    restrictive filter.

    Args:
        records (Any): Records (or raw mappings) of ``endpoint``. ``None`` and
            non-sequences are treated as empty.
        date_filter (DateFilter | None): Scope to apply; ``None`` means ALL.
        endpoint (Endpoint): Collection the records belong to.
        dates (DateResolver | None): Shared resolver; a fresh one is created
            when omitted.

    Returns:
        tuple: Matching records in input order.
    """

    items = data_manager.coerce_records(records, endpoint)
    date_filter = date_filter or DateFilter()
    dates = dates or DateResolver()
    filter_type = date_filter.filter_type

    if filter_type is FilterType.ALL:
        return items

    if filter_type is FilterType.CUSTOM:
        if date_filter.start_date is None or date_filter.end_date is None:
            log.debug("Custom filter without both bounds; no filtering applied")
            return items
        lower = datetime.combine(date_filter.start_date, time.min)
        upper = datetime.combine(date_filter.end_date, time.max)

        def matches(moment: datetime) -> bool:
            return lower <= moment <= upper

    else:
        year = date_filter.year if date_filter.year is not None else dates.now.year
        month = date_filter.month if date_filter.month is not None else dates.now.month

        def matches(moment: datetime) -> bool:
            if moment.year != year:
                return False
            return filter_type is FilterType.YEARLY or moment.month == month

    kept = []
    for record in items:
        moment = dates.record_date(record)
        if moment is not None and matches(moment):
            kept.append(record)

    log.debug("Date filter %s kept %d of %d records", date_filter.describe(), len(kept), len(items))
    return tuple(kept)


def _receivable_amount(sale: SaleRecord) -> Decimal:
    # A zero or missing remaining amount falls back to the full sale amount.
    if sale.remaining_amount:
        return sale.remaining_amount
    return sale.total_amount


def build_accounts(
    sales: Any,
    inventory: Any,
    customers: Any,
    suppliers: Any,
    *,
    ledger: Optional[LedgerInputs] = None,
) -> ChartOfAccounts:
    """Build the fixed chart of accounts and its scalar aggregates.

    Revenue is the sum of sale amounts and COGS a flat 60% of it. Inventory
    is valued as quantity times unit price over every movement, without
    netting outbound movements. Receivables add the open amount of PENDING
    and PARTIAL sales to the customers' outstanding balances; payables are
    the suppliers' outstanding balances. Equity is derived as assets minus
    liabilities, of which net profit is retained earnings and the rest
    owner's equity, so the accounting equation always holds.

    Args:
        sales (Any): Sales to account for, normally already date filtered.
        inventory (Any): Inventory movements.
        customers (Any): Customer records.
        suppliers (Any): Supplier records.
        ledger (LedgerInputs | None): Cash, bank and operating expense
            balances; zero when omitted.

    Returns:
        ChartOfAccounts: Thirteen accounts in five categories with the
            aggregates in ``totals``.
    """

    sales = data_manager.coerce_records(sales, Endpoint.SALES)
    inventory = data_manager.coerce_records(inventory, Endpoint.INVENTORY)
    customers = data_manager.coerce_records(customers, Endpoint.CUSTOMERS)
    suppliers = data_manager.coerce_records(suppliers, Endpoint.SUPPLIERS)
    ledger = ledger or LedgerInputs()

    total_sales_revenue = _sum(sale.total_amount for sale in sales)
    total_cogs = _sum(_cogs(sale.total_amount) for sale in sales)
    total_inventory_value = _sum(
        movement.quantity * (movement.unit_price or ZERO) for movement in inventory
    )

    open_statuses = (PaymentStatus.PENDING.value, PaymentStatus.PARTIAL.value)
    accounts_receivable = _sum(
        _receivable_amount(sale) for sale in sales if sale.payment_status in open_statuses
    ) + _sum(customer.outstanding_balance for customer in customers)
    accounts_payable = _sum(supplier.outstanding_balance for supplier in suppliers)

    total_operating_expenses = ledger.total_operating_expenses
    total_assets = (
        ledger.cash_balance + ledger.bank_balance + accounts_receivable + total_inventory_value
    )
    total_liabilities = accounts_payable
    gross_profit = total_sales_revenue - total_cogs
    net_profit = gross_profit - total_operating_expenses
    total_equity = total_assets - total_liabilities
    retained_earnings = net_profit
    owners_equity = total_equity - retained_earnings

    totals = AccountTotals(
        total_sales_revenue=total_sales_revenue,
        total_cogs=total_cogs,
        total_inventory_value=total_inventory_value,
        accounts_receivable=accounts_receivable,
        accounts_payable=accounts_payable,
        total_operating_expenses=total_operating_expenses,
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        total_equity=total_equity,
        gross_profit=gross_profit,
        net_profit=net_profit,
        retained_earnings=retained_earnings,
        owners_equity=owners_equity,
        supplier_purchases=_sum(supplier.total_purchases for supplier in suppliers),
        supplier_payments=_sum(supplier.total_paid for supplier in suppliers),
    )
    log.debug(
        "Built accounts: assets=%s liabilities=%s equity=%s revenue=%s",
        total_assets,
        total_liabilities,
        total_equity,
        total_sales_revenue,
    )

    def account(code: AccountCode, balance: Decimal, account_type: AccountType) -> Account:
        return Account(code=code.value, name=ACCOUNT_NAMES[code], balance=balance, type=account_type)

    return ChartOfAccounts(
        assets=(
            account(AccountCode.CASH, ledger.cash_balance, AccountType.CURRENT_ASSET),
            account(AccountCode.BANK, ledger.bank_balance, AccountType.CURRENT_ASSET),
            account(AccountCode.ACCOUNTS_RECEIVABLE, accounts_receivable, AccountType.CURRENT_ASSET),
            account(AccountCode.INVENTORY, total_inventory_value, AccountType.CURRENT_ASSET),
        ),
        liabilities=(
            account(AccountCode.ACCOUNTS_PAYABLE, accounts_payable, AccountType.CURRENT_LIABILITY),
        ),
        equity=(
            account(AccountCode.OWNERS_EQUITY, owners_equity, AccountType.EQUITY),
            account(AccountCode.RETAINED_EARNINGS, retained_earnings, AccountType.EQUITY),
        ),
        income=(
            account(AccountCode.SALES_REVENUE, total_sales_revenue, AccountType.REVENUE),
            account(AccountCode.OTHER_INCOME, ZERO, AccountType.REVENUE),
        ),
        expenses=(
            account(AccountCode.COST_OF_GOODS_SOLD, total_cogs, AccountType.COGS),
            account(AccountCode.RENT_EXPENSE, ledger.rent_expense, AccountType.OPERATING),
            account(AccountCode.UTILITIES, ledger.utilities_expense, AccountType.OPERATING),
            account(AccountCode.SALARIES, ledger.salaries_expense, AccountType.OPERATING),
        ),
        totals=totals,
    )


def _sale_entry(sale: SaleRecord, index: int, dates: DateResolver) -> JournalEntry:
    amount = sale.total_amount
    cost = _cogs(amount)
    is_cash_sale = (
        sale.payment_method == PaymentMethod.CASH.value
        or sale.payment_status == PaymentStatus.PAID.value
    )
    sequence = sale.sale_id or str(index + 1)
    debit_account = AccountCode.CASH if is_cash_sale else AccountCode.ACCOUNTS_RECEIVABLE
    return JournalEntry(
        entry_id=f"JE-SALE-{_pad(sequence)}",
        date=dates.sale_date(sale),
        type=JournalType.CASH_SALE if is_cash_sale else JournalType.CREDIT_SALE,
        reference=sale.invoice_number or f"INV-{sequence}",
        lines=(
            JournalLine(ACCOUNT_NAMES[debit_account], debit=amount),
            JournalLine(ACCOUNT_NAMES[AccountCode.SALES_REVENUE], credit=amount),
            JournalLine(ACCOUNT_NAMES[AccountCode.COST_OF_GOODS_SOLD], debit=cost),
            JournalLine(ACCOUNT_NAMES[AccountCode.INVENTORY], credit=cost),
        ),
    )


def _purchase_entry(movement: InventoryMovement, index: int, dates: DateResolver) -> JournalEntry:
    price = movement.unit_price if movement.unit_price is not None else movement.purchase_price
    amount = movement.quantity * (price or ZERO)
    paid = movement.payment_status == PaymentStatus.PAID.value
    credit_account = AccountCode.CASH if paid else AccountCode.ACCOUNTS_PAYABLE
    sequence = movement.movement_id or str(index + 1)
    return JournalEntry(
        entry_id=f"JE-PURCH-{_pad(sequence)}",
        date=dates.movement_date(movement),
        type=JournalType.INVENTORY_PURCHASE,
        reference=f"MOV-{sequence}",
        lines=(
            JournalLine(ACCOUNT_NAMES[AccountCode.INVENTORY], debit=amount),
            JournalLine(ACCOUNT_NAMES[credit_account], credit=amount),
        ),
    )


def _payment_entry(supplier: SupplierRecord, index: int, dates: DateResolver) -> JournalEntry:
    sequence = supplier.supplier_id or supplier.name or str(index + 1)
    return JournalEntry(
        entry_id=f"JE-PAY-{_pad(sequence)}",
        date=dates.payment_date(supplier),
        type=JournalType.SUPPLIER_PAYMENT,
        reference=f"PAY-{supplier.name or sequence}",
        lines=(
            JournalLine(ACCOUNT_NAMES[AccountCode.ACCOUNTS_PAYABLE], debit=supplier.total_paid),
            JournalLine(ACCOUNT_NAMES[AccountCode.CASH], credit=supplier.total_paid),
        ),
    )


def synthesize_journal(
    sales: Any,
    inventory: Any,
    suppliers: Any,
    *,
    dates: Optional[DateResolver] = None,
) -> Tuple[JournalEntry, ...]:
    """Synthesize posted journal entries, newest first.

    The first five sales (input order) each post revenue and cost of goods
    sold; the first five inbound movements post an inventory purchase
    against cash or payables; the first three suppliers with payments post
    a settlement of payables. Every entry balances by construction.

    Entries are sorted by date descending with ties kept in emission order.
    Entries without a date (``EXCLUDE`` policy) sort last.

    Args:
        sales (Any): Sales, normally already date filtered.
        inventory (Any): Inventory movements; only ``IN`` movements post.
        suppliers (Any): Supplier records; only those with ``total_paid > 0``
            post.
        dates (DateResolver | None): Shared resolver for missing dates.

    Returns:
        tuple[JournalEntry, ...]: The synthesized entries.
    """

    sales = data_manager.coerce_records(sales, Endpoint.SALES)
    inventory = data_manager.coerce_records(inventory, Endpoint.INVENTORY)
    suppliers = data_manager.coerce_records(suppliers, Endpoint.SUPPLIERS)
    dates = dates or DateResolver()

    entries: List[JournalEntry] = [
        _sale_entry(sale, index, dates) for index, sale in enumerate(sales[:SALE_JOURNAL_LIMIT])
    ]

    inbound = [movement for movement in inventory if movement.movement_type == MovementType.IN.value]
    entries.extend(
        _purchase_entry(movement, index, dates)
        for index, movement in enumerate(inbound[:PURCHASE_JOURNAL_LIMIT])
    )

    paying = [supplier for supplier in suppliers if supplier.total_paid > ZERO]
    entries.extend(
        _payment_entry(supplier, index, dates)
        for index, supplier in enumerate(paying[:PAYMENT_JOURNAL_LIMIT])
    )

    ordered = sorted(
        entries,
        key=lambda entry: (entry.date is not None, entry.date or datetime.min),
        reverse=True,
    )
    log.debug("Synthesized %d journal entries", len(ordered))
    return tuple(ordered)


def build_monthly_series(
    sales: Any,
    total_operating_expenses: Decimal = ZERO,
    *,
    month_order: MonthOrder = MonthOrder.FIRST_SEEN,
    dates: Optional[DateResolver] = None,
) -> Tuple[MonthlyProfitPoint, ...]:
    """Bucket sales by short month name into a profit trend.

    Buckets are keyed by the locale's abbreviated month name only, so the
    same month of different years shares a bucket. Each bucket gets a flat
    twelfth of the operating expenses. With ``FIRST_SEEN`` ordering buckets
    follow the first appearance of their month in ``sales``;
    ``CHRONOLOGICAL`` orders them January to December.

    Args:
        sales (Any): Sales to bucket.
        total_operating_expenses (Decimal): Yearly operating expenses.
        month_order (MonthOrder): Bucket ordering.
        dates (DateResolver | None): Shared resolver for missing dates.

    Returns:
        tuple[MonthlyProfitPoint, ...]: One point per month present.
    """

    sales = data_manager.coerce_records(sales, Endpoint.SALES)
    dates = dates or DateResolver()

    buckets: Dict[str, Dict[str, Any]] = {}
    for sale in sales:
        moment = dates.sale_date(sale)
        if moment is None:
            continue
        key = moment.strftime("%b")
        bucket = buckets.setdefault(key, {"number": moment.month, "sales": ZERO, "cogs": ZERO})
        bucket["sales"] += sale.total_amount
        bucket["cogs"] += _cogs(sale.total_amount)

    ordered = list(buckets.items())
    if month_order is MonthOrder.CHRONOLOGICAL:
        ordered.sort(key=lambda item: item[1]["number"])

    monthly_expense = Decimal(total_operating_expenses) / MONTHS_PER_YEAR
    return tuple(
        MonthlyProfitPoint(
            month=key,
            sales=bucket["sales"],
            cogs=bucket["cogs"],
            expenses=monthly_expense,
            profit=bucket["sales"] - bucket["cogs"] - monthly_expense,
        )
        for key, bucket in ordered
    )


def _margin(numerator: Decimal, revenue: Decimal) -> str:
    if revenue <= ZERO:
        return "0.0"
    percent = (numerator / revenue * HUNDRED).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)
    return f"{percent:.1f}"


def compute_metrics(chart_of_accounts: Optional[ChartOfAccounts]) -> FinancialMetrics:
    """Reduce a chart of accounts to the dashboard metrics.

    Margins are ``"0.0"`` when there is no revenue.
    """

    chart = chart_of_accounts or ChartOfAccounts()
    cogs_code = AccountCode.COST_OF_GOODS_SOLD.value

    def balance(code: AccountCode) -> Decimal:
        account = chart.find(code)
        return account.balance if account is not None else ZERO

    total_revenue = _sum(account.balance for account in chart.income)
    total_cogs = balance(AccountCode.COST_OF_GOODS_SOLD)
    total_expenses = _sum(account.balance for account in chart.expenses if account.code != cogs_code)
    gross_profit = total_revenue - total_cogs
    net_profit = gross_profit - total_expenses

    return FinancialMetrics(
        total_revenue=total_revenue,
        total_cogs=total_cogs,
        total_expenses=total_expenses,
        gross_profit=gross_profit,
        net_profit=net_profit,
        gross_margin=_margin(gross_profit, total_revenue),
        net_margin=_margin(net_profit, total_revenue),
        total_assets=_sum(account.balance for account in chart.assets),
        total_liabilities=_sum(account.balance for account in chart.liabilities),
        total_equity=_sum(account.balance for account in chart.equity),
        cash_balance=balance(AccountCode.CASH),
        bank_balance=balance(AccountCode.BANK),
    )


def build_trial_balance(chart_of_accounts: Optional[ChartOfAccounts]) -> TrialBalance:
    """List every account of the chart in its normal balance column.

    Current assets, cost of goods sold and operating expenses carry debit
    balances; liabilities, equity and revenue carry credit balances. Rows
    follow the chart's category order.

    Args:
        chart_of_accounts (ChartOfAccounts | None): Chart to list; an empty
            chart yields no rows and zero totals.

    Returns:
        TrialBalance: Rows plus the debit and credit column totals.
    """

    chart = chart_of_accounts or ChartOfAccounts()
    rows = []
    for accounts in chart.categories().values():
        for account in accounts:
            if account.type in DEBIT_ACCOUNT_TYPES:
                rows.append(TrialBalanceRow(account.code, account.name, account.type, debit=account.balance))
            else:
                rows.append(TrialBalanceRow(account.code, account.name, account.type, credit=account.balance))

    trial_balance = TrialBalance(
        rows=tuple(rows),
        total_debit=_sum(row.debit for row in rows),
        total_credit=_sum(row.credit for row in rows),
    )
    log.debug(
        "Trial balance: debit=%s credit=%s",
        trial_balance.total_debit,
        trial_balance.total_credit,
    )
    return trial_balance


def _collections_from(source: Any) -> Collections:
    if isinstance(source, Collections):
        return source
    if isinstance(source, Mapping):
        return Collections(
            sales=data_manager.coerce_records(source.get("sales"), Endpoint.SALES),
            inventory=data_manager.coerce_records(source.get("inventory"), Endpoint.INVENTORY),
            customers=data_manager.coerce_records(source.get("customers"), Endpoint.CUSTOMERS),
            suppliers=data_manager.coerce_records(source.get("suppliers"), Endpoint.SUPPLIERS),
        )
    if source is not None:
        log.warning("Ignoring report source of type %s", type(source).__name__)
    return Collections()


def build_accounting_snapshot(
    source: Union[Collections, Mapping[str, Any], None] = None,
    *,
    date_filter: Optional[DateFilter] = None,
    ledger: Optional[LedgerInputs] = None,
    options: Optional[ReportOptions] = None,
) -> AccountingSnapshot:
    """Run the full aggregation pipeline over fully loaded collections.

    Only sales are date filtered; inventory, customers and suppliers always
    contribute in full so stock and payable balances stay whole under a
    date-scoped income view. Nothing is cached: each call rebuilds every
    derived structure from ``source``.

    Args:
        source (Collections | Mapping | None): The four collections, either as
            :class:`data_manager.Collections` or as a mapping with ``sales``,
            ``inventory``, ``customers`` and ``suppliers`` keys. ``None``
            yields the zeroed snapshot.
        date_filter (DateFilter | None): Sales scope; ALL when omitted.
        ledger (LedgerInputs | None): Placeholder balances; zero when omitted.
        options (ReportOptions | None): Missing-date policy, reference time
            and month ordering.

    Returns:
        AccountingSnapshot: Immutable report.
    """

    collections = _collections_from(source)
    date_filter = date_filter or DateFilter()
    ledger = ledger or LedgerInputs()
    options = options or ReportOptions()
    dates = DateResolver(options)

    sales = filter_by_date(collections.sales, date_filter, dates=dates)
    chart = build_accounts(
        sales,
        collections.inventory,
        collections.customers,
        collections.suppliers,
        ledger=ledger,
    )
    journal = synthesize_journal(sales, collections.inventory, collections.suppliers, dates=dates)
    monthly = build_monthly_series(
        sales,
        chart.totals.total_operating_expenses,
        month_order=options.month_order,
        dates=dates,
    )
    metrics = compute_metrics(chart)

    snapshot = AccountingSnapshot(
        chart_of_accounts=chart,
        journal_entries=journal,
        monthly_profit_data=monthly,
        raw_counts=RawCounts(
            total_sales=len(sales),
            total_inventory_items=len(collections.inventory),
            total_customers=len(collections.customers),
            total_suppliers=len(collections.suppliers),
        ),
        financial_summary=FinancialSummary(
            metrics=metrics,
            totals=chart.totals,
            period=date_filter.describe(),
            missing_date_records=dates.fallback_count,
        ),
    )
    log.info(
        "Built accounting snapshot for %s: %d sales, %d journal entries, %d months",
        date_filter.describe(),
        len(sales),
        len(journal),
        len(monthly),
    )
    return snapshot


def empty_snapshot(ledger: Optional[LedgerInputs] = None) -> AccountingSnapshot:
    """Return the zeroed snapshot shown when the source data is unavailable."""

    return build_accounting_snapshot(None, ledger=ledger)


# ---------------------------------------------------------------------------
# Report export
# ---------------------------------------------------------------------------


def snapshot_sheets(snapshot: AccountingSnapshot) -> Dict[str, Tuple[Sequence[str], List[List[object]]]]:
    """Lay a snapshot out as worksheet tables for :func:`data_manager.write_report_workbook`."""

    account_rows = [
        [category.title(), account.code, account.name, account.type.value, account.balance]
        for category, accounts in snapshot.chart_of_accounts.categories().items()
        for account in accounts
    ]
    trial_balance = snapshot.trial_balance
    trial_rows: List[List[object]] = [
        [row.code, row.name, row.type.value, row.debit, row.credit] for row in trial_balance.rows
    ]
    trial_rows.append(["", "Total", "", trial_balance.total_debit, trial_balance.total_credit])
    journal_rows = [
        [entry.entry_id, entry.date, entry.type.value, entry.reference, line.account, line.debit, line.credit, entry.status]
        for entry in snapshot.journal_entries
        for line in entry.lines
    ]
    monthly_rows = [
        [point.month, point.sales, point.cogs, point.expenses, point.profit]
        for point in snapshot.monthly_profit_data
    ]
    summary = snapshot.financial_summary
    summary_rows: List[List[object]] = [["Period", summary.period]]
    summary_rows.extend([key, value] for key, value in vars(summary.totals).items())
    summary_rows.extend([key, value] for key, value in vars(summary.metrics).items())
    summary_rows.append(["missing_date_records", summary.missing_date_records])

    return {
        ReportSheet.ACCOUNTS.value: (["Category", "Code", "Name", "Type", "Balance"], account_rows),
        ReportSheet.TRIAL_BALANCE.value: (["Code", "Name", "Type", "Debit", "Credit"], trial_rows),
        ReportSheet.JOURNAL.value: (
            ["EntryID", "Date", "Type", "Reference", "Account", "Debit", "Credit", "Status"],
            journal_rows,
        ),
        ReportSheet.MONTHLY.value: (["Month", "Sales", "COGS", "Expenses", "Profit"], monthly_rows),
        ReportSheet.SUMMARY.value: (["Metric", "Value"], summary_rows),
    }


def export_snapshot(snapshot: AccountingSnapshot, destination: Path) -> Path:
    """Write ``snapshot`` to a report workbook at ``destination``."""

    written = data_manager.write_report_workbook(snapshot_sheets(snapshot), destination)
    log.info("Exported accounting report to '%s'", written)
    return written


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration plus the loader that fetches fresh collections."""

    settings: data_manager.ConfigSettings
    loader: CollectionLoader

    @property
    def ledger(self) -> LedgerInputs:
        return self.settings.ledger

    def report_options(self, now: Optional[datetime] = None) -> ReportOptions:
        return ReportOptions(
            now=now,
            missing_dates=self.settings.missing_dates,
            month_order=self.settings.month_order,
        )


def workbook_loader(data_file: Path) -> CollectionLoader:
    """Return a loader that re-reads the input workbook on every call."""

    def load() -> Collections:
        workbook = data_manager.open_workbook(data_file)
        try:
            collections = data_manager.load_workbook_collections(workbook)
        finally:
            workbook.close()
        log.info("Loaded collections from workbook '%s'", data_file)
        return collections

    return load


def json_loader(directory: Path) -> CollectionLoader:
    """Return a loader that re-reads the JSON payload dumps on every call."""

    def load() -> Collections:
        return data_manager.load_json_collections(directory)

    return load


def load_runtime_context(config_path: Optional[Path] = None, *, json_dir: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and bind a collection loader.

    The loader reads the workbook named by ``DataFile`` unless ``json_dir``
    points at a folder of JSON payload dumps. Nothing is read until the
    loader is called.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file; otherwise the data layer searches upward from
            the working directory.
        json_dir (Path | None): Folder with ``<endpoint>.json`` dumps to use
            instead of the workbook.

    Returns:
        RuntimeContext: Settings plus loader.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    loader = json_loader(json_dir) if json_dir is not None else workbook_loader(settings.data_file)
    log.info("Loaded runtime context from '%s'", resolved_config)
    return RuntimeContext(settings=settings, loader=loader)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject configurations written for another schema version.

    Raises:
        RuntimeError: If the declared schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def generate_report(
    context: RuntimeContext,
    date_filter: Optional[DateFilter] = None,
    *,
    now: Optional[datetime] = None,
) -> AccountingSnapshot:
    """Load fresh collections through ``context`` and build a snapshot."""

    collections = context.loader()
    return build_accounting_snapshot(
        collections,
        date_filter=date_filter,
        ledger=context.ledger,
        options=context.report_options(now),
    )
