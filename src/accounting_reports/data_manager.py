"""Data access layer for the accounting reports.

This module reads the four source collections (sales, inventory movements,
customers, suppliers) and turns them into typed, immutable records. Report
aggregation belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Record decoding: one explicit decoder per endpoint, tolerant of missing or
   malformed fields.
3. Sources: loading the collections from the input workbook or from JSON
   dumps of the API responses.
4. Report persistence: writing tabular report sheets to a new workbook.
"""


from __future__ import annotations

import configparser
import json
import zipfile
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Endpoint, MissingDatePolicy, MonthOrder, SheetName


CONFIG_FILE_NAME = "config.ini"
ENVELOPE_KEY = "data"

# Header rows of the input workbook mirror the API field names.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.SALES.value: [
        "id",
        "invoiceNumber",
        "saleDate",
        "createdAt",
        "totalAmount",
        "paymentStatus",
        "remainingAmount",
        "paymentMethod",
        "date",
    ],
    SheetName.INVENTORY.value: [
        "id",
        "movementType",
        "quantity",
        "unitPrice",
        "purchasePrice",
        "paymentStatus",
        "date",
        "createdAt",
    ],
    SheetName.CUSTOMERS.value: [
        "id",
        "name",
        "outstandingBalance",
    ],
    SheetName.SUPPLIERS.value: [
        "id",
        "name",
        "outstandingBalance",
        "totalPurchases",
        "totalPaid",
        "lastPaymentDate",
    ],
}

ZERO = Decimal("0")


class DataSourceError(Exception):
    """Raised when a source collection cannot be read at all."""


@dataclass(frozen=True)
class LedgerInputs:
    """Balances that a future ledger integration will supply.

    Every figure defaults to zero, which is what the reports show until real
    cash, bank and operating expense balances are available.
    """

    cash_balance: Decimal = ZERO
    bank_balance: Decimal = ZERO
    rent_expense: Decimal = ZERO
    utilities_expense: Decimal = ZERO
    salaries_expense: Decimal = ZERO

    @property
    def total_operating_expenses(self) -> Decimal:
        return self.rent_expense + self.utilities_expense + self.salaries_expense


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    ledger: LedgerInputs = field(default_factory=LedgerInputs)
    missing_dates: MissingDatePolicy = MissingDatePolicy.NOW
    month_order: MonthOrder = MonthOrder.FIRST_SEEN
    export_file: Optional[Path] = None


@dataclass(frozen=True)
class SaleRecord:
    """A sale as returned by the ``sales`` endpoint."""

    sale_id: Optional[str] = None
    total_amount: Decimal = ZERO
    payment_status: Optional[str] = None
    remaining_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    sale_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    invoice_number: Optional[str] = None
    date: Optional[datetime] = None


@dataclass(frozen=True)
class InventoryMovement:
    """A stock movement as returned by the ``inventory`` endpoint."""

    movement_id: Optional[str] = None
    movement_type: Optional[str] = None
    quantity: Decimal = ZERO
    unit_price: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    payment_status: Optional[str] = None
    date: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CustomerRecord:
    """A customer and the balance they still owe."""

    customer_id: Optional[str] = None
    name: str = ""
    outstanding_balance: Decimal = ZERO


@dataclass(frozen=True)
class SupplierRecord:
    """A supplier with the balance owed to it and its payment history."""

    supplier_id: Optional[str] = None
    name: str = ""
    outstanding_balance: Decimal = ZERO
    total_purchases: Decimal = ZERO
    total_paid: Decimal = ZERO
    last_payment_date: Optional[datetime] = None


@dataclass(frozen=True)
class Collections:
    """The four fully materialized collections a report is built from."""

    sales: Tuple[SaleRecord, ...] = ()
    inventory: Tuple[InventoryMovement, ...] = ()
    customers: Tuple[CustomerRecord, ...] = ()
    suppliers: Tuple[SupplierRecord, ...] = ()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the reports.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
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

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration.
            Required entries are validated by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = ((base_path or Path.cwd()) / path).resolve()
    return path


def _config_decimal(parser: configparser.ConfigParser, option: str) -> Decimal:
    raw = parser.get("Ledger", option, fallback="0")
    try:
        return Decimal(raw.strip() or "0")
    except InvalidOperation as exc:
        raise ValueError(f"Ledger.{option} is not a number: {raw!r}") from exc


def parse_ledger_inputs(parser: configparser.ConfigParser) -> LedgerInputs:
    """Read the optional ``[Ledger]`` section into :class:`LedgerInputs`.

    Missing options (or a missing section) fall back to zero.

    Raises:
        ValueError: If an option is present but not a decimal number.
    """

    return LedgerInputs(
        cash_balance=_config_decimal(parser, "CashBalance"),
        bank_balance=_config_decimal(parser, "BankBalance"),
        rent_expense=_config_decimal(parser, "RentExpense"),
        utilities_expense=_config_decimal(parser, "UtilitiesExpense"),
        salaries_expense=_config_decimal(parser, "SalariesExpense"),
    )


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Ledger]`` and ``[Reports]`` are
    optional and default to zero balances, the ``now`` missing-date policy,
    first-seen month ordering and no default export file. Relative paths are
    anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative
            ``DataFile`` and ``ExportFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If an optional entry holds an unsupported value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    missing_raw = parser.get("Reports", "MissingDates", fallback=MissingDatePolicy.NOW.value)
    order_raw = parser.get("Reports", "MonthOrder", fallback=MonthOrder.FIRST_SEEN.value)
    export_raw = parser.get("Reports", "ExportFile", fallback="").strip()

    try:
        missing_dates = MissingDatePolicy(missing_raw.strip().lower())
        month_order = MonthOrder(order_raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Invalid [Reports] setting: {exc}") from exc

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, base_path),
        company_name=company_name,
        schema_version=schema_version,
        ledger=parse_ledger_inputs(parser),
        missing_dates=missing_dates,
        month_order=month_order,
        export_file=_resolve_path(export_raw, base_path) if export_raw else None,
    )


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def to_decimal(value: Any) -> Decimal:
    """Coerce a raw numeric field into a finite :class:`Decimal`.

    ``None``, blanks, booleans, unparsable text and non-finite values all
    become zero so a malformed field never rejects the whole record.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return ZERO
    return number if number.is_finite() else ZERO


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    """Like :func:`to_decimal` but keeps absent fields as ``None``."""

    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value)


def to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_datetime(moment: datetime) -> datetime:
    """Drop timezone information, converting aware values to UTC first."""

    if moment.tzinfo is not None:
        return moment.astimezone(UTC).replace(tzinfo=None)
    return moment


def parse_datetime(value: Any) -> Optional[datetime]:
    """Coerce a raw date field into a naive :class:`datetime`.

    Accepts ``datetime`` and ``date`` objects (as produced by openpyxl) and
    ISO 8601 strings, including a trailing ``Z``. Anything else yields
    ``None`` so the caller's missing-date policy applies.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return normalize_datetime(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return normalize_datetime(datetime.fromisoformat(text))
        except ValueError:
            log.debug("Unparsable date value %r", value)
            return None
    return None


# ---------------------------------------------------------------------------
# Record decoders
# ---------------------------------------------------------------------------


def _fields(raw: Any, kind: str) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    log.warning("Non-object %s item %r decoded with default values", kind, raw)
    return {}


def decode_sale(raw: Any) -> SaleRecord:
    """Decode one ``sales`` item (camelCase API keys) into a :class:`SaleRecord`."""

    item = _fields(raw, "sale")
    return SaleRecord(
        sale_id=to_optional_str(item.get("id")),
        total_amount=to_decimal(item.get("totalAmount")),
        payment_status=to_optional_str(item.get("paymentStatus")),
        remaining_amount=to_optional_decimal(item.get("remainingAmount")),
        payment_method=to_optional_str(item.get("paymentMethod")),
        sale_date=parse_datetime(item.get("saleDate")),
        created_at=parse_datetime(item.get("createdAt")),
        invoice_number=to_optional_str(item.get("invoiceNumber")),
        date=parse_datetime(item.get("date")),
    )


def decode_movement(raw: Any) -> InventoryMovement:
    """Decode one ``inventory`` item into an :class:`InventoryMovement`."""

    item = _fields(raw, "inventory")
    return InventoryMovement(
        movement_id=to_optional_str(item.get("id")),
        movement_type=to_optional_str(item.get("movementType")),
        quantity=to_decimal(item.get("quantity")),
        unit_price=to_optional_decimal(item.get("unitPrice")),
        purchase_price=to_optional_decimal(item.get("purchasePrice")),
        payment_status=to_optional_str(item.get("paymentStatus")),
        date=parse_datetime(item.get("date")),
        created_at=parse_datetime(item.get("createdAt")),
    )


def decode_customer(raw: Any) -> CustomerRecord:
    """Decode one ``customers`` item into a :class:`CustomerRecord`."""

    item = _fields(raw, "customer")
    return CustomerRecord(
        customer_id=to_optional_str(item.get("id")),
        name=to_optional_str(item.get("name")) or "",
        outstanding_balance=to_decimal(item.get("outstandingBalance")),
    )


def decode_supplier(raw: Any) -> SupplierRecord:
    """Decode one ``suppliers`` item into a :class:`SupplierRecord`."""

    item = _fields(raw, "supplier")
    return SupplierRecord(
        supplier_id=to_optional_str(item.get("id")),
        name=to_optional_str(item.get("name")) or "",
        outstanding_balance=to_decimal(item.get("outstandingBalance")),
        total_purchases=to_decimal(item.get("totalPurchases")),
        total_paid=to_decimal(item.get("totalPaid")),
        last_payment_date=parse_datetime(item.get("lastPaymentDate")),
    )


DECODERS: Mapping[Endpoint, Callable[[Any], Any]] = {
    Endpoint.SALES: decode_sale,
    Endpoint.INVENTORY: decode_movement,
    Endpoint.CUSTOMERS: decode_customer,
    Endpoint.SUPPLIERS: decode_supplier,
}

RECORD_TYPES: Mapping[Endpoint, type] = {
    Endpoint.SALES: SaleRecord,
    Endpoint.INVENTORY: InventoryMovement,
    Endpoint.CUSTOMERS: CustomerRecord,
    Endpoint.SUPPLIERS: SupplierRecord,
}


def coerce_records(collection: Any, endpoint: Endpoint) -> Tuple[Any, ...]:
    """Turn an arbitrary collection into a tuple of typed records.

    Records that already have the endpoint's dataclass type pass through;
    mappings (and malformed items) go through the endpoint decoder. ``None``
    and anything that is not a list or tuple become an empty tuple, since
    the aggregation must never fail on the shape of its inputs.

    Args:
        collection (Any): Candidate collection, usually a list of records or
            of raw API mappings.
        endpoint (Endpoint): Endpoint the collection belongs to.

    Returns:
        tuple: Typed records in input order.
    """

    if collection is None:
        return ()
    if not isinstance(collection, (list, tuple)):
        log.warning(
            "Ignoring %s collection of type %s; expected a sequence",
            endpoint.value,
            type(collection).__name__,
        )
        return ()

    record_type = RECORD_TYPES[endpoint]
    decoder = DECODERS[endpoint]
    return tuple(item if isinstance(item, record_type) else decoder(item) for item in collection)


def decode_payload(payload: Any, endpoint: Endpoint) -> List[Any]:
    """Unwrap an endpoint response into its list of raw items.

    Every endpoint answers either with a bare JSON array or with an object
    whose array lives under ``"data"``. ``null`` decodes to an empty list;
    any other shape is logged and also decodes to an empty list.

    Args:
        payload (Any): Parsed JSON body.
        endpoint (Endpoint): Endpoint that produced ``payload``.

    Returns:
        list[Any]: Raw items, not yet decoded into records.
    """

    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get(ENVELOPE_KEY), list):
        return payload[ENVELOPE_KEY]

    log.warning(
        "Unexpected %s payload shape (%s); treating as empty",
        endpoint.value,
        type(payload).__name__,
    )
    return []


# ---------------------------------------------------------------------------
# JSON source
# ---------------------------------------------------------------------------


def read_json_payload(path: Path) -> Any:
    """Read a JSON response dump from disk.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        DataSourceError: If the file is not valid JSON.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Payload file not found: {path}")
    try:
        with path.open(encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError as exc:
        raise DataSourceError(f"{path.name} is not valid JSON: {exc}") from exc


def load_json_collections(directory: Path) -> Collections:
    """Load ``<endpoint>.json`` dumps from ``directory`` into :class:`Collections`.

    Args:
        directory (Path): Folder holding ``sales.json``, ``inventory.json``,
            ``customers.json`` and ``suppliers.json``.

    Returns:
        Collections: Decoded records for the four endpoints.

    Raises:
        FileNotFoundError: If one of the dumps is missing.
        DataSourceError: If one of the dumps is not valid JSON.
    """

    directory = Path(directory).expanduser().resolve()
    decoded: Dict[Endpoint, Tuple[Any, ...]] = {}
    for endpoint in Endpoint:
        payload = read_json_payload(directory / f"{endpoint.value}.json")
        decoded[endpoint] = coerce_records(decode_payload(payload, endpoint), endpoint)

    collections = Collections(
        sales=decoded[Endpoint.SALES],
        inventory=decoded[Endpoint.INVENTORY],
        customers=decoded[Endpoint.CUSTOMERS],
        suppliers=decoded[Endpoint.SUPPLIERS],
    )
    log.info("Loaded JSON collections from '%s'", directory)
    return collections


# ---------------------------------------------------------------------------
# Workbook source
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the input workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the input workbook.

    Returns:
        Workbook: ``openpyxl`` workbook loaded with ``data_only=True`` so
            formula cells yield their cached values.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        DataSourceError: If the file is not a readable workbook.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    try:
        return openpyxl.load_workbook(data_file, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, OSError) as exc:
        log.error("Cannot open workbook '%s': %s", data_file, exc)
        raise DataSourceError(f"{data_file} is not a readable workbook: {exc}") from exc


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Dict[str, Any]]:
    """Yield each populated row of ``sheet_name`` as a header-keyed mapping.

    The header row is read from the sheet itself, so column order does not
    matter; cells under blank headers are ignored and fully empty rows are
    skipped.

    Args:
        workbook (Workbook): Workbook holding the sheet.
        sheet_name (str): Worksheet title.

    Yields:
        dict[str, Any]: Mapping of header title to raw cell value.

    Raises:
        KeyError: If the workbook has no sheet called ``sheet_name``.
    """

    if sheet_name not in workbook.sheetnames:
        raise KeyError(f"Worksheet not found: {sheet_name}")

    sheet = workbook[sheet_name]
    rows = sheet.iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return
    titles = [str(cell).strip() if cell is not None else None for cell in header]
    for raw in rows:
        # skip fully empty rows
        if not any(cell is not None for cell in raw):
            continue
        yield {title: value for title, value in zip(titles, raw) if title}


SHEET_ENDPOINTS: Mapping[SheetName, Endpoint] = {
    SheetName.SALES: Endpoint.SALES,
    SheetName.INVENTORY: Endpoint.INVENTORY,
    SheetName.CUSTOMERS: Endpoint.CUSTOMERS,
    SheetName.SUPPLIERS: Endpoint.SUPPLIERS,
}


def load_workbook_collections(workbook: Workbook) -> Collections:
    """Decode the four input sheets into :class:`Collections`.

    Args:
        workbook (Workbook): Workbook containing the ``Sales``, ``Inventory``,
            ``Customers`` and ``Suppliers`` sheets.

    Returns:
        Collections: Records in sheet order.

    Raises:
        KeyError: If one of the sheets is missing.
    """

    decoded: Dict[Endpoint, Tuple[Any, ...]] = {}
    for sheet, endpoint in SHEET_ENDPOINTS.items():
        decoded[endpoint] = coerce_records(list(iter_sheet_rows(workbook, sheet.value)), endpoint)
        log.debug("Read %d rows from sheet '%s'", len(decoded[endpoint]), sheet.value)

    return Collections(
        sales=decoded[Endpoint.SALES],
        inventory=decoded[Endpoint.INVENTORY],
        customers=decoded[Endpoint.CUSTOMERS],
        suppliers=decoded[Endpoint.SUPPLIERS],
    )


# ---------------------------------------------------------------------------
# Report persistence
# ---------------------------------------------------------------------------


def write_report_workbook(
    sheets: Mapping[str, Tuple[Sequence[str], Iterable[Sequence[object]]]],
    destination: Path,
) -> Path:
    """Write tabular sheets to a new workbook at ``destination``.

    Each entry maps a sheet title to its header and rows. Headers are bold.
    Parent directories are created on demand and an existing file is
    replaced.

    Args:
        sheets (Mapping): ``{title: (headers, rows)}`` in the desired sheet
            order.
        destination (Path): Target ``.xlsx`` path.

    Returns:
        Path: The resolved destination.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for title, (headers, rows) in sheets.items():
        worksheet = workbook.create_sheet(title=title)
        worksheet.append(list(headers))
        for cell in worksheet[1]:
            cell.font = bold_font
        for row in rows:
            worksheet.append(list(row))

    workbook.save(dest)
    return dest
