"""Shared pytest fixtures and utilities for the accounting report tests."""

from __future__ import annotations

import json
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from accounting_reports import constants, core_logic  # noqa: E402
from accounting_reports.setup_excel import create_input_workbook  # noqa: E402

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CompanyName = {company_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Ledger]\n"
    "CashBalance = {cash_balance}\n"
    "RentExpense = {rent_expense}\n\n"
    "[Reports]\n"
    "MissingDates = {missing_dates}\n"
    "MonthOrder = {month_order}\n"
    "ExportFile = {export_file}\n"
)

SAMPLE_ROWS: Mapping[str, Sequence[Mapping[str, Any]]] = {
    constants.SheetName.SALES.value: [
        {
            "id": 1,
            "invoiceNumber": "INV-2024-001",
            "saleDate": datetime(2024, 1, 10, 9, 30),
            "totalAmount": 1000,
            "paymentStatus": "PAID",
            "paymentMethod": "CASH",
        },
        {
            "id": 2,
            "saleDate": datetime(2024, 2, 5, 14, 0),
            "totalAmount": 500,
            "paymentStatus": "PENDING",
            "remainingAmount": 500,
            "paymentMethod": "CREDIT_CHECK",
        },
        {
            "id": 3,
            "saleDate": datetime(2023, 12, 20, 10, 0),
            "totalAmount": 200,
            "paymentStatus": "PAID",
            "paymentMethod": "BANK_TRANSFER",
        },
    ],
    constants.SheetName.INVENTORY.value: [
        {
            "id": 10,
            "movementType": "IN",
            "quantity": 20,
            "unitPrice": 25,
            "paymentStatus": "PAID",
            "date": datetime(2024, 1, 2),
        },
        {
            "id": 11,
            "movementType": "OUT",
            "quantity": 4,
            "unitPrice": 25,
            "date": datetime(2024, 1, 10),
        },
    ],
    constants.SheetName.CUSTOMERS.value: [
        {"id": 100, "name": "Acme Stores", "outstandingBalance": 250},
    ],
    constants.SheetName.SUPPLIERS.value: [
        {
            "id": 200,
            "name": "Global Parts",
            "outstandingBalance": 300,
            "totalPurchases": 800,
            "totalPaid": 500,
            "lastPaymentDate": datetime(2024, 1, 20),
        },
    ],
}


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    export_path: Path


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def now() -> datetime:
    """Reference moment used wherever a report needs "now"."""

    return FIXED_NOW


@pytest.fixture
def options(now: datetime) -> core_logic.ReportOptions:
    return core_logic.ReportOptions(now=now)


@pytest.fixture
def sample_rows() -> Mapping[str, Sequence[Mapping[str, Any]]]:
    return SAMPLE_ROWS


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an input workbook in a temp folder."""

    def _create_workbook(
        *,
        rows: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
        subdir: str | None = None,
        filename: str = "accounting_input.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_input_workbook(base_dir / filename, rows=rows, overwrite=True)

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        rows: Mapping[str, Sequence[Mapping[str, Any]]] | None = SAMPLE_ROWS,
        make_relative: bool = False,
        company_name: str = "Test Trading",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        cash_balance: str = "0",
        rent_expense: str = "0",
        missing_dates: str = "now",
        month_order: str = "first-seen",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(rows=rows, subdir=bundle_dir.name)
        export_path = bundle_dir / "reports" / "report.xlsx"
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=workbook_path.name if make_relative else str(workbook_path),
                company_name=company_name,
                schema_version=schema_version,
                cash_balance=cash_balance,
                rent_expense=rent_expense,
                missing_dates=missing_dates,
                month_order=month_order,
                export_file=str(export_path),
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            export_path=export_path,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def runtime_context(config_bundle: ConfigBundle) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_bundle.config_path)
    core_logic.ensure_schema_version(context)
    return context


def _json_ready(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@pytest.fixture
def json_dir(tmp_path: Path) -> Path:
    """Folder of API payload dumps mirroring ``SAMPLE_ROWS``.

    Sales are wrapped in a ``data`` envelope, the rest are bare arrays.
    """

    directory = tmp_path / "payloads"
    directory.mkdir()
    by_endpoint = {
        "sales": {"data": SAMPLE_ROWS[constants.SheetName.SALES.value]},
        "inventory": SAMPLE_ROWS[constants.SheetName.INVENTORY.value],
        "customers": SAMPLE_ROWS[constants.SheetName.CUSTOMERS.value],
        "suppliers": SAMPLE_ROWS[constants.SheetName.SUPPLIERS.value],
    }
    for endpoint, payload in by_endpoint.items():
        (directory / f"{endpoint}.json").write_text(
            json.dumps(payload, default=_json_ready), encoding="utf-8"
        )
    return directory


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Run every test from an empty folder so no stray config.ini is found."""

    work_dir = tmp_path / "cwd"
    work_dir.mkdir()
    monkeypatch.chdir(work_dir)
    yield
