"""Enumerations and fixed figures shared by the reporting layers.

Account codes, sheet names and the cost-of-goods ratio live here so the data
layer, the aggregation functions and the CLI agree on a single set of
identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Schema version the input workbook and config.ini must declare.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Cost of goods sold is assumed to be a flat share of each sale.
COGS_RATIO = Decimal("0.6")

SALE_JOURNAL_LIMIT = 5
PURCHASE_JOURNAL_LIMIT = 5
PAYMENT_JOURNAL_LIMIT = 3

POSTED_STATUS = "Posted"
MONTHS_PER_YEAR = 12


class FilterType(str, Enum):
    """Date scopes selectable for the income statement view."""

    ALL = "ALL"
    YEARLY = "YEARLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


class PaymentStatus(str, Enum):
    """Payment states reported by the sales and inventory endpoints."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    """Payment methods of interest to the journal synthesizer."""

    CASH = "CASH"


class MovementType(str, Enum):
    """Direction of an inventory movement."""

    IN = "IN"
    OUT = "OUT"


class AccountType(str, Enum):
    """Account classification shown next to each balance."""

    CURRENT_ASSET = "Current Asset"
    CURRENT_LIABILITY = "Current Liability"
    EQUITY = "Equity"
    REVENUE = "Revenue"
    COGS = "COGS"
    OPERATING = "Operating"


class AccountCode(str, Enum):
    """Stable four digit codes of the fixed chart of accounts."""

    CASH = "1010"
    BANK = "1020"
    ACCOUNTS_RECEIVABLE = "1030"
    INVENTORY = "1040"
    ACCOUNTS_PAYABLE = "2010"
    OWNERS_EQUITY = "3010"
    RETAINED_EARNINGS = "3020"
    SALES_REVENUE = "4010"
    OTHER_INCOME = "4020"
    COST_OF_GOODS_SOLD = "5010"
    RENT_EXPENSE = "5020"
    UTILITIES = "5030"
    SALARIES = "5040"


ACCOUNT_NAMES: dict[AccountCode, str] = {
    AccountCode.CASH: "Cash",
    AccountCode.BANK: "Bank Account",
    AccountCode.ACCOUNTS_RECEIVABLE: "Accounts Receivable",
    AccountCode.INVENTORY: "Inventory",
    AccountCode.ACCOUNTS_PAYABLE: "Accounts Payable",
    AccountCode.OWNERS_EQUITY: "Owner's Equity",
    AccountCode.RETAINED_EARNINGS: "Retained Earnings",
    AccountCode.SALES_REVENUE: "Sales Revenue",
    AccountCode.OTHER_INCOME: "Other Income",
    AccountCode.COST_OF_GOODS_SOLD: "Cost of Goods Sold",
    AccountCode.RENT_EXPENSE: "Rent Expense",
    AccountCode.UTILITIES: "Utilities",
    AccountCode.SALARIES: "Salaries",
}


class JournalType(str, Enum):
    """Labels attached to synthesized journal entries."""

    CASH_SALE = "Cash Sale"
    CREDIT_SALE = "Credit Sale"
    INVENTORY_PURCHASE = "Inventory Purchase"
    SUPPLIER_PAYMENT = "Supplier Payment"


class MissingDatePolicy(str, Enum):
    """How records without a usable date are treated."""

    NOW = "now"
    EXCLUDE = "exclude"


class MonthOrder(str, Enum):
    """Ordering of the monthly profit buckets."""

    FIRST_SEEN = "first-seen"
    CHRONOLOGICAL = "chronological"


class SheetName(str, Enum):
    """Worksheets of the input workbook."""

    SALES = "Sales"
    INVENTORY = "Inventory"
    CUSTOMERS = "Customers"
    SUPPLIERS = "Suppliers"


class ReportSheet(str, Enum):
    """Worksheets written by the report exporter."""

    ACCOUNTS = "Chart of Accounts"
    TRIAL_BALANCE = "Trial Balance"
    JOURNAL = "Journal"
    MONTHLY = "Monthly Profit"
    SUMMARY = "Summary"


class Endpoint(str, Enum):
    """Collections served by the backend, one JSON dump per endpoint."""

    SALES = "sales"
    INVENTORY = "inventory"
    CUSTOMERS = "customers"
    SUPPLIERS = "suppliers"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "COGS_RATIO",
    "SALE_JOURNAL_LIMIT",
    "PURCHASE_JOURNAL_LIMIT",
    "PAYMENT_JOURNAL_LIMIT",
    "POSTED_STATUS",
    "MONTHS_PER_YEAR",
    "FilterType",
    "PaymentStatus",
    "PaymentMethod",
    "MovementType",
    "AccountType",
    "AccountCode",
    "ACCOUNT_NAMES",
    "JournalType",
    "MissingDatePolicy",
    "MonthOrder",
    "SheetName",
    "ReportSheet",
    "Endpoint",
]
