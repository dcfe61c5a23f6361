"""
Report and dashboard builders.

Everything here works on plain sequences of products, transactions and
branches that are already restricted to the caller's branch scope, so the
same code serves the API, the CSV export script and the local store.
"""
import csv
import io
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from config import settings
from date_utils import utc_to_local_date, utc_to_local_datetime
from models import UserRole
from product_utils import is_low_stock, display_stock, days_until_expiry
from schemas import ReportType, ReportInfo, ReportTable, RevenueByDay, TopProduct

PREVIEW_ROW_LIMIT = 50
EXPIRY_RISK_DAYS = 90
COGS_FALLBACK_RATIO = 0.7  # Cost estimate when the sold product no longer exists
GLOBAL_BRANCH_NAME = "Global Enterprise"

ALL_ROLES = [UserRole.PHARMACIST, UserRole.MANAGER, UserRole.OWNER]

REPORT_CATALOG = [
    ReportInfo(
        id=ReportType.DAILY_SALES,
        title="Daily Sales Report",
        description="Detailed breakdown of transactions, payment methods, and cashier activity.",
        roles=ALL_ROLES,
    ),
    ReportInfo(
        id=ReportType.STOCK_LEVELS,
        title="Stock Availability List",
        description="Current inventory status across all categories.",
        roles=ALL_ROLES,
    ),
    ReportInfo(
        id=ReportType.LOW_STOCK,
        title="Low Stock Alerts",
        description="Critical items below minimum threshold requiring reorder.",
        roles=ALL_ROLES,
    ),
    ReportInfo(
        id=ReportType.EXPIRY_RISK,
        title="Expiry Risk Report",
        description="Products expiring within 30, 60, or 90 days.",
        roles=ALL_ROLES,
    ),
    ReportInfo(
        id=ReportType.PROFIT_LOSS,
        title="Profit & Margin Analysis",
        description="COGS, Revenue, and Net Profit margins.",
        roles=[UserRole.MANAGER, UserRole.OWNER],
    ),
    ReportInfo(
        id=ReportType.BRANCH_PERF,
        title="Branch Performance",
        description="Comparative analysis of sales and efficiency across locations.",
        roles=[UserRole.MANAGER, UserRole.OWNER],
    ),
]

_CATALOG_BY_ID = {info.id: info for info in REPORT_CATALOG}


def get_report_info(report_type: ReportType) -> ReportInfo:
    return _CATALOG_BY_ID[report_type]


def reports_for_role(role: UserRole) -> List[ReportInfo]:
    return [info for info in REPORT_CATALOG if role in info.roles]


def _money(value: float) -> str:
    return f"{value:.2f}"


def _local_date(transaction) -> date:
    return utc_to_local_date(transaction.date)


def _daily_sales_row(transaction) -> List[str]:
    """Date and time are both shown in the app timezone"""
    local = utc_to_local_datetime(transaction.date)
    return [
        transaction.id,
        local.date().isoformat(),
        local.strftime("%H:%M:%S"),
        str(len(transaction.items)),
        _money(transaction.total_amount),
        transaction.payment_method.value,
    ]


def filter_transactions_by_date(transactions: Sequence, start: date, end: date) -> List:
    """Transactions whose local calendar date falls in start..end (inclusive)"""
    return [t for t in transactions if start <= _local_date(t) <= end]


def sum_sales(transactions: Sequence) -> float:
    return round(sum(t.total_amount for t in transactions), 2)


def branch_label(branches: Sequence, branch_id: Optional[str]) -> str:
    if branch_id:
        for branch in branches:
            if branch.id == branch_id:
                return branch.name
    return GLOBAL_BRANCH_NAME


def low_stock_products(products: Sequence) -> List:
    return [p for p in products if is_low_stock(p)]


def calculate_cogs(transactions: Sequence, products: Sequence) -> float:
    cost_by_id = {p.id: p.cost_price for p in products}
    cogs = 0.0
    for t in transactions:
        for item in t.items:
            unit_cost = cost_by_id.get(item.product_id) or item.price * COGS_FALLBACK_RATIO
            cogs += unit_cost * item.quantity
    return cogs


# =============================================================================
# REPORT TABLES
# =============================================================================

def build_report(
    report_type: ReportType,
    products: Sequence,
    transactions: Sequence,
    branches: Sequence,
    start: date,
    end: date,
    today: date,
    selected_branch_id: Optional[str] = None,
    search: str = "",
) -> ReportTable:
    """
    Build the table for one report.

    `transactions` are filtered to start..end here; products are reported as
    they are now. `search` narrows the rows the way the on-screen preview does.
    """
    txs = filter_transactions_by_date(transactions, start, end)
    term = (search or "").strip().lower()
    summary: Dict[str, str] = {}

    if report_type == ReportType.DAILY_SALES:
        if term:
            txs = [t for t in txs if term in t.id.lower() or term in t.payment_method.value.lower()]
        headers = ["Transaction ID", "Date", "Time", "Items Count", "Total Amount", "Payment Method"]
        rows = [_daily_sales_row(t) for t in txs]
        revenue = sum_sales(txs)
        summary = {
            "total_revenue": _money(revenue),
            "transactions": str(len(txs)),
            "average_sale": _money(revenue / len(txs)) if txs else "0.00",
        }

    elif report_type == ReportType.STOCK_LEVELS:
        items = [p for p in products if not term or term in p.name.lower() or term in p.category.lower()]
        headers = ["Product Name", "Category", "Batch", "Expiry", "Stock", "Cost Value"]
        rows = [
            [
                p.name,
                p.category,
                p.batch_number,
                p.expiry_date.isoformat(),
                str(display_stock(p.stock)),
                _money(display_stock(p.stock) * p.cost_price),
            ]
            for p in items
        ]
        summary = {"items_listed": str(len(items))}

    elif report_type == ReportType.LOW_STOCK:
        items = [p for p in low_stock_products(products) if not term or term in p.name.lower()]
        headers = ["Product Name", "Category", "Current Stock", "Min Level", "Cost Price", "Selling Price"]
        rows = [
            [
                p.name,
                p.category,
                str(display_stock(p.stock)),
                str(p.min_stock_level),
                _money(p.cost_price),
                _money(p.selling_price),
            ]
            for p in items
        ]
        summary = {"critical_items": str(len(items))}

    elif report_type == ReportType.EXPIRY_RISK:
        horizon = today + timedelta(days=EXPIRY_RISK_DAYS)
        items = sorted(
            (p for p in products if p.expiry_date <= horizon and (not term or term in p.name.lower())),
            key=lambda p: p.expiry_date,
        )
        headers = ["Product Name", "Batch", "Expiry Date", "Days Remaining", "Current Stock"]
        rows = [
            [
                p.name,
                p.batch_number,
                p.expiry_date.isoformat(),
                str(days_until_expiry(p.expiry_date, today)),
                str(display_stock(p.stock)),
            ]
            for p in items
        ]
        summary = {"expiring_items": str(len(items))}

    elif report_type == ReportType.PROFIT_LOSS:
        revenue = sum(t.total_amount for t in txs)
        cogs = calculate_cogs(txs, products)
        profit = revenue - cogs
        margin = (profit / revenue * 100) if revenue else 0.0
        headers = ["Metric", "Value"]
        rows = [
            ["Total Revenue", _money(revenue)],
            ["Cost of Goods Sold", _money(cogs)],
            ["Net Profit", _money(profit)],
            ["Margin %", f"{margin:.2f}%"],
        ]
        summary = {"net_profit": _money(profit), "margin": f"{margin:.1f}%"}

    elif report_type == ReportType.BRANCH_PERF:
        revenue_by_branch: Dict[str, float] = defaultdict(float)
        count_by_branch: Dict[str, int] = defaultdict(int)
        for t in txs:
            revenue_by_branch[t.branch_id] += t.total_amount
            count_by_branch[t.branch_id] += 1
        headers = ["Branch ID", "Branch Name", "Location", "Total Revenue", "Tx Count"]
        rows = [
            [
                b.id,
                b.name,
                b.location,
                _money(revenue_by_branch.get(b.id, 0.0)),
                str(count_by_branch.get(b.id, 0)),
            ]
            for b in branches
        ]
        summary = {"network_revenue": _money(sum(revenue_by_branch.values()))}

    else:
        raise ValueError(f"Unsupported report type: {report_type}")

    return ReportTable(
        report_type=report_type,
        title=get_report_info(report_type).title,
        branch_name=branch_label(branches, selected_branch_id),
        start=start,
        end=end,
        headers=headers,
        rows=rows,
        total_rows=len(rows),
        summary=summary,
    )


def preview(table: ReportTable, limit: int = PREVIEW_ROW_LIMIT) -> ReportTable:
    """Same report with at most `limit` rows; total_rows keeps the full count"""
    return table.model_copy(update={"rows": table.rows[:limit]})


def to_csv(table: ReportTable) -> str:
    """CSV text with a header line and every field quoted"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(table.headers)
    writer.writerows(table.rows)
    return buffer.getvalue()


def report_filename(table: ReportTable, now: Optional[datetime] = None) -> str:
    """e.g. LOW_STOCK_Nexile_Main_St._2025-03-15_0930.csv"""
    now = now or datetime.now()
    branch_part = "_".join(table.branch_name.split())
    return f"{table.report_type.value}_{branch_part}_{now.strftime('%Y-%m-%d_%H%M')}.csv"


def share_message(table: ReportTable, transactions: Sequence) -> Tuple[str, str]:
    """WhatsApp summary text and its wa.me link"""
    txs = filter_transactions_by_date(transactions, table.start, table.end)
    text = (
        f"*{settings.APP_NAME} Report: {table.title}*\n"
        f"Branch: {table.branch_name}\n"
        f"Date: {table.start.isoformat()} to {table.end.isoformat()}\n"
        f"------------------\n"
        f"Total Revenue: ${_money(sum_sales(txs))}\n"
        f"Transactions: {len(txs)}\n"
        f"------------------\n"
        f"Generated via {settings.APP_NAME} OS"
    )
    return text, f"https://wa.me/?text={quote(text)}"


# =============================================================================
# DASHBOARD
# =============================================================================

def revenue_by_day(transactions: Sequence, today: date, days: int = 7) -> List[RevenueByDay]:
    """Revenue for each of the last `days` days, oldest first"""
    totals: Dict[date, float] = defaultdict(float)
    for t in transactions:
        totals[_local_date(t)] += t.total_amount

    series = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        series.append(RevenueByDay(date=day, label=day.strftime("%a"), revenue=round(totals.get(day, 0.0), 2)))
    return series


def top_products(transactions: Sequence, products: Sequence, limit: int = 5) -> List[TopProduct]:
    """Best sellers by quantity, keyed on the line item name snapshot"""
    quantities: Dict[str, int] = defaultdict(int)
    for t in transactions:
        for item in t.items:
            quantities[item.name] += item.quantity

    price_by_name = {}
    for p in products:
        price_by_name.setdefault(p.name, p.selling_price)

    ranked = sorted(quantities.items(), key=lambda entry: entry[1], reverse=True)[:limit]
    return [TopProduct(name=name, quantity=qty, price=price_by_name.get(name, 0.0)) for name, qty in ranked]


def month_to_date_sales(transactions: Sequence, today: date) -> float:
    month_start = today.replace(day=1)
    return sum_sales(filter_transactions_by_date(transactions, month_start, today))
