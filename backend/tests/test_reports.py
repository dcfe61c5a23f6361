"""
Report tables, CSV export and sharing.
"""

import csv
import io
from datetime import date, datetime, timedelta
from types import SimpleNamespace
from urllib.parse import unquote

import pytest

import report_service
from config import settings
from models import PaymentMethod
from schemas import ReportType
from date_utils import get_local_today
from export_report import export_report
from conftest import run

TODAY = date(2025, 3, 15)

BRANCHES = [
    SimpleNamespace(id="b1", name="Nexile Main St.", location="New York, NY"),
    SimpleNamespace(id="b2", name="Nexile Westside", location="Los Angeles, CA"),
]


def _product(pid, name, stock, min_level, cost=1.0, price=2.0, expiry=TODAY + timedelta(days=365), branch="b1"):
    return SimpleNamespace(
        id=pid, name=name, category="General", barcode=None, batch_number=f"B-{pid}",
        expiry_date=expiry, cost_price=cost, selling_price=price, stock=stock,
        min_stock_level=min_level, branch_id=branch,
    )


def _item(product_id, name, quantity, price):
    return SimpleNamespace(product_id=product_id, name=name, quantity=quantity, price=price)


def _transaction(tid, when, items, branch="b1", method=PaymentMethod.CASH):
    return SimpleNamespace(
        id=tid, date=when, items=items, branch_id=branch, payment_method=method,
        total_amount=round(sum(i.price * i.quantity for i in items), 2),
    )


PRODUCTS = [
    _product("p1", "Amoxicillin", stock=150, min_level=20, cost=5.0, price=12.5),
    _product("p2", "Ibuprofen", stock=12, min_level=25, cost=3.5, price=9.0),
    _product("p3", "Vitamin C", stock=10, min_level=10, expiry=TODAY + timedelta(days=20)),
    _product("p4", "Old Syrup", stock=-2, min_level=5, expiry=TODAY - timedelta(days=3)),
]

NOON = datetime(2025, 3, 15, 12, 0)
TRANSACTIONS = [
    _transaction("t1", NOON, [_item("p1", "Amoxicillin", 2, 12.5)]),
    _transaction("t2", NOON - timedelta(days=1), [_item("p2", "Ibuprofen", 1, 9.0)], branch="b2"),
    _transaction("t3", NOON - timedelta(days=40), [_item("gone", "Discontinued", 2, 10.0)]),
]


def _build(report_type, **kwargs):
    params = dict(products=PRODUCTS, transactions=TRANSACTIONS, branches=BRANCHES,
                  start=TODAY, end=TODAY, today=TODAY)
    params.update(kwargs)
    return report_service.build_report(report_type, **params)


def test_low_stock_rows_match_products_at_or_below_minimum():
    table = _build(ReportType.LOW_STOCK)

    expected = [p for p in PRODUCTS if p.stock <= p.min_stock_level]
    assert table.total_rows == len(expected) == 3
    assert [row[0] for row in table.rows] == ["Ibuprofen", "Vitamin C", "Old Syrup"]
    assert table.rows[2][2] == "0"  # display stock is clamped


def test_low_stock_csv_row_count():
    text = report_service.to_csv(_build(ReportType.LOW_STOCK))

    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == ["Product Name", "Category", "Current Stock", "Min Level", "Cost Price", "Selling Price"]
    assert len(rows) - 1 == 3


def test_csv_quotes_every_field():
    text = report_service.to_csv(_build(ReportType.DAILY_SALES))

    first_line = text.splitlines()[0]
    assert first_line.startswith('"Transaction ID","Date"')
    assert all(line.startswith('"') for line in text.splitlines())


def test_daily_sales_only_includes_period():
    table = _build(ReportType.DAILY_SALES, start=TODAY - timedelta(days=1))

    assert [row[0] for row in table.rows] == ["t1", "t2"]
    assert table.summary["total_revenue"] == "34.00"
    assert table.summary["transactions"] == "2"


def test_daily_sales_date_and_time_use_app_timezone(monkeypatch):
    monkeypatch.setattr(settings, "APP_TIMEZONE", "Africa/Nairobi")
    late = _transaction("t9", datetime(2025, 3, 14, 22, 30), [_item("p1", "Amoxicillin", 1, 12.5)])

    table = _build(ReportType.DAILY_SALES, transactions=[late])

    assert table.rows == [["t9", "2025-03-15", "01:30:00", "1", "12.50", "CASH"]]


def test_expiry_risk_within_ninety_days_sorted():
    table = _build(ReportType.EXPIRY_RISK)

    assert [row[0] for row in table.rows] == ["Old Syrup", "Vitamin C"]
    assert table.rows[0][3] == "-3"
    assert table.rows[1][3] == "20"


def test_profit_loss_uses_cost_price_with_fallback():
    table = _build(ReportType.PROFIT_LOSS, start=TODAY - timedelta(days=60))

    values = dict(table.rows)
    # Revenue 25 + 9 + 20; COGS 2*5 + 1*3.5 + 2*(10*0.7)
    assert values["Total Revenue"] == "54.00"
    assert values["Cost of Goods Sold"] == "27.50"
    assert values["Net Profit"] == "26.50"
    assert values["Margin %"] == "49.07%"


def test_branch_performance_covers_every_visible_branch():
    table = _build(ReportType.BRANCH_PERF, start=TODAY - timedelta(days=7))

    assert table.rows == [
        ["b1", "Nexile Main St.", "New York, NY", "25.00", "1"],
        ["b2", "Nexile Westside", "Los Angeles, CA", "9.00", "1"],
    ]


def test_search_narrows_rows():
    table = _build(ReportType.STOCK_LEVELS, search="vit")

    assert [row[0] for row in table.rows] == ["Vitamin C"]


def test_preview_keeps_total_row_count():
    table = _build(ReportType.STOCK_LEVELS)

    preview = report_service.preview(table, limit=2)

    assert len(preview.rows) == 2
    assert preview.total_rows == 4


def test_filename_uses_branch_or_global_label():
    single = _build(ReportType.LOW_STOCK, selected_branch_id="b1")
    tenant = _build(ReportType.LOW_STOCK)
    when = datetime(2025, 3, 15, 9, 30)

    assert report_service.report_filename(single, when) == "LOW_STOCK_Nexile_Main_St._2025-03-15_0930.csv"
    assert report_service.report_filename(tenant, when) == "LOW_STOCK_Global_Enterprise_2025-03-15_0930.csv"


def test_share_message():
    table = _build(ReportType.DAILY_SALES, selected_branch_id="b1")

    text, url = report_service.share_message(table, TRANSACTIONS)

    assert text.startswith("*Nexile Report: Daily Sales Report*\nBranch: Nexile Main St.")
    assert "Total Revenue: $25.00" in text
    assert "Transactions: 1" in text
    assert url.startswith("https://wa.me/?text=")
    assert unquote(url[len("https://wa.me/?text="):]) == text


def test_reports_for_role():
    pharmacist = {info.id for info in report_service.reports_for_role("PHARMACIST")}
    owner = {info.id for info in report_service.reports_for_role("OWNER")}

    assert ReportType.PROFIT_LOSS not in pharmacist
    assert ReportType.BRANCH_PERF not in pharmacist
    assert owner == set(ReportType)


# ==================== HTTP ====================

def test_pharmacist_cannot_run_financial_reports(client, pharmacist_headers):
    for report in ("PROFIT_LOSS", "BRANCH_PERF"):
        assert client.get(f"/reports/{report}", headers=pharmacist_headers).status_code == 403
        assert client.get(f"/reports/{report}/csv", headers=pharmacist_headers).status_code == 403


def test_report_catalog_by_role(client, pharmacist_headers, manager_headers):
    pharmacist = [r["id"] for r in client.get("/reports", headers=pharmacist_headers).json()]
    manager = [r["id"] for r in client.get("/reports", headers=manager_headers).json()]

    assert len(pharmacist) == 4
    assert len(manager) == 6


def test_csv_download(client, owner_headers):
    response = client.get("/reports/LOW_STOCK/csv", params={"branch_id": "b1"}, headers=owner_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    disposition = response.headers["content-disposition"]
    assert 'filename="LOW_STOCK_Nexile_Main_St._' in disposition
    rows = list(csv.reader(io.StringIO(response.text)))
    assert [r[0] for r in rows[1:]] == ["Ibuprofen 400mg"]


def test_manager_branch_performance_limited_to_managed(client, manager_headers):
    table = client.get("/reports/BRANCH_PERF", params={"preset": "WEEK"}, headers=manager_headers).json()

    assert [row[0] for row in table["rows"]] == ["b1", "b2"]
    assert table["branch_name"] == "Global Enterprise"


def test_preset_and_explicit_dates(client, owner_headers):
    today = get_local_today()
    week = client.get("/reports/DAILY_SALES", params={"preset": "WEEK"}, headers=owner_headers).json()
    explicit = client.get("/reports/DAILY_SALES", params={"start": today.isoformat()}, headers=owner_headers).json()

    assert week["start"] == (today - timedelta(days=6)).isoformat()
    assert week["total_rows"] == 2
    assert explicit["total_rows"] == 1


def test_unknown_preset_or_type(client, owner_headers):
    assert client.get("/reports/DAILY_SALES", params={"preset": "DECADE"}, headers=owner_headers).status_code == 400
    assert client.get("/reports/NOPE", headers=owner_headers).status_code == 422


def test_share_endpoint(client, pharmacist_headers):
    body = client.get("/reports/DAILY_SALES/share", headers=pharmacist_headers).json()

    assert "Branch: Nexile Main St." in body["text"]
    assert "Transactions: 1" in body["text"]
    assert body["url"].startswith("https://wa.me/?text=")


@pytest.mark.parametrize("preset", ["TODAY", "WEEK", "MONTH", "LAST_MONTH", "YTD"])
def test_presets_accepted(client, owner_headers, preset):
    assert client.get("/reports/STOCK_LEVELS", params={"preset": preset}, headers=owner_headers).status_code == 200


def test_export_cli_writes_csv(demo_data, tmp_path):
    output = tmp_path / "low.csv"

    assert run(export_report(ReportType.LOW_STOCK, branch_id="b1", output_file=str(output)))

    rows = list(csv.reader(io.StringIO(output.read_text(encoding="utf-8"))))
    assert [r[0] for r in rows[1:]] == ["Ibuprofen 400mg"]


def test_export_cli_unknown_branch(demo_data, tmp_path):
    assert not run(export_report(ReportType.LOW_STOCK, branch_id="nowhere", output_file=str(tmp_path / "x.csv")))
