"""
Sale recording: totals, stock decrements, atomicity and concurrency.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

import stock_service
from config import settings
from database import async_session_maker
from date_utils import get_local_today
from errors import StockWriteError
from models import PaymentMethod, Product, Transaction
from schemas import TransactionCreate, TransactionItemCreate
from conftest import run


async def _stock(product_id):
    async with async_session_maker() as db:
        result = await db.execute(select(Product.stock).where(Product.id == product_id))
        return result.scalar_one()


async def _transaction_count():
    async with async_session_maker() as db:
        result = await db.execute(select(Transaction.id))
        return len(result.all())


async def _record(sale, branch_id="b1", user_id="u2"):
    async with async_session_maker() as db:
        return await stock_service.record_transaction(db, sale, branch_id=branch_id, user_id=user_id)


def _sale(*items, method=PaymentMethod.CASH):
    return TransactionCreate(
        payment_method=method,
        items=[TransactionItemCreate(product_id=pid, quantity=qty, price=price) for pid, qty, price in items],
    )


def _failing_decrement(fail_on_call):
    """Wrap the stock decrement so the given call (1-based) raises a database error."""
    original = stock_service._decrement_stock
    calls = {"n": 0}

    async def decrement(db, product_id, quantity):
        calls["n"] += 1
        if calls["n"] == fail_on_call:
            raise OperationalError("UPDATE products", {}, Exception("disk I/O error"))
        return await original(db, product_id, quantity)

    return decrement


def test_record_sale_over_http(client, pharmacist_headers):
    response = client.post("/transactions", json={
        "payment_method": "CARD",
        "items": [
            {"product_id": "p1", "quantity": 2, "price": 12.5},
            {"product_id": "p2", "quantity": 3, "price": 4.5},
        ],
    }, headers=pharmacist_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["total_amount"] == pytest.approx(38.5)
    assert body["branch_id"] == "b1"
    assert body["user_id"] == "u2"
    assert [item["name"] for item in body["items"]] == ["Amoxicillin 500mg", "Paracetamol 500mg"]
    assert run(_stock("p1")) == 148
    assert run(_stock("p2")) == 497


def test_total_is_computed_server_side(client, pharmacist_headers):
    response = client.post("/transactions", json={
        "payment_method": "CASH",
        "total_amount": 1.0,
        "items": [{"product_id": "p4", "quantity": 3, "price": 9.0}],
    }, headers=pharmacist_headers)

    assert response.json()["total_amount"] == pytest.approx(27.0)


def test_empty_sale_is_rejected(client, pharmacist_headers):
    response = client.post("/transactions", json={"payment_method": "CASH", "items": []}, headers=pharmacist_headers)

    assert response.status_code == 422


def test_zero_quantity_is_rejected(client, pharmacist_headers):
    response = client.post("/transactions", json={
        "payment_method": "CASH",
        "items": [{"product_id": "p1", "quantity": 0, "price": 12.5}],
    }, headers=pharmacist_headers)

    assert response.status_code == 422


def test_pharmacist_cannot_sell_for_another_branch(client, pharmacist_headers):
    response = client.post("/transactions", json={
        "branch_id": "b2",
        "payment_method": "CASH",
        "items": [{"product_id": "p1", "quantity": 1, "price": 12.5}],
    }, headers=pharmacist_headers)

    assert response.status_code == 403
    assert run(_stock("p1")) == 150


def test_unknown_product_without_name_is_rejected(client, pharmacist_headers):
    response = client.post("/transactions", json={
        "payment_method": "CASH",
        "items": [{"product_id": "ghost", "quantity": 1, "price": 1.0}],
    }, headers=pharmacist_headers)

    assert response.status_code == 400
    assert run(_transaction_count()) == 2


def test_low_stock_product_stays_listed_after_sale(client, pharmacist_headers):
    def low_stock_ids():
        rows = client.get("/reports/LOW_STOCK", headers=pharmacist_headers).json()["rows"]
        return [row[0] for row in rows]

    assert "Ibuprofen 400mg" in low_stock_ids()

    client.post("/transactions", json={
        "payment_method": "CASH",
        "items": [{"product_id": "p4", "quantity": 5, "price": 9.0}],
    }, headers=pharmacist_headers)

    assert run(_stock("p4")) == 7
    assert "Ibuprofen 400mg" in low_stock_ids()


def test_sale_is_not_blocked_by_stock(demo_data):
    transaction = run(_record(_sale(("p4", 20, 9.0))))

    assert transaction.total_amount == pytest.approx(180.0)
    assert run(_stock("p4")) == -8


def test_atomic_failure_rolls_back_everything(demo_data, monkeypatch):
    monkeypatch.setattr(stock_service, "_decrement_stock", _failing_decrement(fail_on_call=2))

    with pytest.raises(StockWriteError) as exc_info:
        run(_record(_sale(("p1", 2, 12.5), ("p2", 1, 4.5))))

    assert "No changes were saved" in exc_info.value.message
    assert run(_transaction_count()) == 2
    assert run(_stock("p1")) == 150
    assert run(_stock("p2")) == 500


def test_degraded_failure_keeps_earlier_writes(demo_data, monkeypatch):
    monkeypatch.setattr(settings, "SALES_ATOMIC_WRITES", False)
    monkeypatch.setattr(stock_service, "_decrement_stock", _failing_decrement(fail_on_call=2))

    with pytest.raises(StockWriteError) as exc_info:
        run(_record(_sale(("p1", 2, 12.5), ("p2", 1, 4.5))))

    assert "part-way" in exc_info.value.message
    assert run(_transaction_count()) == 3
    assert run(_stock("p1")) == 148
    assert run(_stock("p2")) == 500


def test_degraded_mode_success_matches_atomic(demo_data, monkeypatch):
    monkeypatch.setattr(settings, "SALES_ATOMIC_WRITES", False)

    transaction = run(_record(_sale(("p1", 1, 12.5), ("p3", 2, 18.0))))

    assert transaction.total_amount == pytest.approx(48.5)
    assert len(transaction.items) == 2
    assert run(_stock("p1")) == 149
    assert run(_stock("p3")) == 43


def test_write_failure_over_http_returns_400(client, pharmacist_headers, monkeypatch):
    monkeypatch.setattr(stock_service, "_decrement_stock", _failing_decrement(fail_on_call=1))

    response = client.post("/transactions", json={
        "payment_method": "CASH",
        "items": [{"product_id": "p1", "quantity": 1, "price": 12.5}],
    }, headers=pharmacist_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Transaction failed. No changes were saved."


def test_concurrent_sales_compose(demo_data):
    quantities = [1, 2, 3, 4, 5]

    async def sell_all():
        await asyncio.gather(*[_record(_sale(("p2", q, 4.5))) for q in quantities])

    run(sell_all())

    assert run(_stock("p2")) == 500 - sum(quantities)
    assert run(_transaction_count()) == 2 + len(quantities)


def test_list_is_scoped_and_newest_first(client, owner_headers, pharmacist_headers):
    client.post("/transactions", json={
        "payment_method": "ONLINE",
        "items": [{"product_id": "p1", "quantity": 1, "price": 12.5}],
    }, headers=pharmacist_headers)

    rows = client.get("/transactions", headers=owner_headers).json()
    assert len(rows) == 3
    assert rows[0]["payment_method"] == "ONLINE"
    assert [r["date"] for r in rows] == sorted((r["date"] for r in rows), reverse=True)

    assert client.get("/transactions", params={"branch_id": "b2"}, headers=owner_headers).json() == []


def test_list_filters_by_date(client, owner_headers):
    today = get_local_today().isoformat()
    yesterday = (get_local_today() - timedelta(days=1)).isoformat()

    todays = client.get("/transactions", params={"start": today, "end": today}, headers=owner_headers).json()
    since_yesterday = client.get("/transactions", params={"start": yesterday}, headers=owner_headers).json()

    assert [t["id"] for t in todays] == ["t2"]
    assert {t["id"] for t in since_yesterday} == {"t1", "t2"}


def test_list_rejects_inverted_range(client, owner_headers):
    response = client.get("/transactions", params={"start": "2025-02-01", "end": "2025-01-01"}, headers=owner_headers)

    assert response.status_code == 400
