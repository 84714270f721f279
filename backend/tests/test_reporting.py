"""
Dashboard and reporting tests. Cancelled sales never count.
"""

import pytest


@pytest.fixture
def sold(client, admin_headers, seller_headers, make_product, make_client):
    """Two valid sales and one cancelled sale, all recorded today."""
    customer = make_client(name="Maria Oliveira")
    mint = make_product(name="Zomo Mint", price_cents=1000, cost_price_cents=400, stock=20)
    coal = make_product(name="Carvão Coco", category="Carvão", price_cents=2000, cost_price_cents=1500, stock=3, min_stock=5)

    def sell(body):
        return client.post("/api/sales", json=body, headers=seller_headers).json["sale"]

    sell({"client_id": customer.id, "payment_method": "pix", "items": [{"product_id": mint.id, "quantity": 2}]})
    sell({"items": [{"product_id": coal.id, "quantity": 1}]})
    cancelled = sell({"client_id": customer.id, "items": [{"product_id": mint.id, "quantity": 5}]})
    client.put(f"/api/sales/{cancelled['id']}/cancel", headers=admin_headers)
    return {"customer": customer, "mint": mint, "coal": coal}


def test_dashboard_stats(client, seller_headers, sold):
    body = client.get("/api/dashboard", headers=seller_headers).json

    assert body["counts"]["products"] == 2
    assert body["counts"]["clients"] == 1
    assert body["counts"]["low_stock"] == 1

    assert body["sales"]["today"] == {"count": 2, "total_cents": 4000, "profit_cents": 1700}
    assert body["sales"]["month"]["count"] == 2

    methods = {row["payment_method"]: row["count"] for row in body["charts"]["payment_methods"]}
    assert methods == {"Pix": 1, "Dinheiro": 1}

    categories = {row["category"]: row["quantity"] for row in body["charts"]["sales_by_category"]}
    assert categories == {"Essências": 2, "Carvão": 1}

    assert body["top"]["clients"][0]["name"] == "Maria Oliveira"
    assert body["top"]["clients"][0]["total_cents"] == 2000


def test_sales_analysis(client, seller_headers, sold):
    body = client.get("/api/dashboard/sales-analysis?group_by=month", headers=seller_headers).json
    assert body["period"]["group_by"] == "month"
    assert len(body["analysis"]) == 1
    assert body["totals"]["count"] == 2
    assert body["totals"]["total_cents"] == 4000
    assert body["totals"]["average_ticket_cents"] == 2000


def test_sales_analysis_rejects_unknown_grouping(client, seller_headers, db_session):
    resp = client.get("/api/dashboard/sales-analysis?group_by=decade", headers=seller_headers)
    assert resp.status_code == 400


def test_sales_analysis_rejects_bad_dates(client, seller_headers, db_session):
    resp = client.get("/api/dashboard/sales-analysis?start_date=yesterday-ish", headers=seller_headers)
    assert resp.status_code == 400


def test_inventory_analysis(client, seller_headers, sold):
    body = client.get("/api/dashboard/inventory-analysis", headers=seller_headers).json

    # mint: 18 units left, coal: 2 units left
    value = body["inventory_value"]
    assert value["total_items"] == 2
    assert value["total_stock"] == 20
    assert value["total_value_cents"] == 18 * 1000 + 2 * 2000
    assert value["total_cost_cents"] == 18 * 400 + 2 * 1500
    assert value["potential_profit_cents"] == value["total_value_cents"] - value["total_cost_cents"]

    status = body["stock_status"]
    assert status["out_of_stock"] == 0
    assert status["critical"] == 1
    assert [p["name"] for p in status["low_stock"]] == ["Carvão Coco"]


def test_client_analysis(client, seller_headers, sold):
    body = client.get("/api/dashboard/client-analysis", headers=seller_headers).json
    assert body["counts"]["total"] == 1
    assert body["counts"]["new_this_month"] == 1
    assert body["counts"]["active_this_month"] == 1
    top = body["top_clients"][0]
    assert top["order_count"] == 1
    assert top["total_spent_cents"] == 2000
    assert body["average_ticket_cents"] == 2000
