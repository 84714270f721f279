"""
Sale workflow tests.

Verifies:
- Totals, profit and line snapshots of a recorded sale
- Sequential VENDA-NNNNNN numbering
- Stock decrement with one ledger entry per line
- Failed sales leave no side effects
- Client spend and loyalty points, and their reversal on cancel
"""

import pytest
from sqlalchemy import insert

from tabacaria.extensions import db
from tabacaria.models import Client, DocumentSequence, InventoryTransaction, Product, Sale
from tabacaria.services import document_service, sales_service
from tabacaria.services.inventory_service import list_sale_entries


def _sell(client, headers, **body):
    return client.post("/api/sales", json=body, headers=headers)


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:

    def test_totals_and_snapshots(self, client, seller_headers, make_product):
        mint = make_product(name="Zomo Strong Mint", price_cents=1590, cost_price_cents=850, stock=20)
        coal = make_product(name="Carvão Coco", category="Carvão", price_cents=1890, cost_price_cents=950, stock=30)

        resp = _sell(
            client,
            seller_headers,
            items=[
                {"product_id": mint.id, "quantity": 2},
                {"product_id": coal.id, "quantity": 1, "discount_cents": 100},
            ],
            discount_cents=200,
            tax_cents=50,
            payment_method="pix",
        )
        assert resp.status_code == 201
        sale = resp.json["sale"]

        assert sale["sale_number"] == "VENDA-000001"
        assert sale["subtotal_cents"] == 2 * 1590 + 1890
        assert sale["total_cents"] == 2 * 1590 + 1890 - 200 + 50
        assert sale["profit_cents"] == (2 * 1590 - 2 * 850) + (1890 - 950) - 200
        assert sale["payment_method"] == "Pix"
        assert sale["payment_status"] == "Paid"

        lines = sale["items"]
        assert [line["name"] for line in lines] == ["Zomo Strong Mint", "Carvão Coco"]
        assert lines[0]["total_cents"] == 3180
        assert lines[1]["total_cents"] == 1790
        assert lines[1]["cost_price_cents"] == 950

    def test_price_override_is_snapshotted(self, client, seller_headers, make_product):
        product = make_product(price_cents=1590)
        resp = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1, "price_cents": 1400}])
        assert resp.status_code == 201
        assert resp.json["sale"]["items"][0]["price_cents"] == 1400
        assert resp.json["sale"]["total_cents"] == 1400

    def test_numbers_are_sequential(self, client, seller_headers, make_product):
        product = make_product(stock=10)
        numbers = [
            _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}]).json["sale"]["sale_number"]
            for _ in range(3)
        ]
        assert numbers == ["VENDA-000001", "VENDA-000002", "VENDA-000003"]

    def test_numbering_continues_from_existing_sales(self, db_session, client, seller_user, seller_headers, make_product):
        db_session.add(Sale(sale_number="VENDA-000041", seller_id=seller_user.id))
        db_session.commit()

        product = make_product()
        resp = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}])
        assert resp.json["sale"]["sale_number"] == "VENDA-000042"

    def test_stock_and_ledger(self, db_session, client, seller_user, seller_headers, make_product):
        product = make_product(stock=20)
        resp = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 3}])
        sale_id = resp.json["sale"]["id"]

        assert db_session.get(Product, product.id).stock == 17

        entries = list_sale_entries(sale_id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.kind == "out"
        assert entry.quantity == -3
        assert (entry.previous_stock, entry.new_stock) == (20, 17)
        assert entry.user_id == seller_user.id
        assert entry.reason == f"Sale {resp.json['sale']['sale_number']}"

    def test_insufficient_stock_has_no_side_effects(self, db_session, client, seller_headers, make_product):
        plenty = make_product(stock=10)
        scarce = make_product(name="Narguilé Zeus", stock=1)
        ledger_before = db_session.query(InventoryTransaction).count()

        resp = _sell(
            client,
            seller_headers,
            items=[
                {"product_id": plenty.id, "quantity": 2},
                {"product_id": scarce.id, "quantity": 2},
            ],
        )
        assert resp.status_code == 400
        assert resp.json["success"] is False
        assert "insufficient stock" in resp.json["message"]

        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, plenty.id).stock == 10
        assert db_session.get(Product, scarce.id).stock == 1
        assert db_session.query(InventoryTransaction).count() == ledger_before

    def test_failed_sale_does_not_consume_a_number(self, client, seller_headers, make_product):
        product = make_product(stock=1)
        assert _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 5}]).status_code == 400
        resp = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}])
        assert resp.json["sale"]["sale_number"] == "VENDA-000001"

    def test_same_product_on_two_lines_is_summed(self, db_session, client, seller_headers, make_product):
        product = make_product(stock=3)
        resp = _sell(
            client,
            seller_headers,
            items=[
                {"product_id": product.id, "quantity": 2},
                {"product_id": product.id, "quantity": 2},
            ],
        )
        assert resp.status_code == 400
        assert db_session.get(Product, product.id).stock == 3

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"quantity": 1}],
            [{"product_id": 1, "quantity": 0}],
            [{"product_id": 1, "quantity": "abc"}],
        ],
    )
    def test_invalid_cart(self, client, seller_headers, items):
        resp = _sell(client, seller_headers, items=items)
        assert resp.status_code == 400

    def test_unknown_product(self, client, seller_headers):
        resp = _sell(client, seller_headers, items=[{"product_id": 9999, "quantity": 1}])
        assert resp.status_code == 404

    def test_unknown_client(self, client, seller_headers, make_product):
        product = make_product()
        resp = _sell(client, seller_headers, client_id=9999, items=[{"product_id": product.id, "quantity": 1}])
        assert resp.status_code == 404

    def test_discount_larger_than_total_rejected(self, client, seller_headers, make_product):
        product = make_product(price_cents=1000)
        resp = _sell(
            client, seller_headers, discount_cents=5000, items=[{"product_id": product.id, "quantity": 1}]
        )
        assert resp.status_code == 400
        assert resp.json["message"] == "discount_cents must be <= subtotal_cents + tax_cents"

    def test_cannot_create_cancelled(self, client, seller_headers, make_product):
        product = make_product()
        resp = _sell(
            client, seller_headers, payment_status="Cancelled", items=[{"product_id": product.id, "quantity": 1}]
        )
        assert resp.status_code == 400

    def test_client_spend_and_loyalty(self, db_session, client, seller_headers, make_product, make_client):
        customer = make_client()
        product = make_product(price_cents=3500, stock=10)

        resp = _sell(client, seller_headers, client_id=customer.id, items=[{"product_id": product.id, "quantity": 3}])
        assert resp.status_code == 201
        assert resp.json["sale"]["total_cents"] == 10500

        refreshed = db_session.get(Client, customer.id)
        assert refreshed.total_purchased_cents == 10500
        assert refreshed.loyalty_points == 10
        assert refreshed.last_purchase_at is not None


# =============================================================================
# PAYMENT LABELS
# =============================================================================


class TestPaymentNormalization:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("PIX", "Pix"),
            ("Cartão de Crédito", "Cartão de crédito"),
            ("cartao de debito", "Cartão de débito"),
            ("cash", "Dinheiro"),
            ("bitcoin", "Dinheiro"),
            (None, "Dinheiro"),
        ],
    )
    def test_payment_method(self, raw, expected):
        assert sales_service.normalize_payment_method(raw) == expected

    @pytest.mark.parametrize("raw,expected", [(None, "Paid"), ("pendente", "Pending"), ("PARTIAL", "Partial")])
    def test_payment_status(self, raw, expected):
        assert sales_service.normalize_payment_status(raw) == expected

    def test_unknown_status_rejected(self, client, seller_headers, make_product):
        product = make_product()
        resp = _sell(client, seller_headers, payment_status="maybe", items=[{"product_id": product.id, "quantity": 1}])
        assert resp.status_code == 400


# =============================================================================
# CANCEL
# =============================================================================


class TestCancelSale:

    def test_cancel_restores_stock_and_client(
        self, db_session, client, admin_user, admin_headers, seller_headers, make_product, make_client
    ):
        customer = make_client()
        product = make_product(price_cents=3500, stock=10)
        sale = _sell(
            client, seller_headers, client_id=customer.id, items=[{"product_id": product.id, "quantity": 3}]
        ).json["sale"]

        resp = client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["payment_status"] == "Cancelled"

        assert db_session.get(Product, product.id).stock == 10
        refreshed = db_session.get(Client, customer.id)
        assert refreshed.total_purchased_cents == 0
        assert refreshed.loyalty_points == 0

        entries = list_sale_entries(sale["id"])
        assert [e.kind for e in entries] == ["out", "in"]
        assert entries[1].quantity == 3
        assert entries[1].reason == "sale cancellation"
        assert entries[1].user_id == admin_user.id

    def test_cancel_restores_on_top_of_current_stock(self, db_session, client, admin_headers, seller_headers, make_product):
        product = make_product(stock=10)
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 4}]).json["sale"]
        client.put(
            f"/api/products/{product.id}/stock",
            json={"kind": "in", "quantity": 5},
            headers=admin_headers,
        )
        client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers)
        assert db_session.get(Product, product.id).stock == 15

    def test_cancel_entry_keeps_line_cost(self, client, admin_headers, seller_headers, make_product):
        product = make_product(cost_price_cents=850, stock=10)
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 2}]).json["sale"]
        client.put(f"/api/products/{product.id}", json={"cost_price_cents": 999}, headers=admin_headers)

        assert client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers).status_code == 200

        entries = list_sale_entries(sale["id"])
        assert [(e.kind, e.cost_price_cents) for e in entries] == [("out", 850), ("in", 850)]

    def test_cancel_multi_line_sale(self, db_session, client, admin_headers, seller_headers, make_product, make_client):
        customer = make_client()
        # created in reverse so line order differs from id order
        coal = make_product(name="Carvão Coco", category="Carvão", stock=8)
        mint = make_product(name="Zomo Mint", stock=6)
        sale = _sell(
            client,
            seller_headers,
            client_id=customer.id,
            items=[
                {"product_id": mint.id, "quantity": 2},
                {"product_id": coal.id, "quantity": 3},
                {"product_id": mint.id, "quantity": 1},
            ],
        ).json["sale"]
        assert db_session.get(Product, mint.id).stock == 3
        assert db_session.get(Product, coal.id).stock == 5

        assert client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers).status_code == 200

        assert db_session.get(Product, mint.id).stock == 6
        assert db_session.get(Product, coal.id).stock == 8
        assert db_session.get(Client, customer.id).total_purchased_cents == 0
        cancel_entries = [e for e in list_sale_entries(sale["id"]) if e.kind == "in"]
        assert [(e.product_id, e.quantity) for e in cancel_entries] == [(mint.id, 2), (coal.id, 3), (mint.id, 1)]

    def test_second_cancel_rejected(self, db_session, client, admin_headers, seller_headers, make_product):
        product = make_product(stock=10)
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}]).json["sale"]

        assert client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers).status_code == 200
        resp = client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["message"] == "sale already cancelled"
        assert db_session.get(Product, product.id).stock == 10

    def test_loyalty_floor_at_zero(self, db_session, client, admin_headers, seller_headers, make_product, make_client):
        customer = make_client()
        product = make_product(price_cents=5000, stock=10)
        sale = _sell(
            client, seller_headers, client_id=customer.id, items=[{"product_id": product.id, "quantity": 1}]
        ).json["sale"]
        client.put(
            f"/api/clients/{customer.id}/loyalty",
            json={"points": 3, "operation": "remove"},
            headers=seller_headers,
        )

        client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers)
        assert db_session.get(Client, customer.id).loyalty_points == 0

    def test_seller_cannot_cancel(self, client, seller_headers, make_product):
        product = make_product()
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}]).json["sale"]
        assert client.put(f"/api/sales/{sale['id']}/cancel", headers=seller_headers).status_code == 403

    def test_cancel_unknown_sale(self, client, admin_headers):
        assert client.put("/api/sales/424242/cancel", headers=admin_headers).status_code == 404


# =============================================================================
# NUMBERING
# =============================================================================


@pytest.fixture
def racing_counter(monkeypatch):
    """
    Make the first counter UPDATE see no row, then create the row as a
    concurrent first allocation would (it took number 1).
    """
    real_bump = document_service._bump
    calls = []

    def bump(document_type):
        calls.append(document_type)
        if len(calls) == 1:
            db.session.execute(insert(DocumentSequence).values(document_type=document_type, next_number=2))
            return None
        return real_bump(document_type)

    monkeypatch.setattr(document_service, "_bump", bump)
    return calls


class TestSaleNumbering:

    def test_existing_counter_hands_out_consecutive_numbers(self, db_session):
        numbers = [
            document_service.next_document_number(document_type=document_service.SALE_DOCUMENT_TYPE)
            for _ in range(4)
        ]
        assert numbers == [1, 2, 3, 4]
        assert db_session.query(DocumentSequence).count() == 1
        assert db_session.query(DocumentSequence).one().next_number == 5

    def test_racing_first_allocation_recovers(self, db_session, racing_counter):
        first = document_service.next_document_number(document_type="SALE")
        second = document_service.next_document_number(document_type="SALE")

        assert (first, second) == (2, 3)
        assert len(racing_counter) == 3
        rows = db_session.query(DocumentSequence).filter_by(document_type="SALE").all()
        assert len(rows) == 1
        assert rows[0].next_number == 4

    def test_racing_first_sale_gets_next_number(self, db_session, client, seller_headers, make_product, racing_counter):
        product = make_product(stock=5)

        resp = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}])
        assert resp.status_code == 201
        assert resp.json["sale"]["sale_number"] == "VENDA-000002"

        resp = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}])
        assert resp.json["sale"]["sale_number"] == "VENDA-000003"
        assert db_session.query(DocumentSequence).count() == 1


# =============================================================================
# PAYMENT UPDATE / QUERIES
# =============================================================================


class TestSaleQueries:

    def test_update_payment(self, client, seller_headers, make_product):
        product = make_product()
        sale = _sell(
            client, seller_headers, payment_status="pending", items=[{"product_id": product.id, "quantity": 1}]
        ).json["sale"]
        assert sale["payment_status"] == "Pending"

        resp = client.put(
            f"/api/sales/{sale['id']}/payment",
            json={"payment_status": "paid", "payment_method": "debito"},
            headers=seller_headers,
        )
        assert resp.status_code == 200
        assert resp.json["sale"]["payment_status"] == "Paid"
        assert resp.json["sale"]["payment_method"] == "Cartão de débito"

    def test_update_payment_cannot_cancel(self, client, seller_headers, make_product):
        product = make_product()
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}]).json["sale"]
        resp = client.put(
            f"/api/sales/{sale['id']}/payment", json={"payment_status": "Cancelled"}, headers=seller_headers
        )
        assert resp.status_code == 400

    def test_list_with_totals(self, client, admin_headers, seller_headers, make_product):
        product = make_product(price_cents=1000, cost_price_cents=400, stock=10)
        for qty in (1, 2, 3):
            _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": qty}])

        resp = client.get("/api/sales?limit=2", headers=seller_headers)
        assert resp.status_code == 200
        body = resp.json
        assert len(body["sales"]) == 2
        assert body["total"] == 3
        assert body["pages"] == 2
        assert body["totals"] == {
            "total_sales": 3,
            "total_revenue_cents": 6000,
            "total_profit_cents": 3600,
        }
        # newest first
        assert body["sales"][0]["sale_number"] == "VENDA-000003"

    def test_get_sale(self, client, seller_headers, make_product):
        product = make_product()
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 1}]).json["sale"]
        resp = client.get(f"/api/sales/{sale['id']}", headers=seller_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["items"][0]["product_id"] == product.id
        assert client.get("/api/sales/999", headers=seller_headers).status_code == 404

    def test_get_sale_includes_ledger_entries(self, client, admin_headers, seller_headers, make_product):
        product = make_product(stock=10)
        sale = _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 4}]).json["sale"]

        entries = client.get(f"/api/sales/{sale['id']}", headers=seller_headers).json["transactions"]
        assert [(e["kind"], e["quantity"]) for e in entries] == [("out", -4)]
        assert entries[0]["reference"] == {"kind": "sale", "id": sale["id"]}

        client.put(f"/api/sales/{sale['id']}/cancel", headers=admin_headers)
        entries = client.get(f"/api/sales/{sale['id']}", headers=seller_headers).json["transactions"]
        assert [(e["kind"], e["quantity"]) for e in entries] == [("out", -4), ("in", 4)]

    def test_top_products_excludes_cancelled(self, client, admin_headers, seller_headers, make_product):
        best = make_product(name="Best", stock=20)
        other = make_product(name="Other", stock=20)
        _sell(client, seller_headers, items=[{"product_id": best.id, "quantity": 5}])
        _sell(client, seller_headers, items=[{"product_id": other.id, "quantity": 2}])
        cancelled = _sell(client, seller_headers, items=[{"product_id": other.id, "quantity": 10}]).json["sale"]
        client.put(f"/api/sales/{cancelled['id']}/cancel", headers=admin_headers)

        resp = client.get("/api/sales/top-products", headers=seller_headers)
        products = resp.json["products"]
        assert [p["name"] for p in products] == ["Best", "Other"]
        assert products[0]["total_quantity"] == 5
        assert products[1]["total_quantity"] == 2

    def test_by_period(self, client, seller_headers, make_product):
        product = make_product(price_cents=1000)
        _sell(client, seller_headers, items=[{"product_id": product.id, "quantity": 2}])

        resp = client.get("/api/sales/by-period?period=today", headers=seller_headers)
        assert resp.status_code == 200
        assert resp.json["period"] == "today"
        assert resp.json["totals"]["total_sales"] == 1
        assert resp.json["totals"]["total_revenue_cents"] == 2000

        fallback = client.get("/api/sales/by-period?period=bogus", headers=seller_headers)
        assert fallback.json["period"] == "last_30_days"
