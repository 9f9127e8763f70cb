"""
HTTP-level tests: status codes, error envelopes and one end-to-end flow.
"""
from datetime import date

import pytest

from rxledger.time_utils import business_today


@pytest.fixture
def stocked(product, receive):
    receive(product, 5, made=date(2024, 1, 1), batch_no="B1")
    receive(product, 10, made=date(2024, 2, 1), batch_no="B2")
    return product


def test_health(client, db_session):
    response = client.get('/api/health')

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["details"]["stock_batches"] == 0


class TestStockRoutes:
    def test_receive_batch(self, client, location, product):
        response = client.post('/api/stock/batches', json={
            "product_id": product.id,
            "location_id": location.id,
            "quantity": 12,
            "unit_cost_cents": 450,
            "batch_no": "LOT-9",
            "manufactured_on": "2024-01-10",
            "expires_on": "2026-01-10",
        })

        assert response.status_code == 201
        batch = response.get_json()["batch"]
        assert batch["quantity_remaining"] == 12
        assert batch["manufactured_on"] == "2024-01-10"

    def test_receive_rejects_bad_date(self, client, location, product):
        response = client.post('/api/stock/batches', json={
            "product_id": product.id,
            "location_id": location.id,
            "quantity": 1,
            "manufactured_on": "10/01/2024",
        })

        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_receive_rejects_zero_quantity(self, client, location, product):
        response = client.post('/api/stock/batches', json={
            "product_id": product.id,
            "location_id": location.id,
            "quantity": 0,
        })

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_QUANTITY"

    def test_allocate_fifo(self, client, location, stocked):
        response = client.post('/api/stock/allocate', json={
            "product_id": stocked.id,
            "location_id": location.id,
            "quantity": 8,
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data["quantity"] == 8
        assert [a["quantity"] for a in data["allocations"]] == [5, 3]

    def test_allocate_shortfall(self, client, location, stocked):
        response = client.post('/api/stock/allocate', json={
            "product_id": stocked.id,
            "location_id": location.id,
            "quantity": 20,
        })

        assert response.status_code == 409
        data = response.get_json()
        assert data["code"] == "INSUFFICIENT_STOCK"
        assert data["details"]["shortfall"] == 5

    def test_summary_and_batches(self, client, location, stocked):
        summary = client.get(f'/api/stock/summary?product_id={stocked.id}&location_id={location.id}')
        batches = client.get(f'/api/stock/batches?product_id={stocked.id}&location_id={location.id}')

        assert summary.status_code == 200
        assert summary.get_json()["quantity_available"] == 15
        assert [b["batch_no"] for b in batches.get_json()["batches"]] == ["B1", "B2"]

    def test_summary_requires_ids(self, client, db_session):
        response = client.get('/api/stock/summary')
        assert response.status_code == 400

    def test_body_must_be_json_object(self, client, db_session):
        response = client.post('/api/stock/allocate', data="not json", content_type="text/plain")
        assert response.status_code == 400


class TestPartyFlow:
    def test_agent_assign_sell_pay(self, client, agent, stocked):
        assign = client.post(f'/api/parties/{agent.id}/assign', json={
            "product_id": stocked.id,
            "quantity": 6,
            "unit_price_cents": 200,
        })
        assert assign.status_code == 201
        line = assign.get_json()["line"]
        assert line["current_balance"] == 6
        assert [h["quantity_allocated"] for h in line["holdings"]] == [5, 1]

        sale = client.post(f'/api/parties/{agent.id}/sales', json={
            "items": [{"product_id": stocked.id, "quantity": 4}],
        })
        assert sale.status_code == 201
        sale_data = sale.get_json()
        assert sale_data["transaction_number"].endswith("-0001")
        assert sale_data["transaction"]["payment_status"] == "UNPAID"
        assert sale_data["transaction"]["total_amount_cents"] == 800

        pay = client.post('/api/payments/', json={
            "transaction_id": sale_data["transaction_id"],
            "amount_cents": 300,
            "method": "GCASH",
            "details": {"reference_number": "GC-77"},
        })
        assert pay.status_code == 201
        assert pay.get_json()["payment_status"] == "PARTIAL"

        over = client.post('/api/payments/', json={
            "transaction_id": sale_data["transaction_id"],
            "amount_cents": 600,
        })
        assert over.status_code == 409
        assert over.get_json()["code"] == "OVER_PAYMENT"

        removed = client.delete(f'/api/payments/{pay.get_json()["payment_id"]}')
        assert removed.status_code == 200
        assert removed.get_json()["payment_status"] == "UNPAID"

        summary = client.get(f'/api/payments/transactions/{sale_data["transaction_id"]}')
        assert [e["event_type"] for e in summary.get_json()["events"]] == ["RECORDED", "REMOVED"]

    def test_oversell_returns_conflict(self, client, agent, stocked):
        client.post(f'/api/parties/{agent.id}/assign', json={
            "product_id": stocked.id,
            "quantity": 3,
            "unit_price_cents": 200,
        })

        response = client.post(f'/api/parties/{agent.id}/sales', json={
            "items": [{"product_id": stocked.id, "quantity": 4}],
        })

        assert response.status_code == 409
        data = response.get_json()
        assert data["code"] == "EXCEEDS_BALANCE"
        assert data["details"]["current_balance"] == 3

        lines = client.get(f'/api/parties/{agent.id}/lines').get_json()["lines"]
        assert lines[0]["current_balance"] == 3

    def test_return_and_history(self, client, agent, stocked):
        client.post(f'/api/parties/{agent.id}/assign', json={
            "product_id": stocked.id,
            "quantity": 10,
            "unit_price_cents": 200,
        })

        response = client.post(f'/api/parties/{agent.id}/returns', json={
            "product_id": stocked.id,
            "quantity": 5,
        })

        assert response.status_code == 200
        holdings = response.get_json()["line"]["holdings"]
        assert sorted(h["quantity_outstanding"] for h in holdings) == [2, 3]

        history = client.get(f'/api/parties/{agent.id}/history').get_json()["history"]
        assert [h["action_type"] for h in history] == ["ITEMS_RETURNED", "ITEMS_ADDED", "CREATED"]

    def test_assign_and_return_item_lists(self, client, agent, stocked, other_product, receive):
        receive(other_product, 2, made=date(2024, 1, 1))

        failed = client.post(f'/api/parties/{agent.id}/assign', json={
            "items": [
                {"product_id": stocked.id, "quantity": 4, "unit_price_cents": 200},
                {"product_id": other_product.id, "quantity": 3, "unit_price_cents": 100},
            ],
        })
        assert failed.status_code == 409
        assert failed.get_json()["code"] == "INSUFFICIENT_STOCK"
        assert client.get(f'/api/parties/{agent.id}/lines').get_json()["lines"] == []

        assigned = client.post(f'/api/parties/{agent.id}/assign', json={
            "items": [
                {"product_id": stocked.id, "quantity": 4, "unit_price_cents": 200},
                {"product_id": other_product.id, "quantity": 2, "unit_price_cents": 100},
            ],
        })
        assert assigned.status_code == 201
        body = assigned.get_json()
        assert "line" not in body
        assert [line["current_balance"] for line in body["lines"]] == [4, 2]

        returned = client.post(f'/api/parties/{agent.id}/returns', json={
            "items": [
                {"product_id": stocked.id, "quantity": 1},
                {"product_id": other_product.id, "quantity": 2},
            ],
        })
        assert returned.status_code == 200
        assert [line["current_balance"] for line in returned.get_json()["lines"]] == [3, 0]

    def test_unknown_party(self, client, db_session):
        response = client.post('/api/parties/999/assign', json={
            "product_id": 1,
            "quantity": 1,
            "unit_price_cents": 100,
        })
        assert response.status_code == 404
        assert response.get_json()["code"] == "NOT_FOUND"


class TestConsignmentRoutes:
    def test_period_lifecycle(self, client, customer, stocked):
        opened = client.post(f'/api/consignments/{customer.id}/periods', json={"period": "2024-03"})
        assert opened.status_code == 201
        assert opened.get_json()["period"]["period_label"] == "March 2024"

        client.post(f'/api/parties/{customer.id}/assign', json={
            "product_id": stocked.id,
            "quantity": 10,
            "unit_price_cents": 100,
            "period": "2024-03",
        })
        client.post(f'/api/parties/{customer.id}/sales', json={
            "items": [{"product_id": stocked.id, "quantity": 4}],
            "period": "2024-03",
        })

        summary = client.get(f'/api/consignments/{customer.id}/periods/2024-03').get_json()
        assert summary["sold_qty"] == 4
        assert summary["balance_due_cents"] == 400
        assert len(summary["transactions"]) == 1

        rolled = client.post(f'/api/consignments/{customer.id}/roll-forward', json={
            "from_period": "2024-03",
            "to_period": "2024-04",
        })
        assert rolled.status_code == 201
        period = rolled.get_json()["period"]
        assert period["previous_balance_qty"] == 6
        assert [line["previous_balance"] for line in period["lines"]] == [6]

        again = client.post(f'/api/consignments/{customer.id}/roll-forward', json={
            "from_period": "2024-03",
            "to_period": "2024-04",
        })
        assert again.status_code == 409
        assert again.get_json()["code"] == "INVALID_STATE"

        periods = client.get(f'/api/consignments/{customer.id}/periods').get_json()["periods"]
        assert [(p["year"], p["month"], p["status"]) for p in periods] == [
            (2024, 4, "ACTIVE"),
            (2024, 3, "CLOSED"),
        ]

    def test_roll_forward_requires_both_periods(self, client, customer):
        response = client.post(f'/api/consignments/{customer.id}/roll-forward', json={"from_period": "2024-03"})
        assert response.status_code == 400

    def test_bad_period_format(self, client, customer):
        response = client.post(f'/api/consignments/{customer.id}/periods', json={"period": "March"})
        assert response.status_code == 400


class TestSalesRoutes:
    def test_retail_sale_with_cheque_today(self, client, location, stocked):
        response = client.post('/api/sales/', json={
            "location_id": location.id,
            "items": [{"product_id": stocked.id, "quantity": 2, "unit_price_cents": 300}],
            "payment_type": "CHEQUE",
            "payment_details": {
                "cheque_number": "5555",
                "bank_name": "BDO",
                "cheque_date": business_today().isoformat(),
            },
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data["transaction"]["payment_status"] == "PAID"
        assert data["transaction"]["transaction_type"] == "RETAIL"

        detail = client.get(f'/api/sales/{data["transaction_id"]}')
        assert detail.status_code == 200
        assert detail.get_json()["transaction"]["total_amount_cents"] == 600

    def test_bulk_sale_listing(self, client, location, stocked):
        client.post('/api/sales/', json={
            "location_id": location.id,
            "transaction_type": "BULK",
            "items": [{"product_id": stocked.id, "quantity": 1, "unit_price_cents": 300}],
        })

        listing = client.get('/api/sales/?transaction_type=BULK').get_json()["transactions"]
        assert [t["payment_status"] for t in listing] == ["PAID"]

    def test_unknown_transaction(self, client, db_session):
        assert client.get('/api/sales/999').status_code == 404
