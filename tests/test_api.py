"""HTTP surface tests"""

import pytest
from fastapi.testclient import TestClient

from retail_ledger.db.database import get_db
from retail_ledger.main import app

OWNER = {"X-Actor-Id": "1", "X-Actor-Role": "business_owner"}
EMPLOYEE = {"X-Actor-Id": "2", "X-Actor-Role": "employee"}


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    # No context manager: the lifespan would seed the configured database.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def product_id(client) -> int:
    response = client.post(
        "/products",
        json={"sku": "tea-01", "name": "Green Tea", "cost_price": "4.00", "sale_price": "6.50", "opening_stock": 3},
        headers=OWNER,
    )
    assert response.status_code == 201
    return response.json()["id"]


class TestSystem:
    """Health and identity"""

    def test_health(self, client) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_role_header(self, client) -> None:
        assert client.get("/products").status_code == 401

    def test_unknown_role(self, client) -> None:
        assert client.get("/products", headers={"X-Actor-Role": "intern"}).status_code == 401


class TestInventoryRoutes:
    """Products and stock"""

    def test_product_created_with_opening_stock(self, client, product_id) -> None:
        response = client.get(f"/inventory/{product_id}", headers=EMPLOYEE)

        assert response.status_code == 200
        body = response.json()
        assert body["product"]["sku"] == "TEA-01"
        assert body["current_stock"] == 3
        assert [movement["kind"] for movement in body["movements"]] == ["opening"]

    def test_employee_cannot_create_product(self, client) -> None:
        response = client.post("/products", json={"sku": "x-1", "name": "Thing"}, headers=EMPLOYEE)
        assert response.status_code == 403
        assert response.json()["permission"] == "inventory:manage"

    def test_adjust_and_low_stock(self, client, product_id) -> None:
        response = client.post(
            "/inventory/adjust",
            json={"product_id": product_id, "quantity_delta": -2, "reason": "Broken"},
            headers=OWNER,
        )
        assert response.status_code == 201
        assert response.json()["quantity"] == -2

        alerts = client.get("/inventory/alerts/low-stock", params={"threshold": 1}, headers=EMPLOYEE).json()
        assert alerts == [{"product_id": product_id, "product_name": "Green Tea", "current_stock": 1, "threshold": 1}]

    def test_unknown_product(self, client) -> None:
        response = client.get("/inventory/404", headers=OWNER)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestDocumentRoutes:
    """Sales and purchases"""

    def test_sale_lifecycle(self, client, product_id) -> None:
        created = client.post("/sales", json={"items": [{"product_id": product_id, "quantity": 2}]}, headers=EMPLOYEE)
        assert created.status_code == 201
        sale = created.json()
        assert sale["total"] == "13.00"
        assert sale["items"][0]["unit_cost"] == "4.00"

        assert client.delete(f"/sales/{sale['id']}", headers=EMPLOYEE).status_code == 403
        deleted = client.delete(f"/sales/{sale['id']}", headers=OWNER)
        assert deleted.status_code == 200
        assert deleted.json()["status"] == "reversed"
        assert client.get(f"/inventory/{product_id}", headers=OWNER).json()["current_stock"] == 3

    def test_insufficient_stock_is_conflict(self, client, product_id) -> None:
        response = client.post("/sales", json={"items": [{"product_id": product_id, "quantity": 5}]}, headers=OWNER)

        assert response.status_code == 409
        assert response.json() == {
            "error": "insufficient_stock",
            "detail": 'Insufficient stock for "Green Tea". Available: 3, Requested: 5',
            "product_id": product_id,
            "product": "Green Tea",
            "available": 3,
            "requested": 5,
        }

    def test_purchase_and_read_back(self, client, product_id) -> None:
        supplier = client.post("/parties", json={"role": "supplier", "name": "Leaf Co"}, headers=OWNER).json()
        created = client.post(
            "/purchases",
            json={
                "supplier_id": supplier["id"],
                "items": [{"product_id": product_id, "quantity": 3, "unit_price": "5.00"}],
            },
            headers=OWNER,
        )
        assert created.status_code == 201

        fetched = client.get(f"/purchases/{created.json()['id']}", headers=EMPLOYEE).json()
        assert fetched["due"] == "15.00"
        assert len(fetched["items"]) == 1
        stock = client.get(f"/inventory/{product_id}", headers=OWNER).json()
        assert stock["product"]["cost_price"] == "4.50"

    def test_document_payments(self, client, product_id) -> None:
        sale = client.post("/sales", json={"items": [{"product_id": product_id, "quantity": 2}]}, headers=OWNER).json()
        client.delete(f"/sales/{sale['id']}", headers=OWNER)

        payments = client.get(f"/sales/{sale['id']}/payments", headers=EMPLOYEE).json()

        assert [(p["direction"], p["amount"]) for p in payments] == [("in", "13.00"), ("in", "-13.00")]
        assert payments[1]["reverses_payment_id"] == payments[0]["id"]
        assert client.get("/purchases/404/payments", headers=OWNER).status_code == 404


class TestPartyRoutes:
    """Ledgers and payments"""

    def test_payment_over_balance_is_conflict(self, client) -> None:
        supplier = client.post(
            "/parties",
            json={"role": "supplier", "name": "Leaf Co", "opening_balance": "5000"},
            headers=OWNER,
        ).json()

        paid = client.post(f"/parties/{supplier['id']}/payments", json={"amount": "2000"}, headers=OWNER)
        assert paid.status_code == 201
        assert paid.json()["balance"] == "3000.00"

        refused = client.post(f"/parties/{supplier['id']}/payments", json={"amount": "4000"}, headers=OWNER)
        assert refused.status_code == 409
        assert refused.json()["outstanding"] == "3000.00"

        ledger = client.get(f"/parties/{supplier['id']}/ledger", headers=EMPLOYEE).json()
        assert [entry["balance"] for entry in ledger] == ["5000.00", "3000.00"]

        removed = client.delete(f"/party-entries/{paid.json()['id']}", headers=OWNER)
        assert removed.json() == {"entry_id": paid.json()["id"], "balance": "5000.00"}


class TestLedgerRoutes:
    """Accounts and reconciliation"""

    def test_accounts_and_reconcile(self, client, product_id) -> None:
        accounts = client.get("/accounts", headers=EMPLOYEE).json()
        inventory = next(account for account in accounts if account["code"] == "1004")
        assert inventory["balance"] == "12.00"

        assert client.post("/reconcile", headers=EMPLOYEE).status_code == 403
        report = client.post("/reconcile", json={"kinds": ["party", "account"]}, headers=OWNER)
        assert report.status_code == 200
        assert report.json()["corrected_fields"] == []

    def test_journal_entries(self, client) -> None:
        entry = {"debit_code": "1001", "credit_code": "3001", "amount": "500", "description": "Owner capital"}
        assert client.post("/transactions", json=entry, headers=EMPLOYEE).status_code == 403

        created = client.post("/transactions", json=entry, headers=OWNER)
        assert created.status_code == 201
        body = created.json()
        assert (body["debit_code"], body["credit_code"], body["amount"]) == ("1001", "3001", "500.00")
        assert body["debit_name"] == "Cash in Hand"

        listed = client.get("/transactions", headers=EMPLOYEE).json()
        assert [row["id"] for row in listed] == [body["id"]]
        balances = {account["code"]: account["balance"] for account in client.get("/accounts", headers=OWNER).json()}
        assert (balances["1001"], balances["3001"]) == ("500.00", "-500.00")

    def test_journal_entry_errors(self, client) -> None:
        same = {"debit_code": "1001", "credit_code": "1001", "amount": "5", "description": "Loop"}
        unknown = {"debit_code": "1001", "credit_code": "9999", "amount": "5", "description": "Nowhere"}

        assert client.post("/transactions", json=same, headers=OWNER).status_code == 400
        assert client.post("/transactions", json=unknown, headers=OWNER).status_code == 404
        assert client.get("/transactions", headers=OWNER).json() == []
