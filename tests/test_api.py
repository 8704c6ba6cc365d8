"""
HTTP surface tests.

The app is built around a fresh component set per test; the lifespan is not
entered, so the background scheduler never runs here.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import OTHER_USER, USER
from ledger.api import create_app


HEADERS = {"X-User-Id": USER}


@pytest.fixture
def client(components):
    return TestClient(create_app(components))


def create_wallet(client, opening=1000, name="Cash", headers=HEADERS):
    response = client.post(
        "/api/wallets",
        json={"name": name, "type": "Bank", "openingBalance": opening},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["data"]["wallet"]


def create_expense(client, wallet, amount, category="Food", date="2024-01-10T00:00:00Z"):
    response = client.post(
        "/api/transactions",
        json={
            "type": "Expense",
            "amount": amount,
            "walletId": wallet["id"],
            "category": category,
            "date": date,
        },
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()["data"]["transaction"]


class TestEnvelope:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert "version" in body["data"]

    def test_missing_identity(self, client):
        response = client.get("/api/wallets")
        assert response.status_code == 401
        assert response.json() == {"status": "error", "message": "Missing user identity"}

    def test_unknown_wallet(self, client):
        response = client.get(
            "/api/wallets/00000000-0000-0000-0000-000000000000", headers=HEADERS
        )
        assert response.status_code == 404
        assert response.json()["status"] == "error"

    def test_malformed_body(self, client):
        response = client.post("/api/wallets", json={"name": "Cash"}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["status"] == "error"


class TestWalletRoutes:

    def test_create_and_read(self, client):
        wallet = create_wallet(client, opening=250.5)
        assert wallet["openingBalance"] == 250.5
        assert wallet["currentBalance"] == 250.5
        assert wallet["type"] == "Bank"

        response = client.get(f"/api/wallets/{wallet['id']}", headers=HEADERS)
        assert response.json()["data"]["wallet"]["name"] == "Cash"

    def test_other_users_wallet_is_hidden(self, client):
        wallet = create_wallet(client, headers={"X-User-Id": OTHER_USER})
        response = client.get(f"/api/wallets/{wallet['id']}", headers=HEADERS)
        assert response.status_code == 404

    def test_delete_in_use_wallet_conflicts(self, client):
        wallet = create_wallet(client)
        create_expense(client, wallet, 10)
        response = client.delete(f"/api/wallets/{wallet['id']}", headers=HEADERS)
        assert response.status_code == 409

    def test_delete_unused_wallet(self, client):
        wallet = create_wallet(client)
        response = client.delete(f"/api/wallets/{wallet['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["message"] == "Wallet deleted successfully"

    def test_opening_balance_edit(self, client):
        wallet = create_wallet(client, opening=1000)
        create_expense(client, wallet, 200)
        response = client.put(
            f"/api/wallets/{wallet['id']}",
            json={"openingBalance": 2000},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["data"]["wallet"]["currentBalance"] == 1800


class TestTransactionRoutes:

    def test_expense_moves_balance(self, client):
        wallet = create_wallet(client, opening=1000)
        transaction = create_expense(client, wallet, 200)
        assert transaction["isRecurring"] is False

        balance = client.get(f"/api/wallets/{wallet['id']}", headers=HEADERS).json()
        assert balance["data"]["wallet"]["currentBalance"] == 800

        response = client.delete(f"/api/transactions/{transaction['id']}", headers=HEADERS)
        assert response.status_code == 200
        assert "data" not in response.json()

        balance = client.get(f"/api/wallets/{wallet['id']}", headers=HEADERS).json()
        assert balance["data"]["wallet"]["currentBalance"] == 1000

    def test_transfer_without_destination(self, client, components):
        wallet = create_wallet(client)
        response = client.post(
            "/api/transactions",
            json={"type": "Transfer", "amount": 100, "walletId": wallet["id"]},
            headers=HEADERS,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["status"] == "error"
        assert body["data"]["issues"][0]["field"] == "toWalletId"
        assert components.client.transactions == {}

    def test_patch(self, client):
        wallet = create_wallet(client, opening=1000)
        transaction = create_expense(client, wallet, 200)
        response = client.patch(
            f"/api/transactions/{transaction['id']}",
            json={"amount": 50},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["data"]["transaction"]["amount"] == 50
        balance = client.get(f"/api/wallets/{wallet['id']}", headers=HEADERS).json()
        assert balance["data"]["wallet"]["currentBalance"] == 950

    def test_stats_match_filtered_listing(self, client):
        """Test that listing stats cover the whole filtered set, not the page."""
        wallet = create_wallet(client, opening=10000)
        for amount in (100, 200, 300):
            create_expense(client, wallet, amount, category="Food")
        create_expense(client, wallet, 5000, category="Rent")

        response = client.get(
            "/api/transactions",
            params={"category": "Food", "includeStats": "true", "limit": 2},
            headers=HEADERS,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["transactions"]) == 2
        assert data["pagination"] == {"total": 3, "page": 1, "pages": 2}
        assert data["stats"]["totalExpenses"] == 600
        assert data["stats"]["byCategory"] == {"Food": 600}

        stats = client.get(
            "/api/transactions/stats", params={"category": "Food"}, headers=HEADERS
        ).json()["data"]["stats"]
        assert stats["totalExpenses"] == 600

    def test_listing_without_stats(self, client):
        wallet = create_wallet(client)
        create_expense(client, wallet, 10)
        data = client.get("/api/transactions", headers=HEADERS).json()["data"]
        assert "stats" not in data
        assert data["pagination"]["total"] == 1

    def test_date_range_filter(self, client):
        wallet = create_wallet(client)
        create_expense(client, wallet, 10, date="2024-01-10T00:00:00Z")
        create_expense(client, wallet, 20, date="2024-03-10T00:00:00Z")
        data = client.get(
            "/api/transactions",
            params={"startDate": "2024-03-01T00:00:00Z", "endDate": "2024-03-31T23:59:59Z"},
            headers=HEADERS,
        ).json()["data"]
        assert [t["amount"] for t in data["transactions"]] == [20]

    def test_suggest(self, client):
        response = client.get(
            "/api/transactions/suggest",
            params={"merchant": "Netflix", "notes": "monthly plan"},
            headers=HEADERS,
        )
        data = response.json()["data"]
        assert data["category"] == "Entertainment"
        assert "monthly" in data["tags"]


class TestResponseCache:

    def test_second_read_is_served_from_cache(self, client):
        create_wallet(client)
        first = client.get("/api/wallets", headers=HEADERS)
        second = client.get("/api/wallets", headers=HEADERS)
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert first.json() == second.json()

    def test_write_invalidates_cached_reads(self, client):
        wallet = create_wallet(client, opening=1000)
        client.get("/api/wallets", headers=HEADERS)
        create_expense(client, wallet, 300)

        response = client.get("/api/wallets", headers=HEADERS)
        assert response.headers["X-Cache"] == "MISS"
        assert response.json()["data"]["wallets"][0]["currentBalance"] == 700

    def test_cache_is_per_user(self, client):
        create_wallet(client)
        client.get("/api/wallets", headers=HEADERS)
        response = client.get("/api/wallets", headers={"X-User-Id": OTHER_USER})
        assert response.headers["X-Cache"] == "MISS"
        assert response.json()["data"]["wallets"] == []

    def test_read_overlapping_a_write_is_not_cached(self, client, components, monkeypatch):
        """Test that a body computed before a concurrent write is not stored."""
        create_wallet(client)
        list_wallets = components.wallets.list_wallets

        async def list_then_write(user_id):
            wallets = await list_wallets(user_id)
            components.cache.invalidate_for_user(user_id)
            return wallets

        monkeypatch.setattr(components.wallets, "list_wallets", list_then_write)
        first = client.get("/api/wallets", headers=HEADERS)
        second = client.get("/api/wallets", headers=HEADERS)
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "MISS"

    def test_errors_are_not_cached(self, client):
        path = "/api/wallets/00000000-0000-0000-0000-000000000000"
        client.get(path, headers=HEADERS)
        response = client.get(path, headers=HEADERS)
        assert response.status_code == 404
        assert "X-Cache" not in response.headers


class TestBudgetRoutes:

    def test_summary_and_alert(self, client, components):
        wallet = create_wallet(client, opening=5000)
        budget = client.post(
            "/api/budgets",
            json={"category": "Food", "amount": 1000, "month": 1, "year": 2024},
            headers=HEADERS,
        ).json()["data"]["budget"]
        create_expense(client, wallet, 900, category="Food")

        summary = client.get(
            "/api/budgets/summary", params={"month": 1, "year": 2024}, headers=HEADERS
        ).json()["data"]["summary"]
        assert summary == [{
            "budgetId": budget["id"],
            "category": "Food",
            "budgeted": 1000,
            "spent": 900,
            "remaining": 100,
            "percentage": 90,
        }]

        response = client.patch(
            f"/api/budgets/{budget['id']}", json={"alertThreshold": 80}, headers=HEADERS
        )
        data = response.json()["data"]
        assert data["alertTriggered"] is True
        assert data["alertDelivered"] is True
        assert len(components.notifier.outbox) == 1

    def test_duplicate_budget_conflicts(self, client):
        payload = {"category": "Food", "amount": 1000, "month": 1, "year": 2024}
        assert client.post("/api/budgets", json=payload, headers=HEADERS).status_code == 201
        response = client.post("/api/budgets", json=payload, headers=HEADERS)
        assert response.status_code == 409

    def test_summary_requires_period(self, client):
        response = client.get("/api/budgets/summary", params={"year": 2024}, headers=HEADERS)
        assert response.status_code == 400


class TestRecurringRoutes:

    def test_create_and_list(self, client):
        wallet = create_wallet(client)
        response = client.post(
            "/api/recurring",
            json={
                "walletId": wallet["id"],
                "type": "Expense",
                "amount": 499,
                "category": "Entertainment",
                "cadence": "monthly",
                "startDate": "2024-01-31T00:00:00Z",
            },
            headers=HEADERS,
        )
        assert response.status_code == 201
        rule = response.json()["data"]["recurringRule"]
        assert rule["nextRunAt"].startswith("2024-02-29")

        rules = client.get("/api/recurring", headers=HEADERS).json()["data"]["rules"]
        assert [r["id"] for r in rules] == [rule["id"]]

    def test_invalid_cadence(self, client):
        wallet = create_wallet(client)
        response = client.post(
            "/api/recurring",
            json={
                "walletId": wallet["id"],
                "type": "Expense",
                "amount": 10,
                "category": "Rent",
                "cadence": "daily",
            },
            headers=HEADERS,
        )
        assert response.status_code == 400
