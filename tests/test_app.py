import pytest

from recon_calc_web.app import create_app

ITEM = {
    "client_id": "client-1",
    "account_code": "2300",
    "role": "income",
    "counterparty": "Northwind Ltd",
    "description": "Support contract",
    "start_date": "2026-01-09",
    "end_date": "2026-04-08",
    "total_amount": "9000.00",
    "spread_method": "daily_proration",
}


@pytest.fixture
def client(tmp_path):
    app = create_app(f"sqlite:///{tmp_path / 'app.sqlite3'}")
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def created(client):
    response = client.post("/api/items", json=ITEM)
    assert response.status_code == 201
    return response.get_json()


def test_create_item_returns_schedule(created):
    assert created["customer"] == "Northwind Ltd"
    assert created["spread_method"] == "daily_proration"
    assert created["number_of_months"] == 4
    assert [line["monthly_amount"] for line in created["schedule"]] == ["2300.00", "2800.00", "3100.00", "800.00"]
    assert created["schedule"][-1]["closing_balance"] == "0.00"


def test_create_item_validation_error_is_reported_verbatim(client):
    response = client.post("/api/items", json=dict(ITEM, end_date="2026-01-09"))
    assert response.status_code == 400
    assert response.get_json() == {"error": "End date must be after start date"}


def test_create_item_oversized_total(client):
    response = client.post("/api/items", json=dict(ITEM, total_amount="1e30"))
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Amount must be below")


def test_override_sub_cent_amount(client, created):
    line_id = created["schedule"][1]["id"]
    response = client.post(f"/api/items/{created['id']}/lines/{line_id}/override", json={"amount": "100.005"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Override amount must have at most two decimal places"


def test_create_item_missing_fields(client):
    response = client.post("/api/items", json={"client_id": "client-1"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Missing required fields"


def test_unknown_spread_method(client):
    response = client.post("/api/items", json=dict(ITEM, spread_method="weekly"))
    assert response.status_code == 400


def test_get_unknown_item(client):
    response = client.get("/api/items/nope")
    assert response.status_code == 404


def test_override_line(client, created):
    line_id = created["schedule"][0]["id"]
    response = client.post(
        f"/api/items/{created['id']}/lines/{line_id}/override",
        json={"amount": "2000.00", "audit_note": "Agreed with client"},
    )
    assert response.status_code == 200
    schedule = response.get_json()["schedule"]
    assert [line["monthly_amount"] for line in schedule] == ["2000.00", "2333.33", "2333.33", "2333.34"]
    assert schedule[0]["is_overridden"] is True
    assert schedule[0]["override_amount"] == "2000.00"
    assert schedule[0]["original_amount"] == "2300.00"

    fetched = client.get(f"/api/items/{created['id']}").get_json()
    assert fetched["schedule"] == schedule


def test_override_negative_amount(client, created):
    line_id = created["schedule"][0]["id"]
    response = client.post(f"/api/items/{created['id']}/lines/{line_id}/override", json={"amount": "-1"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Override amount cannot be negative"


def test_override_unknown_line(client, created):
    response = client.post(f"/api/items/{created['id']}/lines/nope/override", json={"amount": "1"})
    assert response.status_code == 404


def test_grid_and_ledger_variance(client, created):
    response = client.put(
        "/api/ledger-balances",
        json={"client_id": "client-1", "account_code": "2300", "month_end_date": "2026-02-28", "balance": "3900.00"},
    )
    assert response.status_code == 200

    grid = client.get("/api/grid?client_id=client-1&account_code=2300&role=income&period=2026-02").get_json()
    assert grid["viewing_month_end"] == "2026-02-28"
    assert grid["month_columns"] == ["2026-02-28", "2026-03-31", "2026-04-30"]
    assert grid["totals"]["2026-02-28"] == {"total_recognised": "2800.00", "closing_balance": "3900.00"}
    assert grid["ledger_balances"] == {"2026-02-28": "3900.00"}
    assert grid["current"] == {"variance_amount": "0.00", "is_reconciled": True, "tolerance": "schedule"}
    assert len(grid["items"]) == 1


def test_grid_requires_period(client):
    response = client.get("/api/grid?client_id=client-1&account_code=2300")
    assert response.status_code == 400


def test_cancel_and_delete(client, created):
    assert client.post(f"/api/items/{created['id']}/cancel").status_code == 200
    assert client.get(f"/api/items/{created['id']}").get_json()["status"] == "cancelled"

    grid = client.get("/api/grid?client_id=client-1&account_code=2300&role=income&period=2026-02").get_json()
    assert grid["items"] == []

    assert client.delete(f"/api/items/{created['id']}").status_code == 200
    assert client.get(f"/api/items/{created['id']}").status_code == 404


def test_refresh_statuses(client, created):
    response = client.post(
        "/api/statuses/refresh",
        json={"client_id": "client-1", "account_code": "2300", "role": "income", "period": "2026-04"},
    )
    assert response.get_json() == {"fully_recognised": [created["id"]]}
    assert client.get(f"/api/items/{created['id']}").get_json()["status"] == "fully_recognised"


@pytest.mark.parametrize("tolerance, reconciled", [("schedule", True), ("exact", False)])
def test_variance_endpoint(client, tolerance, reconciled):
    response = client.post(
        "/api/variance",
        json={"ledger_balance": "1000.00", "comparison_total": "999.995", "tolerance": tolerance},
    )
    assert response.get_json() == {"variance_amount": "0.01", "is_reconciled": reconciled, "tolerance": tolerance}


def test_variance_endpoint_unknown_tolerance(client):
    response = client.post(
        "/api/variance", json={"ledger_balance": "1", "comparison_total": "1", "tolerance": "loose"}
    )
    assert response.status_code == 400
