import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, enable_sqlite_pragmas
from main import app, get_db


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client: TestClient, name: str) -> dict[str, object]:
    response = client.post(
        "/api/users", json={"name": name, "email": f"{name.lower()}@example.com"}
    )
    assert response.status_code == 201
    body = response.json()
    return {"Authorization": f"Bearer {body['token']}", "id": body["user"]["id"]}


def _headers(user: dict) -> dict[str, str]:
    return {"Authorization": user["Authorization"]}


def test_requests_without_token_are_rejected(client):
    assert client.get("/api/users/me").status_code == 401
    response = client.get(
        "/api/users/me", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


def test_settle_without_partner_asks_to_link(client):
    alice = _register(client, "Alice")
    response = client.get(
        "/api/summary/settle",
        params={"month": 6, "year": 2025, "scope": "partner"},
        headers=_headers(alice),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["scope"] == "mine"
    assert body["settlement"] == {
        "amount": "0.00",
        "creditor": None,
        "debtor": None,
        "message": "Link a partner to calculate settlements.",
    }


def test_bad_date_path_parameter_is_400(client):
    alice = _register(client, "Alice")
    response = client.get(
        "/api/analytics/trends/2025-1-01/2025-12-31", headers=_headers(alice)
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid date format. Use YYYY-MM-DD"


def test_couple_flow_settles_shared_expenses(client):
    alice = _register(client, "Alice")
    bob = _register(client, "Bob")

    link = client.post(
        "/api/couple/link",
        json={"partner_email": "bob@example.com"},
        headers=_headers(alice),
    )
    assert link.status_code == 200

    category = client.post(
        "/api/categories", json={"name": "Groceries"}, headers=_headers(alice)
    ).json()

    expense = client.post(
        "/api/expenses",
        json={
            "date": "2025-06-10",
            "amount": 100,
            "category_id": category["id"],
            "paid_by_user_id": alice["id"],
            "split_type": "50/50",
        },
        headers=_headers(alice),
    )
    assert expense.status_code == 201

    personal = client.post(
        "/api/expenses",
        json={
            "date": "2025-06-11",
            "amount": 500,
            "category_id": category["id"],
            "paid_by_user_id": bob["id"],
            "split_type": "personal",
        },
        headers=_headers(bob),
    )
    assert personal.status_code == 201

    settle = client.get(
        "/api/summary/settle",
        params={"month": 6, "year": 2025},
        headers=_headers(alice),
    ).json()
    assert settle["total_shared_expenses"] == "100.00"
    assert settle["settlement"]["message"] == "Bob owes Alice 50.00 SEK"

    ours = client.get("/api/expenses", params={"scope": "ours"}, headers=_headers(alice))
    assert [e["amount"] for e in ours.json()["items"]] == [100.0]


def test_custom_split_must_sum_to_100(client):
    alice = _register(client, "Alice")
    category = client.post(
        "/api/categories", json={"name": "Rent"}, headers=_headers(alice)
    ).json()
    response = client.post(
        "/api/expenses",
        json={
            "date": "2025-06-10",
            "amount": 100,
            "category_id": category["id"],
            "paid_by_user_id": alice["id"],
            "split_type": "custom",
            "split_ratio_user1": 60,
            "split_ratio_user2": 30,
        },
        headers=_headers(alice),
    )
    assert response.status_code == 422


def test_link_conflict_is_409(client):
    alice = _register(client, "Alice")
    _register(client, "Bob")
    carol = _register(client, "Carol")
    client.post(
        "/api/couple/link", json={"partner_email": "bob@example.com"}, headers=_headers(alice)
    )
    response = client.post(
        "/api/couple/link", json={"partner_email": "bob@example.com"}, headers=_headers(carol)
    )
    assert response.status_code == 409


def test_unknown_expense_is_404(client):
    alice = _register(client, "Alice")
    assert client.get("/api/expenses/999", headers=_headers(alice)).status_code == 404


def test_recurring_generate_via_api_is_idempotent(client):
    alice = _register(client, "Alice")
    category = client.post(
        "/api/categories", json={"name": "Housing"}, headers=_headers(alice)
    ).json()
    created = client.post(
        "/api/recurring-expenses",
        json={
            "description": "Rent",
            "default_amount": 100,
            "category_id": category["id"],
            "paid_by_user_id": alice["id"],
        },
        headers=_headers(alice),
    )
    assert created.status_code == 201

    first = client.post(
        "/api/recurring-expenses/generate",
        json={"year": 2025, "month": 6},
        headers=_headers(alice),
    ).json()
    second = client.post(
        "/api/recurring-expenses/generate",
        json={"year": 2025, "month": 6},
        headers=_headers(alice),
    ).json()
    assert first["generated_count"] == 1
    assert second["generated_count"] == 0

    expenses = client.get(
        "/api/expenses",
        params={"start": "2025-06-01", "end": "2025-06-30"},
        headers=_headers(alice),
    ).json()["items"]
    assert len(expenses) == 1
    assert expenses[0]["date"] == "2025-06-01"


def _category(client: TestClient, user: dict, name: str) -> int:
    response = client.post("/api/categories", json={"name": name}, headers=_headers(user))
    assert response.status_code == 201
    return response.json()["id"]


def _expense(client: TestClient, user: dict, category_id: int, day: str, amount: float) -> None:
    response = client.post(
        "/api/expenses",
        json={
            "date": day,
            "amount": amount,
            "category_id": category_id,
            "paid_by_user_id": user["id"],
            "split_type": "50/50",
        },
        headers=_headers(user),
    )
    assert response.status_code == 201


def _income(client: TestClient, user: dict, day: str, amount: float) -> int:
    response = client.post(
        "/api/incomes", json={"date": day, "amount": amount}, headers=_headers(user)
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_expense_without_date_defaults_to_today(client, monkeypatch):
    from datetime import date

    import services

    monkeypatch.setattr(services, "local_today", lambda: date(2025, 6, 17))
    alice = _register(client, "Alice")
    category_id = _category(client, alice, "Groceries")

    response = client.post(
        "/api/expenses",
        json={"amount": 42, "category_id": category_id, "paid_by_user_id": alice["id"]},
        headers=_headers(alice),
    )
    assert response.status_code == 201
    assert response.json()["date"] == "2025-06-17"


def test_category_update_and_delete(client):
    alice = _register(client, "Alice")
    used = _category(client, alice, "Groceries")
    unused = _category(client, alice, "Travel")
    _expense(client, alice, used, "2025-06-10", 100)

    renamed = client.put(
        f"/api/categories/{unused}",
        json={"name": "Holidays", "color": "#00aa00"},
        headers=_headers(alice),
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Holidays"

    clash = client.put(
        f"/api/categories/{unused}", json={"name": "groceries"}, headers=_headers(alice)
    )
    assert clash.status_code == 400

    refused = client.delete(f"/api/categories/{used}", headers=_headers(alice))
    assert refused.status_code == 400
    assert refused.json()["detail"] == "Cannot delete a category that is being used by expenses"

    assert client.delete(f"/api/categories/{unused}", headers=_headers(alice)).status_code == 204
    missing = client.delete(f"/api/categories/{unused}", headers=_headers(alice))
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Category not found"

    names = [c["name"] for c in client.get("/api/categories", headers=_headers(alice)).json()]
    assert names == ["Groceries"]


def test_income_delete_is_limited_to_owner(client):
    alice = _register(client, "Alice")
    bob = _register(client, "Bob")
    income_id = _income(client, alice, "2025-06-01", 3000)

    foreign = client.delete(f"/api/incomes/{income_id}", headers=_headers(bob))
    assert foreign.status_code == 404
    assert foreign.json()["detail"] == "Income entry not found"

    assert client.delete(f"/api/incomes/{income_id}", headers=_headers(alice)).status_code == 204
    assert client.get("/api/incomes", headers=_headers(alice)).json() == []


def test_income_expenses_merges_months(client):
    alice = _register(client, "Alice")
    category_id = _category(client, alice, "Groceries")
    _income(client, alice, "2025-05-01", 1000)
    _income(client, alice, "2025-06-01", 1000)
    _expense(client, alice, category_id, "2025-06-12", 250)
    _expense(client, alice, category_id, "2025-07-03", 50)

    response = client.get(
        "/api/analytics/income-expenses/2025-01-01/2025-12-31", headers=_headers(alice)
    )
    assert response.status_code == 200
    body = response.json()
    assert body["monthly_data"] == [
        {"month": "2025-05", "income": 1000.0, "expenses": 0.0, "savings_rate": 100.0},
        {"month": "2025-06", "income": 1000.0, "expenses": 250.0, "savings_rate": 75.0},
        {"month": "2025-07", "income": 0.0, "expenses": 50.0, "savings_rate": 0.0},
    ]
    summary = body["summary"]
    assert summary["total_income"] == 2000.0
    assert summary["total_expenses"] == 300.0
    assert summary["total_surplus"] == 1700.0
    assert summary["avg_savings_rate"] == 58.33
    assert summary["savings_trend"] == 0.0
    assert summary["savings_trend_direction"] == "stable"
    assert summary["month_count"] == 3


def test_savings_analysis_reports_missing_data(client):
    alice = _register(client, "Alice")
    _income(client, alice, "2025-06-01", 1000)

    response = client.get(
        "/api/analytics/savings-analysis/2025-01-01/2025-12-31", headers=_headers(alice)
    )
    assert response.status_code == 200
    body = response.json()
    assert body["monthly_data"] == []
    assert body["summary"]["trend_direction"] == "no-data"
    availability = body["data_availability"]
    assert availability["has_income"] is True
    assert availability["has_expenses"] is False
    assert availability["income_entries"] == 1
    assert availability["required_for_meaningful_analysis"] == 2
    assert "no expense entries" in availability["message"]


def test_savings_analysis_with_trend_and_goals(client):
    alice = _register(client, "Alice")
    category_id = _category(client, alice, "Groceries")
    goal = client.post(
        "/api/savings/goals",
        json={"goal_name": "Trip", "target_amount": 2000},
        headers=_headers(alice),
    )
    assert goal.status_code == 201

    # savings rates 50, 50, 50, 60: the last three average 53.33 against 50 earlier
    for month, spent in (("01", 500), ("02", 500), ("03", 500), ("04", 400)):
        _income(client, alice, f"2025-{month}-01", 1000)
        _expense(client, alice, category_id, f"2025-{month}-15", spent)

    body = client.get(
        "/api/analytics/savings-analysis/2025-01-01/2025-04-30", headers=_headers(alice)
    ).json()
    assert [m["savings"] for m in body["monthly_data"]] == [500.0, 500.0, 500.0, 600.0]
    assert body["savings_goals"][0]["goal_name"] == "Trip"
    assert body["savings_goals"][0]["progress_percentage"] == 0.0
    summary = body["summary"]
    assert summary["total_savings"] == 2100.0
    assert summary["average_savings_rate"] == 52.5
    assert summary["savings_rate_trend"] == 6.67
    assert summary["trend_direction"] == "improving"
    assert "data_availability" not in body


def test_savings_analysis_single_month_is_insufficient(client):
    alice = _register(client, "Alice")
    category_id = _category(client, alice, "Groceries")
    _income(client, alice, "2025-06-01", 1000)
    _expense(client, alice, category_id, "2025-06-15", 200)

    body = client.get(
        "/api/analytics/savings-analysis/2025-06-01/2025-06-30", headers=_headers(alice)
    ).json()
    assert body["summary"]["trend_direction"] == "insufficient-data"
    assert body["summary"]["average_savings_rate"] == 80.0
    assert body["data_availability"]["months_with_data"] == 1


@pytest.mark.parametrize(
    "path",
    [
        "/api/analytics/income-expenses/2025-13-01/2025-12-31",
        "/api/analytics/savings-analysis/2025-01-01/31-12-2025",
    ],
)
def test_income_analytics_reject_bad_dates(client, path):
    alice = _register(client, "Alice")
    assert client.get(path, headers=_headers(alice)).status_code == 400
