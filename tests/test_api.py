import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def seed(client: TestClient) -> dict[str, int]:
    user = client.post(
        "/user",
        json={"name": "Test", "email": "test@example.com", "password": "s3cret-pass"},
    )
    assert user.status_code == 200
    assert "password" not in user.json()
    assert "passwordHash" not in user.json()
    user_id = user.json()["id"]

    category = client.post("/categories", json={"name": "Salary", "type": "income"})
    assert category.status_code == 200

    account = client.post(
        f"/user/{user_id}/account",
        json={"name": "Checking", "type": "checking", "balance": 1000},
    )
    assert account.status_code == 200
    assert account.json()["balance"] == 1000
    return {
        "user": user_id,
        "category": category.json()["id"],
        "account": account.json()["id"],
    }


def account_balance(client: TestClient, ids: dict[str, int]) -> float:
    response = client.get(f"/user/{ids['user']}/account/{ids['account']}")
    assert response.status_code == 200
    return response.json()["balance"]


def test_transaction_lifecycle_keeps_balance(client) -> None:
    ids = seed(client)
    base = f"/user/{ids['user']}/transactions"

    created = client.post(
        base,
        json={
            "accountId": ids["account"],
            "categoryId": ids["category"],
            "amount": 100.0,
            "type": "income",
            "date": "2025-01-01T10:00:00.000Z",
            "description": "Test Transaction",
        },
    )
    assert created.status_code == 200
    body = created.json()
    assert body["amount"] == 100.0
    assert body["type"] == "income"
    assert body["accountId"] == ids["account"]
    assert account_balance(client, ids) == 1100

    fetched = client.get(f"{base}/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]

    updated = client.put(
        f"{base}/{body['id']}",
        json={
            "accountId": ids["account"],
            "categoryId": ids["category"],
            "amount": 150.0,
            "type": "income",
            "description": "Updated Transaction",
        },
    )
    assert updated.status_code == 200
    assert updated.json()["amount"] == 150.0
    assert account_balance(client, ids) == 950

    deleted = client.delete(f"{base}/{body['id']}")
    assert deleted.status_code == 200
    assert deleted.json()["id"] == body["id"]
    assert account_balance(client, ids) == 800

    listed = client.get(base)
    assert listed.status_code == 200
    assert listed.json() == []

    report = client.get(f"/user/{ids['user']}/account/{ids['account']}/reconcile")
    assert report.status_code == 200
    assert report.json()["expectedBalance"] == 1000
    assert report.json()["drift"] == -200


def test_invalid_id_is_a_client_error(client) -> None:
    ids = seed(client)

    response = client.get(f"/user/{ids['user']}/transactions/invalid")
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidId"

    response = client.delete("/user/invalid/transactions/1")
    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "Invalid user ID"


def test_malformed_body_is_invalid_request_body(client) -> None:
    ids = seed(client)

    response = client.post(
        f"/user/{ids['user']}/transactions",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidRequestBody"


def test_unknown_type_performs_no_balance_write(client) -> None:
    ids = seed(client)

    response = client.post(
        f"/user/{ids['user']}/transactions",
        json={
            "accountId": ids["account"],
            "categoryId": ids["category"],
            "amount": 10,
            "type": "transfer",
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidTransactionData"
    assert account_balance(client, ids) == 1000


def test_missing_account_on_create_is_a_server_error(client) -> None:
    ids = seed(client)

    response = client.post(
        f"/user/{ids['user']}/transactions",
        json={
            "accountId": 999,
            "categoryId": ids["category"],
            "amount": 10,
            "type": "expense",
        },
    )
    assert response.status_code == 500
    assert response.json()["detail"]["kind"] == "CreationError"
    assert client.get(f"/user/{ids['user']}/transactions").json() == []


def test_deleting_unknown_transaction_is_not_found(client) -> None:
    ids = seed(client)

    response = client.delete(f"/user/{ids['user']}/transactions/999")
    assert response.status_code == 404
    assert response.json()["detail"] == {
        "kind": "NotFound",
        "message": "Transaction not found",
    }
    assert account_balance(client, ids) == 1000


def test_budget_and_category_routes(client) -> None:
    ids = seed(client)

    budget = client.post(
        f"/user/{ids['user']}/budget",
        json={"categoryId": ids["category"], "amount": 250.5, "period": "monthly"},
    )
    assert budget.status_code == 200
    assert budget.json()["amount"] == 250.5

    missing = client.post(
        f"/user/{ids['user']}/budget", json={"categoryId": 404, "amount": 1}
    )
    assert missing.status_code == 404

    bad = client.post(f"/user/{ids['user']}/budget", json={"amount": 1})
    assert bad.status_code == 400
    assert bad.json()["detail"]["kind"] == "InvalidRecordData"

    in_use = client.delete(f"/categories/{ids['category']}")
    assert in_use.status_code == 409


def test_account_update_without_balance_keeps_it(client) -> None:
    ids = seed(client)

    response = client.put(
        f"/user/{ids['user']}/account/{ids['account']}",
        json={"name": "Renamed", "type": "checking"},
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"
    assert account_balance(client, ids) == 1000


def test_oversized_amount_is_invalid_transaction_data(client) -> None:
    ids = seed(client)

    response = client.post(
        f"/user/{ids['user']}/transactions",
        json={
            "accountId": ids["account"],
            "categoryId": ids["category"],
            "amount": "1e30",
            "type": "income",
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidTransactionData"
    assert account_balance(client, ids) == 1000


def test_oversized_id_is_invalid_id(client) -> None:
    ids = seed(client)

    response = client.get(
        f"/user/{ids['user']}/transactions/99999999999999999999999"
    )
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "InvalidId"

    response = client.get("/user/-1/account")
    assert response.status_code == 400
