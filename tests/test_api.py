import logging
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import recurrence
import services
from config import get_settings
from database import Base, enable_sqlite_pragmas
from extraction import ExtractionError
from main import app, get_db, get_extractor
from schemas import ExtractedTransaction


class FakeExtractor:
    rows = [
        {"date": "2024-01-05", "vendor": "Loblaws", "amount": -45.2, "isShared": True},
        {"date": "2024-01-09", "vendor": "Netflix", "amount": 15.99},
    ]
    error = None

    def extract(self, raw_content):
        if self.error:
            raise self.error
        return [ExtractedTransaction.model_validate(row) for row in self.rows]


@pytest.fixture()
def extractor():
    return FakeExtractor()


@pytest.fixture()
def client(extractor):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_extractor] = lambda: extractor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _upload(client, name="jan.csv", owner="combined"):
    return client.post(
        "/api/statements/upload",
        files={"file": (name, b"Date,Vendor,Amount\n2024-01-05,Loblaws,45.20\n")},
        data={"owner": owner},
    )


def _expense(client, **overrides):
    payload = {
        "date": "2024-01-10",
        "vendor": "Costco",
        "amount": 100,
        "category": "Groceries",
        "owner": "combined",
    }
    payload.update(overrides)
    return client.post("/api/transactions", json=payload)


def test_pdf_upload_is_rejected(client) -> None:
    res = _upload(client, name="statement.pdf")
    assert res.status_code == 400
    assert res.json() == {
        "message": "Unsupported file type. Please upload CSV or Excel files."
    }
    assert client.get("/api/statements").json() == []


def test_upload_and_process_statement(client) -> None:
    res = _upload(client, owner="member2")
    assert res.status_code == 201
    statement = res.json()
    assert statement["status"] == "pending"
    assert statement["owner"] == "member2"

    res = client.post(f"/api/statements/{statement['id']}/process")
    assert res.json() == {"message": "Processing complete"}

    res = client.post(f"/api/statements/{statement['id']}/process")
    assert res.json() == {"message": "Already processed"}

    detail = client.get(f"/api/statements/{statement['id']}").json()
    assert detail["status"] == "processed"
    assert "rawContent" in detail
    assert sorted(t["vendor"] for t in detail["transactions"]) == ["Loblaws", "Netflix"]
    assert {t["owner"] for t in detail["transactions"]} == {"member2"}
    assert {t["statementId"] for t in detail["transactions"]} == {statement["id"]}


def test_processing_failure_is_reported(client, extractor) -> None:
    extractor.error = ExtractionError("upstream down")
    statement = _upload(client).json()

    res = client.post(f"/api/statements/{statement['id']}/process")
    assert res.status_code == 502
    assert client.get(f"/api/statements/{statement['id']}").json()["status"] == "failed"

    assert client.post("/api/statements/999/process").status_code == 404


def test_delete_statement_removes_its_transactions(client) -> None:
    statement = _upload(client).json()
    client.post(f"/api/statements/{statement['id']}/process")
    ids = [
        t["id"]
        for t in client.get(f"/api/statements/{statement['id']}").json()["transactions"]
    ]

    assert client.delete(f"/api/statements/{statement['id']}").status_code == 204
    assert client.get(f"/api/statements/{statement['id']}").status_code == 404
    assert client.get("/api/transactions").json() == []
    for txn_id in ids:
        assert client.delete(f"/api/transactions/{txn_id}").status_code == 404


def test_create_transaction_returns_camel_case(client) -> None:
    res = _expense(client, member1Share=30, isShared=True)
    assert res.status_code == 201
    body = res.json()
    assert body["member1Share"] == 30
    assert body["member2Share"] == 70
    assert body["splitType"] == "custom"
    assert body["isShared"] is True
    assert body["date"].startswith("2024-01-10T00:00:00")


def test_invalid_transaction_is_a_400(client) -> None:
    res = _expense(client, category="Food")
    assert res.status_code == 400
    assert res.json()["field"] == "category"

    res = _expense(client, member1Share=80, member2Share=80)
    assert res.status_code == 400
    assert res.json() == {"message": "Member shares must add up to 100"}


def test_list_transactions_with_filters(client) -> None:
    _expense(client, vendor="Esso", category="Fuel", owner="member1")
    _expense(client, vendor="Hydro", category="Utilities", date="2024-02-03")

    res = client.get("/api/transactions", params={"owner": "member1"})
    assert [t["vendor"] for t in res.json()] == ["Esso"]

    res = client.get(
        "/api/transactions", params={"monthFrom": "2024-02", "monthTo": "2024-02"}
    )
    assert [t["vendor"] for t in res.json()] == ["Hydro"]

    assert client.get("/api/transactions", params={"owner": "x"}).status_code == 400
    assert client.get("/api/transactions", params={"month": "2024"}).status_code == 400


def test_update_and_bulk_delete(client) -> None:
    first = _expense(client).json()
    second = _expense(client, vendor="Shell", category="Fuel").json()

    res = client.put(f"/api/transactions/{first['id']}", json={"amount": "12.34"})
    assert res.status_code == 200
    assert res.json()["amount"] in ("12.34", 12.34)

    assert client.put("/api/transactions/999", json={"notes": "x"}).status_code == 404

    res = client.request(
        "DELETE", "/api/transactions/bulk", json={"ids": [first["id"], second["id"]]}
    )
    assert res.status_code == 204
    assert client.get("/api/transactions").json() == []


def test_stats_for_member_view(client) -> None:
    _expense(client, member1Share=30)
    _expense(client, vendor="Pizza Pizza", amount=50, category="Dining", owner="member2")

    res = client.get(
        "/api/stats",
        params={"monthFrom": "2024-01", "monthTo": "2024-01", "owner": "member1"},
    )
    assert res.status_code == 200
    assert res.json() == {
        "totalSpending": 30.0,
        "categoryBreakdown": [{"category": "Groceries", "amount": 30.0}],
    }

    res = client.get(
        "/api/stats/trend",
        params={"monthFrom": "2023-12", "monthTo": "2024-01", "owner": "member2"},
    )
    assert res.json() == [
        {"month": "2023-12", "amount": 0.0},
        {"month": "2024-01", "amount": 120.0},
    ]


def test_accounts_are_isolated(client) -> None:
    _expense(client, vendor="Private")
    res = client.get("/api/transactions", headers={"X-Account-Id": "neighbours"})
    assert res.json() == []


def test_household_lifecycle(client) -> None:
    assert client.get("/api/household").json() is None
    assert client.patch("/api/household", json={"name": "x"}).status_code == 404

    res = client.post(
        "/api/household", json={"name": "Home", "member1Name": "Noble"}
    )
    assert res.status_code == 201
    assert res.json()["member2Name"] is None

    res = client.post(
        "/api/household",
        json={"name": "Home", "member1Name": "Noble", "member2Name": "Maria"},
    )
    assert res.status_code == 200

    res = client.patch("/api/household", json={"name": "Our Place"})
    assert res.json()["name"] == "Our Place"
    assert res.json()["member2Name"] == "Maria"


def test_categories(client) -> None:
    categories = client.get("/api/categories").json()
    assert len(categories) == 21
    subscriptions = next(c for c in categories if c["name"] == "Subscriptions")
    assert "netflix" in subscriptions["keywords"]


def test_recurring_expense_with_utc_timestamp(client, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "timezone", "America/Toronto")
    monkeypatch.setattr(services, "local_now", lambda: datetime(2024, 4, 20))
    monkeypatch.setattr(recurrence, "local_now", lambda: datetime(2024, 4, 20))
    payload = {
        "date": "2024-01-01T00:00:00.000Z",
        "vendor": "Netflix",
        "amount": 15,
        "category": "Subscriptions",
        "isRecurring": True,
        "recurrenceFrequency": "monthly",
    }

    res = client.post("/api/transactions", json=payload)
    assert res.status_code == 201
    assert res.json()["date"].startswith("2023-12-31T19:00:00")

    res = client.get("/api/transactions", params={"monthTo": "2024-04"})
    dates = sorted(t["date"][:10] for t in res.json())
    assert dates == ["2023-12-31", "2024-01-31", "2024-02-29", "2024-03-29"]

    again = client.post("/api/transactions", json=payload)
    assert again.status_code == 400


def test_create_with_unknown_statement_is_404(client) -> None:
    res = _expense(client, statementId=999)
    assert res.status_code == 404
    assert res.json() == {"message": "Statement not found"}


def test_unexpected_errors_are_logged_and_hidden(client, monkeypatch, caplog) -> None:
    def broken(self, *args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(services.StatsService, "compute_stats", broken)
    with TestClient(app, raise_server_exceptions=False) as quiet:
        with caplog.at_level(logging.ERROR, logger="main"):
            res = quiet.get("/api/stats")

    assert res.status_code == 500
    assert res.json() == {"message": "Internal Server Error"}
    assert any(
        r.name == "main" and "unhandled_error" in r.getMessage() for r in caplog.records
    )
