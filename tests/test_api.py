"""HTTP-level tests for the expense approval API."""

from decimal import Decimal

import pytest

LAPTOP = {"title": "Laptop", "amount": 999.99, "category": "Equipment", "date": "2024-01-15"}


def as_user(principal):
    return {"X-User-Id": principal.id}


@pytest.fixture
def submitted(client, employee):
    resp = client.post("/expenses", json=LAPTOP, headers=as_user(employee))
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["status"] == "ok"


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Request-Id": "abc123"})
    assert resp.headers["X-Request-Id"] == "abc123"
    assert client.get("/health").headers["X-Request-Id"]


def test_me(client, manager):
    body = client.get("/me", headers=as_user(manager)).json()
    assert body["role"] == "MANAGER"
    assert body["email"] == "maya@example.com"


@pytest.mark.parametrize("headers", [{}, {"X-User-Id": ""}, {"X-User-Id": "unknown-user"}])
def test_unauthenticated_requests(client, headers):
    resp = client.post("/expenses", json=LAPTOP, headers=headers)
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHENTICATED"


def test_submit_expense(submitted, employee):
    assert submitted["status"] == "PENDING"
    assert submitted["owner_id"] == employee.id
    assert submitted["owner_name"] == "Alice Employee"
    assert Decimal(submitted["amount"]) == Decimal("999.99")
    assert submitted["date"] == "2024-01-15"


@pytest.mark.parametrize(
    "payload",
    [
        {**LAPTOP, "amount": -5},
        {**LAPTOP, "amount": 0},
        {**LAPTOP, "amount": "lots"},
        {**LAPTOP, "amount": 1e30},
        {**LAPTOP, "title": "  "},
        {k: v for k, v in LAPTOP.items() if k != "category"},
        {k: v for k, v in LAPTOP.items() if k != "date"},
        {**LAPTOP, "date": "not-a-date"},
    ],
)
def test_submit_invalid_expense_creates_nothing(client, employee, manager, payload):
    resp = client.post("/expenses", json=payload, headers=as_user(employee))
    assert resp.status_code == 422

    listing = client.get("/manager/expenses", headers=as_user(manager)).json()
    assert listing["count"] == 0


def test_list_my_expenses_with_filters(client, employee, manager, submitted):
    client.post("/expenses", json={**LAPTOP, "title": "Mouse", "amount": 25}, headers=as_user(employee))
    client.post(
        f"/manager/expenses/{submitted['id']}/decision",
        json={"decision": "APPROVED"},
        headers=as_user(manager),
    )

    mine = client.get("/expenses/my", headers=as_user(employee)).json()
    assert mine["count"] == 2
    assert Decimal(mine["total"]) == Decimal("1024.99")

    approved = client.get("/expenses/my", params={"status": "APPROVED"}, headers=as_user(employee)).json()
    assert [e["id"] for e in approved["expenses"]] == [submitted["id"]]

    ignored = client.get("/expenses/my", params={"status": "WHATEVER"}, headers=as_user(employee)).json()
    assert ignored["count"] == 2


def test_approval_scenario(client, manager, second_manager, submitted):
    url = f"/manager/expenses/{submitted['id']}/decision"

    resp = client.post(url, json={"decision": "APPROVED", "remark": "ok"}, headers=as_user(manager))
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Expense approved successfully"
    assert body["expense"]["status"] == "APPROVED"
    assert body["approval"]["decision"] == "APPROVED"
    assert body["approval"]["approver_id"] == manager.id
    assert body["approval"]["remark"] == "ok"

    again = client.post(url, json={"decision": "REJECTED"}, headers=as_user(second_manager))
    assert again.status_code == 409
    assert again.json() == {"detail": "Only pending expenses can be reviewed", "code": "INVALID_STATE"}

    history = client.get(f"/manager/expenses/{submitted['id']}/history", headers=as_user(manager)).json()
    assert history["expense"]["status"] == "APPROVED"
    assert len(history["approvals"]) == 1
    assert history["approvals"][0]["approver_name"] == "Maya Manager"


def test_employee_cannot_decide(client, employee, submitted):
    resp = client.post(
        f"/manager/expenses/{submitted['id']}/decision",
        json={"decision": "APPROVED"},
        headers=as_user(employee),
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "FORBIDDEN"


def test_decision_validation_and_missing_expense(client, manager, submitted):
    bad = client.post(
        f"/manager/expenses/{submitted['id']}/decision",
        json={"decision": "MAYBE"},
        headers=as_user(manager),
    )
    assert bad.status_code == 422
    assert bad.json()["code"] == "VALIDATION_ERROR"

    missing = client.post(
        "/manager/expenses/missing/decision", json={"decision": "APPROVED"}, headers=as_user(manager)
    )
    assert missing.status_code == 404


def test_pending_queue_shrinks_after_decision(client, employee, manager, submitted):
    other = client.post("/expenses", json={**LAPTOP, "title": "Dock"}, headers=as_user(employee)).json()

    before = client.get("/manager/expenses/pending", headers=as_user(manager)).json()
    assert {e["id"] for e in before["expenses"]} == {submitted["id"], other["id"]}

    client.post(
        f"/manager/expenses/{submitted['id']}/decision",
        json={"decision": "REJECTED", "remark": "over budget"},
        headers=as_user(manager),
    )

    after = client.get("/manager/expenses/pending", headers=as_user(manager)).json()
    assert [e["id"] for e in after["expenses"]] == [other["id"]]

    rejected = client.get("/manager/expenses", params={"status": "REJECTED"}, headers=as_user(manager)).json()
    assert [e["id"] for e in rejected["expenses"]] == [submitted["id"]]


def test_manager_routes_reject_employees(client, employee):
    for path in ("/manager/expenses/pending", "/manager/expenses", "/manager/approvals"):
        assert client.get(path, headers=as_user(employee)).status_code == 403


def test_expense_visibility(client, employee, other_employee, manager, submitted):
    path = f"/expenses/{submitted['id']}"
    assert client.get(path, headers=as_user(employee)).status_code == 200
    assert client.get(path, headers=as_user(manager)).status_code == 200
    assert client.get(path, headers=as_user(other_employee)).status_code == 403
    assert client.get("/expenses/missing", headers=as_user(manager)).status_code == 404


def test_owner_sees_own_history(client, employee, other_employee, submitted):
    resp = client.get(f"/expenses/{submitted['id']}/history", headers=as_user(employee))
    assert resp.status_code == 200
    assert resp.json()["approvals"] == []

    denied = client.get(f"/expenses/{submitted['id']}/history", headers=as_user(other_employee))
    assert denied.status_code == 403


def test_my_decisions(client, manager, submitted):
    client.post(
        f"/manager/expenses/{submitted['id']}/decision",
        json={"decision": "APPROVED"},
        headers=as_user(manager),
    )
    decisions = client.get("/manager/approvals", headers=as_user(manager)).json()
    assert [a["expense_id"] for a in decisions] == [submitted["id"]]


def test_categories(client, employee):
    client.post("/expenses", json={**LAPTOP, "category": "Client dinner"}, headers=as_user(employee))
    categories = client.get("/expenses/categories").json()
    assert categories[0] == "Supplies"
    assert "Client dinner" in categories
