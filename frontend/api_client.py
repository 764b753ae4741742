"""HTTP helpers for the Streamlit app. Every call returns (success, message, data)."""

import os
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

API_BASE = os.getenv("API_BASE_URL", "http://localhost:8000")
TIMEOUT = 10

STATUSES = ["DRAFT", "PENDING", "APPROVED", "REJECTED"]
STATUS_BADGES = {
    "DRAFT": "📝 Draft",
    "PENDING": "⏳ Pending",
    "APPROVED": "✅ Approved",
    "REJECTED": "❌ Rejected",
}


def _error_detail(resp: requests.Response) -> str:
    try:
        return resp.json().get("detail", resp.text)
    except ValueError:
        return resp.text


def _request(method: str, path: str, user_id: Optional[str], **kwargs) -> tuple[bool, str, dict | list | None]:
    headers = {"X-User-Id": user_id} if user_id else {}
    try:
        resp = requests.request(method, f"{API_BASE}{path}", headers=headers, timeout=TIMEOUT, **kwargs)
    except requests.exceptions.ConnectionError:
        return False, "Could not connect to the API. Please try again.", None
    except requests.exceptions.Timeout:
        return False, "Request timed out. Please refresh before retrying.", None

    if resp.status_code in (200, 201):
        return True, "", resp.json()
    return False, f"API error {resp.status_code}: {_error_detail(resp)}", None


def fetch_me(user_id: str):
    """GET /me."""
    return _request("GET", "/me", user_id)


def submit_expense(user_id: str, payload: dict):
    """POST /expenses. Not retried: a repeat would create a second expense."""
    ok, message, data = _request("POST", "/expenses", user_id, json=payload)
    if ok:
        message = "Expense submitted for review!"
    return ok, message, data


def fetch_my_expenses(user_id: str, status: str = ""):
    """GET /expenses/my."""
    params = {"status": status} if status in STATUSES else {}
    return _request("GET", "/expenses/my", user_id, params=params)


def fetch_categories(user_id: Optional[str] = None) -> list[str]:
    """GET /expenses/categories. Falls back to an empty list."""
    ok, _, data = _request("GET", "/expenses/categories", user_id)
    return data if ok and data else []


def fetch_pending(user_id: str):
    """GET /manager/expenses/pending."""
    return _request("GET", "/manager/expenses/pending", user_id)


def fetch_all_expenses(user_id: str, status: str = ""):
    """GET /manager/expenses."""
    params = {"status": status} if status in STATUSES else {}
    return _request("GET", "/manager/expenses", user_id, params=params)


def post_decision(user_id: str, expense_id: str, decision: str, remark: str = ""):
    """POST /manager/expenses/{id}/decision."""
    payload = {"decision": decision, "remark": remark.strip() or None}
    ok, message, data = _request(
        "POST", f"/manager/expenses/{expense_id}/decision", user_id, json=payload
    )
    if ok:
        message = data.get("message", "Decision recorded.")
    return ok, message, data


def fetch_history(user_id: str, expense_id: str):
    """GET /expenses/{id}/history."""
    return _request("GET", f"/expenses/{expense_id}/history", user_id)


def fetch_my_decisions(user_id: str):
    """GET /manager/approvals."""
    return _request("GET", "/manager/approvals", user_id)


def format_amount(amount) -> str:
    try:
        return f"{Decimal(str(amount)):,.2f}"
    except (InvalidOperation, TypeError):
        return f"{amount}"


def validate_form(title: str, amount_str: str, category: str) -> tuple[list[str], Optional[Decimal]]:
    """Client-side checks before submitting. Returns (errors, parsed amount)."""
    errors = []
    amount_val = None

    if not title.strip():
        errors.append("Title is required.")

    try:
        amount_val = Decimal(amount_str.strip())
        if not amount_val.is_finite() or amount_val <= 0:
            errors.append("Amount must be greater than zero.")
            amount_val = None
    except (InvalidOperation, AttributeError):
        errors.append("Amount must be a valid positive number (e.g. 250 or 99.99).")

    if not category.strip():
        errors.append("Category is required.")

    return errors, amount_val
