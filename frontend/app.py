import streamlit as st
from datetime import date
import os

import api_client
from api_client import STATUSES, STATUS_BADGES, format_amount

st.set_page_config(
    page_title="Expense Approvals",
    page_icon="💸",
    layout="centered",
)

# ── Session state init ─────────────────────────────────────────────────────────
if "user_id" not in st.session_state:
    st.session_state.user_id = os.getenv("USER_ID", "")

if "flash" not in st.session_state:
    st.session_state.flash = None  # (success: bool, message: str)


def show_flash():
    if st.session_state.flash is not None:
        ok, msg = st.session_state.flash
        (st.success if ok else st.error)(msg)
        st.session_state.flash = None


def render_expense(exp: dict, show_owner: bool = False):
    c1, c2, c3 = st.columns([2, 1, 1])
    with c1:
        st.markdown(f"**{exp['title']}** · {exp['category']}")
        if show_owner and exp.get("owner_name"):
            st.caption(f"👤 {exp['owner_name']}")
        if exp.get("description"):
            st.caption(exp["description"])
    with c2:
        st.markdown(f"**{format_amount(exp['amount'])}**")
        st.caption(f"📅 {exp['date']}")
    with c3:
        st.caption(STATUS_BADGES.get(exp["status"], exp["status"]))


def render_history(user_id: str, expense_id: str):
    ok, err, data = api_client.fetch_history(user_id, expense_id)
    if not ok:
        st.error(err)
        return
    if not data["approvals"]:
        st.caption("No decisions yet.")
    for a in data["approvals"]:
        line = f"{STATUS_BADGES[a['decision']]} by {a.get('approver_name') or a['approver_id']} on {a['decided_at'][:16]}"
        if a.get("remark"):
            line += f": “{a['remark']}”"
        st.caption(line)


def render_list_summary(data: dict):
    count = data.get("count", 0)
    st.metric(
        label=f"Total ({count} expense{'s' if count != 1 else ''})",
        value=format_amount(data.get("total", "0.00")),
    )


# ── Employee view ──────────────────────────────────────────────────────────────

def employee_dashboard(user_id: str):
    with st.expander("➕ Submit New Expense", expanded=True):
        categories = api_client.fetch_categories(user_id) or ["Other"]
        with st.form("submit_expense_form", clear_on_submit=True):
            title = st.text_input("Title *", max_chars=200)
            col1, col2 = st.columns(2)
            with col1:
                amount_str = st.text_input("Amount *", placeholder="e.g. 499.00")
            with col2:
                category = st.selectbox("Category *", options=categories)
            expense_date = st.date_input("Date *", value=date.today())
            description = st.text_area("Description", max_chars=1000, height=80)
            receipt_ref = st.text_input("Receipt reference", placeholder="Optional link or receipt number")

            if st.form_submit_button("Submit Expense", type="primary", use_container_width=True):
                errors, amount_val = api_client.validate_form(title, amount_str, category)
                if errors:
                    for err in errors:
                        st.error(err)
                else:
                    payload = {
                        "title": title.strip(),
                        "amount": str(amount_val),
                        "category": category,
                        "date": str(expense_date),
                        "description": description.strip() or None,
                        "receipt_ref": receipt_ref.strip() or None,
                    }
                    with st.spinner("Submitting..."):
                        ok, message, _ = api_client.submit_expense(user_id, payload)
                    st.session_state.flash = (ok, message)
                    st.rerun()
        show_flash()

    st.divider()
    st.subheader("📋 My Expenses")
    status_filter = st.selectbox("Filter by Status", options=["All"] + STATUSES)

    ok, err, data = api_client.fetch_my_expenses(user_id, status_filter)
    if not ok:
        st.error(f"⚠️ {err}")
        return
    if data["count"] == 0:
        st.info("No expenses found for the selected filter.")
        return

    render_list_summary(data)
    for exp in data["expenses"]:
        with st.container(border=True):
            render_expense(exp)
            if exp["status"] in ("APPROVED", "REJECTED"):
                with st.expander("Decision"):
                    render_history(user_id, exp["id"])


# ── Manager view ───────────────────────────────────────────────────────────────

def manager_dashboard(user_id: str):
    pending_tab, all_tab, decisions_tab, own_tab = st.tabs(
        ["⏳ Pending Review", "📋 All Expenses", "🧾 My Decisions", "💼 My Expenses"]
    )

    with pending_tab:
        show_flash()
        ok, err, data = api_client.fetch_pending(user_id)
        if not ok:
            st.error(f"⚠️ {err}")
        elif data["count"] == 0:
            st.info("Nothing waiting for review.")
        else:
            render_list_summary(data)
            for exp in data["expenses"]:
                with st.container(border=True):
                    render_expense(exp, show_owner=True)
                    remark = st.text_input("Remark", key=f"remark_{exp['id']}", placeholder="Optional")
                    c1, c2 = st.columns(2)
                    for col, decision, label in ((c1, "APPROVED", "Approve"), (c2, "REJECTED", "Reject")):
                        if col.button(label, key=f"{decision}_{exp['id']}", use_container_width=True):
                            ok, message, _ = api_client.post_decision(user_id, exp["id"], decision, remark)
                            st.session_state.flash = (ok, message)
                            st.rerun()

    with all_tab:
        status_filter = st.selectbox("Filter by Status", options=["All"] + STATUSES, key="all_status")
        ok, err, data = api_client.fetch_all_expenses(user_id, status_filter)
        if not ok:
            st.error(f"⚠️ {err}")
        else:
            render_list_summary(data)
            for exp in data["expenses"]:
                with st.container(border=True):
                    render_expense(exp, show_owner=True)
                    with st.expander("History"):
                        render_history(user_id, exp["id"])

    with decisions_tab:
        ok, err, approvals = api_client.fetch_my_decisions(user_id)
        if not ok:
            st.error(f"⚠️ {err}")
        elif not approvals:
            st.info("You haven't reviewed any expenses yet.")
        else:
            st.table([
                {
                    "Decision": STATUS_BADGES[a["decision"]],
                    "Expense": a["expense_id"][:8],
                    "Remark": a.get("remark") or "",
                    "Decided": a["decided_at"][:16],
                }
                for a in approvals
            ])

    with own_tab:
        employee_dashboard(user_id)


# ── Page ───────────────────────────────────────────────────────────────────────
st.title("💸 Expense Approvals")

user_id = st.text_input("User ID", value=st.session_state.user_id, help="Your id as issued by the identity provider.")
st.session_state.user_id = user_id.strip()

if not st.session_state.user_id:
    st.info("Enter your user id to continue.")
    st.stop()

ok, err, me = api_client.fetch_me(st.session_state.user_id)
if not ok:
    st.error(f"⚠️ {err}")
    st.stop()

st.caption(f"Signed in as **{me['name']}** ({me['role'].title()})")
st.divider()

if me["role"] == "MANAGER":
    manager_dashboard(st.session_state.user_id)
else:
    employee_dashboard(st.session_state.user_id)
