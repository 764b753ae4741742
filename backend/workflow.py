"""
Expense lifecycle: DRAFT -> PENDING -> APPROVED | REJECTED.

The WorkflowEngine is the only writer of expense status. It checks the
caller's capabilities, validates input, and couples every decision with its
ledger entry in a single transaction.
"""

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import Principal
from crud import ApprovalLedger, ExpenseStore, run_in_transaction
from errors import (
    AuthenticationError,
    AuthorizationError,
    ExpenseWorkflowError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowFailure,
)
from models import Approval, Decision, Expense, ExpenseStatus, Role

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ExpenseStatus, frozenset] = {
    ExpenseStatus.DRAFT: frozenset({ExpenseStatus.PENDING}),
    ExpenseStatus.PENDING: frozenset({ExpenseStatus.APPROVED, ExpenseStatus.REJECTED}),
    ExpenseStatus.APPROVED: frozenset(),
    ExpenseStatus.REJECTED: frozenset(),
}

RECOGNIZED_CATEGORIES = ("Supplies", "Travel", "Equipment", "Software", "Training", "Other")

MAX_AMOUNT = Decimal("100000000")  # DECIMAL(10, 2)
CENTS = Decimal("0.01")

TITLE_MAX_LENGTH = 200
CATEGORY_MAX_LENGTH = 100
RECEIPT_REF_MAX_LENGTH = 500


def can_transition(current: ExpenseStatus, target: ExpenseStatus) -> bool:
    return ExpenseStatus(target) in TRANSITIONS[ExpenseStatus(current)]


# ── Per-expense exclusion ─────────────────────────────────────────────────────

class ExpenseLocks:
    """Registry of per-expense mutexes. Entries are dropped once nobody holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, expense_id: str):
        with self._guard:
            entry = self._locks.setdefault(expense_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[expense_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


expense_locks = ExpenseLocks()


# ── Input validation ──────────────────────────────────────────────────────────

def _require_text(value, field: str, max_length: int) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field.capitalize()} is required", field=field)
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field.capitalize()} must be at most {max_length} characters", field=field)
    return value


def _optional_text(value, field: str, max_length: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field.capitalize()} must be text", field=field)
    value = value.strip()
    if not value:
        return None
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field.capitalize()} must be at most {max_length} characters", field=field)
    return value


def parse_amount(value) -> Decimal:
    """Positive, finite, at most two decimal places. Numeric strings are accepted, booleans are not."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Amount is required", field="amount")
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise ValidationError("Amount must be a positive number", field="amount")

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("Amount must be a positive number", field="amount")

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number", field="amount")
    # Bounded first: quantize overflows the context precision on huge values
    if amount >= MAX_AMOUNT:
        raise ValidationError("Amount is too large", field="amount")
    if amount != amount.quantize(CENTS):
        raise ValidationError("Amount can have at most two decimal places", field="amount")
    return amount.quantize(CENTS)


def parse_date(value) -> date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Date is required", field="date")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError("Date must be in YYYY-MM-DD format", field="date")
    raise ValidationError("Date must be in YYYY-MM-DD format", field="date")


def parse_decision(value) -> Decision:
    if isinstance(value, Decision):
        return value
    if isinstance(value, str) and value in Decision.__members__:
        return Decision(value)
    raise ValidationError("Decision must be APPROVED or REJECTED", field="decision")


def parse_status_filter(value) -> Optional[ExpenseStatus]:
    """
    Map a listing filter to a status. Empty or unrecognized values return
    None, meaning no filtering.
    """
    if isinstance(value, ExpenseStatus):
        return value
    if isinstance(value, str) and value in ExpenseStatus.__members__:
        return ExpenseStatus(value)
    return None


# ── Engine ────────────────────────────────────────────────────────────────────

class WorkflowEngine:
    def __init__(
        self,
        db: Session,
        store: Optional[ExpenseStore] = None,
        ledger: Optional[ApprovalLedger] = None,
        locks: Optional[ExpenseLocks] = None,
    ):
        self.db = db
        self.store = store or ExpenseStore(db)
        self.ledger = ledger or ApprovalLedger(db)
        self.locks = locks or expense_locks

    # Capabilities

    @staticmethod
    def can_submit(principal: Optional[Principal]) -> bool:
        return principal is not None and principal.role in (Role.EMPLOYEE, Role.MANAGER)

    @staticmethod
    def can_decide(principal: Optional[Principal]) -> bool:
        return principal is not None and principal.is_manager

    @staticmethod
    def can_review(principal: Optional[Principal]) -> bool:
        return principal is not None and principal.is_manager

    @staticmethod
    def can_view_expense(principal: Optional[Principal], expense: Expense) -> bool:
        if principal is None:
            return False
        return principal.is_manager or expense.owner_id == principal.id

    def _require(self, allowed: bool, principal: Optional[Principal], message: str) -> None:
        if principal is None:
            raise AuthenticationError("Authentication required")
        if not allowed:
            raise AuthorizationError(message)

    @contextmanager
    def _unit_of_work(self, action: str):
        """Roll back on any failure; store errors surface as WorkflowFailure."""
        try:
            yield
        except ExpenseWorkflowError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Store failure during %s", action)
            raise WorkflowFailure() from e

    # Commands

    def submit(
        self,
        principal: Optional[Principal],
        title,
        amount,
        category,
        date,
        description=None,
        receipt_ref=None,
    ) -> Expense:
        """Create an expense owned by the principal, already awaiting review."""
        self._require(self.can_submit(principal), principal, "Not allowed to submit expenses")

        fields = dict(
            title=_require_text(title, "title", TITLE_MAX_LENGTH),
            amount=parse_amount(amount),
            category=_require_text(category, "category", CATEGORY_MAX_LENGTH),
            date=parse_date(date),
            description=_optional_text(description, "description"),
            receipt_ref=_optional_text(receipt_ref, "receipt_ref", RECEIPT_REF_MAX_LENGTH),
        )

        # Creation and submission are one step: the record is born PENDING
        with self._unit_of_work("submit"):
            expense_id = run_in_transaction(
                self.db,
                lambda: self.store.create(principal.id, status=ExpenseStatus.PENDING, **fields),
            )
            expense = self.store.get_by_id(expense_id)

        logger.info(
            "Expense %s submitted by %s (%s %s)",
            expense.id, principal.id, expense.amount, expense.category,
            extra={"user_id": principal.id, "expense_id": expense.id},
        )
        return expense

    def decide(
        self,
        principal: Optional[Principal],
        expense_id: str,
        decision,
        remark: Optional[str] = None,
    ) -> tuple[Expense, Approval]:
        """
        Record a manager's decision on a PENDING expense.

        The ledger append and the status change commit together or not at all.
        Concurrent decisions on one expense are serialized; the status is
        re-checked inside the write, so only the first can succeed.
        """
        self._require(self.can_decide(principal), principal, "Only managers can review expenses")
        decision = parse_decision(decision)
        remark = _optional_text(remark, "remark")

        with self.locks.hold(expense_id), self._unit_of_work("decide"):
            expense = self.store.get_by_id(expense_id, refresh=True, lock=True)
            if expense is None:
                raise NotFoundError("Expense not found")
            if not can_transition(expense.status, decision.status):
                raise InvalidStateError("Only pending expenses can be reviewed", current_status=expense.status)

            approval = self.ledger.append(expense_id, principal.id, decision, remark)
            if not self.store.transition_status(expense_id, ExpenseStatus.PENDING, decision.status):
                logger.warning(
                    "Lost decision race on expense %s", expense_id,
                    extra={"user_id": principal.id, "expense_id": expense_id},
                )
                raise InvalidStateError("Only pending expenses can be reviewed")
            self.db.commit()

        # The decision is durable from here on; a failed reload leaves the
        # expired instance to load lazily on next access
        try:
            self.db.refresh(expense)
        except SQLAlchemyError:
            logger.warning(
                "Could not reload expense %s after decision", expense_id,
                extra={"user_id": principal.id, "expense_id": expense_id},
            )

        logger.info(
            "Expense %s %s by %s", expense_id, decision.value, principal.id,
            extra={"user_id": principal.id, "expense_id": expense_id,
                   "approval_id": approval.id, "decision": decision.value},
        )
        return expense, approval

    # Queries

    def get_expense(self, principal: Optional[Principal], expense_id: str) -> Expense:
        with self._unit_of_work("get_expense"):
            expense = self.store.get_by_id(expense_id)
        if expense is None:
            raise NotFoundError("Expense not found")
        self._require(self.can_view_expense(principal, expense), principal, "Access denied")
        return expense

    def get_history(
        self, expense_id: str, principal: Optional[Principal] = None
    ) -> tuple[Expense, list[Approval]]:
        """The expense and its ledger entries, most recent first."""
        with self._unit_of_work("get_history"):
            expense = self.store.get_by_id(expense_id)
            if expense is None:
                raise NotFoundError("Expense not found")
            if principal is not None and not self.can_view_expense(principal, expense):
                raise AuthorizationError("Access denied")
            approvals = self.ledger.list_by_expense(expense_id)
        return expense, approvals

    def list_own(self, principal: Optional[Principal], status_filter=None) -> list[Expense]:
        self._require(principal is not None, principal, "Authentication required")
        status = parse_status_filter(status_filter)
        with self._unit_of_work("list_own"):
            expenses = self.store.list_by_owner(principal.id)
        if status is None:
            return expenses
        return [e for e in expenses if e.status == status]

    def list_pending_for_review(self, principal: Optional[Principal]) -> list[Expense]:
        self._require(self.can_review(principal), principal, "Only managers can review expenses")
        with self._unit_of_work("list_pending_for_review"):
            return self.store.list_by_status(ExpenseStatus.PENDING)

    def list_all(self, principal: Optional[Principal], status_filter=None) -> list[Expense]:
        self._require(self.can_review(principal), principal, "Only managers can review expenses")
        status = parse_status_filter(status_filter)
        with self._unit_of_work("list_all"):
            if status is None:
                return self.store.list_all()
            return self.store.list_by_status(status)

    def list_decisions(self, principal: Optional[Principal]) -> list[Approval]:
        """Ledger entries recorded by this manager, most recent first."""
        self._require(self.can_review(principal), principal, "Only managers can review expenses")
        with self._unit_of_work("list_decisions"):
            return self.ledger.list_by_approver(principal.id)

    def list_categories(self) -> list[str]:
        with self._unit_of_work("list_categories"):
            stored = self.store.distinct_categories()
        extra = sorted(c for c in stored if c not in RECOGNIZED_CATEGORIES)
        return list(RECOGNIZED_CATEGORIES) + extra
