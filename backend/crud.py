from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, OperationalError, DatabaseError
from models import Approval, Decision, Expense, ExpenseStatus, Role, User, new_id, utcnow
from typing import Optional
import logging
import time

logger = logging.getLogger(__name__)

MAX_DB_RETRIES = 3


def run_in_transaction(db: Session, work, attempts: int = MAX_DB_RETRIES):
    """
    Run `work()` and commit, retrying transient DB errors with exponential
    backoff. Constraint violations and the last failure are re-raised.
    """
    for attempt in range(attempts):
        try:
            result = work()
            db.commit()
            return result
        except IntegrityError:
            db.rollback()
            raise
        except (OperationalError, DatabaseError) as e:
            db.rollback()
            if attempt < attempts - 1:
                logger.warning("Commit failed (attempt %d/%d): %s", attempt + 1, attempts, e)
                # Exponential backoff: 1, 2, 4 seconds
                time.sleep(2 ** attempt)
            else:
                raise
        except Exception:
            db.rollback()
            raise


# ── Users ──────────────────────────────────────────────────────────────────────

def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.scalars(select(User).where(User.email == email)).first()


def create_user(db: Session, name: str, email: str, role: Role) -> User:
    user = User(id=new_id(), name=name, email=email, role=Role(role), created_at=utcnow())

    def _add():
        db.add(user)
        db.flush()
        return user

    return run_in_transaction(db, _add)


# ── Expense Store ──────────────────────────────────────────────────────────────

class ExpenseStore:
    """
    Owns expense records and their status.

    Writes are flushed, not committed: the caller owns the transaction.
    """

    UPDATABLE_FIELDS = frozenset(
        {"title", "amount", "category", "date", "description", "receipt_ref", "status"}
    )
    NULLABLE_FIELDS = frozenset({"description", "receipt_ref"})

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: str,
        title: str,
        amount,
        category: str,
        date,
        description: Optional[str] = None,
        receipt_ref: Optional[str] = None,
        status: ExpenseStatus = ExpenseStatus.DRAFT,
    ) -> str:
        now = utcnow()
        expense = Expense(
            id=new_id(),
            owner_id=owner_id,
            title=title,
            amount=amount,
            category=category,
            date=date,
            description=description,
            receipt_ref=receipt_ref,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self.db.add(expense)
        self.db.flush()
        return expense.id

    def get_by_id(self, expense_id: str, refresh: bool = False, lock: bool = False) -> Optional[Expense]:
        """`refresh` bypasses the identity map; `lock` takes a row lock where the backend supports one."""
        return self.db.get(
            Expense,
            expense_id,
            populate_existing=refresh,
            with_for_update=True if lock else None,
        )

    def list_by_owner(self, owner_id: str) -> list[Expense]:
        query = (
            select(Expense)
            .where(Expense.owner_id == owner_id)
            .order_by(Expense.created_at.desc(), Expense.id)
        )
        return list(self.db.scalars(query))

    def list_by_status(self, status: ExpenseStatus) -> list[Expense]:
        query = (
            select(Expense)
            .where(Expense.status == ExpenseStatus(status))
            .order_by(Expense.created_at.desc(), Expense.id)
        )
        return list(self.db.scalars(query))

    def list_all(self) -> list[Expense]:
        query = select(Expense).order_by(Expense.created_at.desc(), Expense.id)
        return list(self.db.scalars(query))

    def update_fields(self, expense_id: str, **fields) -> Optional[Expense]:
        """
        Update allow-listed fields and refresh updated_at in the same write.
        Unknown keys are dropped. None clears a nullable field and is
        ignored for the others.
        """
        expense = self.get_by_id(expense_id)
        if expense is None:
            return None

        for key, value in fields.items():
            if key not in self.UPDATABLE_FIELDS:
                continue
            if value is None and key not in self.NULLABLE_FIELDS:
                continue
            setattr(expense, key, value)
        expense.updated_at = utcnow()
        self.db.flush()
        return expense

    def transition_status(
        self, expense_id: str, from_status: ExpenseStatus, to_status: ExpenseStatus
    ) -> bool:
        """
        Compare-and-set the status. Returns False when the row is no longer in
        `from_status`, so at most one concurrent writer wins.
        """
        result = self.db.execute(
            update(Expense)
            .where(Expense.id == expense_id, Expense.status == from_status)
            .values(status=to_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete(self, expense_id: str) -> bool:
        # Fails with IntegrityError while ledger entries reference the expense
        result = self.db.execute(delete(Expense).where(Expense.id == expense_id))
        return result.rowcount == 1

    def distinct_categories(self) -> list[str]:
        rows = self.db.execute(select(Expense.category).distinct().order_by(Expense.category))
        return [r[0] for r in rows]


# ── Approval Ledger ────────────────────────────────────────────────────────────

class ApprovalLedger:
    """Append-only record of decisions. Entries are never updated."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        expense_id: str,
        approver_id: str,
        decision: Decision,
        remark: Optional[str] = None,
    ) -> Approval:
        approval = Approval(
            id=new_id(),
            expense_id=expense_id,
            approver_id=approver_id,
            decision=Decision(decision),
            remark=remark,
            decided_at=utcnow(),
        )
        self.db.add(approval)
        self.db.flush()
        return approval

    def get_by_id(self, approval_id: str) -> Optional[Approval]:
        return self.db.get(Approval, approval_id)

    def list_by_expense(self, expense_id: str) -> list[Approval]:
        query = (
            select(Approval)
            .where(Approval.expense_id == expense_id)
            .order_by(Approval.decided_at.desc(), Approval.id.desc())
        )
        return list(self.db.scalars(query))

    def list_by_approver(self, approver_id: str) -> list[Approval]:
        query = (
            select(Approval)
            .where(Approval.approver_id == approver_id)
            .order_by(Approval.decided_at.desc(), Approval.id.desc())
        )
        return list(self.db.scalars(query))

    def latest_for_expense(self, expense_id: str) -> Optional[Approval]:
        entries = self.list_by_expense(expense_id)
        return entries[0] if entries else None

    def delete(self, approval_id: str) -> bool:
        """Administrative removal. Not part of the approval workflow."""
        logger.warning("Deleting ledger entry %s", approval_id)
        result = self.db.execute(delete(Approval).where(Approval.id == approval_id))
        return result.rowcount == 1
