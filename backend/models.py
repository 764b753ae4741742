from sqlalchemy import Column, String, Text, Date, DateTime, DECIMAL, ForeignKey, Enum as SAEnum
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship
from database import Base
import enum
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    # Stored naive: neither SQLite nor MySQL DATETIME keeps the offset
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"


class ExpenseStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Decision(str, enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def status(self) -> ExpenseStatus:
        return ExpenseStatus(self.value)


class User(Base):
    __tablename__ = "users"

    id = Column(CHAR(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(SAEnum(Role, native_enum=False, length=20), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(CHAR(36), primary_key=True, default=new_id)
    owner_id = Column(CHAR(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)   # Never use float for money
    category = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    receipt_ref = Column(String(500), nullable=True)
    status = Column(
        SAEnum(ExpenseStatus, native_enum=False, length=20),
        nullable=False,
        default=ExpenseStatus.DRAFT,
        index=True,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    owner = relationship("User")
    # Ledger rows are never removed through the expense; the FK rejects the delete instead
    approvals = relationship(
        "Approval",
        back_populates="expense",
        passive_deletes="all",
        order_by="Approval.decided_at.desc()",
    )

    @property
    def owner_name(self):
        return self.owner.name if self.owner is not None else None


class Approval(Base):
    __tablename__ = "approvals"

    id = Column(CHAR(36), primary_key=True, default=new_id)
    expense_id = Column(CHAR(36), ForeignKey("expenses.id"), nullable=False, index=True)
    approver_id = Column(CHAR(36), ForeignKey("users.id"), nullable=False, index=True)
    decision = Column(SAEnum(Decision, native_enum=False, length=20), nullable=False)
    remark = Column(Text, nullable=True)
    decided_at = Column(DateTime, default=utcnow, nullable=False)

    expense = relationship("Expense", back_populates="approvals")
    approver = relationship("User")

    @property
    def approver_name(self):
        return self.approver.name if self.approver is not None else None
