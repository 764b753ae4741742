from pydantic import BaseModel, Field
from decimal import Decimal
from datetime import date, datetime
from typing import Optional

from models import Decision, ExpenseStatus, Role


class ExpenseCreate(BaseModel):
    # Content rules (positive amount, non-blank text) are enforced by the workflow
    title: str = Field(..., max_length=200)
    amount: Decimal = Field(..., description="Must be a positive value with at most 2 decimal places")
    category: str = Field(..., max_length=100)
    date: date
    description: Optional[str] = Field(default=None, max_length=1000)
    receipt_ref: Optional[str] = Field(default=None, max_length=500)


class DecisionCreate(BaseModel):
    decision: str = Field(..., description="APPROVED or REJECTED")
    remark: Optional[str] = Field(default=None, max_length=1000)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: Role

    model_config = {"from_attributes": True}


class ExpenseResponse(BaseModel):
    id: str
    owner_id: str
    owner_name: Optional[str] = None
    title: str
    amount: Decimal
    category: str
    date: date
    description: Optional[str]
    receipt_ref: Optional[str]
    status: ExpenseStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ApprovalResponse(BaseModel):
    id: str
    expense_id: str
    approver_id: str
    approver_name: Optional[str] = None
    decision: Decision
    remark: Optional[str]
    decided_at: datetime

    model_config = {"from_attributes": True}


class ExpenseListResponse(BaseModel):
    expenses: list[ExpenseResponse]
    total: Decimal
    count: int


class DecisionResponse(BaseModel):
    message: str
    expense: ExpenseResponse
    approval: ApprovalResponse


class HistoryResponse(BaseModel):
    expense: ExpenseResponse
    approvals: list[ApprovalResponse]


class ErrorResponse(BaseModel):
    detail: str
    code: str
