from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from decimal import Decimal
from typing import Optional
import logging
import os

import crud
import schemas
from auth import Principal, get_current_principal
from database import get_db, init_db
from errors import (
    AuthenticationError,
    AuthorizationError,
    ExpenseWorkflowError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowFailure,
)
from logging_config import RequestIdMiddleware, setup_logging
from workflow import WorkflowEngine

setup_logging()
logger = logging.getLogger("expense_api")

# Create all tables on startup if they don't exist
init_db()

app = FastAPI(
    title="Expense Approval API",
    description="Employees submit expenses; managers approve or reject them with a permanent decision trail.",
    version="1.0.0",
)

# Most specific first: AuthenticationError is an AuthorizationError
ERROR_STATUS = (
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (ValidationError, 422),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (WorkflowFailure, 500),
)

cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(ExpenseWorkflowError)
async def workflow_error_handler(request: Request, exc: ExpenseWorkflowError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)),
        400,
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


def get_engine(db: Session = Depends(get_db)) -> WorkflowEngine:
    return WorkflowEngine(db)


def _list_response(expenses) -> schemas.ExpenseListResponse:
    items = [schemas.ExpenseResponse.model_validate(e) for e in expenses]
    total = sum((e.amount for e in items), Decimal("0.00"))
    return schemas.ExpenseListResponse(expenses=items, total=total, count=len(items))


@app.get("/", tags=["Health"])
def root():
    return {"status": "ok", "message": "Expense Approval API is running."}


@app.get("/health", tags=["Health"])
def health():
    return {"status": "healthy"}


@app.get("/me", response_model=schemas.UserResponse, tags=["Identity"])
def me(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    """The authenticated caller, as resolved from the X-User-Id header."""
    return crud.get_user(db, principal.id)


# ── Employee routes ────────────────────────────────────────────────────────────

@app.post(
    "/expenses",
    response_model=schemas.ExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Expenses"],
    summary="Submit a new expense for review",
)
def submit_expense(
    expense_in: schemas.ExpenseCreate,
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    """
    Create an expense owned by the caller. It is submitted immediately and
    starts in `PENDING`.
    """
    return engine.submit(
        principal,
        title=expense_in.title,
        amount=expense_in.amount,
        category=expense_in.category,
        date=expense_in.date,
        description=expense_in.description,
        receipt_ref=expense_in.receipt_ref,
    )


@app.get(
    "/expenses/my",
    response_model=schemas.ExpenseListResponse,
    tags=["Expenses"],
    summary="List the caller's expenses",
)
def list_my_expenses(
    status_filter: Optional[str] = Query(
        default=None, alias="status", description="DRAFT, PENDING, APPROVED or REJECTED; other values are ignored"
    ),
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    return _list_response(engine.list_own(principal, status_filter))


@app.get(
    "/expenses/categories",
    response_model=list[str],
    tags=["Expenses"],
    summary="Get the recognized categories plus any in use",
)
def list_categories(engine: WorkflowEngine = Depends(get_engine)):
    return engine.list_categories()


@app.get(
    "/expenses/{expense_id}",
    response_model=schemas.ExpenseResponse,
    tags=["Expenses"],
    summary="Get one expense (owner or manager)",
)
def get_expense(
    expense_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.get_expense(principal, expense_id)


# ── Manager routes ─────────────────────────────────────────────────────────────

@app.get(
    "/manager/expenses/pending",
    response_model=schemas.ExpenseListResponse,
    tags=["Review"],
    summary="Expenses awaiting a decision",
)
def list_pending(
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    return _list_response(engine.list_pending_for_review(principal))


@app.get(
    "/manager/expenses",
    response_model=schemas.ExpenseListResponse,
    tags=["Review"],
    summary="All expenses, optionally filtered by status",
)
def list_all_expenses(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    return _list_response(engine.list_all(principal, status_filter))


@app.post(
    "/manager/expenses/{expense_id}/decision",
    response_model=schemas.DecisionResponse,
    tags=["Review"],
    summary="Approve or reject a pending expense",
)
def decide_expense(
    expense_id: str,
    decision_in: schemas.DecisionCreate,
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    """
    Record a decision. Only `PENDING` expenses can be reviewed; repeating a
    decision returns 409, so retries are safe.
    """
    expense, approval = engine.decide(principal, expense_id, decision_in.decision, decision_in.remark)
    return schemas.DecisionResponse(
        message=f"Expense {approval.decision.value.lower()} successfully",
        expense=schemas.ExpenseResponse.model_validate(expense),
        approval=schemas.ApprovalResponse.model_validate(approval),
    )


@app.get(
    "/expenses/{expense_id}/history",
    response_model=schemas.HistoryResponse,
    tags=["Expenses"],
    summary="An expense and its decision trail (owner or manager)",
)
@app.get(
    "/manager/expenses/{expense_id}/history",
    response_model=schemas.HistoryResponse,
    tags=["Review"],
    summary="An expense and its decision trail",
)
def expense_history(
    expense_id: str,
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    expense, approvals = engine.get_history(expense_id, principal)
    return schemas.HistoryResponse(
        expense=schemas.ExpenseResponse.model_validate(expense),
        approvals=[schemas.ApprovalResponse.model_validate(a) for a in approvals],
    )


@app.get(
    "/manager/approvals",
    response_model=list[schemas.ApprovalResponse],
    tags=["Review"],
    summary="Decisions recorded by the caller",
)
def my_decisions(
    principal: Principal = Depends(get_current_principal),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.list_decisions(principal)
