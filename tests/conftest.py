"""Pytest fixtures: an in-memory SQLite store, seeded principals, and an API client."""

import os

# Must be set before the app modules create their engine
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from datetime import date
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import crud
import database
from auth import Principal
from models import Role
from workflow import ExpenseLocks, WorkflowEngine


@pytest.fixture
def db_engine():
    engine = database.build_engine("sqlite://", poolclass=StaticPool)
    database.init_db(bind=engine)
    try:
        yield engine
    finally:
        database.Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _principal(db, name, email, role):
    user = crud.create_user(db, name=name, email=email, role=role)
    return Principal(id=user.id, role=user.role)


@pytest.fixture
def employee(db) -> Principal:
    return _principal(db, "Alice Employee", "alice@example.com", Role.EMPLOYEE)


@pytest.fixture
def other_employee(db) -> Principal:
    return _principal(db, "Bob Employee", "bob@example.com", Role.EMPLOYEE)


@pytest.fixture
def manager(db) -> Principal:
    return _principal(db, "Maya Manager", "maya@example.com", Role.MANAGER)


@pytest.fixture
def second_manager(db) -> Principal:
    return _principal(db, "Max Manager", "max@example.com", Role.MANAGER)


@pytest.fixture
def workflow(db) -> WorkflowEngine:
    return WorkflowEngine(db, locks=ExpenseLocks())


@pytest.fixture
def laptop(workflow, employee):
    """A freshly submitted, PENDING expense."""
    return workflow.submit(
        employee,
        title="Laptop",
        amount=Decimal("999.99"),
        category="Equipment",
        date=date(2024, 1, 15),
    )


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[database.get_db] = override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
