import os

# Must be set before the app modules build their engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENT_DISPATCHER_ENABLED"] = "0"

from datetime import datetime
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.core.security import Principal, get_principal
from app.db.base import Base
from app.db.models.auth import User
from app.db.models.quoting import Job, Quote
from app.db.session import SessionLocal, get_db
from main import app

_numbers = count(1)


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    SessionLocal.configure(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    """One active user per role the tests need"""
    rows = {
        "admin": User(email="admin@fencing.test", full_name="Office Admin", role="ADMIN"),
        "sales": User(email="sales@fencing.test", full_name="Sam Sales", role="SALES"),
        "installer": User(email="installer@fencing.test", full_name="Ivy Installer", role="INSTALLER"),
        "trade": User(email="trade@builder.test", full_name="Trade Client", role="TRADE_CLIENT"),
    }
    db.add_all(rows.values())
    db.commit()
    return rows


@pytest.fixture
def make_quote(db):
    def _make(total_amount="10000.00", labour_estimate=None, status="draft"):
        quote = Quote(
            quote_number=f"Q-{next(_numbers):05d}",
            status=status,
            total_amount=Decimal(total_amount),
            labour_estimate=Decimal(labour_estimate) if labour_estimate is not None else None,
        )
        db.add(quote)
        db.commit()
        return quote
    return _make


@pytest.fixture
def make_job(db):
    def _make(quote, status="accepted"):
        job = Job(job_number=f"J-{next(_numbers):05d}", quote_id=quote.id, status=status)
        db.add(job)
        db.commit()
        return job
    return _make


class AuthState:
    """Principal returned by the overridden auth dependency"""

    def __init__(self):
        self.principal = Principal()

    def login(self, user):
        self.principal = Principal(user_id=user.id, username=user.email, roles=[user.role])

    def logout(self):
        self.principal = Principal()


@pytest.fixture
def auth(users):
    state = AuthState()
    state.login(users["sales"])
    return state


@pytest.fixture
def client(engine, auth):
    def _get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_principal] = lambda: auth.principal
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 2, 9, 30, 0)
