"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
import tempfile
from pathlib import Path

# The engine is built when tycoon.models is imported, so the test database
# has to be configured before anything from the package is loaded.
_tmpdir = tempfile.mkdtemp(prefix="tycoon-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_SECRET_PATH"] = ""
os.environ["TELEGRAM_WEBHOOK_SECRET"] = ""
os.environ["STORE_RETRY_BACKOFF"] = "0"

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from tycoon import config
from tycoon.ledger import record_transaction, REASON_SIGNUP
from tycoon.models import Base, engine, init_db, SessionLocal, User, UserBusiness


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate the schema for every test."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    yield
    engine.dispose()


@pytest.fixture
def db():
    """A session for assertions; closed after the test."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_user():
    """
    Insert a user directly, with a matching audit row so the ledger balances.

    Returns:
        callable: make_user(user_id, coins=100, businesses=None, **columns)
    """
    def _make(user_id, coins=100, businesses=None, **columns):
        session = SessionLocal()
        try:
            session.add(User(id=user_id, username=columns.pop("username", f"user_{user_id}"),
                             coins=coins, **columns))
            session.flush()
            for business_id, qty in (businesses or {}).items():
                session.add(UserBusiness(user_id=user_id, business_id=business_id, quantity=qty))
            if coins:
                record_transaction(session, user_id, coins, REASON_SIGNUP)
            session.commit()
        finally:
            session.close()
        return user_id
    return _make


@pytest.fixture
def late_referrals(monkeypatch):
    """Switch on the looser policy that lets never-referred accounts be attached."""
    monkeypatch.setattr(config, "ALLOW_LATE_REFERRAL", True)


@pytest.fixture
def client():
    """Flask test client."""
    from tycoon.app import app
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
