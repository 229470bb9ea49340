"""
Shared fixtures: a fresh SQLite database per test, seeded accounts and
helpers to act as any of them.
"""

import os

# Settings are cached on first use; configure before importing the app
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("REDIS_URL", None)

import pytest

from legalaid.auth import AuthService, create_session_token, get_password_hash
from legalaid.db.models import Beneficiary, Role, User, UserType
from legalaid.db.session import SessionLocal, drop_db, get_db_session, init_db, reset_engine
from legalaid.token_blacklist import reset_redis_client

PASSWORD = "correct-horse-battery"


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "legalaid.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    reset_redis_client()
    init_db()

    yield

    drop_db()
    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def db(sqlalchemy_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _staff(username: str, role: Role, password_hash: str) -> User:
    return User(
        username=username,
        email=f"{username}@legalaid.org",
        full_name=username.replace("_", " ").title(),
        user_type=UserType.STAFF,
        role=role,
        password_hash=password_hash,
    )


def _beneficiary_user(username: str, password_hash: str) -> User:
    return User(
        username=username,
        email=f"{username}@portal.legalaid.org",
        full_name=username.title(),
        user_type=UserType.BENEFICIARY,
        role=Role.BENEFICIARY,
        password_hash=password_hash,
    )


@pytest.fixture
def seeded(sqlalchemy_db):
    """
    Accounts:
    - admin, super_admin, lawyer1, lawyer2, viewer (staff)
    - ben1_user / ben1, ben2_user / ben2 (beneficiaries with profiles)
    - orphan_user (beneficiary account without a profile)
    - ben3 (profile without an account)
    """
    password_hash = get_password_hash(PASSWORD)
    with get_db_session() as session:
        users = {
            "admin": _staff("admin", Role.ADMIN, password_hash),
            "super_admin": _staff("super_admin", Role.SUPER_ADMIN, password_hash),
            "lawyer1": _staff("lawyer1", Role.LAWYER, password_hash),
            "lawyer2": _staff("lawyer2", Role.LAWYER, password_hash),
            "viewer": _staff("viewer", Role.VIEWER, password_hash),
            "ben1_user": _beneficiary_user("ben1", password_hash),
            "ben2_user": _beneficiary_user("ben2", password_hash),
            "orphan_user": _beneficiary_user("orphan", password_hash),
        }
        session.add_all(users.values())
        session.flush()

        profiles = {
            "ben1": Beneficiary(user_id=users["ben1_user"].id, full_name="Ben One", id_number="100000001"),
            "ben2": Beneficiary(user_id=users["ben2_user"].id, full_name="Ben Two", id_number="100000002"),
            "ben3": Beneficiary(user_id=None, full_name="Ben Three", id_number="100000003"),
        }
        session.add_all(profiles.values())
        session.flush()

    return {**users, **profiles}


def auth_headers(user: User) -> dict:
    """Bearer header for a seeded user"""
    return {"Authorization": f"Bearer {create_session_token(user)}"}


@pytest.fixture
def headers(seeded):
    """headers["lawyer1"] -> Bearer header acting as lawyer1"""
    return {
        name: auth_headers(record)
        for name, record in seeded.items()
        if isinstance(record, User)
    }


@pytest.fixture
def principals(seeded, db):
    """principals["ben1_user"] -> resolved Principal"""
    service = AuthService(db)
    return {
        name: service.principal_for_user(db.query(User).filter(User.id == record.id).one())
        for name, record in seeded.items()
        if isinstance(record, User)
    }


@pytest.fixture
def client(sqlalchemy_db):
    from fastapi.testclient import TestClient
    from legalaid.api import app

    return TestClient(app)
