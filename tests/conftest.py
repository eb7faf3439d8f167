import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.dialects.sqlite import base as sqlite_base
from sqlalchemy.orm import sessionmaker

import promo_credits.models  # noqa: F401 — register models with Base.metadata
from promo_credits.core.config import settings
from promo_credits.core.database import Base, get_db
from promo_credits.main import app as fastapi_app
from promo_credits.models import Organization, PromotionPackage, User
from promo_credits.services.access import Caller
from promo_credits.services.credits import adjust_credits

settings.DEBUG = True

# ---------------------------------------------------------------------------
# SQLite compatibility for PostgreSQL-specific types (JSONB)
# ---------------------------------------------------------------------------
sqlite_base.SQLiteTypeCompiler.visit_JSONB = lambda self, type_, **kw: self.visit_JSON(type_, **kw)

# In-memory SQLite for tests — no PostgreSQL dependency needed
TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def issue_token(user_id, token_type="access", expires_in=timedelta(hours=1)) -> str:
    """Sign a token the way the platform's auth service does."""
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in,
        "type": token_type,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """Provide a test database session."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def org(db):
    organization = Organization(name="Test Org")
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture
def other_org(db):
    organization = Organization(name="Other Org")
    db.add(organization)
    db.commit()
    db.refresh(organization)
    return organization


@pytest.fixture
def make_user(db):
    """Factory inserting a verified user directly into the DB."""

    def _make_user(org_id=None, role="sponsor_admin", **overrides) -> User:
        defaults = {
            "email": f"{uuid.uuid4().hex[:8]}@example.com",
            "name": "Test User",
            "role": role,
            "org_id": org_id,
            "is_verified": True,
        }
        defaults.update(overrides)
        user = User(**defaults)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def auth_header():
    def _auth_header(user: User, **token_options) -> dict:
        return {"Authorization": f"Bearer {issue_token(user.id, **token_options)}"}

    return _auth_header


@pytest.fixture
def fund(db):
    """Top up an org's credits through the ledger."""

    def _fund(org_id, amount, key=None):
        return adjust_credits(db, org_id, amount, idempotency_key=key or f"seed-{uuid.uuid4()}")

    return _fund


@pytest.fixture
def sponsor(make_user, org) -> User:
    return make_user(org.id, role="sponsor_admin")


@pytest.fixture
def admin(make_user) -> User:
    return make_user(None, role="admin")


@pytest.fixture
def sponsor_caller(sponsor) -> Caller:
    return Caller.from_user(sponsor)


@pytest.fixture
def admin_caller(admin) -> Caller:
    return Caller.from_user(admin)


@pytest.fixture
def package(db) -> PromotionPackage:
    """40 credits for 10 days."""
    pkg = PromotionPackage(
        name="Ten Day Boost",
        slug="ten-day-boost",
        duration_days=10,
        cost_in_credits=40,
        is_active=True,
        sort_order=1,
        features={"priority_boost": 10, "show_featured_badge": True},
    )
    db.add(pkg)
    db.commit()
    db.refresh(pkg)
    return pkg


@pytest.fixture
def client(db):
    """TestClient with overridden DB dependency."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()
