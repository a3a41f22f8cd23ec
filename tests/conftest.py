import os
import random
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Settings are read at import time, so the environment has to be ready first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-signing-key-that-is-long-enough-for-hs256"
os.environ["OTP_EXPOSE_CODES"] = "true"
os.environ["MSG91_AUTH_KEY"] = ""
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"

from subscription_service.database import Base, get_db  # noqa: E402
from subscription_service.dependencies import get_clock, get_otp_sender, get_payment_gateway  # noqa: E402
from subscription_service.main import app  # noqa: E402
from subscription_service.models import billing, otp, session, token  # noqa: E402,F401
from subscription_service.models.billing import Plan  # noqa: E402
from subscription_service.models.user import Role, User, UserRole  # noqa: E402
from subscription_service.utils.security import get_password_hash  # noqa: E402

from tests.fakes import TEST_PASSWORD, FakeGateway, FrozenClock  # noqa: E402


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def rng():
    return random.Random(20240601)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture
async def engine():
    """
    Fresh in-memory SQLite database for every test
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as db:
        yield db


@pytest_asyncio.fixture
async def client(db_session, clock, gateway):
    """
    HTTPX AsyncClient bound to the app, sharing the test database session,
    clock and payment gateway.
    """

    async def _get_db():
        yield db_session

    async def _get_clock():
        return clock

    async def _get_gateway():
        return gateway

    async def _get_sender():
        return None

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = _get_clock
    app.dependency_overrides[get_payment_gateway] = _get_gateway
    app.dependency_overrides[get_otp_sender] = _get_sender

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def growth_plan(db_session):
    plan = Plan(
        id="growth",
        name="Growth",
        description="Monthly growth plan",
        price=Decimal("499.00"),
        currency="INR",
        billing_interval="monthly",
        is_active=True,
        display_order=1,
    )
    db_session.add(plan)
    await db_session.commit()
    return plan


@pytest_asyncio.fixture
async def create_user(db_session):
    """
    Factory fixture to create users directly via the ORM.
    """

    async def _create_user(
        phone_number: str = "9876543210",
        email: str = None,
        password: str = TEST_PASSWORD,
        is_admin: bool = False,
        roles: tuple = (),
    ) -> User:
        user = User(
            name="Test User",
            email=email or f"{phone_number}@example.com",
            phone_number=phone_number,
            password_hash=get_password_hash(password),
            kyc_verified=True,
            is_admin=is_admin,
            is_subscribed=False,
            is_registration_complete=False,
        )
        db_session.add(user)
        await db_session.flush()
        for role_name in roles:
            role = Role(name=role_name)
            db_session.add(role)
            await db_session.flush()
            db_session.add(UserRole(user_id=user.id, role_id=role.id, granted_by="tests"))
        await db_session.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def auth_header_factory(client):
    """
    Helper fixture to obtain Authorization headers through the OTP login flow.
    """

    async def _get_headers(phone_number: str = "9876543210", password: str = TEST_PASSWORD) -> dict:
        resp = await client.post("/auth/otp/request", json={"phoneNumber": phone_number, "password": password})
        assert resp.status_code == 200, resp.text
        code = resp.json()["debugCode"]
        resp = await client.post("/auth/otp/verify", json={"phoneNumber": phone_number, "code": code})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    return _get_headers


@pytest_asyncio.fixture
async def admin_headers(client, create_user):
    await create_user(phone_number="9000000001", email="admin@example.com", is_admin=True)
    resp = await client.post("/auth/admin/login", json={"email": "admin@example.com", "password": TEST_PASSWORD})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}
