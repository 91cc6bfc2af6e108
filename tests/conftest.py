from __future__ import annotations

import json
import os
from collections.abc import Generator

os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from foundation_api.auth import get_current_user, get_optional_user
from foundation_api.db import get_db
from foundation_api.main import app
from foundation_api.models import Base, Role, User
from foundation_api.mpesa import MpesaClient, get_mpesa_client

SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

MOTIVATION = (
    "I want to mentor young people in Kamune, support the education fund and help "
    "organise community outreach events throughout the year."
)


@pytest.fixture(autouse=True)
def setup_database() -> Generator[None, None, None]:
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory() -> sessionmaker:
    return TestingSessionLocal


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app.dependency_overrides.clear()
    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def authorize(client: TestClient):
    def _apply(user: User | None):
        if user is None:
            app.dependency_overrides.pop(get_current_user, None)
            app.dependency_overrides.pop(get_optional_user, None)
            return
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_optional_user] = lambda: user

    yield _apply
    app.dependency_overrides.pop(get_current_user, None)
    app.dependency_overrides.pop(get_optional_user, None)


class GatewayStub:
    """Records requests sent to the M-PESA API and answers them from canned handlers."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.stk_status = 200
        self.stk_body = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "test-token", "expires_in": "3599"})
        return httpx.Response(self.stk_status, json=self.stk_body)

    def stk_payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith("processrequest")]

    def client(self) -> MpesaClient:
        return MpesaClient(
            base_url="https://mpesa.test",
            consumer_key="key",
            consumer_secret="secret",
            shortcode="174379",
            passkey="passkey",
            callback_url="https://example.org/callback",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture()
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture()
def mpesa(client: TestClient, gateway: GatewayStub) -> Generator[GatewayStub, None, None]:
    app.dependency_overrides[get_mpesa_client] = gateway.client
    yield gateway
    app.dependency_overrides.pop(get_mpesa_client, None)


def _ensure_role(session: Session, name: str) -> Role:
    role = session.query(Role).filter_by(name=name).first()
    if role is None:
        role = Role(name=name, description=f"{name} role")
        session.add(role)
        session.commit()
        session.refresh(role)
    return role


def _make_user(session: Session, email: str, first_name: str, role_name: str) -> User:
    user = User(
        email=email,
        first_name=first_name,
        last_name="Test",
        hashed_password="hash",
        is_active=True,
    )
    user.roles.append(_ensure_role(session, role_name))
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture()
def admin_user(db_session: Session) -> User:
    return _make_user(db_session, "admin@example.com", "Admin", "admin")


@pytest.fixture()
def member_user(db_session: Session) -> User:
    return _make_user(db_session, "member@example.com", "Mary", "member")


@pytest.fixture()
def other_member(db_session: Session) -> User:
    return _make_user(db_session, "other@example.com", "Otieno", "member")


@pytest.fixture()
def guest_user(db_session: Session) -> User:
    return _make_user(db_session, "guest@example.com", "Gitau", "guest")


@pytest.fixture()
def application_payload() -> dict:
    return {
        "membership_type": "gold",
        "payment_plan": "monthly",
        "personal_info": {
            "nationality": "Kenyan",
            "occupation": "Engineer",
            "employer": "Kamune Works",
            "education": {"highest_degree": "BSc", "institution": "JKUAT", "graduation_year": 2015},
            "skills": ["mentoring"],
        },
        "references": [
            {
                "name": "Jane Wanjiku",
                "title": "Manager",
                "organization": "Acme",
                "email": "jane@example.com",
                "phone": "254700000001",
            },
            {
                "name": "Peter Kamau",
                "title": "Principal",
                "organization": "Kamune High",
                "email": "peter@example.com",
                "phone": "254700000002",
            },
        ],
        "motivation": MOTIVATION,
        "availability": "weekends",
    }
