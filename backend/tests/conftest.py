"""Test fixtures for the backend."""
import os
from dataclasses import dataclass
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_backend.db")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-with-at-least-32-bytes")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-with-at-least-32-bytes")
os.environ.setdefault("JWT_ACTIVATION_SECRET", "test-activation-secret-with-at-least-32-bytes")
os.environ.setdefault("JWT_EMAIL_CHANGE_SECRET", "test-email-change-secret-with-at-least-32-bytes")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "1000")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from posthub import models  # noqa: E402
from posthub.database import engine  # noqa: E402
from posthub.dependencies import get_email_service  # noqa: E402
from posthub.mailer import EmailDeliveryError, EmailService  # noqa: E402
from posthub.main import app  # noqa: E402


test_db_path = Path("test_backend.db")


@dataclass
class SentEmail:
    kind: str
    to_email: str
    username: str
    token: str


class RecordingEmailService(EmailService):
    """Mailer that keeps every message in memory instead of sending it."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[SentEmail] = []
        self.fail = False

    async def send_activation_email(self, to_email: str, username: str, token: str) -> None:
        if self.fail:
            raise EmailDeliveryError("smtp unavailable")
        self.sent.append(SentEmail("activation", to_email, username, token))

    async def send_email_change_verification(
        self, to_email: str, username: str, token: str
    ) -> None:
        if self.fail:
            raise EmailDeliveryError("smtp unavailable")
        self.sent.append(SentEmail("email_change", to_email, username, token))

    def last(self, kind: str) -> SentEmail:
        return [mail for mail in self.sent if mail.kind == kind][-1]


@pytest_asyncio.fixture(autouse=True)
async def prepare_database() -> None:
    """Create the database schema before each test and drop it afterwards."""

    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.drop_all)
    await engine.dispose()
    if test_db_path.exists():
        test_db_path.unlink()


@pytest.fixture
def mailer() -> RecordingEmailService:
    service = RecordingEmailService()
    app.dependency_overrides[get_email_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_email_service, None)


@pytest_asyncio.fixture
async def client(mailer: RecordingEmailService) -> AsyncClient:
    """Provide an HTTP client for integration tests."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def use_refresh_cookie(client: AsyncClient, token: str | None) -> None:
    """Make ``token`` the only refresh cookie the client sends."""

    client.cookies.clear()
    if token is not None:
        client.cookies.set("refreshToken", token)


def auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


async def sign_up(
    client: AsyncClient,
    username: str = "alice",
    email: str | None = None,
    password: str = "secret1",
    name: str = "Alice Example",
):
    return await client.post(
        "/auth/signup",
        json={
            "name": name,
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
            "confirm_password": password,
        },
    )


@dataclass
class Account:
    user_id: int
    username: str
    email: str
    password: str
    access_token: str
    refresh_token: str

    @property
    def headers(self) -> dict[str, str]:
        return auth_headers(self.access_token)


async def register_and_login(
    client: AsyncClient,
    mailer: RecordingEmailService,
    username: str = "alice",
    password: str = "secret1",
) -> Account:
    """Sign up, follow the activation link and log in."""

    email = f"{username}@example.com"
    response = await sign_up(client, username=username, email=email, password=password)
    assert response.status_code == 201, response.text

    token = mailer.last("activation").token
    response = await client.get("/auth/activate", params={"token": token})
    assert response.status_code == 200, response.text

    response = await client.post(
        "/auth/login", json={"identifier": username, "password": password}
    )
    assert response.status_code == 200, response.text
    access_token = response.json()["accessToken"]
    refresh_token = response.cookies["refreshToken"]

    me = await client.get("/users/me", headers=auth_headers(access_token))
    assert me.status_code == 200, me.text
    return Account(
        user_id=me.json()["id"],
        username=username,
        email=email,
        password=password,
        access_token=access_token,
        refresh_token=refresh_token,
    )
