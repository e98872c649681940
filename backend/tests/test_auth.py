"""Integration tests for sign-up, activation, login and session refresh."""
import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import delete, func, select

from conftest import (
    RecordingEmailService,
    auth_headers,
    register_and_login,
    sign_up,
    use_refresh_cookie,
)
from posthub import sessions
from posthub.config import get_settings
from posthub.database import AsyncSessionLocal
from posthub.models import User


async def count_users() -> int:
    async with AsyncSessionLocal() as session:
        return (await session.execute(select(func.count(User.id)))).scalar_one()


async def load_user(username: str) -> User:
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.username == username))
        return result.scalar_one()


@pytest.fixture
def production_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "production")
    get_settings.cache_clear()
    yield
    monkeypatch.undo()
    get_settings.cache_clear()


@pytest.mark.asyncio
async def test_signup_creates_one_inactive_account(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """Sign-up stores one inactive row and mails an activation link."""

    response = await sign_up(client, username="alice", email="Alice@Example.com")
    assert response.status_code == 201
    assert response.json() == {"message": "Check your email to activate..."}

    assert await count_users() == 1
    user = await load_user("alice")
    assert user.is_active is False
    assert user.email == "alice@example.com"
    assert user.password_hash != "secret1"
    assert user.refresh_token_hash is None

    sent = mailer.last("activation")
    assert sent.to_email == "alice@example.com"
    assert sent.username == "alice"


@pytest.mark.asyncio
async def test_signup_rejects_mismatched_passwords(client: AsyncClient) -> None:
    response = await client.post(
        "/auth/signup",
        json={
            "name": "Alice Example",
            "username": "alice",
            "email": "alice@example.com",
            "password": "secret1",
            "confirm_password": "secret2",
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Passwords do not match"
    assert await count_users() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("username", ["ab", "1alice", "al__ice", "alice_", "a" * 16])
async def test_signup_rejects_malformed_usernames(client: AsyncClient, username: str) -> None:
    response = await sign_up(client, username=username, email="someone@example.com")
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_signup_conflicts(client: AsyncClient) -> None:
    """Username clashes are case-insensitive and reported precisely."""

    assert (await sign_up(client, username="alice")).status_code == 201

    response = await sign_up(client, username="ALICE", email="other@example.com")
    assert response.status_code == 409
    assert response.json()["detail"] == "Username already exists"

    response = await sign_up(client, username="bob", email="ALICE@example.com")
    assert response.status_code == 409
    assert response.json()["detail"] == "Email already exists"

    response = await sign_up(client, username="Alice", email="alice@example.com")
    assert response.status_code == 409
    assert response.json()["detail"] == "Username and email already exist"

    assert await count_users() == 1


@pytest.mark.asyncio
async def test_signup_rolls_back_when_email_fails(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """No account survives a sign-up whose activation mail was not sent."""

    mailer.fail = True
    response = await sign_up(client)

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "server_error"}
    assert await count_users() == 0


@pytest.mark.asyncio
async def test_concurrent_signups_for_same_username(client: AsyncClient) -> None:
    """Exactly one of two racing sign-ups wins."""

    responses = await asyncio.gather(
        sign_up(client, username="racer", email="first@example.com"),
        sign_up(client, username="racer", email="second@example.com"),
    )
    assert sorted(response.status_code for response in responses) == [201, 409]
    assert await count_users() == 1


@pytest.mark.asyncio
async def test_activation_is_idempotent(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    await sign_up(client)
    token = mailer.last("activation").token

    response = await client.get("/auth/activate", params={"token": token})
    assert response.status_code == 200
    assert response.json() == "Account activated successfully"

    response = await client.get("/auth/activate", params={"token": token})
    assert response.status_code == 200
    assert response.json() == "Account is already activated"

    assert (await load_user("alice")).is_active is True


@pytest.mark.asyncio
async def test_activation_rejects_bad_tokens(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    response = await client.get("/auth/activate", params={"token": "garbage"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or expired activation link"


@pytest.mark.asyncio
async def test_activation_for_deleted_account_is_not_found(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """The sweeper may remove an account before its link is followed."""

    await sign_up(client)
    token = mailer.last("activation").token
    async with AsyncSessionLocal() as session:
        await session.execute(delete(User).where(User.username == "alice"))
        await session.commit()

    response = await client.get("/auth/activate", params={"token": token})
    assert response.status_code == 404
    assert response.json() == {"detail": "User not found", "code": "not_found"}


@pytest.mark.asyncio
async def test_login_requires_activation(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    await sign_up(client)

    response = await client.post(
        "/auth/login", json={"identifier": "alice", "password": "secret1"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Account not activated. Please check your email."


@pytest.mark.asyncio
async def test_login_does_not_reveal_which_part_was_wrong(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    await register_and_login(client, mailer)

    wrong_password = await client.post(
        "/auth/login", json={"identifier": "alice", "password": "wrong1"}
    )
    unknown_user = await client.post(
        "/auth/login", json={"identifier": "nobody", "password": "secret1"}
    )
    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()
    assert wrong_password.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_unknown_identifier_still_checks_a_password_hash(
    client: AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    checked: list[str] = []
    original = sessions.verify_password_async

    async def recording_verify(password: str, password_hash: str) -> bool:
        checked.append(password_hash)
        return await original(password, password_hash)

    monkeypatch.setattr(sessions, "verify_password_async", recording_verify)

    response = await client.post(
        "/auth/login", json={"identifier": "nobody", "password": "secret1"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"
    assert len(checked) == 1
    assert checked[0].startswith("$pbkdf2-sha256$")


@pytest.mark.asyncio
async def test_login_sets_refresh_cookie(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """Login by email, case-insensitively, and receive the refresh cookie."""

    await register_and_login(client, mailer)

    response = await client.post(
        "/auth/login", json={"identifier": "ALICE@example.com", "password": "secret1"}
    )
    assert response.status_code == 200
    assert set(response.json()) == {"accessToken"}

    cookie = response.headers["set-cookie"].lower()
    assert cookie.startswith("refreshtoken=")
    assert "httponly" in cookie
    assert "samesite=lax" in cookie
    assert "max-age=604800" in cookie
    assert "path=/" in cookie
    assert "; secure" not in cookie

    me = await client.get("/users/me", headers=auth_headers(response.json()["accessToken"]))
    assert me.status_code == 200
    assert me.json()["username"] == "alice"
    assert "password_hash" not in me.json()
    assert "refresh_token_hash" not in me.json()


@pytest.mark.asyncio
async def test_refresh_cookie_is_secure_in_production(
    client: AsyncClient, mailer: RecordingEmailService, production_env
) -> None:
    await register_and_login(client, mailer)

    login = await client.post("/auth/login", json={"identifier": "alice", "password": "secret1"})
    assert login.status_code == 200
    assert "; secure" in login.headers["set-cookie"].lower()

    use_refresh_cookie(client, login.cookies["refreshToken"])
    refreshed = await client.post("/auth/refresh")
    assert refreshed.status_code == 200
    assert "; secure" in refreshed.headers["set-cookie"].lower()


@pytest.mark.asyncio
async def test_refresh_token_is_single_use(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    account = await register_and_login(client, mailer)

    use_refresh_cookie(client, account.refresh_token)
    first = await client.post("/auth/refresh")
    assert first.status_code == 200
    rotated = first.cookies["refreshToken"]
    assert rotated != account.refresh_token

    use_refresh_cookie(client, account.refresh_token)
    replay = await client.post("/auth/refresh")
    assert replay.status_code == 401
    assert replay.json()["detail"] == "Invalid refresh token"

    use_refresh_cookie(client, rotated)
    second = await client.post("/auth/refresh")
    assert second.status_code == 200

    new_access = second.json()["accessToken"]
    assert (await client.get("/users/me", headers=auth_headers(new_access))).status_code == 200


@pytest.mark.asyncio
async def test_concurrent_refresh_with_same_token(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """Two racing refreshes of one token: one wins, the other is refused."""

    account = await register_and_login(client, mailer)
    use_refresh_cookie(client, account.refresh_token)

    responses = await asyncio.gather(
        client.post("/auth/refresh"),
        client.post("/auth/refresh"),
    )
    assert sorted(response.status_code for response in responses) == [200, 401]


@pytest.mark.asyncio
async def test_a_new_login_retires_the_previous_refresh_token(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    account = await register_and_login(client, mailer)
    await client.post("/auth/login", json={"identifier": "alice", "password": "secret1"})

    use_refresh_cookie(client, account.refresh_token)
    response = await client.post("/auth/refresh")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_failures(client: AsyncClient, mailer: RecordingEmailService) -> None:
    use_refresh_cookie(client, None)
    response = await client.post("/auth/refresh")
    assert response.status_code == 401
    assert response.json()["detail"] == "Refresh token not found"

    use_refresh_cookie(client, "not-a-token")
    response = await client.post("/auth/refresh")
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired refresh token"


@pytest.mark.asyncio
async def test_logout_ends_the_session(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    account = await register_and_login(client, mailer)

    response = await client.post("/auth/logout", headers=account.headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}
    assert 'refreshtoken=""' in response.headers["set-cookie"].lower()
    assert (await load_user("alice")).refresh_token_hash is None

    again = await client.post("/auth/logout", headers=account.headers)
    assert again.status_code == 200
    assert again.json() == {"message": "Logged out successfully"}

    use_refresh_cookie(client, account.refresh_token)
    response = await client.post("/auth/refresh")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_is_required(client: AsyncClient) -> None:
    response = await client.post("/auth/logout")
    assert response.status_code == 401
    assert response.json()["detail"] == "Access token not found"

    response = await client.post("/auth/logout", headers=auth_headers("garbage"))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired access token"


@pytest.mark.asyncio
async def test_update_password(client: AsyncClient, mailer: RecordingEmailService) -> None:
    account = await register_and_login(client, mailer)
    url = "/auth/update-password"

    response = await client.patch(
        url,
        headers=account.headers,
        json={
            "current_password": "secret1",
            "new_password": "secret2",
            "confirm_new_password": "secret3",
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Passwords do not match"

    response = await client.patch(
        url,
        headers=account.headers,
        json={
            "current_password": "wrong1",
            "new_password": "secret2",
            "confirm_new_password": "secret2",
        },
    )
    assert response.status_code == 401

    response = await client.patch(
        url,
        headers=account.headers,
        json={
            "current_password": "secret1",
            "new_password": "secret2",
            "confirm_new_password": "secret2",
        },
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Password updated successfully"}

    # The session opened before the change keeps working
    use_refresh_cookie(client, account.refresh_token)
    assert (await client.post("/auth/refresh")).status_code == 200

    old = await client.post("/auth/login", json={"identifier": "alice", "password": "secret1"})
    new = await client.post("/auth/login", json={"identifier": "alice", "password": "secret2"})
    assert old.status_code == 401
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_update_email_round_trip(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """The new address only takes effect once its link is followed."""

    account = await register_and_login(client, mailer)

    response = await client.patch(
        "/auth/update-email",
        headers=account.headers,
        json={"new_email": "Alice.New@example.com"},
    )
    assert response.status_code == 200
    assert response.json() == {"message": "Please check your new email to update"}
    assert (await load_user("alice")).email == "alice@example.com"

    sent = mailer.last("email_change")
    assert sent.to_email == "Alice.New@example.com"
    assert sent.username == "alice"

    response = await client.get("/auth/update-email", params={"token": sent.token})
    assert response.status_code == 200
    assert response.json() == "Email updated successfully"
    assert (await load_user("alice")).email == "alice.new@example.com"

    response = await client.post(
        "/auth/login", json={"identifier": "alice.new@example.com", "password": "secret1"}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_update_email_conflicts(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    alice = await register_and_login(client, mailer, username="alice")
    await register_and_login(client, mailer, username="bob")

    response = await client.patch(
        "/auth/update-email", headers=alice.headers, json={"new_email": "bob@example.com"}
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Email already exists"


@pytest.mark.asyncio
async def test_update_email_loses_race_at_confirmation(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    """An address claimed after the link was sent cannot be confirmed."""

    alice = await register_and_login(client, mailer, username="alice")
    response = await client.patch(
        "/auth/update-email", headers=alice.headers, json={"new_email": "shared@example.com"}
    )
    assert response.status_code == 200
    token = mailer.last("email_change").token

    assert (await sign_up(client, username="carol", email="shared@example.com")).status_code == 201

    response = await client.get("/auth/update-email", params={"token": token})
    assert response.status_code == 409
    assert response.json()["detail"] == "Email already exists"
    assert (await load_user("alice")).email == "alice@example.com"


@pytest.mark.asyncio
async def test_update_email_rejects_bad_link(client: AsyncClient) -> None:
    response = await client.get("/auth/update-email", params={"token": "garbage"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired email update link"


@pytest.mark.asyncio
async def test_signup_activate_login_scenario(
    client: AsyncClient, mailer: RecordingEmailService
) -> None:
    response = await sign_up(client, username="john_doe123", email="john@example.com")
    assert response.status_code == 201

    response = await client.get(
        "/auth/activate", params={"token": mailer.last("activation").token}
    )
    assert response.json() == "Account activated successfully"

    response = await client.post(
        "/auth/login", json={"identifier": "john_doe123", "password": "secret1"}
    )
    assert response.status_code == 200
    assert "accessToken" in response.json()
    assert "refreshToken" in response.cookies
