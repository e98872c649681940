"""Account and session lifecycle.

Per-user states and the operations that move between them::

    Unregistered --sign_up--> PendingActivation --activate--> Active+LoggedOut
    Active+LoggedOut --log_in--> Active+LoggedIn --log_out--> Active+LoggedOut

``refresh`` keeps a logged-in user logged in by rotating the refresh token.
Only one refresh token is valid per user: the hash of the newest one is
stored on the user row, so issuing a token silently retires the previous one
and clearing the hash ends the session.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from .credentials import CredentialStore
from .errors import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    service_boundary,
)
from .logging import get_logger, log_error
from .mailer import EmailService
from .security import (
    dummy_password_hash,
    hash_password_async,
    refresh_token_matches,
    verify_password_async,
)
from .tokens import TokenCodec, TokenError, TokenKind, TokenPair, TokenPayload

logger = get_logger(__name__)

SIGNUP_MESSAGE = "Check your email to activate..."
ACTIVATED_MESSAGE = "Account activated successfully"
ALREADY_ACTIVE_MESSAGE = "Account is already activated"
EMAIL_UPDATED_MESSAGE = "Email updated successfully"


class SessionManager:
    """Orchestrates sign-up, activation, login and credential changes."""

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        mailer: EmailService,
    ) -> None:
        self.store = store
        self.codec = codec
        self.mailer = mailer

    @service_boundary("SessionManager.sign_up")
    async def sign_up(
        self,
        *,
        name: str,
        username: str,
        email: str,
        password: str,
        confirm_password: str,
        description: Optional[str] = None,
    ) -> Dict[str, str]:
        if password != confirm_password:
            raise ValidationError("Passwords do not match")

        available = await self.store.availability(username=username, email=email)
        if not available.username_available and not available.email_available:
            raise ConflictError("Username and email already exist")
        if not available.username_available:
            raise ConflictError("Username already exists")
        if not available.email_available:
            raise ConflictError("Email already exists")

        password_hash = await hash_password_async(password)
        user = await self.store.create_user(
            name=name,
            username=username,
            description=description,
            email=email,
            password_hash=password_hash,
        )

        try:
            token = self.codec.issue(TokenKind.ACTIVATION, TokenPayload(user_id=user.id))
            await self.mailer.send_activation_email(user.email, user.username, token)
        except Exception:
            await self._discard_account(user.id)
            raise

        logger.info("user_signed_up", user_id=user.id)
        return {"message": SIGNUP_MESSAGE}

    async def _discard_account(self, user_id: int) -> None:
        """Undo a sign-up whose activation step failed."""

        try:
            await self.store.delete_user(user_id)
        except Exception as cleanup_error:
            log_error(cleanup_error, "SessionManager.sign_up - cleanup failed")

    @service_boundary("SessionManager.activate")
    async def activate(self, token: str) -> str:
        try:
            payload = self.codec.verify(TokenKind.ACTIVATION, token)
        except TokenError as exc:
            raise ValidationError("Invalid or expired activation link") from exc

        user = await self.store.get_by_id(payload.user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_active:
            return ALREADY_ACTIVE_MESSAGE

        await self.store.activate(user.id)
        logger.info("user_activated", user_id=user.id)
        return ACTIVATED_MESSAGE

    @service_boundary("SessionManager.log_in")
    async def log_in(self, identifier: str, password: str) -> TokenPair:
        user = await self.store.find_for_login(identifier)
        # Same message and same hashing cost for unknown identifier and wrong password
        password_hash = user.password_hash if user is not None else dummy_password_hash()
        password_ok = await verify_password_async(password, password_hash)
        if user is None or not password_ok:
            raise UnauthorizedError("Invalid credentials")
        if not user.is_active:
            raise UnauthorizedError("Account not activated. Please check your email.")

        pair = self.codec.issue_pair(user.id)
        await self.store.set_refresh_token(user.id, pair.refresh_token)
        logger.info("user_logged_in", user_id=user.id)
        return pair

    @service_boundary("SessionManager.log_out")
    async def log_out(self, user_id: int) -> Dict[str, str]:
        await self.store.set_refresh_token(user_id, None)
        logger.info("user_logged_out", user_id=user_id)
        return {"message": "Logged out successfully"}

    @service_boundary("SessionManager.refresh")
    async def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise UnauthorizedError("Refresh token not found")

        try:
            payload = self.codec.verify(TokenKind.REFRESH, refresh_token)
        except TokenError as exc:
            raise UnauthorizedError("Invalid or expired refresh token") from exc

        user = await self.store.get_by_id(payload.user_id)
        if user is None or not user.refresh_token_hash:
            raise UnauthorizedError("Invalid refresh token")
        if not refresh_token_matches(refresh_token, user.refresh_token_hash):
            raise UnauthorizedError("Invalid refresh token")

        pair = self.codec.issue_pair(user.id)
        rotated = await self.store.rotate_refresh_token(
            user.id, previous_token=refresh_token, new_token=pair.refresh_token
        )
        if not rotated:
            # Another request rotated this token first
            raise UnauthorizedError("Invalid refresh token")
        return pair

    @service_boundary("SessionManager.update_password")
    async def update_password(
        self,
        user_id: int,
        *,
        current_password: str,
        new_password: str,
        confirm_new_password: str,
    ) -> Dict[str, Any]:
        if new_password != confirm_new_password:
            raise ValidationError("Passwords do not match")

        user = await self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not await verify_password_async(current_password, user.password_hash):
            raise UnauthorizedError("Invalid credentials")

        # Existing sessions survive a password change
        await self.store.set_password_hash(user.id, await hash_password_async(new_password))
        logger.info("password_updated", user_id=user.id)
        return {"success": True, "message": "Password updated successfully"}

    @service_boundary("SessionManager.update_email")
    async def update_email(self, user_id: int, new_email: str) -> Dict[str, str]:
        available = await self.store.availability(email=new_email)
        if not available.email_available:
            raise ConflictError("Email already exists")

        user = await self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        token = self.codec.issue(
            TokenKind.EMAIL_CHANGE,
            TokenPayload(user_id=user.id, new_email=new_email.lower()),
        )
        await self.mailer.send_email_change_verification(new_email, user.username, token)
        logger.info("email_change_requested", user_id=user.id)
        return {"message": "Please check your new email to update"}

    @service_boundary("SessionManager.verify_new_email")
    async def verify_new_email(self, token: str) -> str:
        try:
            payload = self.codec.verify(TokenKind.EMAIL_CHANGE, token)
        except TokenError as exc:
            raise UnauthorizedError("Invalid or expired email update link") from exc

        # The unique constraint on email settles races with other accounts
        updated = await self.store.set_email(payload.user_id, payload.new_email)
        if not updated:
            raise NotFoundError("User not found")
        logger.info("email_updated", user_id=payload.user_id)
        return EMAIL_UPDATED_MESSAGE
