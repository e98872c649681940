"""Authentication routes: sign-up, activation, login and session refresh."""
from fastapi import APIRouter, Cookie, Depends, Query, Response, status

from .config import get_settings
from .dependencies import get_current_user_id, get_session_manager
from .schemas import (
    AccessTokenResponse,
    LoginRequest,
    MessageResponse,
    SignUpRequest,
    UpdateEmailRequest,
    UpdatePasswordRequest,
    UpdatePasswordResponse,
)
from .sessions import SessionManager

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE = "refreshToken"


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    """Attach the refresh token as an HttpOnly cookie."""

    settings = get_settings()
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        max_age=settings.refresh_cookie_max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def clear_refresh_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=REFRESH_COOKIE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


@router.post("/signup", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(
    payload: SignUpRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> dict[str, str]:
    """Register an inactive account and email its activation link."""

    return await manager.sign_up(
        name=payload.name,
        username=payload.username,
        email=payload.email,
        password=payload.password,
        confirm_password=payload.confirm_password,
        description=payload.description,
    )


@router.get("/activate", response_model=str)
async def activate(
    token: str = Query(...),
    manager: SessionManager = Depends(get_session_manager),
) -> str:
    """Activate the account named by an activation token."""

    return await manager.activate(token)


@router.post("/login", response_model=AccessTokenResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
) -> AccessTokenResponse:
    """Authenticate by email or username and start a session."""

    pair = await manager.log_in(payload.identifier, payload.password)
    set_refresh_cookie(response, pair.refresh_token)
    return AccessTokenResponse(access_token=pair.access_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    current_user_id: int = Depends(get_current_user_id),
    manager: SessionManager = Depends(get_session_manager),
) -> dict[str, str]:
    """End the session and clear the refresh cookie."""

    result = await manager.log_out(current_user_id)
    clear_refresh_cookie(response)
    return result


@router.post("/refresh", response_model=AccessTokenResponse)
async def refresh(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    manager: SessionManager = Depends(get_session_manager),
) -> AccessTokenResponse:
    """Rotate the refresh token and hand out a new access token."""

    pair = await manager.refresh(refresh_token)
    set_refresh_cookie(response, pair.refresh_token)
    return AccessTokenResponse(access_token=pair.access_token)


@router.patch("/update-password", response_model=UpdatePasswordResponse)
async def update_password(
    payload: UpdatePasswordRequest,
    current_user_id: int = Depends(get_current_user_id),
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    return await manager.update_password(
        current_user_id,
        current_password=payload.current_password,
        new_password=payload.new_password,
        confirm_new_password=payload.confirm_new_password,
    )


@router.patch("/update-email", response_model=MessageResponse)
async def update_email(
    payload: UpdateEmailRequest,
    current_user_id: int = Depends(get_current_user_id),
    manager: SessionManager = Depends(get_session_manager),
) -> dict[str, str]:
    """Email a confirmation link to the requested new address."""

    return await manager.update_email(current_user_id, payload.new_email)


@router.get("/update-email", response_model=str)
async def verify_new_email(
    token: str = Query(...),
    manager: SessionManager = Depends(get_session_manager),
) -> str:
    """Apply an email change once its link is followed."""

    return await manager.verify_new_email(token)
