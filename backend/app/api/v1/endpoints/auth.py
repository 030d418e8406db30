from fastapi import APIRouter, Depends, Request, Response, status
from typing import Optional

from app.core.config import Settings
from app.core.logging_config import set_user_id
from app.core.rate_limiter import RateLimitCategory
from app.core.security import csrf_token_for
from app.modules.auth.dependencies import (
    authenticated,
    get_app_settings,
    get_auth_service,
    get_client_ip,
    optional_principal,
    rate_limit,
    session_id_from_cookie,
)
from app.modules.auth.principal import AuthMode, Principal
from app.modules.auth.service import AuthOutcome, AuthService
from app.schemas.auth import (
    ApiResponse,
    AuthStatusResponse,
    ChangePasswordRequest,
    CsrfTokenResponse,
    PasswordChangeResponse,
    UserLogin,
    UserRegister,
    UserResponse,
)

router = APIRouter()


def set_session_cookie(response: Response, cookie_value: str, app_settings: Settings) -> None:
    """httpOnly + SameSite always; Secure everywhere except local development"""
    response.set_cookie(
        key=app_settings.SESSION_COOKIE_NAME,
        value=cookie_value,
        max_age=app_settings.SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=app_settings.ENVIRONMENT != "development",
        samesite="strict" if app_settings.is_production() else "lax",
        path="/",
    )


def clear_session_cookie(response: Response, app_settings: Settings) -> None:
    response.delete_cookie(
        key=app_settings.SESSION_COOKIE_NAME,
        httponly=True,
        secure=app_settings.ENVIRONMENT != "development",
        samesite="strict" if app_settings.is_production() else "lax",
        path="/",
    )


def _signed_in(outcome: AuthOutcome, response: Response, app_settings: Settings, message: str) -> ApiResponse:
    set_session_cookie(response, outcome.cookie_value, app_settings)
    set_user_id(str(outcome.user.id))
    return ApiResponse(
        success=True,
        message=message,
        token=outcome.token,
        user=UserResponse.model_validate(outcome.user),
    )


@router.post(
    "/register",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(RateLimitCategory.AUTH))],
)
async def register(
    user_data: UserRegister,
    response: Response,
    client_ip: str = Depends(get_client_ip),
    auth_service: AuthService = Depends(get_auth_service),
    app_settings: Settings = Depends(get_app_settings),
):
    """Register a student account and sign it in"""
    outcome = (await auth_service.register(user_data, client_ip)).unwrap()
    return _signed_in(outcome, response, app_settings, "Registration successful")


@router.post(
    "/login",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.AUTH))],
)
async def login(
    credentials: UserLogin,
    response: Response,
    client_ip: str = Depends(get_client_ip),
    auth_service: AuthService = Depends(get_auth_service),
    app_settings: Settings = Depends(get_app_settings),
):
    """Log in with email and password. Returns a bearer token and sets the session cookie"""
    outcome = (await auth_service.login(credentials.email, credentials.password, client_ip)).unwrap()
    return _signed_in(outcome, response, app_settings, "Login successful")


@router.post(
    "/logout",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.API))],
)
async def logout(
    request: Request,
    response: Response,
    principal: Optional[Principal] = Depends(optional_principal(AuthMode.BEARER_OR_SESSION)),
    auth_service: AuthService = Depends(get_auth_service),
    app_settings: Settings = Depends(get_app_settings),
):
    """End the current session. Succeeds even when there is nothing to end"""
    await auth_service.logout(principal, session_id_from_cookie(request))
    clear_session_cookie(response, app_settings)
    return ApiResponse(success=True, message="Logged out")


@router.get(
    "/status",
    response_model=AuthStatusResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.API))],
)
async def auth_status(
    principal: Optional[Principal] = Depends(optional_principal(AuthMode.BEARER_OR_SESSION)),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Whether the caller is signed in, and as whom"""
    if principal is None:
        return AuthStatusResponse(success=True, authenticated=False)
    profile = await auth_service.profile(principal)
    if not profile.is_ok:
        return AuthStatusResponse(success=True, authenticated=False)
    return AuthStatusResponse(
        success=True,
        authenticated=True,
        user=UserResponse.model_validate(profile.value),
    )


@router.get(
    "/me",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.API))],
)
async def get_me(
    principal: Principal = Depends(authenticated(AuthMode.BEARER_OR_SESSION)),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Current user's profile"""
    user = (await auth_service.profile(principal)).unwrap()
    return ApiResponse(success=True, user=UserResponse.model_validate(user))


@router.get(
    "/csrf-token",
    response_model=CsrfTokenResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.API))],
)
async def get_csrf_token(
    principal: Principal = Depends(authenticated(AuthMode.SESSION)),
    app_settings: Settings = Depends(get_app_settings),
):
    """Token to send as X-CSRF-Token on cookie-authenticated writes"""
    return CsrfTokenResponse(
        success=True,
        csrf_token=csrf_token_for(principal.session_id, app_settings.SESSION_SECRET),
    )


@router.post(
    "/change-password",
    response_model=PasswordChangeResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit(RateLimitCategory.PASSWORD_CHANGE))],
)
async def change_password(
    payload: ChangePasswordRequest,
    principal: Principal = Depends(authenticated(AuthMode.BEARER_OR_SESSION)),
    client_ip: str = Depends(get_client_ip),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Change password. Every other session of the user is ended"""
    outcome = (await auth_service.change_password(
        principal,
        payload.current_password,
        payload.new_password,
        client_ip=client_ip,
    )).unwrap()
    return PasswordChangeResponse(
        success=True,
        message="Password changed successfully",
        password_strength=outcome.strength,
        suggestions=outcome.suggestions or None,
    )
