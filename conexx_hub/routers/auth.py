from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conexx_hub.core.api_docs import error_responses
from conexx_hub.core.config import settings
from conexx_hub.core.deps import get_db
from conexx_hub.core.rate_limit import FailedAttemptLimiter
from conexx_hub.core.security import create_access_token, verify_password
from conexx_hub.core.security_current import get_current_user
from conexx_hub.models.user import User
from conexx_hub.schemas.auth import LoginIn, TokenOut, UserProfileOut

router = APIRouter(prefix="/auth", tags=["auth"])
TOKEN_RESPONSE = {
    200: {
        "description": "Access token",
        "content": {
            "application/json": {
                "example": {
                    "access_token": "access-token",
                    "token_type": "bearer",
                }
            }
        },
    }
}

login_rate_limiter = FailedAttemptLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)


def _client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _enforce_rate_limit(identifier: str, client_ip: str) -> str:
    key = f"{identifier.strip().lower()}:{client_ip}"
    retry_after = login_rate_limiter.check(key)
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return key


def _authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()

    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


def _login(db: Session, *, email: str, password: str, client_ip: str) -> TokenOut:
    key = _enforce_rate_limit(email, client_ip)
    try:
        user = _authenticate_user(db, email, password)
    except HTTPException as exc:
        if exc.status_code == 401:
            login_rate_limiter.register_failure(key)
        raise

    login_rate_limiter.register_success(key)
    return TokenOut(access_token=create_access_token(user.id, role=user.role))


@router.post(
    "/login",
    response_model=TokenOut,
    summary="Login with JSON",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_db)):
    return _login(db, email=payload.email, password=payload.password, client_ip=_client_ip(request))


@router.post(
    "/token",
    response_model=TokenOut,
    summary="OAuth2 password token (Swagger Authorize)",
    description="Form-data login used by Swagger Authorize. Put the e-mail in the `username` field.",
    responses={**TOKEN_RESPONSE, **error_responses(401, 422, 429, 500)},
)
def login_for_swagger(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    return _login(db, email=form_data.username, password=form_data.password, client_ip=_client_ip(request))


@router.get(
    "/me",
    response_model=UserProfileOut,
    summary="Get current user profile",
    responses=error_responses(401, 500),
)
def get_my_profile(user: User = Depends(get_current_user)):
    return UserProfileOut.model_validate(user)
