from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from conexx_hub.core.deps import get_db
from conexx_hub.core.security import TokenValidationError, decode_token
from conexx_hub.models.user import ROLE_CONEXX_ADMIN, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user_id = payload.get("sub")
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def is_platform_admin(user: User) -> bool:
    return (user.role or "").lower() == ROLE_CONEXX_ADMIN


def resolve_tenant_scope(user: User, requested_tenant_id: str | None = None) -> str | None:
    """Tenant a query is limited to. ``None`` means all tenants (platform admins only)."""
    if is_platform_admin(user):
        cleaned = (requested_tenant_id or "").strip()
        return cleaned or None
    if not user.tenant_id:
        raise HTTPException(status_code=403, detail="User is not linked to a tenant")
    return user.tenant_id
