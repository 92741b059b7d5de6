from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from conexx_hub.core.security_current import get_current_user
from conexx_hub.models.user import User


def require_roles(*allowed_roles: str) -> Callable[[User], User]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")

    def dependency(user: User = Depends(get_current_user)) -> User:
        current_role = (user.role or "").lower()
        if current_role not in normalized_allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return user

    return dependency
