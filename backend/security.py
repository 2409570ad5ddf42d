from fastapi import Depends, HTTPException, status

from auth import get_current_user
from models import User, UserRole


def require_role(*roles: UserRole):
    allowed = set(roles)
    labels = ", ".join(role.value for role in roles)

    def _checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. This route is for: {labels}",
            )
        return user

    return _checker


def require_participant(user: User = Depends(require_role(UserRole.PARTICIPANT))) -> User:
    return user


def require_organizer(user: User = Depends(require_role(UserRole.ORGANIZER))) -> User:
    return user


def require_active_organizer(user: User = Depends(require_organizer)) -> User:
    if user.is_approved is False:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account has been disabled. Contact the admin.",
        )
    return user
