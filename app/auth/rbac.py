from typing import Dict

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser

UNRESTRICTED_ROLES = ("SUPER_ADMIN", "PLATFORM_ADMIN")


def has_permission(role: str, permissions: Dict[str, Dict[str, bool]], module: str, action: str) -> bool:
    if role in UNRESTRICTED_ROLES:
        return True
    module_perms = (permissions or {}).get(module, {})
    return bool(module_perms.get(action, False))


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission on read endpoints.
    State-changing lifecycle operations are authorized again inside the coordinator.

    Example:
        Depends(check_permission("promotions", "read"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if not has_permission(current_user.role, current_user.permissions, module, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker
