from functools import lru_cache

from fastapi import Depends, HTTPException, status, Request
from .models.user_model import User, UserRole
from .security import current_active_user
from . import config
from .db import async_session_maker
from .services.backend_service import Backend, SqlAlchemyBackend
from .services.registry_service import SessionRegistry
from .services.snapshot_service import SqlAlchemySnapshotStore


def current_user_has_role(required_role: UserRole):
    async def current_user_contains_role(user: User = Depends(current_active_user)):
        if user.role != required_role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted",
            )
        return user
    return current_user_contains_role


current_admin = current_user_has_role(UserRole.ADMIN)
current_student = current_user_has_role(UserRole.STUDENT)


async def users_router_permission(request: Request, user: User = Depends(current_active_user)):
    # only admins may create, change or delete accounts
    if request.method.upper() in ("POST", "PUT", "PATCH", "DELETE"):
        if user.role != UserRole.ADMIN:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operation not permitted")
    return True


@lru_cache
def get_backend() -> Backend:
    return SqlAlchemyBackend(async_session_maker)


@lru_cache
def get_registry() -> SessionRegistry:
    return SessionRegistry(
        get_backend(),
        SqlAlchemySnapshotStore(async_session_maker),
        timer_interval=config.TIMER_INTERVAL_SECONDS,
    )
