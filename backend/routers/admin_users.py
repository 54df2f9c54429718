from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from database import get_db
from middleware.auth import require_admin
from services.admin_users import AdminUserService, ProtectedUserError, UserNotFoundError
from services.audit import log_user_action, AuditAction
from services.auth import AuthUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/users", tags=["Admin - Users"])


class RoleUpdate(BaseModel):
    role: str


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=50)
    email_verified: Optional[bool] = None


def _not_found(e: UserNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    List users, newest first.

    `search` matches email, first and last name case-insensitively.
    """
    service = AdminUserService(db)
    return await service.list_users(page=page, limit=limit, search=search, role=role)


@router.get("/stats")
async def get_user_stats(
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await AdminUserService(db).get_user_stats()


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await AdminUserService(db).get_user(user_id)
    except UserNotFoundError as e:
        raise _not_found(e)


@router.put("/{user_id}/role")
async def update_user_role(
    user_id: str,
    role_data: RoleUpdate,
    request: Request,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    try:
        user = await AdminUserService(db).update_user_role(user_id, role_data.role)
    except UserNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    log_user_action(
        action=AuditAction.USER_ROLE_CHANGE,
        target_user_id=user_id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        details={"role": role_data.role},
        request=request
    )
    return user


@router.put("/{user_id}/deactivate")
async def deactivate_user(
    user_id: str,
    request: Request,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Block the account: password and refresh token are cleared."""
    try:
        result = await AdminUserService(db).deactivate_user(user_id)
    except UserNotFoundError as e:
        raise _not_found(e)
    except ProtectedUserError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    log_user_action(
        action=AuditAction.USER_DEACTIVATE,
        target_user_id=user_id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        request=request
    )
    return result


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    update_data: UserUpdate,
    request: Request,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    changes = update_data.model_dump(exclude_unset=True)
    try:
        user = await AdminUserService(db).update_user(user_id, changes)
    except UserNotFoundError as e:
        raise _not_found(e)

    log_user_action(
        action=AuditAction.USER_UPDATE,
        target_user_id=user_id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        details={"fields": sorted(changes)},
        request=request
    )
    return user


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    current_user: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    try:
        result = await AdminUserService(db).delete_user(user_id)
    except UserNotFoundError as e:
        raise _not_found(e)
    except ProtectedUserError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    log_user_action(
        action=AuditAction.USER_DELETE,
        target_user_id=user_id,
        actor_id=current_user.id,
        actor_email=current_user.email,
        request=request
    )
    return result
