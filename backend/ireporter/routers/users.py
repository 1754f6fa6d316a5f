from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ireporter.core.database import Database, get_database, get_db
from ireporter.core.exceptions import Forbidden
from ireporter.core.security import Caller, get_current_caller, get_current_user
from ireporter.models.user import User
from ireporter.schemas.incident import MessageResponse
from ireporter.schemas.user import PasswordChange, ProfileUpdate, UserOut
from ireporter.services import users as users_service

router = APIRouter(prefix="/users", tags=["users"])


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_admin:
        raise Forbidden("Admin access required")
    return caller


@router.get("", response_model=List[UserOut])
async def get_all_users(
    _: Caller = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await users_service.list_users(db)


@router.get("/profile", response_model=UserOut)
async def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=UserOut)
async def update_profile(
    profile_update: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update user profile (name, email and/or profile picture)"""
    return await users_service.update_profile(db, current_user, profile_update)


@router.patch("/password", response_model=MessageResponse)
async def change_password(
    password_change: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await users_service.change_password(
        db, current_user, password_change.current_password, password_change.new_password
    )
    return MessageResponse(message="Password changed successfully")


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: str,
    caller: Caller = Depends(require_admin),
    database: Database = Depends(get_database),
):
    """Delete a user together with their incidents and media"""
    await users_service.delete_user(database, caller, user_id)
    return MessageResponse(message="User deleted successfully")
