import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ireporter.core.database import Database
from ireporter.core.exceptions import Conflict, NotFound, Unauthenticated, ValidationFailed
from ireporter.core.security import Caller, get_password_hash, verify_password
from ireporter.models.incident import Incident, MediaFile
from ireporter.models.user import User
from ireporter.schemas.user import ProfileUpdate

logger = logging.getLogger(__name__)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, email: str, password: str, name: str, role: str = "user") -> User:
    if await get_user_by_email(db, email):
        raise Conflict("User already exists with this email")

    user = User(
        email=email,
        name=name,
        hashed_password=get_password_hash(password),
        role=role,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race with another sign-up for the same address
        await db.rollback()
        raise Conflict("User already exists with this email")
    await db.refresh(user)
    logger.info("User %s registered with role %s", user.id, user.role)
    return user


async def authenticate_user(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)
    if not user or not verify_password(password, user.hashed_password):
        raise Unauthenticated("Invalid email or password")
    return user


async def list_users(db: AsyncSession) -> List[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return list(result.scalars().all())


async def update_profile(db: AsyncSession, user: User, payload: ProfileUpdate) -> User:
    changes = {k: v for k, v in payload.changes().items() if v is not None or k == "profile_picture"}
    if not changes:
        raise ValidationFailed("No fields to update")

    if "email" in changes and changes["email"] != user.email:
        result = await db.execute(select(User).where(User.email == changes["email"], User.id != user.id))
        if result.scalar_one_or_none():
            raise Conflict("Email already in use")

    for name, value in changes.items():
        setattr(user, name, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already in use")
    await db.refresh(user)
    logger.info("Profile of user %s updated: %s", user.id, sorted(changes))
    return user


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.hashed_password):
        raise ValidationFailed("Current password is incorrect")
    user.hashed_password = get_password_hash(new_password)
    await db.commit()
    logger.info("Password changed for user %s", user.id)


async def delete_user(database: Database, caller: Caller, user_id: str) -> None:
    """Remove a user with every incident and media file they own, atomically."""
    if caller.id == user_id:
        raise ValidationFailed("Cannot delete your own account")

    async with database.transaction() as session:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")

        owned = select(Incident.id).where(Incident.user_id == user_id)
        await session.execute(
            delete(MediaFile).where(MediaFile.incident_id.in_(owned)).execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Incident).where(Incident.user_id == user_id).execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(User).where(User.id == user_id).execution_options(synchronize_session=False)
        )

    logger.info("User %s deleted by admin %s", user_id, caller.id)
