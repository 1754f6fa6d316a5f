from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from ireporter.core.config import Settings
from ireporter.core.database import get_db
from ireporter.core.exceptions import Forbidden
from ireporter.core.security import create_user_token, get_current_user, get_settings
from ireporter.models.user import User
from ireporter.schemas.user import AuthResponse, SignInRequest, SignUpRequest, Token, UserOut
from ireporter.services import users as users_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(
    user_in: SignUpRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if user_in.role == "admin" and not settings.ALLOW_ADMIN_SIGNUP:
        raise Forbidden("Admin accounts cannot be self-registered")

    user = await users_service.create_user(db, user_in.email, user_in.password, user_in.name, user_in.role)
    return AuthResponse(
        message="User created successfully",
        user=UserOut.model_validate(user),
        token=create_user_token(user, settings),
    )


@router.post("/signin", response_model=AuthResponse)
async def sign_in(
    credentials: SignInRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = await users_service.authenticate_user(db, credentials.email, credentials.password)
    return AuthResponse(
        message="Sign in successful",
        user=UserOut.model_validate(user),
        token=create_user_token(user, settings),
    )


@router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    # OAuth2PasswordRequestForm uses 'username' field, but we treat it as email
    user = await users_service.authenticate_user(db, form_data.username, form_data.password)
    return {"access_token": create_user_token(user, settings), "token_type": "bearer"}


@router.get("/profile", response_model=UserOut)
async def get_profile(current_user: User = Depends(get_current_user)):
    """Get current user profile information"""
    return current_user
