import logging

from fastapi import APIRouter, Depends, HTTPException, status
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.config import Settings
from filevault.database import get_async_session
from filevault.models.user import User
from filevault.schemas.user import AuthBody, CredentialsRequest, UserRead
from filevault.core.deps import get_app_settings, get_current_claims, get_pwd_context, get_storage, get_token_keys
from filevault.core.security import Claims, TokenCreationError, TokenKeys, issue_token
from filevault.repositories.users import (
    InvalidPassword,
    InvalidUsername,
    UserRepository,
    UsernameExists,
)
from filevault.storage.local import BlobStorageError, LocalStorage

from datetime import timedelta

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"]
)


def _auth_body(user: User, keys: TokenKeys, settings: Settings) -> AuthBody:
    try:
        token = issue_token(
            keys,
            user.id,
            user.username,
            expires_delta=timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS),
        )
    except TokenCreationError:
        log.exception("Token creation failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="Token creation error")

    return AuthBody(access_token=token, user=UserRead.model_validate(user))


@router.post("/signup", response_model=AuthBody, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: CredentialsRequest,
    session: AsyncSession = Depends(get_async_session),
    pwd_context: CryptContext = Depends(get_pwd_context),
    keys: TokenKeys = Depends(get_token_keys),
    storage: LocalStorage = Depends(get_storage),
    settings: Settings = Depends(get_app_settings),
):
    users = UserRepository(session, pwd_context)
    try:
        user = await users.create(payload.username, payload.password)
    except InvalidUsername:
        raise HTTPException(status_code=400, detail="Invalid username (must be 3-50 characters)")
    except InvalidPassword:
        raise HTTPException(status_code=400, detail="Invalid password (must be at least 6 characters)")
    except UsernameExists:
        raise HTTPException(status_code=400, detail="Username already exists")
    except SQLAlchemyError:
        log.exception("Failed to create user %r", payload.username)
        raise HTTPException(status_code=500, detail="Internal server error")

    try:
        storage.ensure_user_dir(user.id)
    except BlobStorageError:
        log.exception("Failed to create storage for user %s", user.id)
        raise HTTPException(status_code=500, detail="Failed to create user storage")

    log.info("Created user %s (%s)", user.id, user.username)
    return _auth_body(user, keys, settings)


@router.post("/login", response_model=AuthBody)
async def login(
    payload: CredentialsRequest,
    session: AsyncSession = Depends(get_async_session),
    pwd_context: CryptContext = Depends(get_pwd_context),
    keys: TokenKeys = Depends(get_token_keys),
    settings: Settings = Depends(get_app_settings),
):
    users = UserRepository(session, pwd_context)
    try:
        user = await users.find_by_username(payload.username)
    except SQLAlchemyError:
        log.exception("User lookup failed")
        raise HTTPException(status_code=500, detail="Internal server error")

    if not users.verify(user, payload.password):
        raise HTTPException(status_code=401, detail="Wrong credentials")

    return _auth_body(user, keys, settings)


@router.get("/me", response_model=Claims)
async def read_me(claims: Claims = Depends(get_current_claims)):
    return claims
