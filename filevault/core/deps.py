from fastapi import Depends, HTTPException, Request, status
from fastapi.security.utils import get_authorization_scheme_param
from passlib.context import CryptContext

from filevault.config import Settings
from filevault.core.security import Claims, InvalidTokenError, TokenKeys, verify_token
from filevault.services.stats import StatsCache
from filevault.services.uploads import UploadPipeline
from filevault.storage.local import LocalStorage


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_upload_pipeline(request: Request) -> UploadPipeline:
    return request.app.state.upload_pipeline


def get_token_keys(request: Request) -> TokenKeys:
    return request.app.state.token_keys


def get_pwd_context(request: Request) -> CryptContext:
    return request.app.state.pwd_context


def get_storage(request: Request) -> LocalStorage:
    return request.app.state.storage


def get_stats_cache(request: Request) -> StatsCache:
    return request.app.state.stats_cache


async def get_current_claims(
        request: Request,
        keys: TokenKeys = Depends(get_token_keys),
) -> Claims:
    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    scheme, token = get_authorization_scheme_param(authorization)
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_token(keys, token)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
