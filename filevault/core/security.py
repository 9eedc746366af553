from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from jose.exceptions import JOSEError
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError

log = logging.getLogger(__name__)

ALGORITHM = "ES256"
SEED_SIZE = 32
DEFAULT_TOKEN_TTL = timedelta(hours=24)

# order of the P-256 group; private scalars must fall in [1, n-1]
_P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


class TokenError(Exception):
    pass


class TokenCreationError(TokenError):
    pass


class InvalidTokenError(TokenError):
    pass


class Claims(BaseModel):
    user_id: str
    username: str
    exp: int


def make_password_context(time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> CryptContext:
    return CryptContext(
        schemes=["argon2"],
        deprecated="auto",
        argon2__time_cost=time_cost,
        argon2__memory_cost=memory_cost,
        argon2__parallelism=parallelism,
    )


def hash_password(pwd_context: CryptContext, password: str) -> str:
    return pwd_context.hash(password)


def verify_password(pwd_context: CryptContext, plain_password: str, password_hash: str) -> bool:
    # parameters and salt are read back from the stored hash string
    try:
        return pwd_context.verify(plain_password, password_hash)
    except ValueError:
        log.warning("Stored password hash could not be parsed")
        return False


def derive_seed(secret: bytes) -> bytes:
    """
    Stretch or truncate ``secret`` to a fixed size seed.

    Short secrets are repeated until the seed is full.
    """
    if not secret:
        raise ValueError("JWT secret must not be empty")
    seed = bytearray(secret[:SEED_SIZE])
    length = len(seed)
    for i in range(length, SEED_SIZE):
        seed.append(seed[i % length])
    return bytes(seed)


@dataclass(frozen=True)
class TokenKeys:
    """PEM encoded signing keypair, built once at startup and shared read-only."""

    private_pem: str
    public_pem: str

    @classmethod
    def from_secret(cls, secret: str | bytes) -> "TokenKeys":
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        seed = derive_seed(secret)
        scalar = int.from_bytes(seed, "big") % (_P256_ORDER - 1) + 1
        private_key = ec.derive_private_key(scalar, ec.SECP256R1())

        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        return cls(private_pem=private_pem, public_pem=public_pem)


def issue_token(
    keys: TokenKeys,
    user_id: str,
    username: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta if expires_delta is not None else DEFAULT_TOKEN_TTL)
    to_encode = {
        "user_id": user_id,
        "username": username,
        "exp": int(expire.timestamp()),
    }
    try:
        return jwt.encode(to_encode, keys.private_pem, algorithm=ALGORITHM)
    except JOSEError as e:
        raise TokenCreationError("failed to sign token") from e


def verify_token(keys: TokenKeys, token: str) -> Claims:
    try:
        payload = jwt.decode(token, keys.public_pem, algorithms=[ALGORITHM])
        return Claims.model_validate(payload)
    except (JOSEError, ValidationError) as e:
        log.debug("Token rejected: %s", e)
        raise InvalidTokenError("invalid token") from None
