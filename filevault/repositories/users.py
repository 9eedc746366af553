import logging

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.core.security import hash_password, verify_password
from filevault.models.user import User

log = logging.getLogger(__name__)

USERNAME_MIN = 3
USERNAME_MAX = 50
PASSWORD_MIN = 6


class UserError(Exception):
    pass


class InvalidUsername(UserError):
    pass


class InvalidPassword(UserError):
    pass


class UsernameExists(UserError):
    pass


class UserRepository:
    def __init__(self, session: AsyncSession, pwd_context: CryptContext):
        self.session = session
        self.pwd_context = pwd_context

    async def create(self, username: str, password: str) -> User:
        if not USERNAME_MIN <= len(username) <= USERNAME_MAX:
            raise InvalidUsername(username)
        if len(password) < PASSWORD_MIN:
            raise InvalidPassword()

        user = User(
            username=username,
            password_hash=hash_password(self.pwd_context, password),
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise UsernameExists(username) from None

        await self.session.refresh(user)
        return user

    async def find_by_username(self, username: str) -> User | None:
        result = await self.session.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def find_by_id(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id)

    def verify(self, user: User | None, password: str) -> bool:
        if user is None:
            # burn the same hashing effort as a real check
            self.pwd_context.dummy_verify()
            return False
        return verify_password(self.pwd_context, password, user.password_hash)
