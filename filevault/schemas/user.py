from datetime import datetime

from pydantic import BaseModel
from pydantic.config import ConfigDict


class CredentialsRequest(BaseModel):
    username: str
    password: str


class UserRead(BaseModel):
    id: str
    username: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuthBody(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    user: UserRead
