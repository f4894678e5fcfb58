import logging
import uuid
from dataclasses import dataclass

import jwt
from fastapi_users.jwt import decode_jwt

from socialchat.auth_config import TOKEN_AUDIENCE
from socialchat.core.config import settings
from socialchat.repositories.user_repository import UserRepository

from .exceptions import UnauthenticatedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: uuid.UUID
    name: str
    email: str


class IdentityService:
    """Turns an access token issued by the auth backends into an Identity."""

    def __init__(self, user_repository: UserRepository):
        self.user_repo = user_repository

    async def verify_token(self, token: str | None) -> Identity:
        if not token:
            raise UnauthenticatedError("Missing access token.")

        try:
            payload = decode_jwt(
                token,
                settings.SECRET,
                TOKEN_AUDIENCE,
                algorithms=[settings.ALGORITHM],
            )
            user_id = uuid.UUID(payload["sub"])
        except (jwt.PyJWTError, KeyError, ValueError) as e:
            logger.info(f"Rejected access token: {e}")
            raise UnauthenticatedError("Invalid or expired access token.")

        user = await self.user_repo.get_user_by_id(user_id)
        if user is None or not user.is_active:
            raise UnauthenticatedError("Unknown or inactive user.")

        return Identity(
            user_id=user.id,
            name=user.name or user.email,
            email=user.email,
        )
