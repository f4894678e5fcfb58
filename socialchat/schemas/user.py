import uuid
from dataclasses import dataclass

from fastapi_users import schemas


class UserRead(schemas.BaseUser[uuid.UUID]):
    name: str
    image: str | None = None


class UserCreate(schemas.BaseUserCreate):
    name: str
    image: str | None = None


class UserUpdate(schemas.BaseUserUpdate):
    name: str | None = None
    image: str | None = None


@dataclass(frozen=True)
class DisplayInfo:
    """Profile fields used to render a personal conversation."""

    name: str
    image: str | None = None


UNKNOWN_USER = DisplayInfo(name="Unknown User")
