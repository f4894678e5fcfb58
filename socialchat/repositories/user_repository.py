from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update

from socialchat.models import User, utcnow
from socialchat.schemas.user import DisplayInfo

from .base import BaseRepository


class UserRepository(BaseRepository):
    async def get_user_by_id(self, user_id: UUID) -> User | None:
        """Retrieves a user by their ID."""
        stmt = select(User).filter(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_existing_user_ids(self, user_ids: Iterable[UUID]) -> set[UUID]:
        """Returns the subset of ``user_ids`` that belong to existing users."""
        ids = set(user_ids)
        if not ids:
            return set()
        stmt = select(User.id).where(User.id.in_(ids))
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def get_display_infos(
        self, user_ids: Iterable[UUID]
    ) -> dict[UUID, DisplayInfo]:
        """Loads current name and image for the given users in one query.

        Always reads the users table so renamed users show their new name.
        """
        ids = set(user_ids)
        if not ids:
            return {}
        stmt = select(User.id, User.name, User.image).where(User.id.in_(ids))
        result = await self.session.execute(stmt)
        return {
            row.id: DisplayInfo(name=row.name or "Unknown User", image=row.image)
            for row in result
        }

    async def set_presence(self, user_id: UUID, *, is_online: bool) -> None:
        """Persists the online flag; going offline also stamps last_seen_at."""
        values = {"is_online": is_online}
        if not is_online:
            values["last_seen_at"] = utcnow()
        stmt = update(User).where(User.id == user_id).values(**values)
        await self.session.execute(stmt)
