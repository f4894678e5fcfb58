import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from socialchat.repositories.user_repository import UserRepository

from .exceptions import DatabaseError

logger = logging.getLogger(__name__)


class PresenceService:
    """Mirrors in-memory presence transitions onto the users table."""

    def __init__(self, user_repository: UserRepository):
        self.user_repo = user_repository
        self.session = user_repository.session

    async def _set_presence(self, user_id: UUID, is_online: bool) -> None:
        try:
            await self.user_repo.set_presence(user_id, is_online=is_online)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning(f"Database error updating presence for user {user_id}: {e}")
            raise DatabaseError(f"Failed to update presence for user {user_id}")

    async def mark_online(self, user_id: UUID) -> None:
        await self._set_presence(user_id, True)

    async def mark_offline(self, user_id: UUID) -> None:
        """Set the user offline and stamp last_seen_at."""
        await self._set_presence(user_id, False)
