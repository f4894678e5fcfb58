from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from socialchat.models import Participant, utcnow
from socialchat.schemas.participant import ParticipantRole

from .base import BaseRepository


class ParticipantRepository(BaseRepository):
    async def create_participant(
        self,
        user_id: UUID,
        conversation_id: UUID,
        role: ParticipantRole = ParticipantRole.MEMBER,
        *,
        joined_at: datetime | None = None,
    ) -> Participant:
        """Creates a new participant record."""
        new_participant = Participant(
            user_id=user_id,
            conversation_id=conversation_id,
            role=role,
            joined_at=joined_at or utcnow(),
        )
        self.session.add(new_participant)
        await self.session.flush()
        return new_participant

    async def get_participant_by_user_and_conversation(
        self, user_id: UUID, conversation_id: UUID
    ) -> Participant | None:
        """Retrieves a participant record by user and conversation ID."""
        stmt = select(Participant).filter(
            Participant.user_id == user_id,
            Participant.conversation_id == conversation_id,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def remove_participant(self, participant: Participant) -> None:
        await self.session.delete(participant)
        await self.session.flush()

    async def mark_read(self, participant: Participant, seq: int) -> Participant:
        """Moves the read marker forward; never backwards."""
        if seq > (participant.last_read_seq or 0):
            participant.last_read_seq = seq
            self.session.add(participant)
            await self.session.flush()
        return participant
