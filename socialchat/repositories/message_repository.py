import uuid
from typing import Sequence

from sqlalchemy import and_, func, select

from socialchat.models import Message, Participant, utcnow
from socialchat.repositories.base import BaseRepository
from socialchat.schemas.message import SortOrder


class MessageRepository(BaseRepository):
    async def next_seq(self, conversation_id: uuid.UUID) -> int:
        stmt = select(func.coalesce(func.max(Message.seq), 0)).where(
            Message.conversation_id == conversation_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one()) + 1

    async def create_message(
        self,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        *,
        text: str | None = None,
        attachments: list[str] | None = None,
        reply_to_id: uuid.UUID | None = None,
    ) -> Message:
        """Creates a message at the end of the conversation and flushes it.

        Two writers racing for the same seq make the second flush raise
        IntegrityError on ``uq_message_conversation_seq``.
        """
        new_message = Message(
            id=uuid.uuid4(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            attachments=list(attachments or []),
            reply_to_id=reply_to_id,
            seq=await self.next_seq(conversation_id),
            created_at=utcnow(),
        )
        self.session.add(new_message)
        await self.session.flush()
        return new_message

    async def get_message_by_id(self, message_id: uuid.UUID) -> Message | None:
        stmt = select(Message).filter(Message.id == message_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_messages_page(
        self,
        conversation_id: uuid.UUID,
        *,
        skip: int,
        limit: int,
        sort_order: SortOrder = SortOrder.ASC,
    ) -> list[Message]:
        """One page of a conversation's history, ordered by (created_at, seq)."""
        if sort_order == SortOrder.DESC:
            ordering = (Message.created_at.desc(), Message.seq.desc())
        else:
            ordering = (Message.created_at.asc(), Message.seq.asc())
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(*ordering)
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_messages(self, conversation_id: uuid.UUID) -> int:
        stmt = select(func.count(Message.id)).where(
            Message.conversation_id == conversation_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def count_unread(
        self, user_id: uuid.UUID, conversation_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, int]:
        """Unread messages per conversation: sent by others after the user's read marker."""
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .join(
                Participant,
                and_(
                    Participant.conversation_id == Message.conversation_id,
                    Participant.user_id == user_id,
                ),
            )
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_id != user_id,
                Message.seq > Participant.last_read_seq,
            )
            .group_by(Message.conversation_id)
        )
        result = await self.session.execute(stmt)
        return {conversation_id: count for conversation_id, count in result.all()}
