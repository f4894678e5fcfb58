from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from socialchat.models import (
    Conversation,
    GroupConversation,
    Message,
    Participant,
    PersonalConversation,
    make_pair_key,
    utcnow,
)
from socialchat.schemas.participant import ParticipantRole

from .base import BaseRepository


class ConversationRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session)

    async def get_conversation_by_id(
        self, conversation_id: UUID, *, fresh: bool = False
    ) -> Conversation | None:
        """Retrieves a conversation (participants are eager loaded).

        ``fresh`` re-reads rows already present in the session so that
        participant changes made by other sessions are visible.
        """
        stmt = select(Conversation).filter(Conversation.id == conversation_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_personal_by_pair(
        self, user_a: UUID, user_b: UUID
    ) -> PersonalConversation | None:
        stmt = (
            select(PersonalConversation)
            .filter(PersonalConversation.pair_key == make_pair_key(user_a, user_b))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_personal_conversation(
        self, user_a: UUID, user_b: UUID
    ) -> PersonalConversation:
        """Adds a personal conversation and both participants; flushes, no commit.

        Raises IntegrityError on flush if the pair already has a conversation.
        """
        now = utcnow()
        conversation = PersonalConversation(
            pair_key=make_pair_key(user_a, user_b),
            created_at=now,
        )
        for user_id in (user_a, user_b):
            conversation.participants.append(
                Participant(
                    user_id=user_id,
                    role=ParticipantRole.MEMBER,
                    joined_at=now,
                )
            )
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def create_group_conversation(
        self,
        creator_id: UUID,
        name: str,
        image: str | None,
        member_ids: Iterable[UUID],
    ) -> GroupConversation:
        """Adds a group conversation with the creator as its admin; flushes, no commit."""
        now = utcnow()
        conversation = GroupConversation(
            name=name,
            image=image,
            created_by_user_id=creator_id,
            created_at=now,
        )
        conversation.participants.append(
            Participant(user_id=creator_id, role=ParticipantRole.ADMIN, joined_at=now)
        )
        for user_id in member_ids:
            if user_id == creator_id:
                continue
            conversation.participants.append(
                Participant(user_id=user_id, role=ParticipantRole.MEMBER, joined_at=now)
            )
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def list_user_conversations(self, user_id: UUID) -> Sequence[Conversation]:
        """Conversations the user participates in, most recent activity first."""
        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        stmt = (
            select(Conversation)
            .join(Participant, Conversation.id == Participant.conversation_id)
            .filter(Participant.user_id == user_id)
            .order_by(activity.desc(), Conversation.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().unique().all()

    async def update_metadata(
        self,
        conversation: GroupConversation,
        *,
        name: str | None = None,
        image: str | None = None,
    ) -> GroupConversation:
        if name is not None:
            conversation.name = name
        if image is not None:
            conversation.image = image
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def update_last_message(self, message) -> bool:
        """Compare-and-swap of the lastMessage summary.

        ``message`` is a Message row or a MessageResponse snapshot of one.

        Only writes when ``message`` is newer (greater seq) than the stored
        summary. Returns whether the row was updated.
        """
        stmt = (
            update(Conversation)
            .where(
                Conversation.id == message.conversation_id,
                or_(
                    Conversation.last_message_seq.is_(None),
                    Conversation.last_message_seq < message.seq,
                ),
            )
            .values(
                last_message_id=message.id,
                last_message_sender_id=message.sender_id,
                last_message_text=message.text,
                last_message_at=message.created_at,
                last_message_seq=message.seq,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def delete_conversation(self, conversation_id: UUID) -> bool:
        """Deletes messages, participants and then the header row.

        Returns whether a conversation row was actually removed.
        """
        await self.session.execute(
            delete(Message)
            .where(Message.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(Participant)
            .where(Participant.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            delete(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
