import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from socialchat.core.config import settings
from socialchat.models import Conversation
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository
from socialchat.repositories.participant_repository import ParticipantRepository
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.conversation import ConversationKind
from socialchat.schemas.message import MessagePage, MessageResponse, ReadReceipt, SortOrder

from .enrichment import describe_conversation, summarize_conversations
from .exceptions import (
    BusinessRuleError,
    ConflictError,
    ConversationNotFoundError,
    DatabaseError,
    InvalidArgumentError,
    NotAuthorizedError,
)

logger = logging.getLogger(__name__)

# Attempts at claiming the next seq when concurrent senders collide
SEQ_CLAIM_ATTEMPTS = 3


def clamp_non_negative(value, default: int) -> int:
    """Coerces paging input to a non-negative int, falling back to ``default``."""
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(0, number)


class MessageService:
    """Appends messages, keeps the lastMessage summary current and serves history."""

    def __init__(
        self,
        conversation_repository: ConversationRepository,
        participant_repository: ParticipantRepository,
        message_repository: MessageRepository,
        user_repository: UserRepository,
    ):
        self.conv_repo = conversation_repository
        self.part_repo = participant_repository
        self.msg_repo = message_repository
        self.user_repo = user_repository
        self.session = conversation_repository.session

    async def _get_for_participant(
        self, conversation_id: UUID, user_id: UUID
    ) -> Conversation:
        conversation = await self.conv_repo.get_conversation_by_id(
            conversation_id, fresh=True
        )
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation '{conversation_id}' not found."
            )
        if not conversation.has_participant(user_id):
            raise NotAuthorizedError("User is not a participant in this conversation.")
        return conversation

    async def add_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        text: str | None = None,
        attachments: list[str] | None = None,
        reply_to_id: UUID | None = None,
        expected_kind: ConversationKind | None = None,
    ) -> MessageResponse:
        """
        Persists a message from a current participant and then moves the
        conversation's lastMessage summary forward.

        The message commit is the source of truth. The summary is written in a
        second transaction; failures there are logged and retried but never
        undo the message.
        """
        stored = await self.append_message(
            conversation_id,
            sender_id,
            text=text,
            attachments=attachments,
            reply_to_id=reply_to_id,
            expected_kind=expected_kind,
        )
        await self.advance_last_message(stored)
        return stored

    async def append_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        text: str | None = None,
        attachments: list[str] | None = None,
        reply_to_id: UUID | None = None,
        expected_kind: ConversationKind | None = None,
    ) -> MessageResponse:
        """Validates and commits one message; the summary is left untouched."""
        conversation = await self._get_for_participant(conversation_id, sender_id)
        if expected_kind is not None and conversation.kind != expected_kind:
            raise BusinessRuleError(
                f"Conversation '{conversation_id}' is not a {expected_kind.value} conversation."
            )

        clean_text = text.strip() if text else None
        clean_attachments = [a for a in (attachments or []) if a and a.strip()]
        if not clean_text and not clean_attachments:
            raise InvalidArgumentError("A message needs text or at least one attachment.")

        if reply_to_id is not None:
            replied = await self.msg_repo.get_message_by_id(reply_to_id)
            if not replied or replied.conversation_id != conversation.id:
                raise InvalidArgumentError(
                    "reply_to_id must reference a message in the same conversation."
                )

        # A rollback expires loaded rows, so keep the id as a plain value
        conv_id = conversation.id
        message = None
        for attempt in range(1, SEQ_CLAIM_ATTEMPTS + 1):
            try:
                message = await self.msg_repo.create_message(
                    conversation_id=conv_id,
                    sender_id=sender_id,
                    text=clean_text,
                    attachments=clean_attachments,
                    reply_to_id=reply_to_id,
                )
                await self.session.commit()
                break
            except IntegrityError as e:
                await self.session.rollback()
                logger.warning(
                    f"Seq collision in conversation {conversation_id} (attempt {attempt}): {e}"
                )
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(f"Database error adding message: {e}", exc_info=True)
                raise DatabaseError("Failed to add message due to a database error.")

        if message is None:
            raise ConflictError("Too many concurrent messages. Please retry.")

        return MessageResponse.model_validate(message)

    async def advance_last_message(self, message: MessageResponse) -> bool:
        retries = max(1, settings.LAST_MESSAGE_UPDATE_RETRIES)
        for attempt in range(1, retries + 1):
            try:
                updated = await self.conv_repo.update_last_message(message)
                await self.session.commit()
                if not updated:
                    logger.debug(
                        f"lastMessage of {message.conversation_id} already newer than seq {message.seq}"
                    )
                return updated
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.warning(
                    f"lastMessage update for {message.conversation_id} failed "
                    f"(attempt {attempt}/{retries}): {e}"
                )
        logger.error(
            f"Giving up on lastMessage update for conversation {message.conversation_id}; "
            f"message {message.id} is persisted"
        )
        return False

    async def get_messages(
        self,
        conversation_id: UUID,
        requester_id: UUID,
        skip=0,
        limit=None,
        sort_order: SortOrder | str = SortOrder.ASC,
    ) -> MessagePage:
        conversation = await self._get_for_participant(conversation_id, requester_id)

        skip = clamp_non_negative(skip, 0)
        limit = min(
            clamp_non_negative(limit, settings.DEFAULT_PAGE_SIZE), settings.MAX_PAGE_SIZE
        )
        try:
            sort_order = SortOrder(sort_order)
        except ValueError:
            raise InvalidArgumentError("sort must be 'asc' or 'desc'.")

        try:
            total = await self.msg_repo.count_messages(conversation.id)
            messages = []
            if skip < total and limit > 0:
                messages = await self.msg_repo.get_messages_page(
                    conversation.id, skip=skip, limit=limit, sort_order=sort_order
                )
            meta = await describe_conversation(self.user_repo, conversation, requester_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error loading messages: {e}", exc_info=True)
            raise DatabaseError("Failed to load messages due to a database error.")

        return MessagePage(
            conversation=meta,
            messages=[MessageResponse.model_validate(m) for m in messages],
            total=total,
            skip=skip,
            limit=limit,
        )

    async def get_user_conversations(self, user_id: UUID):
        """All of a user's conversations, most recently active first."""
        try:
            conversations = await self.conv_repo.list_user_conversations(user_id)
            unread = await self.msg_repo.count_unread(
                user_id, [c.id for c in conversations]
            )
            return await summarize_conversations(
                self.user_repo, conversations, user_id, unread_counts=unread
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error listing conversations: {e}", exc_info=True)
            raise DatabaseError("Failed to list conversations due to a database error.")

    async def mark_seen(self, conversation_id: UUID, user_id: UUID) -> ReadReceipt:
        """Marks every message currently in the conversation as read by the user."""
        conversation = await self._get_for_participant(conversation_id, user_id)
        participant = await self.part_repo.get_participant_by_user_and_conversation(
            user_id=user_id, conversation_id=conversation.id
        )
        try:
            latest_seq = await self.msg_repo.next_seq(conversation.id) - 1
            await self.part_repo.mark_read(participant, latest_seq)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error marking messages seen: {e}", exc_info=True)
            raise DatabaseError("Failed to mark messages as seen due to a database error.")

        return ReadReceipt(
            conversation_id=conversation.id,
            user_id=user_id,
            last_read_seq=participant.last_read_seq,
        )
