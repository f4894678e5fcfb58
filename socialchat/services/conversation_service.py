import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from socialchat.models import Conversation, GroupConversation, PersonalConversation
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.participant_repository import ParticipantRepository
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.conversation import ConversationKind

from .exceptions import (
    BusinessRuleError,
    ConflictError,
    ConversationNotFoundError,
    DatabaseError,
    InvalidArgumentError,
    NotAuthorizedError,
    ServiceError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


class ConversationService:
    """Resolves and manages conversation headers and their participant sets."""

    def __init__(
        self,
        conversation_repository: ConversationRepository,
        participant_repository: ParticipantRepository,
        user_repository: UserRepository,
    ):
        self.conv_repo = conversation_repository
        self.part_repo = participant_repository
        self.user_repo = user_repository
        # The session is implicitly shared via the repositories
        self.session = conversation_repository.session

    async def _get_existing(self, conversation_id: UUID) -> Conversation:
        conversation = await self.conv_repo.get_conversation_by_id(
            conversation_id, fresh=True
        )
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation '{conversation_id}' not found."
            )
        return conversation

    @staticmethod
    def _require_group(conversation: Conversation) -> GroupConversation:
        if conversation.kind != ConversationKind.GROUP:
            raise BusinessRuleError("Not a group conversation.")
        return conversation

    @staticmethod
    def _require_admin(conversation: Conversation, acting_user_id: UUID | None):
        if acting_user_id is not None and not conversation.is_admin(acting_user_id):
            raise NotAuthorizedError("Only group admins can change this conversation.")

    async def get_conversation(
        self, conversation_id: UUID, requester_id: UUID
    ) -> Conversation:
        """Loads a conversation the requester participates in."""
        conversation = await self._get_existing(conversation_id)
        if not conversation.has_participant(requester_id):
            raise NotAuthorizedError("User is not a participant in this conversation.")
        return conversation

    async def open_personal_chat(
        self, user_id: UUID, peer_id: UUID | None
    ) -> PersonalConversation:
        """
        Returns the personal conversation between two users, creating it on
        first use. The pair is unordered, so (a, b) and (b, a) resolve to the
        same conversation, including when two callers race to create it.
        """
        if peer_id is None:
            raise InvalidArgumentError("peer_id is required.")
        if user_id == peer_id:
            raise InvalidArgumentError("Cannot open a personal chat with yourself.")

        existing = await self.conv_repo.get_personal_by_pair(user_id, peer_id)
        if existing:
            return existing

        peer = await self.user_repo.get_user_by_id(peer_id)
        if not peer:
            raise UserNotFoundError(f"User '{peer_id}' not found.")

        try:
            conversation = await self.conv_repo.create_personal_conversation(
                user_id, peer_id
            )
            await self.session.commit()
            logger.info(
                f"Created personal conversation {conversation.id} for {user_id} and {peer_id}"
            )
            return conversation
        except IntegrityError:
            # Another writer created the pair first; theirs is the canonical row
            await self.session.rollback()
            logger.info(
                f"Personal conversation for {user_id}/{peer_id} created concurrently; re-reading"
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error opening personal chat: {e}", exc_info=True)
            raise DatabaseError("Failed to open conversation due to a database error.")

        winner = await self.conv_repo.get_personal_by_pair(user_id, peer_id)
        if not winner:
            raise ConflictError("Could not resolve the personal conversation. Please retry.")
        return winner

    async def create_group(
        self,
        creator_id: UUID,
        name: str | None,
        image: str | None = None,
        participant_ids: Iterable[UUID] = (),
    ) -> GroupConversation:
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidArgumentError("Group name is required.")

        # dict keeps first-seen order while de-duplicating
        member_ids = list(dict.fromkeys([creator_id, *participant_ids]))
        existing_ids = await self.user_repo.get_existing_user_ids(member_ids)
        missing = [str(uid) for uid in member_ids if uid not in existing_ids]
        if missing:
            raise UserNotFoundError(f"Unknown users: {', '.join(missing)}.")

        try:
            conversation = await self.conv_repo.create_group_conversation(
                creator_id=creator_id,
                name=clean_name,
                image=image,
                member_ids=member_ids,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error creating group: {e}", exc_info=True)
            raise DatabaseError("Failed to create group due to a database error.")

        logger.info(
            f"Group {conversation.id} created by {creator_id} with {len(member_ids)} members"
        )
        return conversation

    async def add_participant(
        self,
        conversation_id: UUID,
        user_id: UUID,
        acting_user_id: UUID | None = None,
    ) -> tuple[GroupConversation, bool]:
        """Adds a member to a group. Returns the conversation and whether it changed."""
        conversation = self._require_group(await self._get_existing(conversation_id))
        self._require_admin(conversation, acting_user_id)

        if conversation.has_participant(user_id):
            return conversation, False

        if not await self.user_repo.get_user_by_id(user_id):
            raise UserNotFoundError(f"User '{user_id}' not found.")

        try:
            await self.part_repo.create_participant(
                user_id=user_id, conversation_id=conversation.id
            )
            await self.session.commit()
        except IntegrityError:
            # Added concurrently; the end state is what the caller asked for
            await self.session.rollback()
            return await self._get_existing(conversation_id), False
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error adding participant: {e}", exc_info=True)
            raise DatabaseError("Failed to add participant due to a database error.")

        await self.session.refresh(conversation, attribute_names=["participants"])
        return conversation, True

    async def remove_participant(
        self,
        conversation_id: UUID,
        user_id: UUID,
        acting_user_id: UUID | None = None,
    ) -> tuple[GroupConversation, bool]:
        """Removes a member from a group. Members may always remove themselves."""
        conversation = self._require_group(await self._get_existing(conversation_id))
        if acting_user_id != user_id:
            self._require_admin(conversation, acting_user_id)

        participant = await self.part_repo.get_participant_by_user_and_conversation(
            user_id=user_id, conversation_id=conversation.id
        )
        if not participant:
            return conversation, False

        try:
            await self.part_repo.remove_participant(participant)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error removing participant: {e}", exc_info=True)
            raise DatabaseError("Failed to remove participant due to a database error.")

        await self.session.refresh(conversation, attribute_names=["participants"])
        return conversation, True

    async def update_conversation(
        self,
        conversation_id: UUID,
        name: str | None = None,
        image: str | None = None,
        acting_user_id: UUID | None = None,
    ) -> GroupConversation:
        if name is None and image is None:
            raise InvalidArgumentError("Nothing to update.")
        if name is not None and not name.strip():
            raise InvalidArgumentError("Group name cannot be empty.")

        conversation = self._require_group(await self._get_existing(conversation_id))
        self._require_admin(conversation, acting_user_id)

        try:
            await self.conv_repo.update_metadata(
                conversation,
                name=name.strip() if name is not None else None,
                image=image,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error updating conversation: {e}", exc_info=True)
            raise DatabaseError("Failed to update conversation due to a database error.")
        return conversation

    async def delete_conversation(
        self, conversation_id: UUID, acting_user_id: UUID | None = None
    ) -> bool:
        """
        Deletes a conversation and every message it owns. Deleting a
        conversation that no longer exists returns False instead of raising.
        """
        conversation = await self.conv_repo.get_conversation_by_id(
            conversation_id, fresh=True
        )
        if conversation is None:
            return False

        if acting_user_id is not None:
            if not conversation.has_participant(acting_user_id):
                raise NotAuthorizedError(
                    "User is not a participant in this conversation."
                )
            if conversation.kind == ConversationKind.GROUP:
                self._require_admin(conversation, acting_user_id)

        try:
            deleted = await self.conv_repo.delete_conversation(conversation_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error deleting conversation: {e}", exc_info=True)
            raise DatabaseError("Failed to delete conversation due to a database error.")
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Unexpected error deleting conversation: {e}", exc_info=True)
            raise ServiceError("An unexpected error occurred while deleting the conversation.")

        # Bulk deletes bypass the identity map
        self.session.expunge(conversation)
        logger.info(f"Conversation {conversation_id} deleted: {deleted}")
        return deleted
