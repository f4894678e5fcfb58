"""Read-time rendering of conversation headers for a particular viewer.

Personal conversations carry no name or image of their own; both come from
the other participant's current profile every time they are rendered.
"""

from typing import Iterable, Mapping
from uuid import UUID

from socialchat.models import Conversation
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.conversation import (
    ConversationKind,
    ConversationMeta,
    GroupConversationSummary,
    LastMessageSummary,
    PersonalConversationSummary,
)
from socialchat.schemas.user import UNKNOWN_USER, DisplayInfo

DEFAULT_GROUP_NAME = "Group"


def _peer_ids(conversations: Iterable[Conversation], viewer_id: UUID) -> set[UUID]:
    return {
        peer_id
        for conversation in conversations
        if conversation.kind == ConversationKind.PERSONAL
        and (peer_id := conversation.other_participant_id(viewer_id)) is not None
    }


def _display_for(
    conversation: Conversation,
    viewer_id: UUID,
    profiles: Mapping[UUID, DisplayInfo],
) -> DisplayInfo:
    if conversation.kind == ConversationKind.GROUP:
        return DisplayInfo(
            name=conversation.name or DEFAULT_GROUP_NAME, image=conversation.image
        )
    peer_id = conversation.other_participant_id(viewer_id)
    return profiles.get(peer_id, UNKNOWN_USER)


def build_summary(
    conversation: Conversation,
    viewer_id: UUID,
    profiles: Mapping[UUID, DisplayInfo],
    unread_count: int = 0,
) -> PersonalConversationSummary | GroupConversationSummary:
    display = _display_for(conversation, viewer_id, profiles)
    last_message = conversation.last_message
    common = dict(
        id=conversation.id,
        name=display.name,
        image=display.image,
        participant_ids=conversation.participant_ids,
        last_message=LastMessageSummary(**last_message) if last_message else None,
        unread_count=unread_count,
        created_at=conversation.created_at,
    )
    if conversation.kind == ConversationKind.GROUP:
        return GroupConversationSummary(
            created_by_user_id=conversation.created_by_user_id,
            admin_ids=conversation.admin_ids,
            **common,
        )
    return PersonalConversationSummary(
        peer_id=conversation.other_participant_id(viewer_id), **common
    )


async def summarize_conversations(
    user_repo: UserRepository,
    conversations: Iterable[Conversation],
    viewer_id: UUID,
    unread_counts: Mapping[UUID, int] | None = None,
) -> list[PersonalConversationSummary | GroupConversationSummary]:
    """Renders many conversations with a single profile lookup."""
    conversations = list(conversations)
    profiles = await user_repo.get_display_infos(_peer_ids(conversations, viewer_id))
    unread_counts = unread_counts or {}
    return [
        build_summary(
            conversation,
            viewer_id,
            profiles,
            unread_count=unread_counts.get(conversation.id, 0),
        )
        for conversation in conversations
    ]


async def describe_conversation(
    user_repo: UserRepository, conversation: Conversation, viewer_id: UUID
) -> ConversationMeta:
    profiles = await user_repo.get_display_infos(_peer_ids([conversation], viewer_id))
    display = _display_for(conversation, viewer_id, profiles)
    return ConversationMeta(
        id=conversation.id,
        kind=conversation.kind,
        name=display.name,
        image=display.image,
    )
