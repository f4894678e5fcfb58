"""Request handling for the chat API, decoupled from the route definitions.

Each handler delegates to the services, renders the result for the viewer and
lets service errors propagate to the route's error mapping.
"""

import logging
from uuid import UUID

from socialchat.models import User
from socialchat.realtime.gateway import ChatGateway
from socialchat.schemas.conversation import (
    ConversationUpdateRequest,
    GroupCreateRequest,
    PersonalChatOpenRequest,
)
from socialchat.schemas.message import (
    MessageCreateRequest,
    MessagePage,
    MessageResponse,
    ReadReceipt,
    SortOrder,
)
from socialchat.schemas.participant import ParticipantAddRequest, ParticipantChangeResponse
from socialchat.services.conversation_service import ConversationService
from socialchat.services.enrichment import build_summary, summarize_conversations
from socialchat.services.exceptions import ServiceError
from socialchat.services.message_service import MessageService

logger = logging.getLogger(__name__)


async def _render(conv_service: ConversationService, conversation, viewer_id: UUID):
    summaries = await summarize_conversations(
        conv_service.user_repo, [conversation], viewer_id
    )
    return summaries[0]


async def handle_open_personal_chat(
    payload: PersonalChatOpenRequest,
    user: User,
    conv_service: ConversationService,
):
    conversation = await conv_service.open_personal_chat(
        user_id=user.id, peer_id=payload.peer_id
    )
    return await _render(conv_service, conversation, user.id)


async def handle_create_group(
    payload: GroupCreateRequest,
    user: User,
    conv_service: ConversationService,
):
    conversation = await conv_service.create_group(
        creator_id=user.id,
        name=payload.name,
        image=payload.image,
        participant_ids=payload.participant_ids,
    )
    # A fresh group has no peers to look up and nothing unread
    return build_summary(conversation, user.id, profiles={})


async def handle_list_chats(user: User, msg_service: MessageService):
    logger.debug(f"Handler: listing conversations for user {user.id}")
    return await msg_service.get_user_conversations(user.id)


async def handle_get_chat(
    conversation_id: UUID,
    user: User,
    conv_service: ConversationService,
    msg_service: MessageService,
):
    conversation = await conv_service.get_conversation(conversation_id, user.id)
    unread = await msg_service.msg_repo.count_unread(user.id, [conversation.id])
    summaries = await summarize_conversations(
        conv_service.user_repo, [conversation], user.id, unread_counts=unread
    )
    return summaries[0]


async def handle_update_chat(
    conversation_id: UUID,
    payload: ConversationUpdateRequest,
    user: User,
    conv_service: ConversationService,
):
    conversation = await conv_service.update_conversation(
        conversation_id,
        name=payload.name,
        image=payload.image,
        acting_user_id=user.id,
    )
    return await _render(conv_service, conversation, user.id)


async def handle_post_message(
    conversation_id: UUID,
    payload: MessageCreateRequest,
    user: User,
    conv_service: ConversationService,
    msg_service: MessageService,
    gateway: ChatGateway,
) -> MessageResponse:
    """Stores a message posted over HTTP and relays it to connected clients."""
    async with gateway.manager.lock_for(conversation_id):
        response = await msg_service.add_message(
            conversation_id=conversation_id,
            sender_id=user.id,
            text=payload.text,
            attachments=payload.attachments,
            reply_to_id=payload.reply_to_id,
        )
        conversation = await conv_service.get_conversation(conversation_id, user.id)
        try:
            await gateway.publish_message(
                response, conversation.kind, conversation.participant_ids
            )
        except Exception as e:
            # The message is stored; live delivery is best effort
            logger.error(
                f"Handler: failed to relay message {response.id}: {e}", exc_info=True
            )
    return response


async def handle_get_messages(
    conversation_id: UUID,
    user: User,
    msg_service: MessageService,
    skip: int = 0,
    limit: int | None = None,
    sort: SortOrder = SortOrder.ASC,
) -> MessagePage:
    return await msg_service.get_messages(
        conversation_id, user.id, skip=skip, limit=limit, sort_order=sort
    )


async def handle_mark_seen(
    conversation_id: UUID, user: User, msg_service: MessageService
) -> ReadReceipt:
    return await msg_service.mark_seen(conversation_id, user.id)


async def handle_add_participant(
    conversation_id: UUID,
    payload: ParticipantAddRequest,
    user: User,
    conv_service: ConversationService,
) -> ParticipantChangeResponse:
    conversation, changed = await conv_service.add_participant(
        conversation_id, payload.user_id, acting_user_id=user.id
    )
    logger.info(
        f"Handler: add {payload.user_id} to {conversation_id} by {user.id} (changed={changed})"
    )
    return ParticipantChangeResponse(
        conversation_id=conversation.id,
        user_id=payload.user_id,
        participant_ids=conversation.participant_ids,
        changed=changed,
    )


async def handle_remove_participant(
    conversation_id: UUID,
    user_id: UUID,
    user: User,
    conv_service: ConversationService,
    gateway: ChatGateway,
) -> ParticipantChangeResponse:
    conversation, changed = await conv_service.remove_participant(
        conversation_id, user_id, acting_user_id=user.id
    )
    if changed:
        await gateway.evict_participant(conversation_id, user_id)
    return ParticipantChangeResponse(
        conversation_id=conversation.id,
        user_id=user_id,
        participant_ids=conversation.participant_ids,
        changed=changed,
    )


async def handle_delete_chat(
    conversation_id: UUID,
    user: User,
    conv_service: ConversationService,
    gateway: ChatGateway,
) -> bool:
    try:
        deleted = await conv_service.delete_conversation(
            conversation_id, acting_user_id=user.id
        )
    except ServiceError as e:
        logger.info(f"Handler: delete of {conversation_id} refused: {e}")
        raise
    if deleted:
        gateway.forget_conversation(conversation_id)
    return deleted
