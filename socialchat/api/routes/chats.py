import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from socialchat.api.common import BaseRouter
from socialchat.auth_config import current_active_user
from socialchat.logic import chat_processing
from socialchat.models import User
from socialchat.realtime.gateway import ChatGateway
from socialchat.schemas.conversation import (
    ConversationDeleteResponse,
    ConversationSummary,
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
from socialchat.services.dependencies import (
    get_chat_gateway,
    get_conversation_service,
    get_message_service,
)
from socialchat.services.message_service import MessageService

logger = logging.getLogger(__name__)
chats_api_router = APIRouter(prefix="/chats")
router = BaseRouter(router=chats_api_router, default_tags=["chats"])


@router.post("/personal", response_model=ConversationSummary)
async def open_personal_chat(
    payload: PersonalChatOpenRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    """Returns the caller's personal chat with ``peer_id``, creating it once."""
    return await chat_processing.handle_open_personal_chat(
        payload=payload, user=user, conv_service=conv_service
    )


@router.post(
    "/groups",
    response_model=ConversationSummary,
    status_code=status.HTTP_201_CREATED,
)
async def create_group(
    payload: GroupCreateRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    return await chat_processing.handle_create_group(
        payload=payload, user=user, conv_service=conv_service
    )


@router.get("", response_model=list[ConversationSummary])
async def list_chats(
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    """The caller's conversations, most recently active first."""
    return await chat_processing.handle_list_chats(user=user, msg_service=msg_service)


@router.get("/{conversation_id}", response_model=ConversationSummary)
async def get_chat(
    conversation_id: UUID,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
    msg_service: MessageService = Depends(get_message_service),
):
    return await chat_processing.handle_get_chat(
        conversation_id=conversation_id,
        user=user,
        conv_service=conv_service,
        msg_service=msg_service,
    )


@router.patch("/{conversation_id}", response_model=ConversationSummary)
async def update_chat(
    conversation_id: UUID,
    payload: ConversationUpdateRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    return await chat_processing.handle_update_chat(
        conversation_id=conversation_id,
        payload=payload,
        user=user,
        conv_service=conv_service,
    )


@router.delete("/{conversation_id}", response_model=ConversationDeleteResponse)
async def delete_chat(
    conversation_id: UUID,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
    gateway: ChatGateway = Depends(get_chat_gateway),
):
    deleted = await chat_processing.handle_delete_chat(
        conversation_id=conversation_id,
        user=user,
        conv_service=conv_service,
        gateway=gateway,
    )
    if not deleted:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content={"deleted": False}
        )
    return ConversationDeleteResponse(deleted=True)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    conversation_id: UUID,
    payload: MessageCreateRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
    msg_service: MessageService = Depends(get_message_service),
    gateway: ChatGateway = Depends(get_chat_gateway),
):
    return await chat_processing.handle_post_message(
        conversation_id=conversation_id,
        payload=payload,
        user=user,
        conv_service=conv_service,
        msg_service=msg_service,
        gateway=gateway,
    )


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def get_messages(
    conversation_id: UUID,
    skip: int = Query(0),
    limit: int | None = Query(None),
    sort: SortOrder = Query(SortOrder.ASC),
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    """A page of history; negative ``skip``/``limit`` are treated as zero."""
    return await chat_processing.handle_get_messages(
        conversation_id=conversation_id,
        user=user,
        msg_service=msg_service,
        skip=skip,
        limit=limit,
        sort=sort,
    )


@router.patch("/{conversation_id}/seen", response_model=ReadReceipt)
async def mark_seen(
    conversation_id: UUID,
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    return await chat_processing.handle_mark_seen(
        conversation_id=conversation_id, user=user, msg_service=msg_service
    )


@router.post(
    "/{conversation_id}/participants", response_model=ParticipantChangeResponse
)
async def add_participant(
    conversation_id: UUID,
    payload: ParticipantAddRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    return await chat_processing.handle_add_participant(
        conversation_id=conversation_id,
        payload=payload,
        user=user,
        conv_service=conv_service,
    )


@router.delete(
    "/{conversation_id}/participants/{user_id}",
    response_model=ParticipantChangeResponse,
)
async def remove_participant(
    conversation_id: UUID,
    user_id: UUID,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
    gateway: ChatGateway = Depends(get_chat_gateway),
):
    return await chat_processing.handle_remove_participant(
        conversation_id=conversation_id,
        user_id=user_id,
        user=user,
        conv_service=conv_service,
        gateway=gateway,
    )
