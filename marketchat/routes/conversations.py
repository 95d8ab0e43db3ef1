import math
import os
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..auth import get_current_user_id
from ..cache import rate_limit_reached, record_action
from ..crud import get_apartment_previews, get_user_summaries
from ..directory import list_conversations
from ..kafka_producer import publish_message_event
from ..ledger import append, mark_conversation_read, page as message_page
from ..resolver import start_or_get
from ..schemas.conversations import (
    ConversationListOut,
    ConversationOut,
    StartConversationIn,
    StartConversationOut,
)
from ..schemas.messages import MarkReadIn, MarkReadOut, MessageIn, MessageOut, MessagePageOut, UnreadCountOut
from ..schemas.users import UserSummaryOut
from ..unread import count_unread

router = APIRouter()

MESSAGE_RATE_LIMIT = int(os.getenv('MESSAGE_RATE_LIMIT', '100'))


def message_out(message, profiles: dict = None) -> MessageOut:
    out = MessageOut.model_validate(message)
    if profiles and message.sender_id in profiles:
        out.sender = UserSummaryOut(**profiles[message.sender_id])
    return out


async def enforce_send_rate(user_id):
    # max MESSAGE_RATE_LIMIT accepted messages per hour; rejected requests are not counted
    if await rate_limit_reached(user_id, "send_message", limit=MESSAGE_RATE_LIMIT):
        raise HTTPException(429, "Rate limit exceeded. Too many messages.")


async def count_send(user_id):
    await record_action(user_id, "send_message", window=3600)


async def announce_message(message):
    await publish_message_event('message_created', message.conversation_id, {
        'message_id': str(message.id),
        'sender_id': str(message.sender_id),
        'message_type': message.message_type.value,
    })


@router.post('', response_model=StartConversationOut, status_code=201)
async def start_conversation(payload: StartConversationIn, current_user_id: uuid.UUID = Depends(get_current_user_id)):
    await enforce_send_rate(current_user_id)

    conversation, message, created = await start_or_get(payload.apartment_id, current_user_id, payload.message)
    await count_send(current_user_id)

    if created:
        await publish_message_event('conversation_started', conversation.id, {
            'apartment_id': str(conversation.apartment_id),
            'owner_id': str(conversation.participant_a_id),
            'initiator_id': str(conversation.participant_b_id),
        })
    await announce_message(message)

    profiles = await get_user_summaries([current_user_id])
    return {
        'conversation': ConversationOut.model_validate(conversation),
        'message': message_out(message, profiles),
        'created': created,
    }


@router.get('', response_model=ConversationListOut)
async def get_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
):
    summaries, total = await list_conversations(current_user_id, page=page, page_size=limit)
    items = []
    for s in summaries:
        items.append({
            'id': s.id,
            'apartment': s.apartment,
            'other_user': s.other_user,
            'last_message': message_out(s.last_message) if s.last_message is not None else None,
            'unread_count': s.unread_count,
            'last_message_at': s.last_message_at,
            'created_at': s.created_at,
        })
    return {
        'items': items,
        'meta': {'page': page, 'limit': limit, 'total': total, 'total_pages': math.ceil(total / limit)},
    }


@router.get('/{conversation_id}/messages', response_model=MessagePageOut)
async def get_conversation_messages(
    conversation_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    before: Optional[uuid.UUID] = Query(None, description='Only messages older than this message'),
    mark_read: bool = Query(True, description='Mark the other side\'s messages in this page as read'),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
):
    result = await message_page(
        conversation_id, current_user_id, page=page, page_size=limit, before=before, mark_read=mark_read
    )
    conversation = result.conversation
    if result.marked_read:
        await publish_message_event('messages_read', conversation.id, {
            'reader_id': str(current_user_id),
            'count': result.marked_read,
        })

    profiles = await get_user_summaries([conversation.participant_a_id, conversation.participant_b_id])
    apartments = await get_apartment_previews([conversation.apartment_id])
    return {
        'conversation': {
            'id': conversation.id,
            'apartment': apartments.get(conversation.apartment_id),
            'other_user': profiles.get(conversation.other_participant(current_user_id)),
        },
        'items': [message_out(m, profiles) for m in result.messages],
        'meta': {
            'page': result.page,
            'limit': result.page_size,
            'total': result.total,
            'total_pages': math.ceil(result.total / result.page_size),
            'has_more': result.has_more,
        },
    }


@router.post('/{conversation_id}/messages', response_model=MessageOut, status_code=201)
async def send_message(
    conversation_id: uuid.UUID,
    payload: MessageIn,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
):
    await enforce_send_rate(current_user_id)
    message = await append(conversation_id, current_user_id, payload.content, payload.message_type)
    await count_send(current_user_id)
    await announce_message(message)
    profiles = await get_user_summaries([current_user_id])
    return message_out(message, profiles)


@router.post('/{conversation_id}/read', response_model=MarkReadOut)
async def read_conversation(
    conversation_id: uuid.UUID,
    payload: Optional[MarkReadIn] = None,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
):
    up_to = payload.up_to_message_id if payload else None
    marked = await mark_conversation_read(conversation_id, current_user_id, up_to_message_id=up_to)
    if marked:
        await publish_message_event('messages_read', conversation_id, {
            'reader_id': str(current_user_id),
            'count': marked,
        })
    return {'marked': marked}


@router.get('/{conversation_id}/unread-count', response_model=UnreadCountOut)
async def get_unread_count(conversation_id: uuid.UUID, current_user_id: uuid.UUID = Depends(get_current_user_id)):
    return {'unread_count': await count_unread(conversation_id, current_user_id)}
