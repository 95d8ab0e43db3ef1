from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
import logging

from .crud import get_apartment_previews, get_user_summaries
from .errors import ValidationError
from .models import AsyncSessionLocal
from .models.conversations import Conversation
from .models.messages import Message
from .unread import count_unread_many

logger = logging.getLogger(__name__)


@dataclass
class ConversationSummary:
    id: object
    apartment: Optional[dict]
    other_user: Optional[dict]
    last_message: Optional[Message]
    unread_count: int
    last_message_at: Optional[datetime]
    created_at: datetime


async def _latest_messages(session, conversation_ids) -> dict:
    # created_at is unique per conversation, so the max identifies one row
    latest = (
        select(Message.conversation_id, func.max(Message.created_at).label('created_at'))
        .where(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
        .subquery()
    )
    res = await session.execute(
        select(Message).join(latest, and_(
            Message.conversation_id == latest.c.conversation_id,
            Message.created_at == latest.c.created_at,
        ))
    )
    return {m.conversation_id: m for m in res.scalars().all()}


async def list_conversations(viewer_id, page: int = 1, page_size: int = 20) -> Tuple[List[ConversationSummary], int]:
    """
    The viewer's conversations, newest first by creation time.

    Ordered by created_at rather than last_message_at: a conversation with
    fresh activity does not move up the list.
    """
    if page < 1 or page_size < 1:
        raise ValidationError('page and page_size must be positive')

    membership = or_(Conversation.user_low_id == viewer_id, Conversation.user_high_id == viewer_id)
    async with AsyncSessionLocal() as session:
        total_res = await session.execute(select(func.count()).select_from(Conversation).where(membership))
        total = total_res.scalar_one()

        res = await session.execute(
            select(Conversation)
            .where(membership)
            .order_by(Conversation.created_at.desc(), Conversation.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        conversations = list(res.scalars().all())
        if not conversations:
            return [], total
        last_messages = await _latest_messages(session, [c.id for c in conversations])

    ids = [c.id for c in conversations]
    unread = await count_unread_many(ids, viewer_id)
    profiles = await get_user_summaries(
        [c.participant_a_id for c in conversations] + [c.participant_b_id for c in conversations]
    )
    apartments = await get_apartment_previews([c.apartment_id for c in conversations])

    summaries = []
    for conversation in conversations:
        other_id = conversation.other_participant(viewer_id)
        if other_id is None:
            logger.warning(f"User {viewer_id} is not part of conversation {conversation.id}, skipping")
            continue
        last_message = last_messages.get(conversation.id)
        if last_message is None:
            logger.warning(f"Conversation {conversation.id} has no messages")
        summaries.append(ConversationSummary(
            id=conversation.id,
            apartment=apartments.get(conversation.apartment_id),
            other_user=profiles.get(other_id),
            last_message=last_message,
            unread_count=unread.get(conversation.id, 0),
            last_message_at=conversation.last_message_at,
            created_at=conversation.created_at,
        ))
    return summaries, total
