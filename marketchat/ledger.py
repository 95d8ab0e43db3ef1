"""
Message ledger: the append-only, time-ordered log of a conversation.

Ordering: created_at is the only ordering key and is strictly increasing
within a conversation. Appends lock the conversation row, read the newest
created_at and step one tick past it when the wall clock has not advanced,
so concurrent writers and clock skew cannot reorder or tie messages.

Read state: the only mutation a message ever sees is is_read false -> true,
done with a conditional UPDATE (`WHERE is_read = false`) so re-marking is a
no-op and read_at is written exactly once. Bulk marking takes the
conversation row lock first, the same lock appends take, so overlapping
fetches never lock message rows in conflicting orders.
"""
import os
from dataclasses import dataclass, field
from typing import List

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value
import logging

from .clock import next_after, utcnow
from .core import MESSAGES_MARKED_READ, MESSAGES_SENT
from .errors import Forbidden, NotFound, ValidationError, is_foreign_key_violation
from .models import AsyncSessionLocal
from .models.conversations import Conversation
from .models.messages import Message, MessageType

logger = logging.getLogger(__name__)

MESSAGE_MAX_LENGTH = int(os.getenv('MESSAGE_MAX_LENGTH', '1000'))


@dataclass
class MessagePage:
    conversation: Conversation
    messages: List[Message] = field(default_factory=list)  # oldest -> newest
    page: int = 1
    page_size: int = 50
    total: int = 0
    has_more: bool = False
    marked_read: int = 0


def validate_content(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError('Message content cannot be empty')
    if len(content) > MESSAGE_MAX_LENGTH:
        raise ValidationError(f'Message content cannot exceed {MESSAGE_MAX_LENGTH} characters')
    return content


def _message_type(value) -> MessageType:
    try:
        return MessageType(value)
    except ValueError:
        raise ValidationError(f'Unknown message type: {value}')


async def load_conversation(session, conversation_id, user_id, lock: bool = False) -> Conversation:
    """Fetch a conversation the user takes part in, optionally locking its row."""
    q = select(Conversation).where(Conversation.id == conversation_id)
    if lock:
        q = q.with_for_update()
    res = await session.execute(q)
    conversation = res.scalars().first()
    if conversation is None:
        raise NotFound('Conversation not found')
    if not conversation.has_participant(user_id):
        raise Forbidden('You are not a participant of this conversation')
    return conversation


async def _load_reference(session, conversation, message_id) -> Message:
    ref = await session.get(Message, message_id)
    if ref is None or ref.conversation_id != conversation.id:
        raise NotFound('Message not found in this conversation')
    return ref


async def touch_last_message_at(session, conversation_id, moment):
    """Raise last_message_at to `moment`; never moves it backward."""
    await session.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_at=case(
            (or_(Conversation.last_message_at.is_(None), Conversation.last_message_at < moment), moment),
            else_=Conversation.last_message_at,
        ))
        .execution_options(synchronize_session=False)
    )


async def append_in_session(session, conversation, sender_id, content, message_type=MessageType.TEXT) -> Message:
    """Insert a message inside the caller's transaction. The caller commits."""
    content = validate_content(content)
    message_type = _message_type(message_type)
    if not conversation.has_participant(sender_id):
        raise Forbidden('You are not a participant of this conversation')

    latest = await session.execute(
        select(func.max(Message.created_at)).where(Message.conversation_id == conversation.id)
    )
    created_at = next_after(latest.scalar())

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        is_read=False,
        read_at=None,
        created_at=created_at,
    )
    session.add(message)
    try:
        await session.flush()
    except IntegrityError as exc:
        if is_foreign_key_violation(exc):
            raise NotFound('Sender not found') from exc
        raise
    await touch_last_message_at(session, conversation.id, created_at)
    return message


async def append(conversation_id, sender_id, content, message_type=MessageType.TEXT) -> Message:
    content = validate_content(content)
    message_type = _message_type(message_type)
    async with AsyncSessionLocal() as session:
        conversation = await load_conversation(session, conversation_id, sender_id, lock=True)
        message = await append_in_session(session, conversation, sender_id, content, message_type)
        await session.commit()
    MESSAGES_SENT.labels(message_type=message_type.value).inc()
    return message


async def _mark_batch_read(session, batch, viewer_id) -> int:
    unread_ids = [m.id for m in batch if m.sender_id != viewer_id and not m.is_read]
    if not unread_ids:
        return 0
    now = utcnow()
    res = await session.execute(
        update(Message)
        .where(Message.id.in_(unread_ids), Message.is_read.is_(False))
        .values(is_read=True, read_at=now)
        .returning(Message.id)
        .execution_options(synchronize_session=False)
    )
    transitioned = set(res.scalars().all())
    for m in batch:
        if m.id in transitioned:
            set_committed_value(m, 'is_read', True)
            set_committed_value(m, 'read_at', now)
        elif m.id in unread_ids:
            # read by a concurrent request; pick up its read_at
            await session.refresh(m, attribute_names=['is_read', 'read_at'])
    return len(transitioned)


async def page(conversation_id, viewer_id, page: int = 1, page_size: int = 50,
               before=None, mark_read: bool = True) -> MessagePage:
    """
    One page of history, oldest first.

    Offset mode skips (page - 1) * page_size of the newest messages. With
    `before`, only messages strictly older than that message are returned and
    `page` is ignored. Unless `mark_read` is False, unread messages from the
    other participant in the returned batch are marked read.
    """
    if page < 1 or page_size < 1:
        raise ValidationError('page and page_size must be positive')

    async with AsyncSessionLocal() as session:
        conversation = await load_conversation(session, conversation_id, viewer_id, lock=mark_read)

        criteria = [Message.conversation_id == conversation.id]
        offset = (page - 1) * page_size
        if before is not None:
            ref = await _load_reference(session, conversation, before)
            criteria.append(Message.created_at < ref.created_at)
            offset = 0

        res = await session.execute(
            select(Message)
            .where(*criteria)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        batch = list(res.scalars().all())

        total_res = await session.execute(
            select(func.count()).select_from(Message).where(Message.conversation_id == conversation.id)
        )
        total = total_res.scalar_one()

        marked = 0
        if mark_read:
            marked = await _mark_batch_read(session, batch, viewer_id)
            if marked:
                await touch_last_message_at(session, conversation.id, utcnow())
        await session.commit()

    if marked:
        MESSAGES_MARKED_READ.inc(marked)
        logger.info(f"Marked {marked} messages read in conversation {conversation.id} for {viewer_id}")

    batch.reverse()
    if before is not None:
        has_more = len(batch) == page_size
    else:
        has_more = total > page * page_size
    return MessagePage(
        conversation=conversation,
        messages=batch,
        page=page,
        page_size=page_size,
        total=total,
        has_more=has_more,
        marked_read=marked,
    )


async def mark_conversation_read(conversation_id, viewer_id, up_to_message_id=None) -> int:
    """Acknowledge what the viewer has on screen: everything from the other side up to a message."""
    async with AsyncSessionLocal() as session:
        conversation = await load_conversation(session, conversation_id, viewer_id, lock=True)
        criteria = [
            Message.conversation_id == conversation.id,
            Message.sender_id != viewer_id,
            Message.is_read.is_(False),
        ]
        if up_to_message_id is not None:
            ref = await _load_reference(session, conversation, up_to_message_id)
            criteria.append(Message.created_at <= ref.created_at)

        now = utcnow()
        res = await session.execute(
            update(Message)
            .where(*criteria)
            .values(is_read=True, read_at=now)
            .execution_options(synchronize_session=False)
        )
        marked = res.rowcount or 0
        if marked:
            await touch_last_message_at(session, conversation.id, now)
        await session.commit()

    if marked:
        MESSAGES_MARKED_READ.inc(marked)
    return marked


async def mark_message_read(message_id, viewer_id) -> Message:
    """Mark one message read for its recipient. Already-read messages are left untouched."""
    async with AsyncSessionLocal() as session:
        message = await session.get(Message, message_id)
        if message is None:
            raise NotFound('Message not found')
        conversation = await session.get(Conversation, message.conversation_id)
        if conversation is None:
            raise NotFound('Conversation not found')
        if not conversation.has_participant(viewer_id):
            raise Forbidden('Access denied')
        if message.sender_id == viewer_id:
            raise Forbidden('You cannot mark your own messages as read')
        if message.is_read:
            return message

        now = utcnow()
        res = await session.execute(
            update(Message)
            .where(Message.id == message.id, Message.is_read.is_(False))
            .values(is_read=True, read_at=now)
            .returning(Message.id)
            .execution_options(synchronize_session=False)
        )
        transitioned = res.scalar_one_or_none() is not None
        if transitioned:
            set_committed_value(message, 'is_read', True)
            set_committed_value(message, 'read_at', now)
        else:
            await session.refresh(message, attribute_names=['is_read', 'read_at'])
        await session.commit()

    if transitioned:
        MESSAGES_MARKED_READ.inc()
    return message
