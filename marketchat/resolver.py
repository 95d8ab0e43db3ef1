"""
Conversation resolver: first contact between an inquirer and a listing's owner.

There is one conversation per (apartment, unordered user pair). The pair is
stored twice: with fixed roles (A = owner, B = initiator) and sorted into
user_low_id / user_high_id, which carry the UNIQUE constraint and are the
only columns used for lookups.
"""
import asyncio
import uuid
import weakref

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
import logging

from .clock import utcnow
from .core import CONVERSATIONS_CREATED, MESSAGES_SENT
from .crud import get_apartment
from .errors import InvalidOperation, NotFound, Unavailable, is_foreign_key_violation
from .ledger import append_in_session, validate_content
from .models import AsyncSessionLocal
from .models.conversations import PAIR_CONSTRAINT, Conversation, canonical_pair
from .models.messages import MessageType

logger = logging.getLogger(__name__)

# Serializes first contact for a pair within this worker; the unique
# constraint covers racing workers.
_pair_locks = weakref.WeakValueDictionary()


def _pair_lock(key) -> asyncio.Lock:
    lock = _pair_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _pair_locks[key] = lock
    return lock


def _is_pair_conflict(exc: IntegrityError) -> bool:
    # postgres names the constraint, sqlite lists its columns
    message = str(exc.orig)
    return PAIR_CONSTRAINT in message or 'conversations.user_low_id' in message


async def _find_conversation(session, apartment_id, low, high, lock: bool = False):
    q = select(Conversation).where(
        Conversation.apartment_id == apartment_id,
        Conversation.user_low_id == low,
        Conversation.user_high_id == high,
    )
    if lock:
        q = q.with_for_update()
    res = await session.execute(q)
    return res.scalars().first()


async def _create_or_get(session, apartment_id, owner_id, initiator_id):
    """Return (conversation, created). Retries once as a plain lookup if another writer won the insert."""
    low, high = canonical_pair(owner_id, initiator_id)
    existing = await _find_conversation(session, apartment_id, low, high, lock=True)
    if existing is not None:
        return existing, False

    now = utcnow()
    conversation = Conversation(
        id=uuid.uuid4(),
        apartment_id=apartment_id,
        participant_a_id=owner_id,
        participant_b_id=initiator_id,
        user_low_id=low,
        user_high_id=high,
        last_message_at=now,
        created_at=now,
    )
    session.add(conversation)
    try:
        await session.flush()
        return conversation, True
    except IntegrityError as exc:
        await session.rollback()
        if is_foreign_key_violation(exc):
            raise NotFound('User not found') from exc
        if not _is_pair_conflict(exc):
            raise
        logger.info(f"Conversation for apartment {apartment_id} and pair {low}/{high} created concurrently, reusing it")

    existing = await _find_conversation(session, apartment_id, low, high, lock=True)
    if existing is None:
        raise Unavailable('Conversation could not be created, try again')
    return existing, False


async def start_or_get(apartment_id, initiator_id, content):
    """
    Open (or reuse) the conversation about a listing and post the initiator's message.

    Returns (conversation, message, created). The conversation and its first
    message are committed together.
    """
    content = validate_content(content)
    apartment = await get_apartment(apartment_id)
    if apartment is None:
        raise NotFound('Apartment not found')
    owner_id = apartment.lister_id
    if owner_id == initiator_id:
        raise InvalidOperation('You cannot start a conversation about your own listing')

    low, high = canonical_pair(owner_id, initiator_id)
    async with _pair_lock((apartment.id, low, high)):
        async with AsyncSessionLocal() as session:
            conversation, created = await _create_or_get(session, apartment.id, owner_id, initiator_id)
            message = await append_in_session(session, conversation, initiator_id, content, MessageType.TEXT)
            await session.commit()
            await session.refresh(conversation)

    if created:
        CONVERSATIONS_CREATED.inc()
        logger.info(f"Conversation {conversation.id} started on apartment {apartment.id} by {initiator_id}")
    MESSAGES_SENT.labels(message_type=MessageType.TEXT.value).inc()
    return conversation, message, created
