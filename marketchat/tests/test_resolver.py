import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketchat import resolver
from marketchat.errors import InvalidOperation, NotFound, Unavailable, ValidationError
from marketchat.models import AsyncSessionLocal
from marketchat.models.conversations import Conversation, canonical_pair
from marketchat.models.messages import Message, MessageType


async def count_rows(model):
    async with AsyncSessionLocal() as session:
        res = await session.execute(select(func.count()).select_from(model))
        return res.scalar_one()


@pytest.mark.asyncio
async def test_first_contact_creates_conversation_with_fixed_roles(world):
    conversation, message, created = await resolver.start_or_get(world.apartment.id, world.renter.id, 'Is it still available?')

    assert created is True
    assert conversation.apartment_id == world.apartment.id
    assert conversation.participant_a_id == world.owner.id
    assert conversation.participant_b_id == world.renter.id
    assert (conversation.user_low_id, conversation.user_high_id) == canonical_pair(world.owner.id, world.renter.id)
    assert message.sender_id == world.renter.id
    assert message.message_type == MessageType.TEXT
    assert message.is_read is False and message.read_at is None
    assert conversation.last_message_at is not None


@pytest.mark.asyncio
async def test_repeat_contact_reuses_conversation(world):
    first, _, created_first = await resolver.start_or_get(world.apartment.id, world.renter.id, 'hello')
    second, _, created_second = await resolver.start_or_get(world.apartment.id, world.renter.id, 'hello again')
    third, _, _ = await resolver.start_or_get(world.apartment.id, world.renter.id, 'anyone?')

    assert created_first is True
    assert created_second is False
    assert first.id == second.id == third.id
    assert await count_rows(Conversation) == 1
    assert await count_rows(Message) == 3


@pytest.mark.asyncio
async def test_conversations_are_scoped_per_apartment_and_pair(world):
    a, _, _ = await resolver.start_or_get(world.apartment.id, world.renter.id, 'hi')
    b, _, _ = await resolver.start_or_get(world.second_apartment.id, world.renter.id, 'hi')
    c, _, _ = await resolver.start_or_get(world.apartment.id, world.other_renter.id, 'hi')

    assert len({a.id, b.id, c.id}) == 3


@pytest.mark.asyncio
async def test_concurrent_first_contact_yields_one_conversation(world):
    results = await asyncio.gather(*[
        resolver.start_or_get(world.apartment.id, world.renter.id, f'message {i}') for i in range(5)
    ])

    assert len({conversation.id for conversation, _, _ in results}) == 1
    assert sum(1 for _, _, created in results if created) == 1
    assert await count_rows(Conversation) == 1
    assert await count_rows(Message) == 5


@pytest.mark.asyncio
async def test_owner_cannot_contact_own_listing(world):
    with pytest.raises(InvalidOperation):
        await resolver.start_or_get(world.apartment.id, world.owner.id, 'note to self')
    assert await count_rows(Conversation) == 0
    assert await count_rows(Message) == 0


@pytest.mark.asyncio
async def test_unknown_apartment(world):
    with pytest.raises(NotFound):
        await resolver.start_or_get(uuid.uuid4(), world.renter.id, 'hello')


@pytest.mark.asyncio
@pytest.mark.parametrize('content', ['', '   ', 'x' * 1001])
async def test_invalid_first_message(world, content):
    with pytest.raises(ValidationError):
        await resolver.start_or_get(world.apartment.id, world.renter.id, content)
    assert await count_rows(Conversation) == 0


@pytest.mark.asyncio
async def test_lost_insert_race_falls_back_to_existing(world, monkeypatch):
    existing, _, _ = await resolver.start_or_get(world.apartment.id, world.renter.id, 'first')

    real_find = resolver._find_conversation
    calls = []

    async def miss_once(session, *args, **kwargs):
        # the first lookup behaves as if another worker had not committed yet
        calls.append(args)
        if len(calls) == 1:
            return None
        return await real_find(session, *args, **kwargs)

    monkeypatch.setattr(resolver, '_find_conversation', miss_once)
    conversation, message, created = await resolver.start_or_get(world.apartment.id, world.renter.id, 'second')

    assert len(calls) == 2
    assert created is False
    assert conversation.id == existing.id
    assert message.conversation_id == existing.id
    assert await count_rows(Conversation) == 1
    assert await count_rows(Message) == 2


@pytest.mark.asyncio
async def test_unresolvable_race_is_unavailable(world, monkeypatch):
    await resolver.start_or_get(world.apartment.id, world.renter.id, 'first')

    async def always_miss(session, *args, **kwargs):
        return None

    monkeypatch.setattr(resolver, '_find_conversation', always_miss)
    with pytest.raises(Unavailable):
        await resolver.start_or_get(world.apartment.id, world.renter.id, 'second')
    assert await count_rows(Conversation) == 1
    assert await count_rows(Message) == 1


@pytest.mark.asyncio
async def test_unknown_initiator_is_not_found_without_retry(world, monkeypatch):
    real_find = resolver._find_conversation
    lookups = []

    async def counting_find(session, *args, **kwargs):
        lookups.append(args)
        return await real_find(session, *args, **kwargs)

    monkeypatch.setattr(resolver, '_find_conversation', counting_find)
    with pytest.raises(NotFound):
        await resolver.start_or_get(world.apartment.id, uuid.uuid4(), 'hello')

    # a missing user is not a lost race: no second lookup, no Unavailable
    assert len(lookups) == 1
    assert await count_rows(Conversation) == 0
    assert await count_rows(Message) == 0


@pytest.mark.asyncio
async def test_other_integrity_errors_propagate(world, monkeypatch):
    async def failing_flush(self, *args, **kwargs):
        raise IntegrityError('INSERT INTO conversations', {}, Exception('NOT NULL constraint failed: conversations.created_at'))

    monkeypatch.setattr(AsyncSession, 'flush', failing_flush)
    with pytest.raises(IntegrityError):
        await resolver.start_or_get(world.apartment.id, world.renter.id, 'hello')
    monkeypatch.undo()
    assert await count_rows(Conversation) == 0
