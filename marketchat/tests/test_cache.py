import uuid

import pytest

from marketchat import core
from marketchat.cache import get_cached_user_summary, rate_limit_reached, record_action
from marketchat.crud import get_apartment, get_user_summary
from marketchat.routes import conversations as conversation_routes


class FakeRedis:
    """Just the commands the cache uses."""

    def __init__(self):
        self.data = {}

    async def setex(self, key, ttl, value):
        self.data[key] = value if isinstance(value, bytes) else str(value).encode()

    async def get(self, key):
        return self.data.get(key)

    async def incrby(self, key, amount):
        value = int(self.data.get(key, b'0')) + amount
        self.data[key] = str(value).encode()
        return value


@pytest.fixture
def redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(core, 'REDIS', fake)
    return fake


@pytest.mark.asyncio
async def test_user_summary_lookup(world):
    summary = await get_user_summary(world.owner.id)
    assert summary == {'id': str(world.owner.id), 'name': 'Omar', 'avatar_url': None, 'role': 'LISTER'}
    assert await get_user_summary(uuid.uuid4()) is None
    # without redis nothing is cached and nothing fails
    assert await get_cached_user_summary(world.owner.id) is None


@pytest.mark.asyncio
async def test_user_summary_is_cached(world, redis):
    await get_user_summary(world.renter.id)
    assert (await get_cached_user_summary(world.renter.id))['name'] == 'Rana'


@pytest.mark.asyncio
async def test_get_apartment(world):
    apartment = await get_apartment(world.apartment.id)
    assert apartment.lister_id == world.owner.id
    assert await get_apartment(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_rate_limit_window(redis):
    user_id = uuid.uuid4()
    seen = []
    for _ in range(3):
        seen.append(await rate_limit_reached(user_id, 'send_message', limit=2))
        await record_action(user_id, 'send_message')
    assert seen == [False, False, True]
    assert await rate_limit_reached(uuid.uuid4(), 'send_message', limit=2) is False


@pytest.mark.asyncio
async def test_rate_limit_without_redis_allows():
    user_id = uuid.uuid4()
    await record_action(user_id, 'send_message')
    assert await rate_limit_reached(user_id, 'send_message', limit=0) is False


@pytest.mark.asyncio
async def test_send_rate_limit_returns_429(client, auth, world, redis, monkeypatch):
    monkeypatch.setattr(conversation_routes, 'MESSAGE_RATE_LIMIT', 1)
    payload = {'apartment_id': str(world.apartment.id), 'message': 'hello'}

    first = await client.post('/api/conversations', json=payload, headers=auth(world.renter))
    assert first.status_code == 201, first.text
    second = await client.post('/api/conversations', json=payload, headers=auth(world.renter))
    assert second.status_code == 429


@pytest.mark.asyncio
async def test_rejected_sends_do_not_use_quota(client, auth, world, redis, monkeypatch):
    monkeypatch.setattr(conversation_routes, 'MESSAGE_RATE_LIMIT', 1)

    missing = await client.post('/api/conversations', json={'apartment_id': str(uuid.uuid4()), 'message': 'hello'},
                                headers=auth(world.renter))
    assert missing.status_code == 404
    blank = await client.post('/api/conversations', json={'apartment_id': str(world.apartment.id), 'message': ' '},
                              headers=auth(world.renter))
    assert blank.status_code == 422

    accepted = await client.post('/api/conversations', json={'apartment_id': str(world.apartment.id), 'message': 'hi'},
                                 headers=auth(world.renter))
    assert accepted.status_code == 201, accepted.text
    conversation_id = accepted.json()['conversation']['id']
    limited = await client.post(f'/api/conversations/{conversation_id}/messages', json={'content': 'again'},
                                headers=auth(world.renter))
    assert limited.status_code == 429
