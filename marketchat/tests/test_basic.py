import pytest
from sqlalchemy.exc import OperationalError

from marketchat.errors import Forbidden, InvalidOperation, NotFound, Unavailable, ValidationError
from marketchat.routes import conversations as conversation_routes


@pytest.mark.asyncio
async def test_healthz(client):
    res = await client.get('/healthz')
    assert res.status_code == 200
    assert res.json() == {'status': 'ok'}


@pytest.mark.asyncio
async def test_error_status_codes():
    assert [e.status_code for e in (NotFound, Forbidden, InvalidOperation, ValidationError, Unavailable)] == \
        [404, 403, 400, 422, 503]
    assert NotFound('Conversation not found').code == 'NotFound'


@pytest.mark.asyncio
async def test_store_outage_is_unavailable(client, auth, world, monkeypatch):
    async def store_down(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, ConnectionRefusedError('connection refused'))

    monkeypatch.setattr(conversation_routes, 'list_conversations', store_down)
    res = await client.get('/api/conversations', headers=auth(world.owner))
    assert res.status_code == 503
    assert res.json()['code'] == 'Unavailable'
