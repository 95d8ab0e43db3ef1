import os
import tempfile
import uuid
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event

# Configure test environment before the app builds its engine (SQLite file by default)
os.environ.setdefault(
    'DATABASE_URL', 'sqlite+aiosqlite:///' + os.path.join(tempfile.gettempdir(), 'marketchat_test.db')
)
os.environ.setdefault('JWT_SECRET', 'test-secret')
os.environ.setdefault('MESSAGE_RATE_LIMIT', '10000')

from marketchat.auth import create_access_token  # noqa: E402
from marketchat.main import app  # noqa: E402
from marketchat.models import AsyncSessionLocal, Base, engine  # noqa: E402
from marketchat.models.apartments import Apartment  # noqa: E402
from marketchat.models.users import User  # noqa: E402


if engine.dialect.name == 'sqlite':
    # sqlite leaves foreign keys off unless asked, per connection
    @event.listens_for(engine.sync_engine, 'connect')
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


@pytest_asyncio.fixture(autouse=True)
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # pooled connections are bound to this test's event loop
    await engine.dispose()


async def make_user(name, role='USER'):
    user = User(id=uuid.uuid4(), email=f'{name.lower()}-{uuid.uuid4().hex[:8]}@example.com', name=name, role=role)
    async with AsyncSessionLocal() as session:
        session.add(user)
        await session.commit()
    return user


async def make_apartment(lister, unit_name='Nile View 3B'):
    apartment = Apartment(id=uuid.uuid4(), lister_id=lister.id, unit_name=unit_name,
                          unit_number='3B', price_egp=25000, status='AVAILABLE')
    async with AsyncSessionLocal() as session:
        session.add(apartment)
        await session.commit()
    return apartment


@pytest_asyncio.fixture
async def world():
    """A lister with two apartments, two prospective renters and an outsider."""
    owner = await make_user('Omar', role='LISTER')
    renter = await make_user('Rana')
    other_renter = await make_user('Karim')
    stranger = await make_user('Sara')
    apartment = await make_apartment(owner)
    second_apartment = await make_apartment(owner, 'Zamalek Loft 7A')
    return SimpleNamespace(
        owner=owner, renter=renter, other_renter=other_renter, stranger=stranger,
        apartment=apartment, second_apartment=second_apartment,
    )


@pytest.fixture
def auth():
    def headers(user):
        return {'Authorization': f"Bearer {create_access_token({'id': user.id})}"}
    return headers


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac
