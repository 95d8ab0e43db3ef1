from .models import AsyncSessionLocal
from .models.users import User
from .models.apartments import Apartment
from .cache import cache_user_summary, get_cached_user_summary
from sqlalchemy import select
import logging

logger = logging.getLogger(__name__)


def _user_summary(user: User) -> dict:
    return {
        'id': str(user.id),
        'name': user.name,
        'avatar_url': user.avatar_url,
        'role': user.role,
    }


def _apartment_preview(apartment: Apartment) -> dict:
    return {
        'id': str(apartment.id),
        'unit_name': apartment.unit_name,
        'unit_number': apartment.unit_number,
        'price_egp': apartment.price_egp,
        'status': apartment.status,
    }


# listings
async def get_apartment(apartment_id):
    """Resolve a listing and its lister; None when the listing does not exist."""
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(Apartment).where(Apartment.id == apartment_id))
        return q.scalars().first()


async def get_apartment_previews(apartment_ids) -> dict:
    ids = set(apartment_ids)
    if not ids:
        return {}
    async with AsyncSessionLocal() as session:
        res = await session.execute(select(Apartment).where(Apartment.id.in_(ids)))
        return {a.id: _apartment_preview(a) for a in res.scalars().all()}


# profiles
async def get_user_summary(user_id):
    summaries = await get_user_summaries([user_id])
    return summaries.get(user_id)


async def get_user_summaries(user_ids) -> dict:
    """Profile summaries keyed by user id, served from cache where possible."""
    found = {}
    missing = []
    for user_id in set(user_ids):
        cached = await get_cached_user_summary(user_id)
        if cached:
            found[user_id] = cached
        else:
            missing.append(user_id)
    if not missing:
        return found

    async with AsyncSessionLocal() as session:
        res = await session.execute(select(User).where(User.id.in_(missing)))
        for user in res.scalars().all():
            summary = _user_summary(user)
            found[user.id] = summary
            await cache_user_summary(user.id, summary)

    unknown = [u for u in missing if u not in found]
    if unknown:
        logger.warning(f"No profile for users {unknown}")
    return found
