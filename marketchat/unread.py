from sqlalchemy import func, select

from .ledger import load_conversation
from .models import AsyncSessionLocal
from .models.messages import Message


def _unread_for(viewer_id):
    return (Message.sender_id != viewer_id) & (Message.is_read.is_(False))


async def count_unread(conversation_id, viewer_id) -> int:
    """Messages from the other participant the viewer has not read yet."""
    async with AsyncSessionLocal() as session:
        conversation = await load_conversation(session, conversation_id, viewer_id)
        res = await session.execute(
            select(func.count())
            .select_from(Message)
            .where(Message.conversation_id == conversation.id, _unread_for(viewer_id))
        )
        return res.scalar_one()


async def count_unread_many(conversation_ids, viewer_id) -> dict:
    ids = list(conversation_ids)
    if not ids:
        return {}
    async with AsyncSessionLocal() as session:
        res = await session.execute(
            select(Message.conversation_id, func.count())
            .where(Message.conversation_id.in_(ids), _unread_for(viewer_id))
            .group_by(Message.conversation_id)
        )
        counts = {conversation_id: n for conversation_id, n in res.all()}
    return {conversation_id: counts.get(conversation_id, 0) for conversation_id in ids}
