import uuid

from fastapi import APIRouter, Depends

from ..auth import get_current_user_id
from ..kafka_producer import publish_message_event
from ..ledger import mark_message_read
from ..schemas.messages import MessageOut

router = APIRouter()


@router.put('/{message_id}/read', response_model=MessageOut)
async def read_message(message_id: uuid.UUID, current_user_id: uuid.UUID = Depends(get_current_user_id)):
    message = await mark_message_read(message_id, current_user_id)
    await publish_message_event('messages_read', message.conversation_id, {
        'reader_id': str(current_user_id),
        'message_id': str(message.id),
    })
    return message
