from datetime import datetime, timezone
from . import core
import json
import logging

logger = logging.getLogger(__name__)

MESSAGE_EVENTS_TOPIC = 'message-events'


async def publish(topic: str, data: dict, key: str = None):
    if not core.KAFKA_PRODUCER:
        raise RuntimeError('Kafka producer not started')
    await core.KAFKA_PRODUCER.send_and_wait(
        topic,
        json.dumps(data, default=str).encode('utf-8'),
        key=key.encode('utf-8') if key else None,
    )


async def publish_message_event(event: str, conversation_id, payload: dict) -> bool:
    """Best-effort event after a committed write; keyed by conversation so consumers see them in order."""
    if not core.KAFKA_PRODUCER:
        logger.debug(f"Kafka unavailable, dropping {event} for conversation {conversation_id}")
        return False
    data = {
        'event': event,
        'conversation_id': str(conversation_id),
        'emitted_at': datetime.now(timezone.utc).isoformat(),
        **payload,
    }
    try:
        await publish(MESSAGE_EVENTS_TOPIC, data, key=str(conversation_id))
        return True
    except Exception as e:
        logger.error(f"Failed to publish {event} for conversation {conversation_id}: {e}")
        return False
