import os
import asyncio
from prometheus_client import Counter, start_http_server
import logging

logger = logging.getLogger(__name__)

KAFKA_PRODUCER = None
REDIS = None

MESSAGES_SENT = Counter('marketchat_messages_sent_total', 'Messages appended to conversations', ['message_type'])
CONVERSATIONS_CREATED = Counter('marketchat_conversations_created_total', 'Conversations created on first contact')
MESSAGES_MARKED_READ = Counter('marketchat_messages_marked_read_total', 'Messages transitioned to read')


def init_metrics(port: int = None):
    """Initialize Prometheus metrics server"""
    port = port or int(os.getenv('METRICS_PORT', '8001'))
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except Exception as e:
        logger.warning(f'Prometheus start failed: {e}')


async def kafka_startup():
    """Start Kafka producer, retrying a few times before running without it"""
    global KAFKA_PRODUCER

    from aiokafka import AIOKafkaProducer

    brokers = os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'kafka:9092')
    max_retries = 3
    retry_delay = 5  # seconds

    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to Kafka brokers: {brokers} (attempt {attempt + 1}/{max_retries})")

            KAFKA_PRODUCER = AIOKafkaProducer(
                bootstrap_servers=brokers,
                retry_backoff_ms=500,
                request_timeout_ms=30000,
                linger_ms=100,
                compression_type='gzip',
                acks='all',
            )
            await KAFKA_PRODUCER.start()
            logger.info("Kafka producer connected successfully")
            break

        except Exception as e:
            logger.warning(f'Kafka startup attempt {attempt + 1} failed: {e}')
            if KAFKA_PRODUCER:
                try:
                    await KAFKA_PRODUCER.stop()
                except Exception as stop_error:
                    logger.debug(f'Kafka producer stop after failed start: {stop_error}')
                KAFKA_PRODUCER = None

            if attempt < max_retries - 1:
                logger.info(f"Retrying Kafka connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Failed to connect to Kafka after all retries")


async def redis_startup():
    """Start Redis connection pool used for profile caching and rate limits"""
    global REDIS

    from redis import asyncio as aioredis

    redis_url = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    max_retries = 3
    retry_delay = 3  # seconds

    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to Redis: {redis_url} (attempt {attempt + 1}/{max_retries})")

            REDIS = aioredis.from_url(
                redis_url,
                decode_responses=False,
                max_connections=20,
                retry_on_timeout=True,
                health_check_interval=30,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            await REDIS.ping()
            logger.info("Redis connected successfully")
            break

        except Exception as e:
            logger.warning(f'Redis startup attempt {attempt + 1} failed: {e}')
            if REDIS:
                try:
                    await REDIS.aclose()
                except Exception as close_error:
                    logger.debug(f'Redis close after failed start: {close_error}')
                REDIS = None

            if attempt < max_retries - 1:
                logger.info(f"Retrying Redis connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Failed to connect to Redis after all retries")


async def shutdown_connections():
    """Gracefully shutdown all connections"""
    global KAFKA_PRODUCER, REDIS
    logger.info("Shutting down connections...")

    if KAFKA_PRODUCER:
        try:
            await KAFKA_PRODUCER.stop()
            logger.info("Kafka producer stopped")
        except Exception as e:
            logger.error(f"Error stopping Kafka producer: {e}")
        KAFKA_PRODUCER = None

    if REDIS:
        try:
            await REDIS.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
        REDIS = None
