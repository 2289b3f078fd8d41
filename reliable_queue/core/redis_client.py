from typing import Optional

import redis
from redis import ConnectionPool

from reliable_queue.core.config import settings
from reliable_queue.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Redis connection holder used by the key/sorted-set queue engine.
    """

    def __init__(self, url: Optional[str] = None, max_connections: Optional[int] = None):
        self.url = url or settings.REDIS_URL
        self.pool = ConnectionPool.from_url(
            self.url,
            max_connections=max_connections or settings.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
        )
        self.client: Optional[redis.Redis] = None

    def connect(self) -> redis.Redis:
        """Initialize Redis connection."""
        try:
            self.client = redis.Redis(connection_pool=self.pool)
            # Test connection
            self.client.ping()
            logger.info("Redis connection established")
            return self.client
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def disconnect(self):
        """Close Redis connection."""
        if self.client:
            self.client.close()
            self.pool.disconnect()
            self.client = None
            logger.info("Redis connection closed")
