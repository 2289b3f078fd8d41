from .base import QueueEngine
from .relational import RelationalQueueEngine
from .redis_queue import RedisQueueEngine

__all__ = [
    "QueueEngine",
    "RelationalQueueEngine",
    "RedisQueueEngine",
]
