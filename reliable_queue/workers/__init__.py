from .consumer import QueueConsumer

__all__ = [
    "QueueConsumer",
]
