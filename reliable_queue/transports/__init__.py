from .sender import QueueSender
from .receiver import QueueReceiver
from .transport import QueueTransport

__all__ = [
    "QueueSender",
    "QueueReceiver",
    "QueueTransport",
]
