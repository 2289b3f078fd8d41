from .message import build_messages_table

__all__ = [
    "build_messages_table",
]
