from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class QueueMessage(BaseModel):
    """A message as stored by a queue engine."""

    id: str
    body: str
    headers: Dict[str, str] = Field(default_factory=dict)
    queue_name: str
    created_at: datetime
    available_at: datetime
    delivered_at: Optional[datetime] = None
