"""
Notification Schema

Notifications surface completed workflows to the identity that started
them. Only the ``read`` flag is ever mutated.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    id: int = Field(..., ge=1, description="Per-owner sequence number")
    type: NotificationType = NotificationType.INFO
    title: str
    message: str = ""
    link: Optional[str] = None
    read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
