from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.schemas.events import LifecycleAction


class TimelineMetadata(BaseModel):
    old_value: Any | None = None
    new_value: Any | None = None
    reason: str | None = None
    is_replacement: bool = False
    old_file: dict[str, Any] | None = None
    new_file: dict[str, Any] | None = None
    document_label: str | None = None
    field: str | None = None


class TimelineEntry(BaseModel):
    id: int
    action: LifecycleAction
    description: str
    author: str
    actor_id: str | None = None
    created_at: datetime
    metadata: TimelineMetadata = Field(default_factory=TimelineMetadata)


class TimelineResponse(BaseModel):
    application_id: str
    total: int
    items: list[TimelineEntry]
