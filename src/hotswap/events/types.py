"""Event type definitions for the event bus."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events published by the hot-swap pipeline."""

    # Recipe events
    REBUILD_REQUESTED = "rebuild.requested"

    # Build events
    BUILD_STARTED = "build.started"
    BUILD_SUCCEEDED = "build.succeeded"
    BUILD_FAILED = "build.failed"

    # Context events
    CONTEXT_UNLOADED = "context.unloaded"
    CONTEXT_LOADED = "context.loaded"
    LOAD_FAILED = "load.failed"
    UNLOAD_FAILED = "unload.failed"

    # Controller events
    CONTROLLER_STARTED = "controller.started"
    CONTROLLER_STOPPED = "controller.stopped"
    CONTROLLER_HALTED = "controller.halted"


class Event(BaseModel):
    """A published event."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)
    generation: int | None = None  # Swap generation the event belongs to
