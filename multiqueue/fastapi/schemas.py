from __future__ import annotations

from pydantic import BaseModel, Field, JsonValue


class PushRequest(BaseModel):
    """Request to push a job onto a queue."""

    queue: JsonValue
    job: JsonValue
    priority: float = Field(..., allow_inf_nan=False)


class PopRequest(BaseModel):
    """Request to pop from a single queue."""

    queue: JsonValue


class PopAnyRequest(BaseModel):
    """Request to pop from any queue, optionally restricted to some."""

    queues: list[JsonValue] | None = None


class CompleteRequest(BaseModel):
    """Request to acknowledge a dispatched job."""

    queue: JsonValue
    job: JsonValue


class JobResponse(BaseModel):
    """A dispatched job."""

    job: JsonValue


class DispatchResponse(BaseModel):
    """A dispatched job with its queue."""

    queue: JsonValue
    job: JsonValue


class DeepestResponse(BaseModel):
    """Queue holding the most pending jobs."""

    found: bool
    queue: JsonValue = None


class QueueDepth(BaseModel):
    """Counts for one queue."""

    queue: JsonValue
    pending: int = 0
    in_flight: int = 0


class DepthsResponse(BaseModel):
    """Counts for every known queue."""

    items: list[QueueDepth]
    total_pending: int
    total_in_flight: int
