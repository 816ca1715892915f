from fastapi import Request

from ..engine import MultiQueue
from .lifecycle import MULTIQUEUE_STATE_KEY


def get_multiqueue(request: Request) -> MultiQueue:
    """Dependency to get MultiQueue from app state."""
    mq = getattr(request.app.state, MULTIQUEUE_STATE_KEY, None)
    if mq is None:
        raise RuntimeError("MultiQueue not initialized. Did you call setup_multiqueue()?")
    return mq
