from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..engine import MultiQueue
from ..exceptions import SerializationError
from .deps import get_multiqueue
from .schemas import (
    CompleteRequest,
    DeepestResponse,
    DepthsResponse,
    DispatchResponse,
    JobResponse,
    PopAnyRequest,
    PopRequest,
    PushRequest,
    QueueDepth,
)


def _unprocessable(e: SerializationError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(e))


def get_router() -> APIRouter:
    """Get FastAPI router for queue endpoints."""
    router = APIRouter(prefix="/queues", tags=["Queues"])

    @router.post("/push", status_code=status.HTTP_202_ACCEPTED)
    async def push_job(
        body: PushRequest,
        mq: MultiQueue = Depends(get_multiqueue),
    ):
        """Push a job onto a queue."""
        try:
            await mq.push(body.queue, body.job, body.priority)
        except SerializationError as e:
            raise _unprocessable(e) from e
        return {"queued": True}

    @router.post("/pop", response_model=JobResponse)
    async def pop_job(
        body: PopRequest,
        mq: MultiQueue = Depends(get_multiqueue),
    ):
        """Pop next job from one queue. 204 when the queue has nothing to hand out."""
        try:
            job = await mq.pop(body.queue)
        except SerializationError as e:
            raise _unprocessable(e) from e
        if job is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return JobResponse(job=job)

    @router.post("/pop-any", response_model=DispatchResponse)
    async def pop_any_job(
        body: PopAnyRequest,
        mq: MultiQueue = Depends(get_multiqueue),
    ):
        """Pop next job from any queue."""
        try:
            dispatch = await mq.pop_any_with_queue(body.queues)
        except SerializationError as e:
            raise _unprocessable(e) from e
        if dispatch is None:
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        return DispatchResponse(queue=dispatch.queue, job=dispatch.job)

    @router.post("/complete", status_code=status.HTTP_204_NO_CONTENT)
    async def complete_job(
        body: CompleteRequest,
        mq: MultiQueue = Depends(get_multiqueue),
    ):
        """Acknowledge a job. Unknown jobs are ignored."""
        try:
            await mq.complete(body.queue, body.job)
        except SerializationError as e:
            raise _unprocessable(e) from e
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/deepest", response_model=DeepestResponse)
    async def deepest_queue(mq: MultiQueue = Depends(get_multiqueue)):
        """Get the queue with the most pending jobs."""
        # Encoded form tells an empty index apart from a null queue id
        encoded = await mq.store.deepest(mq.keys)
        if encoded is None:
            return DeepestResponse(found=False)
        return DeepestResponse(found=True, queue=mq.codec.decode(encoded))

    @router.get("/depths", response_model=DepthsResponse)
    async def queue_depths(mq: MultiQueue = Depends(get_multiqueue)):
        """Get pending and in-flight counts per queue."""
        pending = (await mq.get_queue_depths()).encoded()
        in_flight = (await mq.get_retry_depths()).encoded()
        items = [
            QueueDepth(
                queue=mq.codec.decode(encoded),
                pending=pending.get(encoded, 0),
                in_flight=in_flight.get(encoded, 0),
            )
            for encoded in sorted(pending.keys() | in_flight.keys())
        ]
        return DepthsResponse(
            items=items,
            total_pending=sum(pending.values()),
            total_in_flight=sum(in_flight.values()),
        )

    @router.get("/_health")
    async def health_check(mq: MultiQueue = Depends(get_multiqueue)):
        """Health check endpoint."""
        return {"status": "healthy", "service": "multiqueue"}

    return router
