from fastapi import APIRouter, HTTPException, Request
from rdflib import Graph

from ldes_publisher.container import parse_turtle
from ldes_publisher.publisher import LDESPublisher
from ldes_publisher.schemas import PublishRequest, PublishResult
from ldes_publisher.utils import get_logger

logger = get_logger("router")

router = APIRouter(prefix="/ldes", tags=["ldes"])


def _publisher(request: Request) -> LDESPublisher:
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is None or not publisher.initialised:
        raise HTTPException(status_code=503, detail="LDES publisher is not initialised")
    return publisher


@router.post("/publish", response_model=PublishResult)
async def publish_resources(body: PublishRequest, request: Request):
    """
    Publish Turtle resources computed over ``[start, end]``.
    Remote failures come back as a ``remote_error`` result, not as a 5xx.
    """
    publisher = _publisher(request)
    resources: list[Graph] = []
    for i, ttl in enumerate(body.resources):
        try:
            resources.append(parse_turtle(ttl, publisher.lil_url))
        except Exception as e:
            logger.warning(f"Rejecting publish: resource {i} is not valid Turtle ({e})")
            raise HTTPException(status_code=400, detail=f"resource {i} is not valid Turtle")
    return await publisher.publish(resources, body.start, body.end)
