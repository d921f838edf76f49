from __future__ import annotations

from typing import Callable, List, Optional, Sequence

import httpx

from ldes_publisher.container import SPARQL_UPDATE, TURTLE, extract_inbox_links, parse_turtle
from ldes_publisher.namespaces import LDP
from ldes_publisher.schemas import InboxSyncResult
from ldes_publisher.session import PodSession
from ldes_publisher.utils import get_logger

logger = get_logger("inbox")

InboxSelector = Callable[[Sequence[str]], str]


def latest_inbox(inboxes: Sequence[str]) -> str:
    """
    Lexicographic maximum of the inbox URIs.

    Fragments get fixed-width, strictly increasing ids so string order
    follows recency. Numeric suffixes are not compared as numbers:
    ``.../2`` beats ``.../10``.
    """
    return max(inboxes)


def inbox_patch_body(container_location: str, inbox: str) -> str:
    return f"INSERT DATA {{ <{container_location}> <{LDP.inbox}> <{inbox}> }}"


class InboxSynchronizer:
    """
    Records the newest fragment as the container's ``ldp:inbox``.

    Runs after an append has been acknowledged. The pod commits members
    faster than metadata patches, so readers may see a stale inbox until
    this lands. Overlapping publishes are not serialized: a sync that read
    before a newer append can patch after it, so the last patch wins.
    Failures are logged and reported, never raised.
    """

    def __init__(self, *, selector: InboxSelector = latest_inbox):
        self.selector = selector

    async def fetch_inboxes(self, container_location: str, session: PodSession) -> List[str]:
        res = await session.client.get(container_location, headers={"Accept": TURTLE})
        res.raise_for_status()
        return extract_inbox_links(parse_turtle(res.text, container_location))

    async def update(self, container_location: str, session: PodSession) -> InboxSyncResult:
        try:
            inboxes = await self.fetch_inboxes(container_location, session)
        except httpx.HTTPStatusError as e:
            detail = f"{e.response.status_code} {e.response.text[:200]}"
            logger.error(f"Could not read {container_location} to sync its inbox: {detail}")
            return InboxSyncResult(status="failed", container=container_location, detail=detail)
        except Exception as e:
            # transport errors and unparsable Turtle alike
            logger.error(f"Could not read {container_location} to sync its inbox: {e}")
            return InboxSyncResult(status="failed", container=container_location, detail=str(e))

        if not inboxes:
            logger.warning(f"No inbox declared on {container_location}; nothing to patch")
            return InboxSyncResult(status="no_inbox", container=container_location)

        inbox = self.selector(inboxes)
        detail: Optional[str] = None
        try:
            res = await session.client.patch(
                container_location,
                content=inbox_patch_body(container_location, inbox).encode("utf-8"),
                headers={"Content-Type": SPARQL_UPDATE},
            )
        except httpx.HTTPError as e:
            detail = str(e)
        else:
            if res.is_success:
                logger.debug(f"Latest inbox of {container_location} patched to {inbox}")
                return InboxSyncResult(
                    status="patched",
                    container=container_location,
                    inbox=inbox,
                    candidates=len(inboxes),
                )
            detail = f"{res.status_code} {res.text[:200]}"

        logger.error(f"The latest inbox of {container_location} could not be patched: {detail}")
        return InboxSyncResult(
            status="failed",
            container=container_location,
            inbox=inbox,
            candidates=len(inboxes),
            detail=detail,
        )
