from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Set

import httpx
from pydantic import ValidationError
from rdflib import Graph

from ldes_publisher.annotation import QueryAnnotationPublisher
from ldes_publisher.container import LDESinLDPContainer
from ldes_publisher.errors import ContainerError
from ldes_publisher.inbox import InboxSynchronizer
from ldes_publisher.namespaces import LDES, RDF
from ldes_publisher.queries import QueryRegistry, default_registry
from ldes_publisher.schemas import InboxSyncResult, PublishResult, TimeWindow
from ldes_publisher.session import PodCredentials, PodSession, build_timeout, get_authenticated_session
from ldes_publisher.settings import Settings, settings as default_settings
from ldes_publisher.utils import get_logger

logger = get_logger("publisher")

SessionFactory = Callable[[], Awaitable[PodSession]]
ContainerFactory = Callable[[str, PodSession], LDESinLDPContainer]


class LDESPublisher:
    """
    Publishes resources produced by the stream processor into the LDES in LDP
    container of the aggregation pod.

    ``initialise()`` must complete before ``publish()``. Each successful
    publish schedules one inbox sync in the background; ``wait_for_sync()``
    drains them.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        registry: Optional[QueryRegistry] = None,
        annotation_publisher: Optional[QueryAnnotationPublisher] = None,
        synchronizer: Optional[InboxSynchronizer] = None,
        session_factory: Optional[SessionFactory] = None,
        container_factory: ContainerFactory = LDESinLDPContainer,
    ):
        self.settings = settings or default_settings
        self.lil_url = self.settings.lil_url
        self.tree_path = self.settings.tree_path
        self.config = self.settings.ldes_config()
        self.registry = registry or default_registry()
        self.annotation_publisher = annotation_publisher or QueryAnnotationPublisher(
            fragment_size=self.settings.fragment_size
        )
        self.synchronizer = synchronizer or InboxSynchronizer()
        self._session_factory = session_factory or self._default_session
        self._container_factory = container_factory

        self.session: Optional[PodSession] = None
        self.initialised = False
        self.pending_syncs: Set[asyncio.Task] = set()
        self.sync_failures = 0

    async def _default_session(self) -> PodSession:
        return await get_authenticated_session(
            PodCredentials.from_settings(self.settings),
            timeout=build_timeout(self.settings),
        )

    async def initialise(self) -> bool:
        """
        Authenticate, initialise the container and confirm it declares an
        event stream. Returns False instead of raising when the container
        cannot be set up or read back.
        """
        session = await self._session_factory()
        container = self._container_factory(self.lil_url, session)
        try:
            await container.initialise(self.config)
            metadata = await container.read_metadata()
        except Exception as e:
            # pod errors, transport errors and unparsable metadata alike
            logger.error(f"No LDES is present at {self.lil_url}: {e}")
            await session.close()
            return False

        streams = list(metadata.subjects(RDF.type, LDES.EventStream))
        if not streams:
            logger.error(f"No LDES is present at {self.lil_url}")
            await session.close()
            return False
        if len(streams) > 1:
            logger.warning(
                f"{len(streams)} LDES declarations are present; using the first one at {streams[0]}"
            )

        self.session = session
        self.initialised = True
        logger.info(f"LDES publisher initialised on {self.lil_url}")
        return True

    async def publish(
        self,
        resources: Sequence[Graph],
        start_time: datetime,
        end_time: datetime,
    ) -> PublishResult:
        if len(resources) == 0:
            logger.info("No resources to publish")
            return PublishResult.config_error("no resources to publish")
        if not self.initialised or self.session is None:
            logger.error("publish() called before initialise()")
            return PublishResult.config_error("publisher is not initialised")

        try:
            window = TimeWindow(start=start_time, end=end_time)
        except ValidationError as e:
            logger.error(f"Rejecting window {start_time} - {end_time}: {e.errors()[0]['msg']}")
            return PublishResult.config_error("invalid time window")

        query = self.registry.get_query(self.settings.query_name, window.start, window.end)
        if query is None:
            logger.error(f"The query {self.settings.query_name!r} is undefined and thus could not be published")
            return PublishResult.config_error(f"no query registered as {self.settings.query_name!r}")

        try:
            await self.annotation_publisher.publish(
                query,
                self.lil_url,
                list(resources),
                self.tree_path,
                self.config,
                window,
                self.session,
            )
        except (ContainerError, httpx.HTTPError) as e:
            logger.exception(f"Appending {len(resources)} resources to {self.lil_url} failed")
            return PublishResult.remote_error(e, container=self.lil_url)

        self.schedule_inbox_sync()
        return PublishResult.success(self.lil_url, len(resources))

    def schedule_inbox_sync(self) -> asyncio.Task:
        task = asyncio.create_task(self.synchronizer.update(self.lil_url, self.session))
        self.pending_syncs.add(task)
        task.add_done_callback(self._sync_done)
        return task

    def _sync_done(self, task: asyncio.Task) -> None:
        self.pending_syncs.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.sync_failures += 1
            logger.error(f"Inbox sync for {self.lil_url} crashed: {exc!r}")
        elif not task.result().ok:
            self.sync_failures += 1

    async def wait_for_sync(self) -> List[InboxSyncResult]:
        """Await every inbox sync still in flight."""
        if not self.pending_syncs:
            return []
        outcomes = await asyncio.gather(*list(self.pending_syncs), return_exceptions=True)
        return [o for o in outcomes if isinstance(o, InboxSyncResult)]

    async def close(self) -> None:
        await self.wait_for_sync()
        if self.session is not None:
            await self.session.close()
            self.session = None
        self.initialised = False
