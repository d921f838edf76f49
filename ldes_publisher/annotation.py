from __future__ import annotations

import time
from typing import Callable, Iterable, Sequence

from rdflib import BNode, Graph, Literal, URIRef
from rdflib.term import Node

from ldes_publisher.container import LDESinLDPContainer, extract_inbox_links
from ldes_publisher.errors import ContainerError
from ldes_publisher.inbox import latest_inbox
from ldes_publisher.namespaces import DCTERMS, PROV, RDF, RDFS, XSD
from ldes_publisher.schemas import TimeWindow
from ldes_publisher.session import PodSession
from ldes_publisher.utils import get_logger

logger = get_logger("annotation")


def _root_subjects(graph: Graph) -> Iterable[Node]:
    objects = set(graph.objects())
    return [s for s in set(graph.subjects()) if s not in objects]


def build_annotated_bundle(
    query: str,
    container_location: str,
    resources: Sequence[Graph],
    tree_path: str,
    window: TimeWindow,
) -> Graph:
    """
    Merge ``resources`` into one member graph and attach the continuous query
    that produced them.

    Every top-level subject is linked to the query activity and, unless it
    already carries one, gets the window end as its ``tree_path`` timestamp.
    """
    path = URIRef(tree_path)
    bundle = Graph()
    bundle.bind("prov", PROV)
    bundle.bind("dct", DCTERMS)

    activity = BNode()
    bundle.add((activity, RDF.type, PROV.Activity))
    bundle.add((activity, RDFS.comment, Literal(query)))
    bundle.add((activity, PROV.startedAtTime, Literal(window.start.isoformat(), datatype=XSD.dateTime)))
    bundle.add((activity, PROV.endedAtTime, Literal(window.end.isoformat(), datatype=XSD.dateTime)))
    bundle.add((activity, DCTERMS.isPartOf, URIRef(container_location)))

    stamp = Literal(window.end.isoformat(), datatype=XSD.dateTime)
    for resource in resources:
        for triple in resource:
            bundle.add(triple)
        for subject in _root_subjects(resource):
            bundle.add((subject, PROV.wasGeneratedBy, activity))
            if (subject, path, None) not in resource:
                bundle.add((subject, path, stamp))
    return bundle


class QueryAnnotationPublisher:
    """
    Appends one annotated bundle per publish to the container's current
    write fragment, opening a new fragment once the current one is full.
    """

    def __init__(self, *, fragment_size: int = 100, clock: Callable[[], float] = time.time):
        self.fragment_size = fragment_size
        self.clock = clock

    async def select_fragment(self, container: LDESinLDPContainer, tree_path: str, window: TimeWindow) -> str:
        metadata = await container.read_metadata()
        inboxes = extract_inbox_links(metadata)
        if not inboxes:
            raise ContainerError(f"{container.url} declares no inbox to append to")
        fragment = latest_inbox(inboxes)
        if await container.member_count(fragment) >= self.fragment_size:
            logger.info(f"Fragment {fragment} is full; opening a new one at {window.start.isoformat()}")
            fragment = await container.add_fragment(window.start, tree_path, existing=inboxes)
        return fragment

    async def publish(
        self,
        query: str,
        container_location: str,
        resources: Sequence[Graph],
        tree_path: str,
        config: dict,
        window: TimeWindow,
        session: PodSession,
    ) -> str:
        """Returns the location of the new member once the pod acknowledged it."""
        container = LDESinLDPContainer(
            config.get("LDESinLDPIdentifier", container_location), session, clock=self.clock
        )
        fragment = await self.select_fragment(container, tree_path, window)
        bundle = build_annotated_bundle(query, container.url, resources, tree_path, window)
        location = await container.append(fragment, bundle)
        logger.info(f"Published query annotation with {len(resources)} resources to {location}")
        return location
