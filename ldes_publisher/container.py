from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import httpx
from rdflib import BNode, Graph, Literal, URIRef

from ldes_publisher.errors import ContainerError
from ldes_publisher.namespaces import LDES, LDP, RDF, TREE, XSD
from ldes_publisher.session import PodSession
from ldes_publisher.utils import get_logger

logger = get_logger("container")

TURTLE = "text/turtle"
SPARQL_UPDATE = "application/sparql-update"
BASIC_CONTAINER_LINK = f'<{LDP.BasicContainer}>; rel="type"'
# Millisecond ids keep 13 digits until 2286, so string order is numeric order.
FRAGMENT_ID_WIDTH = 13


def insert_data(graph: Graph) -> str:
    """SPARQL update inserting every triple of ``graph``."""
    triples = graph.serialize(format="nt").strip()
    return f"INSERT DATA {{ {triples} }}"


def extract_inbox_links(graph: Graph) -> List[str]:
    """Objects of every ``ldp:inbox`` statement in ``graph``, whatever the subject."""
    return [str(o) for _, _, o in graph.triples((None, LDP.inbox, None))]


def parse_turtle(text: str, base: str) -> Graph:
    g = Graph()
    if text.strip():
        g.parse(data=text, format="turtle", publicID=base)
    return g


class LDESinLDPContainer:
    """
    Coarse client for an LDES in LDP container.

    The root container holds the event stream description and points at its
    fragments (child containers) through ``tree:relation`` and ``ldp:inbox``.
    Members are appended to a fragment with a plain LDP POST.
    """

    def __init__(
        self,
        url: str,
        session: PodSession,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url if url.endswith("/") else url + "/"
        self.session = session
        self._clock = clock

    @property
    def event_stream(self) -> URIRef:
        return URIRef(f"{self.url}#EventStream")

    # ---------- raw resource access ----------
    async def read_graph(self, url: Optional[str] = None) -> Graph:
        target = url or self.url
        res = await self.session.client.get(target, headers={"Accept": TURTLE})
        if not res.is_success:
            raise ContainerError.from_response("GET", target, res)
        return parse_turtle(res.text, target)

    async def patch(self, url: str, sparql_update: str) -> httpx.Response:
        return await self.session.client.patch(
            url,
            content=sparql_update.encode("utf-8"),
            headers={"Content-Type": SPARQL_UPDATE},
        )

    async def exists(self) -> bool:
        res = await self.session.client.head(self.url)
        if res.status_code == 404:
            return False
        if not res.is_success:
            raise ContainerError.from_response("HEAD", self.url, res)
        return True

    async def _create_container(self, url: str) -> None:
        res = await self.session.client.put(
            url,
            headers={"Content-Type": TURTLE, "Link": BASIC_CONTAINER_LINK},
        )
        if not res.is_success:
            raise ContainerError.from_response("PUT", url, res)

    async def _update_metadata(self, graph: Graph) -> None:
        res = await self.patch(self.url, insert_data(graph))
        if not res.is_success:
            raise ContainerError.from_response("PATCH", self.url, res)

    # ---------- LDES in LDP ----------
    async def initialise(self, config: dict) -> bool:
        """
        Make sure the container exists, describes its event stream and
        advertises at least one fragment as inbox. Missing parts left behind
        by an earlier, partially failed run are written again.
        Returns False when nothing had to be written.
        """
        tree_path = URIRef(config["treePath"])
        if await self.exists():
            metadata = await self.read_metadata()
        else:
            await self._create_container(self.url)
            metadata = Graph()

        changed = False
        if not any(metadata.subjects(RDF.type, LDES.EventStream)):
            g = Graph()
            g.add((self.event_stream, RDF.type, LDES.EventStream))
            g.add((self.event_stream, LDES.timestampPath, tree_path))
            g.add((self.event_stream, LDES.versionOfPath, Literal(config.get("versionOfPath", "1.0"))))
            g.add((self.event_stream, TREE.view, URIRef(self.url)))
            g.add((URIRef(self.url), RDF.type, TREE.Node))
            await self._update_metadata(g)
            changed = True

        if not extract_inbox_links(metadata):
            start = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
            await self.add_fragment(start, tree_path)
            changed = True

        if changed:
            logger.info(f"Initialised LDES in LDP container at {self.url}")
        else:
            logger.debug(f"Container {self.url} already set up; leaving it as is")
        return changed

    async def read_metadata(self) -> Graph:
        return await self.read_graph(self.url)

    def next_fragment_id(self, existing: Sequence[str] = ()) -> str:
        """
        Fixed-width millisecond id from the container clock, strictly above
        every numeric fragment id already in ``existing``.
        """
        candidate = int(self._clock() * 1000)
        for url in existing:
            name = url.rstrip("/").rsplit("/", 1)[-1]
            if name.isdigit():
                candidate = max(candidate, int(name) + 1)
        return f"{candidate:0{FRAGMENT_ID_WIDTH}d}"

    async def add_fragment(
        self,
        start: datetime,
        tree_path: URIRef | str,
        existing: Sequence[str] = (),
    ) -> str:
        """
        Create a fragment for members at or after ``start`` and advertise it
        as the container inbox. Its name always sorts after ``existing``.
        """
        fragment = f"{self.url}{self.next_fragment_id(existing)}/"
        await self._create_container(fragment)

        relation = BNode()
        g = Graph()
        g.add((URIRef(self.url), TREE.relation, relation))
        g.add((relation, RDF.type, TREE.GreaterThanOrEqualToRelation))
        g.add((relation, TREE.node, URIRef(fragment)))
        g.add((relation, TREE.path, URIRef(str(tree_path))))
        g.add((relation, TREE.value, Literal(start.isoformat(), datatype=XSD.dateTime)))
        g.add((URIRef(self.url), LDP.inbox, URIRef(fragment)))
        await self._update_metadata(g)

        logger.debug(f"Created fragment {fragment}")
        return fragment

    async def member_count(self, fragment: str) -> int:
        g = await self.read_graph(fragment)
        return sum(1 for _ in g.objects(URIRef(fragment), LDP.contains))

    async def append(self, fragment: str, graph: Graph) -> str:
        """POST ``graph`` as a new member of ``fragment``; returns its location."""
        res = await self.session.client.post(
            fragment,
            content=graph.serialize(format="turtle").encode("utf-8"),
            headers={"Content-Type": TURTLE},
        )
        if not res.is_success:
            raise ContainerError.from_response("POST", fragment, res)
        return res.headers.get("Location", fragment)
