import asyncio
import unittest
from datetime import datetime, timezone

import httpx
from rdflib import Graph, Literal, URIRef

from fake_pod import FakePod
from ldes_publisher.annotation import QueryAnnotationPublisher
from ldes_publisher.errors import ContainerError
from ldes_publisher.inbox import InboxSynchronizer, inbox_patch_body
from ldes_publisher.publisher import LDESPublisher
from ldes_publisher.queries import QueryRegistry
from ldes_publisher.schemas import InboxSyncResult
from ldes_publisher.settings import Settings

LIL = "https://pod/aggregation/"
START = datetime(2024, 1, 1, 0, tzinfo=timezone.utc)
END = datetime(2024, 1, 1, 1, tzinfo=timezone.utc)

STREAM_METADATA = f"""
@prefix ldes: <https://w3id.org/ldes#> .
@prefix ldp: <http://www.w3.org/ns/ldp#> .
<{LIL}#EventStream> a ldes:EventStream .
<{LIL}> ldp:inbox <{LIL}1704060000000/> .
"""


def _settings(**overrides) -> Settings:
    values = {"LIL_URL": LIL, "LDES_QUERY_NAME": "averageHRPatient1"}
    values.update(overrides)
    return Settings(**values)


def _resource(n: int) -> Graph:
    g = Graph()
    g.add((URIRef(f"https://pod/avg/{n}"), URIRef("https://saref.etsi.org/core/hasValue"), Literal(60 + n)))
    return g


class RecordingAnnotationPublisher:
    def __init__(self, error: Exception = None):
        self.calls = []
        self.error = error

    async def publish(self, query, container_location, resources, tree_path, config, window, session):
        self.calls.append(
            {
                "query": query,
                "container": container_location,
                "resources": resources,
                "tree_path": tree_path,
                "config": config,
                "window": window,
                "session": session,
            }
        )
        if self.error is not None:
            raise self.error
        return f"{container_location}member"


class RecordingSynchronizer:
    def __init__(self, status: str = "patched"):
        self.calls = []
        self.status = status

    async def update(self, container_location, session):
        self.calls.append(container_location)
        return InboxSyncResult(status=self.status, container=container_location)


class TestPublish(unittest.TestCase):
    def setUp(self) -> None:
        self.pod = FakePod()
        self.annotations = RecordingAnnotationPublisher()
        self.synchronizer = RecordingSynchronizer()
        self.registry = QueryRegistry({"averageHRPatient1": "SELECT $start $end"})

    def _publisher(self, **overrides) -> LDESPublisher:
        publisher = LDESPublisher(
            _settings(**overrides),
            registry=self.registry,
            annotation_publisher=self.annotations,
            synchronizer=self.synchronizer,
        )
        publisher.session = self.pod.session()
        publisher.initialised = True
        return publisher

    def _publish(self, publisher: LDESPublisher, resources):
        async def scenario():
            result = await publisher.publish(resources, START, END)
            syncs = await publisher.wait_for_sync()
            await publisher.close()
            return result, syncs

        return asyncio.run(scenario())

    def test_empty_resources_is_a_no_op(self) -> None:
        result, syncs = self._publish(self._publisher(), [])
        self.assertFalse(result)
        self.assertEqual(result.status, "config_error")
        self.assertEqual(self.annotations.calls, [])
        self.assertEqual(syncs, [])
        self.assertEqual(self.pod.requests, [])

    def test_unregistered_query(self) -> None:
        result, _ = self._publish(self._publisher(LDES_QUERY_NAME="unknownQuery"), [_resource(1)])
        self.assertFalse(result)
        self.assertEqual(result.status, "config_error")
        self.assertIn("unknownQuery", result.reason)
        self.assertEqual(self.annotations.calls, [])
        self.assertEqual(self.synchronizer.calls, [])

    def test_publish_appends_once_then_syncs_once(self) -> None:
        publisher = self._publisher()
        session = publisher.session
        resources = [_resource(1), _resource(2)]
        result, syncs = self._publish(publisher, resources)

        self.assertTrue(result)
        self.assertEqual(result.status, "ok")
        self.assertEqual(result.resource_count, 2)
        self.assertEqual(len(self.annotations.calls), 1)
        call = self.annotations.calls[0]
        self.assertEqual(call["query"], f"SELECT {START.isoformat()} {END.isoformat()}")
        self.assertEqual(call["container"], LIL)
        self.assertEqual(call["resources"], resources)
        self.assertEqual(call["window"].start, START)
        self.assertEqual(call["window"].end, END)
        self.assertIs(call["session"], session)
        self.assertEqual(call["config"], publisher.settings.ldes_config())
        self.assertEqual(self.synchronizer.calls, [LIL])
        self.assertEqual([s.status for s in syncs], ["patched"])

    def test_append_failure_is_a_remote_error(self) -> None:
        self.annotations.error = ContainerError("POST failed: 500")
        with self.assertLogs("ldes-publisher.publisher", level="ERROR"):
            result, _ = self._publish(self._publisher(), [_resource(1)])
        self.assertFalse(result)
        self.assertEqual(result.status, "remote_error")
        self.assertIn("POST failed", result.reason)
        self.assertEqual(self.synchronizer.calls, [])

    def test_transport_failure_is_a_remote_error(self) -> None:
        self.annotations.error = httpx.ConnectError("connection refused")
        with self.assertLogs("ldes-publisher.publisher", level="ERROR"):
            result, _ = self._publish(self._publisher(), [_resource(1)])
        self.assertEqual(result.status, "remote_error")

    def test_publish_before_initialise(self) -> None:
        publisher = LDESPublisher(
            _settings(),
            registry=self.registry,
            annotation_publisher=self.annotations,
            synchronizer=self.synchronizer,
        )
        result = asyncio.run(publisher.publish([_resource(1)], START, END))
        self.assertEqual(result.status, "config_error")
        self.assertEqual(self.annotations.calls, [])

    def test_inverted_window_rejected(self) -> None:
        publisher = self._publisher()
        result = asyncio.run(publisher.publish([_resource(1)], END, START))
        self.assertEqual(result.status, "config_error")
        self.assertEqual(self.annotations.calls, [])
        asyncio.run(publisher.session.close())

    def test_failed_sync_is_counted(self) -> None:
        self.synchronizer.status = "failed"
        publisher = self._publisher()
        result, syncs = self._publish(publisher, [_resource(1)])
        self.assertTrue(result)
        self.assertEqual(syncs[0].status, "failed")
        self.assertEqual(publisher.sync_failures, 1)
        self.assertEqual(publisher.pending_syncs, set())


class TestInitialise(unittest.TestCase):
    def _initialise(self, pod: FakePod):
        async def session_factory():
            return pod.session()

        publisher = LDESPublisher(_settings(), session_factory=session_factory)
        return asyncio.run(publisher.initialise()), publisher

    def test_fresh_pod(self) -> None:
        pod = FakePod()
        ok, publisher = self._initialise(pod)
        self.assertTrue(ok)
        self.assertTrue(publisher.initialised)
        self.assertIsNotNone(publisher.session)
        self.assertEqual(len(pod.calls("PUT")), 2)

    def test_existing_stream(self) -> None:
        pod = FakePod()
        pod.seed(LIL, STREAM_METADATA)
        ok, _ = self._initialise(pod)
        self.assertTrue(ok)
        self.assertEqual(pod.calls("PUT"), [])

    def test_no_event_stream_declared(self) -> None:
        pod = FakePod()
        pod.seed(LIL, f"<{LIL}> a <https://w3id.org/tree#Node> .")
        with self.assertLogs("ldes-publisher.publisher", level="ERROR"):
            ok, publisher = self._initialise(pod)
        self.assertFalse(ok)
        self.assertFalse(publisher.initialised)
        self.assertIsNone(publisher.session)

    def test_metadata_read_failure(self) -> None:
        pod = FakePod()
        pod.seed(LIL, STREAM_METADATA)
        pod.fail("GET", LIL, 500)
        with self.assertLogs("ldes-publisher.publisher", level="ERROR"):
            ok, publisher = self._initialise(pod)
        self.assertFalse(ok)
        self.assertFalse(publisher.initialised)

    def test_several_streams_uses_first(self) -> None:
        pod = FakePod()
        pod.seed(LIL, STREAM_METADATA + f"<{LIL}#Other> a <https://w3id.org/ldes#EventStream> .")
        with self.assertLogs("ldes-publisher.publisher", level="WARNING") as logs:
            ok, _ = self._initialise(pod)
        self.assertTrue(ok)
        self.assertTrue(any("2 LDES declarations" in line for line in logs.output))


class TestPublishAgainstPod(unittest.TestCase):
    def test_publish_then_inbox_points_at_latest_fragment(self) -> None:
        pod = FakePod()
        pod.seed(LIL, STREAM_METADATA + f"<{LIL}> <http://www.w3.org/ns/ldp#inbox> <{LIL}1704063600000/> .")
        pod.seed(f"{LIL}1704060000000/")
        pod.seed(f"{LIL}1704063600000/")

        async def session_factory():
            return pod.session()

        publisher = LDESPublisher(
            _settings(),
            annotation_publisher=QueryAnnotationPublisher(fragment_size=10),
            synchronizer=InboxSynchronizer(),
            session_factory=session_factory,
        )

        async def scenario():
            assert await publisher.initialise()
            result = await publisher.publish([_resource(1), _resource(2)], START, END)
            syncs = await publisher.wait_for_sync()
            await publisher.close()
            return result, syncs

        result, syncs = asyncio.run(scenario())

        self.assertTrue(result)
        posts = pod.calls("POST")
        self.assertEqual(len(posts), 1)
        self.assertEqual(posts[0][1], f"{LIL}1704063600000/")
        patches = pod.calls("PATCH")
        self.assertEqual(len(patches), 1)
        self.assertEqual(patches[0][2], inbox_patch_body(LIL, f"{LIL}1704063600000/"))
        self.assertEqual(syncs[0].inbox, f"{LIL}1704063600000/")
        self.assertLess(pod.requests.index(posts[0]), pod.requests.index(patches[0]))

    def test_rollover_keeps_inbox_on_newest_fragment(self) -> None:
        pod = FakePod()
        pod.seed(LIL, STREAM_METADATA)
        pod.seed(f"{LIL}1704060000000/")

        async def session_factory():
            return pod.session()

        publisher = LDESPublisher(
            _settings(),
            annotation_publisher=QueryAnnotationPublisher(fragment_size=1),
            session_factory=session_factory,
        )
        hours = [datetime(2024, 1, 1, h, tzinfo=timezone.utc) for h in range(5)]

        async def scenario():
            assert await publisher.initialise()
            inboxes = []
            for n, (start, end) in enumerate(zip(hours, hours[1:])):
                assert await publisher.publish([_resource(n)], start, end)
                syncs = await publisher.wait_for_sync()
                inboxes.append(syncs[0].inbox)
            await publisher.close()
            return inboxes

        inboxes = asyncio.run(scenario())

        targets = [c[1] for c in pod.calls("POST")]
        self.assertEqual(len(targets), 4)
        self.assertEqual(len(set(targets)), 4)
        self.assertEqual(targets[0], f"{LIL}1704060000000/")
        self.assertEqual(inboxes, targets)
        self.assertEqual(publisher.sync_failures, 0)

    def test_container_url_without_trailing_slash(self) -> None:
        pod = FakePod()

        async def session_factory():
            return pod.session()

        settings = _settings(LIL_URL="https://pod/aggregation")
        self.assertEqual(settings.lil_url, LIL)
        publisher = LDESPublisher(settings, session_factory=session_factory)

        async def scenario():
            assert await publisher.initialise()
            result = await publisher.publish([_resource(1)], START, END)
            syncs = await publisher.wait_for_sync()
            await publisher.close()
            return result, syncs

        result, syncs = asyncio.run(scenario())

        self.assertTrue(result)
        self.assertEqual(syncs[0].status, "patched")
        self.assertEqual(syncs[0].container, LIL)
        self.assertTrue(all(c[1].startswith(LIL) for c in pod.requests))


if __name__ == "__main__":
    unittest.main()
