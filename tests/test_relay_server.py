import asyncio
import json
import threading
import time
import unittest

from fastapi.testclient import TestClient

from config import Config
from relay_server import RelayHub, create_app
from tick_protocol import TickCounterPair
from variant_provider import StaticVariantProvider, VariantProvider, VariantProviderError


class FakeBridge:
    def __init__(self, pair=TickCounterPair()):
        self.pair = pair
        self.running = False
        self.stopped = False
        self.subscribers = []

    def start(self):
        self.running = True

    def stop(self):
        self.running = False
        self.stopped = True

    def subscribe(self, callback):
        self.subscribers.append(callback)

        def unsubscribe():
            self.subscribers.remove(callback)
        return unsubscribe

    def current_data(self):
        return self.pair

    def get_connection_status(self):
        return {"connected": True, "port": "/dev/ttyACM0", "lastData": self.pair.to_dict()}

    def emit(self, pair):
        self.pair = pair
        for callback in list(self.subscribers):
            callback(pair)


class UnconfiguredProvider(VariantProvider):
    name = "openai"

    def is_configured(self):
        return False

    def get_variations(self, word, context, position):
        raise AssertionError("should not be called")


class FailingProvider(VariantProvider):
    name = "failing"

    def get_variations(self, word, context, position):
        raise VariantProviderError("upstream 503")


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestRelayRoutes(unittest.TestCase):
    def _client(self, bridge=None, provider=None):
        self.bridge = bridge or FakeBridge(TickCounterPair(3, -4))
        provider = provider or StaticVariantProvider([["we", "I", "they"]])
        self.app = create_app(Config(), bridge=self.bridge, provider=provider)
        return TestClient(self.app)

    def test_lifespan_starts_and_stops_bridge(self):
        with self._client() as client:
            self.assertTrue(self.bridge.running)
            self.assertEqual(len(self.bridge.subscribers), 1)
            client.get("/api/arduino-status")

        self.assertTrue(self.bridge.stopped)
        self.assertEqual(self.bridge.subscribers, [])

    def test_status_route(self):
        with self._client() as client:
            response = client.get("/api/arduino-status")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            "connected": True,
            "port": "/dev/ttyACM0",
            "lastData": {"encoder1": 3, "encoder2": -4},
        })

    def test_variations(self):
        with self._client() as client:
            response = client.post("/api/word-variations",
                                   json={"word": "we", "context": "we remain", "position": 0})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"variations": ["I", "they"]})

    def test_missing_word_is_rejected(self):
        with self._client() as client:
            response = client.post("/api/word-variations", json={"context": "we remain"})
            empty = client.post("/api/word-variations", json={"word": ""})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"message": "Word is required"})
        self.assertEqual(empty.status_code, 400)

    def test_unconfigured_backend(self):
        with self._client(provider=UnconfiguredProvider()) as client:
            response = client.post("/api/word-variations", json={"word": "we"})

        self.assertEqual(response.status_code, 500)
        self.assertIn("error", response.json())

    def test_provider_error_returns_empty_list(self):
        with self._client(provider=FailingProvider()) as client:
            response = client.post("/api/word-variations", json={"word": "we"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"variations": []})


class TestRelayWebSocket(unittest.TestCase):
    def setUp(self):
        self.bridge = FakeBridge(TickCounterPair(3, -4))
        self.hub = RelayHub()
        self.app = create_app(Config(), bridge=self.bridge,
                              provider=StaticVariantProvider([]), hub=self.hub)

    def test_new_viewer_gets_current_pair(self):
        with TestClient(self.app) as client:
            with client.websocket_connect("/ws/encoder") as ws:
                self.assertEqual(ws.receive_json(), {
                    "type": "encoder",
                    "data": {"encoder1": 3, "encoder2": -4},
                })

    def test_bridge_updates_are_broadcast(self):
        with TestClient(self.app) as client:
            with client.websocket_connect("/ws/encoder") as first, \
                    client.websocket_connect("/ws/encoder") as second:
                first.receive_json()
                second.receive_json()
                self.assertTrue(_wait_for(lambda: len(self.hub.clients) == 2))

                self.bridge.emit(TickCounterPair(5, 6))

                expected = {"type": "encoder", "data": {"encoder1": 5, "encoder2": 6}}
                self.assertEqual(first.receive_json(), expected)
                self.assertEqual(second.receive_json(), expected)

    def test_viewer_removed_on_disconnect(self):
        with TestClient(self.app) as client:
            with client.websocket_connect("/ws/encoder") as ws:
                ws.receive_json()
                self.assertTrue(_wait_for(lambda: len(self.hub.clients) == 1))
            self.assertTrue(_wait_for(lambda: len(self.hub.clients) == 0))


class FakeViewerSocket:
    """Records pairs it was sent; optionally stalls on its first send"""

    def __init__(self, first_send_delay=0.0):
        self.first_send_delay = first_send_delay
        self.received = []
        self._stalled = False

    async def send_text(self, text):
        if self.first_send_delay and not self._stalled:
            self._stalled = True
            await asyncio.sleep(self.first_send_delay)
        self.received.append(json.loads(text)["data"])

    async def close(self):
        pass


class TestRelayHubOrdering(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.hub = RelayHub()
        await self.hub.start()

    async def asyncTearDown(self):
        await self.hub.close()

    async def _wait_for_messages(self, sockets, count, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if all(len(s.received) >= count for s in sockets):
                return
            await asyncio.sleep(0.01)
        self.fail("viewers did not receive all updates")

    async def test_slow_viewer_does_not_reorder_updates(self):
        slow = FakeViewerSocket(first_send_delay=0.05)
        fast = FakeViewerSocket()
        self.hub.clients.update({slow, fast})

        def publish():
            # Serial worker thread publishing two consecutive pairs
            self.hub.publish_threadsafe(TickCounterPair(0, 17))
            self.hub.publish_threadsafe(TickCounterPair(0, 34))

        publisher = threading.Thread(target=publish)
        publisher.start()
        publisher.join()

        await self._wait_for_messages([slow, fast], 2)

        expected = [{"encoder1": 0, "encoder2": 17}, {"encoder1": 0, "encoder2": 34}]
        self.assertEqual(fast.received, expected)
        self.assertEqual(slow.received, expected)

    async def test_failed_viewer_is_dropped_and_others_continue(self):
        class BrokenSocket(FakeViewerSocket):
            async def send_text(self, text):
                raise RuntimeError("socket closed")

        broken = BrokenSocket()
        healthy = FakeViewerSocket()
        self.hub.clients.update({broken, healthy})

        self.hub.publish_threadsafe(TickCounterPair(1, 1))
        self.hub.publish_threadsafe(TickCounterPair(2, 2))
        await self._wait_for_messages([healthy], 2)

        self.assertNotIn(broken, self.hub.clients)
        self.assertEqual([m["encoder1"] for m in healthy.received], [1, 2])


if __name__ == "__main__":
    unittest.main()
