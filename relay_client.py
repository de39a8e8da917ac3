"""
wordwheel - Relay Client
Viewer-side WebSocket consumer. Turns relay traffic into typed events
(ConnectionOpened, TickUpdate, ConnectionClosed) and reconnects after drops.
"""

import asyncio
from typing import Callable

import websockets
from websockets.exceptions import WebSocketException

from logging_utils import log_event
from tick_protocol import ConnectionClosed, ConnectionOpened, RelayEvent, decode_relay_message

EventSink = Callable[[RelayEvent], None]


class RelayClient:
    def __init__(self, url: str, sink: EventSink, reconnect_delay_s: float = 3.0,
                 connect: Callable = websockets.connect):
        self.url = url
        self.sink = sink
        self.reconnect_delay_s = reconnect_delay_s
        self._connect = connect
        self.connected = False
        self._closing = False

    async def run(self) -> None:
        """Connect, forward events, and reconnect until close() is called"""
        while not self._closing:
            reason = await self._run_once()
            if self.connected:
                self.connected = False
                self.sink(ConnectionClosed(reason))
                log_event("INFO", "RelayClient", "Relay disconnected", reason=reason)
            if self._closing:
                break
            await asyncio.sleep(self.reconnect_delay_s)

    async def _run_once(self) -> str:
        try:
            async with self._connect(self.url) as ws:
                self.connected = True
                self.sink(ConnectionOpened())
                log_event("INFO", "RelayClient", "Relay connected", url=self.url)
                async for raw in ws:
                    update = decode_relay_message(raw)
                    if update is None:
                        log_event("WARN", "RelayClient", "Dropped malformed relay message", raw=raw)
                        continue
                    self.sink(update)
            return "closed"
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            if not self.connected:
                log_event("WARN", "RelayClient", "Relay connection failed", url=self.url, error=e)
            return str(e) or e.__class__.__name__

    def close(self) -> None:
        self._closing = True


def relay_url(host: str, port: int, path: str, secure: bool = False) -> str:
    scheme = "wss" if secure else "ws"
    return f"{scheme}://{host}:{port}{path}"


def http_base_url(host: str, port: int, secure: bool = False) -> str:
    scheme = "https" if secure else "http"
    return f"{scheme}://{host}:{port}"
