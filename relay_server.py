"""
wordwheel - Realtime Relay
FastAPI app that fans encoder updates out to every viewer over WebSocket
and serves the bridge status and word-variation routes.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bridge_lifecycle import ensure_serial_bridge, shutdown_bridge
from config import Config
from logging_utils import log_event
from tick_protocol import TickCounterPair, encode_relay_message
from variant_provider import VariantProvider, VariantProviderError, create_provider


class VariationRequest(BaseModel):
    word: Optional[str] = None
    context: Optional[str] = None
    position: Optional[int] = None


class RelayHub:
    """
    Viewer registry and broadcaster.

    Bridge callbacks arrive on the serial thread and are queued onto the
    event loop with call_soon_threadsafe. One consumer task drains the
    queue, so every viewer receives pairs in the order the bridge
    published them.
    """

    def __init__(self):
        self.clients: Set[WebSocket] = set()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional["asyncio.Queue[TickCounterPair]"] = None
        self._consumer: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Bind to the running loop and start the broadcaster"""
        self.loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._consumer = asyncio.create_task(self._broadcast_loop())

    def publish_threadsafe(self, pair: TickCounterPair) -> None:
        """Bridge subscriber: queue a broadcast from any thread"""
        if self.loop is None or self.loop.is_closed() or self._queue is None:
            return
        self.loop.call_soon_threadsafe(self._queue.put_nowait, pair)

    async def _broadcast_loop(self) -> None:
        while True:
            pair = await self._queue.get()
            try:
                await self.broadcast(pair)
            finally:
                self._queue.task_done()

    async def broadcast(self, pair: TickCounterPair) -> int:
        """Send one update to all viewers; returns how many received it"""
        if not self.clients:
            log_event("DEBUG", "Relay", "No viewers connected to receive encoder data")
            return 0

        message = encode_relay_message(pair)
        disconnected = set()
        sent = 0
        for client in list(self.clients):
            try:
                await client.send_text(message)
                sent += 1
            except Exception as e:
                log_event("WARN", "Relay", "Dropping viewer after send error", error=e)
                disconnected.add(client)

        self.clients -= disconnected
        return sent

    async def add_viewer(self, websocket: WebSocket, current: TickCounterPair) -> None:
        """Send the last known pair, then start receiving broadcasts"""
        await websocket.send_text(encode_relay_message(current))
        self.clients.add(websocket)
        log_event("INFO", "Relay", "Viewer connected", total=len(self.clients))

    def remove_viewer(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)
        log_event("INFO", "Relay", "Viewer disconnected", total=len(self.clients))

    async def close(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None
        for client in list(self.clients):
            try:
                await client.close()
            except Exception as e:
                log_event("DEBUG", "Relay", "Error closing viewer", error=e)
        self.clients.clear()


def create_app(config: Config, bridge=None, provider: Optional[VariantProvider] = None,
               hub: Optional[RelayHub] = None) -> FastAPI:
    """
    Build the relay application.

    ``bridge`` defaults to a SerialBridge started in the lifespan; tests and
    alternative tick sources can pass any object with start/stop/subscribe/
    current_data/get_connection_status.
    """
    hub = hub or RelayHub()
    provider = provider or create_provider(config.provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await hub.start()
        active = ensure_serial_bridge(bridge, config)
        unsubscribe = active.subscribe(hub.publish_threadsafe)
        app.state.bridge = active
        log_event("INFO", "Relay", "Relay started", path=config.relay.ws_path)
        try:
            yield
        finally:
            unsubscribe()
            shutdown_bridge(active)
            await hub.close()
            log_event("INFO", "Relay", "Relay stopped")

    app = FastAPI(title="wordwheel relay", lifespan=lifespan)
    app.state.hub = hub
    app.state.provider = provider

    @app.get("/api/arduino-status")
    async def arduino_status():
        try:
            return app.state.bridge.get_connection_status()
        except Exception as e:
            log_event("ERROR", "Relay", "Error getting bridge status", error=e)
            return JSONResponse(status_code=500, content={"message": str(e) or "Failed to get status"})

    @app.post("/api/word-variations")
    async def word_variations(request: VariationRequest):
        if not request.word:
            return JSONResponse(status_code=400, content={"message": "Word is required"})

        if not provider.is_configured():
            return JSONResponse(status_code=500, content={
                "error": "No API key configured (OPENAI_API_KEY or GEMINI_API_KEY required)",
            })

        try:
            variations = await asyncio.to_thread(
                provider.get_variations, request.word, request.context, request.position,
            )
        except VariantProviderError as e:
            log_event("ERROR", "Relay", "Error generating variations", error=e)
            variations = []
        return {"variations": variations}

    @app.websocket(config.relay.ws_path)
    async def encoder_socket(websocket: WebSocket):
        await websocket.accept()
        try:
            await hub.add_viewer(websocket, app.state.bridge.current_data())
            # Viewers never send; receiving just waits for the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            hub.remove_viewer(websocket)

    return app
