"""
wordwheel - Dial Session
Client-side driver: feeds mouse deltas and relay events through the
rotation fusion engine into the selection state machine, one input at a
time on a single asyncio loop.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Set, Union

from config import Config
from logging_utils import log_event
from rotation_fusion import Dial, RotationFusionEngine
from selection_state import SelectionSnapshot, SelectionStateMachine, VariantRequest
from tick_protocol import (
    ConnectionClosed,
    ConnectionOpened,
    RelayEvent,
    TickCounterPair,
    TickUpdate,
)
from variant_provider import VariantProvider, VariantProviderError


@dataclass(frozen=True)
class MouseDelta:
    """Pointer moved while dragging a dial; degrees since the previous sample"""
    dial: Dial
    degrees: float


SessionInput = Union[MouseDelta, TickUpdate, ConnectionOpened, ConnectionClosed]


@dataclass(frozen=True)
class SessionSnapshot:
    selection: SelectionSnapshot
    left_mouse: float
    left_hardware: float
    right_mouse: float
    right_hardware: float
    connected: bool
    last_pair: Optional[TickCounterPair]

    @property
    def left_angle(self) -> float:
        return self.left_mouse + self.left_hardware

    @property
    def right_angle(self) -> float:
        return self.right_mouse + self.right_hardware


class DialSession:
    """
    Owns the fusion engine and the state machine for one viewer.

    Inputs are queued and processed strictly in order. Variant fetches run
    as background tasks and are re-validated when they land; a sentence
    extension is awaited inline so the pending-extension cursor resolves
    before the next input is taken.
    """

    def __init__(self, provider: VariantProvider, config: Optional[Config] = None,
                 words: Optional[Sequence[str]] = None,
                 on_change: Optional[Callable[[SessionSnapshot], None]] = None):
        self.config = config or Config()
        self.provider = provider
        self.on_change = on_change
        self.fusion = RotationFusionEngine(self.config.dial)
        self.state = SelectionStateMachine(
            words if words is not None else self.config.initial_sentence.split(),
            step_degrees=self.config.dial.step_degrees,
            window_width=self.config.dial.window_width,
        )
        self._queue: "asyncio.Queue[SessionInput]" = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()
        # False until the first counter pair of the session has been seen
        self._anchored = False

    # --- Input -------------------------------------------------------------

    def submit(self, item: SessionInput) -> None:
        """Queue an input; must be called on the session's loop"""
        self._queue.put_nowait(item)

    async def run(self) -> None:
        """Process queued inputs forever"""
        while True:
            item = await self._queue.get()
            try:
                await self.process(item)
            except Exception as e:
                log_event("ERROR", "Session", "Input handling failed", item=item, error=e)
            finally:
                self._queue.task_done()

    async def process(self, item: SessionInput) -> None:
        if isinstance(item, MouseDelta):
            self.fusion.apply_mouse_delta(item.dial, item.degrees)
            await self._dials_moved({item.dial})
        else:
            await self.handle_relay_event(item)

    async def handle_relay_event(self, event: RelayEvent) -> None:
        syncing = isinstance(event, TickUpdate) and self.fusion.needs_sync
        right_before = self.fusion.effective_angle(Dial.RIGHT)
        changed = self.fusion.handle_event(event)

        if syncing and not self._anchored:
            # The board's boot-relative position is not navigation input.
            # Later resyncs navigate by whatever was turned while disconnected.
            self.state.rebase_navigation(self.fusion.effective_angle(Dial.RIGHT) - right_before)
            changed.discard(Dial.RIGHT)
        if syncing:
            self._anchored = True

        if changed:
            await self._dials_moved(changed)
        else:
            self._notify()

    # --- Transitions -------------------------------------------------------

    async def _dials_moved(self, dials: Set[Dial]) -> None:
        if Dial.LEFT in dials:
            request = self.state.on_left_angle(self.fusion.effective_angle(Dial.LEFT))
            if request is not None:
                self._spawn(self._fetch_variants(request))

        if Dial.RIGHT in dials:
            request = self.state.on_right_angle(self.fusion.effective_angle(Dial.RIGHT))
            if request is not None:
                self._notify()
                await self._extend(request)

        self._notify()

    async def _fetch_variants(self, request: VariantRequest) -> None:
        try:
            variations = await self._call_provider(request)
        except VariantProviderError as e:
            log_event("WARN", "Session", "Variant fetch failed, keeping word",
                      word=request.word, error=e)
            self.state.fetch_failed(request)
            return
        if self.state.apply_variants(request, variations):
            self._notify()

    async def _extend(self, request: VariantRequest) -> None:
        try:
            variations = await self._call_provider(request)
        except VariantProviderError as e:
            log_event("WARN", "Session", "Prediction request failed", error=e)
            variations = []
        self.state.complete_extension(request, variations)

    async def _call_provider(self, request: VariantRequest):
        return await asyncio.to_thread(
            self.provider.get_variations, request.word, request.context, request.position,
        )

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight variant fetches"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Output ------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        left = self.fusion.angles[Dial.LEFT]
        right = self.fusion.angles[Dial.RIGHT]
        return SessionSnapshot(
            selection=self.state.snapshot(),
            left_mouse=left.mouse_contribution,
            left_hardware=left.hardware_contribution,
            right_mouse=right.mouse_contribution,
            right_hardware=right.hardware_contribution,
            connected=self.fusion.connected,
            last_pair=self.fusion.last_pair,
        )

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self.snapshot())
