"""
wordwheel - Rotation Fusion Engine
Combines mouse-drag deltas and hardware detent counters into one
continuous angle per dial.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional, Set

from config import DialConfig
from logging_utils import log_event
from tick_protocol import (
    ConnectionClosed,
    ConnectionOpened,
    RelayEvent,
    TickCounterPair,
    TickUpdate,
)


class Dial(IntEnum):
    """Logical dials; LEFT follows encoder1, RIGHT follows encoder2"""
    LEFT = 1
    RIGHT = 2


@dataclass
class DialAngle:
    """Both contributions in degrees, accumulated without wraparound"""
    mouse_contribution: float = 0.0
    hardware_contribution: float = 0.0

    @property
    def effective(self) -> float:
        return self.mouse_contribution + self.hardware_contribution


def normalize_delta(degrees: float) -> float:
    """Fold an angle difference into (-180, 180]"""
    folded = math.fmod(degrees, 360.0)
    if folded > 180.0:
        folded -= 360.0
    elif folded <= -180.0:
        folded += 360.0
    return folded


def pointer_angle(center_x: float, center_y: float, point_x: float, point_y: float) -> float:
    """Angle of a pointer position around a panel center, in degrees"""
    return math.degrees(math.atan2(point_y - center_y, point_x - center_x))


def counter_for(pair: TickCounterPair, dial: Dial) -> int:
    return pair.encoder1 if dial == Dial.LEFT else pair.encoder2


class RotationFusionEngine:
    """
    Owns one DialAngle per dial.

    Hardware counters are absolute since device boot. The engine keeps the
    last counter it consumed per dial as the baseline for the next delta;
    after every (re)connection the first counter pair is applied as an
    absolute position instead of a delta.
    """

    def __init__(self, dial_config: Optional[DialConfig] = None):
        self.dial_config = dial_config or DialConfig()
        self.angles: Dict[Dial, DialAngle] = {dial: DialAngle() for dial in Dial}
        self.baselines: Dict[Dial, int] = {dial: 0 for dial in Dial}
        self.needs_sync = True
        self.connected = False
        self.last_pair: Optional[TickCounterPair] = None

    # --- Mouse -------------------------------------------------------------

    def apply_mouse_delta(self, dial: Dial, degrees_delta: float) -> float:
        """Add a normalized pointer delta to the mouse contribution. Returns the applied delta."""
        delta = normalize_delta(degrees_delta)
        self.angles[dial].mouse_contribution += delta
        return delta

    # --- Hardware ----------------------------------------------------------

    def apply_hardware_tick(self, dial: Dial, previous_counter: int, new_counter: int) -> None:
        if new_counter == previous_counter:
            return

        gain = self.dial_config.degrees_per_detent
        delta = new_counter - previous_counter
        angle = self.angles[dial]
        if abs(delta) > self.dial_config.desync_threshold:
            # Counter reset or wrapped: treat the new count as an absolute position
            log_event("WARN", "Fusion", "Large encoder delta, treating as sync",
                      dial=dial.name, delta=delta)
            angle.hardware_contribution = new_counter * gain
        else:
            angle.hardware_contribution += delta * gain
        self.baselines[dial] = new_counter

    def resync(self, dial: Dial, counter: int) -> None:
        self.angles[dial].hardware_contribution = counter * self.dial_config.degrees_per_detent
        self.baselines[dial] = counter

    def effective_angle(self, dial: Dial) -> float:
        return self.angles[dial].effective

    # --- Relay events ------------------------------------------------------

    def handle_event(self, event: RelayEvent) -> Set[Dial]:
        """Apply one relay event in arrival order. Returns the dials whose effective angle moved."""
        if isinstance(event, ConnectionOpened):
            self.connected = True
            self.needs_sync = True
            return set()

        if isinstance(event, ConnectionClosed):
            self.connected = False
            self.needs_sync = True
            log_event("INFO", "Fusion", "Relay closed, will resync on next update", reason=event.reason)
            return set()

        if not isinstance(event, TickUpdate):
            log_event("WARN", "Fusion", "Dropped unknown relay event", event=event)
            return set()

        before = {dial: self.effective_angle(dial) for dial in Dial}
        pair = event.pair
        if self.needs_sync:
            for dial in Dial:
                self.resync(dial, counter_for(pair, dial))
            self.needs_sync = False
            log_event("INFO", "Fusion", "Synced encoder positions",
                      encoder1=pair.encoder1, encoder2=pair.encoder2)
        else:
            for dial in Dial:
                self.apply_hardware_tick(dial, self.baselines[dial], counter_for(pair, dial))
        self.last_pair = pair

        return {dial for dial in Dial if self.effective_angle(dial) != before[dial]}
