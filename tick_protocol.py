"""
wordwheel - Tick Protocol
Serial frame parsing, relay message encoding and the typed relay events.
"""

import json
import re
from dataclasses import dataclass
from typing import Optional, Union

_TEXT_FRAME = re.compile(r"E1:(-?\d+),E2:(-?\d+)")


@dataclass(frozen=True)
class TickCounterPair:
    """Absolute detent counters reported by the encoder board"""
    encoder1: int = 0
    encoder2: int = 0

    def to_dict(self) -> dict:
        return {"encoder1": self.encoder1, "encoder2": self.encoder2}


@dataclass(frozen=True)
class TickUpdate:
    pair: TickCounterPair


@dataclass(frozen=True)
class ConnectionOpened:
    pass


@dataclass(frozen=True)
class ConnectionClosed:
    reason: str = ""


RelayEvent = Union[TickUpdate, ConnectionOpened, ConnectionClosed]


def _as_int(value) -> Optional[int]:
    # bool is an int subclass but never a valid counter
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _pair_from_mapping(data) -> Optional[TickCounterPair]:
    if not isinstance(data, dict):
        return None
    encoder1 = _as_int(data.get("encoder1"))
    encoder2 = _as_int(data.get("encoder2"))
    if encoder1 is None or encoder2 is None:
        return None
    return TickCounterPair(encoder1, encoder2)


def parse_tick_line(line: str) -> Optional[TickCounterPair]:
    """
    Parse one serial line into a counter pair.

    Accepts ``E1:<int>,E2:<int>`` and ``{"encoder1": <int>, "encoder2": <int>}``.
    Returns None for anything else.
    """
    msg = line.strip()
    if not msg:
        return None

    if msg.startswith("{"):
        try:
            return _pair_from_mapping(json.loads(msg))
        except ValueError:
            return None

    match = _TEXT_FRAME.search(msg)
    if match is None:
        return None
    return TickCounterPair(int(match.group(1)), int(match.group(2)))


def encode_relay_message(pair: TickCounterPair) -> str:
    """Relay push message sent to every viewer"""
    return json.dumps({"type": "encoder", "data": pair.to_dict()})


def decode_relay_message(raw: Union[str, bytes]) -> Optional[TickUpdate]:
    """Decode a relay push message; None when it is not a well-formed encoder update"""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict) or message.get("type") != "encoder":
        return None
    pair = _pair_from_mapping(message.get("data"))
    if pair is None:
        return None
    return TickUpdate(pair)
