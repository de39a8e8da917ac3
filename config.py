# wordwheel Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import Enum
from typing import List

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

# Reserved tokens shared by the relay's suggestion route and the dial session
PREDICT_WORD = "[PREDICT]"
MASK_TOKEN = "[MASK]"

INITIAL_SENTENCE = (
    "We remain lingering this evening near the glassframe since the lunar "
    "lantern carries an excess of tender radiance"
)


class ProviderBackend(str, Enum):
    """Wording-suggestion backends the relay can serve from"""
    OPENAI = "openai"
    GEMINI = "gemini"
    STATIC = "static"


@dataclass
class SerialConfig:
    """Serial link to the encoder board"""
    port: str | None = None           # None = auto-detect
    baud_rate: int = 9600
    read_timeout_s: float = 0.1       # Readline timeout so the worker can notice stop()
    reconnect_interval_s: float = 10.0  # Retry period while disconnected
    auto_connect: bool = True


@dataclass
class RelayConfig:
    """WebSocket relay (bridge side) and relay client (viewer side)"""
    host: str = "127.0.0.1"
    port: int = 5000
    ws_path: str = "/ws/encoder"
    reconnect_delay_s: float = 3.0    # Viewer reconnect delay after a drop
    request_timeout_s: float = 10.0   # Viewer -> /api/word-variations timeout


@dataclass
class ProviderConfig:
    """Word-variation backend"""
    backend: ProviderBackend = ProviderBackend.OPENAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_url: str = "https://api.openai.com/v1/chat/completions"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-pro"
    temperature: float = 0.8
    max_tokens: int = 50
    suggestion_count: int = 5
    timeout_s: float = 15.0
    # Offline backend: each inner list is a group of interchangeable words
    static_bank: List[List[str]] = field(default_factory=lambda: [
        ["we", "I", "they", "she", "he"],
        ["remain", "stay", "linger", "wait", "rest"],
        ["evening", "night", "dusk", "twilight", "hour"],
        ["near", "by", "beside", "at", "under"],
        ["lunar", "silver", "pale", "quiet", "distant"],
        ["tender", "soft", "gentle", "warm", "faint"],
    ])


@dataclass
class DialConfig:
    """Dial gain and selection thresholds"""
    degrees_per_detent: float = 3.6   # 100 detents = one revolution
    desync_threshold: int = 100       # |delta| above this = counter reset
    step_degrees: float = 60.0        # Angle per variant / per word step
    window_width: int = 6             # Words shown around the cursor


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    serial: SerialConfig = field(default_factory=SerialConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    dial: DialConfig = field(default_factory=DialConfig)

    initial_sentence: str = INITIAL_SENTENCE
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; Enum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, Enum):
            try:
                setattr(target, key, current.__class__(value))
            except ValueError:
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, type=current.__class__.__name__)
            continue

        setattr(target, key, value)


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Adds defaults for newly introduced fields and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        # Pre-versioned files stored the reconnect period in milliseconds
        interval = getattr(config.serial, 'reconnect_interval_s', 10.0)
        if interval is None:
            config.serial.reconnect_interval_s = 10.0
        elif interval > 1000:
            config.serial.reconnect_interval_s = interval / 1000.0
        if getattr(config.dial, 'window_width', 6) is None:
            config.dial.window_width = 6

    if getattr(config, 'log_level', "INFO") is None:
        config.log_level = "INFO"
    if not getattr(config, 'initial_sentence', None):
        config.initial_sentence = INITIAL_SENTENCE

    # Always clamp the ranges the selection logic depends on
    try:
        step = float(getattr(config.dial, 'step_degrees', 60.0))
    except (TypeError, ValueError):
        step = 60.0
    config.dial.step_degrees = step if step > 0 else 60.0

    try:
        width = int(getattr(config.dial, 'window_width', 6))
    except (TypeError, ValueError):
        width = 6
    config.dial.window_width = max(1, width)

    try:
        interval = float(getattr(config.serial, 'reconnect_interval_s', 10.0))
    except (TypeError, ValueError):
        interval = 10.0
    config.serial.reconnect_interval_s = max(0.5, interval)

    config.version = CURRENT_CONFIG_VERSION
