from typing import Callable, Optional

from config import Config
from serial_bridge import SerialBridge


def ensure_serial_bridge(
    existing_bridge: Optional[SerialBridge],
    config: Config,
    status_callback=None,
    *,
    force_new: bool = False,
    bridge_factory: Callable[..., SerialBridge] = SerialBridge,
) -> SerialBridge:
    """Create/start a serial bridge if needed, otherwise reuse the running one."""
    bridge = None if force_new else existing_bridge

    if bridge is None:
        bridge = bridge_factory(config, status_callback)
        bridge.start()
        return bridge

    if not bridge.running:
        bridge.start()
    return bridge


def shutdown_bridge(bridge: Optional[SerialBridge]) -> None:
    """Stop the bridge when one exists."""
    if bridge:
        bridge.stop()
