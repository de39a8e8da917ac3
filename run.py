#!/usr/bin/env python3
"""
wordwheel - two dials rewriting a sentence

`run.py bridge` starts the serial bridge and the WebSocket relay.
`run.py viewer` opens the dial window and connects to a running relay.
"""

import argparse
import sys
from typing import Optional, Sequence

from config import Config, ProviderBackend
from config_persistence import apply_env_overrides, load_config
from logging_utils import configure_logging, log_event


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run wordwheel")
    parser.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    parser.add_argument("--host", default=None, help="Relay host")
    parser.add_argument("--relay-port", type=int, default=None, help="Relay HTTP/WebSocket port")

    sub = parser.add_subparsers(dest="command", required=True)

    bridge = sub.add_parser("bridge", help="Serial bridge + WebSocket relay")
    bridge.add_argument("--serial-port", default=None, help="Serial port override (else ARDUINO_PORT / auto-detect)")
    bridge.add_argument("--baud", type=int, default=None)
    bridge.add_argument("--backend", choices=[b.value for b in ProviderBackend], default=None,
                        help="Wording-suggestion backend")

    sub.add_parser("viewer", help="Dial window")
    return parser


def resolve_config(args: argparse.Namespace, config: Optional[Config] = None) -> Config:
    """Saved config, then environment, then command line"""
    config = apply_env_overrides(config or load_config())
    if args.log_level:
        config.log_level = args.log_level
    if args.host:
        config.relay.host = args.host
    if args.relay_port:
        config.relay.port = args.relay_port
    if getattr(args, "serial_port", None):
        config.serial.port = args.serial_port
    if getattr(args, "baud", None):
        config.serial.baud_rate = args.baud
    if getattr(args, "backend", None):
        config.provider.backend = ProviderBackend(args.backend)
    return config


def run_bridge(config: Config) -> int:
    import uvicorn
    from relay_server import create_app

    app = create_app(config)
    log_event("INFO", "Startup", "Starting relay", host=config.relay.host, port=config.relay.port)
    uvicorn.run(app, host=config.relay.host, port=config.relay.port, log_level=config.log_level.lower())
    return 0


def run_viewer(config: Config) -> int:
    from PyQt6.QtWidgets import QApplication
    from main import WordwheelWindow

    app = QApplication([sys.argv[0]])
    app.setStyle("Fusion")
    window = WordwheelWindow(config)
    window.resize(760, 520)
    window.show()
    return app.exec()


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    config = resolve_config(args)
    configure_logging(config.log_level)

    if args.command == "bridge":
        exit_code = run_bridge(config)
    else:
        exit_code = run_viewer(config)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
