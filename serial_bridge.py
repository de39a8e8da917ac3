"""
wordwheel - Serial Bridge
Reads encoder counter frames from the microcontroller over serial and
republishes every change to subscribers.
"""

import re
import threading
import time
from typing import Callable, List, Optional

import serial
from serial.tools import list_ports

from config import Config
from logging_utils import log_event
from tick_protocol import TickCounterPair, parse_tick_line

TickSubscriber = Callable[[TickCounterPair], None]

# Common device-path patterns for USB serial boards
_BOARD_PORT_PATTERNS = [
    re.compile(r"usbmodem", re.IGNORECASE),    # macOS: /dev/cu.usbmodem*
    re.compile(r"usbserial", re.IGNORECASE),   # macOS: /dev/cu.usbserial*
    re.compile(r"ttyUSB", re.IGNORECASE),      # Linux: /dev/ttyUSB*
    re.compile(r"ttyACM", re.IGNORECASE),      # Linux: /dev/ttyACM*
    re.compile(r"^COM\d+$", re.IGNORECASE),    # Windows: COM3, COM4, ...
]


def list_serial_ports(lister: Callable = list_ports.comports) -> List[str]:
    try:
        return [port.device for port in lister()]
    except (OSError, serial.SerialException) as e:
        log_event("ERROR", "SerialBridge", "Could not list serial ports", error=e)
        return []


def find_serial_port(override: Optional[str] = None,
                     lister: Callable = list_ports.comports) -> Optional[str]:
    """Pick the encoder board's port: explicit override, pattern match, then first port"""
    if override:
        return override

    ports = list_serial_ports(lister)
    if not ports:
        log_event("WARN", "SerialBridge", "No serial ports found")
        return None

    log_event("INFO", "SerialBridge", "Available serial ports", ports=", ".join(ports))
    for port in ports:
        if any(pattern.search(port) for pattern in _BOARD_PORT_PATTERNS):
            return port

    log_event("WARN", "SerialBridge", "No board pattern matched, using first port",
              port=ports[0], hint="set ARDUINO_PORT to choose")
    return ports[0]


class SerialBridge:
    """
    Owns the serial connection to the encoder board.

    A worker thread reads lines, keeps the last counter pair and calls every
    subscriber when the pair changes. While disconnected it retries on a fixed
    interval, always closing the stale handle before opening a new one.
    """

    def __init__(self, config: Config,
                 status_callback: Optional[Callable[[str, bool], None]] = None,
                 serial_factory: Callable = serial.Serial,
                 port_finder: Callable[[Optional[str]], Optional[str]] = find_serial_port):
        """
        Args:
            config: Application configuration
            status_callback: Called with (status_message, is_connected)
            serial_factory: Opens a port; called as factory(path, baudrate, timeout=...)
            port_finder: Resolves the port path from the configured override
        """
        self.config = config
        self.status_callback = status_callback
        self.serial_factory = serial_factory
        self.port_finder = port_finder

        # Connection state
        self.serial = None
        self.port_path: Optional[str] = None
        self.connected = False
        self.running = False

        self._current = TickCounterPair()
        self._state_lock = threading.Lock()
        self._subscribers: List[TickSubscriber] = []
        self._stop_event = threading.Event()
        self._next_attempt = 0.0

        self.worker_thread: Optional[threading.Thread] = None

    # --- Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Start the bridge"""
        if self.running:
            return

        self.running = True
        self._stop_event.clear()
        if self.config.serial.auto_connect:
            self.connect()
        self.worker_thread = threading.Thread(target=self._worker_loop, name="serial-bridge", daemon=True)
        self.worker_thread.start()
        log_event("INFO", "SerialBridge", "Started")

    def stop(self) -> None:
        """Stop the bridge and release the port"""
        self.running = False
        self._stop_event.set()
        if self.worker_thread is not None and self.worker_thread is not threading.current_thread():
            self.worker_thread.join(timeout=2.0)
        self.worker_thread = None
        self.disconnect()
        log_event("INFO", "SerialBridge", "Stopped")

    # --- Subscribers -------------------------------------------------------

    def subscribe(self, callback: TickSubscriber) -> Callable[[], None]:
        """Register for counter-pair changes. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def current_data(self) -> TickCounterPair:
        with self._state_lock:
            return self._current

    def get_connection_status(self) -> dict:
        handle = self.serial
        is_open = bool(handle is not None and getattr(handle, "is_open", False))
        return {
            "connected": self.connected and is_open,
            "port": self.port_path if handle is not None else None,
            "lastData": self.current_data().to_dict(),
        }

    # --- Connection --------------------------------------------------------

    def connect(self) -> bool:
        """Open the board's serial port"""
        if self.connected and self.serial is not None and getattr(self.serial, "is_open", False):
            return True

        # A stale handle must be released before the device is opened again
        self._close_handle()

        port = self.port_finder(self.config.serial.port)
        if not port:
            self._notify_status("Encoder board not found (set ARDUINO_PORT)", False)
            log_event("ERROR", "SerialBridge", "Could not find board port")
            self.connected = False
            return False

        try:
            log_event("INFO", "SerialBridge", "Connecting", port=port, baud=self.config.serial.baud_rate)
            self.serial = self.serial_factory(
                port,
                self.config.serial.baud_rate,
                timeout=self.config.serial.read_timeout_s,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            self.serial = None
            self.connected = False
            self._notify_status(f"Connection failed: {e}", False)
            log_event("ERROR", "SerialBridge", "Connection failed", port=port, error=e)
            return False

        self.port_path = port
        self.connected = True
        self._notify_status(f"Connected to encoder board at {port}", True)
        log_event("INFO", "SerialBridge", "Connected", port=port)
        return True

    def disconnect(self) -> None:
        was_connected = self.connected
        self._close_handle()
        self.connected = False
        if was_connected:
            self._notify_status("Disconnected", False)
            log_event("INFO", "SerialBridge", "Disconnected", port=self.port_path)

    def _close_handle(self) -> None:
        handle, self.serial = self.serial, None
        if handle is None:
            return
        try:
            handle.close()
        except (serial.SerialException, OSError) as e:
            log_event("ERROR", "SerialBridge", "Error closing port", error=e)

    # --- Frames ------------------------------------------------------------

    def handle_line(self, line: str) -> bool:
        """Parse one frame and publish it when the counters changed. Returns True on publish."""
        pair = parse_tick_line(line)
        if pair is None:
            if line.strip():
                log_event("WARN", "SerialBridge", "Unexpected serial format",
                          line=repr(line.strip()), expected="E1:<number>,E2:<number>")
            return False

        with self._state_lock:
            previous = self._current
            if pair == previous:
                return False
            self._current = pair

        log_event("DEBUG", "SerialBridge", "Encoder update",
                  e1=f"{previous.encoder1}->{pair.encoder1}",
                  e2=f"{previous.encoder2}->{pair.encoder2}")
        self._publish(pair)
        return True

    def _publish(self, pair: TickCounterPair) -> None:
        for callback in list(self._subscribers):
            try:
                callback(pair)
            except Exception as e:
                log_event("ERROR", "SerialBridge", "Subscriber failed", error=e)

    def _read_once(self) -> None:
        handle = self.serial
        if handle is None:
            return
        try:
            raw = handle.readline()
        except (serial.SerialException, OSError) as e:
            log_event("ERROR", "SerialBridge", "Serial read error", error=e)
            self.disconnect()
            self._next_attempt = time.monotonic() + self.config.serial.reconnect_interval_s
            return
        if raw:
            self.handle_line(raw.decode("utf-8", errors="replace"))

    def _worker_loop(self) -> None:
        """Background worker: read frames while connected, retry periodically while not"""
        self._next_attempt = time.monotonic() + self.config.serial.reconnect_interval_s

        while self.running:
            if self.connected:
                self._read_once()
                continue

            if self.config.serial.auto_connect and time.monotonic() >= self._next_attempt:
                self.connect()
                self._next_attempt = time.monotonic() + self.config.serial.reconnect_interval_s
            self._stop_event.wait(0.1)

    def _notify_status(self, message: str, connected: bool) -> None:
        if self.status_callback:
            self.status_callback(message, connected)
