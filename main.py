"""
wordwheel - Viewer Window
Qt window with two draggable dials and the sentence window. The dial
session and relay client run on a private asyncio loop thread; results come
back to the GUI thread through Qt signals.
"""

import asyncio
import html
import threading
from typing import Callable, Optional

from PyQt6.QtWidgets import (
    QHBoxLayout, QLabel, QMainWindow, QVBoxLayout, QWidget,
)
from PyQt6.QtCore import Qt, QObject, QPointF, pyqtSignal
from PyQt6.QtGui import QBrush, QColor, QPainter, QPen

from config import Config
from dial_session import DialSession, MouseDelta, SessionSnapshot
from logging_utils import log_event
from relay_client import RelayClient, http_base_url, relay_url
from rotation_fusion import Dial, pointer_angle
from variant_provider import HttpVariantProvider


class SignalBridge(QObject):
    """Bridge for thread-safe signal emission"""
    snapshot_ready = pyqtSignal(object)


class SessionRunner:
    """Runs the dial session and the relay client on one asyncio loop thread"""

    def __init__(self, config: Config, on_snapshot: Callable[[SessionSnapshot], None]):
        self.config = config
        self.on_snapshot = on_snapshot
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.session: Optional[DialSession] = None
        self.thread: Optional[threading.Thread] = None
        self._stop: Optional[asyncio.Event] = None
        self._ready = threading.Event()

    def start(self) -> None:
        self.thread = threading.Thread(target=self._thread_main, name="dial-session", daemon=True)
        self.thread.start()
        self._ready.wait(timeout=5.0)

    def _thread_main(self) -> None:
        asyncio.run(self._main())

    async def _main(self) -> None:
        relay = self.config.relay
        self.loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()

        provider = HttpVariantProvider(http_base_url(relay.host, relay.port), relay.request_timeout_s)
        self.session = DialSession(provider, self.config, on_change=self.on_snapshot)
        client = RelayClient(relay_url(relay.host, relay.port, relay.ws_path),
                             self.session.submit, relay.reconnect_delay_s)

        tasks = [
            asyncio.create_task(self.session.run()),
            asyncio.create_task(client.run()),
        ]
        self._ready.set()
        self.on_snapshot(self.session.snapshot())
        log_event("INFO", "Viewer", "Session started")

        await self._stop.wait()

        client.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.session.close()
        log_event("INFO", "Viewer", "Session stopped")

    def post_mouse_delta(self, dial: Dial, degrees: float) -> None:
        """Called from the GUI thread"""
        if self.loop is None or self.session is None or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.session.submit, MouseDelta(dial, degrees))

    def stop(self) -> None:
        if self.loop is not None and self._stop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._stop.set)
        if self.thread is not None:
            self.thread.join(timeout=2.0)


class DialWidget(QWidget):
    """Round dial that reports incremental drag angles around its own center"""

    dragged = pyqtSignal(float)  # degrees since previous pointer sample

    def __init__(self, label: str, parent=None):
        super().__init__(parent)
        self._label = label
        self._angle = 0.0
        self._last_pointer: Optional[float] = None
        self.setMinimumSize(260, 260)
        self.setCursor(Qt.CursorShape.OpenHandCursor)

    def set_angle(self, angle: float) -> None:
        self._angle = angle
        self.update()

    def _pointer(self, event) -> float:
        pos = event.position()
        return pointer_angle(self.width() / 2, self.height() / 2, pos.x(), pos.y())

    def mousePressEvent(self, event):
        if event.button() != Qt.MouseButton.LeftButton:
            return
        self._last_pointer = self._pointer(event)
        self.setCursor(Qt.CursorShape.ClosedHandCursor)

    def mouseMoveEvent(self, event):
        if self._last_pointer is None:
            return
        current = self._pointer(event)
        delta = current - self._last_pointer
        self._last_pointer = current
        if delta:
            self.dragged.emit(delta)

    def mouseReleaseEvent(self, event):
        self._last_pointer = None
        self.setCursor(Qt.CursorShape.OpenHandCursor)

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)

        radius = min(self.width(), self.height()) / 2 - 8
        painter.translate(self.width() / 2, self.height() / 2)
        painter.rotate(self._angle)

        # Disk
        painter.setPen(QPen(QColor(60, 60, 60), 2))
        painter.setBrush(QBrush(QColor(235, 235, 235)))
        painter.drawEllipse(QPointF(0, 0), radius, radius)

        # One tick per 60 degree step
        painter.setPen(QPen(QColor(150, 150, 150), 2))
        for _ in range(6):
            painter.drawLine(QPointF(0, -radius), QPointF(0, -radius + 12))
            painter.rotate(60)

        # Pointer marker
        painter.setPen(QPen(QColor(20, 20, 20), 4))
        painter.drawLine(QPointF(0, 0), QPointF(0, -radius + 20))

        painter.resetTransform()
        painter.setPen(QPen(QColor(90, 90, 90)))
        painter.drawText(8, 18, self._label)
        painter.end()


class WordwheelWindow(QMainWindow):
    def __init__(self, config: Config):
        super().__init__()
        self.config = config
        self.setWindowTitle("wordwheel")

        self.signals = SignalBridge()
        self.signals.snapshot_ready.connect(self._apply_snapshot)

        central = QWidget()
        layout = QVBoxLayout(central)

        status_row = QHBoxLayout()
        self.status_label = QLabel("Mouse Control")
        self.debug_label = QLabel("")
        self.debug_label.setStyleSheet("font-family: monospace; color: #606060;")
        status_row.addWidget(self.status_label)
        status_row.addStretch(1)
        status_row.addWidget(self.debug_label)
        layout.addLayout(status_row)

        self.sentence_label = QLabel("")
        self.sentence_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.sentence_label.setTextFormat(Qt.TextFormat.RichText)
        self.sentence_label.setStyleSheet("font-family: serif; font-size: 24px;")
        layout.addWidget(self.sentence_label)

        dial_row = QHBoxLayout()
        self.left_dial = DialWidget("Word")
        self.right_dial = DialWidget("Position")
        dial_row.addWidget(self.left_dial)
        dial_row.addWidget(self.right_dial)
        layout.addLayout(dial_row)
        self.setCentralWidget(central)

        self.runner = SessionRunner(config, self.signals.snapshot_ready.emit)
        self.left_dial.dragged.connect(lambda d: self.runner.post_mouse_delta(Dial.LEFT, d))
        self.right_dial.dragged.connect(lambda d: self.runner.post_mouse_delta(Dial.RIGHT, d))
        self.runner.start()

    def _apply_snapshot(self, snapshot: SessionSnapshot) -> None:
        selection = snapshot.selection
        self.left_dial.set_angle(snapshot.left_angle)
        self.right_dial.set_angle(snapshot.right_angle)

        parts = []
        for offset, word in enumerate(selection.window):
            color = "#000000" if selection.window_start + offset == selection.cursor else "#c0c0c0"
            parts.append(f'<span style="color:{color}">{html.escape(word)}</span>')
        if selection.is_extending:
            parts.append('<span style="color:#c0c0c0">&hellip;</span>')
        self.sentence_label.setText("&nbsp;".join(parts))

        if snapshot.connected:
            self.status_label.setText("Encoder Connected")
            pair = snapshot.last_pair
            counters = f"E1:{pair.encoder1} E2:{pair.encoder2}  " if pair else ""
            self.debug_label.setText(
                f"{counters}L {snapshot.left_angle:.1f}° "
                f"(M:{snapshot.left_mouse:.1f} + E:{snapshot.left_hardware:.1f})  "
                f"R {snapshot.right_angle:.1f}° "
                f"(M:{snapshot.right_mouse:.1f} + E:{snapshot.right_hardware:.1f})"
            )
        else:
            self.status_label.setText("Mouse Control")
            self.debug_label.setText("")

    def closeEvent(self, event):
        self.runner.stop()
        super().closeEvent(event)
