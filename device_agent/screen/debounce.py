import logging
import queue
import threading
import time
from typing import Callable, Optional

from ..core.config import DEBOUNCE_WINDOW_MS, SCREEN_CHANGE_QUEUE_SIZE
from ..core.errors import NoActiveWindow, PermissionRevoked
from ..core.types import ScreenState

logger = logging.getLogger(__name__)


class ScreenChangeDebouncer:
    """Coalesces bursts of UI-change notifications into one capture.

    ``notify`` is cheap and safe to call from any thread. The first
    notification opens a window; everything arriving inside it is absorbed,
    and when the window closes the screen is captured once and handed to
    ``publish``. At most one snapshot is published per window.
    """

    def __init__(
        self,
        capture: Callable[[], ScreenState],
        publish: Callable[[ScreenState], None],
        window_ms: int = DEBOUNCE_WINDOW_MS,
        queue_size: int = SCREEN_CHANGE_QUEUE_SIZE,
    ):
        self.capture = capture
        self.publish = publish
        self.window_s = window_ms / 1000.0
        self._events: "queue.Queue[float]" = queue.Queue(maxsize=queue_size)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.is_running = False
        self.captures = 0
        self.dropped = 0

    def start(self) -> None:
        if self.is_running:
            raise RuntimeError("Debouncer is already running")
        self.is_running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="screen-debounce", daemon=True)
        self._thread.start()
        logger.info("[Debounce] Started with %.0fms window", self.window_s * 1000)

    def stop(self) -> None:
        if not self.is_running:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
        self.is_running = False
        self._thread = None
        logger.info("[Debounce] Stopped after %d captures", self.captures)

    def notify(self) -> bool:
        """Record a UI change. Returns False if the channel was full."""
        try:
            self._events.put_nowait(time.monotonic())
            return True
        except queue.Full:
            # A full channel already guarantees a capture is coming.
            self.dropped += 1
            return False

    def _drain(self) -> int:
        drained = 0
        while True:
            try:
                self._events.get_nowait()
                drained += 1
            except queue.Empty:
                return drained

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                first = self._events.get(timeout=0.1)
            except queue.Empty:
                continue

            remaining = first + self.window_s - time.monotonic()
            if remaining > 0 and self._stop_event.wait(remaining):
                return
            burst = 1 + self._drain()

            try:
                state = self.capture()
            except NoActiveWindow:
                logger.debug("[Debounce] No active window after %d events", burst)
                continue
            except PermissionRevoked as e:
                logger.warning("[Debounce] Capture lost device access: %s", e)
                continue
            except Exception as e:
                logger.error("[Debounce] Capture failed: %s", e, exc_info=True)
                continue

            self.captures += 1
            logger.debug("[Debounce] Coalesced %d events into one capture", burst)
            try:
                self.publish(state)
            except Exception as e:
                logger.error("[Debounce] Publish failed: %s", e, exc_info=True)
