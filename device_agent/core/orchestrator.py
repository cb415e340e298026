import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from ..agents.inference import InferenceClient, InferenceRequest
from ..agents.parser import ActionPlanParser
from ..devices.base import Device
from ..screen.debounce import ScreenChangeDebouncer
from ..screen.snapshot import ScreenSnapshotter
from .actions import terminal_message
from .apps import AppTable
from .config import (
    ATTACH_SCREENSHOT,
    CANCELLED_MESSAGE,
    CONTEXT_MEMORIES,
    DEBOUNCE_WINDOW_MS,
    DONE_MESSAGE,
    FALLBACK_MESSAGE,
    HISTORY_TURNS,
    OFFLINE_MESSAGE,
    OUT_DIR,
    PERMISSION_MESSAGE,
)
from .errors import ErrorKind, InferenceUnavailable, NoActiveWindow, PermissionRevoked
from .executor import ActionExecutor
from .graph import build_graph
from .history import ConversationHistory
from .memory import InMemoryMemoryStore, MemoryItem, MemoryStore
from .trace import TurnTrace
from .types import PlanStatus, ScreenState, TurnResult, TurnState, TurnStatus

logger = logging.getLogger(__name__)

StatusCallback = Callable[[TurnStatus], None]


@dataclass(frozen=True)
class TurnHandle:
    """A queued turn. ``turn_id`` is what ``cancel_turn`` takes."""

    turn_id: str
    future: "Future[TurnResult]"

    def result(self, timeout: Optional[float] = None) -> TurnResult:
        return self.future.result(timeout=timeout)

    def done(self) -> bool:
        return self.future.done()


class StatusStream:
    """Observable turn status. Subscribers get the current value immediately."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: List[StatusCallback] = []
        self.current = TurnStatus.IDLE

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)
            current = self.current
        callback(current)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, status: TurnStatus) -> None:
        with self._lock:
            if status is self.current:
                return
            self.current = status
            subscribers = list(self._subscribers)
        logger.debug("[Session] Status -> %s", status.value)
        for callback in subscribers:
            try:
                callback(status)
            except Exception as e:
                logger.error("[Session] Status subscriber failed: %s", e, exc_info=True)


class SessionCoordinator:
    """Owns the request lifecycle for one device session.

    Turns run one at a time on a dedicated worker thread; later submissions
    queue behind the active one. Screen-change notifications are debounced on
    their own thread and only feed the next turn through the snapshot cache.
    """

    def __init__(
        self,
        device: Device,
        inference: InferenceClient,
        memory: Optional[MemoryStore] = None,
        history: Optional[ConversationHistory] = None,
        apps: Optional[AppTable] = None,
        parser: Optional[ActionPlanParser] = None,
        executor: Optional[ActionExecutor] = None,
        trace: Optional[TurnTrace] = None,
        history_turns: int = HISTORY_TURNS,
        context_memories: int = CONTEXT_MEMORIES,
        attach_screenshot: bool = ATTACH_SCREENSHOT,
        debounce_ms: int = DEBOUNCE_WINDOW_MS,
    ):
        self.device = device
        self.inference = inference
        self.memory = memory if memory is not None else InMemoryMemoryStore()
        self.history = history if history is not None else ConversationHistory()
        self.snapshotter = ScreenSnapshotter(device)
        self.parser = parser or ActionPlanParser()
        self.executor = executor or ActionExecutor(device, apps=apps, snapshotter=self.snapshotter)
        self.trace = trace if trace is not None else TurnTrace(OUT_DIR)
        self.history_turns = history_turns
        self.context_memories = context_memories
        self.attach_screenshot = attach_screenshot

        self.status = StatusStream()
        self.debouncer = ScreenChangeDebouncer(self.snapshotter.capture, self._publish_screen, debounce_ms)
        self.graph = build_graph(self)

        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="device-agent-turn")
        self._lock = threading.Lock()
        self._latest_screen: Optional[ScreenState] = None
        self._cancel_events: Dict[str, threading.Event] = {}
        self._active_turn: Optional[str] = None

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> "SessionCoordinator":
        self.debouncer.start()
        return self

    def close(self) -> None:
        self.debouncer.stop()
        self._worker.shutdown(wait=True)

    def __enter__(self) -> "SessionCoordinator":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- screen cache ----------------------------------------------------------

    def notify_screen_changed(self) -> bool:
        return self.debouncer.notify()

    def _publish_screen(self, state: ScreenState) -> None:
        with self._lock:
            current = self._latest_screen
            if current is None or state.captured_at >= current.captured_at:
                self._latest_screen = state

    @property
    def latest_screen(self) -> Optional[ScreenState]:
        with self._lock:
            return self._latest_screen

    # -- turns -----------------------------------------------------------------

    def submit_turn(self, user_message: str) -> TurnHandle:
        turn_id = str(uuid4())
        with self._lock:
            self._cancel_events[turn_id] = threading.Event()
        logger.info("[Session] Queued turn %s: %s", turn_id[:8], user_message)
        future = self._worker.submit(self._run_turn, turn_id, user_message)
        return TurnHandle(turn_id=turn_id, future=future)

    def run_turn(self, user_message: str, timeout: Optional[float] = None) -> TurnResult:
        return self.submit_turn(user_message).result(timeout=timeout)

    def cancel_turn(self, turn_id: Optional[str] = None) -> bool:
        """Cancel ``turn_id``, or the active turn when None.

        A turn cancelled before or during inference executes no actions. Once
        execution has started, cancellation takes effect at the next action
        boundary.
        """
        with self._lock:
            target = turn_id or self._active_turn
            event = self._cancel_events.get(target) if target else None
        if event is None:
            return False
        event.set()
        logger.info("[Session] Cancellation requested for turn %s", target[:8])
        return True

    def _is_cancelled(self, turn_id: str) -> bool:
        with self._lock:
            event = self._cancel_events.get(turn_id)
        return event is not None and event.is_set()

    def _run_turn(self, turn_id: str, user_message: str) -> TurnResult:
        with self._lock:
            self._active_turn = turn_id
        initial: TurnState = {"turn_id": turn_id, "user_message": user_message, "cancelled": False}
        try:
            final = self.graph.invoke(initial, config={"run_name": "device_agent_turn"})
            result = TurnResult(
                turn_id=turn_id,
                response=final.get("response") or FALLBACK_MESSAGE,
                is_complete=bool(final.get("is_complete")),
                memory_writes=tuple(final.get("memory_writes") or ()),
                report=final.get("report"),
                plan=final.get("plan"),
                error_kind=final.get("error_kind"),
                cancelled=bool(final.get("cancelled")),
            )
            self.trace.record(user_message, result, final.get("screen"))
        except Exception:
            logger.exception("[Session] Turn %s failed unexpectedly", turn_id[:8])
            result = TurnResult(turn_id=turn_id, response=FALLBACK_MESSAGE, is_complete=False)
        finally:
            with self._lock:
                self._active_turn = None
                self._cancel_events.pop(turn_id, None)
                # A snapshot only serves the turn that consumed it.
                self._latest_screen = None

        if result.error_kind is ErrorKind.PERMISSION_REVOKED:
            self.status.publish(TurnStatus.UNAVAILABLE)
        else:
            self.status.publish(TurnStatus.IDLE)
        logger.info("[Session] Turn %s finished: complete=%s", turn_id[:8], result.is_complete)
        return result

    # -- graph nodes -----------------------------------------------------------

    def capture_screen(self, state: TurnState) -> TurnState:
        self.status.publish(TurnStatus.THINKING)
        screen = self.latest_screen
        if screen is None:
            try:
                screen = self.snapshotter.capture()
            except NoActiveWindow:
                logger.info("[Session] No active window; continuing without screen context")
            except PermissionRevoked as e:
                logger.error("[Session] Lost device access before inference: %s", e)
                return {"screen": None, "error_kind": ErrorKind.PERMISSION_REVOKED}

        screenshot = None
        if self.attach_screenshot:
            try:
                screenshot = self.device.screenshot()
            except Exception as e:
                logger.warning("[Session] Screenshot failed: %s", e)

        memories = self._context_memories(state["user_message"])
        return {
            "screen": screen,
            "screenshot": screenshot,
            "history": self.history.tail(self.history_turns),
            "memories": memories,
        }

    def _context_memories(self, user_message: str) -> List[MemoryItem]:
        picked: List[MemoryItem] = []
        seen = set()
        for item in self.memory.recall(user_message) + self.memory.get_context_memories(self.context_memories):
            if item.key in seen:
                continue
            seen.add(item.key)
            picked.append(item)
        return picked[:self.context_memories]

    def infer(self, state: TurnState) -> TurnState:
        turn_id = state["turn_id"]
        if self._is_cancelled(turn_id):
            return {"cancelled": True}
        request = InferenceRequest(
            user_message=state["user_message"],
            screen=state.get("screen"),
            history=state.get("history") or [],
            memories=state.get("memories") or [],
            screenshot=state.get("screenshot"),
        )
        try:
            raw = self.inference.complete(request)
        except InferenceUnavailable as e:
            logger.warning("[Session] Inference unavailable: %s", e)
            return {"raw_response": None, "error_kind": ErrorKind.INFERENCE_UNAVAILABLE}
        if self._is_cancelled(turn_id):
            return {"raw_response": raw, "cancelled": True}
        return {"raw_response": raw}

    def parse_plan(self, state: TurnState) -> TurnState:
        plan = self.parser.parse(state.get("raw_response"), state.get("screen"))
        for warning in plan.warnings:
            logger.warning("[Session] Plan warning: %s", warning)
        return {"plan": plan, "cancelled": self._is_cancelled(state["turn_id"])}

    def execute_plan(self, state: TurnState) -> TurnState:
        turn_id = state["turn_id"]
        plan = state["plan"]
        self.status.publish(TurnStatus.ACTING)
        report = self.executor.execute(plan, is_cancelled=lambda: self._is_cancelled(turn_id))

        update: TurnState = {"report": report}
        if any(r.error_kind is ErrorKind.PERMISSION_REVOKED for r in report.results):
            update["error_kind"] = ErrorKind.PERMISSION_REVOKED
        if report.status is PlanStatus.ABORTED and any(r.detail == "cancelled" for r in report.results):
            update["cancelled"] = True
        return update

    def finalize_turn(self, state: TurnState) -> TurnState:
        user_message = state["user_message"]
        plan = state.get("plan")
        report = state.get("report")
        error_kind = state.get("error_kind")

        memory_writes: List[MemoryItem] = []
        if plan is not None:
            for item in plan.memory_updates:
                try:
                    self.memory.remember(item.key, item.value, item.category, item.importance)
                    memory_writes.append(item)
                except ValueError as e:
                    logger.warning("[Session] Memory write '%s' rejected: %s", item.key, e)

        if error_kind is ErrorKind.INFERENCE_UNAVAILABLE:
            response, is_complete = OFFLINE_MESSAGE, False
        elif error_kind is ErrorKind.PERMISSION_REVOKED:
            response, is_complete = PERMISSION_MESSAGE, False
        elif state.get("cancelled") and report is None:
            response, is_complete = CANCELLED_MESSAGE, False
        else:
            response = ""
            if report is not None and report.terminal is not None:
                response = terminal_message(report.terminal)
            if not response and plan is not None:
                response = plan.response
            if not response:
                response = DONE_MESSAGE
            if report is not None and report.failures:
                response += f"\n\nSome steps didn't work: {report.failure_summary()}"
            if state.get("cancelled"):
                response += f"\n\n{CANCELLED_MESSAGE}"
            is_complete = report.task_complete if report is not None else bool(plan and plan.is_complete)

        self.history.add("user", user_message)
        self.history.add("assistant", response)
        return {"response": response, "is_complete": is_complete, "memory_writes": memory_writes}
