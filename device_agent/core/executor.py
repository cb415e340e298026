import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional

from ..devices.base import Device, swipe_vector
from ..screen.resolver import ElementResolver, TargetDescriptor
from ..screen.snapshot import ScreenSnapshotter
from .actions import (
    AIAction,
    ActionPlan,
    Back,
    Click,
    Home,
    OpenApp,
    Scroll,
    TERMINAL_ACTIONS,
    Type,
    Wait,
    describe,
)
from .apps import AppTable
from .config import ACTION_SETTLE_MS, GESTURE_SWIPE_MS, MAX_WAIT_MS
from .errors import DeviceAgentError, ErrorKind, InteractionRejected, PermissionRevoked
from .types import Capability, ExecutionResult, PlanExecutionReport, PlanStatus, ScreenElement, ScreenState

logger = logging.getLogger(__name__)

SETTLE_AFTER = (Click, Type, Scroll)


def _ok(action: AIAction, strategy: str, detail: Optional[str] = None, noop: bool = False) -> ExecutionResult:
    return ExecutionResult(action=action, succeeded=True, strategy=strategy, detail=detail, noop=noop)


def _unreachable(action: AIAction, detail: str) -> ExecutionResult:
    return ExecutionResult(action=action, succeeded=False, error_kind=ErrorKind.ACTION_UNREACHABLE, detail=detail)


class ActionExecutor:
    """Runs an ``ActionPlan`` against a device, one action at a time.

    Every targeted action re-reads the screen first, so earlier actions in the
    same plan are visible to later ones. Node-native interaction is tried
    before a coordinate gesture. Per-action errors land in the report; only a
    revoked automation channel or cancellation stops the plan early.
    """

    def __init__(
        self,
        device: Device,
        apps: Optional[AppTable] = None,
        snapshotter: Optional[ScreenSnapshotter] = None,
        resolver: Optional[ElementResolver] = None,
        settle_ms: int = ACTION_SETTLE_MS,
        max_wait_ms: int = MAX_WAIT_MS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.device = device
        self.apps = apps or AppTable()
        self.snapshotter = snapshotter or ScreenSnapshotter(device)
        self.resolver = resolver or ElementResolver()
        self.settle_ms = settle_ms
        self.max_wait_ms = max_wait_ms
        self.sleep = sleep

    def execute(
        self,
        plan: ActionPlan,
        is_cancelled: Optional[Callable[[], bool]] = None,
        on_action: Optional[Callable[[int, AIAction], None]] = None,
    ) -> PlanExecutionReport:
        report = PlanExecutionReport(status=PlanStatus.RUNNING, plan_complete=plan.is_complete)
        actions: List[AIAction] = list(plan.actions)
        step_start = time.time()
        aborted = False

        for idx, action in enumerate(actions, start=1):
            if report.terminal is not None:
                report.results.append(ExecutionResult.skip(action, "after terminal action"))
                continue
            if aborted:
                report.results.append(ExecutionResult.skip(action, "plan aborted"))
                continue
            if is_cancelled is not None and is_cancelled():
                logger.info("[Executor] Cancelled before action %d/%d", idx, len(actions))
                report.results.append(ExecutionResult.skip(action, "cancelled"))
                aborted = True
                continue

            logger.info("[Executor] Action %d/%d: %s", idx, len(actions), describe(action))
            if on_action is not None:
                on_action(idx - 1, action)

            start = time.time()
            try:
                result = self._dispatch(action)
            except PermissionRevoked as e:
                logger.error("[Executor] Automation permission lost: %s", e)
                result = ExecutionResult(
                    action=action, succeeded=False, error_kind=ErrorKind.PERMISSION_REVOKED, detail=str(e)
                )
                aborted = True
            except DeviceAgentError as e:
                result = ExecutionResult(action=action, succeeded=False, error_kind=e.kind, detail=str(e))
            except Exception as e:
                logger.exception("[Executor] Unexpected error on %s", describe(action))
                result = _unreachable(action, f"unexpected error: {e}")

            duration = time.time() - start
            result = replace(result, duration_s=duration)
            report.results.append(result)
            if result.succeeded:
                logger.info("[Executor] Action succeeded in %.2fs (%s)", duration, result.strategy)
                if isinstance(action, TERMINAL_ACTIONS):
                    report.terminal = action
            else:
                logger.warning(
                    "[Executor] Action failed in %.2fs: %s (%s)",
                    duration,
                    result.error_kind.value if result.error_kind else "failed",
                    result.detail,
                )

            if isinstance(action, SETTLE_AFTER) and not aborted and idx < len(actions):
                self.sleep(self.settle_ms / 1000.0)

        if aborted:
            report.status = PlanStatus.ABORTED
        elif report.failures:
            report.status = PlanStatus.PARTIALLY_FAILED
        else:
            report.status = PlanStatus.SUCCEEDED
        logger.info(
            "[Executor] Plan %s in %.2fs (%d actions, %d failed)",
            report.status.value,
            time.time() - step_start,
            len(actions),
            len(report.failures),
        )
        return report

    def _dispatch(self, action: AIAction) -> ExecutionResult:
        if isinstance(action, Click):
            return self._click(action)
        if isinstance(action, Type):
            return self._type(action)
        if isinstance(action, Scroll):
            return self._scroll(action)
        if isinstance(action, Back):
            self.device.back()
            return _ok(action, "navigation")
        if isinstance(action, Home):
            self.device.home()
            return _ok(action, "navigation")
        if isinstance(action, OpenApp):
            return self._open_app(action)
        if isinstance(action, Wait):
            return self._wait(action)
        if isinstance(action, TERMINAL_ACTIONS):
            return _ok(action, "terminal", noop=True)
        raise TypeError(f"Unhandled action {action!r}")

    def _locate(self, target: TargetDescriptor):
        state = self.snapshotter.capture()
        return state, self.resolver.resolve(state, target)

    def _click(self, action: Click) -> ExecutionResult:
        target = TargetDescriptor.from_action(action)
        hint = target.coordinate_hint
        if hint is not None and target.index is None:
            self.device.tap(*hint)
            return _ok(action, "coordinates")

        state, element = self._locate(target)
        if element is None:
            if hint is not None:
                self.device.tap(*hint)
                return _ok(action, "coordinates")
            return _unreachable(action, f"no element matching '{action.target or action.index}'")

        clickable = state.nearest_with(element, Capability.CLICKABLE)
        if clickable is not None:
            try:
                self.device.click_node(clickable)
                return _ok(action, "node")
            except InteractionRejected as e:
                logger.info("[Executor] Node click rejected, tapping bounds instead: %s", e)
        self.device.tap(*element.bounds.center)
        return _ok(action, "gesture")

    def _type(self, action: Type) -> ExecutionResult:
        target = TargetDescriptor.from_action(action)
        hint = target.coordinate_hint
        if hint is not None:
            self.device.tap(*hint)
            self.device.input_text(action.text, action.clear_first)
            return _ok(action, "coordinates")

        state, element = self._locate(target)
        if element is None:
            return _unreachable(action, f"no text field matching '{action.target or 'any'}'")

        field = state.nearest_with(element, Capability.EDITABLE) or element
        try:
            self.device.set_text(field, action.text, action.clear_first)
            return _ok(action, "node")
        except InteractionRejected as e:
            logger.info("[Executor] Node text entry rejected, typing via focus instead: %s", e)
        self.device.tap(*field.bounds.center)
        self.device.input_text(action.text, action.clear_first)
        return _ok(action, "gesture")

    def _scroll(self, action: Scroll) -> ExecutionResult:
        if action.target:
            target = TargetDescriptor.from_action(action)
            if target.rect is not None:
                return self._swipe(action, None, target.rect)
            if target.point is not None:
                state = self.snapshotter.capture()
                under = [e for e in state.with_capability(Capability.SCROLLABLE) if e.bounds.contains(*target.point)]
                scrollable = min(under, key=lambda e: e.bounds.area) if under else None
                area = scrollable.bounds if scrollable is not None else state.screen_bounds
                if area is None or area.area == 0:
                    return _unreachable(action, "nothing on screen to scroll")
                return self._swipe(action, scrollable, area)
            state, element = self._locate(target)
            if element is None:
                return _unreachable(action, f"no scrollable element matching '{action.target}'")
            scrollable = state.nearest_with(element, Capability.SCROLLABLE)
            return self._swipe(action, scrollable, (scrollable or element).bounds)

        state = self.snapshotter.capture()
        scrollable = self._largest_scrollable(state)
        area = scrollable.bounds if scrollable is not None else state.screen_bounds
        if area is None or area.area == 0:
            return _unreachable(action, "nothing on screen to scroll")
        return self._swipe(action, scrollable, area)

    def _swipe(self, action: Scroll, scrollable: Optional[ScreenElement], area) -> ExecutionResult:
        if scrollable is not None:
            try:
                self.device.scroll_node(scrollable, action.direction)
                return _ok(action, "node")
            except InteractionRejected as e:
                logger.info("[Executor] Node scroll rejected, swiping instead: %s", e)
        x1, y1, x2, y2 = swipe_vector(area, action.direction)
        self.device.swipe(x1, y1, x2, y2, GESTURE_SWIPE_MS)
        return _ok(action, "gesture")

    @staticmethod
    def _largest_scrollable(state: ScreenState) -> Optional[ScreenElement]:
        candidates = state.with_capability(Capability.SCROLLABLE)
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.bounds.area)

    def _open_app(self, action: OpenApp) -> ExecutionResult:
        identifier = self.apps.resolve(action.app_name)
        if identifier is None:
            return ExecutionResult(
                action=action,
                succeeded=False,
                error_kind=ErrorKind.UNKNOWN_APP,
                detail=f"don't know an app called '{action.app_name}'",
            )
        try:
            self.device.launch_app(identifier)
        except InteractionRejected as e:
            return ExecutionResult(
                action=action,
                succeeded=False,
                error_kind=ErrorKind.UNKNOWN_APP,
                detail=f"could not launch {identifier}: {e}",
            )
        return _ok(action, "launch", detail=identifier)

    def _wait(self, action: Wait) -> ExecutionResult:
        ms = min(action.milliseconds, self.max_wait_ms)
        self.sleep(ms / 1000.0)
        detail = f"clamped from {action.milliseconds}ms to {ms}ms" if ms != action.milliseconds else None
        return _ok(action, "sleep", detail=detail, noop=True)
