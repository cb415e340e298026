import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, TypedDict

from .actions import AIAction, ActionPlan, Complete, action_to_dict, describe
from .errors import ErrorKind
from .history import ChatMessage
from .memory import MemoryItem

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")


@dataclass(frozen=True)
class Bounds:
    left: int
    top: int
    right: int
    bottom: int

    @classmethod
    def parse(cls, text: str) -> Optional["Bounds"]:
        """Parse the ``[left,top][right,bottom]`` form used by uiautomator dumps."""
        match = _BOUNDS_RE.search(text or "")
        if not match:
            return None
        return cls(*(int(g) for g in match.groups()))

    @classmethod
    def from_box(cls, box: Dict[str, float]) -> "Bounds":
        """Build from a Playwright-style ``{x, y, width, height}`` box."""
        x, y = int(box["x"]), int(box["y"])
        return cls(x, y, x + int(box["width"]), y + int(box["height"]))

    @property
    def width(self) -> int:
        return max(0, self.right - self.left)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top)

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Tuple[int, int]:
        return (self.left + self.right) // 2, (self.top + self.bottom) // 2

    def contains(self, x: int, y: int) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom

    def as_list(self) -> List[int]:
        return [self.left, self.top, self.right, self.bottom]


class Capability(str, Enum):
    CLICKABLE = "clickable"
    EDITABLE = "editable"
    SCROLLABLE = "scrollable"


@dataclass(frozen=True)
class ScreenElement:
    index: int
    kind: str
    bounds: Bounds
    id: Optional[str] = None
    text: Optional[str] = None
    accessible_label: Optional[str] = None
    clickable: bool = False
    editable: bool = False
    scrollable: bool = False
    checked: Optional[bool] = None
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()
    # Opaque platform reference used for node-native interactions.
    handle: Optional[str] = None

    def label(self) -> Optional[str]:
        return self.text or self.accessible_label or self.id

    def has(self, capability: Capability) -> bool:
        if capability is Capability.CLICKABLE:
            return self.clickable
        if capability is Capability.EDITABLE:
            return self.editable
        if capability is Capability.SCROLLABLE:
            return self.scrollable
        raise ValueError(f"Unknown capability {capability!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "text": self.text,
            "accessible_label": self.accessible_label,
            "kind": self.kind,
            "bounds": self.bounds.as_list(),
            "clickable": self.clickable,
            "editable": self.editable,
            "scrollable": self.scrollable,
            "checked": self.checked,
            "parent": self.parent,
            "children": list(self.children),
        }


@dataclass(frozen=True)
class ScreenState:
    """Immutable capture of the foreground UI.

    ``elements`` is an arena in depth-first pre-order, so position in the
    tuple is also traversal order. Elements point at their parent and children
    by index into that tuple.
    """

    app_identifier: str
    elements: Tuple[ScreenElement, ...]
    captured_at: float
    screen_identifier: Optional[str] = None
    truncated: bool = False

    @property
    def roots(self) -> List[ScreenElement]:
        return [e for e in self.elements if e.parent is None]

    def children_of(self, element: ScreenElement) -> List[ScreenElement]:
        return [self.elements[i] for i in element.children]

    def ancestors(self, element: ScreenElement) -> Iterator[ScreenElement]:
        current = element.parent
        while current is not None:
            node = self.elements[current]
            yield node
            current = node.parent

    def with_capability(self, capability: Capability) -> List[ScreenElement]:
        return [e for e in self.elements if e.has(capability)]

    def nearest_with(self, element: ScreenElement, capability: Capability) -> Optional[ScreenElement]:
        """The element itself or its closest ancestor that has ``capability``."""
        if element.has(capability):
            return element
        for ancestor in self.ancestors(element):
            if ancestor.has(capability):
                return ancestor
        return None

    @property
    def screen_bounds(self) -> Optional[Bounds]:
        roots = self.roots
        if not roots:
            return None
        return Bounds(
            min(r.bounds.left for r in roots),
            min(r.bounds.top for r in roots),
            max(r.bounds.right for r in roots),
            max(r.bounds.bottom for r in roots),
        )

    def to_prompt_context(self, limit: int = 25) -> str:
        """Compact listing for the model. ``#n`` is the element's position
        among elements that share its primary capability, which is what an
        action's ``index`` field refers to."""
        ordinals = {c: 0 for c in Capability}
        lines = []
        for e in self.elements:
            tags = []
            for cap in Capability:
                if e.has(cap):
                    tags.append(f"{cap.value} #{ordinals[cap]}")
                    ordinals[cap] += 1
            label = e.label()
            if not label and not tags:
                continue
            if len(lines) >= limit:
                continue
            kind = e.kind.rsplit(".", 1)[-1]
            line = f'  [{kind}] "{label or ""}"'
            if e.checked is not None:
                tags.append("checked" if e.checked else "unchecked")
            if tags:
                line += f" ({', '.join(tags)})"
            lines.append(line)

        out = [f"Current App: {self.app_identifier}"]
        if self.screen_identifier:
            out.append(f"Screen: {self.screen_identifier.rsplit('.', 1)[-1]}")
        out.append("UI Elements:")
        out.extend(lines)
        if self.truncated:
            out.append("  (screen too large; listing truncated)")
        return "\n".join(out)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_identifier": self.app_identifier,
            "screen_identifier": self.screen_identifier,
            "captured_at": self.captured_at,
            "truncated": self.truncated,
            "elements": [e.to_dict() for e in self.elements],
        }


class PlanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ExecutionResult:
    action: AIAction
    succeeded: bool
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None
    # True when the action had nothing to do on the device (wait, messages).
    noop: bool = False
    strategy: Optional[str] = None
    duration_s: float = 0.0

    @property
    def skipped(self) -> bool:
        return self.error_kind is ErrorKind.SKIPPED

    @classmethod
    def skip(cls, action: AIAction, reason: str) -> "ExecutionResult":
        return cls(action=action, succeeded=False, error_kind=ErrorKind.SKIPPED, detail=reason, noop=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": action_to_dict(self.action),
            "succeeded": self.succeeded,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "detail": self.detail,
            "noop": self.noop,
            "strategy": self.strategy,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class PlanExecutionReport:
    results: List[ExecutionResult] = field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    terminal: Optional[AIAction] = None
    plan_complete: bool = False

    @property
    def completed_fully(self) -> bool:
        return self.status is PlanStatus.SUCCEEDED

    @property
    def task_complete(self) -> bool:
        """The model declared the task finished, by flag or by a Complete action."""
        return self.plan_complete or isinstance(self.terminal, Complete)

    @property
    def failures(self) -> List[ExecutionResult]:
        return [r for r in self.results if not r.succeeded and not r.skipped]

    def failure_summary(self) -> str:
        lines = []
        for r in self.failures:
            reason = r.detail or (r.error_kind.value if r.error_kind else "failed")
            lines.append(f"{describe(r.action)} failed: {reason}")
        return "; ".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "completed_fully": self.completed_fully,
            "task_complete": self.task_complete,
            "results": [r.to_dict() for r in self.results],
        }


class TurnStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    ACTING = "acting"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class TurnResult:
    turn_id: str
    response: str
    is_complete: bool
    memory_writes: Tuple[MemoryItem, ...] = ()
    report: Optional[PlanExecutionReport] = None
    plan: Optional[ActionPlan] = None
    error_kind: Optional[ErrorKind] = None
    cancelled: bool = False


class TurnState(TypedDict, total=False):
    turn_id: str
    user_message: str
    screen: Optional[ScreenState]
    screenshot: Optional[bytes]
    history: List[ChatMessage]
    memories: List[MemoryItem]
    raw_response: Optional[str]
    plan: Optional[ActionPlan]
    report: Optional[PlanExecutionReport]
    error_kind: Optional[ErrorKind]
    cancelled: bool
    response: str
    is_complete: bool
    memory_writes: List[MemoryItem]
