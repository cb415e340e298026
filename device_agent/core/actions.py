"""
Device actions a plan can contain, and the plan itself.

The action set is closed: every consumer dispatches over ``ACTION_TYPES`` and
raises on anything else, so a new variant has to be handled everywhere it is
matched.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .config import DEFAULT_WAIT_MS
from .errors import InvalidAction
from .memory import MemoryItem


class ScrollDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def parse(cls, value: Any) -> Optional["ScrollDirection"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Click:
    target: str = ""
    index: Optional[int] = None

    def __post_init__(self):
        if self.index is not None and self.index < 0:
            raise InvalidAction(f"click index must be >= 0, got {self.index}")
        if not (self.target or "").strip() and self.index is None:
            raise InvalidAction("click needs a target or an index")


@dataclass(frozen=True)
class Type:
    target: str
    text: str
    clear_first: bool = True

    def __post_init__(self):
        if not self.text and not self.clear_first:
            raise InvalidAction("type with empty text only makes sense with clear_first")


@dataclass(frozen=True)
class Scroll:
    direction: ScrollDirection
    target: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.direction, ScrollDirection):
            raise InvalidAction(f"invalid scroll direction {self.direction!r}")


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Home:
    pass


@dataclass(frozen=True)
class OpenApp:
    app_name: str

    def __post_init__(self):
        if not (self.app_name or "").strip():
            raise InvalidAction("open_app needs an app name")


@dataclass(frozen=True)
class Wait:
    milliseconds: int = DEFAULT_WAIT_MS

    def __post_init__(self):
        if self.milliseconds < 0:
            raise InvalidAction(f"wait must be >= 0ms, got {self.milliseconds}")


@dataclass(frozen=True)
class Respond:
    message: str


@dataclass(frozen=True)
class Clarify:
    question: str


@dataclass(frozen=True)
class Complete:
    summary: str


AIAction = Union[Click, Type, Scroll, Back, Home, OpenApp, Wait, Respond, Clarify, Complete]

ACTION_TYPES = {
    "click": Click,
    "type": Type,
    "scroll": Scroll,
    "back": Back,
    "home": Home,
    "open_app": OpenApp,
    "wait": Wait,
    "respond": Respond,
    "clarify": Clarify,
    "complete": Complete,
}
_TYPE_NAMES = {cls: name for name, cls in ACTION_TYPES.items()}

TERMINAL_ACTIONS = (Respond, Clarify, Complete)


def action_type(action: AIAction) -> str:
    try:
        return _TYPE_NAMES[type(action)]
    except KeyError:
        raise TypeError(f"Not an AIAction: {action!r}")


def is_terminal(action: AIAction) -> bool:
    return isinstance(action, TERMINAL_ACTIONS)


def terminal_message(action: AIAction) -> str:
    if isinstance(action, Respond):
        return action.message
    if isinstance(action, Clarify):
        return action.question
    if isinstance(action, Complete):
        return action.summary
    return ""


def action_to_dict(action: AIAction) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": action_type(action)}
    for f in fields(action):
        value = getattr(action, f.name)
        if isinstance(value, Enum):
            value = value.value
        payload[f.name] = value
    return payload


def describe(action: AIAction) -> str:
    """Short progress line for status output."""
    if isinstance(action, Click):
        return f"Clicking '{action.target}'" if action.target else f"Clicking element #{action.index}"
    if isinstance(action, Type):
        return f"Typing '{action.text}'"
    if isinstance(action, Scroll):
        return f"Scrolling {action.direction.value}"
    if isinstance(action, Back):
        return "Going back"
    if isinstance(action, Home):
        return "Going home"
    if isinstance(action, OpenApp):
        return f"Opening {action.app_name}"
    if isinstance(action, Wait):
        return f"Waiting {action.milliseconds}ms"
    if isinstance(action, TERMINAL_ACTIONS):
        return "Responding"
    raise TypeError(f"Not an AIAction: {action!r}")


@dataclass(frozen=True)
class ActionPlan:
    reasoning: str
    actions: Tuple[AIAction, ...]
    is_complete: bool = False
    response: str = ""
    memory_updates: Tuple[MemoryItem, ...] = ()
    warnings: Tuple[str, ...] = ()
    used_fallback: bool = False

    def __post_init__(self):
        if not self.actions and not self.is_complete:
            raise InvalidAction("a plan with no actions must be complete")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reasoning": self.reasoning,
            "response": self.response,
            "actions": [action_to_dict(a) for a in self.actions],
            "complete": self.is_complete,
            "memory": [m.to_dict() for m in self.memory_updates],
            "warnings": list(self.warnings),
            "used_fallback": self.used_fallback,
        }
