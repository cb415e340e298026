"""
Pattern rules used when a model response is not usable JSON.

Each rule looks at the prose and, optionally, the current screen, and returns
a ``HeuristicMatch`` or ``None``. Rules are evaluated in order and the first
match wins, so the list passed to ``HeuristicResponder`` is the policy.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from ..core.actions import AIAction, Back, Click, Home, OpenApp, Respond, Scroll, ScrollDirection, Type
from ..core.types import ScreenState

HELP_MESSAGE = (
    "I can look at your screen and act on it. I can:\n"
    "- tell you what's on the screen\n"
    "- click buttons and links\n"
    "- type into text fields\n"
    "- scroll through content\n"
    "- open apps such as Settings, Chrome, Messages, Phone, Camera or Clock\n"
    "- go back or go home\n"
    "Try \"open settings\", \"what's on my screen?\" or \"scroll down\"."
)

SCREEN_LABEL_LIMIT = 10


@dataclass
class HeuristicMatch:
    rule: str
    actions: List[AIAction]
    response: str = ""
    # Respond-only matches are informational; anything else still has work to do.
    is_complete: bool = field(default=False)


HeuristicRule = Callable[[str, Optional[ScreenState]], Optional[HeuristicMatch]]


_SCREEN_QUERY_RE = re.compile(
    r"\bwhat(?:'s| is| do you see| can you see)?\b.*\b(?:screen|see)\b|\bdescribe (?:the |my )?screen\b",
    re.IGNORECASE,
)
_OPEN_RE = re.compile(r"\b(?:open|opening|launch|launching|start|starting)\s+(?:up\s+)?(?:the\s+)?([^.,!?;:\n]+)", re.IGNORECASE)
_OPEN_FILLER = re.compile(r"\s+(?:app|application|for you|for me|now|right away|please)\s*$", re.IGNORECASE)
_SCROLL_RE = re.compile(r"\bscroll(?:ing)?\s+(?:the\s+\w+\s+)?(up|down|left|right)\b", re.IGNORECASE)
_BACK_RE = re.compile(r"\bgo(?:ing)?\s+back\b|\bpress(?:ing)?\s+(?:the\s+)?back\b|^\s*back\s*[.!]?\s*$", re.IGNORECASE)
_HOME_RE = re.compile(r"\bgo(?:ing)?\s+(?:to\s+(?:the\s+)?)?home\b|\bhome\s+screen\b", re.IGNORECASE)
_TYPE_RE = re.compile(
    r"\b(?:type|typing|enter|entering|write|writing)\s+[\"'“]([^\"'”]+)[\"'”]"
    r"(?:\s+(?:in|into)\s+(?:the\s+)?([^.,!?\n]+))?",
    re.IGNORECASE,
)
_TAP_RE = re.compile(
    r"\b(?:tap|tapping|click|clicking|press|pressing)\s+(?:on\s+)?(?:the\s+)?"
    r"[\"'“]?([^\"'”.,!?\n]+?)[\"'”]?(?:\s+(?:button|link|tab|option))?\s*(?:[.,!?]|$)",
    re.IGNORECASE,
)
_HELP_RE = re.compile(r"\bhelp\b|\bwhat can you do\b", re.IGNORECASE)


def screen_query_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    if not _SCREEN_QUERY_RE.search(text):
        return None
    labels: List[str] = []
    if screen is not None:
        for element in screen.elements:
            label = element.label()
            if label and label not in labels:
                labels.append(label)
            if len(labels) >= SCREEN_LABEL_LIMIT:
                break
    if labels:
        message = "I can see: " + ", ".join(labels)
    else:
        message = "I can see the current screen but couldn't identify specific elements."
    return HeuristicMatch("screen_query", [Respond(message)], message, is_complete=True)


def open_app_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    match = _OPEN_RE.search(text)
    if not match:
        return None
    name = match.group(1).strip()
    while True:
        trimmed = _OPEN_FILLER.sub("", name).strip()
        if trimmed == name:
            break
        name = trimmed
    if not name:
        return None
    if len(name.split()) > 3:
        name = name.split()[0]
    return HeuristicMatch("open_app", [OpenApp(name)], f"Opening {name}")


def scroll_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    match = _SCROLL_RE.search(text)
    if not match:
        return None
    direction = ScrollDirection.parse(match.group(1))
    return HeuristicMatch("scroll", [Scroll(direction)], f"Scrolling {direction.value}")


def back_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    if not _BACK_RE.search(text):
        return None
    return HeuristicMatch("back", [Back()], "Going back")


def home_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    if not _HOME_RE.search(text):
        return None
    return HeuristicMatch("home", [Home()], "Going to the home screen")


def type_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    match = _TYPE_RE.search(text)
    if not match:
        return None
    typed = match.group(1)
    target = (match.group(2) or "").strip()
    return HeuristicMatch("type", [Type(target, typed)], f"Typing '{typed}'")


def tap_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    match = _TAP_RE.search(text)
    if not match:
        return None
    target = match.group(1).strip()
    if not target:
        return None
    return HeuristicMatch("tap", [Click(target)], f"Tapping on {target}")


def help_rule(text: str, screen: Optional[ScreenState]) -> Optional[HeuristicMatch]:
    if not _HELP_RE.search(text):
        return None
    return HeuristicMatch("help", [Respond(HELP_MESSAGE)], HELP_MESSAGE, is_complete=True)


DEFAULT_RULES: List[HeuristicRule] = [
    screen_query_rule,
    open_app_rule,
    scroll_rule,
    back_rule,
    home_rule,
    type_rule,
    tap_rule,
    help_rule,
]


class HeuristicResponder:
    def __init__(self, rules: Optional[Iterable[HeuristicRule]] = None):
        self.rules = list(DEFAULT_RULES if rules is None else rules)

    def respond(self, text: str, screen: Optional[ScreenState] = None) -> Optional[HeuristicMatch]:
        for rule in self.rules:
            result = rule(text or "", screen)
            if result is not None:
                return result
        return None
