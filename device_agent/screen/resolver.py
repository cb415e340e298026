import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..core.actions import AIAction, Click, Scroll, Type
from ..core.types import Bounds, Capability, ScreenElement, ScreenState

logger = logging.getLogger(__name__)

_POINT_RE = re.compile(r"^\(?\s*(-?\d+)\s*,\s*(-?\d+)\s*\)?$")
_RECT_RE = re.compile(r"^\s*\[-?\d+,-?\d+\]\[-?\d+,-?\d+\]\s*$")


@dataclass(frozen=True)
class TargetDescriptor:
    """What an action points at: a label, an index, or raw coordinates."""

    text: Optional[str] = None
    index: Optional[int] = None
    point: Optional[Tuple[int, int]] = None
    rect: Optional[Bounds] = None
    capability: Optional[Capability] = None

    @classmethod
    def parse(cls, target: Optional[str], index: Optional[int] = None,
              capability: Optional[Capability] = None) -> "TargetDescriptor":
        raw = (target or "").strip()
        match = _POINT_RE.match(raw)
        if match:
            return cls(index=index, point=(int(match.group(1)), int(match.group(2))), capability=capability)
        if _RECT_RE.match(raw):
            return cls(index=index, rect=Bounds.parse(raw), capability=capability)
        return cls(text=raw or None, index=index, capability=capability)

    @classmethod
    def from_action(cls, action: AIAction) -> Optional["TargetDescriptor"]:
        if isinstance(action, Click):
            return cls.parse(action.target, action.index, Capability.CLICKABLE)
        if isinstance(action, Type):
            desc = cls.parse(action.target, None, Capability.EDITABLE)
            if desc.text is None and not desc.has_coordinates:
                # No target named: the first text field on screen.
                return cls(index=0, capability=Capability.EDITABLE)
            return desc
        if isinstance(action, Scroll) and action.target:
            return cls.parse(action.target, None, Capability.SCROLLABLE)
        return None

    @property
    def has_coordinates(self) -> bool:
        return self.point is not None or self.rect is not None

    @property
    def coordinate_hint(self) -> Optional[Tuple[int, int]]:
        if self.point is not None:
            return self.point
        if self.rect is not None:
            return self.rect.center
        return None


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


Tier = Callable[[ScreenElement, str], bool]

MATCH_TIERS: List[Tuple[str, Tier]] = [
    ("exact_text", lambda e, needle: _norm(e.text) == needle),
    ("exact_label", lambda e, needle: _norm(e.accessible_label) == needle),
    ("substring", lambda e, needle: needle in _norm(e.text) or needle in _norm(e.accessible_label)),
]


class ElementResolver:
    """Finds the element a target descriptor refers to.

    Text tiers run in order and the first tier with any match wins. Inside a
    tier, elements that carry the requested capability (directly or through
    an ancestor) are preferred, then the larger area, then traversal order.
    An explicit index picks the n-th element with the capability. Coordinate
    descriptors never match here; the executor uses them for gestures.
    """

    def resolve(self, state: ScreenState, target: TargetDescriptor) -> Optional[ScreenElement]:
        needle = _norm(target.text)
        if needle:
            for tier_name, matches in MATCH_TIERS:
                hits = [e for e in state.elements if matches(e, needle)]
                if hits:
                    chosen = self._pick(state, hits, target.capability)
                    logger.debug("[Resolver] '%s' -> #%d via %s", target.text, chosen.index, tier_name)
                    return chosen

        if target.index is not None:
            pool = state.with_capability(target.capability) if target.capability else list(state.elements)
            if 0 <= target.index < len(pool):
                return pool[target.index]

        logger.debug("[Resolver] No element for %s", target)
        return None

    def _pick(self, state: ScreenState, hits: List[ScreenElement],
              capability: Optional[Capability]) -> ScreenElement:
        if capability is not None:
            direct = [e for e in hits if e.has(capability)]
            via_parent = [e for e in hits if state.nearest_with(e, capability) is not None]
            hits = direct or via_parent or hits
        # max() keeps the first of equal keys, which is the earliest in traversal order.
        return max(hits, key=lambda e: e.bounds.area)
