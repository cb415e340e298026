from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from ..core.actions import ScrollDirection
from ..core.types import Bounds, ScreenElement


@dataclass
class RawNode:
    """One node of a platform UI tree as read, before snapshotting."""

    kind: str
    bounds: Bounds
    id: Optional[str] = None
    text: Optional[str] = None
    accessible_label: Optional[str] = None
    clickable: bool = False
    editable: bool = False
    scrollable: bool = False
    checked: Optional[bool] = None
    handle: Optional[str] = None
    children: List["RawNode"] = field(default_factory=list)


@dataclass
class WindowTree:
    app_identifier: str
    root: RawNode
    screen_identifier: Optional[str] = None


class Device(Protocol):
    """Platform automation primitives.

    Node-native calls raise ``InteractionRejected`` when the platform refuses
    the interaction on that element. Any call may raise ``PermissionRevoked``
    once the automation channel is gone.
    """

    def read_ui_tree(self) -> Optional[WindowTree]:
        ...

    def click_node(self, element: ScreenElement) -> None:
        ...

    def set_text(self, element: ScreenElement, text: str, clear_first: bool) -> None:
        ...

    def scroll_node(self, element: ScreenElement, direction: ScrollDirection) -> None:
        ...

    def tap(self, x: int, y: int) -> None:
        ...

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        ...

    def input_text(self, text: str, clear_first: bool) -> None:
        ...

    def back(self) -> None:
        ...

    def home(self) -> None:
        ...

    def launch_app(self, identifier: str) -> None:
        ...

    def screenshot(self) -> Optional[bytes]:
        ...


def swipe_vector(area: Bounds, direction: ScrollDirection):
    """Start and end points of a swipe that scrolls ``area`` towards ``direction``.

    Scrolling down moves content up, so the finger travels from 70% to 30%.
    """
    cx, cy = area.center
    near_x = area.left + int(area.width * 0.3)
    far_x = area.left + int(area.width * 0.7)
    near_y = area.top + int(area.height * 0.3)
    far_y = area.top + int(area.height * 0.7)
    if direction is ScrollDirection.DOWN:
        return cx, far_y, cx, near_y
    if direction is ScrollDirection.UP:
        return cx, near_y, cx, far_y
    if direction is ScrollDirection.LEFT:
        return far_x, cy, near_x, cy
    return near_x, cy, far_x, cy
