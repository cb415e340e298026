"""
Scripted in-memory device.

Screens are plain ``WindowTree`` values. Clicking a node whose text or label
appears in ``transitions`` swaps the current window, which is enough to drive
multi-step plans without a phone or a browser.
"""

import itertools
from typing import Dict, List, Optional, Set, Tuple

from ..core.actions import ScrollDirection
from ..core.errors import InteractionRejected, PermissionRevoked
from ..core.types import Bounds, ScreenElement
from .base import RawNode, WindowTree

_handles = itertools.count()


def node(kind: str = "android.view.View", text: Optional[str] = None, label: Optional[str] = None,
         bounds: Tuple[int, int, int, int] = (0, 0, 100, 50), children: Optional[List[RawNode]] = None,
         **flags) -> RawNode:
    return RawNode(
        kind=kind,
        bounds=Bounds(*bounds),
        id=flags.pop("id", None),
        text=text,
        accessible_label=label,
        handle=f"n{next(_handles)}",
        children=list(children or []),
        **flags,
    )


def window(app: str, *children: RawNode, size: Tuple[int, int] = (1080, 2400),
           screen: Optional[str] = None) -> WindowTree:
    root = RawNode(
        kind="android.widget.FrameLayout",
        bounds=Bounds(0, 0, size[0], size[1]),
        handle=f"n{next(_handles)}",
        children=list(children),
    )
    return WindowTree(app_identifier=app, root=root, screen_identifier=screen)


class FakeDevice:
    def __init__(self, window: Optional[WindowTree] = None,
                 transitions: Optional[Dict[str, WindowTree]] = None,
                 apps: Optional[Dict[str, WindowTree]] = None):
        self.window = window
        self.transitions = dict(transitions or {})
        self.apps = dict(apps or {})
        self.home_window: Optional[WindowTree] = None
        self.back_stack: List[Optional[WindowTree]] = []
        # Operations listed here raise InteractionRejected on node-native calls.
        self.reject_native: Set[str] = set()
        self.revoked = False
        self.calls: List[Tuple] = []
        self.typed: Dict[str, str] = {}
        self.keyboard: List[str] = []

    def _record(self, *call) -> None:
        if self.revoked:
            raise PermissionRevoked("automation permission was revoked")
        self.calls.append(call)

    def _find(self, handle: Optional[str]) -> Optional[RawNode]:
        if self.window is None or handle is None:
            return None
        stack = [self.window.root]
        while stack:
            current = stack.pop()
            if current.handle == handle:
                return current
            stack.extend(current.children)
        return None

    def _navigate(self, key: Optional[str]) -> None:
        if key and key in self.transitions:
            self.back_stack.append(self.window)
            self.window = self.transitions[key]

    def read_ui_tree(self) -> Optional[WindowTree]:
        self._record("read_ui_tree")
        return self.window

    def click_node(self, element: ScreenElement) -> None:
        self._record("click_node", element.handle)
        if "click" in self.reject_native or not element.clickable:
            raise InteractionRejected(f"click not supported on {element.kind}")
        if self._find(element.handle) is None:
            raise InteractionRejected("element is no longer on screen")
        self._navigate(element.text or element.accessible_label)

    def set_text(self, element: ScreenElement, text: str, clear_first: bool) -> None:
        self._record("set_text", element.handle, text, clear_first)
        if "set_text" in self.reject_native or not element.editable:
            raise InteractionRejected(f"set_text not supported on {element.kind}")
        previous = "" if clear_first else self.typed.get(element.handle, "")
        self.typed[element.handle] = previous + text

    def scroll_node(self, element: ScreenElement, direction: ScrollDirection) -> None:
        self._record("scroll_node", element.handle, direction.value)
        if "scroll" in self.reject_native or not element.scrollable:
            raise InteractionRejected(f"scroll not supported on {element.kind}")

    def tap(self, x: int, y: int) -> None:
        self._record("tap", x, y)
        if self.window is None:
            return
        hit = None
        stack = [self.window.root]
        while stack:
            current = stack.pop()
            if current.bounds.contains(x, y):
                hit = current
                stack.extend(current.children)
        if hit is not None:
            self._navigate(hit.text or hit.accessible_label)

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        self._record("swipe", x1, y1, x2, y2, duration_ms)

    def input_text(self, text: str, clear_first: bool) -> None:
        self._record("input_text", text, clear_first)
        self.keyboard.append(text)

    def back(self) -> None:
        self._record("back")
        if self.back_stack:
            self.window = self.back_stack.pop()

    def home(self) -> None:
        self._record("home")
        self.back_stack.append(self.window)
        self.window = self.home_window

    def launch_app(self, identifier: str) -> None:
        self._record("launch_app", identifier)
        if identifier not in self.apps:
            raise InteractionRejected(f"{identifier} is not installed")
        self.back_stack.append(self.window)
        self.window = self.apps[identifier]

    def screenshot(self) -> Optional[bytes]:
        return None

    def revoke(self) -> None:
        self.revoked = True

    def calls_named(self, name: str) -> List[Tuple]:
        return [c for c in self.calls if c[0] == name]
