import logging
import time
from typing import Any, Dict, List, Optional

from ..core.config import MAX_TREE_DEPTH, MAX_TREE_ELEMENTS
from ..core.errors import NoActiveWindow
from ..core.types import ScreenElement, ScreenState
from ..devices.base import Device, RawNode, WindowTree

logger = logging.getLogger(__name__)


def build_screen_state(tree: WindowTree, max_depth: int = MAX_TREE_DEPTH,
                       max_elements: int = MAX_TREE_ELEMENTS) -> ScreenState:
    """Flatten a window tree into a pre-order arena.

    Nodes deeper than ``max_depth`` or past ``max_elements`` are dropped and
    the state is flagged as truncated.
    """
    rows: List[Dict[str, Any]] = []
    truncated = False
    # (node, parent position, depth)
    stack = [(tree.root, None, 0)]
    while stack:
        node, parent, depth = stack.pop()
        if depth > max_depth or len(rows) >= max_elements:
            truncated = True
            continue
        index = len(rows)
        rows.append({"node": node, "parent": parent, "children": []})
        if parent is not None:
            rows[parent]["children"].append(index)
        for child in reversed(node.children):
            stack.append((child, index, depth + 1))

    elements = tuple(_element(i, row) for i, row in enumerate(rows))
    return ScreenState(
        app_identifier=tree.app_identifier,
        elements=elements,
        captured_at=time.monotonic(),
        screen_identifier=tree.screen_identifier,
        truncated=truncated,
    )


def _element(index: int, row: Dict[str, Any]) -> ScreenElement:
    node: RawNode = row["node"]
    return ScreenElement(
        index=index,
        kind=node.kind,
        bounds=node.bounds,
        id=node.id,
        text=(node.text or "").strip() or None,
        accessible_label=(node.accessible_label or "").strip() or None,
        clickable=node.clickable,
        editable=node.editable,
        scrollable=node.scrollable,
        checked=node.checked,
        parent=row["parent"],
        children=tuple(row["children"]),
        handle=node.handle,
    )


class ScreenSnapshotter:
    def __init__(self, device: Device, max_depth: int = MAX_TREE_DEPTH,
                 max_elements: int = MAX_TREE_ELEMENTS):
        self.device = device
        self.max_depth = max_depth
        self.max_elements = max_elements

    def capture(self) -> ScreenState:
        """Read the foreground window. Never cached: every call hits the device."""
        tree: Optional[WindowTree] = self.device.read_ui_tree()
        if tree is None:
            raise NoActiveWindow("no foreground window is accessible")
        state = build_screen_state(tree, self.max_depth, self.max_elements)
        if state.truncated:
            logger.warning(
                "[Snapshot] %s tree truncated at %d elements", state.app_identifier, len(state.elements)
            )
        logger.debug("[Snapshot] Captured %d elements from %s", len(state.elements), state.app_identifier)
        return state
