import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from ..core.actions import ScrollDirection
from ..core.config import BROWSER_HOME_URL, BROWSER_PROFILE_DIR
from ..core.errors import InteractionRejected, PermissionRevoked
from ..core.types import Bounds, ScreenElement
from .base import RawNode, WindowTree

logger = logging.getLogger(__name__)

HANDLE_ATTR = "data-agent-node"

# Walks the visible DOM and tags every element it reports so node-native
# calls can find it again with a CSS selector.
_TREE_JS = """
(maxNodes) => {
  const SKIP = new Set(['SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE', 'META', 'LINK', 'HEAD']);
  const CLICK_ROLES = new Set(['button', 'link', 'tab', 'menuitem', 'checkbox', 'radio',
                               'switch', 'option', 'combobox', 'treeitem']);
  const CLICK_TAGS = new Set(['A', 'BUTTON', 'SELECT', 'SUMMARY', 'LABEL']);
  const NON_TEXT_INPUTS = new Set(['button', 'submit', 'reset', 'checkbox', 'radio',
                                   'hidden', 'image', 'file', 'range', 'color']);
  let counter = 0;

  const ownText = (el) => {
    let out = '';
    for (const child of el.childNodes) {
      if (child.nodeType === Node.TEXT_NODE) out += child.textContent;
    }
    return out.replace(/\\s+/g, ' ').trim();
  };

  const walk = (el) => {
    if (counter >= maxNodes || SKIP.has(el.tagName)) return null;
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') return null;
    const rect = el.getBoundingClientRect();
    const tag = el.tagName;
    const role = el.getAttribute('role') || '';
    const type = (el.getAttribute('type') || 'text').toLowerCase();
    const editable = (tag === 'INPUT' && !NON_TEXT_INPUTS.has(type)) || tag === 'TEXTAREA'
      || el.isContentEditable;
    const clickable = CLICK_TAGS.has(tag) || CLICK_ROLES.has(role)
      || (tag === 'INPUT' && NON_TEXT_INPUTS.has(type)) || typeof el.onclick === 'function'
      || style.cursor === 'pointer';
    const scrollable = (el.scrollHeight > el.clientHeight + 4 || el.scrollWidth > el.clientWidth + 4)
      && /(auto|scroll)/.test(style.overflow + style.overflowY + style.overflowX);
    let label = el.getAttribute('aria-label') || el.getAttribute('title') || el.getAttribute('alt')
      || el.getAttribute('placeholder') || '';
    if (!label && el.labels && el.labels.length) label = el.labels[0].innerText.trim();
    let text = editable && 'value' in el ? el.value : ownText(el);
    const checkable = type === 'checkbox' || type === 'radio' || el.hasAttribute('aria-checked');

    const handle = 'n' + (counter++);
    el.setAttribute('""" + HANDLE_ATTR + """', handle);
    const children = [];
    for (const child of el.children) {
      const node = walk(child);
      if (node) children.push(node);
    }
    return {
      kind: role || tag.toLowerCase(),
      box: {x: rect.x, y: rect.y, width: rect.width, height: rect.height},
      id: el.id || null,
      text: text || null,
      label: label || null,
      clickable: clickable,
      editable: editable,
      scrollable: scrollable || el === document.scrollingElement,
      checked: checkable ? (el.checked === true || el.getAttribute('aria-checked') === 'true') : null,
      handle: handle,
      children: children,
    };
  };

  document.querySelectorAll('[""" + HANDLE_ATTR + """]').forEach(
    (el) => el.removeAttribute('""" + HANDLE_ATTR + """'));
  return document.body ? walk(document.body) : null;
}
"""


def _to_raw(node: Dict[str, Any]) -> RawNode:
    return RawNode(
        kind=node.get("kind") or "div",
        bounds=Bounds.from_box(node["box"]),
        id=node.get("id"),
        text=node.get("text"),
        accessible_label=node.get("label"),
        clickable=bool(node.get("clickable")),
        editable=bool(node.get("editable")),
        scrollable=bool(node.get("scrollable")),
        checked=node.get("checked"),
        handle=node.get("handle"),
        children=[_to_raw(c) for c in node.get("children") or []],
    )


def _closed(e: Exception) -> bool:
    msg = str(e).lower()
    return "has been closed" in msg or "target closed" in msg


class PlaywrightDevice:
    """A Playwright page treated as the device screen.

    Apps are URLs, Home navigates to the configured home page and Back uses
    the page history.
    """

    def __init__(self, page, home_url: str = BROWSER_HOME_URL, max_nodes: int = 5000):
        self.page = page
        self.home_url = home_url
        self.max_nodes = max_nodes
        self._playwright = None
        self._context = None

    @classmethod
    def launch(cls, profile_dir: str = BROWSER_PROFILE_DIR, headless: bool = False,
               home_url: str = BROWSER_HOME_URL) -> "PlaywrightDevice":
        logger.info("[Browser] Launching Playwright with profile %s", profile_dir)
        p = sync_playwright().start()
        context = p.chromium.launch_persistent_context(profile_dir, headless=headless, slow_mo=50)
        page = context.pages[0] if context.pages else context.new_page()
        page.goto(home_url)
        device = cls(page, home_url=home_url)
        device._playwright = p
        device._context = context
        return device

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
            self._context = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def _guard(self, fn, *args, **kwargs):
        if self.page.is_closed():
            raise PermissionRevoked("browser page was closed")
        try:
            return fn(*args, **kwargs)
        except PlaywrightTimeoutError as e:
            raise InteractionRejected(f"timed out: {e}")
        except PlaywrightError as e:
            if _closed(e):
                raise PermissionRevoked(f"browser went away: {e}")
            raise InteractionRejected(str(e))

    def _locator(self, element: ScreenElement):
        if not element.handle:
            raise InteractionRejected("element has no node handle")
        loc = self.page.locator(f'[{HANDLE_ATTR}="{element.handle}"]')
        if self._guard(loc.count) == 0:
            raise InteractionRejected("element is no longer on the page")
        return loc.first

    def read_ui_tree(self) -> Optional[WindowTree]:
        tree = self._guard(self.page.evaluate, _TREE_JS, self.max_nodes)
        if not tree:
            return None
        url = self.page.url
        parsed = urlparse(url)
        return WindowTree(
            app_identifier=parsed.netloc or url,
            root=_to_raw(tree),
            screen_identifier=parsed.path or None,
        )

    def click_node(self, element: ScreenElement) -> None:
        loc = self._locator(element)
        self._guard(loc.click, timeout=5000)

    def set_text(self, element: ScreenElement, text: str, clear_first: bool) -> None:
        if not element.editable:
            raise InteractionRejected(f"{element.kind} is not editable")
        loc = self._locator(element)
        if clear_first:
            self._guard(loc.fill, text, timeout=5000)
        else:
            self._guard(loc.click, timeout=5000)
            self._guard(self.page.keyboard.insert_text, text)

    def scroll_node(self, element: ScreenElement, direction: ScrollDirection) -> None:
        loc = self._locator(element)
        step_x = int(element.bounds.width * 0.8)
        step_y = int(element.bounds.height * 0.8)
        delta = {
            ScrollDirection.DOWN: (0, step_y),
            ScrollDirection.UP: (0, -step_y),
            ScrollDirection.RIGHT: (step_x, 0),
            ScrollDirection.LEFT: (-step_x, 0),
        }[direction]
        self._guard(loc.evaluate, "(el, d) => el.scrollBy(d[0], d[1])", list(delta))

    def tap(self, x: int, y: int) -> None:
        self._guard(self.page.mouse.click, x, y)

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        # A finger moving up scrolls content down, which is a positive wheel delta.
        self._guard(self.page.mouse.move, x1, y1)
        self._guard(self.page.mouse.wheel, x1 - x2, y1 - y2)

    def input_text(self, text: str, clear_first: bool) -> None:
        if clear_first:
            self._guard(self.page.keyboard.press, "Control+A")
            self._guard(self.page.keyboard.press, "Backspace")
        if text:
            self._guard(self.page.keyboard.type, text)

    def back(self) -> None:
        self._guard(self.page.go_back)

    def home(self) -> None:
        self._guard(self.page.goto, self.home_url)

    def launch_app(self, identifier: str) -> None:
        self._guard(self.page.goto, identifier)

    def screenshot(self) -> Optional[bytes]:
        try:
            return self._guard(self.page.screenshot)
        except InteractionRejected as e:
            logger.warning("[Browser] Screenshot failed: %s", e)
            return None
