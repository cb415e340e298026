import logging
import re
import shlex
import subprocess
import xml.etree.ElementTree as ET
from typing import List, Optional

from ..core.actions import ScrollDirection
from ..core.config import ADB_PATH, ADB_SERIAL, ADB_TIMEOUT_S
from ..core.errors import InteractionRejected, PermissionRevoked
from ..core.types import Bounds, ScreenElement
from .base import RawNode, WindowTree

logger = logging.getLogger(__name__)

KEYCODE_HOME = 3
KEYCODE_BACK = 4
KEYCODE_DEL = 67
KEYCODE_MOVE_END = 123

# adb stderr fragments that mean the device is no longer ours to drive.
_LOST_DEVICE = ("unauthorized", "device offline", "no devices", "device not found", "not found")
_FOCUS_RE = re.compile(r"mCurrentFocus=Window\{\S+ \S+ ([^/\s]+)/([^\s}]+)\}")


def _flag(el: ET.Element, name: str) -> bool:
    return el.get(name, "false").lower() == "true"


def _parse_node(el: ET.Element) -> Optional[RawNode]:
    if el.tag != "node":
        return None
    kind = el.get("class", "") or "android.view.View"
    resource_id = el.get("resource-id") or None
    children = [c for c in (_parse_node(child) for child in el) if c is not None]
    return RawNode(
        kind=kind,
        bounds=Bounds.parse(el.get("bounds", "")) or Bounds(0, 0, 0, 0),
        id=resource_id.rsplit("/", 1)[-1] if resource_id else None,
        text=el.get("text") or None,
        accessible_label=el.get("content-desc") or el.get("hint") or None,
        clickable=_flag(el, "clickable") or _flag(el, "long-clickable"),
        editable="EditText" in kind or "AutoCompleteTextView" in kind,
        scrollable=_flag(el, "scrollable"),
        checked=_flag(el, "checked") if _flag(el, "checkable") else None,
        children=children,
    )


def parse_uiautomator_dump(xml_content: str) -> Optional[WindowTree]:
    """Turn ``uiautomator dump`` XML into a window tree.

    Output from ``exec-out`` may carry a trailing status line, so only the
    ``<hierarchy>`` element is parsed.
    """
    start = xml_content.find("<hierarchy")
    end = xml_content.rfind("</hierarchy>")
    if start == -1 or end == -1:
        logger.error("[Adb] No <hierarchy> tag found in uiautomator output")
        return None
    try:
        root = ET.fromstring(xml_content[start:end + len("</hierarchy>")])
    except ET.ParseError as e:
        logger.error("[Adb] Failed to parse uiautomator XML: %s", e)
        return None

    tops = [n for n in (_parse_node(child) for child in root) if n is not None]
    if not tops:
        return None
    package = next((c.get("package") for c in root if c.get("package")), None) or "unknown"
    if len(tops) == 1:
        top = tops[0]
    else:
        top = RawNode(
            kind="VirtualRoot",
            bounds=Bounds(
                min(t.bounds.left for t in tops),
                min(t.bounds.top for t in tops),
                max(t.bounds.right for t in tops),
                max(t.bounds.bottom for t in tops),
            ),
            children=tops,
        )
    return WindowTree(app_identifier=package, root=top)


class AdbDevice:
    """Android device driven through the ``adb`` command line.

    adb offers no node-level channel, so node-native calls are rejected and
    the executor falls back to coordinate gestures computed from bounds.
    """

    def __init__(self, serial: Optional[str] = ADB_SERIAL, adb_path: str = ADB_PATH,
                 timeout: float = ADB_TIMEOUT_S):
        self.serial = serial
        self.adb_path = adb_path
        self.timeout = timeout

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        cmd: List[str] = [self.adb_path]
        if self.serial:
            cmd.extend(["-s", self.serial])
        cmd.extend(args)
        try:
            proc = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
        except FileNotFoundError:
            raise PermissionRevoked(f"adb executable not found at '{self.adb_path}'")
        except subprocess.TimeoutExpired:
            raise InteractionRejected(f"adb {' '.join(args[:2])} timed out after {self.timeout}s")
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="ignore").strip()
            if any(fragment in stderr.lower() for fragment in _LOST_DEVICE):
                raise PermissionRevoked(f"adb lost the device: {stderr}")
            raise InteractionRejected(f"adb {' '.join(args[:3])} failed: {stderr}")
        return proc

    def _shell(self, *args: str) -> str:
        return self._run("shell", *args).stdout.decode("utf-8", errors="ignore")

    def read_ui_tree(self) -> Optional[WindowTree]:
        proc = self._run("exec-out", "uiautomator", "dump", "/dev/tty")
        tree = parse_uiautomator_dump(proc.stdout.decode("utf-8", errors="ignore"))
        if tree is None:
            return None
        try:
            match = _FOCUS_RE.search(self._shell("dumpsys", "window", "windows"))
        except InteractionRejected as e:
            logger.warning("[Adb] Could not read focused activity: %s", e)
            match = None
        if match:
            tree.screen_identifier = match.group(2)
        return tree

    def click_node(self, element: ScreenElement) -> None:
        raise InteractionRejected("adb has no node-native click")

    def set_text(self, element: ScreenElement, text: str, clear_first: bool) -> None:
        raise InteractionRejected("adb has no node-native text entry")

    def scroll_node(self, element: ScreenElement, direction: ScrollDirection) -> None:
        raise InteractionRejected("adb has no node-native scroll")

    def tap(self, x: int, y: int) -> None:
        self._shell("input", "tap", str(x), str(y))

    def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        self._shell("input", "swipe", str(x1), str(y1), str(x2), str(y2), str(duration_ms))

    def input_text(self, text: str, clear_first: bool) -> None:
        if clear_first:
            self._shell("input", "keyevent", str(KEYCODE_MOVE_END))
            self._shell("input", "keyevent", *([str(KEYCODE_DEL)] * 64))
        if not text:
            return
        # `input text` treats %s as a space and the device shell re-parses the line.
        escaped = text.replace("%", "\\%").replace(" ", "%s")
        self._shell("input", "text", shlex.quote(escaped))

    def back(self) -> None:
        self._shell("input", "keyevent", str(KEYCODE_BACK))

    def home(self) -> None:
        self._shell("input", "keyevent", str(KEYCODE_HOME))

    def launch_app(self, identifier: str) -> None:
        out = self._shell("monkey", "-p", identifier, "-c", "android.intent.category.LAUNCHER", "1")
        if "No activities found" in out or "monkey aborted" in out.lower():
            raise InteractionRejected(f"{identifier} has no launchable activity")

    def screenshot(self) -> Optional[bytes]:
        return self._run("exec-out", "screencap", "-p").stdout
