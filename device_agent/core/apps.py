import re
import threading
from typing import Dict, Mapping, Optional

DEFAULT_ANDROID_APPS: Dict[str, str] = {
    "settings": "com.android.settings",
    "chrome": "com.android.chrome",
    "browser": "com.android.chrome",
    "messages": "com.google.android.apps.messaging",
    "sms": "com.google.android.apps.messaging",
    "phone": "com.google.android.dialer",
    "dialer": "com.google.android.dialer",
    "contacts": "com.google.android.contacts",
    "camera": "com.android.camera2",
    "photos": "com.google.android.apps.photos",
    "gallery": "com.google.android.apps.photos",
    "clock": "com.google.android.deskclock",
    "alarm": "com.google.android.deskclock",
    "calendar": "com.google.android.calendar",
    "gmail": "com.google.android.gm",
    "email": "com.google.android.gm",
    "maps": "com.google.android.apps.maps",
    "youtube": "com.google.android.youtube",
    "play store": "com.android.vending",
    "files": "com.google.android.documentsui",
    "calculator": "com.google.android.calculator",
}

# com.example.app or any scheme://... string
_PACKAGE_RE = re.compile(r"^[a-zA-Z][\w]*(\.[a-zA-Z_][\w]*)+$")
_URL_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def _normalize(name: str) -> str:
    name = re.sub(r"\s+", " ", (name or "").strip().lower())
    if name.endswith(" app"):
        name = name[:-4]
    if name.startswith("the "):
        name = name[4:]
    return name


class AppTable:
    """Case-insensitive map from spoken app names to platform identifiers."""

    def __init__(self, entries: Optional[Mapping[str, str]] = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, str] = {}
        for name, identifier in (DEFAULT_ANDROID_APPS if entries is None else entries).items():
            self.register(name, identifier)

    def register(self, name: str, identifier: str) -> None:
        key = _normalize(name)
        if not key or not identifier:
            raise ValueError("app name and identifier must be non-empty")
        with self._lock:
            self._entries[key] = identifier

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._entries.pop(_normalize(name), None) is not None

    def resolve(self, name: str) -> Optional[str]:
        raw = (name or "").strip()
        if _URL_RE.match(raw) or _PACKAGE_RE.match(raw):
            return raw
        with self._lock:
            return self._entries.get(_normalize(raw))

    def names(self):
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, name: str) -> bool:
        return self.resolve(name) is not None
