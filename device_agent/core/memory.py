import re
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol


@dataclass(frozen=True)
class MemoryItem:
    key: str
    value: str
    category: str = "general"
    importance: int = 5
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "value": self.value, "category": self.category}


class MemoryStore(Protocol):
    def remember(self, key: str, value: str, category: str = "general", importance: int = 5) -> None:
        ...

    def recall(self, query: str) -> List[MemoryItem]:
        ...

    def get_context_memories(self, limit: int) -> List[MemoryItem]:
        ...

    def forget(self, key: str) -> None:
        ...


def tokenize(text: str) -> List[str]:
    return [t for t in re.findall(r"[a-zA-Z0-9]+", text.lower()) if len(t) > 1]


@dataclass
class _Entry:
    item: MemoryItem
    access_count: int = 0
    updated_at: float = field(default_factory=time.time)


class InMemoryMemoryStore:
    """Process-local memory store.

    Upserts by key. Recall ranks by keyword overlap with key and value, then
    importance, then how recently the entry was written.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def remember(self, key: str, value: str, category: str = "general", importance: int = 5) -> None:
        key = key.strip()
        if not key:
            raise ValueError("memory key must be non-empty")
        importance = max(1, min(10, int(importance)))
        item = MemoryItem(key=key, value=value, category=category or "general", importance=importance)
        with self._lock:
            previous = self._entries.get(key)
            count = previous.access_count if previous else 0
            self._entries[key] = _Entry(item=item, access_count=count)

    def recall(self, query: str) -> List[MemoryItem]:
        query_tokens = set(tokenize(query))
        if not query_tokens:
            return []
        scored = []
        with self._lock:
            for entry in self._entries.values():
                entry_tokens = set(tokenize(entry.item.key + " " + entry.item.value))
                overlap = len(query_tokens & entry_tokens)
                if overlap == 0:
                    continue
                entry.access_count += 1
                scored.append((overlap, entry.item.importance, entry.updated_at, entry.item))
        scored.sort(key=lambda s: (s[0], s[1], s[2]), reverse=True)
        return [s[3] for s in scored]

    def get_context_memories(self, limit: int) -> List[MemoryItem]:
        with self._lock:
            entries = sorted(
                self._entries.values(),
                key=lambda e: (e.item.importance, e.access_count),
                reverse=True,
            )
        return [e.item for e in entries[:limit]]

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def get(self, key: str) -> Optional[MemoryItem]:
        with self._lock:
            entry = self._entries.get(key)
        return entry.item if entry else None

    def __len__(self) -> int:
        return len(self._entries)
