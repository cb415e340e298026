import threading
import time
from dataclasses import dataclass, field
from typing import List

ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown chat role '{self.role}'")

    def to_dict(self):
        return {"role": self.role, "content": self.content}


class ConversationHistory:
    """Append-only transcript of the session. Turns read a trailing window of it."""

    def __init__(self, max_messages: int = 200):
        self.max_messages = max_messages
        self._messages: List[ChatMessage] = []
        self._lock = threading.Lock()

    def add(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        with self._lock:
            self._messages.append(message)
            if len(self._messages) > self.max_messages:
                self._messages = self._messages[-self.max_messages:]
        return message

    def tail(self, n: int) -> List[ChatMessage]:
        with self._lock:
            if n <= 0:
                return []
            return list(self._messages[-n:])

    def clear(self) -> None:
        with self._lock:
            self._messages = []

    def __len__(self) -> int:
        return len(self._messages)
