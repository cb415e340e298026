import json
import logging
import re
import time
from pathlib import Path
from typing import Optional, Union

from .actions import describe
from .types import TurnResult, ScreenState

logger = logging.getLogger(__name__)


def sanitize_filename(name: str) -> str:
    # Keep only alphanumerics, spaces, dashes, underscores
    s = re.sub(r"[^a-zA-Z0-9 \-_]", "", name)
    s = s.strip().replace(" ", "_")
    return s[:48]


class TurnTrace:
    """Writes one directory per turn with the plan, report and screen.

    Disabled when ``root`` is None. Write failures are logged and swallowed so
    tracing can never break a turn.
    """

    def __init__(self, root: Optional[Union[str, Path]]):
        self.root = Path(root) if root else None

    @property
    def enabled(self) -> bool:
        return self.root is not None

    def turn_dir(self, turn_id: str, user_message: str) -> Optional[Path]:
        if self.root is None:
            return None
        stamp = time.strftime("%Y%m%dT%H%M%S")
        return self.root / f"{stamp}_{turn_id[:8]}_{sanitize_filename(user_message) or 'turn'}"

    def record(self, user_message: str, result: TurnResult, screen: Optional[ScreenState] = None) -> Optional[Path]:
        turn_dir = self.turn_dir(result.turn_id, user_message)
        if turn_dir is None:
            return None
        try:
            turn_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("[Trace] Could not create %s: %s", turn_dir, e)
            return None

        if result.plan is not None:
            self._write(turn_dir / "plan.json", json.dumps(result.plan.to_dict(), indent=2))
        if result.report is not None:
            self._write(turn_dir / "report.json", json.dumps(result.report.to_dict(), indent=2))
        if screen is not None:
            self._write(turn_dir / "screen.json", json.dumps(screen.to_dict(), indent=2))

        action_desc = [describe(a) for a in result.plan.actions] if result.plan else []
        note = (
            f"User: {user_message}\n"
            f"Actions: {', '.join(action_desc) or 'none'}\n"
            f"Response: {result.response}\n"
            f"Complete: {result.is_complete}\n"
        )
        if result.error_kind is not None:
            note += f"Error: {result.error_kind.value}\n"
        self._write(turn_dir / "note.txt", note)
        logger.info("[Trace] Turn written to %s", turn_dir)
        return turn_dir

    @staticmethod
    def _write(path: Path, content: str) -> None:
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.warning("[Trace] Failed to write %s: %s", path.name, e)
