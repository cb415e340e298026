import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from ..core.actions import (
    ACTION_TYPES,
    AIAction,
    ActionPlan,
    Back,
    Clarify,
    Click,
    Complete,
    Home,
    OpenApp,
    Respond,
    Scroll,
    ScrollDirection,
    Type,
    Wait,
)
from ..core.config import DEFAULT_WAIT_MS, FALLBACK_MESSAGE
from ..core.errors import ErrorKind, InvalidAction
from ..core.memory import MemoryItem
from ..core.types import ScreenState
from .heuristics import HeuristicResponder

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_RESPONSE_RE = re.compile(r'"response"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _balanced_object(text: str) -> Optional[str]:
    """First ``{...}`` span with balanced braces, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from here on; nothing later can close it either.
        return None
    return None


def extract_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """Pull the plan object out of a model reply.

    Handles code fences, prose around the object and a plan wrapped in a list.
    """
    if not raw:
        return None
    text = _strip_fences(raw)
    candidates = [text]
    span = _balanced_object(text)
    if span and span != text:
        candidates.append(span)
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, list):
            data = next((item for item in data if isinstance(item, dict)), None)
        if isinstance(data, dict):
            return data
    return None


def recover_response_text(raw: str) -> Optional[str]:
    """The ``"response"`` string of a truncated or broken JSON reply, if readable."""
    match = _RESPONSE_RE.search(raw or "")
    if not match:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except ValueError:
        return match.group(1)


def _first(entry: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in entry and entry[name] is not None:
            return entry[name]
    return None


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return default


def _as_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidAction(f"{field_name} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAction(f"{field_name} must be a finite number, got {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidAction(f"{field_name} must be a number, got {value!r}")


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def build_action(entry: Any) -> AIAction:
    """Validate one ``actions[]`` entry. Raises ``InvalidAction`` with the reason."""
    if not isinstance(entry, dict):
        raise InvalidAction(f"entry is not an object: {entry!r}")
    kind = str(entry.get("type") or entry.get("action") or "").strip().lower()
    if kind not in ACTION_TYPES:
        raise InvalidAction(f"unknown action type {kind or None!r}")

    if kind == "click":
        target = _as_text(_first(entry, "target", "label", "text")) or ""
        return Click(target=target, index=_as_int(entry.get("index"), "index"))
    if kind == "type":
        text = _as_text(_first(entry, "text", "value"))
        if text is None:
            raise InvalidAction("type needs text")
        target = _as_text(entry.get("target")) or ""
        clear_first = _as_bool(_first(entry, "clear_first", "clearFirst", "clear"), True)
        return Type(target=target, text=text, clear_first=clear_first)
    if kind == "scroll":
        direction = ScrollDirection.parse(entry.get("direction"))
        if direction is None:
            raise InvalidAction(f"invalid scroll direction {entry.get('direction')!r}")
        return Scroll(direction=direction, target=_as_text(entry.get("target")) or None)
    if kind == "back":
        return Back()
    if kind == "home":
        return Home()
    if kind == "open_app":
        return OpenApp(app_name=_as_text(_first(entry, "app", "app_name", "appName", "name")) or "")
    if kind == "wait":
        ms = _as_int(_first(entry, "ms", "milliseconds", "duration"), "milliseconds")
        return Wait(milliseconds=DEFAULT_WAIT_MS if ms is None else ms)
    if kind == "respond":
        return Respond(message=_as_text(_first(entry, "message", "text", "response")) or "")
    if kind == "clarify":
        question = _as_text(_first(entry, "question", "message", "text"))
        if not question:
            raise InvalidAction("clarify needs a question")
        return Clarify(question=question)
    return Complete(summary=_as_text(_first(entry, "summary", "message", "text")) or "")


def build_memory_item(entry: Any) -> MemoryItem:
    if not isinstance(entry, dict):
        raise InvalidAction(f"memory entry is not an object: {entry!r}")
    key = _as_text(entry.get("key"))
    value = _as_text(entry.get("value"))
    if not key or not key.strip() or value is None:
        raise InvalidAction("memory entry needs key and value")
    category = _as_text(entry.get("category")) or "general"
    importance = _as_int(entry.get("importance"), "importance")
    return MemoryItem(
        key=key.strip(),
        value=value,
        category=category,
        importance=min(10, max(1, importance)) if importance is not None else 5,
    )


class ActionPlanParser:
    """Turns a raw model reply into an ``ActionPlan``. ``parse`` never raises."""

    def __init__(self, responder: Optional[HeuristicResponder] = None):
        self.responder = responder or HeuristicResponder()

    def parse(self, raw: Optional[str], screen: Optional[ScreenState] = None) -> ActionPlan:
        raw = raw or ""
        data = extract_json_object(raw)
        if data is None:
            return self._fallback(raw, screen)
        try:
            return self._from_json(data)
        except Exception as e:
            logger.exception("[Parser] Structured parse failed, using heuristics: %s", e)
            return self._fallback(raw, screen)

    def _from_json(self, data: Dict[str, Any]) -> ActionPlan:
        warnings: List[str] = []
        reasoning = _as_text(_first(data, "thought", "reasoning")) or ""
        response = _as_text(data.get("response")) or ""
        is_complete = _as_bool(data.get("complete"), True)

        raw_actions = data.get("actions")
        if raw_actions is None:
            raw_actions = []
        elif isinstance(raw_actions, dict):
            raw_actions = [raw_actions]
        elif not isinstance(raw_actions, list):
            warnings.append(f"actions is not a list: {type(raw_actions).__name__}")
            raw_actions = []

        actions: List[AIAction] = []
        for i, entry in enumerate(raw_actions):
            try:
                actions.append(build_action(entry))
            except InvalidAction as e:
                warnings.append(f"dropped action {i}: {e}")
                logger.warning("[Parser] Dropped action %d: %s", i, e)

        memory: List[MemoryItem] = []
        raw_memory = data.get("memory") or []
        if isinstance(raw_memory, list):
            for i, entry in enumerate(raw_memory):
                try:
                    memory.append(build_memory_item(entry))
                except InvalidAction as e:
                    warnings.append(f"dropped memory {i}: {e}")
                    logger.warning("[Parser] Dropped memory entry %d: %s", i, e)

        if not actions and not is_complete:
            actions.append(Respond(response or FALLBACK_MESSAGE))

        return ActionPlan(
            reasoning=reasoning,
            actions=tuple(actions),
            is_complete=is_complete,
            response=response,
            memory_updates=tuple(memory),
            warnings=tuple(warnings),
        )

    def _fallback(self, raw: str, screen: Optional[ScreenState]) -> ActionPlan:
        recovered = recover_response_text(raw)
        looks_like_json = raw.lstrip().startswith(("{", "[", "```"))
        prose = recovered if recovered is not None else ("" if looks_like_json else raw.strip())

        match = self.responder.respond(prose, screen) if prose else None
        warnings: Tuple[str, ...]
        if match is not None:
            logger.info("[Parser] Non-JSON reply handled by '%s' rule", match.rule)
            warnings = (f"{ErrorKind.PLAN_PARSE_FALLBACK.value}: matched {match.rule}",)
            return ActionPlan(
                reasoning="",
                actions=tuple(match.actions),
                is_complete=match.is_complete,
                response=prose or match.response,
                warnings=warnings,
                used_fallback=True,
            )

        logger.info("[Parser] Non-JSON reply matched no rule")
        message = recovered or FALLBACK_MESSAGE
        return ActionPlan(
            reasoning="",
            actions=(Respond(message),),
            is_complete=False,
            response=message,
            warnings=(f"{ErrorKind.PLAN_PARSE_FALLBACK.value}: no rule matched",),
            used_fallback=True,
        )
