import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..core.config import INFERENCE_MAX_RETRIES, INFERENCE_TIMEOUT_S, MODEL_NAME, PROMPT_ELEMENT_LIMIT
from ..core.errors import InferenceUnavailable
from ..core.history import ChatMessage
from ..core.memory import MemoryItem
from ..core.types import ScreenState
from ..utils.imaging import image_to_data_url

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a device assistant. You can see the UI elements of the app in the foreground "
    "and act on them for the user.\n"
    "\n"
    "You can:\n"
    "- READ the elements listed under [Current Screen]\n"
    "- CLICK an element by its label, or by `index` among clickable elements\n"
    "- TYPE into a text field\n"
    "- SCROLL up, down, left or right\n"
    "- go BACK, go HOME, OPEN an app by name\n"
    "- REMEMBER facts about the user across turns\n"
    "\n"
    "====================\n"
    "OUTPUT FORMAT (JSON ONLY)\n"
    "====================\n"
    "{\n"
    "  \"thought\": \"Brief reasoning about what you're doing\",\n"
    "  \"response\": \"Short message to show the user\",\n"
    "  \"actions\": [\n"
    "    {\"type\": \"click\", \"target\": \"button text or description\", \"index\": 0},\n"
    "    {\"type\": \"type\", \"target\": \"field label\", \"text\": \"text to enter\", \"clear\": true},\n"
    "    {\"type\": \"scroll\", \"direction\": \"up|down|left|right\"},\n"
    "    {\"type\": \"back\"},\n"
    "    {\"type\": \"home\"},\n"
    "    {\"type\": \"open_app\", \"app\": \"app name\"},\n"
    "    {\"type\": \"wait\", \"ms\": 1000}\n"
    "  ],\n"
    "  \"memory\": [\n"
    "    {\"key\": \"user_preference\", \"value\": \"dark mode\", \"category\": \"preference\"}\n"
    "  ],\n"
    "  \"complete\": true | false\n"
    "}\n"
    "\n"
    "Rules:\n"
    "- Only perform actions the user asked for.\n"
    "- `index` is optional; use it only when several elements share a label.\n"
    "- Set \"complete\": false when more steps are needed after these actions.\n"
    "- If you cannot find an element, say what you see instead of guessing.\n"
    "- Ask for clarification when the request is ambiguous.\n"
    "- Never repeat sensitive information visible on screen.\n"
)


@dataclass
class InferenceRequest:
    user_message: str
    screen: Optional[ScreenState] = None
    history: List[ChatMessage] = field(default_factory=list)
    memories: List[MemoryItem] = field(default_factory=list)
    screenshot: Optional[bytes] = None


class InferenceClient(Protocol):
    def complete(self, request: InferenceRequest) -> str:
        """Raw model text. Raises ``InferenceUnavailable`` on failure or timeout."""
        ...


def build_messages(request: InferenceRequest, element_limit: int = PROMPT_ELEMENT_LIMIT) -> List[BaseMessage]:
    system = SYSTEM_PROMPT
    if request.memories:
        system += "\nRemembered information:\n"
        system += "".join(f"- {m.key}: {m.value} ({m.category})\n" for m in request.memories)
    messages: List[BaseMessage] = [SystemMessage(content=system)]

    for msg in request.history:
        if msg.role == "user":
            messages.append(HumanMessage(content=msg.content))
        elif msg.role == "assistant":
            messages.append(AIMessage(content=msg.content))
        else:
            messages.append(SystemMessage(content=msg.content))

    parts = []
    if request.screen is not None:
        parts.append("[Current Screen]")
        parts.append(request.screen.to_prompt_context(element_limit))
        parts.append("")
    parts.append("[User Request]")
    parts.append(request.user_message)
    text = "\n".join(parts)

    if request.screenshot:
        try:
            data_url = image_to_data_url(request.screenshot)
        except Exception as e:
            logger.warning("[Inference] Could not encode screenshot, sending text only: %s", e)
        else:
            messages.append(HumanMessage(content=[
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {"url": data_url}},
            ]))
            return messages
    messages.append(HumanMessage(content=text))
    return messages


def _content_text(content: Any) -> str:
    if isinstance(content, list):
        chunks = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                chunks.append(part.get("text", ""))
            elif isinstance(part, str):
                chunks.append(part)
        return "".join(chunks)
    return content if isinstance(content, str) else str(content)


class ChatModelInference:
    """OpenAI chat model behind the inference contract."""

    def __init__(self, llm=None, model: str = MODEL_NAME, temperature: float = 0.2,
                 timeout: float = INFERENCE_TIMEOUT_S, max_retries: int = INFERENCE_MAX_RETRIES):
        self.llm = llm or ChatOpenAI(
            model=model,
            temperature=temperature,
            timeout=timeout,
            max_retries=max_retries,
        )

    def complete(self, request: InferenceRequest) -> str:
        messages = build_messages(request)
        logger.info("[Inference] Calling model with %d messages", len(messages))
        try:
            result = self.llm.invoke(messages)
        except Exception as e:
            logger.error("[Inference] Model call failed: %s", e)
            raise InferenceUnavailable(str(e)) from e
        text = _content_text(getattr(result, "content", result))
        logger.debug("[Inference] Raw response: %s", text)
        return text
