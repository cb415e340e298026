import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Screen capture
DEBOUNCE_WINDOW_MS = _env_int("DEVICE_AGENT_DEBOUNCE_MS", 300)
MAX_TREE_DEPTH = 40
MAX_TREE_ELEMENTS = 600
SCREEN_CHANGE_QUEUE_SIZE = 64

# Execution
MAX_WAIT_MS = 10_000
DEFAULT_WAIT_MS = 1000
ACTION_SETTLE_MS = _env_int("DEVICE_AGENT_SETTLE_MS", 300)
GESTURE_SWIPE_MS = 300

# Turn context
HISTORY_TURNS = 4
CONTEXT_MEMORIES = 10
PROMPT_ELEMENT_LIMIT = 25

# Inference
MODEL_NAME = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
INFERENCE_TIMEOUT_S = _env_int("DEVICE_AGENT_INFERENCE_TIMEOUT", 45)
INFERENCE_MAX_RETRIES = 1
ATTACH_SCREENSHOT = os.getenv("DEVICE_AGENT_ATTACH_SCREENSHOT", "").lower() in ("1", "true", "yes")
SCREENSHOT_MAX_SIZE = 720

# Devices
ADB_PATH = os.getenv("ADB_PATH", "adb")
ADB_SERIAL = os.getenv("ANDROID_SERIAL") or None
ADB_TIMEOUT_S = 10
BROWSER_HOME_URL = os.getenv("DEVICE_AGENT_HOME_URL", "about:blank")
BROWSER_PROFILE_DIR = "playwright_profile"

# Output paths
_artifacts = os.getenv("DEVICE_AGENT_ARTIFACTS")
OUT_DIR = Path(_artifacts) if _artifacts else None

# User-facing fixed messages
FALLBACK_MESSAGE = (
    "I'm not sure what to do with that. Could you tell me more specifically "
    "what you'd like me to do on the screen?"
)
OFFLINE_MESSAGE = (
    "I can't reach the language model right now, so I haven't touched your "
    "screen. Please try again in a moment."
)
PERMISSION_MESSAGE = (
    "I lost access to the device's automation service. Please re-grant the "
    "automation permission and try again."
)
CANCELLED_MESSAGE = "Okay, I stopped before doing anything else."
DONE_MESSAGE = "Done."
