from enum import Enum


class ErrorKind(str, Enum):
    NO_ACTIVE_WINDOW = "no_active_window"
    ACTION_UNREACHABLE = "action_unreachable"
    UNKNOWN_APP = "unknown_app"
    PLAN_PARSE_FALLBACK = "plan_parse_fallback"
    INFERENCE_UNAVAILABLE = "inference_unavailable"
    PERMISSION_REVOKED = "permission_revoked"
    SKIPPED = "skipped"


class DeviceAgentError(Exception):
    """Base class for errors raised at device and inference boundaries."""

    kind: ErrorKind = ErrorKind.ACTION_UNREACHABLE


class NoActiveWindow(DeviceAgentError):
    """No foreground window could be read."""

    kind = ErrorKind.NO_ACTIVE_WINDOW


class PermissionRevoked(DeviceAgentError):
    """The automation channel went away. Fatal to the plan in flight."""

    kind = ErrorKind.PERMISSION_REVOKED


class InteractionRejected(DeviceAgentError):
    """The platform refused a node-native interaction on an element."""

    kind = ErrorKind.ACTION_UNREACHABLE


class InferenceUnavailable(DeviceAgentError):
    kind = ErrorKind.INFERENCE_UNAVAILABLE


class InvalidAction(DeviceAgentError, ValueError):
    """An action was constructed with fields that break its constraints."""
