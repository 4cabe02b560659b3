"""mlti error definitions."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Informational, the run continues
    MEDIUM = "medium"     # Retry with delay
    HIGH = "high"         # Terminal for one task
    CRITICAL = "critical" # Terminal for the whole run


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Launch may succeed on a later attempt
    PERMANENT = "permanent"       # Bad config, won't resolve by retrying
    RESOURCE = "resource"         # OS limits (fds, processes)
    CHANNEL = "channel"           # Message bus has shut down


class MltiError(Exception):
    """Base exception for all mlti errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        import hashlib
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("task_index", "")),
            str(self.context.get("executable", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(MltiError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class SpawnError(MltiError):
    """A process could not be launched at all."""

    def __init__(
        self,
        message: str,
        executable: Optional[str] = None,
        task_index: Optional[int] = None,
        not_found: bool = False,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault(
            "category",
            ErrorCategory.PERMANENT if not_found else ErrorCategory.RESOURCE,
        )
        super().__init__(message, **kwargs)
        self.executable = executable
        self.task_index = task_index
        self.not_found = not_found
        self.context["executable"] = executable
        self.context["task_index"] = task_index
        self.context["not_found"] = not_found


class ExhaustedRetriesError(MltiError):
    """A task used up its restart budget without ever launching."""

    def __init__(
        self,
        message: str,
        task_index: Optional[int] = None,
        attempts: int = 0,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["task_index"] = task_index
        self.context["attempts"] = attempts


class ChannelClosedError(MltiError):
    """The message channel has no more messages and was closed."""

    def __init__(self, message: str, channel: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.CHANNEL)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["channel"] = channel
