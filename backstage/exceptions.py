"""Custom exception hierarchy for backstage.

Every error raised by the registry, its backing store, the template
boundary and the command router derives from BackstageError. Each
carries an ErrorCategory so callers can decide whether a failure is
worth reporting as transient or as a permanent user mistake.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for reporting decisions."""
    TRANSIENT = "transient"          # Storage hiccup, may succeed later
    PERMANENT = "permanent"          # Bad input (template syntax, unknown name)
    INFRASTRUCTURE = "infrastructure"  # Missing config, unreadable database


class BackstageError(Exception):
    """Base exception for all backstage errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification.
        module: Originating module name (e.g. "db", "registry").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        """Whether this error might not happen again."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Template exceptions
# ---------------------------------------------------------------------------

class CompileError(BackstageError):
    """Template source text could not be compiled.

    The message is shown verbatim to the operator who attempted the
    edit, so str() deliberately omits module and context.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, category=category, module=module or "template", **context
        )

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


class RenderError(BackstageError):
    """Template referenced context that was not supplied at render time."""

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, category=category, module=module or "template", **context
        )

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


# ---------------------------------------------------------------------------
# Storage exceptions
# ---------------------------------------------------------------------------

class StorageError(BackstageError):
    """Error during backing store operations.

    Attributes:
        operation: The store operation that failed (e.g. "edit", "rename").
        table: The table involved (if known).
    """

    def __init__(
        self,
        message: str = "",
        *,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.operation = operation
        self.table = table
        super().__init__(
            message, category=category, module=module or "db", **context
        )


class RenameConflict(BackstageError):
    """Rename target already exists in the channel.

    Attributes:
        channel: Channel the rename happened in.
        name: The conflicting target name.
    """

    def __init__(
        self,
        message: str = "",
        *,
        channel: Optional[str] = None,
        name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.channel = channel
        self.name = name
        super().__init__(
            message, category=category, module=module or "db", **context
        )


# ---------------------------------------------------------------------------
# Registry exceptions
# ---------------------------------------------------------------------------

class LoadError(BackstageError):
    """Registry warm start failed.

    Raised when storage is unreachable or any persisted row fails to
    compile. A corrupt row aborts the whole load rather than vanishing.
    """

    def __init__(
        self,
        message: str = "",
        *,
        kind: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.kind = kind
        super().__init__(
            message, category=category, module=module or "registry", **context
        )


class NotFound(BackstageError):
    """A structural operation targeted a name that does not exist."""

    def __init__(
        self,
        message: str = "",
        *,
        channel: Optional[str] = None,
        name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.channel = channel
        self.name = name
        super().__init__(
            message, category=category, module=module or "registry", **context
        )


# ---------------------------------------------------------------------------
# Command exceptions
# ---------------------------------------------------------------------------

class PermissionDenied(BackstageError):
    """Caller lacks the capability required by a command."""

    def __init__(
        self,
        message: str = "",
        *,
        scope: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.scope = scope
        super().__init__(
            message, category=category, module=module or "commands", **context
        )


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(BackstageError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )
