"""Error types for aci_imagegen.

Every fatal error is an ``AciBuildError`` carrying a typed reason code and
an ordered list of context fields (image identity, path, ...). Layers wrap
lower-level errors with ``raise AciBuildError(...) from err`` so the full
causal chain stays available to the CLI.
"""

from __future__ import annotations

from typing import Any

from aci_imagegen.types import ErrorReason


class AciBuildError(Exception):
    """Base error for all build operations.

    Attributes:
        message: Human-readable description of the failure.
        reason: Typed reason code.
        fields: Ordered context key/value pairs.
    """

    default_reason = ErrorReason.RUNTIME

    def __init__(
        self,
        message: str,
        reason: ErrorReason | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.fields: list[tuple[str, Any]] = list((fields or {}).items())

    @property
    def code(self) -> str:
        """Stable error code for programmatic handling."""
        return self.reason.value

    def with_fields(self, **fields: Any) -> AciBuildError:
        """Append context fields and return the same error."""
        self.fields.extend(fields.items())
        return self

    def context(self) -> dict[str, Any]:
        """Context fields as a dict (later keys win)."""
        return dict(self.fields)

    def chain(self) -> list[str]:
        """Describe this error followed by each of its causes."""
        lines: list[str] = []
        current: BaseException | None = self
        while current is not None:
            lines.append(str(current))
            current = current.__cause__
        return lines

    def __str__(self) -> str:
        if not self.fields:
            return self.message
        rendered = ", ".join(f"{k}={v}" for k, v in self.fields)
        return f"{self.message} [{rendered}]"


class ManifestError(AciBuildError):
    """Raised when a manifest template cannot be rendered."""

    default_reason = ErrorReason.MANIFEST_MALFORMED


class RuntimeCommandError(AciBuildError):
    """Raised when a runtime command exits with a failure status."""

    default_reason = ErrorReason.RUNTIME

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str | None = None,
        reason: ErrorReason | None = None,
        fields: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, reason=reason, fields=fields)
        self.exit_code = exit_code
        self.stderr = stderr


class SigningError(AciBuildError):
    """Raised when signing an artifact fails."""

    default_reason = ErrorReason.SIGNING


class PushError(AciBuildError):
    """Raised when uploading artifacts fails."""

    default_reason = ErrorReason.PUSH


__all__ = [
    "AciBuildError",
    "ManifestError",
    "PushError",
    "RuntimeCommandError",
    "SigningError",
]
