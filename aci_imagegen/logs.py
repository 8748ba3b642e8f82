"""Logging helpers.

Modules log through ``logging.getLogger(__name__)``. Build code that needs
structured context (image name, path, hash) wraps its module logger in a
``ContextLogger`` owned by the build context, so the context travels with
the build instead of living in global state.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

from rich.logging import RichHandler

LOG_FORMAT = "%(message)s"


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that renders ordered context fields as key=value."""

    def __init__(
        self,
        logger: logging.Logger,
        fields: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(logger, {})
        self.fields: dict[str, Any] = dict(fields or {})

    def with_fields(self, **fields: Any) -> ContextLogger:
        """Return a child adapter with extra fields appended."""
        merged = dict(self.fields)
        merged.update(fields)
        return ContextLogger(self.logger, merged)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if self.fields:
            rendered = " ".join(f"{k}={v}" for k, v in self.fields.items())
            msg = f"{msg} [{rendered}]"
        return msg, kwargs


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with a rich console handler.

    Args:
        level: Logging level name.
    """
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=False, show_path=False)],
        force=True,
    )


def current_level_name() -> str:
    """Return the effective level name of the package logger."""
    return logging.getLevelName(logging.getLogger("aci_imagegen").getEffectiveLevel())


def is_debug_enabled() -> bool:
    """Whether debug logging is enabled for the package."""
    return logging.getLogger("aci_imagegen").isEnabledFor(logging.DEBUG)


__all__ = [
    "ContextLogger",
    "configure_logging",
    "current_level_name",
    "is_debug_enabled",
]
