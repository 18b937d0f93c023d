"""Structured error types for the extraction pipeline.

Every error carries a category, a human-readable message and an optional
recovery suggestion so that the CLI and status surfaces can render it
consistently. Malformed capability output is not an error: parsers degrade
to empty results instead of raising.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_ANSI = {
    "error": "\033[91m",
    "suggestion": "\033[96m",
    "detail": "\033[2m",
}
_ANSI_RESET = "\033[0m"


def _paint(text: str, style: str, use_color: bool) -> str:
    if not use_color:
        return text
    return f"{_ANSI[style]}{text}{_ANSI_RESET}"


def _details(**values: Any) -> dict[str, Any] | None:
    """Drop unset values; None when nothing is left."""
    kept = {key: value for key, value in values.items() if value}
    return kept or None


class ErrorCategory(Enum):
    """Where in the pipeline an error originated."""

    NOT_FOUND = "not_found"
    CAPTURE = "capture"
    CLASSIFICATION = "classification"
    STORAGE = "storage"
    IMAGE = "image"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"


@dataclass
class ExtractorError(Exception):
    """Base class for structured extractor errors.

    Attributes:
        category: Error category for grouping.
        message: Human-readable error message, stored verbatim on failed
            checkpoints.
        suggestion: Optional recovery hint shown by the CLI.
        details: Optional context such as the checkpoint id or url.
        exit_code: CLI exit status when this error ends a command.
    """

    category: ErrorCategory
    message: str
    suggestion: str | None = None
    details: dict[str, Any] | None = field(default_factory=dict)
    exit_code: int = 1

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def format(self, use_color: bool = True) -> str:
        """Render the error, its suggestion and details as terminal lines."""
        lines = [f"{_paint('Error:', 'error', use_color)} {self.message}"]
        if self.suggestion:
            lines.append(f"{_paint('Suggestion:', 'suggestion', use_color)} {self.suggestion}")
        for key, value in (self.details or {}).items():
            lines.append(_paint(f"  {key}: {value}", "detail", use_color))
        return "\n".join(lines)


class CheckpointNotFoundError(ExtractorError):
    """An operation named a checkpoint id the store does not know."""

    def __init__(self, checkpoint_id: str):
        super().__init__(
            category=ErrorCategory.NOT_FOUND,
            message=f"Checkpoint {checkpoint_id} not found",
            suggestion="Run 'design-extractor list' to see known checkpoints",
            details={"checkpoint_id": checkpoint_id},
        )
        self.checkpoint_id = checkpoint_id


class InvalidCheckpointIdError(ExtractorError):
    """The id cannot be used as a storage key."""

    def __init__(self, checkpoint_id: str):
        super().__init__(
            category=ErrorCategory.VALIDATION,
            message=f"Invalid checkpoint id: {checkpoint_id!r}",
            suggestion="Checkpoint ids must be a single non-empty path segment",
            details={"checkpoint_id": checkpoint_id},
            exit_code=2,
        )


class CaptureError(ExtractorError):
    """Navigation, timeout or browser crash during screenshot capture."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(
            category=ErrorCategory.CAPTURE,
            message=message,
            suggestion="Check the URL is reachable; raise --timeout for slow pages",
            details=_details(url=url),
        )


class ClassificationError(ExtractorError):
    """The multimodal capability call failed (network, auth, missing key)."""

    def __init__(self, message: str, model: str | None = None, suggestion: str | None = None):
        super().__init__(
            category=ErrorCategory.CLASSIFICATION,
            message=message,
            suggestion=suggestion or "Verify OPENAI_API_KEY and network access",
            details=_details(model=model),
        )


class StoreIOError(ExtractorError):
    """The storage medium failed or returned corrupt data."""

    def __init__(self, message: str, checkpoint_id: str | None = None):
        super().__init__(
            category=ErrorCategory.STORAGE,
            message=message,
            suggestion="Check disk space, permissions and database connectivity",
            details=_details(checkpoint_id=checkpoint_id),
        )


class ImageDecodeError(ExtractorError):
    """Image bytes could not be decoded."""

    def __init__(self, message: str):
        super().__init__(
            category=ErrorCategory.IMAGE,
            message=message,
            suggestion="Provide PNG, JPEG, GIF or WebP image data",
            details=None,
        )


class ConfigurationError(ExtractorError):
    """Invalid configuration file, environment value or override."""

    def __init__(
        self,
        message: str,
        config_file: str | None = None,
        suggestion: str | None = None,
    ):
        super().__init__(
            category=ErrorCategory.CONFIGURATION,
            message=message,
            suggestion=suggestion or "Check the configuration file and environment variables",
            details=_details(config_file=config_file),
        )


def handle_exception(
    error: Exception,
    use_color: bool = True,
    verbose: bool = False,
) -> tuple[str, int]:
    """Turn an exception into CLI output and an exit code.

    Structured errors render through ``format``; anything else becomes a
    plain ``Error:`` line with exit code 1.

    Args:
        error: The exception to report.
        use_color: Whether to emit ANSI colors.
        verbose: Append the active traceback.

    Returns:
        Tuple of (message, exit_code).
    """
    if isinstance(error, ExtractorError):
        message, exit_code = error.format(use_color=use_color), error.exit_code
    else:
        message, exit_code = f"{_paint('Error:', 'error', use_color)} {error}", 1

    if verbose:
        message = f"{message}\n\nTraceback:\n{traceback.format_exc()}"
    return message, exit_code
