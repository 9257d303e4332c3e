"""tracesensor exception types.

Nothing in here is allowed to reach the instrumented application: delivery
and identity errors are raised inside the sensor and handled there. The one
exception surfaced to callers is ``UnsupportedCarrierError``, which signals a
programming mistake at an instrumentation boundary.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from typing import Self

    import httpx

from tracesensor.shared.hints import (
    AGENT_KEY_MISSING,
    ENDPOINT_UNREACHABLE,
    INVALID_CONFIG,
    METADATA_UNAVAILABLE,
    RATE_LIMIT_HIT,
    Hint,
)

logger = logging.getLogger(__name__)


class SensorException(Exception):
    """Base exception class for all tracesensor errors."""

    # Subclasses can override this class attribute
    default_hints: ClassVar[list[Hint]] = []
    # Requests made before giving up, set by the request helpers
    attempts: int | None = None

    def __init__(
        self,
        message: str = "",
        response_json: dict[str, Any] | None = None,
        *,
        hints: list[Hint] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.response_json = response_json
        # If hints not provided, use defaults defined by subclass
        self.hints: list[Hint] = hints if hints is not None else list(self.default_hints)

    def __str__(self) -> str:
        msg = str(self.args[0]) if self.args and self.args[0] else ""

        if self.response_json:
            if msg:
                return f"{msg} | Response: {self.response_json}"
            return f"Response: {self.response_json}"

        return msg


class SensorRequestError(SensorException):
    """A request to the collector or a metadata endpoint failed with an HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
        response_json: dict[str, Any] | None = None,
        *,
        hints: list[Hint] | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_text = response_text
        if hints is None and status_code in (401, 403):
            hints = [AGENT_KEY_MISSING]
        elif hints is None and status_code == 429:
            hints = [RATE_LIMIT_HIT]
        super().__init__(message, response_json, hints=hints)

    def __str__(self) -> str:
        parts = [self.message]

        if self.status_code:
            parts.append(f"Status: {self.status_code}")

        if self.response_text:
            parts.append(f"Response Text: {self.response_text}")

        return " | ".join(parts)

    @classmethod
    def from_httpx_error(cls, error: httpx.HTTPStatusError, context: str = "") -> Self:
        """Create a request error from an httpx status error.

        Args:
            error: The httpx error response.
            context: Additional context to include in the error message.

        Returns:
            A SensorRequestError instance.
        """
        response = error.response
        status_code = response.status_code
        response_text = response.text

        response_json = None
        try:
            response_json = response.json()
        except ValueError:
            response_json = None

        message = f"Request failed with status {status_code}"
        if context:
            message = f"{context}: {message}"

        logger.debug(
            "HTTP error: %s | URL: %s | Response: %s%s",
            message,
            response.url,
            response_text[:500],
            "..." if len(response_text) > 500 else "",
        )
        return cls(
            message=message,
            status_code=status_code,
            response_text=response_text,
            response_json=response_json if isinstance(response_json, dict) else None,
        )


class SensorTimeoutError(SensorException):
    """Request timed out."""


class SensorNetworkError(SensorException):
    """Network connection issue."""

    default_hints: ClassVar[list[Hint]] = [ENDPOINT_UNREACHABLE]


class SensorConfigError(SensorException):
    """Invalid or missing configuration."""

    default_hints: ClassVar[list[Hint]] = [INVALID_CONFIG]


class ResolutionFailedError(SensorException):
    """Host identity could not be resolved from the metadata endpoint."""

    default_hints: ClassVar[list[Hint]] = [METADATA_UNAVAILABLE]


class DeliveryFailedError(SensorException):
    """A telemetry batch could not be delivered."""

    def __init__(self, message: str, attempts: int, *, hints: list[Hint] | None = None) -> None:
        super().__init__(message, hints=hints)
        self.attempts = attempts

    def __str__(self) -> str:
        return f"{self.message} | Attempts: {self.attempts}"


class UnsupportedCarrierError(SensorException, TypeError):
    """The object handed to the propagator is not a known carrier."""
