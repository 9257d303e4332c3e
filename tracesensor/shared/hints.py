from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
logger = logging.getLogger(__name__)


@dataclass
class Hint:
    """Structured hint for operator guidance.

    Attributes:
        title: Short title describing the hint.
        message: Main explanatory message.
        tips: Optional list of short actionable tips.
        code: Optional machine-readable code (e.g., "AGENT_KEY_MISSING").
        context: Optional context tags (e.g., ["auth", "ecs"]).
    """

    title: str
    message: str
    tips: list[str] | None = None
    code: str | None = None
    context: list[str] | None = None


AGENT_KEY_MISSING = Hint(
    title="Agent key required",
    message="Missing or invalid TRACESENSOR_AGENT_KEY.",
    tips=[
        "Set TRACESENSOR_AGENT_KEY in the process environment",
        "Check for whitespace or truncation",
    ],
    code="AGENT_KEY_MISSING",
    context=["auth"],
)

ENDPOINT_UNREACHABLE = Hint(
    title="Collector unreachable",
    message="Neither the configured endpoint nor the local agent responded.",
    tips=[
        "Check TRACESENSOR_ENDPOINT_URL",
        "Check that the agent listens on TRACESENSOR_AGENT_HOST:TRACESENSOR_AGENT_PORT",
    ],
    code="ENDPOINT_UNREACHABLE",
    context=["network"],
)

RATE_LIMIT_HIT = Hint(
    title="Rate limit reached",
    message="The collector is rejecting requests.",
    tips=[
        "Increase TRACESENSOR_FLUSH_INTERVAL",
        "Lower TRACESENSOR_MAX_BATCH_SIZE",
    ],
    code="RATE_LIMIT",
    context=["network"],
)

METADATA_UNAVAILABLE = Hint(
    title="Container metadata unavailable",
    message="The ECS metadata endpoint could not be read.",
    tips=[
        "Check ECS_CONTAINER_METADATA_URI",
        "Telemetry is still delivered with an unknown host identity",
    ],
    code="METADATA_UNAVAILABLE",
    context=["ecs", "identity"],
)

INVALID_CONFIG = Hint(
    title="Invalid configuration",
    message="Configuration is missing or malformed.",
    tips=[
        "Verify required environment variables",
    ],
    code="INVALID_CONFIG",
    context=["config"],
)


def log_hints(hints: Iterable[Hint] | None, *, level: int = logging.WARNING) -> None:
    """Emit hints through the module logger. No-op when there are none."""
    if not hints:
        return

    for hint in hints:
        if hint.title and hint.title != hint.message:
            logger.log(level, "%s: %s", hint.title, hint.message)
        else:
            logger.log(level, "%s", hint.message)

        for tip in hint.tips or []:
            logger.log(level, "  - %s", tip)
