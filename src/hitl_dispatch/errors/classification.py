"""
Error classification for human-tier and webhook failures.

Human responders fail in ways that are worth waiting out (busy, away,
do-not-disturb) and ways that are not (explicit rejection). HTTP delivery
failures are retryable only when the server, not the client, is at fault.
"""

from __future__ import annotations

from enum import Enum


class HumanErrorCode(str, Enum):
    """Error tokens carried in human-tier error messages."""

    TIMEOUT = "TIMEOUT"
    """Responder did not answer before the per-attempt timeout."""

    UNAVAILABLE = "UNAVAILABLE"
    """No responder reachable on the channel."""

    BUSY = "BUSY"
    """Responder is working on something else."""

    AWAY = "AWAY"
    """Responder stepped away (break, meeting)."""

    DO_NOT_DISTURB = "DO_NOT_DISTURB"
    """Responder explicitly muted notifications."""

    REJECTED = "REJECTED"
    """Responder declined the request; never transient."""


# Tokens retried by a plain RetryPolicy
DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    HumanErrorCode.TIMEOUT.value,
    HumanErrorCode.UNAVAILABLE.value,
    HumanErrorCode.BUSY.value,
)

# Tokens retried by RetryPolicy.for_humans()
HUMAN_RETRYABLE_ERRORS: tuple[str, ...] = (
    *DEFAULT_RETRYABLE_ERRORS,
    HumanErrorCode.AWAY.value,
    HumanErrorCode.DO_NOT_DISTURB.value,
)


def matches_retryable(message: str, retryable_errors: tuple[str, ...] | list[str]) -> bool:
    """Check whether an error message contains any retryable token.

    Matching is by substring so messages may carry extra context, e.g.
    ``"BUSY: in a meeting until 3pm"``.

    Args:
        message: Error message to inspect
        retryable_errors: Retryable tokens

    Returns:
        True if any token occurs in the message
    """
    return any(token in message for token in retryable_errors)


def is_retryable_status(status_code: int | None) -> bool:
    """Check if an HTTP delivery failure should be retried.

    Network errors (no status code) and 5xx responses are transient;
    4xx responses are client errors and never retried.

    Args:
        status_code: HTTP status code, or None for network failures

    Returns:
        True if the delivery should be retried
    """
    if not status_code:
        return True
    return status_code >= 500
