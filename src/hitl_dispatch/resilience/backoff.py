"""
Exponential backoff with jitter.

Human responders need minutes to hours of patience, so the human-tier
defaults are far longer than machine retry delays.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from typing import Any

from hitl_dispatch.errors import ValidationError

# Human-tier defaults
HUMAN_BASE_DELAY_MS = 60_000  # 1 minute
HUMAN_MAX_DELAY_MS = 3_600_000  # 1 hour


@dataclass(frozen=True)
class BackoffConfig:
    """Configuration for exponential backoff.

    Attributes:
        base_delay_ms: Delay before the first retry
        multiplier: Growth factor per attempt (>= 1)
        max_delay_ms: Cap on any single delay
        jitter_factor: Relative noise in [0, 1] applied around the delay
    """

    base_delay_ms: float
    multiplier: float = 2.0
    max_delay_ms: float = math.inf
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            raise ValidationError(
                "Base delay must be non-negative",
                field="base_delay_ms",
                actual=self.base_delay_ms,
            )
        if self.multiplier < 1:
            raise ValidationError(
                "Multiplier must be >= 1",
                field="multiplier",
                expected=">= 1",
                actual=self.multiplier,
            )
        if not 0 <= self.jitter_factor <= 1:
            raise ValidationError(
                "Jitter factor must be between 0 and 1",
                field="jitter_factor",
                expected="0..1",
                actual=self.jitter_factor,
            )

    @classmethod
    def for_humans(cls, **overrides: Any) -> BackoffConfig:
        """Create a configuration with human-appropriate defaults."""
        base = cls(
            base_delay_ms=HUMAN_BASE_DELAY_MS,
            multiplier=2.0,
            max_delay_ms=HUMAN_MAX_DELAY_MS,
            jitter_factor=0.1,
        )
        return replace(base, **overrides)


class ExponentialBackoff:
    """Exponential backoff calculator.

    Example:
        >>> backoff = ExponentialBackoff.for_humans()
        >>> delay_ms = backoff.get_delay_with_jitter(attempt)
        >>> await asyncio.sleep(delay_ms / 1000)
    """

    def __init__(self, config: BackoffConfig) -> None:
        """Initialize backoff.

        Args:
            config: Backoff configuration
        """
        self.config = config

    @classmethod
    def for_humans(cls, **overrides: Any) -> ExponentialBackoff:
        """Create a backoff with human-tier defaults.

        Base delay 1 minute, max delay 1 hour, multiplier 2, jitter 10%.
        Keyword overrides replace individual fields.
        """
        return cls(BackoffConfig.for_humans(**overrides))

    def get_delay(self, attempt: int) -> float:
        """Calculate the delay for an attempt.

        Args:
            attempt: Attempt number (0-based)

        Returns:
            Delay in milliseconds
        """
        delay = self.config.base_delay_ms * (self.config.multiplier ** attempt)
        return min(delay, self.config.max_delay_ms)

    def get_delay_with_jitter(self, attempt: int) -> float:
        """Calculate the delay with uniform jitter applied.

        The result lies in ``delay ± delay * jitter_factor`` and is rounded
        to whole milliseconds. With no jitter the exact delay is returned.

        Args:
            attempt: Attempt number (0-based)

        Returns:
            Delay in milliseconds
        """
        base_delay = self.get_delay(attempt)

        if self.config.jitter_factor == 0:
            return base_delay

        jitter_range = base_delay * self.config.jitter_factor
        jitter = random.uniform(-1, 1) * jitter_range
        return round(base_delay + jitter)

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoff(base={self.config.base_delay_ms}ms, "
            f"x{self.config.multiplier}, max={self.config.max_delay_ms}ms)"
        )
