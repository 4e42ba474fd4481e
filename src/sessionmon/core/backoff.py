"""Exponential backoff for reconnect scheduling."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sessionmon.core.config import ReconnectConfig

# Beyond this exponent every delay is clamped to the cap anyway
_MAX_EXPONENT = 64


class ReconnectPolicy:
    """Computes the delay before the next reconnect attempt.

    The delay doubles with every consecutive failure, starting at
    ``base_delay`` and never exceeding ``max_delay``. With ``jitter`` set,
    each delay is shortened by a random fraction of up to ``jitter`` so
    many connections failing together do not retry in lockstep.

    Example:
        >>> policy = ReconnectPolicy(base_delay=1.0, max_delay=30.0)
        >>> [policy.next_delay(n) for n in range(6)]
        [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            base_delay: Delay after the first failure, in seconds
            max_delay: Upper bound for any delay, in seconds
            jitter: Random reduction fraction in [0, 1]
            rng: Random source (default: a private Random instance)

        Raises:
            ValueError: If the parameters are out of range
        """
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        if not 0.0 <= jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_config(
        cls, config: ReconnectConfig, rng: random.Random | None = None
    ) -> ReconnectPolicy:
        """Create a policy from reconnect configuration."""
        return cls(
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            rng=rng,
        )

    @property
    def base_delay(self) -> float:
        return self._base_delay

    @property
    def max_delay(self) -> float:
        """Longest delay this policy can produce."""
        return self._max_delay

    def next_delay(self, attempt: int) -> float:
        """Get the delay before retrying.

        Args:
            attempt: Consecutive failures since the last successful connection

        Returns:
            Delay in seconds

        Raises:
            ValueError: If attempt is negative
        """
        if attempt < 0:
            raise ValueError("attempt must be non-negative")

        if attempt >= _MAX_EXPONENT:
            delay = self._max_delay
        else:
            delay = min(self._base_delay * (2**attempt), self._max_delay)

        if self._jitter:
            delay *= 1.0 - self._jitter * self._rng.random()
        return delay
