from __future__ import annotations

import math
import random

from ..config import UNBOUNDED_RETRIES, ReconnectOptions


class ReconnectStrategy:
    """Retry budget and back-off delays for connection attempts.

    With the default options every retry waits a constant ``retry_delay_ms``;
    a ``backoff_multiplier`` above 1 turns that into capped exponential
    back-off.
    """

    def __init__(self, options: ReconnectOptions | None = None) -> None:
        opts = options or ReconnectOptions()
        self._max_retries = opts.max_retries
        self._initial_delay_ms = opts.retry_delay_ms
        self._max_delay_ms = max(opts.max_delay_ms, opts.retry_delay_ms)
        self._backoff_multiplier = opts.backoff_multiplier
        self._jitter_ms = opts.jitter_ms

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def unbounded(self) -> bool:
        return self._max_retries == UNBOUNDED_RETRIES

    def get_delay(self, retry: int) -> float:
        """Return the delay in milliseconds before the given retry (0-based)."""
        jitter = random.random() * self._jitter_ms if self._jitter_ms else 0.0
        return self._base_delay(retry) + jitter

    def _base_delay(self, retry: int) -> float:
        initial = self._initial_delay_ms
        multiplier = self._backoff_multiplier
        if initial <= 0 or multiplier <= 1:
            return min(initial * multiplier**retry, self._max_delay_ms)
        # Compare against the cap first so multiplier**retry stays finite on
        # long unbounded loops.
        if retry >= math.log(self._max_delay_ms / initial, multiplier):
            return float(self._max_delay_ms)
        return initial * multiplier**retry
