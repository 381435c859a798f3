from __future__ import annotations

from hass_socket.config import ReconnectOptions
from hass_socket.transport.reconnect import ReconnectStrategy


class TestReconnectStrategy:
    def test_default_delay_is_constant(self) -> None:
        strategy = ReconnectStrategy()
        assert strategy.get_delay(0) == 1000
        assert strategy.get_delay(1) == 1000
        assert strategy.get_delay(10) == 1000

    def test_exponential_backoff(self) -> None:
        strategy = ReconnectStrategy(
            ReconnectOptions(
                retry_delay_ms=100,
                backoff_multiplier=2.0,
                max_delay_ms=100_000,
            )
        )
        assert strategy.get_delay(0) == 100
        assert strategy.get_delay(1) == 200
        assert strategy.get_delay(2) == 400
        assert strategy.get_delay(3) == 800

    def test_caps_at_max_delay(self) -> None:
        strategy = ReconnectStrategy(
            ReconnectOptions(
                retry_delay_ms=1000,
                backoff_multiplier=10.0,
                max_delay_ms=5000,
            )
        )
        assert strategy.get_delay(0) == 1000
        assert strategy.get_delay(1) == 5000  # 10000 capped to 5000
        assert strategy.get_delay(2) == 5000

    def test_jitter_adds_randomness(self) -> None:
        strategy = ReconnectStrategy(
            ReconnectOptions(retry_delay_ms=1000, jitter_ms=500)
        )
        delays = {strategy.get_delay(0) for _ in range(20)}
        assert len(delays) > 1
        for d in delays:
            assert 1000 <= d < 1500

    def test_far_retries_stay_at_cap(self) -> None:
        strategy = ReconnectStrategy(
            ReconnectOptions(
                retry_delay_ms=100,
                backoff_multiplier=2.0,
                max_delay_ms=30_000,
            )
        )
        assert strategy.get_delay(8) == 25_600
        assert strategy.get_delay(9) == 30_000
        assert strategy.get_delay(1024) == 30_000
        assert strategy.get_delay(5000) == 30_000

    def test_initial_delay_above_cap_is_kept(self) -> None:
        strategy = ReconnectStrategy(
            ReconnectOptions(retry_delay_ms=60_000, max_delay_ms=30_000)
        )
        assert strategy.get_delay(0) == 60_000
        assert strategy.get_delay(5) == 60_000

    def test_zero_delay(self) -> None:
        strategy = ReconnectStrategy(ReconnectOptions(retry_delay_ms=0))
        assert strategy.get_delay(0) == 0

    def test_bounded_and_unbounded(self) -> None:
        assert ReconnectStrategy(ReconnectOptions(max_retries=3)).unbounded is False
        assert ReconnectStrategy(ReconnectOptions(max_retries=0)).unbounded is False
        unbounded = ReconnectStrategy(ReconnectOptions(max_retries=-1))
        assert unbounded.unbounded is True
        assert unbounded.max_retries == -1
