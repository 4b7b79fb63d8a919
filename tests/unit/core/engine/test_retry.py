"""Tests for backoff helpers."""

from __future__ import annotations

import pytest

from orchestrion.core.engine.retry import exponential_backoff_ms, task_retry_delay_ms


class TestExponentialBackoff:
    """Tests for exponential_backoff_ms."""

    def test_doubles_from_base(self):
        assert [exponential_backoff_ms(i) for i in range(4)] == [1000, 2000, 4000, 8000]

    def test_capped_at_max(self):
        assert exponential_backoff_ms(10) == 30000
        assert exponential_backoff_ms(3, base_ms=500, max_ms=2000) == 2000

    def test_custom_multiplier(self):
        assert exponential_backoff_ms(2, base_ms=100, multiplier=3.0) == 900

    def test_negative_attempt_rejected(self):
        with pytest.raises(ValueError):
            exponential_backoff_ms(-1)


class TestTaskRetryDelay:
    """Tests for task_retry_delay_ms."""

    def test_uses_retry_count_as_exponent(self):
        assert task_retry_delay_ms(0) == 1000
        assert task_retry_delay_ms(1) == 2000
        assert task_retry_delay_ms(5) == 30000

    def test_configurable_bounds(self):
        assert task_retry_delay_ms(2, base_ms=200, max_ms=10000) == 800
