import pytest

from evalqueue.domain.retry import calculate_retry_delay


def test_flat_delay_ignores_retry_count():
    assert [calculate_retry_delay(n, base_delay_seconds=30) for n in range(4)] == [30, 30, 30, 30]


def test_backoff_doubles_and_caps():
    delays = [calculate_retry_delay(n, base_delay_seconds=10, max_delay_seconds=50, backoff=True) for n in range(4)]
    assert delays == [10, 20, 40, 50]


def test_negative_retry_count_is_treated_as_first_retry():
    assert calculate_retry_delay(-3, base_delay_seconds=5, backoff=True) == 5


def test_jitter_adds_at_most_ten_percent():
    for _ in range(50):
        delay = calculate_retry_delay(0, base_delay_seconds=100, jitter=True)
        assert 100 <= delay <= pytest.approx(110)
