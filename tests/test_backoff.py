"""再接続バックオフ計算のユニットテスト"""

import random
import statistics

import pytest
from flaggy import compute_backoff_delay


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__()
        self._value = value

    def random(self) -> float:
        return self._value


@pytest.mark.parametrize(
    ("retry_count", "expected"),
    [(0, 1000.0), (1, 2000.0), (2, 4000.0), (4, 16000.0), (5, 30000.0), (10, 30000.0)],
)
def test_exponential_growth_without_jitter(retry_count: int, expected: float) -> None:
    """ジッターが 0 のとき base * 2^n を max で頭打ちにした値になること。"""
    delay = compute_backoff_delay(retry_count, 1000, 30000, rand=FixedRandom(0.5))
    assert delay == pytest.approx(expected)


def test_jitter_lower_bound() -> None:
    """ジッターの下限は -25% であること。"""
    assert compute_backoff_delay(1, 1000, 30000, rand=FixedRandom(0.0)) == pytest.approx(1500.0)


def test_jitter_upper_bound() -> None:
    """ジッターの上限は +25% であること。"""
    assert compute_backoff_delay(1, 1000, 30000, rand=FixedRandom(0.999999)) == pytest.approx(
        2500.0, rel=1e-4
    )


def test_jittered_delay_is_clamped_to_max() -> None:
    """ジッター加算後も max を超えないこと。"""
    assert compute_backoff_delay(10, 1000, 30000, rand=FixedRandom(0.999999)) == 30000.0
    assert compute_backoff_delay(2, 1000, 4500, rand=FixedRandom(0.999999)) == 4500.0


def test_delays_stay_within_bounds() -> None:
    """ランダムなジッターでも範囲内に収まること。"""
    rand = random.Random(1234)
    for retry_count in range(12):
        base = min(100 * 2**retry_count, 5000)
        for _ in range(200):
            delay = compute_backoff_delay(retry_count, 100, 5000, rand=rand)
            assert base * 0.75 <= delay <= min(base * 1.25, 5000)


def test_average_delay_is_non_decreasing() -> None:
    """平均待機時間はリトライ回数に対して単調非減少であること。"""
    rand = random.Random(42)
    means = [
        statistics.mean(compute_backoff_delay(n, 100, 5000, rand=rand) for _ in range(500))
        for n in range(6)
    ]
    assert all(a <= b for a, b in zip(means, means[1:]))

    capped = [compute_backoff_delay(n, 100, 5000, rand=rand) for n in range(6, 30)]
    assert all(3750 <= d <= 5000 for d in capped)


@pytest.mark.parametrize("base", [1000, 1000.0])
def test_large_retry_count_does_not_overflow(base: float) -> None:
    """長時間の再試行でリトライ回数が大きくなっても上限付近の値を返すこと。"""
    for retry_count in (33, 1100, 100_000):
        delay = compute_backoff_delay(retry_count, base, 30000.0, rand=FixedRandom(0.5))
        assert delay == pytest.approx(30000.0)
        jittered = compute_backoff_delay(retry_count, base, 30000.0, rand=FixedRandom(0.0))
        assert jittered == pytest.approx(22500.0)
