"""再接続バックオフ計算"""

from __future__ import annotations

import random

JITTER_RATIO = 0.25

# 指数の上限。2**32 倍はどの max_delay も超える
MAX_EXPONENT = 32


def compute_backoff_delay(
    retry_count: int,
    base_delay: float,
    max_delay: float,
    rand: random.Random | None = None,
) -> float:
    """再接続までの待機時間を計算する。

    base_delay * 2**retry_count を max_delay で頭打ちにし、±25% のジッターを
    加えた後、再度 max_delay でクランプする。単位は引数と同じ。
    リトライ回数がどれだけ増えても桁あふれしない。
    """
    exponent = min(retry_count, MAX_EXPONENT)
    delay = min(base_delay * (2**exponent), max_delay)
    uniform = (rand or random).random()
    jitter = delay * JITTER_RATIO * (uniform * 2 - 1)
    return min(delay + jitter, max_delay)
