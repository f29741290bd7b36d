
from __future__ import annotations

def calc_next_delay(attempts: int, base_seconds: int = 5, max_seconds: int = 600) -> int:
    """
    指数退避：第 1 次失败→base，之后翻倍（5s, 10s, 20s ...），直到 max_seconds。
    attempts: 已尝试次数（含刚失败的这一次）
    """
    attempts = max(1, attempts)
    delay = base_seconds * (2 ** (attempts - 1))
    return min(max_seconds, delay)
