"""重试策略"""

from dataclasses import dataclass
from typing import Iterator, Sequence, Tuple

# 立即、30秒后、5分钟后
DEFAULT_RETRY_DELAYS: Tuple[float, ...] = (0.0, 30.0, 300.0)


@dataclass(frozen=True)
class RetryPolicy:
    """固定延迟表的重试策略

    delays[i] 是第 i+1 次尝试之前需要等待的秒数，
    尝试次数等于延迟表长度。
    """
    delays: Tuple[float, ...] = DEFAULT_RETRY_DELAYS

    def __post_init__(self):
        if not self.delays:
            raise ValueError("重试延迟表不能为空")
        if any(delay < 0 for delay in self.delays):
            raise ValueError("重试延迟不能为负数")

    @classmethod
    def from_delays(cls, delays: Sequence[float]) -> 'RetryPolicy':
        return cls(delays=tuple(float(d) for d in delays))

    @property
    def max_attempts(self) -> int:
        return len(self.delays)

    def attempts(self) -> Iterator[Tuple[int, float]]:
        """依次产出 (尝试序号, 尝试前等待秒数)，序号从1开始"""
        for index, delay in enumerate(self.delays):
            yield index + 1, delay
