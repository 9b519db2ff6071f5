"""
Aggregations over optional numeric samples.

Every function skips None and returns None (not 0) when nothing is left.
Sums are plain float additions in input order, so reordering the input may
shift the last bits of avg/sum_of; callers must not rely on bit-exact results.
"""
from __future__ import annotations

import math
from typing import Iterable, Optional

Number = float | int


def _present(values: Iterable[Optional[Number]]) -> list[Number]:
    return [v for v in values if v is not None]


def avg(values: Iterable[Optional[Number]]) -> Optional[float]:
    nums = _present(values)
    if not nums:
        return None
    total = 0.0
    for v in nums:
        total += v
    return total / len(nums)


def sum_of(values: Iterable[Optional[Number]]) -> Optional[float]:
    nums = _present(values)
    if not nums:
        return None
    total = 0.0
    for v in nums:
        total += v
    return total


def max_of(values: Iterable[Optional[Number]]) -> Optional[Number]:
    nums = _present(values)
    return max(nums) if nums else None


def min_of(values: Iterable[Optional[Number]]) -> Optional[Number]:
    nums = _present(values)
    return min(nums) if nums else None


def median(values: Iterable[Optional[Number]]) -> Optional[float]:
    nums = sorted(_present(values))
    if not nums:
        return None
    mid = len(nums) // 2
    if len(nums) % 2:
        return nums[mid]
    return (nums[mid - 1] + nums[mid]) / 2


def percentile(values: Iterable[Optional[Number]], p: float) -> Optional[Number]:
    """Nearest-rank percentile (p in 0..100)."""
    nums = sorted(_present(values))
    if not nums:
        return None
    index = math.ceil((p / 100) * len(nums)) - 1
    return nums[max(0, min(index, len(nums) - 1))]
