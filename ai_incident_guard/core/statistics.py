"""
Descriptive statistics for anomaly detection.

Population mean/standard deviation and the 3-sigma outlier rule.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence


@dataclass(frozen=True)
class Stats:
    """Mean and population standard deviation of a sample."""
    mean: float
    std_dev: float


def calculate_stats(values: Sequence[float]) -> Stats:
    """Compute mean and population standard deviation.

    An empty sample yields (0, 0); a single value yields (value, 0).

    Args:
        values: Numeric sample

    Returns:
        Stats with mean and standard deviation
    """
    if not values:
        return Stats(mean=0.0, std_dev=0.0)

    n = len(values)
    mean = sum(values) / n
    variance = sum((value - mean) ** 2 for value in values) / n

    return Stats(mean=mean, std_dev=math.sqrt(variance))


def detect_3sigma_anomalies(values: Sequence[float], threshold: float = 3.0) -> List[int]:
    """Return the indices of values more than ``threshold`` std devs from the mean.

    A constant series (std dev of 0) never produces anomalies, whatever the
    threshold.

    Args:
        values: Numeric sample
        threshold: Number of standard deviations a value must exceed

    Returns:
        Indices of anomalous values, in input order
    """
    if len(values) < 2:
        return []

    stats = calculate_stats(values)
    if stats.std_dev == 0:
        return []

    limit = threshold * stats.std_dev
    return [i for i, value in enumerate(values) if abs(value - stats.mean) > limit]
