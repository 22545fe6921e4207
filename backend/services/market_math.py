"""
Market Math - Small pure helpers shared by the dashboard builders.

All helpers degrade to 0 / None on empty input instead of raising, so report
builders can call them on sparse buckets without guarding.
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence

from constants import DEFAULT_SEGMENT

__all__ = [
    'mean_rounded',
    'median',
    'safe_div',
    'pct_change',
    'compute_cagr',
    'percentile',
    'dominant_category',
    'district_sort_key',
    'histogram',
    'month_key',
    'quarter_label',
    'rental_quarter_key',
]


def mean_rounded(total: float, count: int) -> int:
    """Mean rounded to an integer; 0 when count <= 0."""
    return round(total / count) if count > 0 else 0


def median(values: Iterable[float]) -> float:
    """
    Median of values; 0 for empty input.

    For an even count the two middle values are averaged and rounded.
    """
    ordered = sorted(values)
    if not ordered:
        return 0
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return round((ordered[mid - 1] + ordered[mid]) / 2)


def safe_div(num: float, den: float, decimals: int = 2) -> float:
    if den == 0:
        return 0
    return round(num / den, decimals)


def pct_change(current: float, previous: Optional[float], decimals: int = 1) -> Optional[float]:
    """Percent change current vs previous; None when previous is missing or 0."""
    if not previous:
        return None
    return round((current / previous - 1) * 100, decimals)


def compute_cagr(start_value: float, end_value: float, years: int) -> Optional[float]:
    """
    Compound annual growth rate in percent, rounded to 1 dp.

    CAGR = ((end / start) ^ (1 / years) - 1) * 100

    Returns None when either endpoint is non-positive or years <= 0.

    Example:
        >>> compute_cagr(1000, 1610.51, 5)
        10.0
    """
    if not start_value or not end_value or start_value <= 0 or end_value <= 0 or years <= 0:
        return None
    return round((math.pow(end_value / start_value, 1 / years) - 1) * 100, 1)


def percentile(sorted_values: Sequence[float], p: float, min_samples: int = 10):
    """
    Nearest-rank percentile on an ascending sequence.

    Index is floor(len * p). Returns 0 when there are min_samples or fewer
    values, since the tails of such a small sample are noise.
    """
    n = len(sorted_values)
    if n <= min_samples:
        return 0
    return sorted_values[min(int(math.floor(n * p)), n - 1)]


def dominant_category(counts: Optional[Dict[str, int]], default: str = DEFAULT_SEGMENT) -> str:
    """Key with the highest count; first-seen key wins ties."""
    best, best_count = default, 0
    for key, count in (counts or {}).items():
        if count > best_count:
            best, best_count = key, count
    return best


def district_sort_key(district: str) -> int:
    """Numeric ordering for district labels: D1 < D2 < D10."""
    try:
        return int(str(district).lstrip('Dd'))
    except ValueError:
        return 0


def histogram(values: Sequence[float], bin_width: int) -> List[Dict[str, object]]:
    """
    Fixed-width histogram from the bin holding min to the bin holding max.

    Bins are labelled ``"$<lower edge>"``. A maximum lying exactly on a bin
    edge opens a bin of its own, so every value is counted.
    """
    if not values:
        return []
    lo = math.floor(min(values) / bin_width) * bin_width
    hi = (math.floor(max(values) / bin_width) + 1) * bin_width
    counts: Dict[int, int] = {}
    for v in values:
        if lo <= v < hi:
            edge = lo + int((v - lo) // bin_width) * bin_width
            counts[edge] = counts.get(edge, 0) + 1
    return [
        {'r': f"${edge}", 'c': counts.get(edge, 0)}
        for edge in range(int(lo), int(hi), bin_width)
    ]


def month_key(year: int, month: int) -> str:
    """'YYYY-MM' key; lexicographic order equals chronological order."""
    return f"{year}-{month:02d}"


def quarter_label(year: int, month: int) -> str:
    """Sales quarter label, e.g. (2024, 2) -> '24Q1'."""
    return f"{year % 100:02d}Q{(month - 1) // 3 + 1}"


def rental_quarter_key(quarter: str) -> str:
    """Sales quarter label -> rental reference period key ('24Q1' -> '24q1')."""
    return quarter.replace('Q', 'q')
