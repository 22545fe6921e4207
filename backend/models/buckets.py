"""
Aggregation buckets - one explicit record type per dimension.

Every bucket keeps an exact running psf sum and count, so ``mean`` is the
exact average over every transaction routed to it. Only the reservoir sample
fields are capped.

Bucket hierarchy:
  StatBucket          sum_psf, count
  └─ VolumeBucket     + volume (sum of prices)
     ├─ YearBucket    + psf reservoir (medians)
     ├─ QuarterBucket + per-segment sub-buckets
     └─ DistrictBucket+ per-year, per-quarter, segment counts
  SegmentBucket       + per-year
  TypeBucket          + per-year, segment counts
  TenureBucket        + per-year
  ProjectBucket       identity + area/psf reservoirs + per-year/per-floor
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from constants import LATEST_YEAR_MIN_TX
from services.market_math import mean_rounded
from services.sampling import ReservoirSample


@dataclass
class StatBucket:
    sum_psf: float = 0
    count: int = 0

    def add(self, psf: float) -> None:
        self.sum_psf += psf
        self.count += 1

    @property
    def mean(self) -> int:
        return mean_rounded(self.sum_psf, self.count)


@dataclass
class VolumeBucket(StatBucket):
    volume: float = 0

    def add_sale(self, psf: float, price: float) -> None:
        self.add(psf)
        self.volume += price


@dataclass
class YearBucket(VolumeBucket):
    sample: Optional[ReservoirSample] = None

    def add_sale(self, psf: float, price: float) -> None:
        super().add_sale(psf, price)
        if self.sample is not None:
            self.sample.add(psf)


@dataclass
class QuarterBucket(VolumeBucket):
    by_segment: Dict[str, StatBucket] = field(default_factory=dict)

    def add_segment(self, segment: str, psf: float) -> None:
        self.by_segment.setdefault(segment, StatBucket()).add(psf)


def _count_into(counts: Dict[str, int], key: str) -> None:
    counts[key] = counts.get(key, 0) + 1


@dataclass
class YearlyStatBucket(StatBucket):
    """StatBucket with a per-year breakdown."""
    by_year: Dict[str, StatBucket] = field(default_factory=dict)

    def add_yearly(self, year: str, psf: float) -> None:
        self.add(psf)
        self.by_year.setdefault(year, StatBucket()).add(psf)

    def latest_or_overall(self, latest_year: Optional[str], min_count: int = LATEST_YEAR_MIN_TX) -> int:
        """Mean for latest_year when it holds min_count trades, else the all-time mean."""
        year_bucket = self.by_year.get(latest_year) if latest_year else None
        if year_bucket is not None and year_bucket.count >= min_count:
            return year_bucket.mean
        return self.mean


@dataclass
class SegmentBucket(YearlyStatBucket):
    pass


@dataclass
class TenureBucket(YearlyStatBucket):
    pass


@dataclass
class TypeBucket(YearlyStatBucket):
    segment_counts: Dict[str, int] = field(default_factory=dict)

    def add_segment(self, segment: str) -> None:
        _count_into(self.segment_counts, segment)


@dataclass
class DistrictBucket(VolumeBucket):
    by_year: Dict[str, StatBucket] = field(default_factory=dict)
    by_quarter: Dict[str, StatBucket] = field(default_factory=dict)
    segment_counts: Dict[str, int] = field(default_factory=dict)

    def add_district_sale(self, psf: float, price: float, year: str, quarter: str, segment: str) -> None:
        self.add_sale(psf, price)
        _count_into(self.segment_counts, segment)
        self.by_year.setdefault(year, StatBucket()).add(psf)
        self.by_quarter.setdefault(quarter, StatBucket()).add(psf)

    def year_or_overall(self, year: Optional[str]) -> int:
        """Mean for year when present at all, else the all-time mean."""
        year_bucket = self.by_year.get(year) if year else None
        return year_bucket.mean if year_bucket is not None else self.mean


@dataclass
class ProjectYearBucket(StatBucket):
    price_sum: float = 0

    @property
    def mean_price(self) -> int:
        return mean_rounded(self.price_sum, self.count) if self.price_sum > 0 else 0


@dataclass
class ProjectBucket(StatBucket):
    name: str = ''
    street: str = ''
    segment: str = ''
    district: str = ''
    tenure: str = ''
    property_type: str = ''
    areas: Optional[ReservoirSample] = None
    psf_history: Optional[ReservoirSample] = None
    by_year: Dict[str, ProjectYearBucket] = field(default_factory=dict)
    by_floor: Dict[str, StatBucket] = field(default_factory=dict)
    latest: str = ''

    def add_project_sale(self, psf: float, price: float, area: int, year: str,
                         floor_band: Optional[str], month_key: str) -> None:
        self.add(psf)
        if self.areas is not None:
            self.areas.add(area)
        if self.psf_history is not None:
            self.psf_history.add(psf)
        year_bucket = self.by_year.setdefault(year, ProjectYearBucket())
        year_bucket.add(psf)
        year_bucket.price_sum += price
        if floor_band:
            self.by_floor.setdefault(floor_band, StatBucket()).add(psf)
        if month_key > self.latest:
            self.latest = month_key

    @property
    def latest_year(self) -> Optional[str]:
        return max(self.by_year) if self.by_year else None

    @property
    def first_year(self) -> str:
        return min(self.by_year) if self.by_year else ''

    def latest_year_mean(self) -> int:
        """Mean psf of the project's own latest year (all-time mean when none)."""
        latest = self.latest_year
        return self.by_year[latest].mean if latest else self.mean

    def mean_area(self, default: int = 0) -> int:
        areas = self.areas.values() if self.areas is not None else []
        return round(sum(areas) / len(areas)) if areas else default

    def year_psf(self) -> Dict[str, int]:
        return {y: b.mean for y, b in sorted(self.by_year.items())}

    def year_price(self) -> Dict[str, int]:
        return {y: b.mean_price for y, b in sorted(self.by_year.items())}
