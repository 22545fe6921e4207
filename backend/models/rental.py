"""
Rental Models - URA private residential rental contracts and their rollups

A RentalRecord is one row of a URA rental project (one contract bucket for a
given lease month, bedroom count and area range). RentalAggregate is the
read-only result of aggregating every record of the lookback window; it is
built by services.rental_service.RentalAggregator.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.market_math import mean_rounded, median, safe_div
from services.sampling import ReservoirSample


@dataclass(frozen=True)
class RentalRecord:
    project: str
    street: str
    district: str
    segment: str
    bedrooms: str
    area_sqft: int
    area_label: str
    rent: float
    rent_psf: float
    month_key: str
    quarter_key: str
    contracts: int = 0
    lease_date: str = ''

    def to_recent_dict(self) -> Dict[str, Any]:
        return {
            'date': self.month_key,
            'project': self.project,
            'district': self.district,
            'segment': self.segment,
            'unit': '-',
            'area': self.area_label,
            'bedrooms': self.bedrooms,
            'floor': 0,
            'rent': self.rent,
            'rentPsf': self.rent_psf,
        }


@dataclass
class RentalStat:
    """Running rent / rent-psf totals for one rollup key."""
    total_rent: float = 0
    total_psf: float = 0
    count: int = 0

    def add(self, rent: float, rent_psf: float) -> None:
        self.total_rent += rent
        self.total_psf += rent_psf
        self.count += 1

    @property
    def avg_rent(self) -> int:
        return mean_rounded(self.total_rent, self.count)

    @property
    def avg_rent_psf(self) -> float:
        return safe_div(self.total_psf, self.count)


@dataclass
class ProjectRentalStat(RentalStat):
    segment: str = ''
    district: str = ''


@dataclass
class DistrictRentalStat(RentalStat):
    by_quarter: Dict[str, RentalStat] = field(default_factory=dict)

    def add_quarter(self, quarter_key: str, rent: float, rent_psf: float) -> None:
        self.add(rent, rent_psf)
        self.by_quarter.setdefault(quarter_key, RentalStat()).add(rent, rent_psf)

    def quarter_rent_psf(self, quarter_key: str) -> Optional[float]:
        q = self.by_quarter.get(quarter_key)
        return q.avg_rent_psf if q is not None else None


@dataclass
class QuarterRentalStat(RentalStat):
    sample: Optional[ReservoirSample] = None

    def add(self, rent: float, rent_psf: float) -> None:
        super().add(rent, rent_psf)
        if self.sample is not None:
            self.sample.add(rent)

    @property
    def med_rent(self) -> float:
        return median(self.sample.values()) if self.sample is not None else 0


@dataclass
class RentalAggregate:
    by_project: Dict[str, ProjectRentalStat] = field(default_factory=dict)
    by_district: Dict[str, DistrictRentalStat] = field(default_factory=dict)
    by_segment: Dict[str, RentalStat] = field(default_factory=dict)
    by_quarter: Dict[str, QuarterRentalStat] = field(default_factory=dict)
    overall_avg_rent: int = 0
    overall_avg_rent_psf: float = 0
    overall_med_rent: float = 0
    records: List[RentalRecord] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.by_project)

    @property
    def total(self) -> int:
        return sum(s.count for s in self.by_project.values())
