"""
Rental Service - Aggregate URA private residential rental contracts

Consumes `PMI_Resi_Rental` responses (one list of projects per reference
period, e.g. "24q1") and builds:
- the rental store (every valid RentalRecord)
- per-project / per-district (+quarter) / per-segment / per-quarter rollups
- overall average rent, average rent psf and a sampled median rent

Segment policy:
    A rental project takes the market segment its sales use, when the
    project has sales in the current build. Otherwise its own
    marketSegment is used (default RCR). This keeps sale and rent psf of a
    project in the same segment for yield computation.

Usage:
    rental = RentalAggregator(segment_lookup=sale_segment_lookup(aggregator.sales))
    for period in rental_periods(now, 4):
        rental.add_period(fetch_rental(period), period)
    aggregate = rental.build()
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from constants import (
    QUARTER_RENT_SAMPLE_SIZE,
    RENTAL_MEDIAN_SAMPLE_SIZE,
    SQM_TO_SQFT,
    normalize_segment,
)
from models.rental import (
    RentalRecord,
    RentalStat,
    ProjectRentalStat,
    DistrictRentalStat,
    QuarterRentalStat,
    RentalAggregate,
)
from models.transaction import SaleRecord
from services.market_math import mean_rounded, median, month_key, safe_div
from services.sampling import ReservoirSample
from services.ura_canonical_mapper import (
    BatchValidationError,
    normalize_district,
    parse_contract_date,
    parse_float_safe,
    parse_int_safe,
    round_finite,
)

logger = logging.getLogger(__name__)

__all__ = [
    'RentalAggregator',
    'URARentalProjectPayload',
    'sale_segment_lookup',
    'rental_periods',
    'parse_area_range',
]


class URARentalProjectPayload(BaseModel):
    """One project of a URA rental response (container shape only)."""
    model_config = ConfigDict(
        populate_by_name=True,
        extra='ignore',
    )

    project: Any = None
    street: Any = None
    district: Any = None
    market_segment: Any = Field(default=None, alias='marketSegment')
    rental: List[Any] = Field(default_factory=list)

    @field_validator('rental', mode='before')
    @classmethod
    def missing_rentals_are_empty(cls, v):
        return [] if v is None else v


_RENTAL_ADAPTER = TypeAdapter(List[URARentalProjectPayload])


def sale_segment_lookup(sales: Iterable[SaleRecord]) -> Dict[str, str]:
    """Project name -> market segment of its first sale in the store."""
    lookup: Dict[str, str] = {}
    for record in sales:
        lookup.setdefault(record.project, record.segment)
    return lookup


def rental_periods(now: datetime, lookback_quarters: int = 4) -> List[str]:
    """
    Reference periods for the last N quarters, newest first.

    Example:
        rental_periods(datetime(2024, 5, 1), 4) → ['24q2', '24q1', '23q4', '23q3']
    """
    year = now.year % 100
    quarter = (now.month - 1) // 3 + 1
    periods = []
    for _ in range(lookback_quarters):
        periods.append(f"{year:02d}q{quarter}")
        quarter -= 1
        if quarter == 0:
            quarter = 4
            year = (year - 1) % 100
    return periods


def parse_area_range(value: Any) -> Optional[tuple]:
    """
    Parse a URA area range "1000-1100" into (low, high) floats.

    Returns None unless the text has exactly two parts.
    """
    parts = str(value or '').split('-')
    if len(parts) != 2:
        return None
    return parse_float_safe(parts[0]) or 0, parse_float_safe(parts[1]) or 0


def _period_fallback_month(ref_period: str) -> str:
    """Middle month of a reference period ('24q1' -> '2024-02')."""
    yy = parse_int_safe(ref_period[:2], 'refPeriod')
    q = parse_int_safe(ref_period[-1:], 'refPeriod', default=1) or 1
    year = 1900 + yy if yy > 50 else 2000 + yy
    return month_key(year, (q - 1) * 3 + 2)


def _area_label(sqft_text: str, area_sqft: int) -> str:
    if not sqft_text:
        return f"{area_sqft:,}"
    return ' - '.join(f"{parse_int_safe(part):,}" for part in sqft_text.split('-'))


class RentalAggregator:
    """Single-pass aggregator for URA rental projects."""

    def __init__(self, segment_lookup: Optional[Dict[str, str]] = None,
                 rng: Optional[random.Random] = None):
        self.segment_lookup = segment_lookup or {}
        self.rng = rng if rng is not None else random.Random()

        self.total_rent = 0.0
        self.total_rent_psf = 0.0
        self.count = 0
        self.rent_sample: ReservoirSample = ReservoirSample(RENTAL_MEDIAN_SAMPLE_SIZE, self.rng)

        self.by_project: Dict[str, ProjectRentalStat] = {}
        self.by_district: Dict[str, DistrictRentalStat] = {}
        self.by_segment: Dict[str, RentalStat] = {}
        self.by_quarter: Dict[str, QuarterRentalStat] = {}
        self.records: List[RentalRecord] = []

        self.skipped = 0
        self.periods_loaded: List[str] = []

    def add_period(self, projects: Any, ref_period: str) -> int:
        """
        Ingest every rental project of one reference period.

        Returns:
            Number of rental records accepted

        Raises:
            BatchValidationError: the response is structurally invalid
        """
        if not isinstance(projects, list):
            raise BatchValidationError(ref_period, f"expected a list of rental projects, got {type(projects).__name__}")
        try:
            payloads = _RENTAL_ADAPTER.validate_python(projects)
        except ValidationError as e:
            raise BatchValidationError(ref_period, f"{e.error_count()} structural error(s) in rental data") from e

        mapped = [record for payload in payloads for record in self._map_project(payload, ref_period)]
        for record in mapped:
            self.add(record)
        self.periods_loaded.append(ref_period)
        logger.info(f"Rental {ref_period}: {len(payloads)} projects, {len(mapped)} records")
        return len(mapped)

    def _map_project(self, payload: URARentalProjectPayload, ref_period: str) -> List[RentalRecord]:
        name = str(payload.project or '').strip()
        segment = self.segment_lookup.get(name) or normalize_segment(payload.market_segment)
        district = normalize_district(payload.district)
        street = str(payload.street or '').strip()

        records = []
        for raw in payload.rental:
            record = self.map_rental(raw, name, street, district, segment, ref_period)
            if record is None:
                self.skipped += 1
                continue
            records.append(record)
        return records

    @staticmethod
    def map_rental(raw: Any, project: str, street: str, district: str, segment: str,
                   ref_period: str) -> Optional[RentalRecord]:
        """Map one raw rental row; None when area or rent is not positive."""
        if not isinstance(raw, dict):
            logger.debug(f"Skipping rental in '{project}': not a mapping")
            return None

        sqft_text = str(raw.get('areaSqft') or '')
        sqft_range = parse_area_range(sqft_text)
        area_sqft = round_finite(sum(sqft_range) / 2) if sqft_range and sqft_range[0] > 0 else 0
        if area_sqft <= 0:
            sqm_range = parse_area_range(raw.get('areaSqm'))
            if sqm_range:
                area_sqm = sum(sqm_range) / 2
            else:
                area_sqm = parse_float_safe(str(raw.get('areaSqm') or '').split('-')[0]) or 0
            area_sqft = round_finite(area_sqm * SQM_TO_SQFT)

        rent = parse_float_safe(raw.get('rent'), 'rent') or 0
        if area_sqft <= 0 or rent <= 0:
            logger.debug(f"Skipping rental in '{project}': area={area_sqft}, rent={rent}")
            return None

        lease = parse_contract_date(raw.get('leaseDate'))
        if lease is not None:
            rental_month = lease.month_key
            quarter_key = lease.quarter.replace('Q', 'q')
        else:
            rental_month = _period_fallback_month(ref_period)
            quarter_key = ref_period

        return RentalRecord(
            project=project,
            street=street,
            district=district,
            segment=segment,
            bedrooms=str(raw.get('noOfBedRoom') or '').strip(),
            area_sqft=area_sqft,
            area_label=_area_label(sqft_text, area_sqft),
            rent=rent,
            rent_psf=round(rent / area_sqft, 2),
            month_key=rental_month,
            quarter_key=quarter_key,
            contracts=parse_int_safe(raw.get('noOfRentalContract'), 'noOfRentalContract'),
            lease_date=str(raw.get('leaseDate') or ''),
        )

    def add(self, record: RentalRecord) -> None:
        rent, rent_psf = record.rent, record.rent_psf
        self.total_rent += rent
        self.total_rent_psf += rent_psf
        self.count += 1
        self.rent_sample.add(rent)

        project = self.by_project.get(record.project)
        if project is None:
            project = self.by_project[record.project] = ProjectRentalStat(
                segment=record.segment, district=record.district
            )
        project.add(rent, rent_psf)
        self.by_district.setdefault(record.district, DistrictRentalStat()).add_quarter(
            record.quarter_key, rent, rent_psf
        )
        self.by_segment.setdefault(record.segment, RentalStat()).add(rent, rent_psf)
        quarter = self.by_quarter.get(record.quarter_key)
        if quarter is None:
            quarter = self.by_quarter[record.quarter_key] = QuarterRentalStat(
                sample=ReservoirSample(QUARTER_RENT_SAMPLE_SIZE, self.rng)
            )
        quarter.add(rent, rent_psf)
        self.records.append(record)

    def trim(self, max_records: int) -> int:
        """Sort the rental store newest-first and cap it; returns records dropped."""
        self.records.sort(key=lambda r: r.month_key, reverse=True)
        dropped = max(0, len(self.records) - max_records)
        if dropped:
            logger.warning(f"Rental store exceeds cap ({len(self.records):,} > {max_records:,}), trimming")
            del self.records[max_records:]
        return dropped

    def build(self) -> RentalAggregate:
        """Freeze the running totals into a RentalAggregate."""
        if self.count == 0:
            logger.warning("No rental data aggregated")
        else:
            logger.info(f"Rental: {self.count:,} records from {len(self.by_project):,} projects")
        return RentalAggregate(
            by_project=self.by_project,
            by_district=self.by_district,
            by_segment=self.by_segment,
            by_quarter=self.by_quarter,
            overall_avg_rent=mean_rounded(self.total_rent, self.count),
            overall_avg_rent_psf=safe_div(self.total_rent_psf, self.count),
            overall_med_rent=median(self.rent_sample.values()),
            records=self.records,
        )
