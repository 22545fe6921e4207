"""
Bedroom Classifier Module - Consolidated

URA sale data doesn't include bedroom count, so the recent-transactions table
estimates it from unit area in two ways:

1. Learnt model (preferred): area ranges per bedroom count observed in URA
   rental contracts, which do carry `noOfBedRoom`. Ranges are learnt per
   project and market-wide; a project's own ranges win.
2. Area thresholds (fallback): three-tier heuristics based on typical
   Singapore condo unit sizes, used when no learnt model covers the unit.

Three-tier classification system:
- Tier 1: New Sale (Post-Harmonization, >= June 1, 2023) - Ultra Compact sizes
- Tier 2: New Sale (Pre-Harmonization, < June 1, 2023) - Modern Compact sizes
- Tier 3: Resale (Any Date) - Legacy sizes
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from constants import SALE_TYPE_NEW, SALE_TYPE_RESALE
from models.rental import RentalRecord
from models.transaction import SaleRecord

logger = logging.getLogger(__name__)

# Harmonization date when AC ledge rules changed (affects unit sizes)
HARMONIZATION_DATE = date(2023, 6, 1)

# =============================================================================
# BEDROOM CLASSIFICATION THRESHOLDS
# =============================================================================
# Format: bedroom_count -> max_sqft (units below this are classified as this bedroom count)

TIER1_THRESHOLDS = {
    # Tier 1: New Sale Post-Harmonization (>= June 2023) - Ultra Compact
    1: 580,
    2: 780,
    3: 1150,
    4: 1450,
    5: float('inf')
}

TIER2_THRESHOLDS = {
    # Tier 2: New Sale Pre-Harmonization (< June 2023) - Modern Compact
    1: 600,
    2: 850,
    3: 1200,
    4: 1500,
    5: float('inf')
}

TIER3_THRESHOLDS = {
    # Tier 3: Resale (Any Date) - Legacy Sizes
    1: 600,
    2: 950,
    3: 1350,
    4: 1650,
    5: float('inf')
}

# Learnt model: observations needed per bedroom count, bedroom counts per range set
MIN_OBSERVATIONS_PER_BEDROOM = 3
MIN_BEDROOM_TYPES = 2


def _classify_with_thresholds(area_sqft: float, thresholds: dict) -> int:
    for bedrooms in (1, 2, 3, 4):
        if area_sqft < thresholds[bedrooms]:
            return bedrooms
    return 5


def classify_bedroom_three_tier(
    area_sqft: float,
    sale_type: Optional[str] = None,
    transaction_date: Optional[date] = None
) -> int:
    """
    Three-tier bedroom classification based on sale type and date.

    Args:
        area_sqft: Unit area in square feet
        sale_type: 'New Sale' or 'Resale' (defaults to Resale if None)
        transaction_date: Contract date (first of month is fine)

    Returns:
        Estimated bedroom count (1-5)
    """
    sale_type_str = str(sale_type).strip() if sale_type else SALE_TYPE_RESALE

    if sale_type_str == SALE_TYPE_NEW and transaction_date is not None:
        if transaction_date >= HARMONIZATION_DATE:
            return _classify_with_thresholds(area_sqft, TIER1_THRESHOLDS)
        return _classify_with_thresholds(area_sqft, TIER2_THRESHOLDS)
    return _classify_with_thresholds(area_sqft, TIER3_THRESHOLDS)


# =============================================================================
# LEARNT BEDROOM MODEL
# =============================================================================

@dataclass(frozen=True)
class BedroomRange:
    bedrooms: str
    min_area: int
    max_area: int
    median_area: int
    count: int


@dataclass
class BedroomModel:
    project_ranges: Dict[str, List[BedroomRange]] = field(default_factory=dict)
    market_ranges: Optional[List[BedroomRange]] = None

    @property
    def is_empty(self) -> bool:
        return not self.project_ranges and not self.market_ranges

    def ranges_for(self, project: str) -> Optional[List[BedroomRange]]:
        return self.project_ranges.get(project) or self.market_ranges


def _build_ranges(areas_by_bedroom: Dict[str, List[int]]) -> Optional[List[BedroomRange]]:
    ranges = []
    for bedrooms, areas in areas_by_bedroom.items():
        if len(areas) < MIN_OBSERVATIONS_PER_BEDROOM:
            continue
        ordered = sorted(areas)
        ranges.append(BedroomRange(
            bedrooms=bedrooms,
            min_area=ordered[0],
            max_area=ordered[-1],
            median_area=ordered[len(ordered) // 2],
            count=len(ordered),
        ))
    ranges.sort(key=lambda r: r.median_area)
    return ranges if len(ranges) >= MIN_BEDROOM_TYPES else None


def build_bedroom_model(records: Iterable[RentalRecord]) -> BedroomModel:
    """
    Learn per-project and market-wide area ranges per bedroom count.

    Only rental rows with a purely numeric bedroom count and a positive area
    are used. A range set needs at least MIN_BEDROOM_TYPES bedroom counts with
    MIN_OBSERVATIONS_PER_BEDROOM observations each.
    """
    project_areas: Dict[str, Dict[str, List[int]]] = {}
    market_areas: Dict[str, List[int]] = {}
    for r in records:
        if not r.bedrooms.isdigit() or r.area_sqft <= 0:
            continue
        project_areas.setdefault(r.project, {}).setdefault(r.bedrooms, []).append(r.area_sqft)
        market_areas.setdefault(r.bedrooms, []).append(r.area_sqft)

    model = BedroomModel(market_ranges=_build_ranges(market_areas))
    for project, areas in project_areas.items():
        ranges = _build_ranges(areas)
        if ranges:
            model.project_ranges[project] = ranges

    market = ', '.join(f"{b.bedrooms}BR[{b.min_area}-{b.max_area}]" for b in model.market_ranges or []) or 'none'
    logger.info(f"Bedroom model: {len(model.project_ranges)} projects with project-level ranges, market=[{market}]")
    return model


def infer_bedrooms(model: Optional[BedroomModel], project: str, area_sqft: float) -> str:
    """
    Infer bedroom count from area using the learnt ranges.

    Returns:
        "3" for a single matching range, "3/4" when ranges overlap, the
        closest-median bedroom count when no range contains the area, or ""
        when no model covers the project.
    """
    if model is None or area_sqft <= 0:
        return ''
    ranges = model.ranges_for(project)
    if not ranges:
        return ''

    matches = [r for r in ranges if r.min_area <= area_sqft <= r.max_area]
    if matches:
        return '/'.join(r.bedrooms for r in matches)

    closest = min(ranges, key=lambda r: abs(area_sqft - r.median_area))
    return closest.bedrooms


def estimate_bedrooms(model: Optional[BedroomModel], record: SaleRecord) -> str:
    """Learnt inference for a sale, falling back to the area thresholds."""
    beds = infer_bedrooms(model, record.project, record.area_sqft)
    if beds:
        return beds
    return str(classify_bedroom_three_tier(
        record.area_sqft,
        sale_type=record.sale_type,
        transaction_date=date(record.year, record.month, 1),
    ))
