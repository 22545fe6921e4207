"""
Yield Service - Gross rental yield per market segment

Gross yield = (monthly rent psf × 12) / sale psf

Segment yields are derived from real rental data whenever a build has it and
carried forward otherwise:

    previous YieldState ──► build with rental data    ──► new YieldState (replaced)
                       └──► build without rental data ──► previous YieldState (unchanged)

Segments with no rental or sale coverage in the window are imputed with the
sale-count-weighted mean of the covered segments (DEFAULT_GROSS_YIELD when no
segment is covered). Lookups on a state with no entry for a segment fall back
to DEFAULT_GROSS_YIELD.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

from constants import SEGMENTS, DEFAULT_GROSS_YIELD
from models.rental import RentalRecord
from models.transaction import SaleRecord
from services.market_math import mean_rounded

logger = logging.getLogger(__name__)

__all__ = [
    'YieldState',
    'impute_segment_yields',
    'compute_yield_state',
    'blended_yield',
    'yield_pct',
]


@dataclass(frozen=True)
class YieldState:
    """Segment → gross yield (fraction). Empty means no rental history yet."""
    yields: Dict[str, float] = field(default_factory=dict)

    def get(self, segment: str) -> float:
        return self.yields.get(segment, DEFAULT_GROSS_YIELD)

    @property
    def is_empty(self) -> bool:
        return not self.yields

    def to_dict(self) -> Dict[str, float]:
        return {seg: round(self.get(seg) * 100, 2) for seg in SEGMENTS}


def impute_segment_yields(
    sale_psf: Mapping[str, float],
    rent_psf: Mapping[str, float],
    sale_counts: Optional[Mapping[str, int]] = None,
) -> Dict[str, float]:
    """
    Compute gross yields for CCR/RCR/OCR, imputing uncovered segments.

    Args:
        sale_psf: segment → average sale psf
        rent_psf: segment → average monthly rent psf
        sale_counts: segment → number of sales behind sale_psf (weights for
            the imputed mean; 1 each when omitted)

    Returns:
        Dict with an entry for every segment

    Example:
        sale_psf {'CCR': 3000, 'OCR': 1500}, rent_psf {'CCR': 5, 'OCR': 3.75},
        sale_counts {'CCR': 10, 'OCR': 30}
        → CCR 0.02, OCR 0.03, RCR (0.02×10 + 0.03×30) / 40 = 0.0275
    """
    sale_counts = sale_counts or {}
    yields: Dict[str, float] = {}
    weighted, weight = 0.0, 0
    for seg in SEGMENTS:
        sp = sale_psf.get(seg) or 0
        rp = rent_psf.get(seg) or 0
        if sp > 0 and rp > 0:
            yields[seg] = (rp * 12) / sp
            n = sale_counts.get(seg) or 1
            weighted += yields[seg] * n
            weight += n

    fallback = weighted / weight if weight > 0 else DEFAULT_GROSS_YIELD
    for seg in SEGMENTS:
        if not yields.get(seg):
            yields[seg] = fallback
    return yields


def compute_yield_state(
    sales_window: Iterable[SaleRecord],
    rental_window: Iterable[RentalRecord],
    previous: Optional[YieldState],
    has_rental: bool,
) -> YieldState:
    """
    Derive the next YieldState from the current sale and rental windows.

    Without rental data the previous state is returned unchanged.
    """
    if not has_rental:
        logger.info("No rental data, carrying yield state forward")
        return previous if previous is not None else YieldState()

    sale_sums: Dict[str, float] = {}
    sale_counts: Dict[str, int] = {}
    for r in sales_window:
        sale_sums[r.segment] = sale_sums.get(r.segment, 0) + r.psf
        sale_counts[r.segment] = sale_counts.get(r.segment, 0) + 1

    rent_sums: Dict[str, float] = {}
    rent_counts: Dict[str, int] = {}
    for r in rental_window:
        rent_sums[r.segment] = rent_sums.get(r.segment, 0) + r.rent_psf
        rent_counts[r.segment] = rent_counts.get(r.segment, 0) + 1

    sale_psf = {seg: mean_rounded(sale_sums[seg], sale_counts[seg]) for seg in sale_sums}
    rent_psf = {seg: round(rent_sums[seg] / rent_counts[seg], 2) for seg in rent_sums}

    state = YieldState(impute_segment_yields(sale_psf, rent_psf, sale_counts))
    logger.info("Real yields: " + ', '.join(f"{seg}: {state.get(seg) * 100:.2f}%" for seg in SEGMENTS))
    return state


def blended_yield(segment_counts: Mapping[str, int], state: YieldState) -> float:
    """Transaction-weighted yield across segments; DEFAULT_GROSS_YIELD when empty."""
    weighted, total = 0.0, 0
    for seg, n in segment_counts.items():
        weighted += state.get(seg) * n
        total += n
    return weighted / total if total > 0 else DEFAULT_GROSS_YIELD


def yield_pct(rent_psf: float, sale_psf: float) -> float:
    """Gross yield in percent from monthly rent psf and sale psf, 2 dp."""
    if not sale_psf or sale_psf <= 0 or not rent_psf:
        return 0
    return round(rent_psf * 12 / sale_psf * 100, 2)
