"""
Price Growth Service - CAGR and total-return tables

Computes price growth between the two endpoints of a fixed window ending at
the latest year with data (default 5 years):

    CAGR%         = ((end_psf / start_psf) ^ (1 / years) - 1) × 100   (1 dp)
    total return  = CAGR% + gross yield%                             (2 dp)

Endpoints are the exact mean psf of the start and end calendar years. Rows
with thin endpoints are kept but flagged `lowConf`:
- districts: fewer than 3 transactions at either endpoint
- projects:  fewer than 2 transactions at either endpoint (projects also need
  at least 5 transactions overall to be listed at all)

Usage:
    from services.price_growth_service import growth_window, district_performance

    start_year, end_year = growth_window(aggregator.latest_year, 5)
    rows = district_performance(aggregator.by_district, start_year, end_year, 5, district_yield)
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from constants import (
    DISTRICT_MIN_ENDPOINT_TX,
    PROJECT_MIN_ENDPOINT_TX,
    PROJECT_MIN_TOTAL_TX,
    YIELD_TABLE_SIZE,
)
from models.buckets import DistrictBucket, ProjectBucket
from services.market_math import compute_cagr, dominant_category, district_sort_key

logger = logging.getLogger('price_growth')


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class GrowthRow:
    """Endpoint comparison shared by the district and project tables."""
    startPsf: int
    endPsf: int
    absDiff: int
    pctChg: float
    cagr: float
    yieldPct: float
    totalReturn: float
    startYear: str
    endYear: str
    window: int
    txStart: int
    txEnd: int
    txTotal: int
    lowConf: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['yield'] = data.pop('yieldPct')
        return data


@dataclass
class DistrictGrowth(GrowthRow):
    d: str = ''
    seg: str = ''


@dataclass
class ProjectGrowth(GrowthRow):
    name: str = ''
    dist: str = ''
    seg: str = ''
    street: str = ''


# =============================================================================
# WINDOW
# =============================================================================

def growth_window(latest_year: Optional[str], years: int) -> Tuple[Optional[str], Optional[str]]:
    """(start_year, end_year) of a window ending at latest_year."""
    if not latest_year:
        return None, None
    return str(int(latest_year) - years), latest_year


def total_return(cagr: float, yield_pct: float) -> float:
    return round(cagr + yield_pct, 2)


def _growth_fields(start_avg: int, end_avg: int, years: int) -> Optional[Dict[str, Any]]:
    if start_avg <= 0 or end_avg <= 0:
        return None
    cagr = compute_cagr(start_avg, end_avg, years)
    if cagr is None:
        return None
    return {
        'startPsf': round(start_avg),
        'endPsf': round(end_avg),
        'absDiff': round(end_avg - start_avg),
        'pctChg': round((end_avg / start_avg - 1) * 100, 1),
        'cagr': cagr,
    }


# =============================================================================
# DISTRICT TABLES
# =============================================================================

def district_performance(
    by_district: Mapping[str, DistrictBucket],
    start_year: Optional[str],
    end_year: Optional[str],
    years: int,
    district_yield: Callable[[str], float],
) -> List[DistrictGrowth]:
    """
    District growth table, sorted by CAGR descending.

    Districts without trades in both endpoint years are omitted.
    """
    if not start_year or not end_year:
        return []

    rows = []
    for d in sorted(by_district, key=district_sort_key):
        bucket = by_district[d]
        start, end = bucket.by_year.get(start_year), bucket.by_year.get(end_year)
        if start is None or end is None:
            continue
        growth = _growth_fields(start.mean, end.mean, years)
        if growth is None:
            continue
        yld = district_yield(d)
        rows.append(DistrictGrowth(
            **growth,
            yieldPct=yld,
            totalReturn=total_return(growth['cagr'], yld),
            startYear=start_year,
            endYear=end_year,
            window=years,
            txStart=start.count,
            txEnd=end.count,
            txTotal=bucket.count,
            lowConf=start.count < DISTRICT_MIN_ENDPOINT_TX or end.count < DISTRICT_MIN_ENDPOINT_TX,
            d=d,
            seg=dominant_category(bucket.segment_counts),
        ))
    rows.sort(key=lambda r: r.cagr, reverse=True)
    logger.debug(f"District growth {start_year}-{end_year}: {len(rows)} districts")
    return rows


def cagr_ranking(rows: List[DistrictGrowth], limit: int = YIELD_TABLE_SIZE) -> List[Dict[str, Any]]:
    """Top districts by total return (CAGR + yield)."""
    ranked = sorted(rows, key=lambda r: r.totalReturn, reverse=True)[:limit]
    return [
        {
            'd': r.d,
            'cagr': r.cagr,
            'y': r.yieldPct,
            'seg': r.seg,
            'bp': r.endPsf,
            'total': r.totalReturn,
            'cagrYears': r.window,
            'lowConf': r.lowConf,
        }
        for r in ranked
    ]


# =============================================================================
# PROJECT TABLE
# =============================================================================

def project_performance(
    by_project: Mapping[str, ProjectBucket],
    start_year: Optional[str],
    end_year: Optional[str],
    years: int,
    project_yield: Callable[[ProjectBucket, int], float],
) -> List[ProjectGrowth]:
    """
    Project growth table, sorted by CAGR descending.

    Args:
        project_yield: (project, end-year psf) → gross yield %
    """
    if not start_year or not end_year:
        return []

    rows = []
    for project in by_project.values():
        if project.count < PROJECT_MIN_TOTAL_TX:
            continue
        start, end = project.by_year.get(start_year), project.by_year.get(end_year)
        if start is None or end is None:
            continue
        growth = _growth_fields(start.mean, end.mean, years)
        if growth is None:
            continue
        yld = project_yield(project, end.mean)
        rows.append(ProjectGrowth(
            **growth,
            yieldPct=yld,
            totalReturn=total_return(growth['cagr'], yld),
            startYear=start_year,
            endYear=end_year,
            window=years,
            txStart=start.count,
            txEnd=end.count,
            txTotal=project.count,
            lowConf=start.count < PROJECT_MIN_ENDPOINT_TX or end.count < PROJECT_MIN_ENDPOINT_TX,
            name=project.name,
            dist=project.district,
            seg=project.segment,
            street=project.street or '',
        ))
    rows.sort(key=lambda r: r.cagr, reverse=True)
    logger.debug(f"Project growth {start_year}-{end_year}: {len(rows)} projects")
    return rows


def average_cagr(rows: List[GrowthRow]) -> float:
    return round(sum(r.cagr for r in rows) / len(rows), 1) if rows else 0
