"""
Dashboard Service - Unified dashboard payload from aggregated URA data

Derives every chart dataset of the market dashboard in one pass over the
state accumulated by BucketAggregator (sales) and RentalAggregator (rents).
No transaction is re-scanned except for the rolling stat-card windows.

Key Features:
- Rolling 3M/6M/12M windows for headline figures (sales and rents alike)
- Real gross yields per segment when rental data exists, carried-forward
  yield state otherwise (see yield_service)
- CAGR / total-return tables over a configurable window
- Histograms and scatter points from bounded reservoir samples
- Deterministic output: a build over the same inputs is identical

Usage:
    from services.dashboard_service import build_dashboard

    build = build_dashboard(aggregator, rental, yield_state=previous_state)
    payload = build.report
    next_state = build.yield_state
"""

import logging
import random
import time
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, NamedTuple, Optional

from config import DashboardConfig, get_dashboard_config
from constants import (
    SEGMENTS,
    DEFAULT_GROSS_YIELD,
    RECENT_SAMPLE_MIN,
    PSF_HISTOGRAM_BIN,
    RENT_HISTOGRAM_BIN,
    TREND_QUARTERS,
    VOLUME_QUARTERS,
    SCATTER_POINTS,
    TOP_PROJECTS,
    TOP_DISTRICTS,
    DISTRICT_BAR_SIZE,
    TYPE_BAR_SIZE,
    YIELD_TABLE_SIZE,
    COMPARISON_POOL_SIZE,
    PROJECT_INDEX_MIN_TX,
    PROJECT_MIN_TOTAL_TX,
    DISTRICT_TOP_PROJECTS,
    RECENT_RENTALS_SIZE,
)
from models.buckets import ProjectBucket
from models.rental import RentalAggregate
from services.aggregation_service import BucketAggregator
from services.classifier import BedroomModel, build_bedroom_model, estimate_bedrooms
from services.market_math import (
    mean_rounded,
    median,
    pct_change,
    percentile,
    dominant_category,
    district_sort_key,
    histogram,
    rental_quarter_key,
)
from services.market_window import WindowSelection, select_window
from services.price_growth_service import (
    growth_window,
    district_performance,
    project_performance,
    cagr_ranking,
    average_cagr,
)
from services.yield_service import YieldState, compute_yield_state, blended_yield, yield_pct

logger = logging.getLogger('dashboard')

__all__ = [
    'DashboardBuild',
    'build_dashboard',
]

# Scatter shuffling seed when the configuration leaves the build unseeded
DEFAULT_SCATTER_SEED = 0

# Rent histogram is drawn from the newest rental rows only
RENT_HISTOGRAM_ROWS = 2000


class DashboardBuild(NamedTuple):
    report: Dict[str, Any]
    yield_state: YieldState


# ============================================================================
# TIMING DECORATOR
# ============================================================================

def log_timing(operation: str):
    """Decorator to log operation timing."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000
                logger.info(f"{operation} completed in {elapsed:.1f}ms")
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                logger.error(f"{operation} failed after {elapsed:.1f}ms: {e}")
                raise
        return wrapper
    return decorator


# ============================================================================
# BUILD CONTEXT
# ============================================================================

class _Context:
    """Shared intermediate values every panel reads."""

    def __init__(self, agg: BucketAggregator, rental: Optional[RentalAggregate],
                 previous_yields: Optional[YieldState], now: datetime, config: DashboardConfig):
        self.agg = agg
        self.rental = rental
        self.config = config
        self.now = now

        self.years = agg.years
        self.quarters = agg.quarters
        self.latest_year = self.years[-1] if self.years else None
        self.prev_year = self.years[-2] if len(self.years) > 1 else None
        self.trend_quarters = self.quarters[-TREND_QUARTERS:]

        self.has_rental = rental is not None and rental.has_data
        self.rental_records = rental.records if rental is not None else []

        self.sales_window: WindowSelection = select_window(
            agg.sales, now, config.rolling_windows, config.min_window_records
        )
        self.rental_window: WindowSelection = select_window(
            self.rental_records, now, config.rolling_windows, config.min_window_records
        )

        samples = agg.samples.values()
        latest_samples = [s for s in samples if s.year == self.latest_year]
        self.recent_samples = latest_samples if len(latest_samples) >= RECENT_SAMPLE_MIN else samples
        self.avg_area = (
            round(sum(s.area for s in self.recent_samples) / len(self.recent_samples))
            if self.recent_samples else 0
        )

        self.yields = compute_yield_state(
            self.sales_window.records, self.rental_window.records, previous_yields, self.has_rental
        )
        self.overall_yield = blended_yield(
            {seg: b.count for seg, b in agg.by_segment.items()}, self.yields
        )
        self.bedroom_model: Optional[BedroomModel] = (
            build_bedroom_model(self.rental_records) if self.rental_records else None
        )

    def rental_quarter(self, quarter: str):
        if not self.has_rental:
            return None
        return self.rental.by_quarter.get(rental_quarter_key(quarter))

    def rental_district(self, district: str):
        return self.rental.by_district.get(district) if self.has_rental else None

    def rental_project(self, name: str):
        return self.rental.by_project.get(name) if self.has_rental else None

    def quarter_yield(self, quarter: str) -> float:
        bucket = self.agg.by_quarter.get(quarter)
        if bucket is None or bucket.count == 0:
            return DEFAULT_GROSS_YIELD
        return blended_yield({seg: b.count for seg, b in bucket.by_segment.items()}, self.yields)

    def estimated_rent(self, psf: float, gross_yield: float) -> int:
        return round(psf * gross_yield / 12 * self.avg_area)

    def project_yield(self, project: ProjectBucket, psf: float):
        """(yield %, estimated?) for a project at the given psf."""
        rp = self.rental_project(project.name)
        if rp is not None and psf > 0:
            return yield_pct(rp.avg_rent_psf, psf), False
        return round(self.yields.get(project.segment) * 100, 2), True


# ============================================================================
# PANELS
# ============================================================================

def _headline(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg
    window = ctx.sales_window.records
    latest_bucket = agg.by_year.get(ctx.latest_year) if ctx.latest_year else None

    if window:
        avg_psf = mean_rounded(sum(r.psf for r in window), len(window))
        med_psf = median(r.psf for r in window)
    else:
        avg_psf = latest_bucket.mean if latest_bucket else 0
        if latest_bucket and len(latest_bucket.sample):
            med_psf = median(latest_bucket.sample.values())
        else:
            med_psf = median(s.psf for s in agg.samples)

    latest_avg = latest_bucket.mean if latest_bucket else avg_psf
    prev_bucket = agg.by_year.get(ctx.prev_year) if ctx.prev_year else None
    prev_avg = prev_bucket.mean if prev_bucket else 0

    sorted_psf = sorted(s.psf for s in ctx.recent_samples)

    return {
        'totalTx': agg.total,
        'totalVolume': agg.volume,
        'avgPsf': avg_psf,
        'medPsf': med_psf,
        'psfPeriod': ctx.sales_window.label,
        'yoyPct': pct_change(latest_avg, prev_avg),
        'latestYear': ctx.latest_year,
        'segCounts': {seg: agg.by_segment[seg].count if seg in agg.by_segment else 0 for seg in SEGMENTS},
        'segmentYields': ctx.yields.to_dict(),
        'psfP5': percentile(sorted_psf, 0.05),
        'psfP25': percentile(sorted_psf, 0.25),
        'psfP75': percentile(sorted_psf, 0.75),
        'psfP95': percentile(sorted_psf, 0.95),
    }


def _rental_headline(ctx: _Context, avg_psf: int) -> Dict[str, Any]:
    window = ctx.rental_window.records
    total = len(window)
    seg_counts: Dict[str, int] = {}
    for r in window:
        seg_counts[r.segment] = seg_counts.get(r.segment, 0) + 1

    est_rent = ctx.estimated_rent(avg_psf, ctx.overall_yield)
    if total:
        avg_rent = mean_rounded(sum(r.rent for r in window), total)
        avg_rent_psf = round(sum(r.rent_psf for r in window) / total, 2)
        med_rent = median(r.rent for r in window)
    elif ctx.has_rental:
        # Rental store trimmed empty; the running totals still cover every record
        avg_rent = ctx.rental.overall_avg_rent
        avg_rent_psf = round(ctx.rental.overall_avg_rent_psf, 2)
        med_rent = ctx.rental.overall_med_rent
    else:
        avg_rent = avg_rent_psf = med_rent = None

    return {
        'avgRent': avg_rent or est_rent,
        'avgRentPsf': avg_rent_psf or round(avg_psf * ctx.overall_yield / 12, 2),
        'medRent': med_rent or est_rent,
        'hasRealRental': ctx.has_rental,
        'rentalTotal': total,
        'rentalPeriod': ctx.rental_window.label,
        'rentalSegCounts': {seg: seg_counts.get(seg, 0) for seg in SEGMENTS},
    }


def _trends(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg

    yoy = []
    prev_avg = None
    for y in ctx.years:
        bucket = agg.by_year[y]
        avg = bucket.mean
        yoy.append({
            'year': y,
            'avg': avg,
            'med': median(bucket.sample.values()) if bucket.sample is not None else 0,
            'yoy': pct_change(avg, prev_avg),
        })
        prev_avg = avg

    def quarter_rent(q: str) -> int:
        real = ctx.rental_quarter(q)
        if real is not None:
            return real.avg_rent
        return ctx.estimated_rent(agg.by_quarter[q].mean, ctx.quarter_yield(q))

    rent_trend = []
    prev_rent = None
    for q in ctx.trend_quarters:
        real = ctx.rental_quarter(q)
        rent = quarter_rent(q)
        rent_trend.append({
            'q': q,
            'avg': rent,
            'med': real.med_rent if real is not None else rent,
            'qoq': pct_change(rent, prev_rent),
            'real': real is not None,
        })
        prev_rent = rent

    sale_volume = [
        {'d': q, 'v': agg.by_quarter[q].volume}
        for q in ctx.quarters[-VOLUME_QUARTERS:]
    ]
    rent_volume = []
    for q in ctx.quarters[-VOLUME_QUARTERS:]:
        real = ctx.rental_quarter(q)
        rent_volume.append({'d': q, 'v': real.count if real is not None else 0})

    return {
        'years': ctx.years,
        'quarters': ctx.quarters,
        'yoy': yoy,
        'rentTrend': rent_trend,
        'saleVolume': sale_volume,
        'rentVolume': rent_volume,
    }


def _segments_and_types(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg
    latest = ctx.latest_year

    segment_psf = [
        {'name': seg, 'val': agg.by_segment[seg].latest_or_overall(latest), 'count': agg.by_segment[seg].count}
        for seg in SEGMENTS
        if seg in agg.by_segment and agg.by_segment[seg].count > 0
    ]
    segment_rent = []
    for row in segment_psf:
        real = ctx.rental.by_segment.get(row['name']) if ctx.has_rental else None
        if real is not None:
            segment_rent.append({'name': row['name'], 'val': real.avg_rent, 'count': real.count})
        else:
            segment_rent.append({'name': row['name'], 'val': 0, 'count': 0})

    type_psf = sorted(
        ({'t': t, 'v': b.latest_or_overall(latest)} for t, b in agg.by_type.items()),
        key=lambda r: r['v'], reverse=True,
    )[:TYPE_BAR_SIZE]
    type_rent = []
    for row in type_psf:
        total_rent, total_count = 0.0, 0
        if ctx.has_rental:
            for project in agg.by_project.values():
                if project.property_type != row['t']:
                    continue
                rp = ctx.rental.by_project.get(project.name)
                if rp is not None:
                    total_rent += rp.avg_rent * rp.count
                    total_count += rp.count
        type_rent.append({'t': row['t'], 'v': round(total_rent / total_count) if total_count else 0})

    tenure_psf = sorted(
        ({'t': t, 'v': b.latest_or_overall(latest)} for t, b in agg.by_tenure.items()),
        key=lambda r: r['v'], reverse=True,
    )

    floor_psf = [
        {'band': band, 'psf': b.mean, 'count': b.count}
        for band, b in sorted(agg.by_floor.items())
    ]

    return {
        'segmentPsf': segment_psf,
        'segmentRent': segment_rent,
        'typePsf': type_psf,
        'typeRent': type_rent,
        'tenurePsf': tenure_psf,
        'floorPsf': floor_psf,
    }


def _rankings(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg
    by_count = sorted(agg.by_project.values(), key=lambda p: p.count, reverse=True)
    top_sale = [{'n': p.name, 'c': p.count} for p in by_count[:TOP_PROJECTS]]

    top_rent = top_sale
    if ctx.has_rental:
        ranked = sorted(
            ({'n': name, 'c': rp.count} for name, rp in ctx.rental.by_project.items()),
            key=lambda r: r['c'], reverse=True,
        )[:TOP_PROJECTS]
        top_rent = ranked or top_sale

    return {'topSaleProjects': top_sale, 'topRentProjects': top_rent}


def _districts(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg
    district_names = sorted(agg.by_district, key=district_sort_key)
    top_districts = [
        d for d, _ in sorted(agg.by_district.items(), key=lambda kv: kv[1].count, reverse=True)[:TOP_DISTRICTS]
    ]

    psf_trend, rent_trend = [], []
    for q in ctx.trend_quarters:
        psf_row: Dict[str, Any] = {'q': q}
        rent_row: Dict[str, Any] = {'q': q}
        rq = rental_quarter_key(q)
        for d in top_districts:
            dq = agg.by_district[d].by_quarter.get(q)
            psf_row[d] = dq.mean if dq is not None else None
            real = ctx.rental_district(d)
            if real is None:
                rent_row[d] = None
            else:
                q_psf = real.quarter_rent_psf(rq)
                rent_row[d] = q_psf if q_psf is not None else (real.avg_rent_psf or None)
        psf_trend.append(psf_row)
        rent_trend.append(rent_row)

    psf_bar = sorted(
        ({'d': d, 'v': agg.by_district[d].year_or_overall(ctx.latest_year)} for d in district_names),
        key=lambda r: r['v'], reverse=True,
    )[:DISTRICT_BAR_SIZE]
    rent_bar = []
    for row in psf_bar:
        real = ctx.rental_district(row['d'])
        rent_bar.append({'d': row['d'], 'v': real.avg_rent_psf if real is not None else 0})

    return {
        'districtNames': district_names,
        'topDistricts': top_districts,
        'districtPsfTrend': psf_trend,
        'districtRentTrend': rent_trend,
        'districtPsfBar': psf_bar,
        'districtRentBar': rent_bar,
    }


def _distributions(ctx: _Context) -> Dict[str, Any]:
    psf_values = [s.psf for s in ctx.recent_samples]

    seed = ctx.config.random_seed if ctx.config.random_seed is not None else DEFAULT_SCATTER_SEED
    shuffled = list(ctx.recent_samples)
    random.Random(seed).shuffle(shuffled)
    psf_scatter = [{'a': s.area, 'p': s.psf, 's': s.segment} for s in shuffled[:SCATTER_POINTS]]

    rents = [r.rent for r in ctx.rental_records[:RENT_HISTOGRAM_ROWS]]
    rent_scatter = [
        {'a': r.area_sqft, 'p': r.rent_psf, 's': r.segment}
        for r in ctx.rental_records[:SCATTER_POINTS]
    ]

    return {
        'psfHistogram': histogram(psf_values, PSF_HISTOGRAM_BIN),
        'rentHistogram': histogram(rents, RENT_HISTOGRAM_BIN),
        'psfScatter': psf_scatter,
        'rentScatter': rent_scatter,
    }


def _investment(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg
    district_names = sorted(agg.by_district, key=district_sort_key)

    district_yields: Dict[str, Dict[str, Any]] = {}
    for d in district_names:
        bucket = agg.by_district[d]
        bp = bucket.year_or_overall(ctx.latest_year)
        if bp <= 0:
            continue
        seg = dominant_category(bucket.segment_counts)
        real = ctx.rental_district(d)
        if real is not None:
            rp = real.avg_rent_psf
            district_yields[d] = {'d': d, 'rp': rp, 'bp': bp, 'y': yield_pct(rp, bp), 'seg': seg, 'estimated': False}
        else:
            district_yields[d] = {
                'd': d, 'rp': 0, 'bp': bp, 'y': round(ctx.yields.get(seg) * 100, 2), 'seg': seg, 'estimated': True,
            }

    yield_table = sorted(
        (
            {k: v for k, v in row.items() if k != 'estimated'}
            for row in district_yields.values()
            if not row['estimated'] and row['y'] > 0
        ),
        key=lambda r: r['y'], reverse=True,
    )[:YIELD_TABLE_SIZE]

    by_district = {}
    for d in district_names:
        bucket = agg.by_district[d]
        yrow = district_yields.get(d)
        by_district[d] = {
            'count': bucket.count,
            'avg': bucket.mean,
            'volume': bucket.volume,
            'seg': dominant_category(bucket.segment_counts),
            'yield': yrow['y'] if yrow else 0,
            'yieldEstimated': yrow['estimated'] if yrow else True,
        }

    years = ctx.config.cagr_window_years
    start_year, end_year = growth_window(ctx.latest_year, years)

    def district_yield(d: str) -> float:
        row = district_yields.get(d)
        return row['y'] if row else 0

    def project_yield(project: ProjectBucket, end_psf: int) -> float:
        return ctx.project_yield(project, end_psf)[0]

    dist_perf = district_performance(agg.by_district, start_year, end_year, years, district_yield)
    proj_perf = project_performance(agg.by_project, start_year, end_year, years, project_yield)

    return {
        'byDistrict': by_district,
        'districtYields': yield_table,
        'bestYield': yield_table[0] if yield_table else None,
        'cagrData': cagr_ranking(dist_perf),
        'districtPerformance': [r.to_dict() for r in dist_perf],
        'projectPerformance': [r.to_dict() for r in proj_perf],
        'avgCagr': average_cagr(dist_perf),
        'avgYield': round(sum(r['y'] for r in yield_table) / len(yield_table), 2) if yield_table else 0,
    }


def _transactions(ctx: _Context) -> Dict[str, Any]:
    recent_sales = [
        r.to_recent_dict(beds=estimate_bedrooms(ctx.bedroom_model, r))
        for r in ctx.agg.recent.result()
    ]
    recent_rentals = [
        r.to_recent_dict()
        for r in sorted(ctx.rental_records, key=lambda r: r.month_key, reverse=True)[:RECENT_RENTALS_SIZE]
    ]
    return {'recentSales': recent_sales, 'recentRentals': recent_rentals}


def _projects(ctx: _Context) -> Dict[str, Any]:
    agg = ctx.agg
    by_count = sorted(agg.by_project.values(), key=lambda p: p.count, reverse=True)

    comparison_pool = []
    for p in [p for p in by_count if p.count >= PROJECT_MIN_TOTAL_TX][:COMPARISON_POOL_SIZE]:
        psf = p.latest_year_mean()
        rp = ctx.rental_project(p.name)
        yld, estimated = ctx.project_yield(p, psf)
        comparison_pool.append({
            'name': p.name,
            'psf': psf,
            'rent': round(rp.avg_rent / 100) * 100 if rp is not None else 0,
            'yield': yld,
            'yieldEstimated': estimated,
            'dist': p.district,
            'street': p.street or '',
            'age': p.first_year,
            'type': p.property_type,
            'units': p.count,
            'segment': p.segment,
            'yearPsf': p.year_psf(),
            'yearPrice': p.year_price(),
            'avgArea': p.mean_area(ctx.avg_area),
        })

    indexed = [p for p in by_count if p.count >= PROJECT_INDEX_MIN_TX]
    project_index = {}
    district_groups: Dict[str, List[Dict[str, Any]]] = {}
    for p in indexed:
        psf = p.latest_year_mean()
        yld, estimated = ctx.project_yield(p, psf)
        project_index[p.name] = {
            'dist': p.district,
            'seg': p.segment,
            'psf': psf,
            'n': p.count,
            'yield': yld,
            'yieldEstimated': estimated,
            'street': p.street,
            'type': p.property_type,
            'yearPsf': p.year_psf(),
            'yearPrice': p.year_price(),
            'avgArea': p.mean_area(ctx.avg_area),
            'floorPsf': {band: b.mean for band, b in sorted(p.by_floor.items())},
        }
        district_groups.setdefault(p.district, []).append({
            'name': p.name,
            'psf': psf,
            'n': p.count,
            'seg': p.segment,
            'street': p.street,
            'tenure': p.tenure,
            'yield': yld,
            'latest': p.latest,
        })

    district_top = []
    for d, projects in district_groups.items():
        projects.sort(key=lambda r: r['psf'], reverse=True)
        bucket = agg.by_district.get(d)
        district_top.append({
            'dist': d,
            'seg': dominant_category(bucket.segment_counts if bucket else None),
            'avgPsf': round(sum(r['psf'] for r in projects) / len(projects)),
            'topPsf': projects[0]['psf'],
            'topProject': projects[0]['name'],
            'count': len(projects),
            'projects': projects[:DISTRICT_TOP_PROJECTS],
        })
    district_top.sort(key=lambda r: r['topPsf'], reverse=True)

    return {
        'comparisonPool': comparison_pool,
        'projectList': [p.name for p in indexed],
        'projectIndex': project_index,
        'districtTopPsf': district_top,
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

@log_timing("build_dashboard")
def build_dashboard(
    aggregator: BucketAggregator,
    rental: Optional[RentalAggregate] = None,
    *,
    yield_state: Optional[YieldState] = None,
    now: Optional[datetime] = None,
    config: Optional[DashboardConfig] = None,
) -> DashboardBuild:
    """
    Build the full dashboard payload.

    Args:
        aggregator: Fully ingested sale aggregator
        rental: Rental aggregate of the same refresh (None when unavailable)
        yield_state: Yield state produced by the previous build
        now: Anchor for rolling windows (default: current time)
        config: Dashboard configuration (default: from environment)

    Returns:
        DashboardBuild(report, yield_state). The report is a JSON-ready dict
        with camelCase keys; yield_state is the state to pass to the next
        build.
    """
    config = config or get_dashboard_config()
    now = now or datetime.now()

    ctx = _Context(aggregator, rental, yield_state, now, config)
    logger.info(
        f"Building dashboard: {aggregator.total:,} sales, {len(ctx.rental_records):,} rentals, "
        f"window {ctx.sales_window.label}, rental {'REAL' if ctx.has_rental else 'ESTIMATED'}"
    )

    report: Dict[str, Any] = {}
    report.update(_headline(ctx))
    report.update(_rental_headline(ctx, report['avgPsf']))
    report.update(_trends(ctx))
    report.update(_segments_and_types(ctx))
    report.update(_rankings(ctx))
    report.update(_districts(ctx))
    report.update(_distributions(ctx))
    report.update(_investment(ctx))
    report.update(_transactions(ctx))
    report.update(_projects(ctx))

    return DashboardBuild(report, ctx.yields)
