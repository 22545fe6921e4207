"""
Aggregation Service - Single-pass, fixed-memory bucket aggregator

Consumes every URA sale transaction exactly once and routes it into every
dashboard dimension at the same time:

    year, quarter (+segment), segment (+year), district (+year, +quarter,
    +segment counts), property type (+segment counts, +year), tenure (+year),
    project (+year, +floor band, area/psf reservoirs, latest month),
    floor band, global psf reservoir, most-recent top-K, sales store.

Sums and counts are exact. Only the reservoir samples are capped, so memory
per bucket is O(1) in the number of transactions (the sales store is the one
deliberate O(n) structure and is capped after each refresh).

Usage:
    aggregator = BucketAggregator(rng=random.Random(42))
    for batch_id in (1, 2, 3, 4):
        aggregator.ingest_batch(fetch_batch(batch_id), batch_id)
    report = build_dashboard(aggregator, rental).report
"""

import logging
import random
from typing import Any, Dict, List, NamedTuple, Optional, Set, Tuple

from pydantic import ValidationError

from constants import (
    GLOBAL_SAMPLE_SIZE,
    YEAR_SAMPLE_SIZE,
    PROJECT_HISTORY_SIZE,
    RECENT_SALES_SIZE,
)
from models.buckets import (
    StatBucket,
    YearBucket,
    QuarterBucket,
    SegmentBucket,
    DistrictBucket,
    TypeBucket,
    TenureBucket,
    ProjectBucket,
)
from models.transaction import SaleRecord
from services.sampling import ReservoirSample, BoundedTopK
from services.ura_canonical_mapper import (
    URACanonicalMapper,
    URAProjectPayload,
    BatchValidationError,
    UNKNOWN_PROJECT,
    validate_batch,
)

logger = logging.getLogger(__name__)

__all__ = [
    'BucketAggregator',
    'PsfSample',
]


class PsfSample(NamedTuple):
    """One resident of the market-wide reservoir."""
    psf: int
    area: int
    segment: str
    district: str
    year: str


class BucketAggregator:
    """
    Multi-dimensional bucket aggregator for URA sale transactions.

    One instance corresponds to one full rebuild. Instances are never shared
    with readers until ingestion is complete.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng if rng is not None else random.Random()
        self.mapper = URACanonicalMapper()

        self.total = 0
        self.volume = 0.0
        self.samples: ReservoirSample = ReservoirSample(GLOBAL_SAMPLE_SIZE, self.rng)

        self.by_year: Dict[str, YearBucket] = {}
        self.by_quarter: Dict[str, QuarterBucket] = {}
        self.by_segment: Dict[str, SegmentBucket] = {}
        self.by_district: Dict[str, DistrictBucket] = {}
        self.by_type: Dict[str, TypeBucket] = {}
        self.by_tenure: Dict[str, TenureBucket] = {}
        self.by_project: Dict[str, ProjectBucket] = {}
        self.by_floor: Dict[str, StatBucket] = {}

        self.recent: BoundedTopK = BoundedTopK(RECENT_SALES_SIZE, key=lambda r: r.month_key)
        self.sales: List[SaleRecord] = []

        self.project_batches: Dict[str, Any] = {}
        self.seen_batches: Set[Any] = set()

    # =========================================================================
    # Ingestion
    # =========================================================================

    def ingest_batch(self, projects: Any, batch_id: Any) -> int:
        """
        Validate and ingest one URA transaction batch.

        Every transaction of the batch is mapped before any bucket is
        touched, and the batch id is only recorded once the whole batch has
        been aggregated. A batch id already ingested by this aggregator is
        ignored.

        Returns:
            Number of transactions accepted from this batch

        Raises:
            BatchValidationError: the batch is structurally invalid; nothing
                from it is aggregated
        """
        if batch_id in self.seen_batches:
            logger.info(f"Batch {batch_id} already ingested, ignoring")
            return 0

        payloads = validate_batch(projects, batch_id)
        mapped = [self._map_payload(payload, batch_id) for payload in payloads]

        accepted = 0
        for name, records in mapped:
            self.project_batches[name] = batch_id
            for record in records:
                self.add(record)
            accepted += len(records)
        self.seen_batches.add(batch_id)

        logger.info(f"Batch {batch_id}: {len(payloads)} projects, {accepted} transactions accepted")
        self.mapper.log_summary(f"After batch {batch_id}")
        return accepted

    def ingest(self, project: Any, batch_id: Any) -> int:
        """
        Ingest a single raw URA project record.

        Returns:
            Number of transactions accepted
        """
        try:
            payload = URAProjectPayload.model_validate(project)
        except ValidationError as e:
            raise BatchValidationError(batch_id, f"invalid project record: {e.errors()[0]['msg']}") from e
        name, records = self._map_payload(payload, batch_id)
        self.project_batches[name] = batch_id
        for record in records:
            self.add(record)
        return len(records)

    def _map_payload(self, payload: URAProjectPayload, batch_id: Any) -> Tuple[str, List[SaleRecord]]:
        name = str(payload.project or '').strip() or UNKNOWN_PROJECT
        return name, list(self.mapper.map_project(payload, batch_id))

    def add(self, record: SaleRecord) -> None:
        """Route one validated transaction into every bucket."""
        psf, price = record.psf, record.price
        year = record.year_key
        quarter = record.quarter
        segment = record.segment

        self.total += 1
        self.volume += price
        self.samples.add(PsfSample(psf, record.area_sqft, segment, record.district, year))

        year_bucket = self.by_year.get(year)
        if year_bucket is None:
            year_bucket = self.by_year[year] = YearBucket(sample=ReservoirSample(YEAR_SAMPLE_SIZE, self.rng))
        year_bucket.add_sale(psf, price)

        quarter_bucket = self.by_quarter.setdefault(quarter, QuarterBucket())
        quarter_bucket.add_sale(psf, price)
        quarter_bucket.add_segment(segment, psf)

        self.by_segment.setdefault(segment, SegmentBucket()).add_yearly(year, psf)

        self.by_district.setdefault(record.district, DistrictBucket()).add_district_sale(
            psf, price, year, quarter, segment
        )

        type_bucket = self.by_type.setdefault(record.property_type, TypeBucket())
        type_bucket.add_yearly(year, psf)
        type_bucket.add_segment(segment)

        self.by_tenure.setdefault(record.tenure, TenureBucket()).add_yearly(year, psf)

        project = self.by_project.get(record.project)
        if project is None:
            project = self.by_project[record.project] = ProjectBucket(
                name=record.project,
                street=record.street,
                segment=segment,
                district=record.district,
                tenure=record.tenure_raw,
                property_type=record.property_type,
                areas=ReservoirSample(PROJECT_HISTORY_SIZE, self.rng),
                psf_history=ReservoirSample(PROJECT_HISTORY_SIZE, self.rng),
            )
        project.add_project_sale(psf, price, record.area_sqft, year, record.floor_band, record.month_key)

        if record.floor_band:
            self.by_floor.setdefault(record.floor_band, StatBucket()).add(psf)

        self.recent.add(record)
        self.sales.append(record)

    # =========================================================================
    # Store maintenance
    # =========================================================================

    def trim_sales(self, max_records: int) -> int:
        """
        Sort the sales store newest-first and cap it at max_records.

        Bucket totals are unaffected; only the store used for rolling windows
        and browsing shrinks.

        Returns:
            Number of records dropped
        """
        self.sales.sort(key=lambda r: r.month_key, reverse=True)
        dropped = max(0, len(self.sales) - max_records)
        if dropped:
            logger.warning(f"Sales store exceeds cap ({len(self.sales):,} > {max_records:,}), trimming")
            del self.sales[max_records:]
        return dropped

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def years(self) -> List[str]:
        return sorted(self.by_year)

    @property
    def quarters(self) -> List[str]:
        return sorted(self.by_quarter)

    @property
    def latest_year(self) -> Optional[str]:
        return max(self.by_year) if self.by_year else None

    def get_stats(self) -> Dict[str, Any]:
        mapper_stats = self.mapper.get_stats()
        return {
            'accepted': self.total,
            'rejected': mapper_stats['transactions_skipped'],
            'projects': len(self.by_project),
            'stored': len(self.sales),
            'batches': sorted(self.seen_batches, key=str),
            'skipReasons': {k: v for k, v in mapper_stats.items() if k.startswith('skip_') and v},
        }
