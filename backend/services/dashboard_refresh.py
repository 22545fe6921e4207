"""
Dashboard Refresh - Orchestrates a full rebuild of the dashboard snapshot

Workflow:
1. Fetch transaction batches (1-4), retrying each with exponential back-off
2. Ingest every batch into a fresh BucketAggregator
3. Fetch rental data for the last N quarters into a fresh RentalAggregator
4. Sort stores newest-first and enforce store caps
5. Build the dashboard payload, threading the live yield state through
6. Publish the new snapshot with a single reference swap

Nothing is published unless the whole workflow completes. A batch that still
fails after all retries is skipped (the dashboard is built from the rest);
if every batch fails the refresh raises RefreshError.

Transport is not implemented here: the engine takes the URA fetchers as
callables, so any client (live API, cached files, test doubles) plugs in.

Usage:
    from services.dashboard_refresh import DashboardRefreshEngine

    engine = DashboardRefreshEngine(fetch_batch=client.fetch_batch,
                                    fetch_rental=client.fetch_rental)
    result = engine.run()
"""

import logging
import random
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config import DashboardConfig, get_dashboard_config, log_dashboard_config
from constants import TRANSACTION_BATCHES
from models.rental import RentalAggregate
from services.aggregation_service import BucketAggregator
from services.analytics_reader import AnalyticsReader, DashboardSnapshot, get_reader
from services.dashboard_service import build_dashboard
from services.rental_service import RentalAggregator, rental_periods, sale_segment_lookup

logger = logging.getLogger(__name__)

__all__ = [
    'RefreshError',
    'RefreshResult',
    'DashboardRefreshEngine',
    'run_refresh',
]

FetchBatch = Callable[[int], List[Dict[str, Any]]]
FetchRental = Callable[[str], List[Dict[str, Any]]]


# =============================================================================
# Errors & Result Types
# =============================================================================

class RefreshError(RuntimeError):
    """A refresh could not produce a dashboard; the previous snapshot stays live."""


@dataclass
class RefreshResult:
    """Result of a refresh run."""
    success: bool
    batches_ok: List[int] = field(default_factory=list)
    batches_failed: List[int] = field(default_factory=list)
    transactions_accepted: int = 0
    transactions_rejected: int = 0
    rental_records: int = 0
    rental_periods_failed: List[str] = field(default_factory=list)
    sales_trimmed: int = 0
    rentals_trimmed: int = 0
    has_real_rental: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Engine
# =============================================================================

class DashboardRefreshEngine:
    """
    Rebuilds the dashboard from scratch and publishes it.

    Example:
        engine = DashboardRefreshEngine(fetch_batch=fetch_batch)
        result = engine.run()
        payload = get_reader().get_dashboard()
    """

    def __init__(
        self,
        fetch_batch: FetchBatch,
        fetch_rental: Optional[FetchRental] = None,
        config: Optional[DashboardConfig] = None,
        reader: Optional[AnalyticsReader] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Optional[datetime] = None,
    ):
        """
        Args:
            fetch_batch: batch number → list of raw URA transaction projects
            fetch_rental: reference period ('24q1') → list of raw rental projects
            config: Dashboard configuration (default: from environment)
            reader: Reader to publish to (default: process singleton)
            sleep: Back-off sleep function
            now: Anchor time for rental periods and rolling windows
        """
        self.fetch_batch = fetch_batch
        self.fetch_rental = fetch_rental
        self.config = config or get_dashboard_config()
        self.reader = reader or get_reader()
        self.sleep = sleep
        self.now = now

    def run(self) -> RefreshResult:
        """
        Execute the full refresh workflow.

        Returns:
            RefreshResult describing the published build

        Raises:
            RefreshError: every transaction batch failed; nothing was published
        """
        start = time.perf_counter()
        now = self.now or datetime.now()
        result = RefreshResult(success=False)

        logger.info("=" * 60)
        logger.info("DASHBOARD REFRESH - STARTING")
        logger.info("=" * 60)
        log_dashboard_config(self.config)

        aggregator = BucketAggregator(rng=random.Random(self.config.random_seed))
        for batch_id in TRANSACTION_BATCHES:
            if self._ingest_with_retry(aggregator, batch_id):
                result.batches_ok.append(batch_id)
            else:
                result.batches_failed.append(batch_id)

        if not result.batches_ok:
            logger.error("=" * 60)
            logger.error("DASHBOARD REFRESH - FAILED")
            logger.error(f"  All {len(TRANSACTION_BATCHES)} transaction batches failed")
            logger.error("=" * 60)
            raise RefreshError(f"all {len(TRANSACTION_BATCHES)} transaction batches failed")

        rental = self._fetch_rentals(aggregator, now, result)

        result.sales_trimmed = aggregator.trim_sales(self.config.max_sales_records)
        stats = aggregator.get_stats()
        result.transactions_accepted = stats['accepted']
        result.transactions_rejected = stats['rejected']
        result.rental_records = len(rental.records)

        build = build_dashboard(
            aggregator,
            rental,
            yield_state=self.reader.get_yield_state(),
            now=now,
            config=self.config,
        )
        self.reader.publish(DashboardSnapshot(
            report=build.report,
            aggregator=aggregator,
            rental=rental,
            yield_state=build.yield_state,
        ))

        result.success = True
        result.has_real_rental = build.report['hasRealRental']
        result.duration_seconds = round(time.perf_counter() - start, 3)

        logger.info("=" * 60)
        logger.info("DASHBOARD REFRESH - COMPLETED")
        logger.info("=" * 60)
        logger.info(f"  Duration:     {result.duration_seconds:.1f}s")
        logger.info(f"  Batches:      {len(result.batches_ok)} ok, {len(result.batches_failed)} failed")
        logger.info(f"  Transactions: {result.transactions_accepted:,} accepted, "
                    f"{result.transactions_rejected:,} rejected")
        logger.info(f"  Rentals:      {result.rental_records:,} "
                    f"({'REAL' if result.has_real_rental else 'ESTIMATED'} yields)")
        logger.info("=" * 60)
        return result

    def _ingest_with_retry(self, aggregator: BucketAggregator, batch_id: int) -> bool:
        attempts = self.config.batch_retries
        for attempt in range(1, attempts + 1):
            suffix = f" (retry {attempt}/{attempts})" if attempt > 1 else ""
            logger.info(f"Batch {batch_id}{suffix}...")
            try:
                projects = self.fetch_batch(batch_id)
                aggregator.ingest_batch(projects, batch_id)
                return True
            except Exception as e:
                logger.error(f"Batch {batch_id} attempt {attempt}: {e}")
                if attempt < attempts:
                    delay = self.config.retry_delay(attempt)
                    logger.warning(f"Retrying batch {batch_id} in {delay:.0f}s")
                    self.sleep(delay)
        logger.error(f"Batch {batch_id} FAILED after {attempts} attempts - data will be incomplete")
        return False

    def _fetch_rentals(self, aggregator: BucketAggregator, now: datetime,
                       result: RefreshResult) -> RentalAggregate:
        rental = RentalAggregator(
            segment_lookup=sale_segment_lookup(aggregator.sales),
            rng=random.Random(self.config.random_seed),
        )
        if self.fetch_rental is None:
            logger.warning("No rental fetcher configured, yields will be estimated")
            return rental.build()

        for period in rental_periods(now, self.config.rental_lookback_quarters):
            try:
                rental.add_period(self.fetch_rental(period), period)
            except Exception as e:
                logger.warning(f"Rental {period}: {e}")
                result.rental_periods_failed.append(period)

        result.rentals_trimmed = rental.trim(self.config.max_rental_records)
        return rental.build()


def run_refresh(fetch_batch: FetchBatch, fetch_rental: Optional[FetchRental] = None, **kwargs) -> RefreshResult:
    """Convenience wrapper: build an engine and run it once."""
    return DashboardRefreshEngine(fetch_batch, fetch_rental, **kwargs).run()
