"""
Dashboard Configuration - Environment-based settings

Environment Variables:
    DASHBOARD_RANDOM_SEED: int (default: unset)
        Seed for every sampler and for scatter shuffling. Unset means a
        fresh seed per process; set it for reproducible payloads.

    DASHBOARD_CAGR_WINDOW_YEARS: int (default: 5)
        Length of the CAGR / total-return window.

    DASHBOARD_MIN_WINDOW_RECORDS: int (default: 20)
        Records a rolling window needs before it is used for stat cards.

    DASHBOARD_ROLLING_WINDOWS: comma list of months (default: '3,6,12')
        Candidate trailing windows, tried smallest first.

    DASHBOARD_MAX_SALES_RECORDS / DASHBOARD_MAX_RENTAL_RECORDS: int
        Store caps enforced after each refresh (default: 150000 / 80000).

    DASHBOARD_BATCH_RETRIES: int (default: 3)
        Attempts per transaction batch during a refresh.

    DASHBOARD_RETRY_BASE_SECONDS: float (default: 2.0)
        First back-off delay; doubles per attempt, capped at 16s.

    DASHBOARD_RENTAL_LOOKBACK_QUARTERS: int (default: 4)
        Rental reference periods fetched per refresh.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from constants import (
    CAGR_WINDOW_YEARS,
    MIN_WINDOW_RECORDS,
    ROLLING_WINDOW_MONTHS,
    MAX_SALES_RECORDS,
    MAX_RENTAL_RECORDS,
)

load_dotenv()

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SECONDS = 16.0


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default


def _env_windows(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        months = tuple(sorted(int(part) for part in raw.split(',') if part.strip()))
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    if not months or any(m <= 0 for m in months):
        logger.warning(f"Invalid {name}={raw!r}, using default {default}")
        return default
    return months


@dataclass(frozen=True)
class DashboardConfig:
    """Tunable knobs for one dashboard build / refresh."""
    random_seed: Optional[int] = None
    cagr_window_years: int = CAGR_WINDOW_YEARS
    min_window_records: int = MIN_WINDOW_RECORDS
    rolling_windows: Tuple[int, ...] = ROLLING_WINDOW_MONTHS
    max_sales_records: int = MAX_SALES_RECORDS
    max_rental_records: int = MAX_RENTAL_RECORDS
    batch_retries: int = 3
    retry_base_seconds: float = 2.0
    rental_lookback_quarters: int = 4

    def retry_delay(self, attempt: int) -> float:
        """Back-off before retrying after the given (1-indexed) failed attempt."""
        return min(self.retry_base_seconds * (2 ** (attempt - 1)), MAX_RETRY_DELAY_SECONDS)


def get_dashboard_config() -> DashboardConfig:
    """
    Read the dashboard configuration from the environment.

    Invalid values are logged and replaced by their defaults.
    """
    cagr_years = _env_int('DASHBOARD_CAGR_WINDOW_YEARS', CAGR_WINDOW_YEARS)
    if cagr_years is None or cagr_years <= 0:
        logger.warning(f"DASHBOARD_CAGR_WINDOW_YEARS must be positive, using {CAGR_WINDOW_YEARS}")
        cagr_years = CAGR_WINDOW_YEARS

    return DashboardConfig(
        random_seed=_env_int('DASHBOARD_RANDOM_SEED', None),
        cagr_window_years=cagr_years,
        min_window_records=_env_int('DASHBOARD_MIN_WINDOW_RECORDS', MIN_WINDOW_RECORDS),
        rolling_windows=_env_windows('DASHBOARD_ROLLING_WINDOWS', ROLLING_WINDOW_MONTHS),
        max_sales_records=_env_int('DASHBOARD_MAX_SALES_RECORDS', MAX_SALES_RECORDS),
        max_rental_records=_env_int('DASHBOARD_MAX_RENTAL_RECORDS', MAX_RENTAL_RECORDS),
        batch_retries=max(1, _env_int('DASHBOARD_BATCH_RETRIES', 3)),
        retry_base_seconds=_env_float('DASHBOARD_RETRY_BASE_SECONDS', 2.0),
        rental_lookback_quarters=max(1, _env_int('DASHBOARD_RENTAL_LOOKBACK_QUARTERS', 4)),
    )


def log_dashboard_config(config: DashboardConfig) -> None:
    """Log the active configuration."""
    logger.info("Dashboard configuration:")
    logger.info(f"  Random seed:        {config.random_seed if config.random_seed is not None else 'unseeded'}")
    logger.info(f"  Rolling windows:    {', '.join(f'{m}M' for m in config.rolling_windows)} "
                f"(min {config.min_window_records} records)")
    logger.info(f"  CAGR window:        {config.cagr_window_years} years")
    logger.info(f"  Store caps:         {config.max_sales_records:,} sales / {config.max_rental_records:,} rentals")
    logger.info(f"  Batch retries:      {config.batch_retries} (base delay {config.retry_base_seconds}s)")
    logger.info(f"  Rental lookback:    {config.rental_lookback_quarters} quarters")
