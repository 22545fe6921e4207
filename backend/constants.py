"""
Centralized Constants - SINGLE SOURCE OF TRUTH

Market segments, sale/tenure labels, unit conversions and the fixed
capacities of the dashboard aggregation engine are defined here and
imported elsewhere.

DO NOT duplicate these definitions in other files.

Reference: URA Market Segments
- CCR: Core Central Region (Prime districts)
- RCR: Rest of Central Region (City fringe)
- OCR: Outside Central Region (Suburban)
"""

# =============================================================================
# MARKET SEGMENTS (URA)
# =============================================================================

SEGMENT_CCR = 'CCR'
SEGMENT_RCR = 'RCR'
SEGMENT_OCR = 'OCR'

# Display order for every per-segment output
SEGMENTS = [SEGMENT_CCR, SEGMENT_RCR, SEGMENT_OCR]

# URA omits marketSegment on a handful of projects
DEFAULT_SEGMENT = SEGMENT_RCR


def normalize_segment(raw_value) -> str:
    """
    Upper-case a raw market segment, defaulting to RCR when missing.

    Examples:
        normalize_segment('ccr') → 'CCR'
        normalize_segment(None) → 'RCR'
    """
    if not raw_value:
        return DEFAULT_SEGMENT
    return str(raw_value).strip().upper() or DEFAULT_SEGMENT


# =============================================================================
# SALE TYPE CLASSIFICATION - SINGLE SOURCE OF TRUTH
# =============================================================================

SALE_TYPE_NEW = "New Sale"
SALE_TYPE_RESALE = "Resale"
SALE_TYPE_SUB = "Sub Sale"


# =============================================================================
# TENURE CLASSIFICATION - SINGLE SOURCE OF TRUTH
# =============================================================================

TENURE_FREEHOLD = "Freehold"
TENURE_999_YEAR = "999-yr"
TENURE_LEASEHOLD = "Leasehold"


# =============================================================================
# UNITS & VALIDITY BOUNDS
# =============================================================================

# URA API returns area in square meters; the dashboard works in square feet
SQM_TO_SQFT = 10.7639

# PSF above this is a data-entry error (no Singapore condo trades there)
MAX_VALID_PSF = 50_000


# =============================================================================
# YIELD
# =============================================================================

# Gross yield assumed when no rental history exists at all
DEFAULT_GROSS_YIELD = 0.028


# =============================================================================
# AGGREGATION CAPACITIES
# =============================================================================
# Sums and counts are always exact; these only cap the retained value lists.

GLOBAL_SAMPLE_SIZE = 2000         # market-wide psf/area reservoir
YEAR_SAMPLE_SIZE = 500            # per-year psf reservoir (medians)
PROJECT_HISTORY_SIZE = 50         # per-project area/psf reservoirs
RECENT_SALES_SIZE = 500           # exact most-recent sale transactions
RECENT_RENTALS_SIZE = 500         # most-recent rental contracts in the payload
RENTAL_MEDIAN_SAMPLE_SIZE = 5000  # reservoir used for the overall median rent
QUARTER_RENT_SAMPLE_SIZE = 500    # per-quarter rent reservoir (medians)

# Rolling window for the headline stat cards
ROLLING_WINDOW_MONTHS = (3, 6, 12)
MIN_WINDOW_RECORDS = 20

# CAGR / performance tables
CAGR_WINDOW_YEARS = 5
DISTRICT_MIN_ENDPOINT_TX = 3
PROJECT_MIN_ENDPOINT_TX = 2
PROJECT_MIN_TOTAL_TX = 5

# Latest-year bucket needs this many trades before it replaces the all-time mean
LATEST_YEAR_MIN_TX = 3

# Recent-year sample must hold this many rows before it replaces the global one
RECENT_SAMPLE_MIN = 50

# Histogram bin widths
PSF_HISTOGRAM_BIN = 200
RENT_HISTOGRAM_BIN = 500

# Output slice sizes
TREND_QUARTERS = 8
VOLUME_QUARTERS = 12
SCATTER_POINTS = 200
TOP_PROJECTS = 8
TOP_DISTRICTS = 5
DISTRICT_BAR_SIZE = 10
TYPE_BAR_SIZE = 5
YIELD_TABLE_SIZE = 8
COMPARISON_POOL_SIZE = 30
PROJECT_INDEX_MIN_TX = 3
DISTRICT_TOP_PROJECTS = 15

# Store caps enforced after every refresh (newest kept)
MAX_SALES_RECORDS = 150_000
MAX_RENTAL_RECORDS = 80_000

# URA transaction batches (by postal district range)
TRANSACTION_BATCHES = [1, 2, 3, 4]
