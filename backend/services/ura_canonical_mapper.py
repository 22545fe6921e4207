"""
URA Canonical Mapper - Transform URA API project payloads into SaleRecords

Maps URA Data Service `PMI_Resi_Transaction` responses (projects with nested
transactions) to validated, normalized SaleRecord instances.
Handles:
- Structural validation of a batch at the boundary (pydantic)
- Type conversions (mmyy → year/month/quarter, typeOfSale → sale type label)
- Unit conversion (sqm → sqft) and computed psf
- Tenure and floor-range normalization
- Validity bounds (area > 0, price > 0, 0 < psf <= 50,000)

PRICE FIELD POLICY:
    We use `price` (gross transaction price) for all calculations, NOT `nettPrice`.

VALIDATION POLICY:
    Two failure classes are treated differently:
    - Structural errors (batch is not a list, a project is not a mapping,
      `transaction` is not a list) raise BatchValidationError before any
      record of the batch is mapped.
    - Malformed individual transactions (bad date, non-positive price/area,
      psf out of bounds) are skipped, counted by reason and logged at DEBUG.

Usage:
    from services.ura_canonical_mapper import URACanonicalMapper, validate_batch

    mapper = URACanonicalMapper()
    for project in validate_batch(projects, batch_id=1):
        for record in mapper.map_project(project, batch_id=1):
            aggregator.add(record)
"""

import logging
import math
import re
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from constants import (
    SALE_TYPE_NEW,
    SALE_TYPE_SUB,
    SALE_TYPE_RESALE,
    TENURE_FREEHOLD,
    TENURE_999_YEAR,
    TENURE_LEASEHOLD,
    SQM_TO_SQFT,
    MAX_VALID_PSF,
    normalize_segment,
)
from models.transaction import SaleRecord
from services.market_math import month_key, quarter_label

logger = logging.getLogger(__name__)

# Public API
__all__ = [
    'URACanonicalMapper',
    'URAProjectPayload',
    'BatchValidationError',
    'ContractDate',
    'validate_batch',
    'parse_contract_date',
    'parse_floor_range',
    'parse_float_safe',
    'parse_int_safe',
    'round_finite',
    'normalize_district',
    'classify_tenure',
    'map_sale_type',
]


# =============================================================================
# Constants
# =============================================================================

# URA typeOfSale mapping: "1" = New Sale, "2" = Sub Sale, anything else = Resale
TYPE_OF_SALE_MAP = {
    "1": SALE_TYPE_NEW,
    "2": SALE_TYPE_SUB,
}

UNKNOWN_PROJECT = 'Unknown'
UNKNOWN_PROPERTY_TYPE = 'Unknown'

_LEADING_INT = re.compile(r'^\s*[-+]?\d+')


# =============================================================================
# Errors
# =============================================================================

class BatchValidationError(ValueError):
    """A transaction batch is structurally invalid and was not aggregated."""

    def __init__(self, batch_id: Any, message: str):
        self.batch_id = batch_id
        super().__init__(f"Batch {batch_id}: {message}")


# =============================================================================
# Boundary Schema
# =============================================================================

class URAProjectPayload(BaseModel):
    """
    One project of a URA transaction batch.

    Only the container shape is enforced here; field values are parsed
    leniently by the mapper so one bad transaction never rejects a batch.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra='ignore',
    )

    project: Any = None
    street: Any = None
    market_segment: Any = Field(default=None, alias='marketSegment')
    transaction: List[Any] = Field(default_factory=list)

    @field_validator('transaction', mode='before')
    @classmethod
    def missing_transactions_are_empty(cls, v):
        return [] if v is None else v


_BATCH_ADAPTER = TypeAdapter(List[URAProjectPayload])


def validate_batch(projects: Any, batch_id: Any) -> List[URAProjectPayload]:
    """
    Validate the structure of a raw URA batch.

    Raises:
        BatchValidationError: projects is not a list, an element is not a
            mapping, or an element's `transaction` is not a list.
    """
    if not isinstance(projects, list):
        raise BatchValidationError(batch_id, f"expected a list of projects, got {type(projects).__name__}")
    try:
        return _BATCH_ADAPTER.validate_python(projects)
    except ValidationError as e:
        first = e.errors()[0]
        location = '.'.join(str(part) for part in first['loc'])
        raise BatchValidationError(
            batch_id,
            f"{e.error_count()} structural error(s); first at [{location}]: {first['msg']}"
        ) from e


# =============================================================================
# Date Parsing
# =============================================================================

class ContractDate(NamedTuple):
    year: int
    month: int

    @property
    def quarter(self) -> str:
        return quarter_label(self.year, self.month)

    @property
    def month_key(self) -> str:
        return month_key(self.year, self.month)


def parse_contract_date(mmyy: Any) -> Optional[ContractDate]:
    """
    Parse URA's mmyy contract date.

    URA format: "0125" = January 2025, "1299" = December 1999.
    Two-digit years above 50 are 19xx, the rest 20xx.

    Returns:
        ContractDate, or None if the value is missing or the month is not 1-12

    Examples:
        >>> parse_contract_date("0324")
        ContractDate(year=2024, month=3)
        >>> parse_contract_date("1399") is None
        True
    """
    if not mmyy or not isinstance(mmyy, str):
        return None

    mmyy = mmyy.strip()
    digits = mmyy[:4]
    if len(digits) < 4 or not (digits.isascii() and digits.isdigit()):
        return None

    mm = int(digits[:2])
    yy = int(digits[2:])
    if not (1 <= mm <= 12):
        return None

    year = 1900 + yy if yy > 50 else 2000 + yy
    return ContractDate(year, mm)


# =============================================================================
# Field Parsing Helpers
# =============================================================================

def parse_float_safe(value: Any, field_name: str = "unknown") -> Optional[float]:
    """Safely parse a value to float, returning None on failure."""
    if value is None:
        return None
    try:
        result = float(value)
        if math.isnan(result) or math.isinf(result):
            return None
        return result
    except (ValueError, TypeError, OverflowError):
        logger.debug(f"Failed to parse {field_name} as float: '{value}'")
        return None


def round_finite(value: float) -> int:
    """Round to int, or 0 when the value is infinite or NaN."""
    return round(value) if math.isfinite(value) else 0


def parse_int_safe(value: Any, field_name: str = "unknown", default: int = 0) -> int:
    """Safely parse a value to int, returning default on failure."""
    if value is None:
        return default
    try:
        return int(float(value))  # Handle "1.0" strings
    except (ValueError, TypeError, OverflowError):
        logger.debug(f"Failed to parse {field_name} as int: '{value}'")
        return default


def _leading_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group()) if match else 0


def normalize_district(district: Any) -> str:
    """
    Normalize a URA postal district to the dashboard label "D<n>".

    Examples:
        normalize_district("09") → "D9"
        normalize_district("") → "D0"
    """
    text = str(district).strip() if district is not None else ''
    return f"D{_leading_int(text)}"


def classify_tenure(tenure: Any) -> str:
    """
    Classify raw URA tenure text into Freehold / 999-yr / Leasehold.

    Case-insensitive substring match; anything else (including blank) is
    leasehold.
    """
    text = str(tenure or '').lower()
    if 'freehold' in text:
        return TENURE_FREEHOLD
    if '999' in text:
        return TENURE_999_YEAR
    return TENURE_LEASEHOLD


def parse_floor_range(floor_range: Any) -> Tuple[Optional[str], float]:
    """
    Parse a URA floor range into (band, midpoint).

    Examples:
        "06 to 10" → ("06-10", 8)
        "06-10"    → ("06-10", 8)
        "-" or ""  → (None, 0)
        "B1"       → ("B1", 0)
    """
    if not floor_range or floor_range == '-':
        return None, 0
    text = str(floor_range)

    parts = re.sub(r'\s', '', text).split('to')
    if len(parts) == 2:
        lo, hi = _leading_int(parts[0]), _leading_int(parts[1])
        return f"{lo:02d}-{hi:02d}", (lo + hi) / 2

    dash_parts = text.split('-')
    if len(dash_parts) == 2:
        lo, hi = _leading_int(dash_parts[0]), _leading_int(dash_parts[1])
        if lo > 0 and hi > 0:
            return f"{lo:02d}-{hi:02d}", (lo + hi) / 2

    return text, _leading_int(text)


def map_sale_type(type_of_sale: Any) -> str:
    """
    Map URA typeOfSale code to canonical sale type.

    Returns:
        "New Sale" for "1", "Sub Sale" for "2", "Resale" otherwise
    """
    return TYPE_OF_SALE_MAP.get(str(type_of_sale).strip(), SALE_TYPE_RESALE)


# =============================================================================
# URA Canonical Mapper
# =============================================================================

class URACanonicalMapper:
    """
    Maps validated URA project payloads to SaleRecords.

    Example:
        mapper = URACanonicalMapper()
        for project in validate_batch(api_response, batch_id=2):
            for record in mapper.map_project(project, batch_id=2):
                aggregator.add(record)
    """

    def __init__(self):
        self._stats = {
            'projects_processed': 0,
            'transactions_processed': 0,
            'transactions_skipped': 0,
            # Granular skip reasons for debugging
            'skip_malformed': 0,
            'skip_invalid_date': 0,
            'skip_invalid_price': 0,
            'skip_invalid_area': 0,
            'skip_invalid_psf': 0,
        }

    def get_stats(self) -> Dict[str, int]:
        """Get processing statistics."""
        return dict(self._stats)

    def map_project(self, project: URAProjectPayload, batch_id: Optional[int] = None) -> Iterator[SaleRecord]:
        """
        Map one URA project to SaleRecords, skipping malformed transactions.

        Yields:
            SaleRecord for each valid transaction
        """
        self._stats['projects_processed'] += 1

        project_name = str(project.project or '').strip() or UNKNOWN_PROJECT
        street = str(project.street or '').strip()
        segment = normalize_segment(project.market_segment)

        for txn in project.transaction:
            record = self.map_transaction(txn, project_name, street, segment, batch_id)
            if record is None:
                self._stats['transactions_skipped'] += 1
                continue
            self._stats['transactions_processed'] += 1
            yield record

    def map_transaction(
        self,
        txn: Any,
        project_name: str,
        street: str,
        segment: str,
        batch_id: Optional[int] = None,
    ) -> Optional[SaleRecord]:
        """
        Map a single raw transaction.

        Returns:
            SaleRecord, or None if the transaction violates a validity rule
        """
        if not isinstance(txn, dict):
            logger.debug(f"Skipping transaction in '{project_name}': not a mapping ({type(txn).__name__})")
            self._stats['skip_malformed'] += 1
            return None

        contract = parse_contract_date(txn.get('contractDate'))
        if contract is None:
            logger.debug(f"Skipping transaction in '{project_name}': invalid contract date '{txn.get('contractDate')}'")
            self._stats['skip_invalid_date'] += 1
            return None

        area_sqm = parse_float_safe(txn.get('area'), 'area') or 0
        area_sqft = round_finite(area_sqm * SQM_TO_SQFT)
        price = parse_float_safe(txn.get('price'), 'price') or 0

        if area_sqft <= 0:
            logger.debug(f"Skipping transaction in '{project_name}': invalid area '{txn.get('area')}'")
            self._stats['skip_invalid_area'] += 1
            return None
        if price <= 0:
            logger.debug(f"Skipping transaction in '{project_name}': invalid price '{txn.get('price')}'")
            self._stats['skip_invalid_price'] += 1
            return None

        psf = round(price / area_sqft)
        if psf <= 0 or psf > MAX_VALID_PSF:
            logger.debug(f"Skipping transaction in '{project_name}': psf {psf} out of bounds")
            self._stats['skip_invalid_psf'] += 1
            return None

        floor_band, floor_mid = parse_floor_range(txn.get('floorRange'))
        tenure_raw = str(txn.get('tenure') or '')

        return SaleRecord(
            project=project_name,
            street=street,
            district=normalize_district(txn.get('district')),
            segment=segment,
            property_type=str(txn.get('propertyType') or '').strip() or UNKNOWN_PROPERTY_TYPE,
            tenure=classify_tenure(tenure_raw),
            tenure_raw=tenure_raw,
            area_sqft=area_sqft,
            price=price,
            psf=psf,
            floor_band=floor_band,
            floor_mid=floor_mid,
            sale_type=map_sale_type(txn.get('typeOfSale')),
            year=contract.year,
            month=contract.month,
            quarter=contract.quarter,
            month_key=contract.month_key,
            batch_id=batch_id,
        )

    def log_summary(self, label: str = '') -> None:
        """Log a one-line summary with skip breakdown."""
        skip_breakdown = [
            f"{reason[len('skip_'):]}={count}"
            for reason, count in self._stats.items()
            if reason.startswith('skip_') and count > 0
        ]
        skip_detail = f" ({', '.join(skip_breakdown)})" if skip_breakdown else ""
        prefix = f"{label}: " if label else ""
        logger.info(
            f"{prefix}Mapped {self._stats['projects_processed']} projects, "
            f"{self._stats['transactions_processed']} transactions, "
            f"{self._stats['transactions_skipped']} skipped{skip_detail}"
        )
