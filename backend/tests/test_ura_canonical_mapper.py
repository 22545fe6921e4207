"""
Tests for URA Canonical Mapper

Tests the transformation from URA API project payloads to SaleRecords.
"""

import logging

import pytest

from services.ura_canonical_mapper import (
    URACanonicalMapper,
    BatchValidationError,
    ContractDate,
    validate_batch,
    parse_contract_date,
    parse_float_safe,
    parse_int_safe,
    round_finite,
    normalize_district,
    classify_tenure,
    parse_floor_range,
    map_sale_type,
)
from constants import SALE_TYPE_NEW, SALE_TYPE_SUB, SALE_TYPE_RESALE


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sample_ura_project():
    """Sample URA API project with transactions.

    Note: URA API returns area in square meters (sqm).
    71 sqm = 764 sqft
    """
    return {
        "project": "THE SAIL @ MARINA BAY",
        "street": "MARINA BOULEVARD",
        "marketSegment": "CCR",
        "x": "29584.9",
        "y": "29432.2",
        "transaction": [
            {
                "contractDate": "0125",
                "propertyType": "Condominium",
                "district": "01",
                "tenure": "99 yrs lease commencing from 2005",
                "price": "1580000",
                "area": "71",
                "floorRange": "21 to 25",
                "typeOfSale": "3",
                "noOfUnits": "1"
            },
            {
                "contractDate": "1224",
                "propertyType": "Condominium",
                "district": "01",
                "tenure": "99 yrs lease commencing from 2005",
                "price": "1650000",
                "area": "71",
                "floorRange": "16 to 20",
                "typeOfSale": "3",
                "noOfUnits": "1"
            }
        ]
    }


@pytest.fixture
def mapper():
    return URACanonicalMapper()


def _map(mapper, project, batch_id=1):
    payloads = validate_batch([project], batch_id)
    return list(mapper.map_project(payloads[0], batch_id))


# =============================================================================
# Date Parsing Tests
# =============================================================================

class TestParseContractDate:
    """Tests for parse_contract_date function."""

    def test_valid_date(self):
        """Parse valid MMYY format."""
        assert parse_contract_date("0125") == ContractDate(2025, 1)

    def test_december(self):
        assert parse_contract_date("1224") == ContractDate(2024, 12)

    def test_nineteen_hundreds(self):
        """Two-digit years above 50 belong to the 1900s."""
        assert parse_contract_date("0699") == ContractDate(1999, 6)
        assert parse_contract_date("0650") == ContractDate(2050, 6)

    def test_quarter_and_month_key(self):
        contract = parse_contract_date("0524")
        assert contract.quarter == '24Q2'
        assert contract.month_key == '2024-05'

    @pytest.mark.parametrize("value", [
        "1325", "0024", "12", "", None, "ab24", 324,
        "0\u00b224", "\u0660\u0663\u0662\u0664", "\uff10\uff13\uff12\uff14",
    ])
    def test_invalid(self, value):
        assert parse_contract_date(value) is None


# =============================================================================
# Field Helper Tests
# =============================================================================

class TestFieldHelpers:
    """Tests for numeric and categorical field parsing."""

    def test_parse_float_safe(self):
        assert parse_float_safe("1580000") == 1580000.0
        assert parse_float_safe("abc") is None
        assert parse_float_safe(None) is None
        assert parse_float_safe("nan") is None
        assert parse_float_safe("inf") is None
        assert parse_float_safe(10 ** 400) is None

    def test_parse_int_safe(self):
        assert parse_int_safe("1.0") == 1
        assert parse_int_safe("x") == 0
        assert parse_int_safe(None, default=-1) == -1
        assert parse_int_safe(10 ** 400) == 0

    def test_round_finite(self):
        assert round_finite(764.2) == 764
        assert round_finite(float("inf")) == 0
        assert round_finite(float("nan")) == 0

    @pytest.mark.parametrize("raw,expected", [
        ("09", "D9"),
        ("10", "D10"),
        (" 1 ", "D1"),
        ("", "D0"),
        (None, "D0"),
        ("xx", "D0"),
    ])
    def test_normalize_district(self, raw, expected):
        assert normalize_district(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("Freehold", "Freehold"),
        ("FREEHOLD", "Freehold"),
        ("999 yrs lease commencing from 1885", "999-yr"),
        ("99 yrs lease commencing from 2005", "Leasehold"),
        ("", "Leasehold"),
        (None, "Leasehold"),
    ])
    def test_classify_tenure(self, raw, expected):
        assert classify_tenure(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("06 to 10", ("06-10", 8)),
        ("6-10", ("06-10", 8)),
        ("-", (None, 0)),
        ("", (None, 0)),
        (None, (None, 0)),
        ("B1", ("B1", 0)),
    ])
    def test_parse_floor_range(self, raw, expected):
        assert parse_floor_range(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("1", SALE_TYPE_NEW),
        ("2", SALE_TYPE_SUB),
        ("3", SALE_TYPE_RESALE),
        (None, SALE_TYPE_RESALE),
        (1, SALE_TYPE_NEW),
    ])
    def test_map_sale_type(self, raw, expected):
        assert map_sale_type(raw) == expected


# =============================================================================
# Batch Validation Tests
# =============================================================================

class TestValidateBatch:
    """Tests for structural batch validation."""

    def test_valid_batch(self, sample_ura_project):
        payloads = validate_batch([sample_ura_project], 1)
        assert len(payloads) == 1
        assert payloads[0].market_segment == "CCR"
        assert len(payloads[0].transaction) == 2

    def test_missing_transaction_list_is_empty(self):
        payloads = validate_batch([{"project": "X", "transaction": None}], 1)
        assert payloads[0].transaction == []

    def test_not_a_list(self):
        with pytest.raises(BatchValidationError) as exc:
            validate_batch({"project": "X"}, 3)
        assert exc.value.batch_id == 3
        assert "Batch 3" in str(exc.value)

    def test_project_not_a_mapping(self):
        with pytest.raises(BatchValidationError):
            validate_batch(["not a project"], 1)

    def test_transaction_not_a_list(self):
        with pytest.raises(BatchValidationError):
            validate_batch([{"project": "X", "transaction": "oops"}], 2)


# =============================================================================
# Mapper Tests
# =============================================================================

class TestURACanonicalMapper:
    """Tests for URACanonicalMapper."""

    def test_maps_all_transactions(self, mapper, sample_ura_project):
        records = _map(mapper, sample_ura_project)
        assert len(records) == 2

    def test_record_fields(self, mapper, sample_ura_project):
        record = _map(mapper, sample_ura_project, batch_id=2)[0]
        assert record.project == "THE SAIL @ MARINA BAY"
        assert record.street == "MARINA BOULEVARD"
        assert record.segment == "CCR"
        assert record.district == "D1"
        assert record.property_type == "Condominium"
        assert record.tenure == "Leasehold"
        assert record.area_sqft == 764
        assert record.price == 1580000
        assert record.psf == round(1580000 / 764)
        assert record.floor_band == "21-25"
        assert record.floor_mid == 23
        assert record.sale_type == SALE_TYPE_RESALE
        assert (record.year, record.month) == (2025, 1)
        assert record.quarter == "25Q1"
        assert record.month_key == "2025-01"
        assert record.batch_id == 2

    def test_segment_normalized(self, mapper, sample_ura_project):
        sample_ura_project["marketSegment"] = " ocr "
        assert _map(mapper, sample_ura_project)[0].segment == "OCR"

    def test_missing_segment_defaults_rcr(self, mapper, sample_ura_project):
        del sample_ura_project["marketSegment"]
        assert _map(mapper, sample_ura_project)[0].segment == "RCR"

    def test_blank_project_is_unknown(self, mapper, sample_ura_project):
        sample_ura_project["project"] = "  "
        assert _map(mapper, sample_ura_project)[0].project == "Unknown"

    @pytest.mark.parametrize("field,value,reason", [
        ("price", "0", "skip_invalid_price"),
        ("price", "-5", "skip_invalid_price"),
        ("price", None, "skip_invalid_price"),
        ("area", "0", "skip_invalid_area"),
        ("area", "abc", "skip_invalid_area"),
        ("contractDate", "1399", "skip_invalid_date"),
        ("price", "99999999999", "skip_invalid_psf"),
        ("price", 10 ** 400, "skip_invalid_price"),
        ("price", "NaN", "skip_invalid_price"),
        ("area", "1e308", "skip_invalid_area"),
        ("contractDate", "0\u00b225", "skip_invalid_date"),
        ("contractDate", 125, "skip_invalid_date"),
    ])
    def test_invalid_transaction_skipped(self, mapper, sample_ura_project, field, value, reason):
        sample_ura_project["transaction"][0][field] = value
        records = _map(mapper, sample_ura_project)

        assert len(records) == 1
        stats = mapper.get_stats()
        assert stats['transactions_skipped'] == 1
        assert stats[reason] == 1

    def test_non_mapping_transaction_skipped(self, mapper, sample_ura_project):
        sample_ura_project["transaction"].append("garbage")
        records = _map(mapper, sample_ura_project)
        assert len(records) == 2
        assert mapper.get_stats()['skip_malformed'] == 1

    def test_stats_and_summary(self, mapper, sample_ura_project, caplog):
        sample_ura_project["transaction"][0]["price"] = "0"
        _map(mapper, sample_ura_project)
        stats = mapper.get_stats()
        assert stats['projects_processed'] == 1
        assert stats['transactions_processed'] == 1

        with caplog.at_level(logging.INFO, logger="services.ura_canonical_mapper"):
            mapper.log_summary("Batch 1")
        assert "Batch 1: Mapped 1 projects, 1 transactions, 1 skipped (invalid_price=1)" in caplog.text

    def test_to_recent_dict(self, mapper, sample_ura_project):
        record = _map(mapper, sample_ura_project)[0]
        row = record.to_recent_dict(beds='2')
        assert row['date'] == '2025-01'
        assert row['unit'] == '21-25'
        assert row['floor'] == 23
        assert row['beds'] == '2'
        assert row['saleType'] == SALE_TYPE_RESALE
