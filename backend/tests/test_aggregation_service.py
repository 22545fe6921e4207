"""
Tests for the single-pass bucket aggregator.
"""

import random

import pytest

from services.aggregation_service import BucketAggregator
from services.ura_canonical_mapper import BatchValidationError


@pytest.fixture
def aggregator():
    return BucketAggregator(rng=random.Random(42))


class TestIngestBatch:
    """Tests for batch ingestion."""

    def test_accepts_valid_transactions(self, aggregator, make_project, make_transaction):
        project = make_project(transactions=[
            make_transaction(contract_date="0123", psf=2000),
            make_transaction(contract_date="0124", psf=2200),
        ])
        accepted = aggregator.ingest_batch([project], 1)

        assert accepted == 2
        assert aggregator.total == 2
        assert aggregator.volume == 2000 * 1076 + 2200 * 1076
        assert aggregator.years == ['2023', '2024']

    def test_zero_price_excluded_everywhere(self, aggregator, make_project, make_transaction):
        project = make_project(transactions=[
            make_transaction(psf=2000),
            make_transaction(price="0"),
        ])
        aggregator.ingest_batch([project], 1)

        assert aggregator.total == 1
        assert aggregator.volume == 2000 * 1076
        assert len(aggregator.sales) == 1
        assert [s.psf for s in aggregator.samples] == [2000]
        assert aggregator.by_year['2024'].sample.values() == [2000]
        assert aggregator.by_district['D9'].count == 1
        assert aggregator.by_district['D9'].sum_psf == 2000
        assert aggregator.by_project['ORCHARD RESIDENCES'].count == 1
        assert aggregator.get_stats()['rejected'] == 1
        assert aggregator.get_stats()['skipReasons'] == {'skip_invalid_price': 1}

    def test_same_batch_twice_is_ignored(self, aggregator, make_project):
        aggregator.ingest_batch([make_project()], 1)
        again = aggregator.ingest_batch([make_project()], 1)

        assert again == 0
        assert aggregator.total == 1
        assert aggregator.get_stats()['batches'] == [1]

    def test_structurally_invalid_batch_aggregates_nothing(self, aggregator, make_project):
        with pytest.raises(BatchValidationError):
            aggregator.ingest_batch([make_project(), "garbage"], 2)

        assert aggregator.total == 0
        assert aggregator.sales == []
        # A rejected batch may be retried with the same id
        assert 2 not in aggregator.seen_batches

    @pytest.mark.parametrize("field,value", [
        ("contractDate", "0²24"),
        ("contractDate", "０３２４"),
        ("contractDate", 324),
        ("price", 10 ** 400),
        ("price", "NaN"),
        ("area", "1e308"),
        ("area", float("inf")),
    ])
    def test_irregular_row_does_not_cut_batch_short(self, aggregator, make_project, make_transaction,
                                                    field, value):
        bad = make_transaction()
        bad[field] = value
        project = make_project(transactions=[
            make_transaction(contract_date="0124", psf=2000),
            bad,
            make_transaction(contract_date="0224", psf=2200),
        ])

        accepted = aggregator.ingest_batch([project], 1)

        assert accepted == 2
        assert aggregator.total == 2
        assert aggregator.get_stats()['rejected'] == 1
        assert 1 in aggregator.seen_batches

    def test_mapping_failure_leaves_buckets_untouched(self, aggregator, make_project, make_transaction,
                                                      monkeypatch):
        project = make_project(transactions=[make_transaction(psf=2000), make_transaction(psf=2200)])
        map_transaction = aggregator.mapper.map_transaction
        calls = []

        def failing_second_row(txn, *args, **kwargs):
            calls.append(txn)
            if len(calls) == 2:
                raise RuntimeError("mapper failed")
            return map_transaction(txn, *args, **kwargs)

        monkeypatch.setattr(aggregator.mapper, 'map_transaction', failing_second_row)
        with pytest.raises(RuntimeError):
            aggregator.ingest_batch([project], 1)

        assert aggregator.total == 0
        assert aggregator.by_district == {}
        assert aggregator.project_batches == {}
        assert 1 not in aggregator.seen_batches

        monkeypatch.setattr(aggregator.mapper, 'map_transaction', map_transaction)
        assert aggregator.ingest_batch([project], 1) == 2
        assert 1 in aggregator.seen_batches

    def test_non_list_batch(self, aggregator):
        with pytest.raises(BatchValidationError):
            aggregator.ingest_batch(None, 1)

    def test_single_project_ingest(self, aggregator, make_project):
        assert aggregator.ingest(make_project(), batch_id=4) == 1
        assert aggregator.project_batches['ORCHARD RESIDENCES'] == 4

    def test_single_project_invalid(self, aggregator):
        with pytest.raises(BatchValidationError):
            aggregator.ingest("not a project", batch_id=4)


class TestBucketRouting:
    """Every transaction lands in every dimension."""

    @pytest.fixture
    def populated(self, aggregator, make_project, make_transaction):
        aggregator.ingest_batch([
            make_project(name="ALPHA", segment="CCR", transactions=[
                make_transaction(contract_date="0123", psf=2000, district="09", floor_range="01 to 05"),
                make_transaction(contract_date="0424", psf=2400, district="09", floor_range="06 to 10"),
            ]),
            make_project(name="BETA", segment="OCR", transactions=[
                make_transaction(contract_date="0724", psf=1200, district="19", tenure="99 yrs lease",
                                 property_type="Apartment", type_of_sale="1"),
            ]),
        ], 1)
        return aggregator

    def test_year_and_quarter(self, populated):
        assert populated.by_year['2024'].count == 2
        assert populated.by_year['2024'].mean == 1800
        assert populated.quarters == ['23Q1', '24Q2', '24Q3']
        assert populated.by_quarter['24Q2'].by_segment['CCR'].mean == 2400

    def test_segment_and_district(self, populated):
        assert populated.by_segment['CCR'].count == 2
        assert populated.by_segment['CCR'].by_year['2023'].mean == 2000
        d9 = populated.by_district['D9']
        assert d9.count == 2
        assert d9.segment_counts == {'CCR': 2}
        assert d9.by_year['2024'].mean == 2400
        assert d9.by_quarter['23Q1'].mean == 2000

    def test_type_and_tenure(self, populated):
        assert populated.by_type['Apartment'].segment_counts == {'OCR': 1}
        assert populated.by_tenure['Freehold'].count == 2
        assert populated.by_tenure['Leasehold'].mean == 1200

    def test_project(self, populated):
        alpha = populated.by_project['ALPHA']
        assert alpha.count == 2
        assert alpha.district == 'D9'
        assert alpha.segment == 'CCR'
        assert alpha.latest == '2024-04'
        assert alpha.year_psf() == {'2023': 2000, '2024': 2400}
        assert alpha.year_price() == {'2023': 2000 * 1076, '2024': 2400 * 1076}
        assert alpha.mean_area() == 1076
        assert set(alpha.by_floor) == {'01-05', '06-10'}

    def test_floor_and_samples(self, populated):
        assert populated.by_floor['06-10'].count == 2
        assert len(populated.samples) == 3
        assert {s.psf for s in populated.samples} == {2000, 2400, 1200}

    def test_recent_newest_first(self, populated):
        assert [r.month_key for r in populated.recent.result()] == ['2024-07', '2024-04', '2023-01']

    def test_latest_year(self, populated):
        assert populated.latest_year == '2024'


class TestTrimSales:
    """Tests for the sales store cap."""

    def test_trim_keeps_newest(self, aggregator, make_project, make_transaction):
        aggregator.ingest_batch([make_project(transactions=[
            make_transaction(contract_date="0122"),
            make_transaction(contract_date="0124"),
            make_transaction(contract_date="0123"),
        ])], 1)

        dropped = aggregator.trim_sales(2)

        assert dropped == 1
        assert [r.month_key for r in aggregator.sales] == ['2024-01', '2023-01']
        # Bucket totals are untouched
        assert aggregator.total == 3

    def test_trim_under_cap(self, aggregator, make_project):
        aggregator.ingest_batch([make_project()], 1)
        assert aggregator.trim_sales(10) == 0
