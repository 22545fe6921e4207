"""
Tests for the dashboard refresh engine.

Transport is faked: fetchers are plain callables and back-off sleeps are
recorded instead of slept.
"""

import pytest

from config import DashboardConfig
from services.analytics_reader import AnalyticsReader
from services.dashboard_refresh import (
    DashboardRefreshEngine,
    RefreshError,
    RefreshResult,
    run_refresh,
)


@pytest.fixture
def reader():
    return AnalyticsReader()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def config():
    return DashboardConfig(random_seed=1, batch_retries=3, retry_base_seconds=2.0)


@pytest.fixture
def batches(make_project, make_transaction):
    """batch number -> projects, one project per batch"""
    return {
        n: [make_project(name=f"PROJECT {n}", transactions=[make_transaction(contract_date="0524", psf=2000 + n)])]
        for n in (1, 2, 3, 4)
    }


def _engine(fetch_batch, reader, config, sleeps, fixed_now, fetch_rental=None):
    return DashboardRefreshEngine(
        fetch_batch=fetch_batch,
        fetch_rental=fetch_rental,
        config=config,
        reader=reader,
        sleep=sleeps.append,
        now=fixed_now,
    )


class TestRefreshResult:
    """Tests for RefreshResult dataclass."""

    def test_defaults(self):
        result = RefreshResult(success=False)
        assert result.batches_ok == []
        assert result.to_dict()['success'] is False


class TestRun:
    """Tests for the full refresh workflow."""

    def test_publishes_snapshot(self, batches, reader, config, sleeps, fixed_now):
        result = _engine(batches.get, reader, config, sleeps, fixed_now).run()

        assert result.success
        assert result.batches_ok == [1, 2, 3, 4]
        assert result.transactions_accepted == 4
        assert result.has_real_rental is False
        assert sleeps == []
        assert reader.get_dashboard()['totalTx'] == 4

    def test_retries_with_backoff(self, batches, reader, config, sleeps, fixed_now):
        calls = {}

        def flaky(n):
            calls[n] = calls.get(n, 0) + 1
            if n == 2 and calls[n] < 3:
                raise ConnectionError("timeout")
            return batches[n]

        result = _engine(flaky, reader, config, sleeps, fixed_now).run()

        assert result.batches_ok == [1, 2, 3, 4]
        assert calls[2] == 3
        assert sleeps == [2.0, 4.0]

    def test_backoff_is_capped(self):
        config = DashboardConfig(retry_base_seconds=2.0)
        assert [config.retry_delay(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 16.0]

    def test_failed_batch_skipped(self, batches, reader, config, sleeps, fixed_now):
        def fetch(n):
            if n == 3:
                raise ConnectionError("down")
            return batches[n]

        result = _engine(fetch, reader, config, sleeps, fixed_now).run()

        assert result.success
        assert result.batches_failed == [3]
        assert result.transactions_accepted == 3
        assert len(sleeps) == 2

    def test_invalid_batch_counts_as_failed_attempt(self, batches, reader, config, sleeps, fixed_now):
        def fetch(n):
            return "not a list" if n == 4 else batches[n]

        result = _engine(fetch, reader, config, sleeps, fixed_now).run()
        assert result.batches_failed == [4]

    def test_all_batches_failed(self, reader, config, sleeps, fixed_now, batches):
        _engine(batches.get, reader, config, sleeps, fixed_now).run()
        before = reader.get_snapshot()

        def broken(n):
            raise ConnectionError("down")

        with pytest.raises(RefreshError):
            _engine(broken, reader, config, [], fixed_now).run()

        assert reader.get_snapshot() is before

    def test_rental_fetch(self, batches, reader, config, sleeps, fixed_now, make_rental_project):
        periods = []

        def fetch_rental(period):
            periods.append(period)
            if period == '23q4':
                raise ConnectionError("rental down")
            return [make_rental_project(name="PROJECT 1")]

        result = _engine(batches.get, reader, config, sleeps, fixed_now, fetch_rental).run()

        assert periods == ['24q2', '24q1', '23q4', '23q3']
        assert result.rental_periods_failed == ['23q4']
        assert result.rental_records == 3
        assert result.has_real_rental
        assert reader.get_dashboard()['hasRealRental'] is True

    def test_yield_state_threaded_through_reader(self, batches, reader, config, sleeps, fixed_now,
                                                 make_rental_project):
        def fetch_rental(period):
            return [make_rental_project(name="PROJECT 1")]

        _engine(batches.get, reader, config, sleeps, fixed_now, fetch_rental).run()
        state = reader.get_yield_state()
        assert not state.is_empty

        _engine(batches.get, reader, config, sleeps, fixed_now).run()
        assert reader.get_yield_state() is state

    def test_store_caps(self, batches, reader, sleeps, fixed_now):
        config = DashboardConfig(random_seed=1, max_sales_records=2)
        result = _engine(batches.get, reader, config, sleeps, fixed_now).run()

        assert result.sales_trimmed == 2
        assert len(reader.get_snapshot().aggregator.sales) == 2
        assert reader.get_dashboard()['totalTx'] == 4


def test_run_refresh(batches, reader, config, fixed_now):
    result = run_refresh(batches.get, config=config, reader=reader, sleep=lambda s: None, now=fixed_now)
    assert result.success
