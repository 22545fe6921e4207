"""
Tests for the dashboard CLI.
"""

import json

import pytest
from click.testing import CliRunner

from cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def batch_file(tmp_path, make_project, make_transaction):
    path = tmp_path / "batch1.json"
    path.write_text(json.dumps([make_project(transactions=[
        make_transaction(contract_date="0319", psf=2000),
        make_transaction(contract_date="0524", psf=2400),
        make_transaction(contract_date="0524", price="0"),
    ])]))
    return path


@pytest.fixture
def rental_file(tmp_path, make_rental_project):
    path = tmp_path / "rental_24q1.json"
    path.write_text(json.dumps([make_rental_project()]))
    return path


def _build(runner, tmp_path, *args):
    out = tmp_path / "dashboard.json"
    result = runner.invoke(cli, ["build", *map(str, args), "--seed", "42", "--as-of", "2024-06-15", "-o", str(out)])
    return result, out


class TestBuild:
    """Tests for `build`."""

    def test_writes_report(self, runner, tmp_path, batch_file):
        result, out = _build(runner, tmp_path, batch_file)

        assert result.exit_code == 0, result.output
        report = json.loads(out.read_text())
        assert report['totalTx'] == 2
        assert report['latestYear'] == '2024'
        assert report['hasRealRental'] is False

    def test_with_rental(self, runner, tmp_path, batch_file, rental_file):
        result, out = _build(runner, tmp_path, batch_file, "--rental", f"24q1={rental_file}")

        assert result.exit_code == 0, result.output
        report = json.loads(out.read_text())
        assert report['hasRealRental'] is True
        assert report['rentalTotal'] == 1

    def test_cagr_years(self, runner, tmp_path, batch_file):
        result, out = _build(runner, tmp_path, batch_file, "--cagr-years", "5")

        assert result.exit_code == 0, result.output
        row = json.loads(out.read_text())['districtPerformance'][0]
        assert row['window'] == 5
        assert row['startYear'] == '2019'

    def test_same_seed_same_output(self, runner, tmp_path, batch_file):
        _, out = _build(runner, tmp_path, batch_file)
        first = out.read_text()
        _, out = _build(runner, tmp_path, batch_file)
        assert out.read_text() == first

    def test_bad_rental_option(self, runner, tmp_path, batch_file):
        result, _ = _build(runner, tmp_path, batch_file, "--rental", "24q1")
        assert result.exit_code == 2

    def test_invalid_batch(self, runner, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"project": "X"}))
        result, out = _build(runner, tmp_path, bad)

        assert result.exit_code == 1
        assert not out.exists()

    def test_cagr_years_must_be_positive(self, runner, tmp_path, batch_file):
        result, _ = _build(runner, tmp_path, batch_file, "--cagr-years", "0")
        assert result.exit_code == 2

    def test_missing_batch_file(self, runner, tmp_path):
        result, _ = _build(runner, tmp_path, tmp_path / "nope.json")
        assert result.exit_code == 2


class TestSummary:
    """Tests for `summary`."""

    def test_prints_headline(self, runner, tmp_path, batch_file):
        _, out = _build(runner, tmp_path, batch_file)
        result = runner.invoke(cli, ["summary", str(out)])

        assert result.exit_code == 0, result.output
        assert "DASHBOARD SUMMARY" in result.output
        assert "Transactions:  2" in result.output
        assert "ESTIMATED" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "1.0.0" in result.output
