#!/usr/bin/env python3
"""
CLI for the URA Dashboard Aggregation Engine

Commands:
    build    - Aggregate saved URA batch files into a dashboard JSON payload
    summary  - Print the headline figures of a built dashboard payload

Usage:
    python cli.py build batch1.json batch2.json --rental 24q1=rental_24q1.json -o dashboard.json
    python cli.py summary dashboard.json

Examples:
    # Reproducible build anchored on a fixed date
    python cli.py build data/batch*.json --seed 42 --as-of 2024-06-30 -o out.json

    # Ten-year CAGR tables
    python cli.py build data/batch*.json --cagr-years 10 -o out.json
"""

import json
import logging
import random
import sys
from dataclasses import replace
from datetime import datetime

import click

from config import get_dashboard_config
from services.aggregation_service import BucketAggregator
from services.dashboard_service import build_dashboard
from services.json_serializer import safe_json_dumps
from services.rental_service import RentalAggregator, sale_segment_lookup
from services.ura_canonical_mapper import BatchValidationError


def _load_json(path):
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def _parse_rental_option(value):
    period, sep, path = value.partition('=')
    if not sep or not period or not path:
        raise click.BadParameter(f"expected PERIOD=path, got {value!r}", param_hint="--rental")
    return period.strip().lower(), path


@click.group()
@click.version_option(version="1.0.0", prog_name="dashboard")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """URA Dashboard CLI - Build and inspect pre-computed dashboard payloads."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        stream=sys.stderr,
    )


@cli.command("build")
@click.argument("batch_files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--rental", "rental_files", multiple=True, metavar="PERIOD=PATH",
              help="Rental projects for one reference period, e.g. 24q1=rental.json")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="Write the payload here instead of stdout")
@click.option("--seed", type=int, default=None, help="Random seed for samplers and scatter shuffling")
@click.option("--as-of", "as_of", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Anchor date for rolling windows (default: today)")
@click.option("--cagr-years", type=click.IntRange(min=1), default=None, help="CAGR window length in years")
def build(batch_files, rental_files, output, seed, as_of, cagr_years):
    """
    Aggregate URA transaction batch files into a dashboard payload.

    BATCH_FILES: JSON files, each a list of URA transaction projects.
    Batch ids are assigned in argument order starting at 1.
    """
    config = get_dashboard_config()
    if seed is not None:
        config = replace(config, random_seed=seed)
    if cagr_years is not None:
        config = replace(config, cagr_window_years=cagr_years)
    now = as_of or datetime.now()

    rentals = [_parse_rental_option(value) for value in rental_files]

    aggregator = BucketAggregator(rng=random.Random(config.random_seed))
    for batch_id, path in enumerate(batch_files, start=1):
        try:
            aggregator.ingest_batch(_load_json(path), batch_id)
        except (BatchValidationError, json.JSONDecodeError) as e:
            click.secho(f"Error in {path}: {e}", fg="red", err=True)
            sys.exit(1)

    rental = RentalAggregator(
        segment_lookup=sale_segment_lookup(aggregator.sales),
        rng=random.Random(config.random_seed),
    )
    for period, path in rentals:
        try:
            rental.add_period(_load_json(path), period)
        except (BatchValidationError, json.JSONDecodeError, OSError) as e:
            click.secho(f"Error in {path}: {e}", fg="red", err=True)
            sys.exit(1)

    aggregator.trim_sales(config.max_sales_records)
    rental.trim(config.max_rental_records)

    result = build_dashboard(aggregator, rental.build(), now=now, config=config)
    payload = safe_json_dumps(result.report, indent=2)

    if output:
        with open(output, 'w', encoding='utf-8') as f:
            f.write(payload)
        stats = aggregator.get_stats()
        click.secho(
            f"Wrote {output}: {stats['accepted']:,} transactions "
            f"({stats['rejected']:,} rejected), {len(rental.records):,} rentals",
            fg="green",
        )
    else:
        click.echo(payload)


@cli.command("summary")
@click.argument("report_file", type=click.Path(exists=True, dir_okay=False))
def summary(report_file):
    """
    Print the headline figures of a built dashboard payload.

    REPORT_FILE: JSON payload written by `build`
    """
    report = _load_json(report_file)

    click.echo("=" * 60)
    click.secho("DASHBOARD SUMMARY", fg="cyan", bold=True)
    click.echo("=" * 60)
    click.echo(f"  Transactions:  {report.get('totalTx', 0):,}")
    click.echo(f"  Volume:        ${report.get('totalVolume', 0):,.0f}")
    click.echo(f"  Avg PSF:       ${report.get('avgPsf', 0):,} ({report.get('psfPeriod')})")
    click.echo(f"  Median PSF:    ${report.get('medPsf', 0):,}")
    yoy = report.get('yoyPct')
    click.echo(f"  YoY:           {f'{yoy:+.1f}%' if yoy is not None else 'n/a'} (latest {report.get('latestYear')})")
    click.echo()

    rental_style = "green" if report.get('hasRealRental') else "yellow"
    click.echo(click.style("  Rental:        ", fg="white")
               + click.style("REAL" if report.get('hasRealRental') else "ESTIMATED", fg=rental_style))
    click.echo(f"  Avg rent:      ${report.get('avgRent', 0):,} ({report.get('rentalPeriod')})")
    click.echo(f"  Avg rent PSF:  ${report.get('avgRentPsf', 0)}")
    for seg, pct in (report.get('segmentYields') or {}).items():
        click.echo(f"  Yield {seg}:     {pct:.2f}%")
    click.echo()

    best = report.get('bestYield')
    if best:
        click.echo(f"  Best yield:    {best['d']} ({best['y']:.2f}%)")
    click.echo(f"  Avg CAGR:      {report.get('avgCagr', 0)}%")
    click.echo("=" * 60)


if __name__ == "__main__":
    cli()
