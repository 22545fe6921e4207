"""
Root pytest configuration for backend tests.

Provides:
- Shared URA payload factories (sale projects, transactions, rental projects)
- A fixed anchor date and a dashboard configuration that does not read
  the environment
"""

import sys
from datetime import datetime
from pathlib import Path

# Add backend directory to Python path so imports like
# `from services.sampling import ...` and `from constants import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest

from config import DashboardConfig


# Area "100" sqm → 1076 sqft, so prices below give round psf values:
#   2152000 → 2000 psf, 2367200 → 2200 psf, 2582400 → 2400 psf
AREA_SQM = "100"
AREA_SQFT = 1076


def psf_price(psf: int) -> str:
    """URA price string for a 100 sqm unit at the given psf."""
    return str(psf * AREA_SQFT)


@pytest.fixture
def fixed_now():
    """Anchor date for rolling windows and rental periods."""
    return datetime(2024, 6, 15)


@pytest.fixture
def dashboard_config():
    """Seeded configuration with default thresholds."""
    return DashboardConfig(random_seed=42)


@pytest.fixture
def make_transaction():
    """Factory for one raw URA sale transaction."""
    def _make(contract_date="0324", psf=2000, district="09", area=AREA_SQM,
              type_of_sale="3", tenure="Freehold", floor_range="06 to 10",
              property_type="Condominium", price=None):
        return {
            "contractDate": contract_date,
            "propertyType": property_type,
            "district": district,
            "tenure": tenure,
            "price": price if price is not None else psf_price(psf),
            "area": area,
            "floorRange": floor_range,
            "typeOfSale": type_of_sale,
            "noOfUnits": "1",
        }
    return _make


@pytest.fixture
def make_project(make_transaction):
    """Factory for one raw URA sale project."""
    def _make(name="ORCHARD RESIDENCES", segment="CCR", street="ORCHARD ROAD", transactions=None):
        return {
            "project": name,
            "street": street,
            "marketSegment": segment,
            "transaction": transactions if transactions is not None else [make_transaction()],
        }
    return _make


@pytest.fixture
def make_rental_project():
    """Factory for one raw URA rental project."""
    def _make(name="ORCHARD RESIDENCES", district="09", segment="CCR", rows=None):
        return {
            "project": name,
            "street": "ORCHARD ROAD",
            "district": district,
            "marketSegment": segment,
            "rental": rows if rows is not None else [{
                "leaseDate": "0324",
                "propertyType": "Non-landed Properties",
                "areaSqft": "1000-1100",
                "areaSqm": "90-100",
                "rent": "5250",
                "noOfBedRoom": "2",
                "noOfRentalContract": "1",
            }],
        }
    return _make
