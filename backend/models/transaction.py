"""
Transaction Model - One validated URA sale transaction

URA API Field Mapping:
  URA field (project level)   → SaleRecord field   Notes
  ─────────────────────────────────────────────────────────────
  project                     → project            'Unknown' when blank
  street                      → street
  marketSegment               → segment            Upper-cased, default RCR
  URA field (transaction)
  district                    → district           "D<n>", D0 when unparseable
  propertyType                → property_type      'Unknown' when blank
  tenure                      → tenure / tenure_raw Freehold / 999-yr / Leasehold
  area (sqm)                  → area_sqft          round(sqm × 10.7639)
  price                       → price              Required, > 0
  (computed)                  → psf                round(price / area_sqft)
  floorRange                  → floor_band/floor_mid "06 to 10" → "06-10", 8
  typeOfSale                  → sale_type          1=New Sale, 2=Sub Sale, else Resale
  contractDate (MMYY)         → year/month/quarter/month_key
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SaleRecord:
    project: str
    street: str
    district: str
    segment: str
    property_type: str
    tenure: str
    tenure_raw: str
    area_sqft: int
    price: float
    psf: int
    floor_band: Optional[str]
    floor_mid: float
    sale_type: str
    year: int
    month: int
    quarter: str
    month_key: str
    batch_id: Optional[int] = None

    @property
    def year_key(self) -> str:
        return str(self.year)

    def to_recent_dict(self, beds: str = '') -> Dict[str, Any]:
        """Row shape of the dashboard's recent-transactions table."""
        return {
            'date': self.month_key,
            'project': self.project,
            'district': self.district,
            'segment': self.segment,
            'type': self.property_type,
            'saleType': self.sale_type,
            'unit': self.floor_band or '-',
            'area': self.area_sqft,
            'floor': self.floor_mid,
            'psf': self.psf,
            'price': self.price,
            'beds': beds,
        }
