"""
Models package - plain dataclass records (no persistence layer)
"""
from models.transaction import SaleRecord
from models.rental import RentalRecord, RentalAggregate

__all__ = [
    'SaleRecord',
    'RentalRecord',
    'RentalAggregate',
]
