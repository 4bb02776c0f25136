"""
Database models

Importing this package registers every table on Base.metadata.
"""
from buildledger.db.base import Base
from buildledger.models.company import Company, Brand, User
from buildledger.models.location import Location
from buildledger.models.component import Component
from buildledger.models.sku import SKU
from buildledger.models.bom import BOMVersion, BOMLine
from buildledger.models.lot import Lot, LotBalance
from buildledger.models.balance import InventoryBalance, FinishedGoodsBalance
from buildledger.models.ledger import LedgerEntry, LedgerEntryType, LedgerLine, FinishedGoodsLine
from buildledger.models.quality import DefectThreshold, DefectAlert

__all__ = [
    "Base",
    "Company",
    "Brand",
    "User",
    "Location",
    "Component",
    "SKU",
    "BOMVersion",
    "BOMLine",
    "Lot",
    "LotBalance",
    "InventoryBalance",
    "FinishedGoodsBalance",
    "LedgerEntry",
    "LedgerEntryType",
    "LedgerLine",
    "FinishedGoodsLine",
    "DefectThreshold",
    "DefectAlert",
]
