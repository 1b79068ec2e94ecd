from lp_custody.core.adapters.BaseAdapter import BaseAdapter
from lp_custody.core.custody.ledger import PositionLedger, PositionRecord
from lp_custody.core.custody.operations import CustodyOperations
from lp_custody.core.custody.policy import CustodySettings

__all__ = [
    "BaseAdapter",
    "CustodyOperations",
    "CustodySettings",
    "PositionLedger",
    "PositionRecord",
]
