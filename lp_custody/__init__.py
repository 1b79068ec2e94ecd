__version__ = "0.1.0"

from lp_custody.core import (
    BaseAdapter,
    CustodyOperations,
    CustodySettings,
    PositionLedger,
    PositionRecord,
)

__all__ = [
    "__version__",
    "BaseAdapter",
    "CustodyOperations",
    "CustodySettings",
    "PositionLedger",
    "PositionRecord",
]
