from lp_custody.core.constants.base import MAX_UINT128, MAX_UINT256

__all__ = ["MAX_UINT128", "MAX_UINT256"]
