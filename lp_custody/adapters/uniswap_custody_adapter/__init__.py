from lp_custody.adapters.uniswap_custody_adapter.adapter import CustodyAdapter

__all__ = ["CustodyAdapter"]
