from __future__ import annotations

from typing import NamedTuple

from loguru import logger

from lp_custody.core.constants.base import FEE_TIER_TICK_SPACING
from lp_custody.core.custody.errors import call_upstream
from lp_custody.core.custody.interfaces import PositionManager
from lp_custody.core.utils.uniswap_v3_math import sort_tokens


class CanonicalPair(NamedTuple):
    asset_low: str
    asset_high: str
    flipped: bool

    def order(self, amount_a: int, amount_b: int) -> tuple[int, int]:
        """Reorder amounts given for ``(asset_a, asset_b)`` into canonical order."""
        return (amount_b, amount_a) if self.flipped else (amount_a, amount_b)


def canonical_pair(asset_a: str, asset_b: str) -> CanonicalPair:
    low, high = sort_tokens(asset_a, asset_b)
    return CanonicalPair(low, high, flipped=int(low, 16) != int(asset_a, 16))


def tick_spacing_for_fee(fee: int) -> int:
    spacing = FEE_TIER_TICK_SPACING.get(int(fee))
    if spacing is None:
        raise ValueError(
            f"Unknown fee tier {fee}; expected one of {list(FEE_TIER_TICK_SPACING)}"
        )
    return spacing


class PoolRegistry:
    """Resolves asset pairs to pools; pool state itself lives in the position manager."""

    def __init__(self, position_manager: PositionManager) -> None:
        self._position_manager = position_manager

    async def create_pool(
        self, asset_a: str, asset_b: str, fee: int, sqrt_price_x96: int
    ) -> str:
        tick_spacing_for_fee(fee)
        if int(sqrt_price_x96) <= 0:
            raise ValueError("initial sqrt price must be positive")
        pair = canonical_pair(asset_a, asset_b)
        pool = await call_upstream(
            "create_and_initialize_pool",
            self._position_manager.create_and_initialize_pool(
                pair.asset_low, pair.asset_high, int(fee), int(sqrt_price_x96)
            ),
        )
        logger.info(
            f"Pool {pool} resolved for {pair.asset_low}/{pair.asset_high} fee={fee}"
        )
        return pool
