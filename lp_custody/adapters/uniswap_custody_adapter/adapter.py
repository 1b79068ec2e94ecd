from __future__ import annotations

from typing import Any

from lp_custody.adapters.uniswap_custody_adapter.onchain import (
    build_onchain_operations,
)
from lp_custody.core.adapters.BaseAdapter import BaseAdapter, require_operations
from lp_custody.core.adapters.decorators import status_tuple
from lp_custody.core.config import get_custody_config, get_custody_private_key
from lp_custody.core.constants.base import ADAPTER_LP_CUSTODY
from lp_custody.core.custody.ledger import SqlitePositionLedger
from lp_custody.core.custody.operations import CustodyOperations
from lp_custody.core.custody.policy import CustodySettings
from lp_custody.core.utils.uniswap_v3_math import encode_path


class CustodyAdapter(BaseAdapter):
    """Status-tuple surface over CustodyOperations.

    Every method returns ``(True, result)`` or ``(False, error)``; failures are
    logged, never raised.
    """

    adapter_type = ADAPTER_LP_CUSTODY

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        operations: CustodyOperations | None = None,
    ) -> None:
        super().__init__("lp_custody_adapter", config)
        self.operations = operations

    @classmethod
    def from_config(
        cls, config: dict[str, Any] | None = None, *, private_key: str | None = None
    ) -> CustodyAdapter:
        custody_config = get_custody_config(config)
        settings = CustodySettings.model_validate(custody_config)
        operations = build_onchain_operations(
            settings, private_key=private_key or get_custody_private_key()
        )
        return cls(custody_config, operations=operations)

    async def close(self) -> None:
        ledger = getattr(self.operations, "ledger", None)
        if isinstance(ledger, SqlitePositionLedger):
            ledger.close()

    @require_operations
    @status_tuple
    async def create_pool(
        self, asset_a: str, asset_b: str, fee: int, sqrt_price_x96: int
    ) -> str:
        return await self.operations.create_pool(asset_a, asset_b, fee, sqrt_price_x96)

    @require_operations
    @status_tuple
    async def mint_position(
        self,
        caller: str,
        asset_a: str,
        asset_b: str,
        fee: int,
        amount_a_desired: int,
        amount_b_desired: int,
        tick_lower: int,
        tick_upper: int,
    ) -> dict[str, Any]:
        record = await self.operations.mint_position(
            caller,
            asset_a,
            asset_b,
            fee,
            amount_a_desired,
            amount_b_desired,
            tick_lower,
            tick_upper,
        )
        return record.as_dict()

    @require_operations
    @status_tuple
    async def collect_all_fees(self, caller: str, position_id: int) -> dict[str, int]:
        amount0, amount1 = await self.operations.collect_all_fees(caller, position_id)
        return {"amount0": amount0, "amount1": amount1}

    @require_operations
    @status_tuple
    async def decrease_liquidity(
        self, caller: str, position_id: int, liquidity: int
    ) -> dict[str, int]:
        amount0, amount1 = await self.operations.decrease_liquidity(
            caller, position_id, liquidity
        )
        return {"amount0": amount0, "amount1": amount1}

    @require_operations
    @status_tuple
    async def increase_liquidity(
        self, caller: str, position_id: int, amount0: int, amount1: int
    ) -> dict[str, int]:
        liquidity, used0, used1 = await self.operations.increase_liquidity(
            caller, position_id, amount0, amount1
        )
        return {"liquidity": liquidity, "amount0": used0, "amount1": used1}

    @require_operations
    @status_tuple
    async def swap_exact_input(
        self,
        caller: str,
        tokens: list[str],
        fees: list[int],
        amount_in: int,
        min_amount_out: int,
    ) -> int:
        """``tokens`` run input to output."""
        return await self.operations.swap_exact_input(
            caller, tokens[0], amount_in, min_amount_out, encode_path(tokens, fees)
        )

    @require_operations
    @status_tuple
    async def swap_exact_output(
        self,
        caller: str,
        tokens: list[str],
        fees: list[int],
        amount_out: int,
        max_amount_in: int,
    ) -> int:
        """``tokens`` run input to output; the path is reversed for the router."""
        path = encode_path(list(reversed(tokens)), list(reversed(fees)))
        return await self.operations.swap_exact_output(
            caller, tokens[0], amount_out, max_amount_in, path
        )

    @require_operations
    @status_tuple
    async def get_position(self, position_id: int) -> dict[str, Any]:
        return self.operations.get_position(position_id).as_dict()

    @require_operations
    @status_tuple
    async def get_positions(self, owner: str) -> list[dict[str, Any]]:
        return [r.as_dict() for r in self.operations.positions_of(owner)]

    @require_operations
    @status_tuple
    async def reconcile_position(self, position_id: int) -> dict[str, Any]:
        record = await self.operations.reconcile_position(position_id)
        return record.as_dict()

    @require_operations
    @status_tuple
    async def get_events(self) -> list[dict[str, Any]]:
        return [event.model_dump() for event in self.operations.events]

    @require_operations
    @status_tuple
    async def get_stranded(self) -> list[dict[str, Any]]:
        return [
            {"asset": asset, "beneficiary": beneficiary, "amount": amount}
            for asset, beneficiary, amount in self.operations.stranded
        ]

    @require_operations
    @status_tuple
    async def release_stranded(self, asset: str, beneficiary: str) -> int:
        return await self.operations.release_stranded(asset, beneficiary)
