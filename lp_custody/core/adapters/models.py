from typing import Literal

from pydantic import BaseModel


class CustodyEventBase(BaseModel):
    # Filled in by CustodyOperations when the event is committed; events built
    # directly (tests, replay) may leave them unset.
    operation: str = "unknown"
    sequence: int | None = None

    model_config = {"frozen": True}


class Minted(CustodyEventBase):
    type: Literal["MINTED"] = "MINTED"
    position_id: int
    liquidity: int
    amount0: int
    amount1: int


class FeesCollected(CustodyEventBase):
    type: Literal["FEES_COLLECTED"] = "FEES_COLLECTED"
    position_id: int
    amount0: int
    amount1: int


class LiquidityDecreased(CustodyEventBase):
    type: Literal["LIQUIDITY_DECREASED"] = "LIQUIDITY_DECREASED"
    position_id: int
    liquidity: int
    amount0: int
    amount1: int
    forwarded: bool = False


class LiquidityIncreased(CustodyEventBase):
    type: Literal["LIQUIDITY_INCREASED"] = "LIQUIDITY_INCREASED"
    position_id: int
    liquidity: int
    amount0: int
    amount1: int


class SwapExecuted(CustodyEventBase):
    type: Literal["SWAP_EXECUTED"] = "SWAP_EXECUTED"
    exact: Literal["input", "output"]
    asset_in: str
    recipient: str
    # amount_out for exact-input swaps, amount_in for exact-output swaps
    amount: int


class PositionReconciled(CustodyEventBase):
    type: Literal["POSITION_RECONCILED"] = "POSITION_RECONCILED"
    position_id: int
    previous_liquidity: int
    liquidity: int


class FundsStranded(CustodyEventBase):
    """Custody holds funds for ``beneficiary`` that it failed to return."""

    type: Literal["FUNDS_STRANDED"] = "FUNDS_STRANDED"
    asset: str
    beneficiary: str
    amount: int


CustodyEvent = (
    Minted
    | FeesCollected
    | LiquidityDecreased
    | LiquidityIncreased
    | SwapExecuted
    | PositionReconciled
    | FundsStranded
)
