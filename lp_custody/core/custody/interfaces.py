"""Collaborator contracts consumed by the custody layer.

Only the capability surface is fixed here. ``lp_custody.adapters.uniswap_custody_adapter``
binds them to the deployed Uniswap V3 contracts and ``lp_custody.testing`` to an
in-memory simulation.
"""

from __future__ import annotations

from dataclasses import astuple, dataclass
from typing import NamedTuple, Protocol, runtime_checkable


@dataclass(frozen=True)
class MintParams:
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    amount0_desired: int
    amount1_desired: int
    amount0_min: int
    amount1_min: int
    recipient: str
    deadline: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class IncreaseLiquidityParams:
    token_id: int
    amount0_desired: int
    amount1_desired: int
    amount0_min: int
    amount1_min: int
    deadline: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class DecreaseLiquidityParams:
    token_id: int
    liquidity: int
    amount0_min: int
    amount1_min: int
    deadline: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class CollectParams:
    token_id: int
    recipient: str
    amount0_max: int
    amount1_max: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class ExactInputParams:
    path: bytes
    recipient: str
    deadline: int
    amount_in: int
    amount_out_minimum: int

    def as_tuple(self) -> tuple:
        return astuple(self)


@dataclass(frozen=True)
class ExactOutputParams:
    path: bytes
    recipient: str
    deadline: int
    amount_out: int
    amount_in_maximum: int

    def as_tuple(self) -> tuple:
        return astuple(self)


class MintResult(NamedTuple):
    position_id: int
    liquidity: int
    amount0: int
    amount1: int


class IncreaseResult(NamedTuple):
    liquidity: int
    amount0: int
    amount1: int


class PositionInfo(NamedTuple):
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int
    tokens_owed1: int


@runtime_checkable
class TokenMover(Protocol):
    """Moves fungible assets on behalf of the custody account.

    Every method raises when the underlying balance or allowance is insufficient.
    """

    @property
    def custody_address(self) -> str: ...

    async def pull(self, asset: str, sender: str, recipient: str, amount: int) -> None: ...

    async def push(self, asset: str, recipient: str, amount: int) -> None: ...

    async def set_allowance(self, asset: str, spender: str, amount: int) -> None: ...


@runtime_checkable
class PositionManager(Protocol):
    @property
    def address(self) -> str: ...

    async def create_and_initialize_pool(
        self, token0: str, token1: str, fee: int, sqrt_price_x96: int
    ) -> str: ...

    async def mint(self, params: MintParams) -> MintResult: ...

    async def collect(self, params: CollectParams) -> tuple[int, int]: ...

    async def increase_liquidity(
        self, params: IncreaseLiquidityParams
    ) -> IncreaseResult: ...

    async def decrease_liquidity(
        self, params: DecreaseLiquidityParams
    ) -> tuple[int, int]: ...

    async def position_info(self, position_id: int) -> PositionInfo: ...


@runtime_checkable
class SwapEngine(Protocol):
    @property
    def address(self) -> str: ...

    async def exact_input(self, params: ExactInputParams) -> int: ...

    async def exact_output(self, params: ExactOutputParams) -> int: ...
