"""In-memory stand-ins for the ERC20 tokens, position manager and swap router.

Pools hold a single price and the sum of the in-range positions' liquidity, so
swaps that would cross the edge of the narrowest active position revert rather
than moving to the next tick. Swap fees are credited to the in-range positions
pro rata. Every mutating call is all-or-nothing: on a revert, balances,
allowances and pool state are restored.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from eth_utils import keccak, to_checksum_address

from lp_custody.core.constants.base import (
    FEE_DENOMINATOR,
    FEE_TIER_TICK_SPACING,
    MAX_TICK,
    MAX_UINT256,
    MIN_TICK,
)
from lp_custody.core.custody.interfaces import (
    CollectParams,
    DecreaseLiquidityParams,
    ExactInputParams,
    ExactOutputParams,
    IncreaseLiquidityParams,
    IncreaseResult,
    MintParams,
    MintResult,
    PositionInfo,
)
from lp_custody.core.utils.uniswap_v3_math import (
    amounts_for_liq_inrange,
    decode_path,
    liq_for_amounts,
    round_tick_to_spacing,
    sqrt_price_x96_from_tick,
    swap_step_exact_in,
    swap_step_exact_out,
)


class SimulatedRevert(RuntimeError):
    pass


class InsufficientBalance(SimulatedRevert):
    pass


class InsufficientAllowance(SimulatedRevert):
    pass


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _addr(value: str) -> str:
    return to_checksum_address(value)


class InMemoryTokenLedger:
    """Balances and allowances for any number of ERC20-like assets."""

    def __init__(self) -> None:
        self._balances: dict[str, dict[str, int]] = defaultdict(dict)
        self._allowances: dict[str, dict[tuple[str, str], int]] = defaultdict(dict)

    def balance_of(self, asset: str, holder: str) -> int:
        return self._balances[_addr(asset)].get(_addr(holder), 0)

    def allowance(self, asset: str, owner: str, spender: str) -> int:
        return self._allowances[_addr(asset)].get((_addr(owner), _addr(spender)), 0)

    def mint(self, asset: str, holder: str, amount: int) -> None:
        asset, holder = _addr(asset), _addr(holder)
        self._balances[asset][holder] = self.balance_of(asset, holder) + int(amount)

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> None:
        self._allowances[_addr(asset)][(_addr(owner), _addr(spender))] = int(amount)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        asset, sender, recipient = _addr(asset), _addr(sender), _addr(recipient)
        amount = int(amount)
        if amount < 0:
            raise SimulatedRevert("negative transfer")
        balance = self.balance_of(asset, sender)
        if balance < amount:
            raise InsufficientBalance(
                f"{sender} holds {balance} {asset}, cannot send {amount}"
            )
        self._balances[asset][sender] = balance - amount
        self._balances[asset][recipient] = self.balance_of(asset, recipient) + amount

    def transfer_from(
        self, asset: str, spender: str, owner: str, recipient: str, amount: int
    ) -> None:
        allowed = self.allowance(asset, owner, spender)
        if allowed < int(amount):
            raise InsufficientAllowance(
                f"{spender} may spend {allowed} {asset} of {owner}, not {amount}"
            )
        self.transfer(asset, owner, recipient, amount)
        if allowed != MAX_UINT256:
            self.approve(asset, owner, spender, allowed - int(amount))

    def snapshot(self) -> tuple[dict, dict]:
        return copy.deepcopy(self._balances), copy.deepcopy(self._allowances)

    def restore(self, state: tuple[dict, dict]) -> None:
        self._balances, self._allowances = copy.deepcopy(state)


class InMemoryTokenMover:
    """TokenMover acting for ``custody_address`` against an InMemoryTokenLedger."""

    def __init__(self, tokens: InMemoryTokenLedger, custody_address: str) -> None:
        self.tokens = tokens
        self._custody = _addr(custody_address)

    @property
    def custody_address(self) -> str:
        return self._custody

    async def pull(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        self.tokens.transfer_from(asset, self._custody, sender, recipient, amount)

    async def push(self, asset: str, recipient: str, amount: int) -> None:
        self.tokens.transfer(asset, self._custody, recipient, amount)

    async def set_allowance(self, asset: str, spender: str, amount: int) -> None:
        self.tokens.approve(asset, self._custody, spender, amount)


@dataclass
class SimulatedPool:
    address: str
    token0: str
    token1: str
    fee: int
    tick_spacing: int
    sqrt_price_x96: int


@dataclass
class SimulatedPosition:
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int = 0
    tokens_owed1: int = 0

    @property
    def pool_key(self) -> tuple[str, str, int]:
        return (self.token0, self.token1, self.fee)

    @property
    def sqrt_bounds(self) -> tuple[int, int]:
        return (
            sqrt_price_x96_from_tick(self.tick_lower),
            sqrt_price_x96_from_tick(self.tick_upper),
        )

    def active_at(self, sqrt_price_x96: int) -> bool:
        lower, upper = self.sqrt_bounds
        return self.liquidity > 0 and lower <= sqrt_price_x96 < upper


class SimulatedPositionManager:
    """Pools and positions, paid for by ``operator`` (the custody account)."""

    def __init__(
        self,
        tokens: InMemoryTokenLedger,
        *,
        operator: str,
        address: str = "0x00000000000000000000000000000000000000a1",
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.tokens = tokens
        self.operator = _addr(operator)
        self._address = _addr(address)
        self._clock = clock or FakeClock()
        self.pools: dict[tuple[str, str, int], SimulatedPool] = {}
        self.positions: dict[int, SimulatedPosition] = {}
        self._next_id = 1

    @property
    def address(self) -> str:
        return self._address

    @contextmanager
    def checkpoint(self) -> Iterator[None]:
        state = (
            self.tokens.snapshot(),
            copy.deepcopy(self.pools),
            copy.deepcopy(self.positions),
            self._next_id,
        )
        try:
            yield
        except Exception:
            balances, self.pools, self.positions, self._next_id = state
            self.tokens.restore(balances)
            raise

    def pool(self, token_a: str, token_b: str, fee: int) -> SimulatedPool:
        a, b = _addr(token_a), _addr(token_b)
        key = (a, b, fee) if int(a, 16) < int(b, 16) else (b, a, fee)
        pool = self.pools.get(key)
        if pool is None:
            raise SimulatedRevert(f"no pool for {a}/{b} fee {fee}")
        return pool

    def active_positions(self, pool: SimulatedPool) -> list[SimulatedPosition]:
        key = (pool.token0, pool.token1, pool.fee)
        return [
            p
            for p in self.positions.values()
            if p.pool_key == key and p.active_at(pool.sqrt_price_x96)
        ]

    def _check_deadline(self, deadline: int) -> None:
        if int(self._clock()) > int(deadline):
            raise SimulatedRevert("Transaction too old")

    async def create_and_initialize_pool(
        self, token0: str, token1: str, fee: int, sqrt_price_x96: int
    ) -> str:
        token0, token1 = _addr(token0), _addr(token1)
        if int(token0, 16) >= int(token1, 16):
            raise SimulatedRevert("token0 must sort below token1")
        spacing = FEE_TIER_TICK_SPACING.get(int(fee))
        if spacing is None:
            raise SimulatedRevert(f"fee {fee} not enabled")
        key = (token0, token1, int(fee))
        existing = self.pools.get(key)
        if existing is not None:
            return existing.address
        digest = keccak(
            bytes.fromhex(token0[2:]) + bytes.fromhex(token1[2:]) + int(fee).to_bytes(3, "big")
        )
        pool = SimulatedPool(
            address=_addr("0x" + digest[-20:].hex()),
            token0=token0,
            token1=token1,
            fee=int(fee),
            tick_spacing=spacing,
            sqrt_price_x96=int(sqrt_price_x96),
        )
        self.pools[key] = pool
        return pool.address

    def _validate_ticks(self, pool: SimulatedPool, tick_lower: int, tick_upper: int) -> None:
        if tick_lower >= tick_upper:
            raise SimulatedRevert("TLU")
        if tick_lower < MIN_TICK:
            raise SimulatedRevert("TLM")
        if tick_upper > MAX_TICK:
            raise SimulatedRevert("TUM")
        spacing = pool.tick_spacing
        if (
            round_tick_to_spacing(tick_lower, spacing) != tick_lower
            or round_tick_to_spacing(tick_upper, spacing) != tick_upper
        ):
            raise SimulatedRevert("ticks must be multiples of the tick spacing")

    def _deposit(
        self,
        pool: SimulatedPool,
        tick_lower: int,
        tick_upper: int,
        amount0_desired: int,
        amount1_desired: int,
        amount0_min: int,
        amount1_min: int,
    ) -> tuple[int, int, int]:
        sqrt_a = sqrt_price_x96_from_tick(tick_lower)
        sqrt_b = sqrt_price_x96_from_tick(tick_upper)
        liquidity = liq_for_amounts(
            pool.sqrt_price_x96, sqrt_a, sqrt_b, amount0_desired, amount1_desired
        )
        if liquidity <= 0:
            raise SimulatedRevert("zero liquidity")
        amount0, amount1 = amounts_for_liq_inrange(
            pool.sqrt_price_x96, sqrt_a, sqrt_b, liquidity
        )
        amount0 = min(amount0, amount0_desired)
        amount1 = min(amount1, amount1_desired)
        if amount0 < amount0_min or amount1 < amount1_min:
            raise SimulatedRevert("Price slippage check")
        self.tokens.transfer_from(
            pool.token0, self._address, self.operator, pool.address, amount0
        )
        self.tokens.transfer_from(
            pool.token1, self._address, self.operator, pool.address, amount1
        )
        return liquidity, amount0, amount1

    async def mint(self, params: MintParams) -> MintResult:
        with self.checkpoint():
            self._check_deadline(params.deadline)
            pool = self.pool(params.token0, params.token1, params.fee)
            if int(_addr(params.token0), 16) != int(pool.token0, 16):
                raise SimulatedRevert("token0 must sort below token1")
            self._validate_ticks(pool, params.tick_lower, params.tick_upper)
            liquidity, amount0, amount1 = self._deposit(
                pool,
                params.tick_lower,
                params.tick_upper,
                params.amount0_desired,
                params.amount1_desired,
                params.amount0_min,
                params.amount1_min,
            )
            position_id = self._next_id
            self._next_id += 1
            self.positions[position_id] = SimulatedPosition(
                token0=pool.token0,
                token1=pool.token1,
                fee=pool.fee,
                tick_lower=params.tick_lower,
                tick_upper=params.tick_upper,
                liquidity=liquidity,
            )
            return MintResult(position_id, liquidity, amount0, amount1)

    def _position(self, token_id: int) -> SimulatedPosition:
        position = self.positions.get(int(token_id))
        if position is None:
            raise SimulatedRevert("Invalid token ID")
        return position

    async def increase_liquidity(self, params: IncreaseLiquidityParams) -> IncreaseResult:
        with self.checkpoint():
            self._check_deadline(params.deadline)
            position = self._position(params.token_id)
            pool = self.pools[position.pool_key]
            liquidity, amount0, amount1 = self._deposit(
                pool,
                position.tick_lower,
                position.tick_upper,
                params.amount0_desired,
                params.amount1_desired,
                params.amount0_min,
                params.amount1_min,
            )
            position.liquidity += liquidity
            return IncreaseResult(liquidity, amount0, amount1)

    async def decrease_liquidity(
        self, params: DecreaseLiquidityParams
    ) -> tuple[int, int]:
        with self.checkpoint():
            self._check_deadline(params.deadline)
            position = self._position(params.token_id)
            if params.liquidity > position.liquidity:
                raise SimulatedRevert("liquidity exceeds position")
            pool = self.pools[position.pool_key]
            sqrt_a, sqrt_b = position.sqrt_bounds
            amount0, amount1 = amounts_for_liq_inrange(
                pool.sqrt_price_x96, sqrt_a, sqrt_b, params.liquidity
            )
            if amount0 < params.amount0_min or amount1 < params.amount1_min:
                raise SimulatedRevert("Price slippage check")
            position.liquidity -= params.liquidity
            position.tokens_owed0 += amount0
            position.tokens_owed1 += amount1
            return amount0, amount1

    async def collect(self, params: CollectParams) -> tuple[int, int]:
        with self.checkpoint():
            position = self._position(params.token_id)
            pool = self.pools[position.pool_key]
            amount0 = min(position.tokens_owed0, params.amount0_max)
            amount1 = min(position.tokens_owed1, params.amount1_max)
            self.tokens.transfer(pool.token0, pool.address, params.recipient, amount0)
            self.tokens.transfer(pool.token1, pool.address, params.recipient, amount1)
            position.tokens_owed0 -= amount0
            position.tokens_owed1 -= amount1
            return amount0, amount1

    async def position_info(self, position_id: int) -> PositionInfo:
        position = self._position(position_id)
        return PositionInfo(
            token0=position.token0,
            token1=position.token1,
            fee=position.fee,
            tick_lower=position.tick_lower,
            tick_upper=position.tick_upper,
            liquidity=position.liquidity,
            tokens_owed0=position.tokens_owed0,
            tokens_owed1=position.tokens_owed1,
        )


class SimulatedSwapEngine:
    """Exact-input and exact-output routing over SimulatedPositionManager pools."""

    def __init__(
        self,
        position_manager: SimulatedPositionManager,
        *,
        address: str = "0x00000000000000000000000000000000000000a2",
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.position_manager = position_manager
        self.tokens = position_manager.tokens
        self._address = _addr(address)
        self._clock = clock or position_manager._clock

    @property
    def address(self) -> str:
        return self._address

    def _route(self, path: bytes) -> list[tuple[str, str, SimulatedPool]]:
        hops = []
        seen: set[str] = set()
        for token_a, fee, token_b in decode_path(path):
            pool = self.position_manager.pool(token_a, token_b, fee)
            if pool.address in seen:
                raise SimulatedRevert("path visits a pool twice")
            seen.add(pool.address)
            hops.append((token_a, token_b, pool))
        return hops

    def _liquidity_window(
        self, pool: SimulatedPool
    ) -> tuple[list[SimulatedPosition], int, int, int]:
        active = self.position_manager.active_positions(pool)
        if not active:
            raise SimulatedRevert(f"pool {pool.address} has no liquidity in range")
        liquidity = sum(p.liquidity for p in active)
        lower = max(p.sqrt_bounds[0] for p in active)
        upper = min(p.sqrt_bounds[1] for p in active)
        return active, liquidity, lower, upper

    @staticmethod
    def _check_window(new_sqrt_p: int, lower: int, upper: int) -> None:
        if new_sqrt_p < lower or new_sqrt_p >= upper:
            raise SimulatedRevert("swap exceeds the liquidity of the active range")

    @staticmethod
    def _credit_fees(
        active: list[SimulatedPosition], liquidity: int, fee_amount: int, zero_for_one: bool
    ) -> None:
        for position in active:
            share = fee_amount * position.liquidity // liquidity
            if zero_for_one:
                position.tokens_owed0 += share
            else:
                position.tokens_owed1 += share

    def _swap_in(self, pool: SimulatedPool, token_in: str, amount_in: int) -> int:
        zero_for_one = int(_addr(token_in), 16) == int(pool.token0, 16)
        fee_amount = -(-amount_in * pool.fee // FEE_DENOMINATOR)
        net = amount_in - fee_amount
        if net <= 0:
            raise SimulatedRevert("amount too small to cover the fee")
        active, liquidity, lower, upper = self._liquidity_window(pool)
        new_sqrt_p, amount_out = swap_step_exact_in(
            pool.sqrt_price_x96, liquidity, net, zero_for_one=zero_for_one
        )
        self._check_window(new_sqrt_p, lower, upper)
        self._credit_fees(active, liquidity, fee_amount, zero_for_one)
        pool.sqrt_price_x96 = new_sqrt_p
        return amount_out

    def _swap_out(self, pool: SimulatedPool, token_in: str, amount_out: int) -> int:
        zero_for_one = int(_addr(token_in), 16) == int(pool.token0, 16)
        active, liquidity, lower, upper = self._liquidity_window(pool)
        try:
            new_sqrt_p, net = swap_step_exact_out(
                pool.sqrt_price_x96, liquidity, amount_out, zero_for_one=zero_for_one
            )
        except ValueError as exc:
            raise SimulatedRevert(str(exc)) from exc
        self._check_window(new_sqrt_p, lower, upper)
        gross = -(-net * FEE_DENOMINATOR // (FEE_DENOMINATOR - pool.fee))
        self._credit_fees(active, liquidity, gross - net, zero_for_one)
        pool.sqrt_price_x96 = new_sqrt_p
        return gross

    async def exact_input(self, params: ExactInputParams) -> int:
        pm = self.position_manager
        with pm.checkpoint():
            pm._check_deadline(params.deadline)
            hops = self._route(params.path)
            first_in, _, first_pool = hops[0]
            self.tokens.transfer_from(
                first_in, self._address, pm.operator, first_pool.address, params.amount_in
            )
            amount = int(params.amount_in)
            for i, (token_in, token_out, pool) in enumerate(hops):
                amount = self._swap_in(pool, token_in, amount)
                to = hops[i + 1][2].address if i + 1 < len(hops) else params.recipient
                self.tokens.transfer(token_out, pool.address, to, amount)
            if amount < params.amount_out_minimum:
                raise SimulatedRevert("Too little received")
            return amount

    async def exact_output(self, params: ExactOutputParams) -> int:
        pm = self.position_manager
        with pm.checkpoint():
            pm._check_deadline(params.deadline)
            # output-first: each hop is (token_out, fee, token_in)
            hops = self._route(params.path)
            amounts = []
            amount = int(params.amount_out)
            for token_out, token_in, pool in hops:
                amounts.append(amount)
                amount = self._swap_out(pool, token_in, amount)
            amount_in = amount
            if amount_in > params.amount_in_maximum:
                raise SimulatedRevert("Too much requested")

            _, last_in, last_pool = hops[-1]
            self.tokens.transfer_from(
                last_in, self._address, pm.operator, last_pool.address, amount_in
            )
            for i in range(len(hops) - 1, -1, -1):
                token_out, _, pool = hops[i]
                to = hops[i - 1][2].address if i > 0 else params.recipient
                self.tokens.transfer(token_out, pool.address, to, amounts[i])
            return amount_in
