"""Custody entry points in front of a Uniswap V3 style position manager.

Every entry point runs under one lock and inside one ``CustodyTransaction``:
authorization and local validation happen before any token moves. Ledger writes
and events become visible at the commit point that follows each executed
external call, or when the whole operation succeeds; funds that cannot be
returned after a failure are tracked in ``stranded``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from eth_utils import to_checksum_address
from loguru import logger

from lp_custody.core.adapters.models import (
    FeesCollected,
    LiquidityDecreased,
    LiquidityIncreased,
    Minted,
    PositionReconciled,
    SwapExecuted,
)
from lp_custody.core.constants.base import MAX_UINT128
from lp_custody.core.custody.errors import (
    AuthorizationError,
    InsufficientLiquidity,
    UpstreamExecutionFailure,
    call_upstream,
)
from lp_custody.core.custody.interfaces import (
    CollectParams,
    DecreaseLiquidityParams,
    ExactInputParams,
    ExactOutputParams,
    IncreaseLiquidityParams,
    MintParams,
    PositionManager,
    SwapEngine,
    TokenMover,
)
from lp_custody.core.custody.ledger import PositionLedger, PositionRecord
from lp_custody.core.custody.policy import CustodySettings, Operation
from lp_custody.core.custody.registry import PoolRegistry, canonical_pair
from lp_custody.core.custody.unit_of_work import (
    CustodyTransaction,
    EventLog,
    StrandedFunds,
)
from lp_custody.core.utils.uniswap_v3_math import decode_path


class CustodyOperations:
    def __init__(
        self,
        token_mover: TokenMover,
        position_manager: PositionManager,
        swap_engine: SwapEngine,
        ledger: PositionLedger | None = None,
        settings: CustodySettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
        events: EventLog | None = None,
    ) -> None:
        self.token_mover = token_mover
        self.ledger = ledger if ledger is not None else PositionLedger()
        self.settings = settings or CustodySettings()
        self.events = events if events is not None else EventLog()
        self.stranded = StrandedFunds()
        self.registry = PoolRegistry(position_manager)
        self._position_manager = position_manager
        self._swap_engine = swap_engine
        self._clock = clock
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="custody")

    @property
    def position_manager(self) -> PositionManager:
        return self._position_manager

    @property
    def swap_engine(self) -> SwapEngine:
        return self._swap_engine

    @property
    def custody_address(self) -> str:
        return self.token_mover.custody_address

    # --- pools -----------------------------------------------------------

    async def create_pool(
        self, asset_a: str, asset_b: str, fee: int, sqrt_price_x96: int
    ) -> str:
        async with self._lock:
            return await self.registry.create_pool(asset_a, asset_b, fee, sqrt_price_x96)

    # --- positions -------------------------------------------------------

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
    ) -> PositionRecord:
        if tick_lower >= tick_upper:
            raise ValueError(
                f"tick range must be increasing, got [{tick_lower}, {tick_upper}]"
            )
        if amount_a_desired < 0 or amount_b_desired < 0:
            raise ValueError("desired amounts must be non-negative")
        caller = to_checksum_address(caller)
        pair = canonical_pair(asset_a, asset_b)
        desired0, desired1 = pair.order(int(amount_a_desired), int(amount_b_desired))
        npm = self._position_manager.address

        async with self._lock, self._transaction("mint") as tx:
            await tx.pull(pair.asset_low, caller, desired0)
            await tx.pull(pair.asset_high, caller, desired1)
            await tx.approve(pair.asset_low, npm, desired0)
            await tx.approve(pair.asset_high, npm, desired1)

            result = await call_upstream(
                "mint",
                self._position_manager.mint(
                    MintParams(
                        token0=pair.asset_low,
                        token1=pair.asset_high,
                        fee=int(fee),
                        tick_lower=int(tick_lower),
                        tick_upper=int(tick_upper),
                        amount0_desired=desired0,
                        amount1_desired=desired1,
                        amount0_min=0,
                        amount1_min=0,
                        recipient=self.custody_address,
                        deadline=self._deadline(),
                    )
                ),
            )
            spent0, spent1 = int(result.amount0), int(result.amount1)
            self._consume(tx, pair.asset_low, caller, desired0, spent0)
            self._consume(tx, pair.asset_high, caller, desired1, spent1)
            record = PositionRecord(
                position_id=int(result.position_id),
                owner=caller,
                liquidity=int(result.liquidity),
                asset_low=pair.asset_low,
                asset_high=pair.asset_high,
            )
            tx.record(record)
            tx.emit(
                Minted(
                    position_id=record.position_id,
                    liquidity=record.liquidity,
                    amount0=spent0,
                    amount1=spent1,
                )
            )
            tx.commit_point()
            await self._refund_unspent(tx, pair.asset_low, caller, npm, desired0, spent0)
            await self._refund_unspent(tx, pair.asset_high, caller, npm, desired1, spent1)

        self.logger.info(
            f"Minted position {record.position_id} for {caller}: "
            f"liquidity={record.liquidity} amount0={result.amount0} "
            f"amount1={result.amount1}"
        )
        return record

    async def collect_all_fees(self, caller: str, position_id: int) -> tuple[int, int]:
        async with self._lock:
            record = self._authorize(Operation.COLLECT, caller, position_id)
            async with self._transaction("collect") as tx:
                amount0, amount1 = await self._collect(
                    tx, record, MAX_UINT128, MAX_UINT128
                )
                tx.emit(
                    FeesCollected(
                        position_id=record.position_id, amount0=amount0, amount1=amount1
                    )
                )
                tx.commit_point()
                await self._forward(tx, record)

        self.logger.info(
            f"Collected fees of position {record.position_id} for {record.owner}: "
            f"amount0={amount0} amount1={amount1}"
        )
        return amount0, amount1

    async def decrease_liquidity(
        self, caller: str, position_id: int, liquidity: int
    ) -> tuple[int, int]:
        liquidity = int(liquidity)
        if liquidity <= 0:
            raise ValueError("liquidity to remove must be positive")

        async with self._lock:
            record = self._authorize(Operation.DECREASE, caller, position_id)
            if liquidity > record.liquidity:
                raise InsufficientLiquidity(
                    record.position_id, liquidity, record.liquidity
                )

            forward = self.settings.forward_on_decrease
            async with self._transaction("decrease") as tx:
                amount0, amount1 = await call_upstream(
                    "decrease_liquidity",
                    self._position_manager.decrease_liquidity(
                        DecreaseLiquidityParams(
                            token_id=record.position_id,
                            liquidity=liquidity,
                            amount0_min=0,
                            amount1_min=0,
                            deadline=self._deadline(),
                        )
                    ),
                )
                amount0, amount1 = int(amount0), int(amount1)
                tx.set_liquidity(record.position_id, record.liquidity - liquidity)
                tx.commit_point()
                if forward:
                    await self._collect(tx, record, amount0, amount1)
                tx.emit(
                    LiquidityDecreased(
                        position_id=record.position_id,
                        liquidity=liquidity,
                        amount0=amount0,
                        amount1=amount1,
                        forwarded=forward,
                    )
                )
                tx.commit_point()
                if forward:
                    await self._forward(tx, record)

        self.logger.info(
            f"Decreased position {record.position_id} by {liquidity}: "
            f"amount0={amount0} amount1={amount1} forwarded={forward}"
        )
        return amount0, amount1

    async def increase_liquidity(
        self, caller: str, position_id: int, amount0: int, amount1: int
    ) -> tuple[int, int, int]:
        """Add funds to an existing position.

        ``amount0``/``amount1`` follow the position's canonical asset order.
        Unspent amounts are refunded to ``caller``; the recorded liquidity is
        only raised when ``record_increased_liquidity`` is enabled.
        """
        if amount0 < 0 or amount1 < 0:
            raise ValueError("desired amounts must be non-negative")
        caller = to_checksum_address(caller)
        desired0, desired1 = int(amount0), int(amount1)
        npm = self._position_manager.address

        async with self._lock:
            record = self._authorize(Operation.INCREASE, caller, position_id)
            async with self._transaction("increase") as tx:
                await tx.pull(record.asset_low, caller, desired0)
                await tx.pull(record.asset_high, caller, desired1)
                await tx.approve(record.asset_low, npm, desired0)
                await tx.approve(record.asset_high, npm, desired1)

                result = await call_upstream(
                    "increase_liquidity",
                    self._position_manager.increase_liquidity(
                        IncreaseLiquidityParams(
                            token_id=record.position_id,
                            amount0_desired=desired0,
                            amount1_desired=desired1,
                            amount0_min=0,
                            amount1_min=0,
                            deadline=self._deadline(),
                        )
                    ),
                )
                spent0, spent1 = int(result.amount0), int(result.amount1)
                self._consume(tx, record.asset_low, caller, desired0, spent0)
                self._consume(tx, record.asset_high, caller, desired1, spent1)
                if self.settings.record_increased_liquidity:
                    tx.set_liquidity(
                        record.position_id, record.liquidity + int(result.liquidity)
                    )
                tx.emit(
                    LiquidityIncreased(
                        position_id=record.position_id,
                        liquidity=int(result.liquidity),
                        amount0=spent0,
                        amount1=spent1,
                    )
                )
                tx.commit_point()
                await self._refund_unspent(
                    tx, record.asset_low, caller, npm, desired0, spent0
                )
                await self._refund_unspent(
                    tx, record.asset_high, caller, npm, desired1, spent1
                )

        if not self.settings.record_increased_liquidity:
            self.logger.warning(
                f"Position {record.position_id} gained {result.liquidity} liquidity "
                f"that is not recorded locally; run reconcile_position to re-sync"
            )
        self.logger.info(
            f"Increased position {record.position_id} from {caller}: "
            f"amount0={result.amount0} amount1={result.amount1}"
        )
        return int(result.liquidity), int(result.amount0), int(result.amount1)

    # --- swaps -----------------------------------------------------------

    async def swap_exact_input(
        self,
        caller: str,
        asset_in: str,
        amount_in: int,
        min_amount_out: int,
        path: bytes,
    ) -> int:
        caller = to_checksum_address(caller)
        asset_in = to_checksum_address(asset_in)
        hops = decode_path(path)
        if int(hops[0].token_a, 16) != int(asset_in, 16):
            raise ValueError(f"swap path does not start with {asset_in}")
        amount_in = int(amount_in)
        if amount_in <= 0:
            raise ValueError("amount_in must be positive")
        router = self._swap_engine.address

        async with self._lock, self._transaction("swap_exact_input") as tx:
            await tx.pull(asset_in, caller, amount_in)
            await tx.approve(asset_in, router, amount_in)
            amount_out = await call_upstream(
                "exact_input",
                self._swap_engine.exact_input(
                    ExactInputParams(
                        path=path,
                        recipient=caller,
                        deadline=self._deadline(),
                        amount_in=amount_in,
                        amount_out_minimum=int(min_amount_out),
                    )
                ),
            )
            tx.consume(asset_in, caller, amount_in)
            tx.emit(
                SwapExecuted(
                    exact="input",
                    asset_in=asset_in,
                    recipient=caller,
                    amount=int(amount_out),
                )
            )

        self.logger.info(f"Swapped {amount_in} {asset_in} for {amount_out} ({caller})")
        return int(amount_out)

    async def swap_exact_output(
        self,
        caller: str,
        asset_in: str,
        amount_out: int,
        max_amount_in: int,
        path: bytes,
    ) -> int:
        """Swap for exactly ``amount_out``; ``path`` is encoded output-first."""
        caller = to_checksum_address(caller)
        asset_in = to_checksum_address(asset_in)
        hops = decode_path(path)
        if int(hops[-1].token_b, 16) != int(asset_in, 16):
            raise ValueError(f"exact-output swap path does not end with {asset_in}")
        max_amount_in = int(max_amount_in)
        if max_amount_in <= 0:
            raise ValueError("max_amount_in must be positive")
        router = self._swap_engine.address

        async with self._lock, self._transaction("swap_exact_output") as tx:
            await tx.pull(asset_in, caller, max_amount_in)
            await tx.approve(asset_in, router, max_amount_in)
            amount_in = await call_upstream(
                "exact_output",
                self._swap_engine.exact_output(
                    ExactOutputParams(
                        path=path,
                        recipient=caller,
                        deadline=self._deadline(),
                        amount_out=int(amount_out),
                        amount_in_maximum=max_amount_in,
                    )
                ),
            )
            amount_in = int(amount_in)
            self._consume(tx, asset_in, caller, max_amount_in, amount_in)
            tx.emit(
                SwapExecuted(
                    exact="output",
                    asset_in=asset_in,
                    recipient=caller,
                    amount=amount_in,
                )
            )
            tx.commit_point()
            await self._refund_unspent(
                tx, asset_in, caller, router, max_amount_in, amount_in
            )

        self.logger.info(
            f"Swapped {amount_in} {asset_in} (max {max_amount_in}) for exactly "
            f"{amount_out} ({caller})"
        )
        return amount_in

    # --- reads and reconciliation ---------------------------------------

    def get_position_owner(self, position_id: int) -> str:
        return self.ledger.owner_of(position_id)

    def get_position(self, position_id: int) -> PositionRecord:
        return self.ledger.get(position_id)

    def positions_of(self, owner: str) -> list[PositionRecord]:
        return self.ledger.positions_of(owner)

    async def reconcile_position(self, position_id: int) -> PositionRecord:
        """Overwrite the recorded liquidity with the position manager's value."""
        async with self._lock:
            record = self.ledger.get(position_id)
            async with self._transaction("reconcile") as tx:
                info = await call_upstream(
                    "position_info",
                    self._position_manager.position_info(record.position_id),
                )
                if (int(info.token0, 16), int(info.token1, 16)) != (
                    int(record.asset_low, 16),
                    int(record.asset_high, 16),
                ):
                    raise UpstreamExecutionFailure(
                        f"position {record.position_id} holds "
                        f"{info.token0}/{info.token1}, recorded "
                        f"{record.asset_low}/{record.asset_high}"
                    )
                tx.set_liquidity(record.position_id, int(info.liquidity))
                tx.emit(
                    PositionReconciled(
                        position_id=record.position_id,
                        previous_liquidity=record.liquidity,
                        liquidity=int(info.liquidity),
                    )
                )

        if record.liquidity != int(info.liquidity):
            self.logger.info(
                f"Reconciled position {record.position_id}: "
                f"{record.liquidity} -> {info.liquidity}"
            )
        return self.ledger.get(record.position_id)

    async def release_stranded(self, asset: str, beneficiary: str) -> int:
        """Retry sending funds a failed operation left in custody for ``beneficiary``."""
        async with self._lock:
            amount = self.stranded.amount(asset, beneficiary)
            if amount == 0:
                return 0
            async with self._transaction("release") as tx:
                await tx.push(asset, beneficiary, amount)
            self.stranded.take(asset, beneficiary)

        self.logger.info(f"Released {amount} {asset} stranded for {beneficiary}")
        return amount

    # --- helpers ---------------------------------------------------------

    def _transaction(self, operation: str) -> CustodyTransaction:
        return CustodyTransaction(
            operation, self.token_mover, self.ledger, self.events, self.stranded
        )

    def _deadline(self) -> int:
        return int(self._clock())

    def _authorize(
        self, operation: Operation, caller: str, position_id: int
    ) -> PositionRecord:
        record = self.ledger.get(position_id)
        if not self.settings.authorization.requires_owner(operation):
            return record
        if int(to_checksum_address(caller), 16) != int(record.owner, 16):
            raise AuthorizationError(
                operation.value, record.position_id, caller, record.owner
            )
        return record

    async def _collect(
        self,
        tx: CustodyTransaction,
        record: PositionRecord,
        amount0_max: int,
        amount1_max: int,
    ) -> tuple[int, int]:
        amount0, amount1 = await call_upstream(
            "collect",
            self._position_manager.collect(
                CollectParams(
                    token_id=record.position_id,
                    recipient=self.custody_address,
                    amount0_max=int(amount0_max),
                    amount1_max=int(amount1_max),
                )
            ),
        )
        amount0, amount1 = int(amount0), int(amount1)
        tx.receive(record.asset_low, record.owner, amount0)
        tx.receive(record.asset_high, record.owner, amount1)
        return amount0, amount1

    async def _forward(self, tx: CustodyTransaction, record: PositionRecord) -> None:
        await tx.refund(record.asset_low, record.owner)
        await tx.refund(record.asset_high, record.owner)

    def _consume(
        self,
        tx: CustodyTransaction,
        asset: str,
        caller: str,
        desired: int,
        spent: int,
    ) -> None:
        if spent > desired:
            raise UpstreamExecutionFailure(
                f"{tx.operation} spent {spent} {asset}, more than the {desired} granted"
            )
        tx.consume(asset, caller, spent)

    async def _refund_unspent(
        self,
        tx: CustodyTransaction,
        asset: str,
        caller: str,
        spender: str,
        desired: int,
        spent: int,
    ) -> None:
        if spent < desired:
            await tx.revoke(asset, spender)
            await tx.refund(asset, caller)
