"""Transactional scope for a single custody operation.

A ``CustodyTransaction`` stages everything an operation wants to make
permanent (ledger writes, events) and keeps a log of what custody holds on
someone's behalf. On a clean exit the staged writes are applied and the events
published; on any exception the staged state is discarded, granted allowances
are revoked (newest first), funds still held are returned and the original
exception propagates.

Only custody's own movements can be undone. Once an external call has
executed, the operation marks what that call spent with ``consume`` and calls
``commit_point``: everything staged up to there mirrors the external state and
is applied even if a later step fails. Funds that cannot be returned during an
unwind are kept in ``StrandedFunds`` and published as ``FundsStranded``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import TypeVar

from loguru import logger

from lp_custody.core.adapters.models import CustodyEvent, FundsStranded
from lp_custody.core.custody.errors import CustodyError, UpstreamTransferFailure
from lp_custody.core.custody.interfaces import TokenMover
from lp_custody.core.custody.ledger import PositionLedger, PositionRecord

E = TypeVar("E", bound=CustodyEvent)

EventSubscriber = Callable[[CustodyEvent], None]


class EventLog:
    """Append-only record of committed custody events."""

    def __init__(self) -> None:
        self._events: list[CustodyEvent] = []
        self._subscribers: list[EventSubscriber] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[CustodyEvent]:
        return iter(list(self._events))

    def subscribe(self, callback: EventSubscriber) -> None:
        self._subscribers.append(callback)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self._events if isinstance(e, event_type)]

    def publish(self, event: CustodyEvent) -> CustodyEvent:
        event = event.model_copy(update={"sequence": len(self._events)})
        self._events.append(event)
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Event subscriber failed on {event.type}: {exc}")
        return event


class StrandedFunds:
    """Amounts sitting in custody for a beneficiary after a failed return."""

    def __init__(self) -> None:
        self._amounts: dict[tuple[str, str], int] = {}

    @staticmethod
    def _key(asset: str, beneficiary: str) -> tuple[str, str]:
        return asset.lower(), beneficiary.lower()

    def __len__(self) -> int:
        return len(self._amounts)

    def __iter__(self) -> Iterator[tuple[str, str, int]]:
        return iter([(a, b, n) for (a, b), n in self._amounts.items()])

    def add(self, asset: str, beneficiary: str, amount: int) -> None:
        key = self._key(asset, beneficiary)
        self._amounts[key] = self._amounts.get(key, 0) + int(amount)

    def amount(self, asset: str, beneficiary: str) -> int:
        return self._amounts.get(self._key(asset, beneficiary), 0)

    def take(self, asset: str, beneficiary: str) -> int:
        return self._amounts.pop(self._key(asset, beneficiary), 0)


@dataclass
class CustodyTransaction:
    operation: str
    token_mover: TokenMover
    ledger: PositionLedger
    events: EventLog
    stranded: StrandedFunds = field(default_factory=StrandedFunds)
    _inserts: list[PositionRecord] = field(default_factory=list)
    _liquidity: dict[int, int] = field(default_factory=dict)
    _pending_events: list[CustodyEvent] = field(default_factory=list)
    # (asset, beneficiary) -> amount custody holds for them, not yet spent or returned
    _held: dict[tuple[str, str], int] = field(default_factory=dict)
    _allowances: list[tuple[str, str]] = field(default_factory=list)

    @property
    def custody_address(self) -> str:
        return self.token_mover.custody_address

    def held(self, asset: str, beneficiary: str) -> int:
        return self._held.get((asset, beneficiary), 0)

    async def __aenter__(self) -> CustodyTransaction:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self._commit()
        else:
            await self._unwind(exc)
        return False

    async def pull(self, asset: str, caller: str, amount: int) -> None:
        if amount <= 0:
            return
        await self._move(
            f"pull {amount} {asset} from {caller}",
            self.token_mover.pull(asset, caller, self.custody_address, amount),
        )
        self.receive(asset, caller, amount)

    def receive(self, asset: str, beneficiary: str, amount: int) -> None:
        """Note ``amount`` of ``asset`` arriving in custody for ``beneficiary``."""
        if amount > 0:
            self._held[(asset, beneficiary)] = self.held(asset, beneficiary) + amount

    async def approve(self, asset: str, spender: str, amount: int) -> None:
        if amount <= 0:
            return
        await self._move(
            f"approve {amount} {asset} for {spender}",
            self.token_mover.set_allowance(asset, spender, amount),
        )
        self._allowances.append((asset, spender))

    async def revoke(self, asset: str, spender: str) -> None:
        await self._move(
            f"revoke {asset} allowance of {spender}",
            self.token_mover.set_allowance(asset, spender, 0),
        )
        if (asset, spender) in self._allowances:
            self._allowances.remove((asset, spender))

    def consume(self, asset: str, caller: str, amount: int) -> None:
        """Mark ``amount`` of the caller's held funds as spent by an external call."""
        held = self.held(asset, caller)
        if amount > held:
            raise CustodyError(
                f"{self.operation}: external call spent {amount} {asset}, "
                f"only {held} held for {caller}"
            )
        self._held[(asset, caller)] = held - amount

    async def refund(self, asset: str, beneficiary: str) -> int:
        """Send ``beneficiary`` whatever custody still holds for them in ``asset``."""
        amount = self.held(asset, beneficiary)
        if amount > 0:
            await self.push(asset, beneficiary, amount)
            self._held[(asset, beneficiary)] = 0
        return amount

    async def push(self, asset: str, recipient: str, amount: int) -> None:
        if amount <= 0:
            return
        await self._move(
            f"push {amount} {asset} to {recipient}",
            self.token_mover.push(asset, recipient, amount),
        )

    def record(self, record: PositionRecord) -> None:
        if record.position_id in self.ledger or any(
            r.position_id == record.position_id for r in self._inserts
        ):
            raise CustodyError(f"position {record.position_id} is already recorded")
        self._inserts.append(record)

    def set_liquidity(self, position_id: int, liquidity: int) -> None:
        if liquidity < 0:
            raise CustodyError(
                f"liquidity of position {position_id} would become negative"
            )
        self._liquidity[int(position_id)] = int(liquidity)

    def emit(self, event: CustodyEvent) -> None:
        self._pending_events.append(
            event.model_copy(update={"operation": self.operation})
        )

    def commit_point(self) -> None:
        """Apply what is staged so far; it mirrors external calls that executed."""
        self._apply()

    async def _move(self, description: str, step: Awaitable[None]) -> None:
        try:
            await step
        except CustodyError:
            raise
        except Exception as exc:
            raise UpstreamTransferFailure(f"{description} failed: {exc}") from exc

    def _apply(self) -> None:
        for record in self._inserts:
            self.ledger.insert(record)
        for position_id, liquidity in self._liquidity.items():
            self.ledger.set_liquidity(position_id, liquidity)
        for event in self._pending_events:
            self.events.publish(event)
        self._inserts.clear()
        self._liquidity.clear()
        self._pending_events.clear()

    def _commit(self) -> None:
        held = {k: v for k, v in self._held.items() if v > 0}
        if held:
            logger.error(f"{self.operation} committed with funds still held: {held}")
        self._apply()

    async def _unwind(self, exc: BaseException) -> None:
        self._inserts.clear()
        self._liquidity.clear()
        self._pending_events.clear()

        allowances = list(reversed(self._allowances))
        held = [(a, b, n) for (a, b), n in self._held.items() if n > 0]
        self._allowances.clear()
        self._held.clear()
        if allowances or held:
            logger.warning(
                f"Unwinding {self.operation} after {type(exc).__name__}: {exc}"
            )

        for asset, spender in allowances:
            try:
                await self.token_mover.set_allowance(asset, spender, 0)
            except Exception as comp_exc:  # noqa: BLE001
                logger.error(
                    f"Revoking {asset} allowance of {spender} after "
                    f"{self.operation} failed: {comp_exc}"
                )

        for asset, beneficiary, amount in held:
            try:
                await self.token_mover.push(asset, beneficiary, amount)
            except Exception as comp_exc:  # noqa: BLE001
                self.stranded.add(asset, beneficiary, amount)
                self.events.publish(
                    FundsStranded(
                        operation=self.operation,
                        asset=asset,
                        beneficiary=beneficiary,
                        amount=amount,
                    )
                )
                logger.error(
                    f"{amount} {asset} for {beneficiary} stranded in custody after "
                    f"{self.operation}: {comp_exc}"
                )
