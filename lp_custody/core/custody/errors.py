from __future__ import annotations

from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class CustodyError(Exception):
    """Base class for every failure raised by the custody layer."""


class AuthorizationError(CustodyError):
    def __init__(self, operation: str, position_id: int, caller: str, owner: str):
        self.operation = operation
        self.position_id = position_id
        self.caller = caller
        self.owner = owner
        super().__init__(
            f"OnlyOwner: {caller} may not {operation} position {position_id} "
            f"(owner {owner})"
        )


OnlyOwner = AuthorizationError


class InsufficientLiquidity(CustodyError):
    def __init__(self, position_id: int, requested: int, recorded: int):
        self.position_id = position_id
        self.requested = requested
        self.recorded = recorded
        super().__init__(
            f"InsufficientLiquidity: position {position_id} records {recorded}, "
            f"requested {requested}"
        )


class PositionNotFound(CustodyError, KeyError):
    def __init__(self, position_id: int):
        self.position_id = position_id
        super().__init__(f"Unknown position {position_id}")

    def __str__(self) -> str:
        return str(self.args[0])


class UpstreamTransferFailure(CustodyError):
    """A token pull, push or allowance change was rejected by the token contract."""


class UpstreamExecutionFailure(CustodyError):
    """The position manager or swap engine rejected the request."""


async def call_upstream(call: str, awaitable: Awaitable[T]) -> T:
    """Await a position-manager or swap-engine call, wrapping foreign failures."""
    try:
        return await awaitable
    except CustodyError:
        raise
    except Exception as exc:
        raise UpstreamExecutionFailure(f"{call} failed: {exc}") from exc
