from __future__ import annotations

from enum import StrEnum
from typing import Any

from eth_utils import to_checksum_address
from pydantic import BaseModel, Field, field_validator

from lp_custody.core.config import get_custody_config
from lp_custody.core.constants.chains import CHAIN_ID_ETHEREUM


class AuthorizationRule(StrEnum):
    OWNER = "owner"
    ANY = "any"


class Operation(StrEnum):
    COLLECT = "collect"
    DECREASE = "decrease"
    INCREASE = "increase"


# Operations that can move value out of a position are never opened up.
_OWNER_ONLY = frozenset({Operation.COLLECT, Operation.DECREASE})


class AuthorizationPolicy(BaseModel):
    """Per-operation authorization table for position-scoped operations."""

    collect: AuthorizationRule = AuthorizationRule.OWNER
    decrease: AuthorizationRule = AuthorizationRule.OWNER
    increase: AuthorizationRule = AuthorizationRule.ANY

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("collect", "decrease")
    @classmethod
    def _owner_only(cls, value: AuthorizationRule) -> AuthorizationRule:
        if value != AuthorizationRule.OWNER:
            raise ValueError("collect and decrease are restricted to the owner")
        return value

    def rule_for(self, operation: Operation | str) -> AuthorizationRule:
        op = Operation(operation)
        return getattr(self, op.value)

    def requires_owner(self, operation: Operation | str) -> bool:
        op = Operation(operation)
        return op in _OWNER_ONLY or self.rule_for(op) == AuthorizationRule.OWNER


class CustodyWallet(BaseModel):
    address: str

    @field_validator("address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        return to_checksum_address(value)


class CustodySettings(BaseModel):
    # When set, amounts released by a decrease are collected and sent to the
    # owner in the same operation; otherwise they stay owed in the position.
    forward_on_decrease: bool = False
    # Increase does not touch the recorded liquidity unless this is set;
    # reconcile_position re-syncs it from the position manager instead.
    record_increased_liquidity: bool = False
    authorization: AuthorizationPolicy = Field(default_factory=AuthorizationPolicy)
    chain_id: int = CHAIN_ID_ETHEREUM
    ledger_path: str | None = None
    custody_wallet: CustodyWallet | None = None
    position_manager_address: str | None = None
    swap_router_address: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> CustodySettings:
        return cls.model_validate(get_custody_config(config))
