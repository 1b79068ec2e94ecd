"""Collaborators bound to the deployed ERC20, NonfungiblePositionManager and
SwapRouter contracts.

Every state-changing call is first run through ``eth_call`` from the custody
wallet to read its return value, then signed and broadcast. A revert on either
step surfaces as an exception, which the custody layer wraps into its own error
types.
"""

from __future__ import annotations

from typing import Any

from eth_utils import to_checksum_address
from loguru import logger

from lp_custody.core.constants.contracts import UNISWAP_V3_NPM, UNISWAP_V3_SWAP_ROUTER
from lp_custody.core.constants.uniswap_v3_abi import (
    NONFUNGIBLE_POSITION_MANAGER_ABI,
    SWAP_ROUTER_ABI,
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
from lp_custody.core.custody.ledger import PositionLedger, SqlitePositionLedger
from lp_custody.core.custody.operations import CustodyOperations
from lp_custody.core.custody.policy import CustodySettings
from lp_custody.core.utils.tokens import (
    build_approve_transaction,
    build_transfer_from_transaction,
    build_transfer_transaction,
)
from lp_custody.core.utils.transaction import (
    SignCallback,
    encode_call,
    send_transaction,
    sign_callback_from_private_key,
)
from lp_custody.core.utils.uniswap_v3_math import read_position
from lp_custody.core.utils.web3 import web3_from_chain_id


class Erc20TokenMover:
    def __init__(
        self, *, chain_id: int, custody_address: str, sign_callback: SignCallback
    ) -> None:
        self.chain_id = int(chain_id)
        self._custody = to_checksum_address(custody_address)
        self.sign_callback = sign_callback

    @property
    def custody_address(self) -> str:
        return self._custody

    async def pull(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        tx = await build_transfer_from_transaction(
            from_address=self._custody,
            chain_id=self.chain_id,
            token_address=asset,
            owner_address=sender,
            to_address=recipient,
            amount=amount,
        )
        await send_transaction(tx, self.sign_callback)

    async def push(self, asset: str, recipient: str, amount: int) -> None:
        tx = await build_transfer_transaction(
            from_address=self._custody,
            chain_id=self.chain_id,
            token_address=asset,
            to_address=recipient,
            amount=amount,
        )
        await send_transaction(tx, self.sign_callback)

    async def set_allowance(self, asset: str, spender: str, amount: int) -> None:
        tx = await build_approve_transaction(
            from_address=self._custody,
            chain_id=self.chain_id,
            token_address=asset,
            spender_address=spender,
            amount=amount,
        )
        await send_transaction(tx, self.sign_callback)


class _ContractClient:
    abi: list[dict[str, Any]] = []

    def __init__(
        self,
        *,
        chain_id: int,
        address: str,
        sender: str,
        sign_callback: SignCallback,
    ) -> None:
        self.chain_id = int(chain_id)
        self._address = to_checksum_address(address)
        self.sender = to_checksum_address(sender)
        self.sign_callback = sign_callback

    @property
    def address(self) -> str:
        return self._address

    async def _preview_and_send(self, fn_name: str, args: list[Any]) -> Any:
        async with web3_from_chain_id(self.chain_id) as web3:
            contract = web3.eth.contract(address=self._address, abi=self.abi)
            result = await getattr(contract.functions, fn_name)(*args).call(
                {"from": self.sender}
            )
        tx = await encode_call(
            target=self._address,
            abi=self.abi,
            fn_name=fn_name,
            args=args,
            from_address=self.sender,
            chain_id=self.chain_id,
        )
        tx_hash = await send_transaction(tx, self.sign_callback)
        logger.debug(f"{fn_name} on {self._address}: {tx_hash}")
        return result


class NonfungiblePositionManagerClient(_ContractClient):
    abi = NONFUNGIBLE_POSITION_MANAGER_ABI

    async def create_and_initialize_pool(
        self, token0: str, token1: str, fee: int, sqrt_price_x96: int
    ) -> str:
        pool = await self._preview_and_send(
            "createAndInitializePoolIfNecessary",
            [
                to_checksum_address(token0),
                to_checksum_address(token1),
                int(fee),
                int(sqrt_price_x96),
            ],
        )
        return to_checksum_address(pool)

    async def mint(self, params: MintParams) -> MintResult:
        # the previewed token id is only exact when no other mint lands first
        token_id, liquidity, amount0, amount1 = await self._preview_and_send(
            "mint", [params.as_tuple()]
        )
        return MintResult(int(token_id), int(liquidity), int(amount0), int(amount1))

    async def collect(self, params: CollectParams) -> tuple[int, int]:
        amount0, amount1 = await self._preview_and_send("collect", [params.as_tuple()])
        return int(amount0), int(amount1)

    async def increase_liquidity(
        self, params: IncreaseLiquidityParams
    ) -> IncreaseResult:
        liquidity, amount0, amount1 = await self._preview_and_send(
            "increaseLiquidity", [params.as_tuple()]
        )
        return IncreaseResult(int(liquidity), int(amount0), int(amount1))

    async def decrease_liquidity(
        self, params: DecreaseLiquidityParams
    ) -> tuple[int, int]:
        amount0, amount1 = await self._preview_and_send(
            "decreaseLiquidity", [params.as_tuple()]
        )
        return int(amount0), int(amount1)

    async def position_info(self, position_id: int) -> PositionInfo:
        async with web3_from_chain_id(self.chain_id) as web3:
            npm = web3.eth.contract(address=self._address, abi=self.abi)
            pos = await read_position(npm, int(position_id))
        return PositionInfo(
            token0=pos["token0"],
            token1=pos["token1"],
            fee=pos["fee"],
            tick_lower=pos["tick_lower"],
            tick_upper=pos["tick_upper"],
            liquidity=pos["liquidity"],
            tokens_owed0=pos["tokens_owed0"],
            tokens_owed1=pos["tokens_owed1"],
        )


class SwapRouterClient(_ContractClient):
    abi = SWAP_ROUTER_ABI

    async def exact_input(self, params: ExactInputParams) -> int:
        return int(await self._preview_and_send("exactInput", [params.as_tuple()]))

    async def exact_output(self, params: ExactOutputParams) -> int:
        return int(await self._preview_and_send("exactOutput", [params.as_tuple()]))


def build_onchain_operations(
    settings: CustodySettings,
    *,
    private_key: str | None = None,
    sign_callback: SignCallback | None = None,
    ledger: PositionLedger | None = None,
) -> CustodyOperations:
    if settings.custody_wallet is None:
        raise ValueError("custody.custody_wallet.address is required")
    if sign_callback is None:
        if not private_key:
            raise ValueError("a private key or sign callback is required")
        sign_callback = sign_callback_from_private_key(private_key)

    chain_id = settings.chain_id
    npm_address = settings.position_manager_address or UNISWAP_V3_NPM.get(chain_id)
    router_address = settings.swap_router_address or UNISWAP_V3_SWAP_ROUTER.get(chain_id)
    if not npm_address or not router_address:
        raise ValueError(f"No Uniswap V3 deployment known for chain {chain_id}")

    custody = settings.custody_wallet.address
    if ledger is None:
        ledger = (
            SqlitePositionLedger(settings.ledger_path)
            if settings.ledger_path
            else PositionLedger()
        )
    return CustodyOperations(
        Erc20TokenMover(
            chain_id=chain_id, custody_address=custody, sign_callback=sign_callback
        ),
        NonfungiblePositionManagerClient(
            chain_id=chain_id,
            address=npm_address,
            sender=custody,
            sign_callback=sign_callback,
        ),
        SwapRouterClient(
            chain_id=chain_id,
            address=router_address,
            sender=custody,
            sign_callback=sign_callback,
        ),
        ledger,
        settings,
    )
