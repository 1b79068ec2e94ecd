import math
from collections.abc import Awaitable, Callable
from typing import Any

from eth_account import Account
from loguru import logger
from web3 import AsyncWeb3

from lp_custody.core.constants.base import (
    DEFAULT_TRANSACTION_TIMEOUT,
    GAS_BUFFER_MULTIPLIER,
    MAX_BASE_FEE_GROWTH_MULTIPLIER,
    SUGGESTED_GAS_PRICE_MULTIPLIER,
    SUGGESTED_PRIORITY_FEE_MULTIPLIER,
)
from lp_custody.core.constants.chains import PRE_EIP_1559_CHAIN_IDS
from lp_custody.core.utils.web3 import get_transaction_chain_id, web3_from_chain_id

SignCallback = Callable[[dict], Awaitable[bytes]]


class TransactionRevertedError(RuntimeError):
    def __init__(
        self,
        txn_hash: str,
        receipt: dict[str, Any] | None = None,
        message: str | None = None,
    ):
        self.txn_hash = txn_hash
        self.receipt = receipt or {}
        super().__init__(message or f"Transaction reverted: {txn_hash}")


def _get_transaction_from_address(transaction: dict) -> str:
    if "from" not in transaction:
        raise ValueError("Transaction does not contain from address")
    return AsyncWeb3.to_checksum_address(transaction["from"])


async def _fill_nonce(web3: AsyncWeb3, transaction: dict) -> None:
    transaction["nonce"] = await web3.eth.get_transaction_count(
        _get_transaction_from_address(transaction), block_identifier="pending"
    )


async def _fill_gas_price(web3: AsyncWeb3, transaction: dict, chain_id: int) -> None:
    if chain_id in PRE_EIP_1559_CHAIN_IDS:
        gas_price = await web3.eth.gas_price
        transaction["gasPrice"] = int(gas_price * SUGGESTED_GAS_PRICE_MULTIPLIER)
        return

    latest_block = await web3.eth.get_block("latest")
    fee_history = await web3.eth.fee_history(10, "latest", [80])
    rewards = [r[0] for r in fee_history.reward] or [0]
    priority_fee = sum(rewards) // len(rewards)
    transaction["maxFeePerGas"] = int(
        latest_block.baseFeePerGas * MAX_BASE_FEE_GROWTH_MULTIPLIER
        + priority_fee * SUGGESTED_PRIORITY_FEE_MULTIPLIER
    )
    transaction["maxPriorityFeePerGas"] = int(
        priority_fee * SUGGESTED_PRIORITY_FEE_MULTIPLIER
    )


async def _fill_gas_limit(web3: AsyncWeb3, transaction: dict) -> None:
    # a caller-provided limit would be taken as a hard cap by some RPCs
    transaction.pop("gas", None)
    estimate = await web3.eth.estimate_gas(transaction, block_identifier="latest")
    transaction["gas"] = int(math.ceil(estimate * GAS_BUFFER_MULTIPLIER))


async def send_transaction(
    transaction: dict,
    sign_callback: SignCallback | None,
    wait_for_receipt: bool = True,
) -> str:
    if sign_callback is None:
        raise ValueError("sign_callback must be provided to send transaction")

    chain_id = get_transaction_chain_id(transaction)
    transaction = dict(transaction)
    logger.info(f"Broadcasting transaction to {transaction.get('to')} on {chain_id}")

    async with web3_from_chain_id(chain_id) as web3:
        await _fill_gas_limit(web3, transaction)
        await _fill_nonce(web3, transaction)
        await _fill_gas_price(web3, transaction, chain_id)
        signed = await sign_callback(transaction)
        raw_hash = await web3.eth.send_raw_transaction(signed)
        txn_hash = raw_hash.hex()
        if not txn_hash.startswith("0x"):
            txn_hash = f"0x{txn_hash}"
        logger.info(f"Transaction broadcasted: {txn_hash}")

        if wait_for_receipt:
            receipt = await web3.eth.wait_for_transaction_receipt(
                txn_hash, timeout=DEFAULT_TRANSACTION_TIMEOUT
            )
            if int(receipt.get("status", 1)) == 0:
                gas_used = int(receipt.get("gasUsed") or 0)
                raise TransactionRevertedError(
                    txn_hash,
                    dict(receipt),
                    message=(
                        f"Transaction reverted (status=0): {txn_hash} "
                        f"gasUsed={gas_used} gasLimit={transaction['gas']}"
                    ),
                )
    return txn_hash


def sign_callback_from_private_key(private_key: str) -> SignCallback:
    account = Account.from_key(private_key)

    async def sign_callback(tx: dict) -> bytes:
        signed = account.sign_transaction(tx)
        return signed.raw_transaction

    return sign_callback


async def encode_call(
    *,
    target: str,
    abi: list[dict[str, Any]],
    fn_name: str,
    args: list[Any],
    from_address: str,
    chain_id: int,
    value: int = 0,
) -> dict[str, Any]:
    async with web3_from_chain_id(chain_id) as web3:
        try:
            contract = web3.eth.contract(
                address=web3.to_checksum_address(target),
                abi=abi,
            )
            data = contract.encode_abi(fn_name, args)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"Failed to encode {fn_name}: {exc}") from exc

        return {
            "chainId": int(chain_id),
            "from": AsyncWeb3.to_checksum_address(from_address),
            "to": AsyncWeb3.to_checksum_address(target),
            "data": data,
            "value": int(value),
        }
