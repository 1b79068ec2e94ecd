from web3 import AsyncWeb3

from lp_custody.core.constants.erc20_abi import ERC20_ABI
from lp_custody.core.utils.web3 import web3_from_chain_id


async def _build_erc20_call(
    *,
    from_address: str,
    chain_id: int,
    token_address: str,
    fn_name: str,
    args: list,
) -> dict:
    async with web3_from_chain_id(chain_id) as web3:
        contract = web3.eth.contract(
            address=web3.to_checksum_address(token_address), abi=ERC20_ABI
        )
        data = contract.encode_abi(fn_name, args)
        return {
            "to": web3.to_checksum_address(token_address),
            "from": web3.to_checksum_address(from_address),
            "data": data,
            "chainId": chain_id,
        }


async def build_approve_transaction(
    from_address: str,
    chain_id: int,
    token_address: str,
    spender_address: str,
    amount: int,
) -> dict:
    return await _build_erc20_call(
        from_address=from_address,
        chain_id=chain_id,
        token_address=token_address,
        fn_name="approve",
        args=[AsyncWeb3.to_checksum_address(spender_address), int(amount)],
    )


async def build_transfer_transaction(
    from_address: str,
    chain_id: int,
    token_address: str,
    to_address: str,
    amount: int,
) -> dict:
    return await _build_erc20_call(
        from_address=from_address,
        chain_id=chain_id,
        token_address=token_address,
        fn_name="transfer",
        args=[AsyncWeb3.to_checksum_address(to_address), int(amount)],
    )


async def build_transfer_from_transaction(
    from_address: str,
    chain_id: int,
    token_address: str,
    owner_address: str,
    to_address: str,
    amount: int,
) -> dict:
    """transferFrom sent by ``from_address`` (the spender) pulling ``owner_address`` funds."""
    return await _build_erc20_call(
        from_address=from_address,
        chain_id=chain_id,
        token_address=token_address,
        fn_name="transferFrom",
        args=[
            AsyncWeb3.to_checksum_address(owner_address),
            AsyncWeb3.to_checksum_address(to_address),
            int(amount),
        ],
    )
