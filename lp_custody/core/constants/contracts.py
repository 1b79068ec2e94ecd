from lp_custody.core.constants.chains import (
    CHAIN_ID_ARBITRUM,
    CHAIN_ID_ETHEREUM,
    CHAIN_ID_OPTIMISM,
    CHAIN_ID_POLYGON,
)

# The original SwapRouter (with a deadline field) is only deployed on these
# chains; SwapRouter02 deployments use a different params struct.
UNISWAP_V3_NPM: dict[int, str] = {
    CHAIN_ID_ETHEREUM: "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
    CHAIN_ID_ARBITRUM: "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
    CHAIN_ID_POLYGON: "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
    CHAIN_ID_OPTIMISM: "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
}

UNISWAP_V3_SWAP_ROUTER: dict[int, str] = {
    CHAIN_ID_ETHEREUM: "0xE592427A0AEce92De3Edee1F18E0157C05861564",
    CHAIN_ID_ARBITRUM: "0xE592427A0AEce92De3Edee1F18E0157C05861564",
    CHAIN_ID_POLYGON: "0xE592427A0AEce92De3Edee1F18E0157C05861564",
    CHAIN_ID_OPTIMISM: "0xE592427A0AEce92De3Edee1F18E0157C05861564",
}
