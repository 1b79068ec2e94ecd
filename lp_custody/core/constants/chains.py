CHAIN_ID_ETHEREUM = 1
CHAIN_ID_ARBITRUM = 42161
CHAIN_ID_POLYGON = 137
CHAIN_ID_OPTIMISM = 10

POA_MIDDLEWARE_CHAIN_IDS: set[int] = {CHAIN_ID_POLYGON}

PRE_EIP_1559_CHAIN_IDS: set[int] = set()
