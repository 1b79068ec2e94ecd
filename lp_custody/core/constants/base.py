GAS_BUFFER_MULTIPLIER = 1.1
SUGGESTED_PRIORITY_FEE_MULTIPLIER = 1.5
SUGGESTED_GAS_PRICE_MULTIPLIER = 1.5
MAX_BASE_FEE_GROWTH_MULTIPLIER = 2

# Receipt timeout (seconds). Kept generous: a false negative here invites an
# unsafe manual retry of a custody operation.
DEFAULT_TRANSACTION_TIMEOUT = 180

ADAPTER_LP_CUSTODY = "LP_CUSTODY"

MAX_UINT128 = 2**128 - 1
MAX_UINT256 = 2**256 - 1

# Uniswap V3 fee tiers (hundredths of a bip) and their tick spacing.
FEE_TIER_TICK_SPACING: dict[int, int] = {100: 1, 500: 10, 3000: 60, 10000: 200}
FEE_DENOMINATOR = 1_000_000

MIN_TICK = -887272
MAX_TICK = 887272
