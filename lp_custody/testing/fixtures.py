import pytest
from eth_utils import to_checksum_address

from lp_custody.core.constants.base import MAX_UINT256
from lp_custody.core.custody.operations import CustodyOperations
from lp_custody.core.custody.policy import CustodySettings
from lp_custody.core.utils.uniswap_v3_math import encode_price_sqrt
from lp_custody.testing.simulated_amm import (
    FakeClock,
    InMemoryTokenLedger,
    InMemoryTokenMover,
    SimulatedPositionManager,
    SimulatedSwapEngine,
)

CUSTODY = to_checksum_address("0x00000000000000000000000000000000000c0570")
ALICE = to_checksum_address("0x000000000000000000000000000000000000a11c")
BOB = to_checksum_address("0x0000000000000000000000000000000000000b0b")
# TOKEN_A sorts above TOKEN_B, so (TOKEN_A, TOKEN_B) arrives flipped
TOKEN_A = to_checksum_address("0x" + "bb" * 20)
TOKEN_B = to_checksum_address("0x" + "aa" * 20)
TOKEN_C = to_checksum_address("0x" + "cc" * 20)

FEE = 3000
PRICE_ONE = encode_price_sqrt(1, 1)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_ledger():
    return InMemoryTokenLedger()


@pytest.fixture
def token_mover(token_ledger):
    return InMemoryTokenMover(token_ledger, CUSTODY)


@pytest.fixture
def position_manager(token_ledger, clock):
    return SimulatedPositionManager(token_ledger, operator=CUSTODY, clock=clock)


@pytest.fixture
def swap_engine(position_manager, clock):
    return SimulatedSwapEngine(position_manager, clock=clock)


@pytest.fixture
def custody_settings():
    return CustodySettings()


@pytest.fixture
def custody(token_mover, position_manager, swap_engine, custody_settings, clock):
    return CustodyOperations(
        token_mover,
        position_manager,
        swap_engine,
        settings=custody_settings,
        clock=clock,
    )


@pytest.fixture
def fund(token_ledger):
    """Mint ``amount`` of each asset to ``holder`` and approve custody for all of it."""

    def _fund(holder, amount, *assets):
        for asset in assets or (TOKEN_A, TOKEN_B):
            token_ledger.mint(asset, holder, amount)
            token_ledger.approve(asset, holder, CUSTODY, MAX_UINT256)

    return _fund
