from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from lp_custody.core.utils.uniswap_v3_math import (
    Q96_INT,
    PathHop,
    amounts_for_liq_inrange,
    decode_path,
    encode_path,
    encode_price_sqrt,
    full_range_ticks,
    liq_for_amounts,
    parse_position_struct,
    read_position,
    round_tick_to_spacing,
    sort_tokens,
    sqrt_price_x96_from_tick,
    swap_step_exact_in,
    swap_step_exact_out,
)

MOCK_TOKEN0 = "0x1111111111111111111111111111111111111111"
MOCK_TOKEN1 = "0x3333333333333333333333333333333333333333"
MOCK_TOKEN2 = "0x5555555555555555555555555555555555555555"
MOCK_OPERATOR = "0x0000000000000000000000000000000000000000"

RAW_POSITION = (
    0,  # nonce
    MOCK_OPERATOR,  # operator
    MOCK_TOKEN0,  # token0
    MOCK_TOKEN1,  # token1
    3000,  # fee
    -60,  # tickLower
    60,  # tickUpper
    1_000_000,  # liquidity
    100,  # feeGrowthInside0LastX128
    200,  # feeGrowthInside1LastX128
    500,  # tokensOwed0
    600,  # tokensOwed1
)


def test_sort_tokens_orders_numerically():
    assert sort_tokens(MOCK_TOKEN1, MOCK_TOKEN0) == (MOCK_TOKEN0, MOCK_TOKEN1)
    assert sort_tokens(MOCK_TOKEN0, MOCK_TOKEN1) == (MOCK_TOKEN0, MOCK_TOKEN1)


def test_sort_tokens_rejects_identical_even_with_different_case():
    with pytest.raises(ValueError, match="Identical"):
        sort_tokens(
            "0xabcdef0000000000000000000000000000000001",
            "0xABCDEF0000000000000000000000000000000001",
        )


def test_encode_price_sqrt_at_parity():
    assert encode_price_sqrt(1, 1) == Q96_INT


def test_sqrt_price_at_tick_zero_is_q96():
    assert sqrt_price_x96_from_tick(0) == Q96_INT


def test_sqrt_price_is_monotonic_in_tick():
    assert sqrt_price_x96_from_tick(-60) < sqrt_price_x96_from_tick(0)
    assert sqrt_price_x96_from_tick(60) > sqrt_price_x96_from_tick(0)


def test_sqrt_price_rejects_out_of_range_tick():
    with pytest.raises(ValueError, match="out of range"):
        sqrt_price_x96_from_tick(887273)


@pytest.mark.parametrize(
    "spacing,expected",
    [(1, 887272), (10, 887270), (60, 887220), (200, 887200)],
)
def test_full_range_ticks(spacing, expected):
    assert full_range_ticks(spacing) == (-expected, expected)


def test_round_tick_to_spacing_floors():
    assert round_tick_to_spacing(-175, 60) == -180
    assert round_tick_to_spacing(135, 60) == 120


def test_liquidity_round_trip_never_exceeds_desired():
    lower, upper = full_range_ticks(60)
    sqrt_a = sqrt_price_x96_from_tick(lower)
    sqrt_b = sqrt_price_x96_from_tick(upper)
    liquidity = liq_for_amounts(Q96_INT, sqrt_a, sqrt_b, 1000, 1000)
    amount0, amount1 = amounts_for_liq_inrange(Q96_INT, sqrt_a, sqrt_b, liquidity)
    assert liquidity > 0
    assert 0 < amount0 <= 1000
    assert 0 < amount1 <= 1000


def test_swap_step_exact_in_zero_for_one_lowers_price():
    new_sqrt_p, amount_out = swap_step_exact_in(
        Q96_INT, 10**18, 10**15, zero_for_one=True
    )
    assert new_sqrt_p < Q96_INT
    assert 0 < amount_out < 10**15


def test_swap_step_exact_in_one_for_zero_raises_price():
    new_sqrt_p, amount_out = swap_step_exact_in(
        Q96_INT, 10**18, 10**15, zero_for_one=False
    )
    assert new_sqrt_p > Q96_INT
    assert 0 < amount_out < 10**15


def test_swap_step_exact_out_costs_at_least_the_output():
    new_sqrt_p, amount_in = swap_step_exact_out(
        Q96_INT, 10**18, 10**15, zero_for_one=True
    )
    assert new_sqrt_p < Q96_INT
    assert amount_in > 10**15


def test_swap_step_exact_out_rejects_draining_the_range():
    with pytest.raises(ValueError, match="exceeds available liquidity"):
        swap_step_exact_out(Q96_INT, 1000, 10**6, zero_for_one=False)


def test_swap_step_requires_liquidity():
    with pytest.raises(ValueError, match="no active liquidity"):
        swap_step_exact_in(Q96_INT, 0, 1, zero_for_one=True)


def test_encode_path_layout():
    path = encode_path([MOCK_TOKEN0, MOCK_TOKEN1], [3000])
    assert len(path) == 43
    assert path[:20] == bytes.fromhex(MOCK_TOKEN0[2:])
    assert int.from_bytes(path[20:23], "big") == 3000
    assert path[23:] == bytes.fromhex(MOCK_TOKEN1[2:])


def test_decode_path_multi_hop():
    path = encode_path([MOCK_TOKEN0, MOCK_TOKEN1, MOCK_TOKEN2], [500, 10000])
    assert decode_path(path) == [
        PathHop(MOCK_TOKEN0, 500, MOCK_TOKEN1),
        PathHop(MOCK_TOKEN1, 10000, MOCK_TOKEN2),
    ]


def test_encode_path_requires_matching_fees():
    with pytest.raises(ValueError, match="n - 1 fees"):
        encode_path([MOCK_TOKEN0, MOCK_TOKEN1], [])


@pytest.mark.parametrize("length", [0, 20, 42, 44])
def test_decode_path_rejects_malformed(length):
    with pytest.raises(ValueError, match="Malformed"):
        decode_path(b"\x01" * length)


def test_parse_position_struct():
    pos = parse_position_struct(RAW_POSITION)
    assert pos["token0"].lower() == MOCK_TOKEN0.lower()
    assert pos["token1"].lower() == MOCK_TOKEN1.lower()
    assert pos["fee"] == 3000
    assert pos["tick_lower"] == -60
    assert pos["tick_upper"] == 60
    assert pos["liquidity"] == 1_000_000
    assert pos["tokens_owed0"] == 500
    assert pos["tokens_owed1"] == 600


@pytest.mark.asyncio
async def test_read_position():
    npm = MagicMock()
    pos_fn = MagicMock()
    pos_fn.call = AsyncMock(return_value=RAW_POSITION)
    npm.functions.positions = MagicMock(return_value=pos_fn)

    pos = await read_position(npm, 42)

    npm.functions.positions.assert_called_once_with(42)
    assert pos["liquidity"] == 1_000_000
