"""Uniswap v3 math helpers and shared position-manager utilities.

Pure math (tick/price/liquidity conversions, single-range swap steps), the
packed swap-path codec and NPM struct parsing used by the custody layer and by
the simulated AMM.
"""

from __future__ import annotations

from decimal import Decimal, getcontext
from typing import NamedTuple, TypedDict

from eth_abi.packed import encode_packed
from eth_utils import to_checksum_address

from lp_custody.core.constants.base import MAX_TICK, MIN_TICK

getcontext().prec = 64

Q96 = Decimal(2) ** 96
Q96_INT = 1 << 96
Q32 = 1 << 32

_ADDRESS_BYTES = 20
_FEE_BYTES = 3


class PositionData(TypedDict):
    nonce: int
    operator: str
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    fee_growth_inside0_last_x128: int
    fee_growth_inside1_last_x128: int
    tokens_owed0: int
    tokens_owed1: int


class PathHop(NamedTuple):
    token_a: str
    fee: int
    token_b: str


def sort_tokens(token_a: str, token_b: str) -> tuple[str, str]:
    """Return the pair ordered by numeric address value, checksummed."""
    a = to_checksum_address(token_a)
    b = to_checksum_address(token_b)
    if int(a, 16) == int(b, 16):
        raise ValueError(f"Identical tokens: {a}")
    return (a, b) if int(a, 16) < int(b, 16) else (b, a)


def encode_price_sqrt(reserve1: int, reserve0: int) -> int:
    """sqrt(reserve1 / reserve0) as a Q64.96 integer."""
    ratio = Decimal(int(reserve1)) / Decimal(int(reserve0))
    return int(ratio.sqrt() * Q96)


def round_tick_to_spacing(tick: int, spacing: int) -> int:
    if spacing <= 0:
        return tick
    return tick - (tick % spacing)


def full_range_ticks(spacing: int) -> tuple[int, int]:
    """Widest usable [tick_lower, tick_upper] for a tick spacing."""
    upper = MAX_TICK - (MAX_TICK % spacing)
    return -upper, upper


def amt0_for_liq(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    L = Decimal(liquidity)
    out = (L * (b - a) * Q96) / (a * b)
    return int(out)


def amt1_for_liq(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    L = Decimal(liquidity)
    out = (L * (b - a)) / Q96
    return int(out)


def liq_for_amt0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    x = Decimal(amount0)
    L = (x * a * b) / (Q96 * (b - a))
    return int(L)


def liq_for_amt1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    y = Decimal(amount1)
    L = (y * Q96) / (b - a)
    return int(L)


def liq_for_amounts(
    sqrt_p: int, sqrt_a: int, sqrt_b: int, amount0: int, amount1: int
) -> int:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    p = Decimal(sqrt_p)
    if p <= a:
        return liq_for_amt0(a, b, amount0)
    if p >= b:
        return liq_for_amt1(a, b, amount1)
    L0 = liq_for_amt0(p, b, amount0)
    L1 = liq_for_amt1(a, p, amount1)
    return min(L0, L1)


def amounts_for_liq_inrange(
    sqrt_p: int, sqrt_a: int, sqrt_b: int, liquidity: int
) -> tuple[int, int]:
    a, b = _sorted_bounds(sqrt_a, sqrt_b)
    p = Decimal(sqrt_p)
    if p <= a:
        amount0 = amt0_for_liq(a, b, liquidity)
        amount1 = 0
    elif p < b:
        amount0 = amt0_for_liq(p, b, liquidity)
        amount1 = amt1_for_liq(a, p, liquidity)
    else:
        amount0 = 0
        amount1 = amt1_for_liq(a, b, liquidity)
    return amount0, amount1


def sqrt_price_x96_from_tick(
    tick: int, *, min_tick: int = MIN_TICK, max_tick: int = MAX_TICK
) -> int:
    if tick < min_tick or tick > max_tick:
        raise ValueError(f"tick {tick} out of range [{min_tick}, {max_tick}]")

    abs_tick = tick if tick >= 0 else -tick
    ratio = 0x100000000000000000000000000000000

    if abs_tick & 0x1:
        ratio = (ratio * 0xFFFCB933BD6FAD37AA2D162D1A594001) >> 128
    if abs_tick & 0x2:
        ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
    if abs_tick & 0x4:
        ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
    if abs_tick & 0x8:
        ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
    if abs_tick & 0x10:
        ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
    if abs_tick & 0x20:
        ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
    if abs_tick & 0x40:
        ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
    if abs_tick & 0x80:
        ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
    if abs_tick & 0x100:
        ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
    if abs_tick & 0x200:
        ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
    if abs_tick & 0x400:
        ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
    if abs_tick & 0x800:
        ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
    if abs_tick & 0x1000:
        ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
    if abs_tick & 0x2000:
        ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
    if abs_tick & 0x4000:
        ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
    if abs_tick & 0x8000:
        ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
    if abs_tick & 0x10000:
        ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
    if abs_tick & 0x20000:
        ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
    if abs_tick & 0x40000:
        ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
    if abs_tick & 0x80000:
        ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

    if tick > 0:
        ratio = (1 << 256) // ratio

    sqrt_price_x96 = ratio >> 32
    if ratio & (Q32 - 1):
        sqrt_price_x96 += 1
    return int(sqrt_price_x96)


def _sorted_bounds(sqrt_a: int, sqrt_b: int) -> tuple[Decimal, Decimal]:
    a, b = sorted((Decimal(sqrt_a), Decimal(sqrt_b)))
    return a, b


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def swap_step_exact_in(
    sqrt_p: int, liquidity: int, amount_in: int, *, zero_for_one: bool
) -> tuple[int, int]:
    """Apply ``amount_in`` (net of fees) to a single liquidity range.

    Returns ``(new_sqrt_price_x96, amount_out)``; rounding favours the pool.
    """
    if liquidity <= 0:
        raise ValueError("no active liquidity")
    if zero_for_one:
        numerator = liquidity * Q96_INT
        new_sqrt_p = _ceil_div(numerator * sqrt_p, numerator + amount_in * sqrt_p)
        amount_out = liquidity * (sqrt_p - new_sqrt_p) // Q96_INT
    else:
        new_sqrt_p = sqrt_p + (amount_in * Q96_INT) // liquidity
        amount_out = (liquidity * Q96_INT * (new_sqrt_p - sqrt_p)) // (
            new_sqrt_p * sqrt_p
        )
    return new_sqrt_p, amount_out


def swap_step_exact_out(
    sqrt_p: int, liquidity: int, amount_out: int, *, zero_for_one: bool
) -> tuple[int, int]:
    """Solve a single liquidity range for an exact ``amount_out``.

    Returns ``(new_sqrt_price_x96, amount_in)`` with ``amount_in`` net of fees.
    """
    if liquidity <= 0:
        raise ValueError("no active liquidity")
    if zero_for_one:
        new_sqrt_p = sqrt_p - _ceil_div(amount_out * Q96_INT, liquidity)
        if new_sqrt_p <= 0:
            raise ValueError("amount_out exceeds available liquidity")
        amount_in = _ceil_div(
            liquidity * Q96_INT * (sqrt_p - new_sqrt_p), new_sqrt_p * sqrt_p
        )
    else:
        denominator = liquidity * Q96_INT - amount_out * sqrt_p
        if denominator <= 0:
            raise ValueError("amount_out exceeds available liquidity")
        new_sqrt_p = _ceil_div(liquidity * Q96_INT * sqrt_p, denominator)
        amount_in = _ceil_div(liquidity * (new_sqrt_p - sqrt_p), Q96_INT)
    return new_sqrt_p, amount_in


def encode_path(tokens: list[str], fees: list[int]) -> bytes:
    """Uniswap packed path: ``token (20) | fee (3) | token (20) | ...``."""
    if len(tokens) < 2 or len(fees) != len(tokens) - 1:
        raise ValueError("path needs n tokens and n - 1 fees")
    types: list[str] = []
    values: list[object] = []
    for i, token in enumerate(tokens):
        types.append("address")
        values.append(to_checksum_address(token))
        if i < len(fees):
            types.append("uint24")
            values.append(int(fees[i]))
    return encode_packed(types, values)


def decode_path(path: bytes) -> list[PathHop]:
    step = _ADDRESS_BYTES + _FEE_BYTES
    if len(path) < step + _ADDRESS_BYTES or (len(path) - _ADDRESS_BYTES) % step:
        raise ValueError(f"Malformed swap path of {len(path)} bytes")

    hops: list[PathHop] = []
    offset = 0
    while offset + step < len(path):
        token_a = to_checksum_address("0x" + path[offset : offset + _ADDRESS_BYTES].hex())
        fee = int.from_bytes(path[offset + _ADDRESS_BYTES : offset + step], "big")
        token_b = to_checksum_address(
            "0x" + path[offset + step : offset + step + _ADDRESS_BYTES].hex()
        )
        hops.append(PathHop(token_a, fee, token_b))
        offset += step
    return hops


def parse_position_struct(raw: tuple) -> PositionData:
    return PositionData(
        nonce=int(raw[0]),
        operator=to_checksum_address(raw[1]),
        token0=to_checksum_address(raw[2]),
        token1=to_checksum_address(raw[3]),
        fee=int(raw[4]),
        tick_lower=int(raw[5]),
        tick_upper=int(raw[6]),
        liquidity=int(raw[7]),
        fee_growth_inside0_last_x128=int(raw[8]),
        fee_growth_inside1_last_x128=int(raw[9]),
        tokens_owed0=int(raw[10]),
        tokens_owed1=int(raw[11]),
    )


async def read_position(npm_contract, token_id: int) -> PositionData:
    raw = await npm_contract.functions.positions(int(token_id)).call(
        block_identifier="latest"
    )
    return parse_position_struct(raw)
