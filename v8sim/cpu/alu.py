"""
v8sim CPU -- 16-bit ALU

Each function returns a tuple: (result_word, flag_bits)
The caller decides which flags the instruction is allowed to change.

Carry and overflow are computed from the operands and the unmasked
result, the standard two's complement formulas:
  add: V = (A15 & B15 & ~R15) | (~A15 & ~B15 & R15)
  sub: V = (A15 & ~B15 & ~R15) | (~A15 & B15 & R15)
"""

import math
import struct

from .regs import FL_S, FL_Z, FL_V, FL_C

SIGN_BIT = 0x8000
MASK = 0xFFFF


def sz_flags(val: int) -> int:
    """S and Z for a 16-bit value."""
    flags = 0
    if val & SIGN_BIT:
        flags |= FL_S
    if not (val & MASK):
        flags |= FL_Z
    return flags


def add16(a: int, b: int) -> tuple:
    """Add two 16-bit values. Sets S, Z, V, C."""
    result = a + b
    flags = sz_flags(result)
    if result > MASK:
        flags |= FL_C
    if (a & b & ~result | ~a & ~b & result) & SIGN_BIT:
        flags |= FL_V
    return (result & MASK, flags)


def sub16(a: int, b: int) -> tuple:
    """Subtract b from a. Sets S, Z, V, C (C = borrow, i.e. a < b unsigned)."""
    result = a - b
    flags = sz_flags(result)
    if result < 0:
        flags |= FL_C
    if (a & ~b & ~result | ~a & b & result) & SIGN_BIT:
        flags |= FL_V
    return (result & MASK, flags)


def or16(a: int, b: int) -> tuple:
    result = (a | b) & MASK
    return (result, sz_flags(result))


def and16(a: int, b: int) -> tuple:
    result = a & b & MASK
    return (result, sz_flags(result))


def xor16(a: int, b: int) -> tuple:
    result = (a ^ b) & MASK
    return (result, sz_flags(result))


def ror16(val: int, shift: int) -> tuple:
    """Rotate right by shift (mod 16). Sets S, Z; C = last bit rotated out."""
    shift &= 0xF
    val &= MASK
    if shift == 0:
        return (val, sz_flags(val))
    result = ((val >> shift) | (val << (16 - shift))) & MASK
    flags = sz_flags(result)
    if val & (1 << (shift - 1)):
        flags |= FL_C
    return (result, flags)


# ══════════════════════════════════════════════
# binary16 floating point
# ══════════════════════════════════════════════

def half_to_float(word: int) -> float:
    return struct.unpack('>e', struct.pack('>H', word & MASK))[0]


def float_to_half(value: float) -> int:
    """Round to the nearest binary16. Out-of-range magnitudes become +/-inf."""
    try:
        return struct.unpack('>H', struct.pack('>e', value))[0]
    except OverflowError:
        return 0xFC00 if value < 0 else 0x7C00


def addf16(a: int, b: int) -> tuple:
    """binary16 add. Sets S, Z; V when finite operands produce inf/nan."""
    fa = half_to_float(a)
    fb = half_to_float(b)
    total = fa + fb
    result = float_to_half(total)
    flags = 0
    if result & SIGN_BIT:
        flags |= FL_S
    if not (result & 0x7FFF):       # +0 and -0
        flags |= FL_Z
    if math.isfinite(fa) and math.isfinite(fb) and not math.isfinite(half_to_float(result)):
        flags |= FL_V
    return (result, flags)
