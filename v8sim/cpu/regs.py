"""
v8sim CPU -- Register File + Flag Management

Register model:
  R0..RF  -- sixteen 16-bit general purpose registers (R0 doubles as the
             comparison register for JUMP / JUMPL)
  PC      -- program counter, a word address
  FLAGS   -- 4-bit condition word:  . . . . S Z V C
        bit 3: S (Sign -- MSB of result)
        bit 2: Z (Zero -- result is zero)
        bit 1: V (Overflow -- signed overflow)
        bit 0: C (Carry -- unsigned carry out / borrow)
"""

from typing import List, Tuple

from ..config import REGISTER_COUNT, WORD_MASK

# Flag bit masks
FL_S = 0x08
FL_Z = 0x04
FL_V = 0x02
FL_C = 0x01

FLAG_MASK = FL_S | FL_Z | FL_V | FL_C
FLAG_NAMES = 'SZVC'


def reg_name(index: int) -> str:
    """R0..R9, RA..RF"""
    return f"R{index:X}"


def flags_to_dict(flags: int) -> dict:
    return {
        'zero': bool(flags & FL_Z),
        'carry': bool(flags & FL_C),
        'sign': bool(flags & FL_S),
        'overflow': bool(flags & FL_V),
    }


def flags_str(flags: int) -> str:
    """Render flags as e.g. '.Z.C' in SZVC order."""
    return ''.join(c if flags & (0x08 >> i) else '.' for i, c in enumerate(FLAG_NAMES))


class Registers:
    """Register file, program counter and flags.

    Every register is defined from construction onwards; reset() returns
    all of them to zero.
    """

    __slots__ = ('R', 'PC', 'FLAGS')

    def __init__(self):
        self.R: List[int] = [0] * REGISTER_COUNT
        self.PC: int = 0
        self.FLAGS: int = 0

    def __getitem__(self, index: int) -> int:
        return self.R[index]

    def __setitem__(self, index: int, value: int):
        self.R[index] = value & WORD_MASK

    # --- Flag access ---

    def set_flags(self, flags: int):
        self.FLAGS = flags & FLAG_MASK

    @property
    def carry(self) -> bool:
        return bool(self.FLAGS & FL_C)

    @property
    def zero(self) -> bool:
        return bool(self.FLAGS & FL_Z)

    @property
    def sign(self) -> bool:
        return bool(self.FLAGS & FL_S)

    @property
    def overflow(self) -> bool:
        return bool(self.FLAGS & FL_V)

    # --- Snapshot support ---

    def as_tuple(self) -> Tuple[int, ...]:
        return tuple(self.R)

    def display(self) -> str:
        """Format register state for debugging."""
        regs = ' '.join(f"{reg_name(i)}={v:04X}" for i, v in enumerate(self.R))
        return f"PC={self.PC:02X} FLAGS=[{flags_str(self.FLAGS)}] {regs}"

    def reset(self, pc: int = 0):
        """Reset to power-on state: all registers and flags zero."""
        self.R = [0] * REGISTER_COUNT
        self.PC = pc
        self.FLAGS = 0
