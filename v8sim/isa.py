"""
v8sim -- Instruction Table

This module maps opcodes to (mnemonic, operand fields, semantics).
The same table instance drives both the assembler (encode) and the
engine (decode + execute), so the two can never disagree.

Instruction word layout (16 bits):

    15    12 11     8 7      4 3      0
   +--------+--------+--------+--------+
   | opcode |   A    |   B    |   C    |     three 4-bit register fields
   +--------+--------+--------+--------+
   | opcode |   A    |   imm8 / addr8  |     register + 8-bit field
   +--------+--------+-----------------+

Field kinds:
  REG   Register index 0..15
  ADDR  Word address 0..255
  IMM   Byte immediate -128..255 (negatives stored as two's complement)

Semantics functions have the signature  fn(machine, operands) -> Effect.
`machine` is a read-only view with reg(i), mem(addr) and flags.
They must not mutate anything: the engine validates the returned Effect
and commits it in one go, so a faulting instruction leaves no trace.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple

from .cpu import alu
from .cpu.regs import FL_S, FL_Z, FL_V, FL_C, FLAG_MASK, reg_name
from .errors import (
    OperandCountMismatch, OperandOutOfRange, UnknownMnemonic, UnknownOpcode,
)

# ──────────────────────────────────────────────
# Field kinds
# ──────────────────────────────────────────────

REG = 'REG'
ADDR = 'ADDR'
IMM = 'IMM'

OPCODE_SHIFT = 12


@dataclass(frozen=True)
class Field:
    """One operand field inside an instruction word."""
    name: str
    kind: str
    shift: int
    width: int = 4

    @property
    def mask(self) -> int:
        return (1 << self.width) - 1

    @property
    def lowest(self) -> int:
        if self.kind == IMM:
            return -(1 << (self.width - 1))
        return 0

    @property
    def highest(self) -> int:
        return self.mask

    def fits(self, value: int) -> bool:
        return self.lowest <= value <= self.highest

    def pack(self, value: int) -> int:
        return (value & self.mask) << self.shift

    def unpack(self, word: int) -> int:
        """Field bits as an unsigned value.

        IMM -1 and 255 share one bit pattern, so decode always gives back
        the unsigned form (0..255). LOADB zero-extends it anyway.
        """
        return (word >> self.shift) & self.mask

    def format(self, value: int) -> str:
        if self.kind == REG:
            return reg_name(value)
        return f"0x{value:02X}"


def _reg(name: str, shift: int) -> Field:
    return Field(name, REG, shift, 4)


def _byte(name: str, kind: str) -> Field:
    return Field(name, kind, 0, 8)


# Common operand shapes
RA, RB, RC = _reg('a', 8), _reg('b', 4), _reg('c', 0)
SHAPE_NONE: Tuple[Field, ...] = ()
SHAPE_REG_ADDR = (RA, _byte('addr', ADDR))
SHAPE_REG_IMM = (RA, _byte('imm', IMM))
SHAPE_RRR = (RA, RB, RC)
SHAPE_MOVE = (_reg('dst', 0), _reg('src', 4))    # MOVE Rd, Rs -> 0x40sd
SHAPE_REG_PTR = (RA, _reg('ptr', 0))


# ──────────────────────────────────────────────
# Effect: what an instruction wants to change
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Effect:
    registers: Dict[int, int] = field(default_factory=dict)
    memory: Dict[int, int] = field(default_factory=dict)
    flags: Optional[int] = None          # complete new flag word, None = unchanged
    jump: Optional[int] = None           # PC override
    halt: bool = False


NO_EFFECT = Effect()


@dataclass(frozen=True)
class InstructionSpec:
    opcode: int
    mnemonic: str
    fields: Tuple[Field, ...]
    semantics: Callable[..., Effect]
    doc: str = ''

    @property
    def operand_count(self) -> int:
        return len(self.fields)

    def signature(self) -> str:
        """'ADDI a:REG, b:REG, c:REG' style summary, for error messages."""
        if not self.fields:
            return self.mnemonic
        return f"{self.mnemonic} " + ', '.join(f.kind for f in self.fields)


# ══════════════════════════════════════════════
# Semantics
# ══════════════════════════════════════════════

def _merge_flags(old: int, new: int, affected: int) -> int:
    return ((old & ~affected) | (new & affected)) & FLAG_MASK


def op_nop(m, ops) -> Effect:
    return NO_EFFECT


def op_loadm(m, ops) -> Effect:
    rd, addr = ops
    return Effect(registers={rd: m.mem(addr)})


def op_loadb(m, ops) -> Effect:
    rd, imm = ops
    return Effect(registers={rd: imm & 0xFF})


def op_storem(m, ops) -> Effect:
    rs, addr = ops
    return Effect(memory={addr: m.reg(rs)})


def op_move(m, ops) -> Effect:
    rd, rs = ops
    return Effect(registers={rd: m.reg(rs)})


def _three_reg(fn, affected: int):
    def semantics(m, ops) -> Effect:
        rd, rs, rt = ops
        result, flags = fn(m.reg(rs), m.reg(rt))
        return Effect(registers={rd: result},
                      flags=_merge_flags(m.flags, flags, affected))
    semantics.__name__ = f"op_{fn.__name__}"
    return semantics


op_addi = _three_reg(alu.add16, FL_S | FL_Z | FL_V | FL_C)
op_addf = _three_reg(alu.addf16, FL_S | FL_Z | FL_V | FL_C)   # C always cleared
op_or = _three_reg(alu.or16, FL_S | FL_Z | FL_V)              # V cleared, C kept
op_and = _three_reg(alu.and16, FL_S | FL_Z | FL_V)
op_xor = _three_reg(alu.xor16, FL_S | FL_Z | FL_V)


def op_rot(m, ops) -> Effect:
    rd, amount = ops
    result, flags = alu.ror16(m.reg(rd), amount)
    return Effect(registers={rd: result},
                  flags=_merge_flags(m.flags, flags, FL_S | FL_Z | FL_C))


def op_jump(m, ops) -> Effect:
    """Compare Rs with R0; jump when equal. JUMP R0, addr is unconditional."""
    rs, addr = ops
    _, flags = alu.sub16(m.reg(rs), m.reg(0))
    return Effect(flags=flags, jump=addr if flags & FL_Z else None)


def op_jumpl(m, ops) -> Effect:
    """Compare Rs with R0; jump when Rs < R0 (unsigned, i.e. borrow)."""
    rs, addr = ops
    _, flags = alu.sub16(m.reg(rs), m.reg(0))
    return Effect(flags=flags, jump=addr if flags & FL_C else None)


def op_halt(m, ops) -> Effect:
    return Effect(halt=True)


def op_loadp(m, ops) -> Effect:
    rd, rp = ops
    return Effect(registers={rd: m.mem(m.reg(rp))})


def op_storep(m, ops) -> Effect:
    rs, rp = ops
    return Effect(memory={m.reg(rp): m.reg(rs)})


# ──────────────────────────────────────────────
# Default catalogue
# ──────────────────────────────────────────────

DEFAULT_SPECS = (
    InstructionSpec(0x0, 'NOP',    SHAPE_NONE,     op_nop,    'no operation'),
    InstructionSpec(0x1, 'LOADM',  SHAPE_REG_ADDR, op_loadm,  'Rd <- M[addr]'),
    InstructionSpec(0x2, 'LOADB',  SHAPE_REG_IMM,  op_loadb,  'Rd <- imm'),
    InstructionSpec(0x3, 'STOREM', SHAPE_REG_ADDR, op_storem, 'M[addr] <- Rs'),
    InstructionSpec(0x4, 'MOVE',   SHAPE_MOVE,     op_move,   'Rd <- Rs'),
    InstructionSpec(0x5, 'ADDI',   SHAPE_RRR,      op_addi,   'Rd <- Rs + Rt (integer)'),
    InstructionSpec(0x6, 'ADDF',   SHAPE_RRR,      op_addf,   'Rd <- Rs + Rt (binary16)'),
    InstructionSpec(0x7, 'OR',     SHAPE_RRR,      op_or,     'Rd <- Rs | Rt'),
    InstructionSpec(0x8, 'AND',    SHAPE_RRR,      op_and,    'Rd <- Rs & Rt'),
    InstructionSpec(0x9, 'XOR',    SHAPE_RRR,      op_xor,    'Rd <- Rs ^ Rt'),
    InstructionSpec(0xA, 'ROT',    SHAPE_REG_IMM,  op_rot,    'Rd <- Rd rotated right'),
    InstructionSpec(0xB, 'JUMP',   SHAPE_REG_ADDR, op_jump,   'if Rs == R0: PC <- addr'),
    InstructionSpec(0xC, 'HALT',   SHAPE_NONE,     op_halt,   'stop'),
    InstructionSpec(0xD, 'LOADP',  SHAPE_REG_PTR,  op_loadp,  'Rd <- M[Rp]'),
    InstructionSpec(0xE, 'STOREP', SHAPE_REG_PTR,  op_storep, 'M[Rp] <- Rs'),
    InstructionSpec(0xF, 'JUMPL',  SHAPE_REG_ADDR, op_jumpl,  'if Rs < R0: PC <- addr'),
)


# ══════════════════════════════════════════════
# The table
# ══════════════════════════════════════════════

class InstructionTable:
    """Opcode catalogue shared by assembler and engine."""

    def __init__(self, specs: Iterable[InstructionSpec] = DEFAULT_SPECS):
        self._by_opcode: Dict[int, InstructionSpec] = {}
        self._by_mnemonic: Dict[str, InstructionSpec] = {}
        for spec in specs:
            if not 0 <= spec.opcode <= 0xF:
                raise ValueError(f"{spec.mnemonic}: opcode 0x{spec.opcode:X} does not fit 4 bits")
            if spec.opcode in self._by_opcode:
                raise ValueError(f"Duplicate opcode 0x{spec.opcode:X}")
            name = spec.mnemonic.upper()
            if name in self._by_mnemonic:
                raise ValueError(f"Duplicate mnemonic {name}")
            self._by_opcode[spec.opcode] = spec
            self._by_mnemonic[name] = spec

    def __iter__(self) -> Iterator[InstructionSpec]:
        return iter(sorted(self._by_opcode.values(), key=lambda s: s.opcode))

    def __len__(self) -> int:
        return len(self._by_opcode)

    def __contains__(self, opcode: int) -> bool:
        return opcode in self._by_opcode

    def without(self, *opcodes: int) -> 'InstructionTable':
        """A copy of this table with some opcodes removed."""
        return InstructionTable(s for s in self if s.opcode not in opcodes)

    # --- Lookup ---

    def lookup(self, opcode: int) -> InstructionSpec:
        try:
            return self._by_opcode[opcode]
        except KeyError:
            raise UnknownOpcode(opcode) from None

    def by_mnemonic(self, mnemonic: str) -> InstructionSpec:
        try:
            return self._by_mnemonic[mnemonic.upper()]
        except KeyError:
            raise UnknownMnemonic(f"Unknown mnemonic: {mnemonic}") from None

    def has_mnemonic(self, mnemonic: str) -> bool:
        return mnemonic.upper() in self._by_mnemonic

    # --- Encode / decode ---

    def encode(self, mnemonic: str, operands: Tuple[int, ...]) -> int:
        """Pack mnemonic + operand values into one instruction word."""
        spec = self.by_mnemonic(mnemonic)
        if len(operands) != spec.operand_count:
            raise OperandCountMismatch(
                f"{spec.mnemonic} expects {spec.operand_count} operand(s), "
                f"got {len(operands)} ({spec.signature()})")
        word = spec.opcode << OPCODE_SHIFT
        for fld, value in zip(spec.fields, operands):
            if not fld.fits(value):
                raise OperandOutOfRange(
                    f"{spec.mnemonic}: {fld.kind} operand {value} out of range "
                    f"{fld.lowest}..{fld.highest}")
            word |= fld.pack(value)
        return word

    def decode(self, word: int) -> Tuple[InstructionSpec, Tuple[int, ...]]:
        """Split an instruction word into (spec, operand values)."""
        spec = self.lookup((word >> OPCODE_SHIFT) & 0xF)
        return spec, tuple(f.unpack(word) for f in spec.fields)

    def disassemble(self, word: int) -> str:
        try:
            spec, operands = self.decode(word)
        except UnknownOpcode:
            return f"??? 0x{word:04X}"
        if not operands:
            return spec.mnemonic
        args = ', '.join(f.format(v) for f, v in zip(spec.fields, operands))
        return f"{spec.mnemonic} {args}"


DEFAULT_TABLE = InstructionTable()
