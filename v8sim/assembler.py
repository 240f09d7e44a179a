"""
v8 Two-Pass Assembler.

Assembles v8 assembly text into a ProgramImage.

Source format (one statement per line):

    [label[@origin]:]  [MNEMONIC [operand {, operand}]]  [; comment]

  - mnemonics and register names (R0..RF) are case-insensitive
  - labels are case-sensitive: [A-Za-z_.][A-Za-z0-9_]*
  - numbers: 42, -3, 0x2A, $2A, %101010
  - label references may carry an offset: loop+1, table-2
  - `name@0x20:` moves the location counter to 0x20, then defines name
  - DW value (alias DB) emits one raw data word

How the two-pass algorithm works:
  Pass 1: Scan all lines, assign every statement the next word address,
          record each label with its address. Every instruction is
          exactly one word, so no sizing guesswork is needed.
  Pass 2: Encode. All labels are known now, so forward references
          resolve. Operand shapes and bit packing come from the
          InstructionTable, the same one the engine decodes with.

Assembly never partially succeeds. Errors from a pass are collected and
the first one is raised, with the full list on its `errors` attribute.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import DEFAULT_CONFIG, MachineConfig
from .errors import (
    AssemblyError, DuplicateLabel, ImageTooLarge, OperandCountMismatch,
    OperandOutOfRange, UndefinedSymbol, UnknownMnemonic,
)
from .image import ProgramImage
from .isa import DEFAULT_TABLE, REG, Field, InstructionTable

__all__ = ['Assembler', 'AssemblyError', 'assemble']

log = logging.getLogger('v8sim.asm')

DATA_DIRECTIVES = {'DW', 'DB'}
DATA_LOWEST = -0x8000
DATA_HIGHEST = 0xFFFF

_LABEL_RE = re.compile(r'^([A-Za-z_.][A-Za-z0-9_]*)(?:@([^:]*))?$')
_REGISTER_RE = re.compile(r'^[Rr]([0-9A-Fa-f])$')
_SYMREF_RE = re.compile(r'^([A-Za-z_.][A-Za-z0-9_]*)\s*(?:([+-])\s*(\S+))?$')


# ──────────────────────────────────────────────
# Line Parser
# ──────────────────────────────────────────────

@dataclass
class AsmLine:
    """Parsed assembly source line."""
    label: Optional[str] = None
    origin: Optional[str] = None
    mnemonic: Optional[str] = None
    operands: List[str] = field(default_factory=list)
    comment: Optional[str] = None
    line_num: int = 0
    raw: str = ""
    address: Optional[int] = None       # assigned in pass 1


def _parse_line(line: str, line_num: int) -> AsmLine:
    """Split one line into label, origin, mnemonic, operands, comment."""
    result = AsmLine(line_num=line_num, raw=line)

    text = line
    semi_pos = text.find(';')
    if semi_pos >= 0:
        result.comment = text[semi_pos + 1:].strip()
        text = text[:semi_pos]

    text = text.strip()
    if not text:
        return result

    # Label: everything before the first ':'
    colon = text.find(':')
    if colon >= 0:
        label_part = text[:colon].strip()
        match = _LABEL_RE.match(label_part)
        if not match:
            raise AssemblyError(f"Not a valid label: '{label_part}'", line_num, line)
        result.label = match.group(1)
        if match.group(2) is not None:
            result.origin = match.group(2).strip()
            if not result.origin:
                raise AssemblyError(f"Missing origin after '@' in label '{result.label}'",
                                    line_num, line)
        text = text[colon + 1:].strip()

    if not text:
        return result

    parts = text.split(None, 1)
    result.mnemonic = parts[0].upper()
    if len(parts) > 1:
        operands = [p.strip() for p in parts[1].split(',')]
        if any(not p for p in operands):
            raise AssemblyError("Empty operand (stray comma?)", line_num, line)
        result.operands = operands
    return result


# ──────────────────────────────────────────────
# Operand Analysis
# ──────────────────────────────────────────────

def _parse_number(text: str) -> Optional[int]:
    """Parse a numeric literal, or return None if text is not numeric."""
    text = text.strip()
    negative = text.startswith('-')
    body = text[1:].strip() if negative else text
    if not body:
        return None
    try:
        if body.startswith('$'):
            value = int(body[1:], 16)
        elif body[:2].lower() == '0x':
            value = int(body[2:], 16)
        elif body.startswith('%'):
            value = int(body[1:], 2)
        elif body[0].isdigit():
            value = int(body, 10)
        else:
            return None
    except ValueError:
        raise ValueError(f"Invalid number: '{text}'") from None
    return -value if negative else value


def _parse_register(text: str) -> Optional[int]:
    match = _REGISTER_RE.match(text.strip())
    if match:
        return int(match.group(1), 16)
    return None


def _parse_value(text: str, symbols: Dict[str, int]) -> int:
    """Parse a numeric literal or a label reference with optional offset."""
    number = _parse_number(text)
    if number is not None:
        return number

    match = _SYMREF_RE.match(text.strip())
    if not match:
        raise ValueError(f"Expected a number or label, got '{text}'")
    name, sign, offset_text = match.groups()
    offset = 0
    if sign:
        offset = _parse_number(offset_text) if offset_text else None
        if offset is None:
            raise ValueError(f"Invalid label offset in '{text}'")
        if sign == '-':
            offset = -offset
    if name not in symbols:
        raise UndefinedSymbol(f"Undefined symbol: '{name}'")
    return symbols[name] + offset


# ──────────────────────────────────────────────
# The Assembler
# ──────────────────────────────────────────────

class Assembler:
    """Two-pass v8 assembler.

    Usage:
        asm = Assembler()
        image = asm.assemble(source_text)
        print(asm.listing())
    """

    def __init__(self, table: InstructionTable = DEFAULT_TABLE,
                 config: MachineConfig = DEFAULT_CONFIG):
        self.table = table
        self.config = config
        self.symbols: Dict[str, int] = {}       # label -> address (case-sensitive)
        self.pc: int = config.load_address      # location counter
        self.errors: List[AssemblyError] = []
        self._lines: List[AsmLine] = []
        self._words: Dict[int, int] = {}        # address -> encoded word

    def assemble(self, source: str) -> ProgramImage:
        """Assemble source text into a ProgramImage.

        Raises AssemblyError (or a subclass) on bad source, ImageTooLarge if
        the program does not fit in memory.
        """
        self.symbols = {}
        self.errors = []
        self._lines = []
        self._words = {}

        for i, line in enumerate(source.splitlines(), 1):
            try:
                self._lines.append(_parse_line(line, i))
            except AssemblyError as e:
                self.errors.append(e)
        self._raise_errors('parse')

        self._pass1()
        self._raise_errors('pass 1')

        self._pass2()
        self._raise_errors('pass 2')

        image = self._build_image()
        log.info("Assembled %d words, %d symbols", len(image), len(self.symbols))
        return image

    def _raise_errors(self, stage: str):
        if not self.errors:
            return
        for err in self.errors:
            log.debug("%s error: %s", stage, err)
        first = self.errors[0]
        first.errors = list(self.errors)
        raise first

    def _error(self, exc_type, message: str, line: AsmLine):
        self.errors.append(exc_type(message, line.line_num, line.raw))

    # --- Pass 1 ---

    def _pass1(self):
        """Pass 1: assign addresses and register labels."""
        self.pc = self.config.load_address
        capacity = self.config.memory_words

        for line in self._lines:
            if line.origin is not None:
                try:
                    origin = _parse_number(line.origin)
                except ValueError as e:
                    self._error(AssemblyError, str(e), line)
                    continue
                if origin is None:
                    self._error(AssemblyError, f"Origin must be numeric: '{line.origin}'", line)
                    continue
                if not self.config.load_address <= origin < capacity:
                    self._error(OperandOutOfRange,
                                f"Origin 0x{origin:X} outside memory "
                                f"(0x{self.config.load_address:X}..0x{capacity - 1:X})", line)
                    continue
                self.pc = origin

            if line.label is not None:
                if line.label in self.symbols:
                    self._error(DuplicateLabel,
                                f"Label '{line.label}' already defined "
                                f"(at 0x{self.symbols[line.label]:02X})", line)
                else:
                    self.symbols[line.label] = self.pc

            if line.mnemonic is None:
                continue
            if line.mnemonic not in DATA_DIRECTIVES and not self.table.has_mnemonic(line.mnemonic):
                self._error(UnknownMnemonic, f"Unknown mnemonic: {line.mnemonic}", line)
                continue
            line.address = self.pc
            self.pc += 1

        end = max((l.address + 1 for l in self._lines if l.address is not None),
                  default=self.config.load_address)
        if end > capacity:
            raise ImageTooLarge(end - self.config.load_address, capacity, self.config.load_address)

    # --- Pass 2 ---

    def _pass2(self):
        """Pass 2: encode every statement with the complete symbol table."""
        for line in self._lines:
            if line.address is None:
                continue
            try:
                word = self._encode_line(line)
            except AssemblyError as e:
                self.errors.append(type(e)(e.message, line.line_num, line.raw))
                continue
            except ValueError as e:
                self._error(AssemblyError, str(e), line)
                continue
            if line.address in self._words:
                self._error(AssemblyError, f"Overlapping code at 0x{line.address:02X}", line)
                continue
            self._words[line.address] = word

    def _encode_line(self, line: AsmLine) -> int:
        if line.mnemonic in DATA_DIRECTIVES:
            if len(line.operands) != 1:
                raise OperandCountMismatch(
                    f"{line.mnemonic} expects 1 operand, got {len(line.operands)}")
            value = _parse_value(line.operands[0], self.symbols)
            if not DATA_LOWEST <= value <= DATA_HIGHEST:
                raise OperandOutOfRange(f"{line.mnemonic}: value {value} does not fit a word")
            return value & 0xFFFF

        spec = self.table.by_mnemonic(line.mnemonic)
        if len(line.operands) != spec.operand_count:
            raise OperandCountMismatch(
                f"{spec.mnemonic} expects {spec.operand_count} operand(s), "
                f"got {len(line.operands)} ({spec.signature()})")
        values = tuple(self._operand_value(fld, text)
                       for fld, text in zip(spec.fields, line.operands))
        return self.table.encode(spec.mnemonic, values)

    def _operand_value(self, fld: Field, text: str) -> int:
        reg = _parse_register(text)
        if fld.kind == REG:
            if reg is None:
                raise AssemblyError(f"Expected register like R0..RF, got '{text}'")
            return reg
        if reg is not None and text.strip() not in self.symbols:
            raise AssemblyError(f"Expected {fld.kind.lower()} value, got register '{text}'")
        return _parse_value(text, self.symbols)

    # --- Output ---

    def _build_image(self) -> ProgramImage:
        base = self.config.load_address
        if not self._words:
            return ProgramImage((), base, dict(self.symbols))
        end = max(self._words) + 1
        words = [self._words.get(addr, 0) for addr in range(base, end)]
        return ProgramImage(tuple(words), base, dict(self.symbols))

    def listing(self) -> str:
        """Human-readable listing: address, encoded word, source."""
        lines = [f"{'ADDR':>4}  {'WORD':<4}  SOURCE", "-" * 48]
        for asmline in self._lines:
            raw = asmline.raw.strip()
            if asmline.address is not None and asmline.address in self._words:
                word = self._words[asmline.address]
                lines.append(f"{asmline.address:04X}  {word:04X}  {raw}")
            elif raw:
                lines.append(f"{'':4}  {'':4}  {raw}")
        return '\n'.join(lines)


# ──────────────────────────────────────────────
# Convenience functions
# ──────────────────────────────────────────────

def assemble(source: str, table: InstructionTable = DEFAULT_TABLE,
             config: MachineConfig = DEFAULT_CONFIG) -> ProgramImage:
    """Assemble source text, return the ProgramImage."""
    return Assembler(table, config).assemble(source)
