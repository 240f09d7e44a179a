"""
Instruction table tests.

The same table encodes for the assembler and decodes for the engine, so
encode -> decode must give back the mnemonic and operands for every
opcode.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from v8sim.errors import (
    IllegalInstruction, OperandCountMismatch, OperandOutOfRange,
    UnknownMnemonic, UnknownOpcode,
)
from v8sim.isa import (
    ADDR, DEFAULT_TABLE, REG, SHAPE_NONE, InstructionSpec, InstructionTable, op_nop,
)


class TestRoundTrip:
    """encode and decode are inverses."""

    def _sample_operands(self, spec):
        values = []
        for i, fld in enumerate(spec.fields):
            if fld.kind == REG:
                values.append((3 + 4 * i) & 0xF)
            elif fld.kind == ADDR:
                values.append(0xA5)
            else:
                values.append(0x7E)
        return tuple(values)

    def test_every_opcode_round_trips(self):
        for spec in DEFAULT_TABLE:
            operands = self._sample_operands(spec)
            word = DEFAULT_TABLE.encode(spec.mnemonic, operands)
            decoded, values = DEFAULT_TABLE.decode(word)
            assert decoded.opcode == spec.opcode, spec.mnemonic
            assert values == operands, spec.mnemonic

    def test_catalogue_is_complete(self):
        """All sixteen 4-bit opcodes are assigned, in order."""
        assert len(DEFAULT_TABLE) == 16
        assert [s.opcode for s in DEFAULT_TABLE] == list(range(16))

    def test_known_encodings(self):
        cases = [
            ('LOADB', (0x0, 0x10), 0x2010),
            ('LOADB', (0xC, 0x00), 0x2C00),
            ('MOVE', (0x1, 0x2), 0x4021),
            ('ADDI', (0xC, 0xC, 0x2), 0x5CC2),
            ('JUMP', (0x2, 0x10), 0xB210),
            ('HALT', (), 0xC000),
            ('LOADP', (0x1, 0x2), 0xD102),
            ('JUMPL', (0x3, 0x20), 0xF320),
        ]
        for mnem, operands, expected in cases:
            assert DEFAULT_TABLE.encode(mnem, operands) == expected, mnem

    def test_negative_immediate_is_twos_complement(self):
        assert DEFAULT_TABLE.encode('LOADB', (0, -1)) == 0x20FF
        assert DEFAULT_TABLE.encode('LOADB', (0, -128)) == 0x2080

    def test_negative_immediate_decodes_unsigned(self):
        """-1 and 255 encode to the same word; decode gives the unsigned form."""
        word = DEFAULT_TABLE.encode('LOADB', (1, -1))
        assert word == DEFAULT_TABLE.encode('LOADB', (1, 255))
        _, values = DEFAULT_TABLE.decode(word)
        assert values == (1, 255)
        assert DEFAULT_TABLE.disassemble(word) == 'LOADB R1, 0xFF'


class TestTableErrors:
    """Lookup and range failures."""

    def test_unknown_mnemonic(self):
        with pytest.raises(UnknownMnemonic):
            DEFAULT_TABLE.encode('FROB', ())

    def test_mnemonic_lookup_ignores_case(self):
        assert DEFAULT_TABLE.by_mnemonic('addi').opcode == 0x5
        assert DEFAULT_TABLE.has_mnemonic('Halt')

    def test_operand_count(self):
        with pytest.raises(OperandCountMismatch):
            DEFAULT_TABLE.encode('ADDI', (1, 2))
        with pytest.raises(OperandCountMismatch):
            DEFAULT_TABLE.encode('HALT', (1,))

    def test_operand_range(self):
        with pytest.raises(OperandOutOfRange):
            DEFAULT_TABLE.encode('LOADB', (16, 0))
        with pytest.raises(OperandOutOfRange):
            DEFAULT_TABLE.encode('LOADB', (0, 256))
        with pytest.raises(OperandOutOfRange):
            DEFAULT_TABLE.encode('LOADB', (0, -129))
        with pytest.raises(OperandOutOfRange):
            DEFAULT_TABLE.encode('LOADM', (0, -1))

    def test_missing_opcode_decodes_as_illegal(self):
        table = DEFAULT_TABLE.without(0xF)
        assert 0xF not in table
        assert len(table) == 15
        with pytest.raises(UnknownOpcode) as excinfo:
            table.decode(0xF123)
        assert isinstance(excinfo.value, IllegalInstruction)
        assert excinfo.value.opcode == 0xF

    def test_duplicates_rejected(self):
        with pytest.raises(ValueError):
            InstructionTable([
                InstructionSpec(0x0, 'NOP', SHAPE_NONE, op_nop),
                InstructionSpec(0x0, 'IDLE', SHAPE_NONE, op_nop),
            ])
        with pytest.raises(ValueError):
            InstructionTable([
                InstructionSpec(0x0, 'NOP', SHAPE_NONE, op_nop),
                InstructionSpec(0x1, 'nop', SHAPE_NONE, op_nop),
            ])


class TestDisassembly:

    def test_formats(self):
        assert DEFAULT_TABLE.disassemble(0x2010) == 'LOADB R0, 0x10'
        assert DEFAULT_TABLE.disassemble(0x4021) == 'MOVE R1, R2'
        assert DEFAULT_TABLE.disassemble(0x5CC2) == 'ADDI RC, RC, R2'
        assert DEFAULT_TABLE.disassemble(0xC000) == 'HALT'

    def test_unknown_word(self):
        assert DEFAULT_TABLE.without(0xF).disassemble(0xF123) == '??? 0xF123'
