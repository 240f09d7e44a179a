"""
v8sim -- Execution Engine

Integrates:
  - CPU registers + flags (cpu/regs.py)
  - Word memory (mem/memory.py)
  - Instruction table (isa.py): decode + semantics
  - ALU helpers (cpu/alu.py), reached through the table's semantics

Execution model, one step():
  1. Fetch the word at PC (PC >= capacity -> AddressOutOfBounds)
  2. Decode through the instruction table (unknown opcode -> IllegalInstruction)
  3. Run the opcode's semantics against a read-only view -> Effect
  4. Validate every memory write address in the Effect
  5. Commit registers, memory, flags; PC <- jump target or PC + 1
  6. Push the inverse delta onto the undo history

A fault anywhere in 1-4 commits nothing. After a halt or a fault the
engine refuses to step until load() or reset().
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Optional, Tuple

from .config import DEFAULT_CONFIG, MachineConfig
from .cpu.regs import Registers, flags_to_dict
from .errors import (
    ExecutionFault, IllegalInstruction, ImageTooLarge, InvalidTransition,
    UnknownOpcode,
)
from .image import ProgramImage
from .isa import DEFAULT_TABLE, Effect, InstructionTable
from .mem.memory import Memory

log = logging.getLogger('v8sim.emu')


class StepResult(Enum):
    CONTINUED = 'CONTINUED'
    HALTED = 'HALTED'
    FAULTED = 'FAULTED'


@dataclass(frozen=True)
class StepOutcome:
    kind: StepResult
    pc: int                                 # address of the instruction attempted
    word: Optional[int] = None
    fault: Optional[ExecutionFault] = None

    @property
    def halted(self) -> bool:
        return self.kind is StepResult.HALTED

    @property
    def faulted(self) -> bool:
        return self.kind is StepResult.FAULTED

    def __str__(self):
        if self.fault is not None:
            return f"{self.kind.value}: {self.fault}"
        return self.kind.value


@dataclass(frozen=True)
class MachineSnapshot:
    pc: int
    registers: Tuple[int, ...]
    flags: int
    memory: Tuple[int, ...]
    steps: int = 0

    @property
    def flag_bits(self) -> Dict[str, bool]:
        return flags_to_dict(self.flags)


@dataclass(frozen=True)
class _UndoRecord:
    pc: int
    flags: int
    registers: Tuple[Tuple[int, int], ...]   # (index, old value)
    memory: Tuple[Tuple[int, int], ...]      # (address, old value)


class _MachineView:
    """Read-only access handed to semantics functions."""

    __slots__ = ('_regs', '_mem')

    def __init__(self, regs: Registers, mem: Memory):
        self._regs = regs
        self._mem = mem

    def reg(self, index: int) -> int:
        return self._regs.R[index]

    def mem(self, addr: int) -> int:
        return self._mem.read(addr)

    @property
    def flags(self) -> int:
        return self._regs.FLAGS


class V8Emulator:
    """v8 execution engine.

    Usage:
        emu = V8Emulator()
        emu.load(image)
        while True:
            outcome = emu.step()
            if outcome.kind is not StepResult.CONTINUED:
                break
        print(emu.regs.display())
    """

    def __init__(self, table: InstructionTable = DEFAULT_TABLE,
                 config: MachineConfig = DEFAULT_CONFIG):
        self.table = table
        self.config = config
        self.regs = Registers()
        self.mem = Memory(config.memory_words)
        self.image: Optional[ProgramImage] = None
        self.steps = 0
        self.last_write: Optional[Tuple[str, int]] = None   # ('reg', i) / ('mem', addr)
        self._stopped: Optional[StepOutcome] = None
        self._history: Deque[_UndoRecord] = deque(maxlen=config.history_limit or None)
        self._view = _MachineView(self.regs, self.mem)

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load(self, image: ProgramImage):
        """Zero the machine and place the image in memory.

        Raises ImageTooLarge (before touching any state) if it does not fit.
        """
        if image.load_address < 0 or image.end_address > self.mem.capacity:
            raise ImageTooLarge(len(image), self.mem.capacity, image.load_address)
        self.mem.clear()
        self.mem.load_words(image.words, image.load_address)
        self.regs.reset(pc=image.load_address)
        self.image = image
        self.steps = 0
        self.last_write = None
        self._stopped = None
        self._history.clear()
        log.info("Loaded %d words at 0x%02X", len(image), image.load_address)

    def reset(self):
        """Reload the last image."""
        if self.image is None:
            raise InvalidTransition("Nothing loaded")
        self.load(self.image)

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    @property
    def stopped(self) -> Optional[StepOutcome]:
        """The HALTED/FAULTED outcome that stopped the engine, if any."""
        return self._stopped

    def step(self) -> StepOutcome:
        """Execute one instruction."""
        if self._stopped is not None:
            raise InvalidTransition(
                f"Engine is {self._stopped.kind.value.lower()}; reset before stepping")

        pc = self.regs.PC
        word = None
        try:
            self.mem.check(pc, "fetch")
            word = self.mem.read(pc)
            try:
                spec, operands = self.table.decode(word)
            except UnknownOpcode as e:
                raise IllegalInstruction(e.opcode, pc, word) from None
            effect = spec.semantics(self._view, operands)
            for addr in effect.memory:
                self.mem.check(addr, "write")
        except ExecutionFault as fault:
            outcome = StepOutcome(StepResult.FAULTED, pc, word, fault)
            self._stopped = outcome
            log.warning("Fault at 0x%02X: %s", pc, fault)
            return outcome

        if log.isEnabledFor(logging.DEBUG):
            log.debug("%02X: %04X  %s", pc, word, self.table.disassemble(word))
        self._commit(pc, effect)

        if effect.halt:
            outcome = StepOutcome(StepResult.HALTED, pc, word)
            self._stopped = outcome
            log.info("Halted at 0x%02X after %d steps: %s", pc, self.steps, self.regs.display())
            return outcome
        return StepOutcome(StepResult.CONTINUED, pc, word)

    def _commit(self, pc: int, effect: Effect):
        regs, mem = self.regs, self.mem
        if self.config.history_limit:
            self._history.append(_UndoRecord(
                pc=pc,
                flags=regs.FLAGS,
                registers=tuple((i, regs.R[i]) for i in effect.registers),
                memory=tuple((a, mem.read(a)) for a in effect.memory),
            ))

        self.last_write = None
        for index, value in effect.registers.items():
            regs[index] = value
            self.last_write = ('reg', index)
        for addr, value in effect.memory.items():
            mem.write(addr, value)
            self.last_write = ('mem', addr)
        if effect.flags is not None:
            regs.set_flags(effect.flags)
        regs.PC = effect.jump if effect.jump is not None else pc + 1
        self.steps += 1

    # ══════════════════════════════════════════════
    # Undo
    # ══════════════════════════════════════════════

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    def undo(self) -> bool:
        """Revert the most recent step. Returns False if there is no history."""
        if self._stopped is not None:
            raise InvalidTransition("Cannot undo on a stopped engine; reset first")
        if not self._history:
            return False
        record = self._history.pop()
        for index, value in record.registers:
            self.regs[index] = value
        for addr, value in reversed(record.memory):
            self.mem.write(addr, value)
        self.regs.set_flags(record.flags)
        self.regs.PC = record.pc
        self.steps -= 1
        self.last_write = None
        log.debug("Undo -> PC=0x%02X", record.pc)
        return True

    # ══════════════════════════════════════════════
    # Inspection
    # ══════════════════════════════════════════════

    def snapshot(self) -> MachineSnapshot:
        return MachineSnapshot(
            pc=self.regs.PC,
            registers=self.regs.as_tuple(),
            flags=self.regs.FLAGS,
            memory=self.mem.snapshot(),
            steps=self.steps,
        )

    def current_instruction(self) -> str:
        """Disassembly of the word at PC, or '' when PC is outside memory."""
        pc = self.regs.PC
        if not 0 <= pc < self.mem.capacity:
            return ''
        return self.table.disassemble(self.mem.read(pc))
