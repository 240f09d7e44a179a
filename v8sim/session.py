"""
v8sim -- Debug Session Controller

One Session owns one engine, its breakpoint set and the execution state:

    READY ──step()──────────────► PAUSED / HALTED / FAULTED
    READY ──run()──► RUNNING ───► PAUSED (breakpoint, pause request, step cap)
                        │   └───► HALTED / FAULTED
    PAUSED ──step()/run()/resume()/undo()
    any but RUNNING ──reset()───► READY

Breakpoints are checked against the instruction about to execute, only
inside run(). A run that starts from PAUSED executes its first
instruction unconditionally, so resuming from a breakpoint moves past it.

Everything is synchronous. run() is a bounded loop that polls a pause
request between steps; interactive front ends call pause() (directly or
from the should_pause callback) to stop a long-running program.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Set, Tuple, Union

from .config import DEFAULT_CONFIG, MachineConfig
from .cpu.regs import flags_to_dict
from .emu import StepOutcome, StepResult, V8Emulator
from .errors import ExecutionFault, InvalidTransition
from .image import InputFormat, ProgramImage
from .isa import DEFAULT_TABLE, InstructionTable
from .loaders import load_program

log = logging.getLogger('v8sim.session')


class ExecutionState(Enum):
    READY = 'READY'
    RUNNING = 'RUNNING'
    PAUSED = 'PAUSED'
    HALTED = 'HALTED'
    FAULTED = 'FAULTED'


class PauseReason(Enum):
    STEP = 'STEP'                 # single step finished
    BREAKPOINT = 'BREAKPOINT'
    REQUESTED = 'REQUESTED'       # pause() / should_pause
    STEP_LIMIT = 'STEP_LIMIT'
    UNDO = 'UNDO'


_ALLOWED_STATE_TRANSITIONS: Dict[ExecutionState, Set[ExecutionState]] = {
    ExecutionState.READY: {
        ExecutionState.READY,
        ExecutionState.RUNNING,
        ExecutionState.PAUSED,
        ExecutionState.HALTED,
        ExecutionState.FAULTED,
    },
    ExecutionState.RUNNING: {
        ExecutionState.PAUSED,
        ExecutionState.HALTED,
        ExecutionState.FAULTED,
    },
    ExecutionState.PAUSED: {
        ExecutionState.READY,
        ExecutionState.RUNNING,
        ExecutionState.PAUSED,
        ExecutionState.HALTED,
        ExecutionState.FAULTED,
    },
    ExecutionState.HALTED: {ExecutionState.READY},
    ExecutionState.FAULTED: {ExecutionState.READY},
}


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything a renderer needs after a transition."""
    pc: int
    registers: Tuple[int, ...]
    flags: int
    state: ExecutionState
    memory_view: Tuple[int, ...]
    last_outcome: Optional[StepOutcome] = None
    error: Optional[ExecutionFault] = None
    breakpoints: FrozenSet[int] = frozenset()
    steps: int = 0
    pause_reason: Optional[PauseReason] = None
    last_write: Optional[Tuple[str, int]] = None
    instruction: str = ''          # disassembly of the word at PC

    @property
    def flag_bits(self) -> Dict[str, bool]:
        return flags_to_dict(self.flags)


class Session:
    """Debug session over one loaded program."""

    def __init__(self, image: ProgramImage, config: Optional[MachineConfig] = None,
                 table: InstructionTable = DEFAULT_TABLE):
        self.config = config or DEFAULT_CONFIG
        self.engine = V8Emulator(table, self.config)
        self.engine.load(image)
        self.state = ExecutionState.READY
        self.last_outcome: Optional[StepOutcome] = None
        self.error: Optional[ExecutionFault] = None
        self.pause_reason: Optional[PauseReason] = None
        self._breakpoints: Set[int] = set()
        self._pause_requested = False

    # ══════════════════════════════════════════════
    # State machine plumbing
    # ══════════════════════════════════════════════

    def _require(self, operation: str, *states: ExecutionState):
        if self.state not in states:
            raise InvalidTransition(
                f"Cannot {operation} while {self.state.value} "
                f"(allowed in: {', '.join(s.value for s in states)})")

    def _transition(self, new: ExecutionState):
        if new not in _ALLOWED_STATE_TRANSITIONS[self.state]:
            raise InvalidTransition(f"Invalid state transition {self.state.value} -> {new.value}")
        if new is not self.state:
            log.debug("State %s -> %s", self.state.value, new.value)
        self.state = new

    def _pause(self, reason: PauseReason):
        self.pause_reason = reason
        self._transition(ExecutionState.PAUSED)

    def _execute(self) -> StepOutcome:
        """One engine step; moves to HALTED/FAULTED when the step ends the program."""
        outcome = self.engine.step()
        self.last_outcome = outcome
        if outcome.kind is StepResult.FAULTED:
            self.error = outcome.fault
            self._transition(ExecutionState.FAULTED)
        elif outcome.kind is StepResult.HALTED:
            self._transition(ExecutionState.HALTED)
        return outcome

    # ══════════════════════════════════════════════
    # Execution control
    # ══════════════════════════════════════════════

    def step(self) -> ExecutionState:
        """Execute exactly one instruction. Breakpoints do not apply."""
        self._require('step', ExecutionState.READY, ExecutionState.PAUSED)
        outcome = self._execute()
        if outcome.kind is StepResult.CONTINUED:
            self._pause(PauseReason.STEP)
        return self.state

    def run(self, max_steps: Optional[int] = None,
            should_pause: Optional[Callable[[], bool]] = None) -> ExecutionState:
        """Run until halt, fault, breakpoint, pause request or step cap.

        Args:
            max_steps:    instructions to execute at most before pausing
                          (default: config.run_step_limit, None = no cap)
            should_pause: polled before every instruction; a truthy result
                          (or a pause() call from inside it) pauses the run

        Returns:
            the ExecutionState the run ended in
        """
        self._require('run', ExecutionState.READY, ExecutionState.PAUSED)
        if max_steps is None:
            max_steps = self.config.run_step_limit
        if max_steps is not None and max_steps < 1:
            raise ValueError("max_steps must be >= 1")

        check_breakpoint = self.state is ExecutionState.READY
        self._pause_requested = False
        self.pause_reason = None
        self._transition(ExecutionState.RUNNING)

        executed = 0
        try:
            while True:
                if should_pause is not None and should_pause():
                    self._pause_requested = True
                if self._pause_requested:
                    self._pause_requested = False
                    log.info("Paused on request at 0x%02X", self.engine.regs.PC)
                    self._pause(PauseReason.REQUESTED)
                    break

                pc = self.engine.regs.PC
                if check_breakpoint and pc in self._breakpoints:
                    log.warning("Breakpoint hit at 0x%02X", pc)
                    self._pause(PauseReason.BREAKPOINT)
                    break
                check_breakpoint = True

                if max_steps is not None and executed >= max_steps:
                    log.info("Step limit (%d) reached at 0x%02X", max_steps, pc)
                    self._pause(PauseReason.STEP_LIMIT)
                    break

                outcome = self._execute()
                executed += 1
                if outcome.kind is not StepResult.CONTINUED:
                    break
        except BaseException:
            # Never leave the session stuck in RUNNING
            if self.state is ExecutionState.RUNNING:
                self._pause_requested = False
                log.warning("Run aborted at 0x%02X", self.engine.regs.PC)
                self._pause(PauseReason.REQUESTED)
            raise

        return self.state

    def resume(self, max_steps: Optional[int] = None,
               should_pause: Optional[Callable[[], bool]] = None) -> ExecutionState:
        """Continue a paused run."""
        self._require('resume', ExecutionState.PAUSED)
        return self.run(max_steps, should_pause)

    def pause(self) -> bool:
        """Ask a running loop to stop before its next instruction.

        Returns True if a pause was requested, False if nothing is running.
        """
        if self.state is not ExecutionState.RUNNING:
            return False
        self._pause_requested = True
        return True

    def reset(self, image: Optional[ProgramImage] = None) -> ExecutionState:
        """Reload the last image (or a new one) and return to READY.

        Breakpoints are kept. A new image that does not fit raises
        ImageTooLarge and leaves the session as it was.
        """
        if self.state is ExecutionState.RUNNING:
            raise InvalidTransition("Cannot reset while RUNNING; pause first")
        if image is not None:
            self.engine.load(image)
        else:
            self.engine.reset()
        self.last_outcome = None
        self.error = None
        self.pause_reason = None
        self._pause_requested = False
        self._transition(ExecutionState.READY)
        log.info("Session reset")
        return self.state

    def undo(self) -> bool:
        """Revert the last executed instruction."""
        self._require('undo', ExecutionState.READY, ExecutionState.PAUSED)
        if not self.engine.undo():
            return False
        self.last_outcome = None
        if self.engine.steps == 0:
            self.pause_reason = None
            self._transition(ExecutionState.READY)
        else:
            self._pause(PauseReason.UNDO)
        return True

    # ══════════════════════════════════════════════
    # Breakpoints
    # ══════════════════════════════════════════════

    def toggle_breakpoint(self, address: int) -> bool:
        """Flip the breakpoint at address. Returns True if it is now set."""
        if not 0 <= address < self.config.memory_words:
            raise ValueError(
                f"Breakpoint address 0x{address:X} outside memory "
                f"(0..0x{self.config.memory_words - 1:X})")
        if address in self._breakpoints:
            self._breakpoints.remove(address)
            return False
        self._breakpoints.add(address)
        return True

    @property
    def breakpoints(self) -> FrozenSet[int]:
        return frozenset(self._breakpoints)

    # ══════════════════════════════════════════════
    # Inspection
    # ══════════════════════════════════════════════

    def snapshot(self) -> SessionSnapshot:
        machine = self.engine.snapshot()
        return SessionSnapshot(
            pc=machine.pc,
            registers=machine.registers,
            flags=machine.flags,
            state=self.state,
            memory_view=machine.memory,
            last_outcome=self.last_outcome,
            error=self.error,
            breakpoints=self.breakpoints,
            steps=machine.steps,
            pause_reason=self.pause_reason,
            last_write=self.engine.last_write,
            instruction=self.engine.current_instruction(),
        )


def new_session(fmt: Union[InputFormat, str], source: Union[str, bytes],
                config: Optional[MachineConfig] = None,
                table: InstructionTable = DEFAULT_TABLE) -> Session:
    """Load source in the given format and open a Session on it.

    Raises LoadError or AssemblyError; nothing is executed.
    """
    config = config or DEFAULT_CONFIG
    image = load_program(fmt, source, config, table)
    return Session(image, config, table)
