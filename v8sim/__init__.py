"""
v8sim — v8 CPU Simulator
========================
An assembler, loaders, execution engine and debug session controller for
a small 16-bit teaching CPU (16 registers, 256 words of memory).

Architecture:
    ┌──────────┐    ┌───────────┐    ┌──────────────┐    ┌──────────┐    ┌─────────┐
    │ .asm     │───>│ Assembler │───>│              │    │          │    │         │
    │ .hex     │───>│  Loaders  │───>│ ProgramImage │───>│  Engine  │<───│ Session │
    │ .bin     │───>│           │    │              │    │ (emu.py) │    │         │
    └──────────┘    └───────────┘    └──────────────┘    └──────────┘    └─────────┘

    - isa.py:       Instruction table; the assembler encodes with it, the
                    engine decodes and executes with it
    - emu.py:       fetch / decode / execute / commit, undo history
    - session.py:   READY/RUNNING/PAUSED/HALTED/FAULTED, breakpoints
    - render.py:    snapshot rendering for the CLI (v8kit.py)
"""

__version__ = "0.1.0"

from .assembler import Assembler, assemble
from .config import DEFAULT_CONFIG, MachineConfig
from .emu import MachineSnapshot, StepOutcome, StepResult, V8Emulator
from .errors import (
    AddressOutOfBounds, AssemblyError, DuplicateLabel, ExecutionFault,
    IllegalInstruction, ImageTooLarge, InvalidTransition, LoadError,
    MalformedHexToken, OperandCountMismatch, OperandOutOfRange,
    SimulatorError, TruncatedBinary, UndefinedSymbol, UnknownMnemonic,
)
from .image import InputFormat, ProgramImage
from .isa import DEFAULT_TABLE, Effect, InstructionSpec, InstructionTable
from .loaders import load_binary, load_hex, load_program
from .session import ExecutionState, PauseReason, Session, SessionSnapshot, new_session
