"""
v8sim error taxonomy.

Three families, one per phase of a program's life:

  AssemblyError   -- raised while turning mnemonic source into an image
  LoadError       -- raised while decoding hex/binary input or placing an image
  ExecutionFault  -- raised inside a step; the engine turns it into a
                     FAULTED StepOutcome and commits nothing

Halting is not an error. It is reported as a StepOutcome.
"""

from typing import Optional


class SimulatorError(Exception):
    """Base class for everything v8sim raises on bad input or misuse."""


# ──────────────────────────────────────────────
# Assembly
# ──────────────────────────────────────────────

class AssemblyError(SimulatorError):
    """Raised on assembly errors. Carries the offending source line."""

    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.message = message
        self.line_num = line_num
        self.line_text = line_text
        text = f"Line {line_num}: {message}" if line_num else message
        if line_text.strip():
            text += f"\n    {line_text.strip()}"
        super().__init__(text)


class DuplicateLabel(AssemblyError):
    pass


class UndefinedSymbol(AssemblyError):
    pass


class OperandCountMismatch(AssemblyError):
    pass


class OperandOutOfRange(AssemblyError):
    pass


class UnknownMnemonic(AssemblyError):
    pass


# ──────────────────────────────────────────────
# Loading
# ──────────────────────────────────────────────

class LoadError(SimulatorError):
    """Raised before execution when an input cannot become a program image."""


class MalformedHexToken(LoadError):
    def __init__(self, token: str, line_num: int = 0):
        self.token = token
        self.line_num = line_num
        where = f" on line {line_num}" if line_num else ""
        super().__init__(f"Malformed hex token {token!r}{where}: expected exactly 4 hex digits")


class TruncatedBinary(LoadError):
    def __init__(self, length: int):
        self.length = length
        super().__init__(f"Binary image has odd length ({length} bytes); words are 2 bytes")


class ImageTooLarge(LoadError):
    def __init__(self, size: int, capacity: int, load_address: int = 0):
        self.size = size
        self.capacity = capacity
        self.load_address = load_address
        super().__init__(
            f"Program image of {size} words at 0x{load_address:02X} "
            f"exceeds memory capacity ({capacity} words)")


# ──────────────────────────────────────────────
# Execution
# ──────────────────────────────────────────────

class ExecutionFault(SimulatorError):
    """A terminal fault. The machine must be reset before stepping again."""

    def __init__(self, message: str, address: Optional[int] = None):
        self.address = address
        super().__init__(message)


class IllegalInstruction(ExecutionFault):
    def __init__(self, opcode: int, address: Optional[int] = None, word: Optional[int] = None):
        self.opcode = opcode
        self.word = word
        where = f" at 0x{address:02X}" if address is not None else ""
        super().__init__(f"Illegal instruction: opcode 0x{opcode:X}{where}", address)


class UnknownOpcode(IllegalInstruction):
    """Instruction table lookup miss."""


class AddressOutOfBounds(ExecutionFault):
    def __init__(self, address: int, capacity: int, what: str = "access"):
        self.capacity = capacity
        self.what = what
        super().__init__(
            f"Address out of bounds: {what} at 0x{address:X} "
            f"(memory is {capacity} words)", address)


class InvalidTransition(SimulatorError):
    """An operation was requested in a state that does not allow it."""
