"""
v8sim machine configuration.

The defaults describe the v8 teaching CPU widened to 16-bit words:
256 words of memory, sixteen registers, programs loaded at address 0.
"""

from dataclasses import dataclass
from typing import Optional


# =============================================================================
#  ARCHITECTURE CONSTANTS
# =============================================================================
WORD_BITS = 16
WORD_MASK = 0xFFFF
REGISTER_COUNT = 16
MEMORY_WORDS = 256          # every 8-bit address field is a valid address
LOAD_ADDRESS = 0x00

# Undo history depth (steps). 0 disables history.
HISTORY_LIMIT = 4096


@dataclass(frozen=True)
class MachineConfig:
    memory_words: int = MEMORY_WORDS
    word_bits: int = WORD_BITS
    register_count: int = REGISTER_COUNT
    load_address: int = LOAD_ADDRESS
    history_limit: int = HISTORY_LIMIT
    run_step_limit: Optional[int] = None   # None = run until halt/fault/break

    def __post_init__(self):
        if self.word_bits != WORD_BITS:
            raise ValueError(f"word_bits must be {WORD_BITS} (got {self.word_bits})")
        if self.register_count != REGISTER_COUNT:
            raise ValueError(f"register_count must be {REGISTER_COUNT}")
        if not 1 <= self.memory_words <= (1 << WORD_BITS):
            raise ValueError(f"memory_words out of range: {self.memory_words}")
        if not 0 <= self.load_address < self.memory_words:
            raise ValueError(f"load_address 0x{self.load_address:X} outside memory")
        if self.history_limit < 0:
            raise ValueError("history_limit must be >= 0")
        if self.run_step_limit is not None and self.run_step_limit < 1:
            raise ValueError("run_step_limit must be >= 1 or None")


DEFAULT_CONFIG = MachineConfig()
