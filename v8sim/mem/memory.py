"""
v8sim -- Flat Word Memory

Von Neumann layout: code and data share one array of 16-bit words,
addressed 0..capacity-1. There is no wraparound. Any access outside the
array raises AddressOutOfBounds, which the engine reports as a fault.
"""

from typing import Iterable, List, Tuple

from ..config import MEMORY_WORDS, WORD_MASK
from ..errors import AddressOutOfBounds, ImageTooLarge


class Memory:
    """Word-addressable memory with bounds checking."""

    def __init__(self, capacity: int = MEMORY_WORDS):
        self.capacity = capacity
        self._mem: List[int] = [0] * capacity

    def __len__(self) -> int:
        return self.capacity

    def check(self, addr: int, what: str = "access") -> int:
        if not 0 <= addr < self.capacity:
            raise AddressOutOfBounds(addr, self.capacity, what)
        return addr

    # --- Core read/write ---

    def read(self, addr: int) -> int:
        return self._mem[self.check(addr, "read")]

    def write(self, addr: int, value: int):
        self._mem[self.check(addr, "write")] = value & WORD_MASK

    # --- Bulk load ---

    def clear(self):
        self._mem = [0] * self.capacity

    def load_words(self, words: Iterable[int], base_addr: int = 0):
        """Place words at consecutive addresses starting at base_addr.

        Nothing is written unless the whole image fits.
        """
        words = list(words)
        if base_addr < 0 or base_addr + len(words) > self.capacity:
            raise ImageTooLarge(len(words), self.capacity, base_addr)
        self._mem[base_addr:base_addr + len(words)] = [w & WORD_MASK for w in words]

    # --- Snapshots ---

    def snapshot(self) -> Tuple[int, ...]:
        return tuple(self._mem)

    # --- Hex dump ---

    def hexdump(self, start: int = 0, length: int = None, per_line: int = 8) -> str:
        """Hex dump of memory, one row of `per_line` words per line."""
        if length is None:
            length = self.capacity - start
        end = min(self.capacity, start + length)
        lines = []
        for addr in range(start, end, per_line):
            row = ' '.join(f'{w:04X}' for w in self._mem[addr:min(end, addr + per_line)])
            lines.append(f'{addr:04X}:  {row}')
        return '\n'.join(lines)
