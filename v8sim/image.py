"""
v8sim -- Program Image

The one shape every input format is turned into: an ordered run of
words, the address they load at, and (for assembled programs only) the
symbol table.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple


class InputFormat(Enum):
    ASSEMBLY = 'assembly'
    HEX = 'hex'
    BINARY = 'binary'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class ProgramImage:
    words: Tuple[int, ...]
    load_address: int = 0
    symbols: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'words', tuple(w & 0xFFFF for w in self.words))

    def __len__(self) -> int:
        return len(self.words)

    @property
    def end_address(self) -> int:
        """First address past the image."""
        return self.load_address + len(self.words)

    def to_hex(self, per_line: int = 8) -> str:
        """Render as a hex-word listing the hex loader reads back."""
        lines = []
        for i in range(0, len(self.words), per_line):
            lines.append(' '.join(f'{w:04X}' for w in self.words[i:i + per_line]))
        return '\n'.join(lines) + ('\n' if lines else '')

    def to_bytes(self) -> bytes:
        """Big-endian raw binary image."""
        return b''.join(w.to_bytes(2, 'big') for w in self.words)
