"""
v8sim -- Program Loaders

Hex listing:  whitespace/newline separated tokens of exactly 4 hex digits,
              one big-endian word each. `;` starts a comment to end of line.
Raw binary:   even-length byte stream, pairs decoded big-endian.

Both produce a ProgramImage without symbols. load_program() dispatches on
InputFormat and is the single entry point the session layer uses.
"""

import logging
import re
import struct
from typing import Union

from .assembler import Assembler
from .config import DEFAULT_CONFIG, MachineConfig
from .errors import ImageTooLarge, LoadError, MalformedHexToken, TruncatedBinary
from .image import InputFormat, ProgramImage
from .isa import DEFAULT_TABLE, InstructionTable

log = logging.getLogger('v8sim.loaders')

_HEX_WORD_RE = re.compile(r'^[0-9A-Fa-f]{4}$')


def _check_capacity(image: ProgramImage, config: MachineConfig) -> ProgramImage:
    if image.end_address > config.memory_words:
        raise ImageTooLarge(len(image), config.memory_words, image.load_address)
    return image


def load_hex(text: str, config: MachineConfig = DEFAULT_CONFIG) -> ProgramImage:
    """Decode a hex-word listing into a ProgramImage."""
    words = []
    for line_num, line in enumerate(text.splitlines(), 1):
        semi = line.find(';')
        if semi >= 0:
            line = line[:semi]
        for token in line.split():
            if not _HEX_WORD_RE.match(token):
                raise MalformedHexToken(token, line_num)
            words.append(int(token, 16))
    log.debug("Hex listing decoded: %d words", len(words))
    return _check_capacity(ProgramImage(tuple(words), config.load_address), config)


def load_binary(data: bytes, config: MachineConfig = DEFAULT_CONFIG) -> ProgramImage:
    """Decode a raw big-endian byte stream into a ProgramImage."""
    if len(data) % 2:
        raise TruncatedBinary(len(data))
    words = struct.unpack(f'>{len(data) // 2}H', data)
    log.debug("Binary image decoded: %d words", len(words))
    return _check_capacity(ProgramImage(words, config.load_address), config)


def _as_text(source: Union[str, bytes]) -> str:
    if isinstance(source, str):
        return source
    try:
        return bytes(source).decode('utf-8')
    except UnicodeDecodeError as e:
        raise LoadError(f"Failed to parse input as text: {e}") from None


def load_program(fmt: Union[InputFormat, str], source: Union[str, bytes],
                 config: MachineConfig = DEFAULT_CONFIG,
                 table: InstructionTable = DEFAULT_TABLE) -> ProgramImage:
    """Turn source in any supported format into a ProgramImage.

    Raises LoadError for hex/binary problems and AssemblyError for
    assembly problems.
    """
    try:
        fmt = InputFormat(fmt)
    except ValueError:
        raise LoadError(f"Unknown input format: {fmt!r}") from None

    if fmt is InputFormat.ASSEMBLY:
        return Assembler(table, config).assemble(_as_text(source))
    if fmt is InputFormat.HEX:
        return load_hex(_as_text(source), config)
    if isinstance(source, str):
        raise LoadError("Binary input must be bytes, not text")
    return load_binary(bytes(source), config)
