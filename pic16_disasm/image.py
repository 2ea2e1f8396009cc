"""
PIC16 Program Image - sparse word map with a presence mask.

Word addresses run from 0x0000 to 0x21FF:
  $0000-$1FFF  Program memory (4 pages x 2K words)
  $2000-$2003  User ID locations
  $2007        Configuration word
  $2100-$21FF  Data EEPROM contents (one byte per word)

Two loaders are provided:
  - Intel HEX (INHX8M / INHX32), the format MPLAB and gpasm emit. Byte
    addresses in the file are twice the word address, low byte first.
  - Raw binary, little-endian 16-bit words starting at a base word address.

Locations never written by the loader are absent: the disassembler skips
them and an avenue in the call-depth analyzer stops when it reaches one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple, Union

from .symbols import IMAGE_ADDRESS_LIMIT

__all__ = ['MemoryImage', 'ImageFormatError', 'load_intel_hex', 'load_binary']


class ImageFormatError(Exception):
    """Raised when a program image cannot be parsed."""
    def __init__(self, message: str, line_num: int = 0):
        self.line_num = line_num
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


class MemoryImage:
    """Word-addressed program image with a per-address presence mask."""

    def __init__(self, limit: int = IMAGE_ADDRESS_LIMIT):
        self.limit = limit
        self.words: Dict[int, int] = {}
        self.present = bytearray(limit)

    @classmethod
    def from_words(cls, words, base: int = 0) -> "MemoryImage":
        """Build an image from a sequence of words starting at base."""
        image = cls()
        for offset, word in enumerate(words):
            image.set_word(base + offset, word)
        return image

    @classmethod
    def from_file(cls, path: Union[str, Path], fmt: Optional[str] = None) -> "MemoryImage":
        """Load a .hex or .bin file; fmt overrides the extension."""
        path = Path(path)
        if fmt is None:
            fmt = "bin" if path.suffix.lower() == ".bin" else "hex"
        if fmt == "bin":
            return load_binary(path.read_bytes())
        return load_intel_hex(path.read_text(encoding="ascii", errors="replace"))

    # ── Access ────────────────────────────────

    def set_word(self, address: int, word: int):
        if not 0 <= address < self.limit:
            raise ImageFormatError(f"Word address 0x{address:04X} outside image (limit 0x{self.limit:04X})")
        self.words[address] = word & 0xFFFF
        self.present[address] = 1

    def set_byte(self, byte_address: int, value: int):
        """Write one byte of a little-endian word, keeping the other half."""
        address = byte_address >> 1
        word = self.words.get(address, 0)
        if byte_address & 1:
            word = (word & 0x00FF) | ((value & 0xFF) << 8)
        else:
            word = (word & 0xFF00) | (value & 0xFF)
        self.set_word(address, word)

    def is_present(self, address: int) -> bool:
        return 0 <= address < self.limit and self.present[address] == 1

    def word_at(self, address: int) -> Optional[int]:
        return self.words.get(address)

    def __getitem__(self, address: int) -> int:
        return self.words[address]

    def __contains__(self, address: int) -> bool:
        return self.is_present(address)

    def __len__(self) -> int:
        return len(self.words)

    def items(self) -> Iterator[Tuple[int, int]]:
        """(address, word) pairs in increasing address order."""
        for address in sorted(self.words):
            yield address, self.words[address]

    @property
    def codesize(self) -> int:
        """Highest present address + 1 (0 for an empty image)."""
        return max(self.words) + 1 if self.words else 0


# ═══════════════════════════════════════════════════════════════════════
# LOADERS
# ═══════════════════════════════════════════════════════════════════════

def load_intel_hex(text: str) -> MemoryImage:
    """Parse Intel HEX text into a MemoryImage.

    Supports data (00), end of file (01), extended segment address (02) and
    extended linear address (04) records. Every record checksum is verified.
    """
    image = MemoryImage()
    upper = 0
    for line_num, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line:
            continue
        if not line.startswith(':'):
            raise ImageFormatError(f"Record does not start with ':': {line[:20]!r}", line_num)
        try:
            record = bytes.fromhex(line[1:])
        except ValueError:
            raise ImageFormatError("Record contains non-hex characters", line_num)
        if len(record) < 5:
            raise ImageFormatError("Record too short", line_num)
        count, addr_hi, addr_lo, rec_type = record[0], record[1], record[2], record[3]
        if len(record) != count + 5:
            raise ImageFormatError(f"Byte count {count} does not match record length", line_num)
        if sum(record) & 0xFF:
            raise ImageFormatError(f"Checksum mismatch (stored 0x{record[-1]:02X})", line_num)
        data = record[4:-1]

        if rec_type == 0x00:
            base = upper + ((addr_hi << 8) | addr_lo)
            for i, value in enumerate(data):
                byte_address = base + i
                if (byte_address >> 1) >= image.limit:
                    raise ImageFormatError(
                        f"Data at byte address 0x{byte_address:06X} is beyond word 0x{image.limit:04X}",
                        line_num)
                image.set_byte(byte_address, value)
        elif rec_type == 0x01:
            break
        elif rec_type == 0x02:
            if count != 2:
                raise ImageFormatError("Extended segment record needs 2 data bytes", line_num)
            upper = ((data[0] << 8) | data[1]) << 4
        elif rec_type == 0x04:
            if count != 2:
                raise ImageFormatError("Extended linear record needs 2 data bytes", line_num)
            upper = ((data[0] << 8) | data[1]) << 16
        elif rec_type in (0x03, 0x05):
            # Start address records carry no program data
            continue
        else:
            raise ImageFormatError(f"Unsupported record type 0x{rec_type:02X}", line_num)
    return image


def load_binary(data: bytes, base: int = 0) -> MemoryImage:
    """Load raw little-endian 16-bit words starting at word address base."""
    if len(data) % 2:
        raise ImageFormatError(f"Binary image has odd length ({len(data)} bytes)")
    if base + len(data) // 2 > IMAGE_ADDRESS_LIMIT:
        raise ImageFormatError(
            f"Binary image of {len(data) // 2} words at 0x{base:04X} exceeds 0x{IMAGE_ADDRESS_LIMIT:04X}")
    image = MemoryImage()
    for i in range(0, len(data), 2):
        image.set_word(base + i // 2, data[i] | (data[i + 1] << 8))
    return image
