"""
Hint files - user-supplied names for labels, registers, bits and data ranges.

One directive per line; ``#`` or ``;`` start a comment:

    label  0x0010  main_loop      ; name a code address
    reg    0x20    counter        ; name a file register (9-bit index)
    bit    PORTB   3  LED         ; name a bit (register by name or index)
    data   0x0300  0x0320  table  ; words rendered as dw, end exclusive

Numbers may be written 0x1F, $1F, 1Fh or 31. An h-suffixed number must
start with a digit (0FFh), as in MPASM.

Hints are applied before pass 1, so every name they give wins over the
synthesized ``Lxxxx`` labels.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Union

from .symbols import IMAGE_ADDRESS_LIMIT, SymbolTable

log = logging.getLogger(__name__)

_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_.]*$')
REGISTER_LIMIT = 0x200


class HintFileError(Exception):
    """Raised on a malformed hint line."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


def parse_number(text: str) -> int:
    """Parse 0x.. / $.. / ..h hex or plain decimal. Raises ValueError."""
    text = text.strip()
    if text.startswith('0x') or text.startswith('0X'):
        return int(text, 16)
    if text.startswith('$'):
        return int(text[1:], 16)
    if text[-1:] in ('h', 'H') and text[:1].isdigit():
        return int(text[:-1], 16)
    if text.isdigit():
        return int(text)
    raise ValueError(f"not a number: {text!r}")


def _strip_comment(line: str) -> str:
    for marker in ('#', ';'):
        pos = line.find(marker)
        if pos >= 0:
            line = line[:pos]
    return line.strip()


class HintLoader:
    """Applies hint directives to a SymbolTable."""

    def __init__(self, symbols: SymbolTable):
        self.symbols = symbols
        self.applied = 0
        self.ignored: List[str] = []

    def load(self, text: str) -> int:
        """Apply every directive in text. Returns the number applied."""
        for line_num, raw in enumerate(text.splitlines(), 1):
            line = _strip_comment(raw)
            if not line:
                continue
            fields = line.split()
            directive = fields[0].lower()
            handler = getattr(self, f"_do_{directive}", None)
            if handler is None:
                raise HintFileError(f"Unknown directive '{fields[0]}'", line_num, raw)
            handler(fields[1:], line_num, raw)
            self.applied += 1
        return self.applied

    # ── Helpers ───────────────────────────────

    def _number(self, text: str, line_num: int, raw: str, limit: int) -> int:
        try:
            value = parse_number(text)
        except ValueError:
            raise HintFileError(f"Bad number '{text}'", line_num, raw)
        if not 0 <= value < limit:
            raise HintFileError(f"Value 0x{value:X} out of range (limit 0x{limit:X})", line_num, raw)
        return value

    def _name(self, text: str, line_num: int, raw: str) -> str:
        if not _NAME_RE.match(text):
            raise HintFileError(f"Invalid name '{text}'", line_num, raw)
        return text

    @staticmethod
    def _arity(fields: List[str], low: int, high: int, usage: str, line_num: int, raw: str):
        if not low <= len(fields) <= high:
            raise HintFileError(f"Expected: {usage}", line_num, raw)

    # ── Directives ────────────────────────────

    def _do_label(self, fields, line_num, raw):
        self._arity(fields, 2, 2, "label ADDR NAME", line_num, raw)
        address = self._number(fields[0], line_num, raw, IMAGE_ADDRESS_LIMIT)
        name = self._name(fields[1], line_num, raw)
        if not self.symbols.add_label(address, name):
            message = (f"Line {line_num}: 0x{address:04X} already labelled "
                       f"'{self.symbols.labels[address]}', '{name}' ignored")
            log.warning(message)
            self.ignored.append(message)

    def _do_reg(self, fields, line_num, raw):
        self._arity(fields, 2, 2, "reg ADDR NAME", line_num, raw)
        index = self._number(fields[0], line_num, raw, REGISTER_LIMIT)
        self.symbols.set_register(index, self._name(fields[1], line_num, raw))

    def _do_bit(self, fields, line_num, raw):
        self._arity(fields, 3, 3, "bit REG BIT NAME", line_num, raw)
        register = fields[0]
        try:
            index = parse_number(register)
        except ValueError:
            register = self._name(register, line_num, raw)
        else:
            register = self.symbols.register_name(index)
            if register is None:
                raise HintFileError(f"Register 0x{index:X} has no name, add a 'reg' line first",
                                    line_num, raw)
        bit = self._number(fields[1], line_num, raw, 8)
        self.symbols.set_bit_name(register, bit, self._name(fields[2], line_num, raw))

    def _do_data(self, fields, line_num, raw):
        self._arity(fields, 2, 3, "data START END [NAME]", line_num, raw)
        start = self._number(fields[0], line_num, raw, IMAGE_ADDRESS_LIMIT)
        end = self._number(fields[1], line_num, raw, IMAGE_ADDRESS_LIMIT + 1)
        if end <= start:
            raise HintFileError(f"Empty data range 0x{start:04X}-0x{end:04X}", line_num, raw)
        name = self._name(fields[2], line_num, raw) if len(fields) == 3 else None
        self.symbols.add_data_range(start, end, name)


def load_hints(text: str, symbols: SymbolTable) -> int:
    """Apply hint text to symbols. Returns the number of directives applied."""
    return HintLoader(symbols).load(text)


def load_hint_file(path: Union[str, Path], symbols: SymbolTable) -> int:
    path = Path(path)
    count = load_hints(path.read_text(encoding="utf-8"), symbols)
    log.info("Loaded %d hints from %s", count, path)
    return count
