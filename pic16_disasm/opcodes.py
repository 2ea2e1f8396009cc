"""
PIC16 Mid-Range Instruction Table
=================================
Complete 14-bit core instruction set (PIC16Cxx / PIC16Fxx).

Each entry is a (match value, match mask, operand kind) triple. A word is
decoded by the first entry whose ``(word & mask) == value``. The table is laid
out so that any valid instruction word matches exactly one entry; words in the
reserved encodings match none and decode as UNKNOWN.

Encoding summary (bit 13 on the left):

  Byte-oriented   00 oooo dfff ffff   f = file register, d = 0 -> W, 1 -> F
  Bit-oriented    01 oobb bfff ffff   b = bit number
  Literal         11 oooo kkkk kkkk   k = 8-bit literal
  Control         10 okkk kkkk kkkk   k = 11-bit address (CALL / GOTO)

Source: Microchip PIC16F87XA data sheet (DS39582), Table 15-2.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


# ──────────────────────────────────────────────
# Operand kinds
# ──────────────────────────────────────────────

class OperandKind(Enum):
    NONE = "none"
    FILE = "file"             # f
    FILE_BIT = "file_bit"     # f, b
    FILE_DEST = "file_dest"   # f, d
    LITERAL8 = "literal8"     # k (8 bits)
    LITERAL11 = "literal11"   # k (11 bits, absolute branch)


class Mnemonic(Enum):
    ADDWF = "addwf"
    ANDWF = "andwf"
    CLRF = "clrf"
    CLRW = "clrw"
    COMF = "comf"
    DECF = "decf"
    DECFSZ = "decfsz"
    INCF = "incf"
    INCFSZ = "incfsz"
    IORWF = "iorwf"
    MOVF = "movf"
    MOVWF = "movwf"
    NOP = "nop"
    RLF = "rlf"
    RRF = "rrf"
    SUBWF = "subwf"
    SWAPF = "swapf"
    XORWF = "xorwf"
    BCF = "bcf"
    BSF = "bsf"
    BTFSC = "btfsc"
    BTFSS = "btfss"
    ADDLW = "addlw"
    ANDLW = "andlw"
    CALL = "call"
    CLRWDT = "clrwdt"
    GOTO = "goto"
    IORLW = "iorlw"
    MOVLW = "movlw"
    RETFIE = "retfie"
    RETLW = "retlw"
    RETURN = "return"
    SLEEP = "sleep"
    SUBLW = "sublw"
    XORLW = "xorlw"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class InstructionSpec:
    """One row of the instruction table."""
    mnemonic: Mnemonic
    match_value: int
    match_mask: int
    operand_kind: OperandKind
    description: str = ""

    def matches(self, word: int) -> bool:
        return (word & self.match_mask) == self.match_value

    @property
    def name(self) -> str:
        return self.mnemonic.value

    def __str__(self) -> str:
        return f"{self.name:7s} ({self.match_value:04X}/{self.match_mask:04X}, {self.operand_kind.value})"


# ──────────────────────────────────────────────
# Instruction table
# ──────────────────────────────────────────────

def _build_table() -> Tuple[InstructionSpec, ...]:
    S = InstructionSpec
    M = Mnemonic
    n = OperandKind.NONE; f = OperandKind.FILE; fb = OperandKind.FILE_BIT
    fd = OperandKind.FILE_DEST; k8 = OperandKind.LITERAL8; k11 = OperandKind.LITERAL11
    return (
        # Byte-oriented file register operations
        S(M.ADDWF,  0x0700, 0x3F00, fd, "Add W and f"),
        S(M.ANDWF,  0x0500, 0x3F00, fd, "AND W with f"),
        S(M.CLRF,   0x0180, 0x3F80, f,  "Clear f"),
        S(M.CLRW,   0x0100, 0x3F80, n,  "Clear W"),
        S(M.COMF,   0x0900, 0x3F00, fd, "Complement f"),
        S(M.DECF,   0x0300, 0x3F00, fd, "Decrement f"),
        S(M.DECFSZ, 0x0B00, 0x3F00, fd, "Decrement f, skip if 0"),
        S(M.INCF,   0x0A00, 0x3F00, fd, "Increment f"),
        S(M.INCFSZ, 0x0F00, 0x3F00, fd, "Increment f, skip if 0"),
        S(M.IORWF,  0x0400, 0x3F00, fd, "Inclusive OR W with f"),
        S(M.MOVF,   0x0800, 0x3F00, fd, "Move f"),
        S(M.MOVWF,  0x0080, 0x3F80, f,  "Move W to f"),
        S(M.NOP,    0x0000, 0x3F9F, n,  "No operation"),
        S(M.RLF,    0x0D00, 0x3F00, fd, "Rotate left f through carry"),
        S(M.RRF,    0x0C00, 0x3F00, fd, "Rotate right f through carry"),
        S(M.SUBWF,  0x0200, 0x3F00, fd, "Subtract W from f"),
        S(M.SWAPF,  0x0E00, 0x3F00, fd, "Swap nibbles in f"),
        S(M.XORWF,  0x0600, 0x3F00, fd, "Exclusive OR W with f"),
        # Bit-oriented file register operations
        S(M.BCF,    0x1000, 0x3C00, fb, "Bit clear f"),
        S(M.BSF,    0x1400, 0x3C00, fb, "Bit set f"),
        S(M.BTFSC,  0x1800, 0x3C00, fb, "Bit test f, skip if clear"),
        S(M.BTFSS,  0x1C00, 0x3C00, fb, "Bit test f, skip if set"),
        # Literal and control operations
        S(M.ADDLW,  0x3E00, 0x3E00, k8, "Add literal and W"),
        S(M.ANDLW,  0x3900, 0x3F00, k8, "AND literal with W"),
        S(M.CALL,   0x2000, 0x3800, k11, "Call subroutine"),
        S(M.CLRWDT, 0x0064, 0x3FFF, n,  "Clear watchdog timer"),
        S(M.GOTO,   0x2800, 0x3800, k11, "Go to address"),
        S(M.IORLW,  0x3800, 0x3F00, k8, "Inclusive OR literal with W"),
        S(M.MOVLW,  0x3000, 0x3C00, k8, "Move literal to W"),
        S(M.RETFIE, 0x0009, 0x3FFF, n,  "Return from interrupt"),
        S(M.RETLW,  0x3400, 0x3C00, k8, "Return with literal in W"),
        S(M.RETURN, 0x0008, 0x3FFF, n,  "Return from subroutine"),
        S(M.SLEEP,  0x0063, 0x3FFF, n,  "Go into standby mode"),
        S(M.SUBLW,  0x3C00, 0x3E00, k8, "Subtract W from literal"),
        S(M.XORLW,  0x3A00, 0x3F00, k8, "Exclusive OR literal with W"),
    )


INSTRUCTION_TABLE: Tuple[InstructionSpec, ...] = _build_table()

UNKNOWN_INSTRUCTION = InstructionSpec(Mnemonic.UNKNOWN, 0x0000, 0x0000, OperandKind.NONE,
                                      "Reserved or undefined encoding")


# ──────────────────────────────────────────────
# Mnemonic categories used by the analyzer
# ──────────────────────────────────────────────

SKIP_MNEMONICS = frozenset({Mnemonic.BTFSC, Mnemonic.BTFSS, Mnemonic.DECFSZ, Mnemonic.INCFSZ})
RETURN_MNEMONICS = frozenset({Mnemonic.RETURN, Mnemonic.RETFIE})
BRANCH_MNEMONICS = frozenset({Mnemonic.CALL, Mnemonic.GOTO})
BIT_SET_CLEAR = frozenset({Mnemonic.BSF, Mnemonic.BCF})
# Instructions allowed inside a computed-jump table
TABLE_MNEMONICS = frozenset({Mnemonic.GOTO, Mnemonic.RETLW, Mnemonic.NOP})

# addwf PCL, F
TABLE_DISPATCH_WORD = 0x0782
WORD_MASK = 0x3FFF
