"""
PIC16 Instruction Decoder
=========================
Turns 14-bit program words into mnemonics and rendered operands.

Operand rendering depends on the simulated ProcessorState (bank for file
registers, code page for CALL / GOTO). Rendering a ``bsf`` / ``bcf`` on
STATUS.RP0/RP1 or PCLATH<3>/<4> also updates that state, so any caller that
walks instructions in program order keeps bank/page tracking in step with
the disassembly simply by rendering each instruction once.

API Usage:
    from pic16_disasm.decoder import Decoder
    from pic16_disasm.state import ProcessorState
    from pic16_disasm.symbols import SymbolTable

    dec = Decoder(SymbolTable())
    state = ProcessorState()
    inst = dec.decode_at(0x0000, 0x1683, state)   # bsf STATUS, RP0
    print(inst.format())                           # "bsf     STATUS, RP0"
    print(state.bank)                              # 1
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .opcodes import (
    BIT_SET_CLEAR, BRANCH_MNEMONICS, INSTRUCTION_TABLE, TABLE_DISPATCH_WORD,
    UNKNOWN_INSTRUCTION, WORD_MASK, InstructionSpec, Mnemonic, OperandKind,
)
from .state import ProcessorState
from .symbols import SymbolTable


@dataclass
class DecodedInstruction:
    """One decoded word with its rendered operands."""
    address: int
    word: int
    spec: InstructionSpec
    operands: str = ""
    target: Optional[int] = None        # absolute CALL / GOTO target
    register: Optional[int] = None      # full file register index, if any

    @property
    def mnemonic(self) -> Mnemonic:
        return self.spec.mnemonic

    @property
    def is_unknown(self) -> bool:
        return self.spec.mnemonic is Mnemonic.UNKNOWN

    def format(self, width: int = 8) -> str:
        if self.is_unknown:
            return f"{'unknown':{width}s}0x{self.word:04X}"
        if not self.operands:
            return self.spec.name
        return f"{self.spec.name:{width}s}{self.operands}"


def hex_literal(value: int, digits: int = 2) -> str:
    return f"0x{value:0{digits}X}"


class Decoder:
    """Mid-range instruction decoder bound to a symbol table."""

    def __init__(self, symbols: SymbolTable):
        self.symbols = symbols
        self._cache: Dict[int, InstructionSpec] = {}

    # ── Structural decode ─────────────────────

    def decode(self, word: int) -> InstructionSpec:
        """Return the first table entry matching word, or UNKNOWN_INSTRUCTION."""
        spec = self._cache.get(word)
        if spec is None:
            spec = UNKNOWN_INSTRUCTION
            for candidate in INSTRUCTION_TABLE:
                if candidate.matches(word):
                    spec = candidate
                    break
            self._cache[word] = spec
        return spec

    @staticmethod
    def is_table_dispatch(word: int) -> bool:
        """addwf PCL, F - start of a computed-jump table."""
        return (word & WORD_MASK) == TABLE_DISPATCH_WORD

    @staticmethod
    def register_index(word: int, state: ProcessorState) -> int:
        return (word & 0x7F) + (state.bank << 7)

    @staticmethod
    def branch_target(word: int, state: ProcessorState) -> int:
        return (word & 0x7FF) | (state.code_page << 11)

    # ── Operand rendering ─────────────────────

    def _register_text(self, index: int) -> str:
        name = self.symbols.register_name(index)
        return name if name is not None else hex_literal(index)

    def resolve_operands(self, word: int, address: int, state: ProcessorState) -> str:
        """Render the operands of word at address.

        Side effect: bsf/bcf on a bank or page select bit updates state.
        Literal11 targets without a label get one synthesized.
        """
        spec = self.decode(word)
        kind = spec.operand_kind

        if kind is OperandKind.FILE:
            return self._register_text(self.register_index(word, state))

        if kind is OperandKind.FILE_DEST:
            dest = "F" if word & 0x80 else "W"
            return f"{self._register_text(self.register_index(word, state))}, {dest}"

        if kind is OperandKind.FILE_BIT:
            index = self.register_index(word, state)
            reg_name = self.symbols.register_name(index)
            bit = (word >> 7) & 0x7
            bit_name = self.symbols.bit_name(reg_name, bit)
            if spec.mnemonic in BIT_SET_CLEAR and reg_name and bit_name:
                state.apply_bit(reg_name, bit_name, spec.mnemonic is Mnemonic.BSF)
            reg_text = reg_name if reg_name is not None else hex_literal(index)
            return f"{reg_text}, {bit_name if bit_name is not None else bit}"

        if kind is OperandKind.LITERAL8:
            return hex_literal(word & 0xFF)

        if kind is OperandKind.LITERAL11:
            return self.symbols.label_for(self.branch_target(word, state))

        return ""

    def decode_at(self, address: int, word: int, state: ProcessorState) -> DecodedInstruction:
        """Decode and render one instruction, applying the state hook once."""
        spec = self.decode(word)
        target = None
        register = None
        if spec.mnemonic in BRANCH_MNEMONICS:
            target = self.branch_target(word, state)
        elif spec.operand_kind in (OperandKind.FILE, OperandKind.FILE_DEST, OperandKind.FILE_BIT):
            register = self.register_index(word, state)
        operands = self.resolve_operands(word, address, state)
        return DecodedInstruction(address, word, spec, operands, target, register)
