"""
Listing printer - renders a MemoryImage as MPASM-style source text.

Layout:

    ; pic16dis listing
            processor 16f877a
    ; warning: <pass 2 warning>          (one per warning)

    STATUS          equ     0x03          (registers the program touches)
    L0830           equ     0x0830        (branch targets outside the image)

            org     0x0000
    reset_vector:
            goto    L0005                ; 0000: 2805  depth 0

Bank/page state is threaded in program order, exactly as in pass 1, so the
operand names match the labels pass 1 created.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from .analyzer import AnalysisResult
from .decoder import DecodedInstruction, Decoder
from .image import MemoryImage
from .state import ProcessorState
from .symbols import CONFIG_WORD_ADDRESS, SymbolTable

INDENT = " " * 8
TEXT_WIDTH = 28


class ListingPrinter:
    def __init__(self, processor: str = "16f877a", title: str = "pic16dis listing"):
        self.processor = processor
        self.title = title

    def render(self, image: MemoryImage, symbols: SymbolTable,
               analysis: Optional[AnalysisResult] = None,
               decoder: Optional[Decoder] = None) -> str:
        decoder = decoder or Decoder(symbols)
        decoded = self._decode_all(image, symbols, decoder)

        lines: List[str] = [f"; {self.title}", f"{INDENT}processor {self.processor}"]
        if analysis is not None:
            lines.append(f"; max call depth {analysis.max_depth}")
            for warning in analysis.warnings:
                lines.append(f"; warning: {warning}")
        lines.append("")

        equates = self._equates(decoded.values(), symbols)
        if equates:
            for name, index in equates.items():
                lines.append(f"{name:<16s}equ     0x{index:02X}")
            lines.append("")

        external = self._external_targets(decoded.values(), image)
        if external:
            for address in external:
                lines.append(f"{symbols.label_for(address):<16s}equ     0x{address:04X}")
            lines.append("")

        expected = None
        for address, word in image.items():
            if address != expected:
                lines.append(f"{INDENT}org     0x{address:04X}")
            expected = address + 1
            if symbols.has_label(address):
                lines.append(f"{symbols.labels[address]}:")
            inst = decoded.get(address)
            if inst is None:
                text = f"dw      0x{word:04X}"
                note = "config word" if address == CONFIG_WORD_ADDRESS else ""
            else:
                text = inst.format()
                note = "lookup table" if decoder.is_table_dispatch(word) else ""
            lines.append(self._line(address, word, text, note, analysis))
        return "\n".join(lines) + "\n"

    @staticmethod
    def _decode_all(image: MemoryImage, symbols: SymbolTable,
                    decoder: Decoder) -> Dict[int, DecodedInstruction]:
        state = ProcessorState()
        decoded: Dict[int, DecodedInstruction] = {}
        for address, word in image.items():
            if symbols.is_data_word(address):
                continue
            decoded[address] = decoder.decode_at(address, word, state)
        return decoded

    @staticmethod
    def _equates(instructions, symbols: SymbolTable) -> Dict[str, int]:
        """One equ per register name, at the lowest referenced index."""
        indices = [i.register for i in instructions if i.register is not None]
        equates: Dict[str, int] = {}
        for index, name in symbols.referenced_registers(indices).items():
            equates.setdefault(name, index)
        return equates

    @staticmethod
    def _external_targets(instructions, image: MemoryImage) -> List[int]:
        """Branch targets outside the image; their labels would never be defined."""
        return sorted({i.target for i in instructions
                       if i.target is not None and not image.is_present(i.target)})

    @staticmethod
    def _line(address: int, word: int, text: str, note: str,
              analysis: Optional[AnalysisResult]) -> str:
        comment = f"; {address:04X}: {word:04X}"
        if note:
            comment += f"  {note}"
        if analysis is not None:
            depth = analysis.depth_at(address)
            if depth is not None:
                comment += f"  depth {depth}"
        return f"{INDENT}{text:<{TEXT_WIDTH}s}{comment}"
