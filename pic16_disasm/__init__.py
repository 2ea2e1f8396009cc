"""
KingAI PIC16 Disassembler
=========================
Disassembler and static call-depth analyzer for the PIC16 mid-range (14-bit
core) instruction set. Turns a .hex/.bin program image into MPASM-style
source, and optionally reports the deepest call nesting reachable from the
reset and interrupt vectors, which is what overflows the 8-level hardware
stack.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌───────────┐    ┌───────────┐    ┌──────────┐
    │  Image   │───>│  Pass 1  │───>│  Pass 2   │───>│  Listing  │───>│  .asm    │
    │(hex/bin) │    │ (labels) │    │ (depths)  │    │ (printer) │    │  .dot    │
    └──────────┘    └──────────┘    └───────────┘    └───────────┘    └──────────┘

    - opcodes.py:   Instruction table, mnemonic enum, category sets
    - symbols.py:   Register/bit/label names, data ranges, device profiles
    - state.py:     Bank / code page state threaded through decoding
    - decoder.py:   Word -> mnemonic + operands, bsf/bcf state hook
    - image.py:     Sparse word image, Intel HEX and binary loaders
    - hints.py:     User hint files (labels, registers, bits, data)
    - scanner.py:   Pass 1, one linear sweep that labels branch targets
    - analyzer.py:  Pass 2, worklist call-depth analysis and call graph
    - listing.py:   Source listing output
    - callgraph.py: Graphviz DOT output
    - logconfig.py: Rich console + file logging setup
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

__version__ = "0.1.0"
__author__ = "KingAI"

from .opcodes import INSTRUCTION_TABLE, InstructionSpec, Mnemonic, OperandKind
from .symbols import DEVICE_PROFILES, PROGRAM_MEMORY_LIMIT, SymbolTable
from .state import ProcessorState
from .decoder import DecodedInstruction, Decoder
from .image import ImageFormatError, MemoryImage, load_binary, load_intel_hex
from .hints import HintFileError, load_hint_file, load_hints
from .scanner import LabelScanner, ScanResult
from .analyzer import (
    AnalysisResult, AnalyzerOptions, CallDepthAnalyzer, CallGraphEdge,
    DepthLimitError, EdgeKind,
)
from .listing import ListingPrinter
from .callgraph import CallGraphExporter

log = logging.getLogger(__name__)


@dataclass
class Disassembly:
    listing: str
    symbols: SymbolTable
    scan: ScanResult
    analysis: Optional[AnalysisResult] = None


def device_profile(device: str) -> dict:
    """Look up a device profile. Raises KeyError for unknown names."""
    try:
        return DEVICE_PROFILES[device]
    except KeyError:
        raise KeyError(f"Unknown device '{device}' (choices: {', '.join(DEVICE_PROFILES)})")


def disassemble_image(image: MemoryImage, symbols: Optional[SymbolTable] = None, *,
                      analyze: bool = False, options: Optional[AnalyzerOptions] = None,
                      device: str = "generic") -> Disassembly:
    """Run the full pipeline on a loaded image.

    Pipeline: pass 1 (labels) -> pass 2 (call depths, when analyze) -> listing.

    Args:
        image: Program image, e.g. from MemoryImage.from_file().
        symbols: Symbol table already seeded from hint files (default: built-ins).
        analyze: Run the call-depth analyzer.
        options: Analyzer options. When omitted, memory_limit comes from the device.
        device: Key into DEVICE_PROFILES.

    Raises:
        DepthLimitError: a call chain is deeper than options.max_depth.
    """
    profile = device_profile(device)
    symbols = symbols if symbols is not None else SymbolTable()
    decoder = Decoder(symbols)

    beyond = [a for a, _ in image.items()
              if profile["program_words"] <= a < PROGRAM_MEMORY_LIMIT]
    if beyond:
        log.warning("Image has %d words beyond the %s program memory (first at 0x%04X)",
                    len(beyond), device, beyond[0])

    scan = LabelScanner(symbols, decoder).scan(image)

    analysis = None
    if analyze:
        if options is None:
            options = AnalyzerOptions(memory_limit=profile["program_words"])
        analysis = CallDepthAnalyzer(image, symbols, decoder, options).run()

    listing = ListingPrinter(processor=profile["processor"]).render(image, symbols, analysis, decoder)
    return Disassembly(listing, symbols, scan, analysis)
