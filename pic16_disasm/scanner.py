"""
Pass 1 - label / reference scanner.

One forward sweep over every present address below ``codesize``. Every CALL
and GOTO target gets a label (synthesized ``Lxxxx`` unless a hint already
named it) so the listing printer can refer to it.

Known limitation: bank and page state is carried in *program order*, not
control-flow order. A ``bsf PCLATH,3`` just before a ``return`` still
affects the GOTO that happens to follow it in memory. The call-depth analyzer
(pass 2) threads state along real paths; this pass only has to make sure
branch targets have names, and listings depend on its exact behaviour, so it
is kept as is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .decoder import Decoder
from .image import MemoryImage
from .opcodes import BRANCH_MNEMONICS, Mnemonic
from .state import ProcessorState
from .symbols import SymbolTable

log = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Summary of the label sweep."""
    instructions: int = 0
    data_words: int = 0
    unknown: List[int] = field(default_factory=list)
    # (source address, target address, mnemonic)
    references: List[Tuple[int, int, Mnemonic]] = field(default_factory=list)
    labels_created: int = 0


class LabelScanner:
    def __init__(self, symbols: SymbolTable, decoder: Optional[Decoder] = None):
        self.symbols = symbols
        self.decoder = decoder or Decoder(symbols)

    def scan(self, image: MemoryImage) -> ScanResult:
        result = ScanResult()
        state = ProcessorState()
        labels_before = len(self.symbols.labels)

        for address in range(image.codesize):
            if not image.is_present(address):
                continue
            if self.symbols.is_data_word(address):
                result.data_words += 1
                continue
            word = image[address]
            inst = self.decoder.decode_at(address, word, state)
            result.instructions += 1
            if inst.is_unknown:
                result.unknown.append(address)
            elif inst.mnemonic in BRANCH_MNEMONICS:
                result.references.append((address, inst.target, inst.mnemonic))

        result.labels_created = len(self.symbols.labels) - labels_before
        log.debug("Pass 1: %d instructions, %d data words, %d references, %d new labels",
                  result.instructions, result.data_words, len(result.references),
                  result.labels_created)
        if result.unknown:
            log.info("Pass 1: %d words decode to no instruction", len(result.unknown))
        return result
