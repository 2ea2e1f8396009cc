"""
Processor state simulated while walking instructions in program order.

Only the two pieces of state that change how operands resolve are tracked:

  bank       STATUS<RP1:RP0>   selects the 128-byte file register bank
  code_page  PCLATH<4:3>       selects the 2K page for CALL / GOTO targets

Nothing here is stored per address. Pass 1 keeps one instance for the whole
linear sweep; pass 2 builds a fresh one for each avenue.
"""

from __future__ import annotations

from dataclasses import dataclass

from .symbols import PAGE_SIZE, STATE_BITS


@dataclass
class ProcessorState:
    bank: int = 0
    code_page: int = 0

    @classmethod
    def for_address(cls, address: int) -> "ProcessorState":
        """State at the entry of code that starts at address: page from the address, bank 0."""
        return cls(bank=0, code_page=(address // PAGE_SIZE) & 0x3)

    def copy(self) -> "ProcessorState":
        return ProcessorState(self.bank, self.code_page)

    def apply_bit(self, register: str, bit_name: str, set_bit: bool) -> bool:
        """Set or clear a bank/page flag. Returns True if the bit is tracked."""
        target = STATE_BITS.get((register, bit_name))
        if target is None:
            return False
        field_name, position = target
        value = getattr(self, field_name)
        if set_bit:
            value |= 1 << position
        else:
            value &= ~(1 << position)
        setattr(self, field_name, value & 0x3)
        return True

    def __str__(self) -> str:
        return f"bank {self.bank}, page {self.code_page}"
