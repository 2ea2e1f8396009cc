"""
PIC16 Symbol Tables - register names, bit names, labels and data ranges.

Register indices are full 9-bit file addresses: the 7-bit operand from the
instruction word plus the bank (RP1:RP0) in bits 7-8. The default register
map follows the PIC16F877A special function register layout, which is a
superset of the smaller mid-range parts.

Labels come from two places:
  - user hints (hint files, built-in vector names); a hint may rename a
    vector, nothing else is ever replaced
  - synthesized on demand as "L" + 4 hex digits - cached once assigned
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple


# ──────────────────────────────────────────────
# Address space constants
# ──────────────────────────────────────────────

PROGRAM_MEMORY_LIMIT = 0x2000    # 8K words, 4 pages of 2K
IMAGE_ADDRESS_LIMIT = 0x2200     # program + config + EEPROM
CONFIG_WORD_ADDRESS = 0x2007
EEPROM_DATA_RANGE = (0x2100, 0x2200)
PAGE_SIZE = 0x800

RESET_VECTOR = 0x0000
INTERRUPT_VECTOR = 0x0004


# ──────────────────────────────────────────────
# Device profiles
# ──────────────────────────────────────────────
# Program memory sizes in words. "generic" covers the whole 8K space.

DEVICE_PROFILES: Dict[str, Dict] = {
    "generic": {
        "processor": "16f877a",
        "program_words": 0x2000,
        "description": "Any mid-range part, full 8K word space",
    },
    "16f84a": {
        "processor": "16f84a",
        "program_words": 0x0400,
        "description": "PIC16F84A, 1K words, 2 banks",
    },
    "16f628a": {
        "processor": "16f628a",
        "program_words": 0x0800,
        "description": "PIC16F628A, 2K words, 4 banks",
    },
    "16f877a": {
        "processor": "16f877a",
        "program_words": 0x2000,
        "description": "PIC16F877A, 8K words, 4 banks",
    },
}


# ──────────────────────────────────────────────
# Special function registers
# ──────────────────────────────────────────────

# Registers mirrored in every bank
_MIRRORED = {
    0x00: "INDF", 0x02: "PCL", 0x03: "STATUS", 0x04: "FSR",
    0x0A: "PCLATH", 0x0B: "INTCON",
}

_BANKED = {
    # Bank 0
    0x001: "TMR0",    0x005: "PORTA",   0x006: "PORTB",   0x007: "PORTC",
    0x008: "PORTD",   0x009: "PORTE",   0x00C: "PIR1",    0x00D: "PIR2",
    0x00E: "TMR1L",   0x00F: "TMR1H",   0x010: "T1CON",   0x011: "TMR2",
    0x012: "T2CON",   0x013: "SSPBUF",  0x014: "SSPCON",  0x015: "CCPR1L",
    0x016: "CCPR1H",  0x017: "CCP1CON", 0x018: "RCSTA",   0x019: "TXREG",
    0x01A: "RCREG",   0x01B: "CCPR2L",  0x01C: "CCPR2H",  0x01D: "CCP2CON",
    0x01E: "ADRESH",  0x01F: "ADCON0",
    # Bank 1
    0x081: "OPTION_REG", 0x085: "TRISA", 0x086: "TRISB", 0x087: "TRISC",
    0x088: "TRISD",   0x089: "TRISE",   0x08C: "PIE1",    0x08D: "PIE2",
    0x08E: "PCON",    0x091: "SSPCON2", 0x092: "PR2",     0x093: "SSPADD",
    0x094: "SSPSTAT", 0x098: "TXSTA",   0x099: "SPBRG",   0x09C: "CMCON",
    0x09D: "CVRCON",  0x09E: "ADRESL",  0x09F: "ADCON1",
    # Bank 2
    0x101: "TMR0",    0x106: "PORTB",   0x10C: "EEDATA",  0x10D: "EEADR",
    0x10E: "EEDATH",  0x10F: "EEADRH",
    # Bank 3
    0x181: "OPTION_REG", 0x186: "TRISB", 0x18C: "EECON1", 0x18D: "EECON2",
}


def default_register_names() -> Dict[int, str]:
    """Return a fresh register index -> name map."""
    names: Dict[int, str] = {}
    for bank in range(4):
        for offset, name in _MIRRORED.items():
            names[(bank << 7) | offset] = name
    names.update(_BANKED)
    return names


# Bit names, keyed by register name then bit number
DEFAULT_BIT_NAMES: Dict[str, Dict[int, str]] = {
    "STATUS": {0: "C", 1: "DC", 2: "Z", 3: "NOT_PD", 4: "NOT_TO", 5: "RP0", 6: "RP1", 7: "IRP"},
    "PCLATH": {3: "PCLATH3", 4: "PCLATH4"},
    "INTCON": {0: "RBIF", 1: "INTF", 2: "TMR0IF", 3: "RBIE", 4: "INTE", 5: "TMR0IE", 6: "PEIE", 7: "GIE"},
    "OPTION_REG": {0: "PS0", 1: "PS1", 2: "PS2", 3: "PSA", 4: "T0SE", 5: "T0CS", 6: "INTEDG", 7: "NOT_RBPU"},
    "PIR1": {0: "TMR1IF", 1: "TMR2IF", 2: "CCP1IF", 3: "SSPIF", 4: "TXIF", 5: "RCIF", 6: "ADIF", 7: "PSPIF"},
    "PIE1": {0: "TMR1IE", 1: "TMR2IE", 2: "CCP1IE", 3: "SSPIE", 4: "TXIE", 5: "RCIE", 6: "ADIE", 7: "PSPIE"},
    "PIR2": {0: "CCP2IF", 3: "BCLIF", 4: "EEIF", 6: "CMIF"},
    "PIE2": {0: "CCP2IE", 3: "BCLIE", 4: "EEIE", 6: "CMIE"},
    "T1CON": {0: "TMR1ON", 1: "TMR1CS", 2: "NOT_T1SYNC", 3: "T1OSCEN", 4: "T1CKPS0", 5: "T1CKPS1"},
    "T2CON": {0: "T2CKPS0", 1: "T2CKPS1", 2: "TMR2ON", 3: "TOUTPS0", 4: "TOUTPS1", 5: "TOUTPS2", 6: "TOUTPS3"},
    "RCSTA": {0: "RX9D", 1: "OERR", 2: "FERR", 3: "ADDEN", 4: "CREN", 5: "SREN", 6: "RX9", 7: "SPEN"},
    "TXSTA": {0: "TX9D", 1: "TRMT", 2: "BRGH", 4: "SYNC", 5: "TXEN", 6: "TX9", 7: "CSRC"},
    "ADCON0": {0: "ADON", 2: "GO_DONE", 3: "CHS0", 4: "CHS1", 5: "CHS2", 6: "ADCS0", 7: "ADCS1"},
    "ADCON1": {0: "PCFG0", 1: "PCFG1", 2: "PCFG2", 3: "PCFG3", 6: "ADCS2", 7: "ADFM"},
    "EECON1": {0: "RD", 1: "WR", 2: "WREN", 3: "WRERR", 7: "EEPGD"},
    "PCON": {0: "NOT_BOR", 1: "NOT_POR"},
}

# (register name, bit name) -> (state field, bit position within that field)
STATE_BITS: Dict[Tuple[str, str], Tuple[str, int]] = {
    ("STATUS", "RP0"): ("bank", 0),
    ("STATUS", "RP1"): ("bank", 1),
    ("PCLATH", "PCLATH3"): ("code_page", 0),
    ("PCLATH", "PCLATH4"): ("code_page", 1),
}

DEFAULT_LABELS: Dict[int, str] = {
    RESET_VECTOR: "reset_vector",
    INTERRUPT_VECTOR: "interrupt_vector",
}


def synthesized_label(address: int) -> str:
    return f"L{address:04X}"


@dataclass
class DataRange:
    """Half-open range of word addresses rendered as raw data."""
    start: int
    end: int
    name: Optional[str] = None

    def contains(self, address: int) -> bool:
        return self.start <= address < self.end


class SymbolTable:
    """Register, bit and label names shared by the decoder and both passes.

    Every component consults and extends the same instance. Labels are
    write-once: ``add_label`` refuses to replace an existing name and
    ``label_for`` only synthesizes when nothing is assigned yet.
    """

    def __init__(self,
                 registers: Optional[Dict[int, str]] = None,
                 bit_names: Optional[Dict[str, Dict[int, str]]] = None,
                 labels: Optional[Dict[int, str]] = None,
                 builtin_labels: bool = True):
        self.registers: Dict[int, str] = default_register_names()
        if registers:
            self.registers.update(registers)
        self.bit_names: Dict[str, Dict[int, str]] = {
            reg: dict(bits) for reg, bits in DEFAULT_BIT_NAMES.items()
        }
        if bit_names:
            for reg, bits in bit_names.items():
                self.bit_names.setdefault(reg, {}).update(bits)
        self.labels: Dict[int, str] = {}
        self.user_labels: Set[int] = set()
        # Vector names a hint file may still rename
        self._builtin: Set[int] = set()
        self.data_ranges: List[DataRange] = [DataRange(*EEPROM_DATA_RANGE, name="eeprom_data")]
        for addr, name in (labels or {}).items():
            self.add_label(addr, name)
        if builtin_labels:
            for addr, name in DEFAULT_LABELS.items():
                if self.add_label(addr, name):
                    self._builtin.add(addr)

    # ── Registers ─────────────────────────────

    def register_name(self, index: int) -> Optional[str]:
        return self.registers.get(index)

    def set_register(self, index: int, name: str):
        self.registers[index] = name

    def bit_name(self, register: Optional[str], bit: int) -> Optional[str]:
        if register is None:
            return None
        return self.bit_names.get(register, {}).get(bit)

    def set_bit_name(self, register: str, bit: int, name: str):
        self.bit_names.setdefault(register, {})[bit] = name

    # ── Labels ────────────────────────────────

    def has_label(self, address: int) -> bool:
        return address in self.labels

    def add_label(self, address: int, name: str) -> bool:
        """Assign a user label. Returns False when the address is already named.

        Only the built-in vector names may be replaced, so hint files can
        rename ``reset_vector`` / ``interrupt_vector``.
        """
        if address in self.labels and address not in self._builtin:
            return False
        self._builtin.discard(address)
        self.labels[address] = name
        self.user_labels.add(address)
        return True

    def label_for(self, address: int) -> str:
        """Return the label for address, synthesizing ``Lxxxx`` if needed."""
        name = self.labels.get(address)
        if name is None:
            name = synthesized_label(address)
            self.labels[address] = name
        return name

    def is_user_label(self, address: int) -> bool:
        return address in self.user_labels

    def address_of(self, name: str) -> Optional[int]:
        return self.addresses_by_name().get(name)

    def addresses_by_name(self) -> Dict[str, int]:
        """Reverse label map; the lowest address wins on a repeated name."""
        by_name: Dict[str, int] = {}
        for addr in sorted(self.labels):
            by_name.setdefault(self.labels[addr], addr)
        return by_name

    # ── Data words ────────────────────────────

    def add_data_range(self, start: int, end: int, name: Optional[str] = None):
        self.data_ranges.append(DataRange(start, end, name))
        if name:
            self.add_label(start, name)

    def is_data_word(self, address: int) -> bool:
        if address == CONFIG_WORD_ADDRESS:
            return True
        return any(r.contains(address) for r in self.data_ranges)

    def referenced_registers(self, indices: Iterable[int]) -> Dict[int, str]:
        """Subset of the register map for the given indices, sorted by index."""
        return {i: self.registers[i] for i in sorted(set(indices)) if i in self.registers}
