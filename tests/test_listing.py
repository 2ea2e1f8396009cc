"""
Listing and Pipeline Tests for KingAI PIC16 Disassembler.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from pic16_disasm import disassemble_image
from pic16_disasm.analyzer import AnalyzerOptions, DepthLimitError
from pic16_disasm.callgraph import CallGraphExporter
from pic16_disasm.image import MemoryImage
from pic16_disasm.symbols import SymbolTable


BANK_PROGRAM = [
    0x1683,     # bsf   STATUS, RP0
    0x0085,     # movwf TRISA
    0x1283,     # bcf   STATUS, RP0
    0x0085,     # movwf PORTA
    0x2804,     # goto  $
]


def _lines(listing):
    return [line.rstrip() for line in listing.splitlines()]


def _instruction(listing, address):
    """Instruction text on the line whose comment starts with address."""
    tag = f"; {address:04X}: "
    for line in listing.splitlines():
        if tag in line:
            return line.split(";")[0].strip()
    raise AssertionError(f"no line for 0x{address:04X}")


class TestListing:
    """Rendered source text."""

    def test_bank_switched_register_names(self):
        listing = disassemble_image(MemoryImage.from_words(BANK_PROGRAM)).listing
        assert _instruction(listing, 0) == "bsf     STATUS, RP0"
        assert _instruction(listing, 1) == "movwf   TRISA"
        assert _instruction(listing, 2) == "bcf     STATUS, RP0"
        assert _instruction(listing, 3) == "movwf   PORTA"

    def test_header_and_equates(self):
        listing = disassemble_image(MemoryImage.from_words(BANK_PROGRAM)).listing
        lines = _lines(listing)
        assert lines[1] == "        processor 16f877a"
        equates = [line.split() for line in lines if " equ " in line]
        assert equates == [["STATUS", "equ", "0x03"], ["PORTA", "equ", "0x05"], ["TRISA", "equ", "0x85"]]

    def test_labels_and_org(self):
        image = MemoryImage()
        image.set_word(0x0000, 0x2810)      # goto L0010
        image.set_word(0x0010, 0x0008)
        lines = _lines(disassemble_image(image).listing)
        start = lines.index("        org     0x0000")
        assert lines[start + 1] == "reset_vector:"
        assert lines[start + 2].startswith("        goto    L0010")
        org = lines.index("        org     0x0010")
        assert lines[org + 1] == "L0010:"
        assert lines[org + 2].startswith("        return")

    def test_absent_branch_target_gets_equate(self):
        image = MemoryImage.from_words([0x2030, 0x2800])    # call L0030; goto reset_vector
        lines = _lines(disassemble_image(image).listing)
        equates = [line.split() for line in lines if " equ " in line]
        assert equates == [["L0030", "equ", "0x0030"]]
        assert "L0030:" not in lines
        assert _instruction("\n".join(lines), 0) == "call    L0030"

    def test_data_and_unknown_words(self):
        image = MemoryImage.from_words([0x3B00, 0x0008])
        image.set_word(0x2007, 0x3F72)
        listing = disassemble_image(image).listing
        assert "unknown 0x3B00" in listing
        assert "        org     0x2007" in listing
        assert "dw      0x3F72" in listing
        assert "config word" in listing

    def test_user_data_range(self):
        symbols = SymbolTable()
        symbols.add_data_range(0x0001, 0x0003, "table")
        image = MemoryImage.from_words([0x0008, 0x2810, 0x0782])
        lines = _lines(disassemble_image(image, symbols).listing)
        assert "table:" in lines
        assert any(line.startswith("        dw      0x2810") for line in lines)
        assert not any("goto" in line for line in lines)

    def test_depth_and_lookup_table_notes(self):
        image = MemoryImage.from_words([0x3005, 0x0782, 0x3401, 0x3402, 0x3403])
        result = disassemble_image(image, analyze=True)
        lines = _lines(result.listing)
        assert "; max call depth 1" in lines
        assert any(line.endswith("; 0001: 0782  lookup table  depth 0") for line in lines)
        assert any(line.endswith("; 0004: 3403  depth 1") for line in lines)

    def test_no_depth_without_analysis(self):
        listing = disassemble_image(MemoryImage.from_words(BANK_PROGRAM)).listing
        assert "depth" not in listing

    def test_warnings_in_header(self):
        image = MemoryImage.from_words([0x2000, 0x0008])     # call reset_vector
        lines = _lines(disassemble_image(image, analyze=True).listing)
        assert any(line.startswith("; warning: Recursive call to reset_vector") for line in lines)


class TestPipeline:
    """disassemble_image glue."""

    def test_device_limits_pass2(self):
        image = MemoryImage()
        image.set_word(0x03FF, 0x0000)      # last word of a 16F84A
        image.set_word(0x0400, 0x0008)
        image.set_word(0x0000, 0x2BFF)      # goto 0x3FF
        result = disassemble_image(image, analyze=True, device="16f84a")
        assert result.analysis.depth_at(0x03FF) == 0
        assert result.analysis.depth_at(0x0400) is None
        assert result.listing.splitlines()[1].strip() == "processor 16f84a"

    def test_unknown_device(self):
        with pytest.raises(KeyError, match="Unknown device"):
            disassemble_image(MemoryImage(), device="16f999")

    def test_depth_limit_propagates(self):
        image = MemoryImage.from_words([0x2002, 0x0008, 0x2003, 0x0008])
        with pytest.raises(DepthLimitError):
            disassemble_image(image, analyze=True, options=AnalyzerOptions(max_depth=1))

    def test_scan_summary(self):
        result = disassemble_image(MemoryImage.from_words(BANK_PROGRAM))
        assert result.scan.instructions == 5
        assert result.analysis is None


class TestCallGraphExport:
    """Graphviz DOT text."""

    def test_dot_output(self):
        image = MemoryImage()
        for address, word in {0x00: 0x2010, 0x01: 0x2801, 0x10: 0x0008}.items():
            image.set_word(address, word)
        result = disassemble_image(image, analyze=True)
        dot = CallGraphExporter(result.symbols).to_dot(result.analysis, "prog.hex")
        lines = dot.splitlines()
        assert lines[0] == 'digraph "prog.hex" {'
        assert lines[-1] == "}"
        assert '  "reset_vector" -> "L0010" [style=solid, label="call"];' in lines
        assert '  "reset_vector" -> "L0001" [style=dashed, label="goto"];' in lines
        assert any(line.startswith('  "reset_vector" [label="reset_vector\\n0x0000  depth 0"')
                   and "fillcolor=lightgreen" in line for line in lines)
        assert '  "L0010" [label="L0010\\n0x0010  depth 1"];' in lines

    def test_write(self, tmp_path):
        image = MemoryImage.from_words([0x2002, 0x2801, 0x0008])
        result = disassemble_image(image, analyze=True)
        path = tmp_path / "calls.dot"
        CallGraphExporter(result.symbols).write(result.analysis, path)
        assert path.read_text().startswith('digraph "CallGraph" {')
