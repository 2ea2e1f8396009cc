"""
Call-Depth Analyzer Tests for KingAI PIC16 Disassembler.

Programs are hand-assembled word maps. Opcode cheat sheet:
    0x20kk call k     0x28kk goto k     0x0008 return   0x0009 retfie
    0x34kk retlw k    0x30kk movlw k    0x0782 addwf PCL,F
    0x1903 btfsc STATUS,Z   0x1D03 btfss STATUS,Z
    0x158A bsf PCLATH,3     0x118A bcf PCLATH,3
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from pic16_disasm.analyzer import (
    AnalyzerOptions, Avenue, CallDepthAnalyzer, CallGraphEdge, DepthLimitError,
    DepthRecord, EdgeKind, WorkQueue,
)
from pic16_disasm.decoder import Decoder
from pic16_disasm.image import MemoryImage
from pic16_disasm.scanner import LabelScanner
from pic16_disasm.symbols import SymbolTable


def _image(words):
    if isinstance(words, dict):
        image = MemoryImage()
        for address, word in words.items():
            image.set_word(address, word)
        return image
    return MemoryImage.from_words(words)


def _analyze(words, scan=True, symbols=None, **opts):
    """Pass 1 (unless scan=False) then pass 2; returns (result, symbols)."""
    symbols = symbols if symbols is not None else SymbolTable()
    image = _image(words)
    decoder = Decoder(symbols)
    if scan:
        LabelScanner(symbols, decoder).scan(image)
    result = CallDepthAnalyzer(image, symbols, decoder, AnalyzerOptions(**opts)).run()
    return result, symbols


NESTED = {
    0x00: 0x2010,   # call L0010
    0x01: 0x2801,   # goto $
    0x10: 0x2020,   # call L0020
    0x11: 0x0008,   # return
    0x20: 0x0000,   # nop
    0x21: 0x0008,   # return
}


class TestCallDepth:
    """Depth records and witness stacks."""

    def test_nested_calls(self):
        result, _ = _analyze(NESTED)
        assert result.depth_at(0x00) == 0
        assert result.depth_at(0x01) == 0
        assert result.depth_at(0x10) == 1
        assert result.depth_at(0x11) == 1
        assert result.depth_at(0x20) == 2
        assert result.depth_at(0x21) == 2
        assert result.max_depth == 2
        assert result.records[0x21].call_stack == ("reset_vector", "L0010", "L0020")
        assert result.warnings == []

    def test_deepest(self):
        result, _ = _analyze(NESTED)
        address, record = result.deepest()
        assert address == 0x20
        assert record.depth == 2

    def test_maximum_over_paths(self):
        """0x20 is called at depth 1 directly and at depth 2 via L0010; the maximum wins."""
        result, _ = _analyze({
            0x00: 0x2010,   # call L0010
            0x01: 0x2020,   # call L0020
            0x02: 0x2802,   # goto $
            0x10: 0x2020,   # call L0020
            0x11: 0x0008,
            0x20: 0x0008,
        })
        assert result.depth_at(0x20) == 2
        assert result.records[0x20].call_stack == ("reset_vector", "L0010", "L0020")

    def test_unreachable_code_has_no_record(self):
        result, _ = _analyze({0x00: 0x0008, 0x01: 0x0000, 0x02: 0x0008})
        assert result.reachable() == {0x00}
        assert result.depth_at(0x01) is None

    def test_walks_never_exceed_records(self):
        result, _ = _analyze(NESTED)
        for walk in result.walks:
            for address in walk.addresses:
                assert result.depth_at(address) >= walk.depth

    def test_deterministic(self):
        first, _ = _analyze(NESTED)
        second, _ = _analyze(NESTED)
        assert first.records == second.records
        assert first.edges == second.edges
        assert [w.addresses for w in first.walks] == [w.addresses for w in second.walks]

    def test_interrupt_vector_seeded_at_depth_one(self):
        result, _ = _analyze({
            0x00: 0x2800,   # goto $
            0x04: 0x2010,   # call L0010
            0x05: 0x0009,   # retfie
            0x10: 0x0008,
        })
        assert result.depth_at(0x04) == 1
        assert result.depth_at(0x10) == 2
        assert result.records[0x10].call_stack == ("interrupt_vector", "L0010")

    def test_vectors_can_be_disabled(self):
        result, _ = _analyze({0x00: 0x0008, 0x04: 0x0009}, interrupt_vector=None)
        assert result.reachable() == {0x00}

    def test_empty_image(self):
        result, _ = _analyze({})
        assert result.records == {}
        assert result.max_depth == 0
        assert result.deepest() is None


class TestRecursion:
    """Cyclic call graphs terminate."""

    def test_mutual_recursion(self):
        result, _ = _analyze({
            0x00: 0x2805,   # goto L0005
            0x05: 0x2008,   # call A
            0x06: 0x2806,   # goto $
            0x08: 0x200B,   # A: call B
            0x09: 0x0008,
            0x0B: 0x2008,   # B: call A
            0x0C: 0x0008,
        })
        assert result.depth_at(0x05) == 0
        assert result.depth_at(0x08) == 1
        assert result.depth_at(0x0B) == 2
        assert result.depth_at(0x0C) == 2
        assert CallGraphEdge("L000B", "L0008", EdgeKind.CALL) in result.edges
        assert any("Recursive call to L0008" in w for w in result.warnings)

    def test_self_recursion(self):
        result, _ = _analyze({0x00: 0x2000, 0x01: 0x0008})
        assert result.max_depth == 0
        assert CallGraphEdge("reset_vector", "reset_vector", EdgeKind.CALL) in result.edges
        assert result.recursion_edges == {("reset_vector", "reset_vector")}
        assert len(result.warnings) == 1

    @staticmethod
    def _shared_callee(first, second):
        """reset calls first then second; A and B both call X; X calls A back."""
        return {
            0x00: 0x2000 | first,
            0x01: 0x2000 | second,
            0x02: 0x2802,   # goto $
            0x10: 0x2030,   # A: call X
            0x11: 0x0008,
            0x20: 0x2030,   # B: call X
            0x21: 0x0008,
            0x30: 0x2010,   # X: call A
            0x31: 0x0008,
        }

    def test_call_order_does_not_change_depths(self):
        forward, _ = _analyze(self._shared_callee(0x10, 0x20), interrupt_vector=None)
        swapped, _ = _analyze(self._shared_callee(0x20, 0x10), interrupt_vector=None)
        for result in (forward, swapped):
            assert result.depth_at(0x10) == 1
            assert result.depth_at(0x20) == 1
            assert result.depth_at(0x30) == 2
            assert result.recursion_edges == {("L0030", "L0010")}
        assert ({a: r.depth for a, r in forward.records.items()}
                == {a: r.depth for a, r in swapped.records.items()})

    def test_branch_back_into_caller(self):
        """B jumps back to A, which called it; the goto closes the cycle."""
        result, _ = _analyze({
            0x00: 0x2010,   # call A
            0x01: 0x2801,   # goto $
            0x10: 0x2020,   # A: call B
            0x11: 0x0008,
            0x20: 0x2810,   # B: goto A
        }, interrupt_vector=None, max_depth=5)
        assert result.depth_at(0x10) == 1
        assert result.depth_at(0x20) == 2
        assert result.recursion_edges == {("L0020", "L0010")}
        assert CallGraphEdge("L0020", "L0010", EdgeKind.GOTO) in result.edges
        assert any("Recursive branch to L0010 from L0020" in w for w in result.warnings)

    def test_goto_loop_is_not_recursion(self):
        result, _ = _analyze({
            0x00: 0x2010,   # call L0010
            0x01: 0x2800,   # goto reset_vector
            0x10: 0x0008,
        }, interrupt_vector=None)
        assert result.recursion_edges == set()
        assert result.warnings == []
        assert result.depth_at(0x10) == 1
        assert CallGraphEdge("reset_vector", "reset_vector", EdgeKind.GOTO) in result.edges


class TestControlFlow:
    """Skips, paging and walk termination."""

    def test_skip_reaches_pc_plus_two(self):
        result, _ = _analyze({
            0x00: 0x1903,   # btfsc STATUS, Z
            0x01: 0x0008,   # return
            0x02: 0x2010,   # call L0010
            0x03: 0x0008,
            0x10: 0x0008,
        })
        assert result.depth_at(0x02) == 0
        assert result.depth_at(0x03) == 0
        assert result.depth_at(0x10) == 1
        assert CallGraphEdge("reset_vector", "L0010", EdgeKind.CALL) in result.edges

    def test_skip_avenue_stays_in_its_routine(self):
        result, _ = _analyze({
            0x00: 0x1D03,   # btfss STATUS, Z
            0x01: 0x2010,   # call L0010
            0x02: 0x2802,   # goto $
            0x10: 0x0008,
        })
        assert [(w.start, w.origin) for w in result.walks] == [
            (0x00, "reset_vector"),
            (0x02, "reset_vector"),
            (0x10, "L0010"),
            (0x02, "L0002"),
        ]

    @pytest.mark.parametrize("first,second", [(0x2814, 0x2810), (0x2810, 0x2814)])
    def test_page_set_on_one_path_only(self, first, second):
        """0x14 is entered directly on page 0 and by falling through a page select."""
        result, _ = _analyze({
            0x000: 0x1903,  # btfsc STATUS, Z
            0x001: first,
            0x002: second,
            0x010: 0x158A,  # bsf PCLATH, 3
            0x011: 0x0000,
            0x012: 0x0000,
            0x013: 0x0000,
            0x014: 0x2030,  # call 0x030 or 0x830
            0x015: 0x0008,
            0x030: 0x0008,
            0x830: 0x0008,
        }, interrupt_vector=None)
        assert result.depth_at(0x030) == 1
        assert result.depth_at(0x830) == 1
        assert CallGraphEdge("L0010", "L0830", EdgeKind.CALL) in result.edges
        assert CallGraphEdge("L0014", "L0030", EdgeKind.CALL) in result.edges

    def test_page_select_threads_into_call_target(self):
        result, _ = _analyze({
            0x000: 0x158A,  # bsf PCLATH, 3
            0x001: 0x2005,  # call 0x805
            0x002: 0x118A,  # bcf PCLATH, 3
            0x003: 0x2803,  # goto $
            0x005: 0x0008,  # same low bits on page 0, never called
            0x805: 0x2810,  # goto 0x810 (page from the avenue's own address)
            0x810: 0x0008,
        }, interrupt_vector=None)
        assert result.depth_at(0x805) == 1
        assert result.depth_at(0x810) == 1
        assert result.depth_at(0x005) is None

    def test_stops_at_absent_word(self):
        result, _ = _analyze([0x0000, 0x0000])
        assert result.walks[0].addresses == [0, 1]
        assert result.walks[0].end_reason == "absent word"

    def test_stops_at_data_word(self):
        symbols = SymbolTable()
        symbols.add_data_range(0x01, 0x02)
        result, _ = _analyze([0x0000, 0x0000, 0x0008], symbols=symbols)
        assert result.reachable() == {0x00}
        assert result.walks[0].end_reason == "data word"

    def test_stops_at_memory_limit(self):
        result, _ = _analyze([0x0000] * 4, memory_limit=2)
        assert result.reachable() == {0, 1}
        assert result.walks[0].end_reason == "end of program memory"

    def test_return_ends_walk(self):
        result, _ = _analyze([0x0008, 0x0000])
        assert result.walks[0].end_reason == "return"


class TestLookupTable:
    """addwf PCL,F computed-jump tables."""

    def test_retlw_table_single_walk(self):
        result, _ = _analyze([0x3005, 0x0782, 0x3401, 0x3402, 0x3403], interrupt_vector=None)
        assert len(result.walks) == 1
        assert result.walks[0].addresses == [0, 1, 2, 3, 4]
        assert all(result.depth_at(a) == 0 for a in range(5))

    def test_retlw_table_with_interrupt_vector(self):
        """Word 4 doubles as the interrupt vector; only that entry gets a second walk."""
        result, _ = _analyze([0x3005, 0x0782, 0x3401, 0x3402, 0x3403])
        assert result.walks[0].addresses == [0, 1, 2, 3, 4]
        assert [w.start for w in result.walks] == [0x00, 0x04]
        assert result.depth_at(0x02) == 0
        assert result.depth_at(0x04) == 1

    def test_goto_table_and_end(self):
        result, _ = _analyze({
            0x00: 0x3001,   # movlw 1
            0x01: 0x0782,   # addwf PCL, F
            0x02: 0x2810,   # goto L0010
            0x03: 0x2811,   # goto L0011
            0x04: 0x3405,   # retlw 5
            0x05: 0x00A0,   # movwf 0x20 - not part of the table
            0x10: 0x0008,
            0x11: 0x0008,
        }, interrupt_vector=None)
        walk = result.walks[0]
        assert walk.addresses == [0, 1, 2, 3, 4]
        assert walk.end_reason == "end of lookup table"
        assert result.depth_at(0x05) is None
        assert result.depth_at(0x10) == 0
        assert result.depth_at(0x11) == 0
        gotos = [e for e in result.edges if e.kind is EdgeKind.GOTO]
        assert [e.target for e in gotos] == ["L0010", "L0011"]

    def test_goto_without_table_ends_walk(self):
        result, _ = _analyze({0x00: 0x2810, 0x01: 0x0000, 0x10: 0x0008})
        assert result.depth_at(0x01) is None
        assert result.walks[0].end_reason == "goto"


class TestDepthLimit:
    """Fatal guard against runaway call chains."""

    CHAIN = {
        0x00: 0x2010, 0x01: 0x0008,
        0x10: 0x2020, 0x11: 0x0008,
        0x20: 0x2030, 0x21: 0x0008,
        0x30: 0x2040, 0x31: 0x0008,
        0x40: 0x0008,
    }

    def test_raises_past_limit(self):
        with pytest.raises(DepthLimitError) as exc:
            _analyze(self.CHAIN, max_depth=3)
        err = exc.value
        assert err.address == 0x40
        assert err.depth == 4
        assert err.limit == 3
        assert err.call_stack == ("reset_vector", "L0010", "L0020", "L0030", "L0040")
        assert "L0030 -> L0040" in str(err)

    def test_limit_is_inclusive(self):
        result, _ = _analyze(self.CHAIN, max_depth=4)
        assert result.max_depth == 4


class TestEdges:
    """Call graph edge collection modes."""

    PROGRAM = {
        0x00: 0x2010,   # call L0010
        0x01: 0x2010,   # call L0010
        0x02: 0x2802,   # goto $
        0x10: 0x0008,
    }

    def test_every_trace_kept(self):
        result, _ = _analyze(self.PROGRAM)
        assert result.edges == [
            CallGraphEdge("reset_vector", "L0010", EdgeKind.CALL),
            CallGraphEdge("reset_vector", "L0010", EdgeKind.CALL),
            CallGraphEdge("reset_vector", "L0002", EdgeKind.GOTO),
            CallGraphEdge("L0002", "L0002", EdgeKind.GOTO),
        ]

    def test_single_trace(self):
        result, _ = _analyze(self.PROGRAM, single_trace=True)
        assert len(result.edges) == 3
        assert result.nodes() == ["reset_vector", "L0010", "L0002"]

    def test_no_subroutine_edges(self):
        result, _ = _analyze(self.PROGRAM, no_subroutine_edges=True)
        assert [e.kind for e in result.edges] == [EdgeKind.GOTO, EdgeKind.GOTO]
        assert result.depth_at(0x10) == 1


class TestDiagnostics:
    """Warnings for targets pass 1 never labelled."""

    def test_unlabelled_target_warns(self):
        result, symbols = _analyze(NESTED, scan=False)
        assert any("0x0010 has no label" in w for w in result.warnings)
        assert symbols.labels[0x10] == "L0010"
        assert result.max_depth == 2

    def test_warning_not_repeated(self):
        result, _ = _analyze({0x00: 0x2010, 0x01: 0x2010, 0x02: 0x0008, 0x10: 0x0008}, scan=False)
        assert len(result.warnings) == 1


class TestWorkQueue:
    """One pending avenue per (start, routine)."""

    def test_merge_raises_pending_depth(self):
        queue = WorkQueue({})
        assert queue.push(Avenue(0x10, 1, ("a", "b"), "b"))
        assert not queue.push(Avenue(0x10, 3, ("a", "c", "d", "b"), "b"))
        assert len(queue) == 1
        avenue = queue.pop()
        assert avenue.depth == 3
        assert avenue.call_stack == ("a", "c", "d", "b")
        assert queue.merged == 1

    def test_shallower_duplicate_ignored(self):
        queue = WorkQueue({})
        queue.push(Avenue(0x10, 2, ("a", "b", "c"), "c"))
        queue.push(Avenue(0x10, 1, ("a", "c"), "c"))
        assert queue.pop().depth == 2
        assert not queue

    def test_dropped_when_record_is_deep_enough(self):
        walked = {(0x10, "c"): DepthRecord(2, ("a", "b", "c"))}
        queue = WorkQueue(walked)
        assert not queue.push(Avenue(0x10, 2, ("x", "y", "c"), "c"))
        assert queue.push(Avenue(0x10, 3, ("x", "y", "z", "c"), "c"))
        assert queue.dropped == 1

    def test_same_start_other_routine_kept(self):
        walked = {(0x10, "c"): DepthRecord(2, ("a", "b", "c"))}
        queue = WorkQueue(walked)
        assert queue.push(Avenue(0x10, 0, ("a",), "a"))
        assert queue.push(Avenue(0x10, 1, ("a", "d"), "d"))
        assert len(queue) == 2
        assert queue.pending(0x10, "d").depth == 1

    def test_fifo_order(self):
        queue = WorkQueue({})
        for pc in (5, 1, 9):
            queue.push(Avenue(pc, 0, ("r",), "r"))
        assert [queue.pop().pc for _ in range(3)] == [5, 1, 9]
