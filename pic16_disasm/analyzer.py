"""
Pass 2 - Control-Flow / Call-Depth Analyzer
===========================================
Finds, for every statically reachable address, the maximum number of nested
unreturned CALLs active when control gets there, with one witness call stack,
and collects the call/branch graph on the way.

How the worklist works:
  An *avenue* is one hypothetical straight-line walk: start address, call
  depth, call stack, and the label of the routine it belongs to. Walking an
  avenue records its depth on every address it passes and spawns new
  avenues for the other ways control can go:

    call k        -> avenue at k, depth + 1, stack + label(k); walk goes on
    goto k        -> avenue at k, same depth; walk ends
    btfsc/btfss/
    decfsz/incfsz -> avenue at pc + 2 (skip taken); walk goes on at pc + 1
    return/retfie -> walk ends
    retlw         -> walk ends

  ``addwf PCL, F`` marks the start of a computed-jump table. After it, goto,
  retlw and nop no longer end the walk; the first other instruction does.

  Bank and page state is rebuilt for each avenue from its start address and
  threaded along the walk through the decoder's bsf/bcf hook. What a walk
  passes over and where it branches therefore depends only on its start
  address, so each start is traced once and the trace is reused.

Recursion:
  Before any depth is assigned, every routine reachable from the vectors is
  discovered and linked into a routine graph (call and goto edges between
  labels). A depth-first search from the vectors, taking successors in
  address order, marks back-edges. A back-edge inside a strongly connected
  group that contains a CALL is a recursion edge: it is emitted and warned
  about, never followed. Loops made only of gotos are left alone, they do
  not change depth.

Termination:
  - Avenues are keyed by (start, routine). One is dropped when that key
    was already walked at a depth >= its own.
  - Only one avenue per key waits in the queue; a second one raises the
    waiting avenue's depth instead of being added.
  - Depth above ``max_depth`` raises DepthLimitError.

With recursion edges removed no cycle can raise depth, so the worklist
settles on the longest path to every routine whatever order avenues come
off the queue. The queue is FIFO for repeatable edge order.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from .decoder import Decoder
from .image import MemoryImage
from .opcodes import (
    BIT_SET_CLEAR, BRANCH_MNEMONICS, RETURN_MNEMONICS, SKIP_MNEMONICS,
    TABLE_MNEMONICS, Mnemonic,
)
from .state import ProcessorState
from .symbols import INTERRUPT_VECTOR, PROGRAM_MEMORY_LIMIT, RESET_VECTOR, SymbolTable

log = logging.getLogger(__name__)

__all__ = [
    'CallDepthAnalyzer', 'AnalyzerOptions', 'AnalysisResult', 'Avenue',
    'AvenueWalk', 'CallGraphEdge', 'DepthLimitError', 'DepthRecord',
    'EdgeKind', 'RoutineGraph', 'Trace', 'Transition', 'WorkQueue',
]

DEFAULT_MAX_DEPTH = 100


class DepthLimitError(Exception):
    """Raised when a call chain exceeds the configured depth limit."""
    def __init__(self, address: int, depth: int, call_stack: Tuple[str, ...], limit: int):
        self.address = address
        self.depth = depth
        self.call_stack = call_stack
        self.limit = limit
        super().__init__(
            f"Call depth {depth} exceeds limit {limit} at 0x{address:04X}; "
            f"stack: {' -> '.join(call_stack)}")


# ──────────────────────────────────────────────
# Data model
# ──────────────────────────────────────────────

class EdgeKind(Enum):
    CALL = "call"
    GOTO = "goto"


@dataclass(frozen=True)
class CallGraphEdge:
    source: str
    target: str
    kind: EdgeKind


@dataclass
class Avenue:
    """Control may reach pc with depth nested calls made via call_stack."""
    pc: int
    depth: int
    call_stack: Tuple[str, ...]
    origin: str

    @property
    def key(self) -> Tuple[int, str]:
        return (self.pc, self.origin)


@dataclass
class DepthRecord:
    depth: int
    call_stack: Tuple[str, ...]


@dataclass
class AvenueWalk:
    """Trace of one processed avenue."""
    start: int
    origin: str
    depth: int
    addresses: List[int] = field(default_factory=list)
    end_reason: str = ""


@dataclass(frozen=True)
class Transition:
    site: int
    target: int
    kind: Optional[EdgeKind]        # None: skip to site + 2
    label: Optional[str] = None


@dataclass
class Trace:
    """Straight-line walk from one start address, entered with fresh state."""
    start: int
    addresses: List[int] = field(default_factory=list)
    transitions: List[Transition] = field(default_factory=list)
    end_reason: str = ""


@dataclass
class RoutineGraph:
    """Labels reachable from the vectors and the call/goto edges between them."""
    entries: Dict[str, int] = field(default_factory=dict)
    edges: Dict[str, Dict[str, Set[EdgeKind]]] = field(default_factory=dict)

    def add_edge(self, source: str, target: str, kind: EdgeKind):
        self.edges.setdefault(source, {}).setdefault(target, set()).add(kind)

    def successors(self, label: str) -> List[str]:
        return sorted(self.edges.get(label, {}), key=lambda t: (self.entries.get(t, 0), t))

    def reach(self, start: str, reverse: bool = False) -> Set[str]:
        if reverse:
            links: Dict[str, Set[str]] = {}
            for source, targets in self.edges.items():
                for target in targets:
                    links.setdefault(target, set()).add(source)
        else:
            links = {source: set(targets) for source, targets in self.edges.items()}
        seen = {start}
        todo = [start]
        while todo:
            for nxt in links.get(todo.pop(), ()):
                if nxt not in seen:
                    seen.add(nxt)
                    todo.append(nxt)
        return seen

    def back_edges(self, roots: Iterable[str]) -> List[Tuple[str, str]]:
        """Edges closing a cycle in a depth-first search from roots."""
        ON_STACK, DONE = 1, 2
        marks: Dict[str, int] = {}
        found: List[Tuple[str, str]] = []
        for root in roots:
            if root in marks:
                continue
            marks[root] = ON_STACK
            stack = [(root, iter(self.successors(root)))]
            while stack:
                node, successors = stack[-1]
                nxt = next(successors, None)
                if nxt is None:
                    marks[node] = DONE
                    stack.pop()
                elif nxt not in marks:
                    marks[nxt] = ON_STACK
                    stack.append((nxt, iter(self.successors(nxt))))
                elif marks[nxt] == ON_STACK:
                    found.append((node, nxt))
        return found

    def recursion_edges(self, roots: Iterable[str]) -> Set[Tuple[str, str]]:
        """Back-edges whose strongly connected group holds a CALL."""
        cut: Set[Tuple[str, str]] = set()
        groups: Dict[str, bool] = {}
        for source, target in self.back_edges(roots):
            if target not in groups:
                group = self.reach(target) & self.reach(target, reverse=True)
                groups[target] = any(
                    EdgeKind.CALL in kinds
                    for member in group
                    for callee, kinds in self.edges.get(member, {}).items()
                    if callee in group)
            if groups[target]:
                cut.add((source, target))
        return cut


@dataclass
class AnalyzerOptions:
    max_depth: int = DEFAULT_MAX_DEPTH
    single_trace: bool = False          # one edge per (source, target)
    no_subroutine_edges: bool = False   # leave CALL edges out of the graph
    reset_vector: Optional[int] = RESET_VECTOR
    interrupt_vector: Optional[int] = INTERRUPT_VECTOR
    interrupt_depth: int = 1            # an interrupt counts as one call
    memory_limit: int = PROGRAM_MEMORY_LIMIT


@dataclass
class AnalysisResult:
    records: Dict[int, DepthRecord] = field(default_factory=dict)
    edges: List[CallGraphEdge] = field(default_factory=list)
    walks: List[AvenueWalk] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recursion_edges: Set[Tuple[str, str]] = field(default_factory=set)

    def depth_at(self, address: int) -> Optional[int]:
        record = self.records.get(address)
        return record.depth if record is not None else None

    @property
    def max_depth(self) -> int:
        return max((r.depth for r in self.records.values()), default=0)

    def deepest(self) -> Optional[Tuple[int, DepthRecord]]:
        """Lowest address holding the maximum depth, with its record."""
        best = None
        for address in sorted(self.records):
            record = self.records[address]
            if best is None or record.depth > best[1].depth:
                best = (address, record)
        return best

    def reachable(self) -> Set[int]:
        return set(self.records)

    def nodes(self) -> List[str]:
        """Labels referenced by any edge, in first-seen order."""
        seen: Dict[str, None] = {}
        for edge in self.edges:
            seen.setdefault(edge.source)
            seen.setdefault(edge.target)
        return list(seen)


# ──────────────────────────────────────────────
# Work queue
# ──────────────────────────────────────────────

class WorkQueue:
    """FIFO of pending avenues, at most one per (start, routine) key.

    ``walked`` maps a key to the record it was last walked with. ``push`` is
    the only way in and holds the whole "is this new?" rule.
    """

    def __init__(self, walked: Dict[Tuple[int, str], DepthRecord]):
        self.walked = walked
        self._order: Deque[Tuple[int, str]] = deque()
        self._pending: Dict[Tuple[int, str], Avenue] = {}
        self.pushed = 0
        self.merged = 0
        self.dropped = 0

    def push(self, avenue: Avenue) -> bool:
        """Queue avenue. Returns True only when a new entry was added."""
        if not self.improves(avenue):
            self.dropped += 1
            return False
        pending = self._pending.get(avenue.key)
        if pending is not None:
            if avenue.depth > pending.depth:
                pending.depth = avenue.depth
                pending.call_stack = avenue.call_stack
            self.merged += 1
            return False
        self._pending[avenue.key] = avenue
        self._order.append(avenue.key)
        self.pushed += 1
        return True

    def pop(self) -> Avenue:
        return self._pending.pop(self._order.popleft())

    def improves(self, avenue: Avenue) -> bool:
        record = self.walked.get(avenue.key)
        return record is None or avenue.depth > record.depth

    def pending(self, pc: int, origin: str) -> Optional[Avenue]:
        return self._pending.get((pc, origin))

    def __len__(self) -> int:
        return len(self._order)

    def __bool__(self) -> bool:
        return bool(self._order)


# ──────────────────────────────────────────────
# Analyzer
# ──────────────────────────────────────────────

class CallDepthAnalyzer:
    """Worklist fixed point over the reachable control-flow graph."""

    def __init__(self, image: MemoryImage, symbols: SymbolTable,
                 decoder: Optional[Decoder] = None,
                 options: Optional[AnalyzerOptions] = None):
        self.image = image
        self.symbols = symbols
        self.decoder = decoder or Decoder(symbols)
        self.options = options or AnalyzerOptions()
        self._reset()

    def _reset(self):
        self.result = AnalysisResult()
        self.walked: Dict[Tuple[int, str], DepthRecord] = {}
        self.queue = WorkQueue(self.walked)
        self.graph = RoutineGraph()
        self._traces: Dict[int, Trace] = {}
        self._edge_keys: Set[Tuple[str, str]] = set()

    def run(self) -> AnalysisResult:
        self._reset()
        seeds = self._seeds()
        self._discover(seeds)
        self.result.recursion_edges = self.graph.recursion_edges(
            label for _, _, label in sorted(seeds))

        for address, depth, label in seeds:
            self.queue.push(Avenue(address, depth, (label,), label))
        while self.queue:
            avenue = self.queue.pop()
            if not self.queue.improves(avenue):
                continue
            self._walk(avenue)

        log.info("Pass 2: %d reachable words, max call depth %d, %d edges, %d avenues "
                 "(%d merged, %d dropped, %d recursion edges)",
                 len(self.result.records), self.result.max_depth, len(self.result.edges),
                 len(self.result.walks), self.queue.merged, self.queue.dropped,
                 len(self.result.recursion_edges))
        return self.result

    def _seeds(self) -> List[Tuple[int, int, str]]:
        opts = self.options
        seeds = []
        for address, depth in ((opts.reset_vector, 0),
                               (opts.interrupt_vector, opts.interrupt_depth)):
            if address is None:
                continue
            if not self.image.is_present(address):
                log.debug("Vector 0x%04X not present in image, not seeded", address)
                continue
            seeds.append((address, depth, self.symbols.label_for(address)))
        return seeds

    # ── Routine discovery ─────────────────────

    def _discover(self, seeds: List[Tuple[int, int, str]]):
        """Visit every (start, routine) pair reachable from the seeds, depth aside."""
        graph = self.graph
        todo: Deque[Tuple[int, str]] = deque()
        for address, _, label in seeds:
            graph.entries[label] = address
            todo.append((address, label))
        seen: Set[Tuple[int, str]] = set()
        while todo:
            key = todo.popleft()
            if key in seen:
                continue
            seen.add(key)
            pc, origin = key
            for step in self._trace(pc).transitions:
                if step.kind is None:
                    todo.append((step.target, origin))
                    continue
                graph.entries.setdefault(step.label, step.target)
                graph.add_edge(origin, step.label, step.kind)
                todo.append((step.target, step.label))
        log.debug("Routine graph: %d routines, %d start points", len(graph.entries), len(seen))

    def _trace(self, start: int) -> Trace:
        trace = self._traces.get(start)
        if trace is not None:
            return trace
        trace = Trace(start)
        state = ProcessorState.for_address(start)
        in_table = False
        pc = start

        while True:
            if pc >= self.options.memory_limit:
                trace.end_reason = "end of program memory"
                break
            if not self.image.is_present(pc):
                trace.end_reason = "absent word"
                break
            if self.symbols.is_data_word(pc):
                trace.end_reason = "data word"
                break

            word = self.image[pc]
            mnemonic = self.decoder.decode(word).mnemonic
            if in_table and mnemonic not in TABLE_MNEMONICS:
                trace.end_reason = "end of lookup table"
                break
            trace.addresses.append(pc)

            if mnemonic in BRANCH_MNEMONICS:
                target = self.decoder.branch_target(word, state)
                kind = EdgeKind.CALL if mnemonic is Mnemonic.CALL else EdgeKind.GOTO
                trace.transitions.append(
                    Transition(pc, target, kind, self._target_label(pc, target)))
                if kind is EdgeKind.GOTO and not in_table:
                    trace.end_reason = "goto"
                    break
            else:
                if mnemonic in BIT_SET_CLEAR:
                    self.decoder.resolve_operands(word, pc, state)
                if mnemonic in RETURN_MNEMONICS:
                    trace.end_reason = mnemonic.value
                    break
                if mnemonic is Mnemonic.RETLW and not in_table:
                    trace.end_reason = "retlw"
                    break
                if mnemonic in SKIP_MNEMONICS:
                    trace.transitions.append(Transition(pc, pc + 2, None))
                if self.decoder.is_table_dispatch(word):
                    in_table = True
            pc += 1

        self._traces[start] = trace
        return trace

    # ── One avenue ────────────────────────────

    def _walk(self, avenue: Avenue):
        trace = self._trace(avenue.pc)
        self.walked[avenue.key] = DepthRecord(avenue.depth, avenue.call_stack)
        records = self.result.records
        for pc in trace.addresses:
            record = records.get(pc)
            if record is None or avenue.depth > record.depth:
                records[pc] = DepthRecord(avenue.depth, avenue.call_stack)

        for step in trace.transitions:
            if step.kind is None:
                self.queue.push(Avenue(step.target, avenue.depth, avenue.call_stack, avenue.origin))
            elif step.kind is EdgeKind.CALL:
                self._call(avenue, step.target, step.label)
            else:
                self._goto(avenue, step.target, step.label)

        self.result.walks.append(AvenueWalk(avenue.pc, avenue.origin, avenue.depth,
                                            list(trace.addresses), trace.end_reason))

    # ── Transitions ───────────────────────────

    def _target_label(self, pc: int, target: int) -> str:
        if not self.symbols.has_label(target):
            self._warn(f"0x{pc:04X}: branch target 0x{target:04X} has no label, "
                       f"page tracking may have diverged")
        return self.symbols.label_for(target)

    def _is_recursion(self, avenue: Avenue, label: str, kind: EdgeKind) -> bool:
        if (avenue.origin, label) not in self.result.recursion_edges:
            return False
        what = "call" if kind is EdgeKind.CALL else "branch"
        self._warn(f"Recursive {what} to {label} from {avenue.origin}, not followed")
        return True

    def _call(self, avenue: Avenue, target: int, label: str):
        self._edge(avenue.origin, label, EdgeKind.CALL)
        if self._is_recursion(avenue, label, EdgeKind.CALL):
            return
        depth = avenue.depth + 1
        stack = avenue.call_stack + (label,)
        if depth > self.options.max_depth:
            raise DepthLimitError(target, depth, stack, self.options.max_depth)
        self.queue.push(Avenue(target, depth, stack, label))

    def _goto(self, avenue: Avenue, target: int, label: str):
        self._edge(avenue.origin, label, EdgeKind.GOTO)
        if self._is_recursion(avenue, label, EdgeKind.GOTO):
            return
        self.queue.push(Avenue(target, avenue.depth, avenue.call_stack, label))

    def _edge(self, source: str, target: str, kind: EdgeKind):
        if kind is EdgeKind.CALL and self.options.no_subroutine_edges:
            return
        if self.options.single_trace:
            key = (source, target)
            if key in self._edge_keys:
                return
            self._edge_keys.add(key)
        self.result.edges.append(CallGraphEdge(source, target, kind))

    def _warn(self, message: str):
        if message not in self.result.warnings:
            log.warning(message)
            self.result.warnings.append(message)
