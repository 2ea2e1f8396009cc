"""
Call graph export as Graphviz DOT text.

Nodes are routine labels, edges come from pass 2. CALL edges are solid,
GOTO edges dashed; reset and interrupt vectors are filled. Render with
``dot -Tsvg calls.dot -o calls.svg``.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Union

from .analyzer import AnalysisResult, EdgeKind
from .symbols import INTERRUPT_VECTOR, RESET_VECTOR, SymbolTable

VECTOR_COLORS = {
    RESET_VECTOR: "lightgreen",
    INTERRUPT_VECTOR: "lightsalmon",
}


def _escape(text: str) -> str:
    return text.replace('\\', '\\\\').replace('"', '\\"')


def _quote(text: str) -> str:
    return '"' + _escape(text) + '"'


class CallGraphExporter:
    def __init__(self, symbols: Optional[SymbolTable] = None):
        self.symbols = symbols

    def to_dot(self, result: AnalysisResult, title: str = "CallGraph") -> str:
        lines: List[str] = [f"digraph {_quote(title)} {{",
                            "  rankdir=LR;",
                            "  node [shape=box, fontsize=10];"]

        addresses = self.symbols.addresses_by_name() if self.symbols else {}
        for label in result.nodes():
            lines.append(f"  {_quote(label)} [{self._node_attrs(label, addresses.get(label), result)}];")

        for edge in result.edges:
            style = "solid" if edge.kind is EdgeKind.CALL else "dashed"
            lines.append(f"  {_quote(edge.source)} -> {_quote(edge.target)} "
                         f"[style={style}, label={_quote(edge.kind.value)}];")

        lines.append("}")
        return "\n".join(lines) + "\n"

    def write(self, result: AnalysisResult, path: Union[str, Path], title: str = "CallGraph"):
        Path(path).write_text(self.to_dot(result, title), encoding="utf-8")

    @staticmethod
    def _node_attrs(label: str, address: Optional[int], result: AnalysisResult) -> str:
        if address is None:
            return f"label={_quote(label)}"
        text = f"{_escape(label)}\\n0x{address:04X}"
        depth = result.depth_at(address)
        if depth is not None:
            text += f"  depth {depth}"
        attrs = f'label="{text}"'
        color = VECTOR_COLORS.get(address)
        if color:
            attrs += f", style=filled, fillcolor={color}"
        return attrs
