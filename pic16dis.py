#!/usr/bin/env python3
"""
pic16dis - KingAI PIC16 Disassembler CLI

Usage:
    python pic16dis.py <input.hex|input.bin> [-o output.asm] [--hints FILE ...]
                       [--device generic|16f84a|16f628a|16f877a] [--depth]
                       [--max-depth N] [--graph calls.dot] [--single-trace]
                       [--no-subroutine-edges] [--data START-END ...] [-v] [-q]

Input format is auto-detected from the file extension (.bin = raw little-endian
words, anything else = Intel HEX); --format overrides it.

Examples:
    python pic16dis.py firmware.hex -o firmware.asm
    python pic16dis.py firmware.hex --depth --graph calls.dot --single-trace
    python pic16dis.py dump.bin --hints board.hints --data 0x0300-0x0320 -v
"""

import argparse
import logging
import os
import sys

# Allow running from project root or as module
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from pic16_disasm import __version__, disassemble_image
from pic16_disasm.analyzer import AnalyzerOptions, DepthLimitError, DEFAULT_MAX_DEPTH
from pic16_disasm.callgraph import CallGraphExporter
from pic16_disasm.hints import HintFileError, load_hint_file, parse_number
from pic16_disasm.image import ImageFormatError, MemoryImage
from pic16_disasm.logconfig import setup_logging, verbosity_level
from pic16_disasm.symbols import DEVICE_PROFILES, SymbolTable

log = logging.getLogger("pic16_disasm.cli")


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x..., $..., ...h) or decimal."""
    try:
        return parse_number(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")


def parse_range_arg(value: str):
    """START-END, END exclusive."""
    start, sep, end = value.partition("-")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected START-END, got {value!r}")
    start, end = parse_int_arg(start), parse_int_arg(end)
    if end <= start:
        raise argparse.ArgumentTypeError(f"empty range {value!r}")
    return start, end


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pic16dis",
        description="KingAI PIC16 mid-range disassembler and call-depth analyzer",
        epilog="Devices: " + ", ".join(DEVICE_PROFILES.keys()),
    )
    parser.add_argument("input", help="Input program image (.hex or .bin)")
    parser.add_argument("-o", "--output", help="Output listing file (default: stdout)")
    parser.add_argument("--format", choices=["hex", "bin"], default=None,
                        help="Input format (auto-detected from extension if not set)")
    parser.add_argument("--hints", action="append", default=[], metavar="FILE",
                        help="Hint file with labels, registers, bits, data ranges (repeatable)")
    parser.add_argument("--device", default="generic", choices=list(DEVICE_PROFILES.keys()),
                        help="Device profile (default: generic)")
    parser.add_argument("--depth", action="store_true",
                        help="Run the call-depth analyzer (pass 2)")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH,
                        help=f"Fail when a call chain gets deeper than this (default: {DEFAULT_MAX_DEPTH})")
    parser.add_argument("--graph", metavar="FILE.dot",
                        help="Write the call graph as Graphviz DOT (implies --depth)")
    parser.add_argument("--single-trace", action="store_true",
                        help="Keep one graph edge per caller/callee pair")
    parser.add_argument("--no-subroutine-edges", action="store_true",
                        help="Leave CALL edges out of the graph")
    parser.add_argument("--data", action="append", default=[], type=parse_range_arg,
                        metavar="START-END", help="Render words as data, END exclusive (repeatable)")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="More log output (-vv for debug)")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Only log errors")
    parser.add_argument("--log-file", help="Also write a DEBUG log to this file")
    parser.add_argument("--version", action="version",
                        version=f"pic16dis {__version__} (KingAI)")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbosity_level(args.verbose, args.quiet), args.log_file)

    analyze = args.depth or bool(args.graph)
    profile = DEVICE_PROFILES[args.device]
    log.info("Input:  %s", args.input)
    log.info("Device: %s - %s", args.device, profile["description"])

    try:
        image = MemoryImage.from_file(args.input, args.format)
        log.info("Loaded %d words, codesize 0x%04X", len(image), image.codesize)

        symbols = SymbolTable()
        for path in args.hints:
            load_hint_file(path, symbols)
        for start, end in args.data:
            symbols.add_data_range(start, end)

        options = AnalyzerOptions(
            max_depth=args.max_depth,
            single_trace=args.single_trace,
            no_subroutine_edges=args.no_subroutine_edges,
            memory_limit=profile["program_words"],
        )
        result = disassemble_image(image, symbols, analyze=analyze,
                                   options=options, device=args.device)

        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(result.listing)
            log.info("Output: %s", args.output)
        else:
            sys.stdout.write(result.listing)

        if result.analysis is not None:
            deepest = result.analysis.deepest()
            if deepest is not None:
                address, record = deepest
                log.info("Max call depth %d at 0x%04X via %s", record.depth, address,
                         " -> ".join(record.call_stack))
            if args.graph:
                CallGraphExporter(symbols).write(result.analysis, args.graph,
                                                 title=os.path.basename(args.input))
                log.info("Graph:  %s (%d edges)", args.graph, len(result.analysis.edges))

    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 1
    except ImageFormatError as e:
        print(f"Image error: {e}", file=sys.stderr)
        return 1
    except HintFileError as e:
        print(f"Hint file error: {e}", file=sys.stderr)
        return 1
    except DepthLimitError as e:
        print(f"Analysis error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"I/O error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Internal disassembler error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
