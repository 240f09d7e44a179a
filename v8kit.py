#!/usr/bin/env python3
"""
v8kit — v8 CPU Simulator Toolkit
================================

One CLI for everything:
    v8kit run      — Load a program and run it (quiet) or debug it (interactive)
    v8kit asm      — Assemble v8 source to a hex listing or raw binary
    v8kit disasm   — Disassemble a program image
    v8kit hexdump  — Show memory after loading a program

Usage:
    python v8kit.py <command> [options]
    python v8kit.py --help
    python v8kit.py <command> --help

Examples:
    python v8kit.py run count.asm -q
    python v8kit.py run prog.hex --break 0x06
    python v8kit.py asm count.asm -o count.hex
    python v8kit.py disasm prog.bin
    python v8kit.py hexdump prog.hex --length 0x20

Interactive keys (run without -q):
    s        step one instruction
    z        undo the last step
    r        reset (breakpoints are kept)
    b ADDR   toggle breakpoint at ADDR
    c, Enter run until halt / fault / breakpoint (Ctrl-C pauses)
    q        quit
"""

import argparse
import logging
import os
import signal
import sys

from rich.console import Console

from v8sim import __version__
from v8sim.assembler import Assembler
from v8sim.config import DEFAULT_CONFIG, MachineConfig
from v8sim.errors import InvalidTransition, SimulatorError
from v8sim.image import InputFormat
from v8sim.isa import DEFAULT_TABLE
from v8sim.loaders import load_program
from v8sim.log_setup import setup_logging
from v8sim.render import format_report, render_snapshot
from v8sim.session import ExecutionState, Session, new_session

log = logging.getLogger('v8sim.cli')

FORMAT_BY_EXTENSION = {
    '.asm': InputFormat.ASSEMBLY,
    '.s': InputFormat.ASSEMBLY,
    '.hex': InputFormat.HEX,
    '.bin': InputFormat.BINARY,
}

PROMPT = "v8> "


def build_parser():
    parser = argparse.ArgumentParser(
        prog="v8kit",
        description="v8 CPU simulator — assemble, run, debug, inspect",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""commands:
  run        Run a program (quiet) or step through it (interactive)
  asm        Assemble v8 source to hex or binary
  disasm     Disassemble a program image
  hexdump    Show memory after loading a program
""",
    )
    parser.add_argument("--version", action="version", version=f"v8kit {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More console logging (-v info, -vv debug)")
    parser.add_argument("--log-dir", default=None, help="Also write a timestamped log file here")
    sub = parser.add_subparsers(dest="command", metavar="command")

    def add_input(p):
        p.add_argument("input", help="Program file (.asm, .hex or .bin)")
        p.add_argument("-f", "--format", choices=[f.value for f in InputFormat], default=None,
                       help="Input format (default: from extension, else assembly)")
        p.add_argument("--memory-words", type=lambda x: int(x, 0), default=None,
                       help=f"Memory size in words (default: {DEFAULT_CONFIG.memory_words})")

    # ── run ──────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Run or debug a program")
    add_input(p_run)
    p_run.add_argument("-q", "--quiet", action="store_true",
                       help="Run to completion, print only the final state")
    p_run.add_argument("--max-steps", type=int, default=None,
                       help="Pause after this many instructions per run")
    p_run.add_argument("--break", dest="breakpoints", action="append", default=[],
                       metavar="ADDR", help="Breakpoint address (hex), repeatable")

    # ── asm ──────────────────────────────────────────────────────────────
    p_asm = sub.add_parser("asm", help="Assemble v8 source")
    p_asm.add_argument("input", help="Input .asm file")
    p_asm.add_argument("-o", "--output", help="Output file (.hex or .bin)")
    p_asm.add_argument("--listing", action="store_true", help="Print listing to stdout")

    # ── disasm ───────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Disassemble a program image")
    add_input(p_dis)

    # ── hexdump ──────────────────────────────────────────────────────────
    p_hex = sub.add_parser("hexdump", help="Show memory after loading")
    add_input(p_hex)
    p_hex.add_argument("--start", default="0", help="First address (hex)")
    p_hex.add_argument("--length", default=None, help="Number of words (hex, default: all)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    console_level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    setup_logging(console_level=console_level, log_dir=args.log_dir)

    handler = COMMANDS[args.command]
    try:
        return handler(args) or 0
    except (SimulatorError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# ═════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═════════════════════════════════════════════════════════════════════════════

def _parse_hex(s):
    """Parse hex string with optional 0x or $ prefix."""
    if s is None:
        return None
    s = s.strip()
    if s.startswith("0x") or s.startswith("0X"):
        return int(s, 16)
    if s.startswith("$"):
        return int(s[1:], 16)
    return int(s, 16)


def _detect_format(path, explicit=None):
    if explicit:
        return InputFormat(explicit)
    ext = os.path.splitext(path)[1].lower()
    return FORMAT_BY_EXTENSION.get(ext, InputFormat.ASSEMBLY)


def _config_from(args):
    if args.memory_words is None:
        return DEFAULT_CONFIG
    return MachineConfig(memory_words=args.memory_words)


def _read_source(path):
    with open(path, "rb") as f:
        return f.read()


def _open_session(args):
    fmt = _detect_format(args.input, args.format)
    return new_session(fmt, _read_source(args.input), _config_from(args))


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND IMPLEMENTATIONS
# ═════════════════════════════════════════════════════════════════════════════

# ── run ──────────────────────────────────────────────────────────────────
def cmd_run(args):
    session = _open_session(args)
    for text in args.breakpoints:
        session.toggle_breakpoint(_parse_hex(text))

    if args.quiet:
        state = session.run(max_steps=args.max_steps)
        print(format_report(session.snapshot()))
        return 1 if state is ExecutionState.FAULTED else 0

    interactive(session, Console(), max_steps=args.max_steps)
    return 0


def _run_pausable(session: Session, max_steps=None):
    """run() with Ctrl-C mapped to session.pause()."""
    previous = signal.signal(signal.SIGINT, lambda signum, frame: session.pause())
    try:
        return session.run(max_steps=max_steps)
    finally:
        signal.signal(signal.SIGINT, previous)


def interactive(session: Session, console: Console, max_steps=None, read_line=input):
    """Line-driven debugger loop: read a key, call one session operation, redraw."""
    render_snapshot(session.snapshot(), console)
    while True:
        try:
            line = read_line(PROMPT)
        except (EOFError, KeyboardInterrupt):
            console.print()
            break
        key, _, arg = line.strip().partition(" ")
        key = key.lower()

        try:
            if key == "q":
                break
            elif key == "s":
                session.step()
            elif key == "z":
                if not session.undo():
                    console.print("Nothing to undo")
            elif key == "r":
                session.reset()
            elif key == "b":
                if not arg:
                    console.print("Usage: b ADDR")
                    continue
                now_set = session.toggle_breakpoint(_parse_hex(arg))
                console.print(f"Breakpoint {'set' if now_set else 'cleared'} at {_parse_hex(arg):02X}")
            elif key in ("", "c"):
                _run_pausable(session, max_steps)
            else:
                console.print(f"Unknown key: {key!r} (s z r b c q)")
                continue
        except InvalidTransition as e:
            console.print(f"[yellow]{e}[/yellow]")
            continue
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            continue
        render_snapshot(session.snapshot(), console)


# ── asm ──────────────────────────────────────────────────────────────────
def cmd_asm(args):
    with open(args.input, "r", encoding="utf-8") as f:
        source = f.read()

    asm = Assembler()
    image = asm.assemble(source)

    if args.listing or not args.output:
        print(asm.listing())
        if not args.output:
            return 0

    out = args.output
    ext = os.path.splitext(out)[1].lower()
    if ext == ".bin":
        with open(out, "wb") as f:
            f.write(image.to_bytes())
    else:  # .hex or anything else
        with open(out, "w", encoding="utf-8") as f:
            f.write(image.to_hex())
    print(f"Assembled {len(image)} words -> {out}")
    return 0


# ── disasm ───────────────────────────────────────────────────────────────
def cmd_disasm(args):
    fmt = _detect_format(args.input, args.format)
    image = load_program(fmt, _read_source(args.input), _config_from(args))
    labels = {addr: name for name, addr in image.symbols.items()}
    for offset, word in enumerate(image.words):
        addr = image.load_address + offset
        label = f"{labels[addr]}:" if addr in labels else ""
        print(f"{addr:02X}  {word:04X}  {label:<12s}{DEFAULT_TABLE.disassemble(word)}")
    return 0


# ── hexdump ──────────────────────────────────────────────────────────────
def cmd_hexdump(args):
    session = _open_session(args)
    mem = session.engine.mem
    start = _parse_hex(args.start)
    length = _parse_hex(args.length) if args.length else None
    print(mem.hexdump(start, length))
    return 0


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND DISPATCH TABLE
# ═════════════════════════════════════════════════════════════════════════════

COMMANDS = {
    "run": cmd_run,
    "asm": cmd_asm,
    "disasm": cmd_disasm,
    "hexdump": cmd_hexdump,
}


if __name__ == "__main__":
    sys.exit(main())
