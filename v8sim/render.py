"""
Snapshot rendering for the CLI.

Two outputs:
  - format_report()   plain text, used for quiet mode and piped output
  - render_snapshot() rich tables (registers, flags, memory around PC)
                      for the interactive debugger

Renderers only read SessionSnapshot objects; they never touch a Session.
"""

from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .cpu.regs import flags_str, reg_name
from .session import SessionSnapshot

MEMORY_ROWS = 8
WORDS_PER_ROW = 8


# ──────────────────────────────────────────────
# Plain text
# ──────────────────────────────────────────────

def format_registers(snap: SessionSnapshot, per_line: int = 8) -> List[str]:
    lines = []
    for base in range(0, len(snap.registers), per_line):
        lines.append(' '.join(f"{reg_name(i)}={snap.registers[i]:04X}"
                              for i in range(base, min(base + per_line, len(snap.registers)))))
    return lines


def format_report(snap: SessionSnapshot) -> str:
    """Final-state report: state, PC, flags, registers, error if any."""
    head = f"{snap.state.value}  PC={snap.pc:02X}  FLAGS=[{flags_str(snap.flags)}]  steps={snap.steps}"
    lines = [head]
    lines.extend(format_registers(snap))
    if snap.error is not None:
        lines.append(f"error: {snap.error}")
    return '\n'.join(lines)


# ──────────────────────────────────────────────
# Rich
# ──────────────────────────────────────────────

def register_table(snap: SessionSnapshot) -> Table:
    table = Table(title="Registers", show_header=False, box=None, padding=(0, 2))
    for _ in range(4):
        table.add_column()
    highlight = snap.last_write[1] if snap.last_write and snap.last_write[0] == 'reg' else None
    for row in range(4):
        cells = []
        for col in range(4):
            i = row * 4 + col
            cell = Text(f"{reg_name(i)} {snap.registers[i]:04X}")
            if i == highlight:
                cell.stylize("bold yellow")
            cells.append(cell)
        table.add_row(*cells)
    return table


def status_table(snap: SessionSnapshot) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    state = snap.state.value
    if snap.pause_reason is not None and snap.state.value == 'PAUSED':
        state += f" ({snap.pause_reason.value.lower()})"
    table.add_row("State", state)
    table.add_row("PC", f"{snap.pc:02X}  {snap.instruction}")
    bits = snap.flag_bits
    table.add_row("Flags", f"{flags_str(snap.flags)}  "
                           + ' '.join(f"{k}={int(v)}" for k, v in bits.items()))
    table.add_row("Steps", str(snap.steps))
    if snap.breakpoints:
        table.add_row("Breaks", ' '.join(f"{a:02X}" for a in sorted(snap.breakpoints)))
    if snap.error is not None:
        table.add_row("Error", Text(str(snap.error), style="bold red"))
    return table


def memory_table(snap: SessionSnapshot, start: Optional[int] = None,
                 rows: int = MEMORY_ROWS) -> Table:
    """Memory rows around PC. PC is reversed, breakpoints red, last write yellow."""
    capacity = len(snap.memory_view)
    if start is None:
        start = max(0, (snap.pc // WORDS_PER_ROW - rows // 2) * WORDS_PER_ROW)
    start = min(start, max(0, capacity - rows * WORDS_PER_ROW))
    written = snap.last_write[1] if snap.last_write and snap.last_write[0] == 'mem' else None

    table = Table(title="Memory", box=None, padding=(0, 1))
    table.add_column("ADDR", style="dim")
    for col in range(WORDS_PER_ROW):
        table.add_column(f"+{col:X}")
    for base in range(start, min(capacity, start + rows * WORDS_PER_ROW), WORDS_PER_ROW):
        cells = []
        for addr in range(base, base + WORDS_PER_ROW):
            if addr >= capacity:
                cells.append(Text(""))
                continue
            cell = Text(f"{snap.memory_view[addr]:04X}")
            if addr in snap.breakpoints:
                cell.stylize("red")
            if addr == written:
                cell.stylize("bold yellow")
            if addr == snap.pc:
                cell.stylize("reverse")
            cells.append(cell)
        table.add_row(f"{base:02X}", *cells)
    return table


def render_snapshot(snap: SessionSnapshot, console: Optional[Console] = None):
    console = console or Console()
    console.print(status_table(snap))
    console.print(register_table(snap))
    console.print(memory_table(snap))
