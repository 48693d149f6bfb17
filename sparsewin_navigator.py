#!/usr/bin/env python3
"""
Sparse-window navigator

Steer a date window and TODO/priority filter groups from the keyboard and watch the
match query they compile to:
- Calendar of the visible window (previous, current and next month) with the
  active range in green and the midpoint highlighted.
- Fuzzy command prompt; every command also has a short key (see `help`).
- The query is printed, or handed to `apply_command` from the config when
  auto-apply is on (or on `apply`).
- `--print-query` runs commands without a prompt, for scripts and editor glue.
"""

from __future__ import annotations

import argparse
import calendar
import os
import shutil
import sys
from dataclasses import replace
from datetime import date
from typing import List, Optional, Sequence, Set

from rich.align import Align
from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from prompt_toolkit import prompt
from prompt_toolkit.completion import FuzzyCompleter, WordCompleter

import sparsewin_core as core
from sparsewin_core import ConfigError, DispatchError, Highlight, SparsewinError
from sparsewin_session import COMMANDS, CommandDocumentFilter, Session


# ──────────────────────────────────────────────────────────────────────────────
# Constants / styling
# ──────────────────────────────────────────────────────────────────────────────
console = Console()

COLORS = {
    'primary': 'bright_cyan',
    'secondary': 'bright_blue',
    'success': 'green',
    'warning': 'bright_yellow',
    'error': 'bright_red',
    'muted': 'grey58',
    'accent': 'bright_magenta',
}


# ──────────────────────────────────────────────────────────────────────────────
# Collaborators
# ──────────────────────────────────────────────────────────────────────────────
class RichCalendarDisplay:
    """Paints the visible window, one small month table per month."""

    def __init__(self, session_today, months_before: int = 1, months_after: int = 1, out: Console | None = None):
        self._today = session_today
        self.months_before = months_before
        self.months_after = months_after
        self.console = out or console

    def _create_month_table(self, cal, year: int, month: int, in_range: Set[date],
                            midpoint: Optional[date], today: date) -> Table:
        table = Table(show_header=True, box=None, padding=(0, 1))
        for day in ["Mo", "Tu", "We", "Th", "Fr", "Sa", "Su"]:
            table.add_column(day, justify="center", min_width=3, style=COLORS['muted'])
        for week in cal.monthdays2calendar(year, month):
            row = []
            for day_num, _weekday in week:
                if day_num == 0:
                    row.append("   ")
                    continue
                d = date(year, month, day_num)
                style = COLORS['muted']
                if d == midpoint:
                    style = f"bold reverse {COLORS['accent']}"
                elif d in in_range:
                    style = COLORS['success']
                if d == today:
                    style += " underline"
                row.append(f"[{style}]{day_num:2d}[/]")
            table.add_row(*row)
        return table

    def render(self, highlights: Sequence[Highlight], cursor: int) -> Panel:
        today_abs = self._today()
        start, end = core.visible_window(today_abs, self.months_before, self.months_after)
        in_range = {date.fromordinal(h.day) for h in highlights}
        midpoint = next((date.fromordinal(h.day) for h in highlights if h.is_midpoint), None)
        today = date.fromordinal(today_abs)
        cal = calendar.Calendar(calendar.MONDAY)

        panels = []
        y, m, _ = core.to_calendar_date(start)
        last = core.to_calendar_date(end)[:2]
        while (y, m) <= last:
            mtable = self._create_month_table(cal, y, m, in_range, midpoint, today)
            panels.append(Panel(mtable, title=f"{calendar.month_name[m]} {y}",
                                border_style=COLORS['secondary'], padding=(0, 1), expand=False))
            m += 1
            if m == 13:
                m = 1
                y += 1

        if highlights:
            summary = f"📅 {len(in_range)} day(s) highlighted • cursor {core.format_iso(cursor)}"
        else:
            summary = f"📅 no time filter • cursor {core.format_iso(cursor)}"
        return Panel(Align.left(Columns(panels, equal=False, expand=False, padding=1)),
                     title=summary, border_style=COLORS['primary'], padding=(0, 1), expand=False)

    def paint(self, highlights: Sequence[Highlight], cursor: int) -> None:
        self.console.print(self.render(highlights, cursor))


class ConsoleDocumentFilter:
    """Fallback when no apply_command is configured: show the query."""

    def __init__(self, out: Console | None = None):
        self.console = out or console

    def apply(self, query: str) -> None:
        self.console.print(Panel(Text(query), title="Query applied", border_style=COLORS['success'], expand=False))


# ──────────────────────────────────────────────────────────────────────────────
# Self-check
# ──────────────────────────────────────────────────────────────────────────────
def _emit_check(status: str, label: str, detail: str) -> None:
    color = {
        "OK": COLORS["success"],
        "WARN": COLORS["warning"],
        "FAIL": COLORS["error"],
    }.get(status, COLORS["muted"])
    console.print(f"[{color}]{status:>4}[/] {label}: {detail}")


def _self_check(config_path: Optional[str]) -> int:
    console.print("[bold]Sparsewin self-check[/bold]")
    ok = True

    try:
        cfg = core.load_config(config_path)
    except ConfigError as e:
        _emit_check("FAIL", "config", str(e))
        return 1
    if cfg.source:
        _emit_check("OK", "config", f"found {cfg.source}")
    else:
        _emit_check("WARN", "config", "no config file found; defaults in use")
        for p in core._config_paths():
            console.print(f"  [{COLORS['muted']}]- {p}[/]")

    try:
        today = core.today_absolute(cfg.zone)
        _emit_check("OK", "timezone", f"{cfg.tz_name} (today {core.format_iso(today)})")
    except SparsewinError as e:
        ok = False
        _emit_check("FAIL", "timezone", str(e))

    _emit_check("OK", "todo groups", f"{len(cfg.todo_groups) - 1} configured")
    _emit_check("OK", "priority groups", f"{len(cfg.priority_groups) - 1} configured")

    if cfg.apply_command:
        binary = shutil.which(cfg.apply_command[0])
        if binary:
            _emit_check("OK", "apply command", binary)
        else:
            ok = False
            _emit_check("FAIL", "apply command", f"{cfg.apply_command[0]} not found in PATH")
    else:
        _emit_check("WARN", "apply command", "not configured; queries are printed only")

    if os.environ.get("SPARSEWIN_DIAG") == "1":
        console.print("\n[bold]Diagnostics[/bold]")
        console.print(f"sparsewin_core={getattr(core, '__file__', 'unknown')}")
        for k in ("SPARSEWIN_CONFIG", "SPARSEWIN_DIAG_LOG", "SPARSEWIN_DIAG_LOG_PATH", "XDG_CONFIG_HOME"):
            v = os.environ.get(k)
            if v is not None:
                console.print(f"env.{k}={v}")

    return 0 if ok else 1


# ──────────────────────────────────────────────────────────────────────────────
# Command loop
# ──────────────────────────────────────────────────────────────────────────────
def _help_table() -> Table:
    table = Table(title="Commands", box=None, padding=(0, 2))
    table.add_column("Key", style=COLORS['accent'])
    table.add_column("Command", style=COLORS['primary'])
    table.add_column("N", justify="center")
    table.add_column("What it does", style=COLORS['muted'])
    for c in COMMANDS.values():
        table.add_row(c.key, c.name, "✓" if c.takes_n else "", c.help)
    table.add_row("q", "quit", "", "leave the navigator")
    return table


def _print_status(session: Session) -> None:
    q = session.last_query
    console.print(f"[{COLORS['secondary']}]{session.describe()}[/]")
    if q is not None:
        text = q.text if q.text is not None else "(no filter active)"
        console.print(f"[{COLORS['primary']}]query:[/] {text}")


def parse_command_word(word: str) -> tuple[str, Optional[int]]:
    """Split "range-forward:3" or "range-forward 3" into the name and the optional day count."""
    parts = word.replace(":", " ").split()
    if not parts:
        raise core.InvalidArgument("empty command")
    if len(parts) > 2:
        raise core.InvalidArgument(f"too many arguments in {word!r}")
    if len(parts) == 1:
        return parts[0], None
    try:
        return parts[0], int(parts[1])
    except ValueError:
        raise core.InvalidArgument(f"day count must be an integer: {parts[1]!r}") from None


def _run_reporting(session: Session, name: str, n: Optional[int], sync: bool = True) -> bool:
    try:
        session.run(name, n, sync=sync)
        return True
    except DispatchError as e:
        console.print(f"[{COLORS['warning']}]{e}[/]")
    except SparsewinError as e:
        console.print(f"[{COLORS['error']}]Error: {e}[/]")
    return False


def command_loop(session: Session) -> int:
    words: List[str] = sorted(COMMANDS) + ["help", "quit"]
    completer = FuzzyCompleter(WordCompleter(words, match_middle=True))
    console.print(Panel("🗓  Steer the window; type a command or its key (help lists them).",
                        title="Sparse window", border_style=COLORS['primary']))
    try:
        session.sync()
    except DispatchError as e:
        console.print(f"[{COLORS['warning']}]{e}[/]")
    _print_status(session)

    while True:
        try:
            line = prompt("❯ ", completer=completer).strip()
        except (KeyboardInterrupt, EOFError):
            console.print(f"\n[{COLORS['warning']}]Bye[/]")
            return 0
        if not line:
            continue
        if line in ("q", "quit", "exit"):
            return 0
        if line in ("?", "help"):
            console.print(_help_table())
            continue
        try:
            name, n = parse_command_word(line)
        except SparsewinError as e:
            console.print(f"[{COLORS['error']}]Error: {e}[/]")
            continue
        _run_reporting(session, name, n)
        _print_status(session)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Sparse-window navigator: steer a date window and filter groups into a match query",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", metavar="PATH", help="Config file (default: search order, see --self-check)")
    parser.add_argument("--mode", choices=[m.value for m in core.TimeMode], help="Starting timestamp field")
    parser.add_argument("--auto-apply", action="store_true", help="Apply the query after every command")
    parser.add_argument("--today", metavar="YYYY-MM-DD", help="Pretend today is this date")
    parser.add_argument("--no-calendar", action="store_true", help="Do not paint the calendar")
    parser.add_argument("--self-check", action="store_true", help="Run self-check diagnostics")
    parser.add_argument(
        "--print-query",
        nargs="+",
        metavar="CMD",
        help="Run commands (name or name:N) without a prompt and print the resulting query",
    )
    args = parser.parse_args(argv)

    if args.self_check:
        return _self_check(args.config)

    try:
        cfg = core.load_config(args.config)
        if args.mode:
            cfg = replace(cfg, time_mode=core.TimeMode.parse(args.mode))
        if args.auto_apply:
            cfg = replace(cfg, auto_apply=True)
        clock = None
        if args.today:
            fixed = core.parse_iso(args.today)
            clock = lambda: fixed  # noqa: E731
    except SparsewinError as e:
        console.print(f"[{COLORS['error']}]Error: {e}[/]")
        return 1

    if cfg.apply_command:
        document = CommandDocumentFilter(cfg.apply_command, timeout=cfg.apply_timeout)
    else:
        document = ConsoleDocumentFilter()
    session = Session(cfg, document=document, clock=clock)

    if args.print_query:
        for word in args.print_query:
            try:
                name, n = parse_command_word(word)
            except SparsewinError as e:
                console.print(f"[{COLORS['error']}]Error: {e}[/]")
                return 1
            if not _run_reporting(session, name, n, sync=False):
                return 1
        text = session.query().text
        print(text or "")
        return 0

    if not args.no_calendar:
        session.calendar = RichCalendarDisplay(
            session.today, cfg.visible_months_before, cfg.visible_months_after
        )

    try:
        return command_loop(session)
    except KeyboardInterrupt:
        console.print(f"\n[{COLORS['warning']}]Operation cancelled[/]")
        return 0


if __name__ == '__main__':
    sys.exit(main())
