#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
sparsewin_session.py

Update orchestrator for the sparse-window filter. A Session owns the state of one
document: the interval, the TODO and priority cyclers, and the time mode.

Two phases:
  - apply(): pure state change, normalized and committed atomically
  - sync():  compile the query, paint the calendar, push the query to the document
             filter when auto-apply is on

run() glues both behind the command table that front ends bind to keys.
"""

from __future__ import annotations

import os
import random
import subprocess
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol, Sequence

import sparsewin_core as core
from sparsewin_core import (
    CompiledQuery,
    Config,
    Direction,
    DispatchError,
    FilterGroupCycler,
    Flank,
    Highlight,
    Interval,
    InvalidArgument,
    Selector,
    SparsewinError,
    TimeModeSelector,
    diag,
)


# ──────────────────────────────────────────────────────────────────────────────
# Collaborators
# ──────────────────────────────────────────────────────────────────────────────
class CalendarDisplay(Protocol):
    def paint(self, highlights: Sequence[Highlight], cursor: int) -> None: ...


class DocumentFilter(Protocol):
    def apply(self, query: str) -> None: ...


def run_command(
    cmd: list[str],
    *,
    env: dict | None = None,
    input_text: str | None = None,
    timeout: float = 3.0,
    retries: int = 2,
    retry_delay: float = 0.15,
) -> tuple[bool, str, str]:
    """Run a subprocess; returns (ok, stdout, stderr). Uses env or os.environ.copy()."""
    env = env or os.environ.copy()
    last_out = ""
    last_err = ""
    attempts = max(1, int(retries))
    for attempt in range(1, attempts + 1):
        try:
            proc = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            last_out = e.stdout if isinstance(e.stdout, str) else ""
            last_err = "timeout"
        except OSError as e:
            # missing binary: retrying will not help
            return False, "", str(e)
        else:
            last_out = proc.stdout or ""
            last_err = proc.stderr or ""
            if proc.returncode == 0:
                return True, last_out, last_err
        if attempt < attempts:
            delay = retry_delay * (2 ** (attempt - 1))
            jitter = random.uniform(0.0, retry_delay) if retry_delay > 0 else 0.0
            time.sleep(delay + jitter)
    return False, last_out, last_err


class CommandDocumentFilter:
    """Hands the query to an external program, e.g. an editor client.

    Every argument containing "{query}" gets the query substituted; when no argument
    does, the query is written to the program's stdin instead.
    """

    def __init__(self, command: Sequence[str], timeout: float = 3.0, retries: int = 2):
        if not command:
            raise InvalidArgument("apply command must not be empty")
        self.command = list(command)
        self.timeout = timeout
        self.retries = retries

    def build(self, query: str) -> tuple[list[str], Optional[str]]:
        if any("{query}" in part for part in self.command):
            return [part.replace("{query}", query) for part in self.command], None
        return list(self.command), query + "\n"

    def apply(self, query: str) -> None:
        cmd, stdin = self.build(query)
        ok, _out, err = run_command(cmd, input_text=stdin, timeout=self.timeout, retries=self.retries)
        if not ok:
            raise SparsewinError(f"{cmd[0]} failed: {err.strip() or 'no output'}")


# ──────────────────────────────────────────────────────────────────────────────
# State & mutations
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class SessionState:
    interval: Interval
    todo: FilterGroupCycler
    priority: FilterGroupCycler
    time_mode: TimeModeSelector


@dataclass(frozen=True)
class Step:
    state: SessionState
    midpoint_moved: bool = False


Mutation = Callable[[SessionState, int, "Session"], Step]


def _range_shift(direction: Direction) -> Mutation:
    def mutate(state: SessionState, n: int, session: Session) -> Step:
        s = core.shift_range(state.interval, direction, n)
        return Step(replace(state, interval=s.interval), s.midpoint_moved)
    return mutate


def _week_shift(direction: Direction) -> Mutation:
    def mutate(state: SessionState, n: int, session: Session) -> Step:
        s = core.shift_range(state.interval, direction, session.config.week_days)
        return Step(replace(state, interval=s.interval), s.midpoint_moved)
    return mutate


def _flank_shift(which: Flank, direction: Direction) -> Mutation:
    def mutate(state: SessionState, n: int, session: Session) -> Step:
        s = core.shift_flank(state.interval, which, direction, n)
        return Step(replace(state, interval=s.interval), s.midpoint_moved)
    return mutate


def _from_midpoint(selector: Selector) -> Mutation:
    def mutate(state: SessionState, n: int, session: Session) -> Step:
        return Step(replace(state, interval=core.set_from_midpoint(state.interval, selector)))
    return mutate


def _stop_midpoint(state: SessionState, n: int, session: Session) -> Step:
    return Step(replace(state, interval=core.clear_from_midpoint(state.interval)))


def _reset(state: SessionState, n: int, session: Session) -> Step:
    iv = core.reset(session.today(), session.config.half_width)
    out = replace(state, interval=iv)
    if session.config.reset_filters:
        out = replace(out, todo=state.todo.reset(), priority=state.priority.reset())
    return Step(out, iv.midpoint != state.interval.midpoint)


def _cycle(attr: str, forward: bool) -> Mutation:
    def mutate(state: SessionState, n: int, session: Session) -> Step:
        cur = getattr(state, attr)
        return Step(replace(state, **{attr: cur.next() if forward else cur.previous()}))
    return mutate


@dataclass(frozen=True)
class Command:
    name: str
    key: str
    help: str
    mutate: Optional[Mutation] = None
    action: Optional[Callable[["Session"], object]] = None
    takes_n: bool = False


COMMANDS: dict[str, Command] = {
    c.name: c
    for c in (
        Command("reset", "r", "re-center the range on today", mutate=_reset),
        Command("range-forward", "f", "shift the whole range forward N days",
                mutate=_range_shift(Direction.FORWARD), takes_n=True),
        Command("range-backward", "b", "shift the whole range backward N days",
                mutate=_range_shift(Direction.BACKWARD), takes_n=True),
        Command("week-forward", "F", "shift the whole range forward a week",
                mutate=_week_shift(Direction.FORWARD)),
        Command("week-backward", "B", "shift the whole range backward a week",
                mutate=_week_shift(Direction.BACKWARD)),
        Command("lower-forward", "lf", "move the lower bound forward N days",
                mutate=_flank_shift(Flank.LEFT, Direction.FORWARD), takes_n=True),
        Command("lower-backward", "lb", "move the lower bound backward N days",
                mutate=_flank_shift(Flank.LEFT, Direction.BACKWARD), takes_n=True),
        Command("upper-forward", "uf", "move the upper bound forward N days",
                mutate=_flank_shift(Flank.RIGHT, Direction.FORWARD), takes_n=True),
        Command("upper-backward", "ub", "move the upper bound backward N days",
                mutate=_flank_shift(Flank.RIGHT, Direction.BACKWARD), takes_n=True),
        Command("before-midpoint", "<", "match everything up to the midpoint",
                mutate=_from_midpoint(Selector.BEFORE)),
        Command("after-midpoint", ">", "match everything from the midpoint on",
                mutate=_from_midpoint(Selector.AFTER)),
        Command("stop-midpoint", "=", "back to the two-sided range", mutate=_stop_midpoint),
        Command("todo-next", "t", "next TODO group", mutate=_cycle("todo", True)),
        Command("todo-previous", "T", "previous TODO group", mutate=_cycle("todo", False)),
        Command("priority-next", "p", "next priority group", mutate=_cycle("priority", True)),
        Command("priority-previous", "P", "previous priority group", mutate=_cycle("priority", False)),
        Command("mode-next", "m", "next timestamp field", mutate=_cycle("time_mode", True)),
        Command("mode-previous", "M", "previous timestamp field", mutate=_cycle("time_mode", False)),
        Command("toggle-apply", "a", "toggle applying the query automatically",
                action=lambda s: s.toggle_auto_apply()),
        Command("apply", "A", "apply the current query now", action=lambda s: s.force_apply()),
    )
}

COMMAND_KEYS: dict[str, str] = {c.key: c.name for c in COMMANDS.values()}


def priority_label(v: int) -> str:
    return chr(v) if ord("A") <= v <= ord("Z") else str(v)


def resolve_command(word: str) -> Command:
    w = (word or "").strip()
    cmd = COMMANDS.get(w) or COMMANDS.get(COMMAND_KEYS.get(w, ""))
    if cmd is None:
        raise InvalidArgument(f"unknown command {word!r}")
    return cmd


# ──────────────────────────────────────────────────────────────────────────────
# Session
# ──────────────────────────────────────────────────────────────────────────────
class Session:
    """State and collaborators for one open document."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        calendar: CalendarDisplay | None = None,
        document: DocumentFilter | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.config = config or core.config_from_mapping({})
        self.calendar = calendar
        self.document = document
        self._clock = clock
        self.auto_apply = self.config.auto_apply
        self.state = SessionState(
            interval=Interval(),
            todo=self.config.todo_groups,
            priority=self.config.priority_groups,
            time_mode=TimeModeSelector(self.config.time_mode),
        )
        self.last_query: CompiledQuery | None = None
        self.last_applied: str | None = None

    def today(self) -> int:
        if self._clock is not None:
            return self._clock()
        return core.today_absolute(self.config.zone)

    def _normalized(self, state: SessionState) -> SessionState:
        iv = core.normalize(state.interval, self.today(), self.config.half_width)
        return state if iv is state.interval else replace(state, interval=iv)

    @property
    def interval(self) -> Interval:
        self.state = self._normalized(self.state)
        return self.state.interval

    # ── Phase 1: mutate ───────────────────────────────────────────────────────
    def apply(self, mutation: Mutation, n: int = 1) -> bool:
        """Apply one mutation; returns whether it moved the midpoint.

        The new state is built from the current one and committed only once it
        is normalized, so a failing mutation leaves the session untouched.
        """
        base = self._normalized(self.state)
        step = mutation(base, n, self)
        self.state = self._normalized(step.state)
        return step.midpoint_moved

    # ── Phase 2: compile & dispatch ───────────────────────────────────────────
    def query(self) -> CompiledQuery:
        st = self._normalized(self.state)
        self.state = st
        return core.compile_query(
            st.interval,
            st.todo,
            st.priority,
            st.time_mode,
            today=self.today(),
            window_before=self.config.visible_months_before,
            window_after=self.config.visible_months_after,
        )

    def _push(self, text: str) -> bool:
        if self.document is None:
            diag("no document filter attached; query not applied")
            return False
        self.document.apply(text)
        self.last_applied = text
        diag(f"applied {text}")
        return True

    def sync(self) -> CompiledQuery:
        """Paint the highlights; push the query when auto-apply is on.

        Both collaborators are always attempted; their failures are collected and
        raised together as DispatchError after the state is already committed.
        """
        q = self.query()
        self.last_query = q
        failures: list[tuple[str, Exception]] = []
        if self.calendar is not None:
            try:
                self.calendar.paint(q.highlights, self.state.interval.midpoint)
            except Exception as e:
                diag(f"calendar paint failed: {e}")
                failures.append(("calendar", e))
        if self.auto_apply:
            if q.text is None:
                diag("no active clause; skipping apply")
            else:
                try:
                    self._push(q.text)
                except Exception as e:
                    diag(f"document filter failed: {e}")
                    failures.append(("document", e))
        if failures:
            raise DispatchError(failures)
        return q

    def force_apply(self) -> bool:
        """Push the current query regardless of auto-apply.

        False when there is nothing to push or no document filter to push to.
        """
        q = self.query()
        self.last_query = q
        if q.text is None:
            diag("no active clause; skipping apply")
            return False
        try:
            return self._push(q.text)
        except Exception as e:
            diag(f"document filter failed: {e}")
            raise DispatchError([("document", e)]) from e

    def toggle_auto_apply(self) -> bool:
        self.auto_apply = not self.auto_apply
        diag(f"auto-apply {'on' if self.auto_apply else 'off'}")
        return self.auto_apply

    # ── Command surface ───────────────────────────────────────────────────────
    def run(self, command: str, n: int | None = None, sync: bool = True):
        """Run a command by name (or key). sync=False batches: state only, no dispatch."""
        cmd = resolve_command(command)
        if n is not None and not cmd.takes_n:
            raise InvalidArgument(f"{cmd.name} does not take a day count")
        if cmd.action is not None:
            result = cmd.action(self)
            diag(f"{cmd.name} -> {result}")
            if sync and cmd.name != "apply":
                self.sync()
            return result
        moved = self.apply(cmd.mutate, 1 if n is None else n)
        iv = self.state.interval
        diag(
            f"{cmd.name}{'' if n is None else f' {n}'} -> "
            f"{core.format_iso(iv.left)}..{core.format_iso(iv.right)} mid {core.format_iso(iv.midpoint)}"
        )
        if sync:
            self.sync()
        return moved

    def describe(self) -> str:
        """One-line status for front ends."""
        st = self._normalized(self.state)
        self.state = st
        iv = st.interval
        if iv.selector is Selector.BEFORE:
            window = f"..{core.format_iso(iv.midpoint)}"
        elif iv.selector is Selector.AFTER:
            window = f"{core.format_iso(iv.midpoint)}.."
        else:
            window = f"{core.format_iso(iv.left)}..{core.format_iso(iv.right)} (mid {core.format_iso(iv.midpoint)})"
        todo = st.todo.current()
        prio = st.priority.current()
        return " | ".join(
            (
                f"mode {st.time_mode.mode.value}",
                window,
                "todo " + ("-" if todo is None else ",".join(todo)),
                "priority " + ("-" if prio is None else f"{priority_label(prio[0])}..{priority_label(prio[1])}"),
                f"auto-apply {'on' if self.auto_apply else 'off'}",
            )
        )


__all__ = [
    "CalendarDisplay",
    "DocumentFilter",
    "CommandDocumentFilter",
    "run_command",
    "SessionState",
    "Step",
    "Command",
    "COMMANDS",
    "COMMAND_KEYS",
    "resolve_command",
    "Session",
]
