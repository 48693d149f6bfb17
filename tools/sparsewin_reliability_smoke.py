#!/usr/bin/env python3
"""Reliability smoke test for the sparse-window session (seeded random command runs)."""
from __future__ import annotations

import argparse
import random
import re
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

import sparsewin_core as core  # noqa: E402
from sparsewin_core import DispatchError, InvalidArgument, Selector  # noqa: E402
from sparsewin_session import COMMANDS, Session  # noqa: E402

_VALUE = r'(?:"<\d{4}-\d{2}-\d{2}>"|\d+|\{[^{}&]+\})'
_CLAUSE = rf"[A-Z]+(?:>=|<=|=){_VALUE}"
_QUERY_RE = re.compile(rf"^{_CLAUSE}(?:&{_CLAUSE})*$")

_TODAY = core.from_calendar_date(2024, 2, 29)

_CONF = {
    "todo_groups": [["TODO"], ["DOING"], ["TODO", "DOING"], ["DONE"]],
    "priority_groups": [["A", "A"], ["A", "C"], ["B", "D"]],
    "reset_filters": True,
}


class _Calendar:
    def __init__(self, rng: random.Random, fail_rate: float):
        self.rng = rng
        self.fail_rate = fail_rate
        self.painted = 0

    def paint(self, highlights, cursor):
        if self.rng.random() < self.fail_rate:
            raise RuntimeError("calendar hiccup")
        self.painted += 1


class _Document:
    def __init__(self, rng: random.Random, fail_rate: float):
        self.rng = rng
        self.fail_rate = fail_rate
        self.applied: list[str] = []

    def apply(self, query):
        if self.rng.random() < self.fail_rate:
            raise RuntimeError("document hiccup")
        self.applied.append(query)


def _check_invariants(session: Session, step: int, name: str) -> None:
    iv = session.state.interval
    ctx = f"step {step} ({name}): {iv}"
    if not iv.is_normalized:
        raise AssertionError(f"interval not normalized after {ctx}")
    if iv.left > iv.right:
        raise AssertionError(f"left > right after {ctx}")
    q = session.query()
    if q != session.query():
        raise AssertionError(f"compile not idempotent after {ctx}")
    if q.text is not None and not _QUERY_RE.match(q.text):
        raise AssertionError(f"query {q.text!r} breaks the grammar after {ctx}")
    if q.text == "":
        raise AssertionError(f"empty query text after {ctx}")
    mode = session.state.time_mode.mode
    if mode is core.TimeMode.NONE and q.highlights:
        raise AssertionError(f"highlights without a time mode after {ctx}")
    start, end = core.visible_window(_TODAY)
    for h in q.highlights:
        if not start <= h.day <= end:
            raise AssertionError(f"highlight {core.format_iso(h.day)} outside the window after {ctx}")
    if mode is not core.TimeMode.NONE and iv.selector is not Selector.NONE:
        if q.text.count("&") != q.text.count("TODO=") + 2 * q.text.count("PRIORITY>="):
            raise AssertionError(f"one-sided window still carries a range clause after {ctx}")


def run_sequence(seed: int, steps: int, fail_rate: float = 0.1) -> dict:
    rng = random.Random(seed)
    cal = _Calendar(rng, fail_rate)
    doc = _Document(rng, fail_rate)
    session = Session(core.config_from_mapping(_CONF), calendar=cal, document=doc, clock=lambda: _TODAY)
    names = sorted(COMMANDS)
    dispatch_errors = 0
    rejected = 0
    for step in range(steps):
        name = rng.choice(names)
        cmd = COMMANDS[name]
        n = None
        if cmd.takes_n:
            n = rng.choice([1, 1, 2, 3, 7, 30, 0, -2])
        before = session.state
        try:
            session.run(name, n, sync=rng.random() < 0.7)
        except DispatchError:
            dispatch_errors += 1
        except InvalidArgument:
            rejected += 1
            if session.state != before:
                raise AssertionError(f"step {step} ({name} {n}): rejected command changed state")
        _check_invariants(session, step, name)

        # a quiet shift and its inverse must leave no trace
        if cmd.takes_n and name.startswith("range-") and n and n > 0:
            iv = session.state.interval
            back = "range-backward" if name == "range-forward" else "range-forward"
            session.run(back, n, sync=False)
            session.run(name, n, sync=False)
            if session.state.interval.triple() != iv.triple():
                raise AssertionError(f"step {step}: {name} {n} is not reversible")
    return {
        "painted": cal.painted,
        "applied": len(doc.applied),
        "dispatch_errors": dispatch_errors,
        "rejected": rejected,
    }


def test_random_command_sequences_keep_invariants():
    for seed in range(8):
        run_sequence(seed, 400)


def test_without_failures_every_sync_reaches_the_calendar():
    stats = run_sequence(1234, 300, fail_rate=0.0)
    if stats["dispatch_errors"]:
        raise AssertionError(f"unexpected dispatch errors: {stats}")
    if stats["painted"] == 0:
        raise AssertionError("calendar never painted")


def main() -> int:
    parser = argparse.ArgumentParser(description="Sparsewin reliability smoke test")
    parser.add_argument("--seeds", type=int, default=20, help="number of seeded runs")
    parser.add_argument("--steps", type=int, default=1000, help="commands per run")
    parser.add_argument("--fail-rate", type=float, default=0.1, help="collaborator failure probability")
    args = parser.parse_args()

    for seed in range(args.seeds):
        try:
            stats = run_sequence(seed, args.steps, args.fail_rate)
        except AssertionError as e:
            print(f"[smoke] seed {seed} FAILED: {e}")
            return 1
        print(
            f"[smoke] seed {seed} ok: painted={stats['painted']} applied={stats['applied']} "
            f"dispatch_errors={stats['dispatch_errors']} rejected={stats['rejected']}"
        )
    print("[smoke] all runs completed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
