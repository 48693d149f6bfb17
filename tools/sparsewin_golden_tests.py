#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Sparsewin Golden Tests
 - Imports local sparsewin_core.py / sparsewin_session.py
 - Verifies date helpers, interval repair rules, group cycling, the exact query text
   and highlight sets, and the session's apply/sync split
 - Covers edge cases: year rollover, flanks dragged past each other, midpoint snapping,
   one-sided windows clamped to the visible calendar, collaborator failures

Run:
  python3 tools/sparsewin_golden_tests.py
Optional:
  python3 tools/sparsewin_golden_tests.py --only midpoint --verbose
"""

import io
import os
import sys
import tempfile
from contextlib import redirect_stdout

HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(HERE))

import sparsewin_core as core  # noqa: E402
from sparsewin_core import (  # noqa: E402
    Direction,
    FilterGroupCycler,
    Flank,
    Interval,
    Selector,
    TimeMode,
    TimeModeSelector,
)
from sparsewin_session import CommandDocumentFilter, Session  # noqa: E402
from sparsewin_navigator import main as navigator_main, parse_command_word  # noqa: E402

# -------- Helpers -------------------------------------------------------------

TODAY = core.from_calendar_date(2020, 12, 31)


def iso(day):
    return core.format_iso(day)


def day(s):
    return core.parse_iso(s)


class RecordingCalendar:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def paint(self, highlights, cursor):
        self.calls.append((tuple(highlights), cursor))
        if self.fail:
            raise RuntimeError("display gone")


class RecordingDocument:
    def __init__(self, fail=False):
        self.queries = []
        self.fail = fail

    def apply(self, query):
        if self.fail:
            raise RuntimeError("buffer is read-only")
        self.queries.append(query)


def make_session(today=TODAY, calendar=None, document=None, **conf):
    cfg = core.config_from_mapping(conf)
    return Session(cfg, calendar=calendar, document=document, clock=lambda: today)


def expect(cond, msg):
    if not cond:
        raise AssertionError(msg)


def expect_raises(exc, fn, *args, **kwargs):
    try:
        fn(*args, **kwargs)
    except exc as e:
        return e
    raise AssertionError(f"{getattr(fn, '__name__', fn)} must raise {exc.__name__}")


def D(s):
    """Date literal as it appears in a query."""
    return f'"<{s}>"'


# -------- Absolute dates ------------------------------------------------------

def test_iso_roundtrip_boundaries():
    for s in ("2020-12-31", "2021-01-01", "2020-02-29", "2021-02-28", "2021-03-01",
              "1999-12-31", "2000-01-01", "0001-01-01", "9999-12-31"):
        y, m, d = (int(x) for x in s.split("-"))
        a = core.from_calendar_date(y, m, d)
        expect(core.to_calendar_date(a) == (y, m, d), f"{s} must round-trip through absolute days")
        expect(iso(a) == s, f"format_iso({a}) must give {s}, got {iso(a)}")


def test_format_iso_pads_small_years():
    expect(iso(core.from_calendar_date(9, 3, 4)) == "0009-03-04", "year must be four digits")


def test_invalid_calendar_dates_rejected():
    expect_raises(core.InvalidArgument, core.from_calendar_date, 2021, 2, 29)
    expect_raises(core.InvalidArgument, core.from_calendar_date, 2021, 13, 1)
    expect_raises(core.InvalidArgument, core.to_calendar_date, 0)
    expect_raises(core.InvalidArgument, core.to_calendar_date, core.MAX_DAY + 1)
    expect_raises(core.InvalidArgument, core.parse_iso, "31/12/2020")


def test_visible_window_across_year_rollover():
    start, end = core.visible_window(day("2021-01-15"))
    expect(iso(start) == "2020-12-01", f"window start {iso(start)}")
    expect(iso(end) == "2021-02-28", f"window end {iso(end)}")
    start, end = core.visible_window(TODAY)
    expect((iso(start), iso(end)) == ("2020-11-01", "2021-01-31"), "window around 2020-12-31")


def test_visible_window_wider_offsets_and_range_ends():
    start, end = core.visible_window(day("2020-03-10"), before=3, after=2)
    expect((iso(start), iso(end)) == ("2019-12-01", "2020-05-31"), "3 months back, 2 ahead")
    expect(core.first_day_of_previous_month(day("0001-01-20")) == core.MIN_DAY, "clamped at 0001-01-01")
    expect(core.last_day_of_next_month(day("9999-12-02")) == core.MAX_DAY, "clamped at 9999-12-31")
    expect_raises(core.InvalidArgument, core.visible_window, TODAY, -1, 1)


# -------- Interval state ------------------------------------------------------

def test_reset_centers_on_today():
    iv = core.reset(TODAY)
    expect((iso(iv.left), iso(iv.right), iso(iv.midpoint)) == ("2020-12-28", "2021-01-03", "2020-12-31"),
           f"reset around today: {iv}")
    expect(iv.selector is Selector.NONE, "reset leaves range mode")


def test_normalize_is_idempotent():
    once = core.normalize(Interval(), TODAY)
    twice = core.normalize(once, TODAY)
    expect(once == twice, "normalize twice must be a no-op")
    odd = core.normalize(Interval(left=20, right=10, midpoint=15), TODAY)
    expect(odd.left <= odd.right and odd.left <= odd.midpoint <= odd.right, f"repaired {odd}")
    expect(core.normalize(odd, TODAY) == odd, "repaired interval is stable")


def test_shift_range_roundtrip():
    iv = core.reset(TODAY)
    for n in (1, 3, 7, 40):
        fwd = core.shift_range(iv, Direction.FORWARD, n).interval
        back = core.shift_range(fwd, Direction.BACKWARD, n).interval
        expect(back.triple() == iv.triple(), f"+{n} then -{n} must restore {iv.triple()}, got {back.triple()}")


def test_week_shift_is_one_atomic_shift():
    a = make_session()
    b = make_session()
    a.run("week-forward", sync=False)
    for _ in range(7):
        b.run("range-forward", sync=False)
    expect(a.state.interval == b.state.interval, "week shift equals seven single-day shifts")
    expect(iso(a.state.interval.midpoint) == "2021-01-07", "midpoint moved a week")


def test_upper_bound_dragged_below_lower_bound():
    iv = Interval(left=10, right=10, midpoint=10)
    s = core.shift_upper_bound(iv, Direction.BACKWARD, 5)
    out = s.interval
    expect(out.left < out.right, f"must never end with left > right: {out}")
    expect((out.left, out.right) == (4, 5), f"lower bound pushed next to the moved upper bound: {out}")
    expect(out.midpoint == 5 and s.midpoint_moved, "midpoint snaps to the moved flank")


def test_lower_bound_dragged_past_upper_bound():
    iv = Interval(left=10, right=12, midpoint=11)
    out = core.shift_lower_bound(iv, Direction.FORWARD, 5).interval
    expect((out.left, out.right, out.midpoint) == (15, 16, 15), f"got {out}")


def test_normalize_lets_the_moved_flank_win():
    crossed = Interval(left=10, right=5, midpoint=7)
    out = core.normalize(crossed, TODAY, moved=Flank.RIGHT)
    expect(out.triple() == (4, 5, 5), f"moved upper bound keeps its day: {out}")
    out = core.normalize(crossed, TODAY, moved=Flank.LEFT)
    expect(out.triple() == (10, 11, 10), f"moved lower bound keeps its day: {out}")
    out = core.normalize(crossed, TODAY)
    expect(out.triple() == (10, 11, 10), f"no moved flank: lower bound kept, midpoint clamped: {out}")


def test_midpoint_snaps_only_when_outside():
    iv = Interval(left=10, right=20, midpoint=12)
    s = core.shift_flank(iv, Flank.LEFT, Direction.FORWARD, 5)
    expect(s.interval.midpoint == 15 and s.midpoint_moved, "midpoint snapped to new lower bound")
    s = core.shift_flank(iv, Flank.RIGHT, Direction.BACKWARD, 3)
    expect(s.interval.midpoint == 12 and not s.midpoint_moved, "midpoint inside the range stays")
    s = core.shift_flank(iv, Flank.RIGHT, Direction.BACKWARD, 9)
    expect(s.interval.triple() == (10, 11, 11), f"upper bound to 11 drags the midpoint: {s.interval}")


def test_flank_shift_keeps_selector_range_shift_clears_it():
    iv = core.set_from_midpoint(core.reset(TODAY), Selector.AFTER)
    out = core.shift_lower_bound(iv, Direction.BACKWARD, 2).interval
    expect(out.selector is Selector.AFTER, "flank shifts leave from-midpoint mode alone")
    out = core.shift_range(iv, Direction.FORWARD, 1).interval
    expect(out.selector is Selector.NONE, "range shifts cancel from-midpoint mode")


def test_invalid_shift_amounts():
    iv = core.reset(TODAY)
    for bad in (0, -1, 1.5, True, "2", None):
        expect_raises(core.InvalidArgument, core.shift_range, iv, Direction.FORWARD, bad)
        expect_raises(core.InvalidArgument, core.shift_flank, iv, Flank.LEFT, Direction.FORWARD, bad)
    expect_raises(core.InvalidArgument, core.set_from_midpoint, iv, Selector.NONE)


def test_failed_command_leaves_state_unchanged():
    s = make_session()
    s.run("range-forward", 2, sync=False)
    before = s.state
    expect_raises(core.InvalidArgument, s.run, "range-forward", 0)
    expect_raises(core.InvalidArgument, s.run, "upper-backward", -4)
    expect(s.state == before, "state must be untouched by a rejected command")


def test_shift_off_the_calendar_is_rejected():
    iv = Interval(left=1, right=4, midpoint=2)
    expect_raises(core.InvalidArgument, core.shift_range, iv, Direction.BACKWARD, 1)
    expect_raises(core.InvalidArgument, core.shift_upper_bound, iv, Direction.BACKWARD, 4)


# -------- Filter groups & time mode -------------------------------------------

def test_cycler_wraps_both_ways():
    c = FilterGroupCycler((None, ("DONE",), ("TODO", "DOING")))
    start = c.current()
    x = c
    for _ in range(len(c)):
        x = x.next()
    expect(x.current() == start, "len(groups) steps forward return to start")
    expect(c.previous().current() == ("TODO", "DOING"), "previous from 'no filter' wraps to last")
    expect(c.next().next().reset().current() is None, "reset goes back to no filter")


def test_cycler_needs_no_filter_sentinel():
    expect_raises(core.InvalidArgument, FilterGroupCycler, (("DONE",),))
    expect_raises(core.InvalidArgument, FilterGroupCycler, ())
    expect_raises(core.InvalidArgument, FilterGroupCycler, (None, ("DONE",)), 2)
    expect(len(core.todo_cycler([["DONE"]])) == 2, "todo_cycler prepends the no-filter entry")
    expect(len(core.todo_cycler([None, ["DONE"]])) == 2, "an explicit leading None is kept once")
    expect_raises(core.InvalidArgument, core.priority_cycler, [["C", "A"]])


def test_time_mode_cycle_order():
    seen = []
    sel = TimeModeSelector()
    for _ in range(4):
        sel = sel.next()
        seen.append(sel.mode)
    expect(seen == [TimeMode.TIMESTAMP, TimeMode.SCHEDULED, TimeMode.DEADLINE, TimeMode.NONE],
           f"mode order: {seen}")
    expect(TimeModeSelector().previous().mode is TimeMode.DEADLINE, "previous wraps to DEADLINE")


# -------- Query compiler ------------------------------------------------------

def test_reset_then_timestamp_query():
    s = make_session(time_mode="timestamp")
    s.run("reset", sync=False)
    expected = f"TIMESTAMP>={D('2020-12-28')}&TIMESTAMP<={D('2021-01-03')}"
    expect(s.query().text == expected, f"got {s.query().text!r}")


def test_end_to_end_todo_and_priority():
    s = make_session(todo_groups=[["DONE"], ["TODO", "DOING"]], priority_groups=[[65, 68]])
    s.run("todo-next", sync=False)
    s.run("priority-next", sync=False)
    expect(s.query().text == "TODO={DONE}&PRIORITY>=65&PRIORITY<=68", f"got {s.query().text!r}")


def test_todo_alternation_is_escaped():
    c = FilterGroupCycler((None, ("TODO", "DOING", "WAIT"))).next()
    q = core.compile_query(core.reset(TODAY), c, core.priority_cycler([]), TimeModeSelector(), today=TODAY)
    expect(q.text == "TODO={TODO\\|DOING\\|WAIT}", f"got {q.text!r}")


def test_clause_order_date_todo_priority():
    s = make_session(time_mode="scheduled", priority_groups=[["A", "C"]])
    s.run("todo-next", sync=False)
    s.run("priority-next", sync=False)
    expect(s.query().text == (
        f"SCHEDULED>={D('2020-12-28')}&SCHEDULED<={D('2021-01-03')}"
        "&TODO={TODO}&PRIORITY>=65&PRIORITY<=67"
    ), f"got {s.query().text!r}")


def test_from_midpoint_before_and_back():
    s = make_session(time_mode="timestamp")
    s.run("range-forward", 2, sync=False)
    flanks = s.query().text
    s.run("before-midpoint", sync=False)
    expect(s.query().text == f"TIMESTAMP<={D('2021-01-02')}", f"got {s.query().text!r}")
    s.run("after-midpoint", sync=False)
    expect(s.query().text == f"TIMESTAMP>={D('2021-01-02')}", f"got {s.query().text!r}")
    s.run("stop-midpoint", sync=False)
    expect(s.query().text == flanks, "stop-midpoint restores the exact flank clause")


def test_no_active_clause_gives_none():
    s = make_session()
    q = s.query()
    expect(q.text is None and q.highlights == (), "mode none and no groups: nothing to filter")


def test_highlights_cover_range_and_tag_midpoint():
    q = make_session(time_mode="deadline").query()
    expect([iso(h.day) for h in q.highlights][0] == "2020-12-28", "starts at left flank")
    expect(len(q.highlights) == 7, f"seven days, got {len(q.highlights)}")
    mids = [h for h in q.highlights if h.is_midpoint]
    expect(len(mids) == 1 and iso(mids[0].day) == "2020-12-31", "only the midpoint is tagged")
    expect(q.midpoint == TODAY, "CompiledQuery.midpoint")


def test_highlights_clamped_to_visible_window():
    s = make_session(time_mode="timestamp")
    s.run("range-backward", 60, sync=False)
    q = s.query()
    expect([iso(h.day) for h in q.highlights] == ["2020-11-01", "2020-11-02", "2020-11-03", "2020-11-04"],
           f"clamped at window start: {[iso(h.day) for h in q.highlights]}")
    expect(q.highlights[0].is_midpoint, "midpoint 2020-11-01 still tagged")
    s.run("range-backward", 30, sync=False)
    expect(s.query().highlights == (), "range fully before the window highlights nothing")
    expect(s.query().text is not None, "clamping never touches the query text")


def test_one_sided_highlights():
    s = make_session(time_mode="timestamp")
    s.run("before-midpoint", sync=False)
    q = s.query()
    expect((iso(q.highlights[0].day), iso(q.highlights[-1].day)) == ("2020-11-01", "2020-12-31"),
           "before: window start .. midpoint")
    expect(len(q.highlights) == 61 and q.highlights[-1].is_midpoint, "61 days ending on the midpoint")
    s.run("after-midpoint", sync=False)
    q = s.query()
    expect((iso(q.highlights[0].day), iso(q.highlights[-1].day)) == ("2020-12-31", "2021-01-31"),
           "after: midpoint .. window end")


def test_compile_is_idempotent():
    s = make_session(time_mode="timestamp")
    s.run("todo-next", sync=False)
    expect(s.query() == s.query(), "two compiles without a mutation must match")


def test_compile_refuses_unnormalized_interval():
    expect_raises(core.InconsistentInterval, core.compile_query, Interval(), core.todo_cycler([]),
                  core.priority_cycler([]), TimeModeSelector(), today=TODAY)


# -------- Session: apply / sync -----------------------------------------------

def test_sync_paints_always_applies_only_with_auto_apply():
    cal, doc = RecordingCalendar(), RecordingDocument()
    s = make_session(calendar=cal, document=doc, time_mode="timestamp")
    s.run("range-forward")
    expect(len(cal.calls) == 1 and doc.queries == [], "auto-apply off: highlight only")
    s.run("toggle-apply")
    expect(s.auto_apply and len(doc.queries) == 1, "toggling on syncs and applies")
    s.run("range-forward")
    expect(doc.queries[-1] == s.query().text, "applied text is the compiled query")
    expect(len(cal.calls) == 3, "every synced command repaints")


def test_quiet_batch_then_sync():
    cal, doc = RecordingCalendar(), RecordingDocument()
    s = make_session(calendar=cal, document=doc, auto_apply=True, time_mode="timestamp")
    for _ in range(3):
        s.run("range-forward", sync=False)
    expect(cal.calls == [] and doc.queries == [], "batched commands dispatch nothing")
    q = s.sync()
    expect(len(cal.calls) == 1 and doc.queries == [q.text], "one dispatch after the batch")
    expect(cal.calls[0][1] == s.state.interval.midpoint, "calendar cursor is the midpoint")


def test_empty_query_is_never_applied():
    doc = RecordingDocument()
    s = make_session(document=doc, auto_apply=True)
    s.sync()
    expect(doc.queries == [], "no clause: apply step skipped")
    expect(s.force_apply() is False and doc.queries == [], "force-apply skips empty queries too")
    s.run("todo-next", sync=False)
    expect(s.force_apply() is True and doc.queries == ["TODO={TODO}"], "force-apply ignores the toggle")


def test_force_apply_without_document_reports_nothing_pushed():
    s = make_session()
    s.run("todo-next", sync=False)
    expect(s.force_apply() is False, "no document filter: nothing was pushed")
    expect(s.last_applied is None, "nothing recorded as applied")


def test_dispatch_failure_keeps_committed_state():
    cal, doc = RecordingCalendar(fail=True), RecordingDocument(fail=True)
    s = make_session(calendar=cal, document=doc, auto_apply=True, time_mode="timestamp")
    err = expect_raises(core.DispatchError, s.run, "range-forward", 3)
    expect([name for name, _ in err.failures] == ["calendar", "document"], "both failures reported")
    expect(iso(s.state.interval.midpoint) == "2021-01-03", "mutation committed before dispatch")
    cal.fail = doc.fail = False
    s.run("range-backward", 3)
    expect(s.state.interval.midpoint == TODAY and doc.queries, "next command works normally")


def test_reset_command_and_reset_filters():
    s = make_session(time_mode="timestamp")
    s.run("todo-next", sync=False)
    s.run("range-forward", 10, sync=False)
    moved = s.run("reset", sync=False)
    expect(moved and s.state.interval.midpoint == TODAY, "reset re-centers")
    expect(s.state.todo.current() == ("TODO",), "groups survive reset by default")
    s = make_session(reset_filters=True, half_width=1)
    s.run("todo-next", sync=False)
    s.run("reset", sync=False)
    expect(s.state.todo.current() is None, "reset_filters clears the groups")
    expect(s.state.interval.right - s.state.interval.left == 2, "half width from config")


def test_command_surface_errors():
    s = make_session()
    expect_raises(core.InvalidArgument, s.run, "sideways")
    expect_raises(core.InvalidArgument, s.run, "todo-next", 2)
    expect(s.run("f", 2, sync=False) is True, "short keys resolve to commands")
    expect(s.state.interval.midpoint == TODAY + 2, "key 'f' shifted the range")


def test_describe_status_line():
    s = make_session(time_mode="timestamp")
    expect(s.describe() == "mode timestamp | 2020-12-28..2021-01-03 (mid 2020-12-31) | todo - | priority - | auto-apply off",
           f"fresh session status: {s.describe()}")
    s.run("todo-next", sync=False)
    s.run("priority-next", sync=False)
    s.run("after-midpoint", sync=False)
    s.run("toggle-apply", sync=False)
    expect(s.describe() == "mode timestamp | 2020-12-31.. | todo TODO | priority A..A | auto-apply on",
           f"status after cycling: {s.describe()}")


# -------- Config --------------------------------------------------------------

def test_config_from_mapping_defaults_and_coercion():
    cfg = core.config_from_mapping({"Half_Width": "x", "PRIORITY_GROUPS": [["a", "D"]], "time_mode": "bogus"})
    expect(cfg.half_width == 3, "bad int falls back to default")
    expect(cfg.priority_groups.groups == (None, (65, 68)), f"letters map to codes: {cfg.priority_groups.groups}")
    expect(cfg.time_mode is TimeMode.NONE, "unknown time mode falls back to none")
    expect(core.config_from_mapping({"todo_groups": "DONE"}).todo_groups.groups[1] == ("TODO",),
           "invalid group list falls back to defaults")
    expect_raises(core.ConfigError, core.config_from_mapping, {"todo_groups": "DONE"}, None, True)


def test_load_config_from_toml_file():
    with tempfile.TemporaryDirectory(prefix="sparsewin-golden-") as td:
        path = os.path.join(td, "sparsewin.toml")
        with open(path, "w", encoding="utf-8") as f:
            f.write(
                'half_width = 2\n'
                'time_mode = "deadline"\n'
                'todo_groups = [["NEXT"], ["WAIT", "HOLD"]]\n'
                'priority_groups = [["A", "B"]]\n'
                'apply_command = ["emacsclient", "--eval", "{query}"]\n'
            )
        cfg = core.load_config(path)
        expect(cfg.source == os.path.abspath(path), "source recorded")
        expect(len(cfg.todo_groups) == 3 and cfg.apply_command[0] == "emacsclient", "groups and command")
        s = Session(cfg, clock=lambda: TODAY)
        expect(s.query().text == f"DEADLINE>={D('2020-12-29')}&DEADLINE<={D('2021-01-02')}",
               f"got {s.query().text!r}")

        bad = os.path.join(td, "bad.toml")
        with open(bad, "w", encoding="utf-8") as f:
            f.write("half_width = [\n")
        expect_raises(core.ConfigError, core.load_config, bad)
    expect_raises(core.ConfigError, core.load_config, os.path.join(HERE, "does-not-exist.toml"))


def test_config_wrong_types_fall_back_to_defaults():
    defaults = core.config_from_mapping({})
    for raw in ({"todo_groups": [1]}, {"todo_groups": [["TODO"], {"x": 1}]}):
        cfg = core.config_from_mapping(raw)
        expect(cfg.todo_groups == defaults.todo_groups, f"{raw}: todo groups fall back")
        expect_raises(core.ConfigError, core.config_from_mapping, raw, None, True)
    for raw in ({"priority_groups": [5]}, {"priority_groups": ["AB"]}):
        cfg = core.config_from_mapping(raw)
        expect(cfg.priority_groups == defaults.priority_groups, f"{raw}: priority groups fall back")
        expect_raises(core.ConfigError, core.config_from_mapping, raw, None, True)
    for cmd in (5, [["emacsclient"]], {"bin": "cat"}):
        cfg = core.config_from_mapping({"apply_command": cmd})
        expect(cfg.apply_command == (), f"apply_command={cmd!r} falls back to print only")
    expect(core.config_from_mapping({"apply_command": "cat"}).apply_command == ("cat",), "single string")


def test_config_spans_are_bounded():
    cfg = core.config_from_mapping({"half_width": 10 ** 7, "week_days": 10 ** 6})
    expect(cfg.half_width == core.MAX_SPAN_DAYS and cfg.week_days == core.MAX_SPAN_DAYS,
           f"spans clamped: {cfg.half_width}, {cfg.week_days}")
    s = Session(cfg, clock=lambda: TODAY)
    iv = s.interval
    expect(iv.right - iv.left == 2 * core.MAX_SPAN_DAYS, "session usable with the clamped width")
    s.run("week-forward", sync=False)
    expect(s.state.interval.midpoint == TODAY + core.MAX_SPAN_DAYS, "week shift uses the clamped length")
    expect(s.query().text is None, "no mode, no groups: no clause")


# -------- Document filter command ---------------------------------------------

def test_command_document_filter_arguments():
    f = CommandDocumentFilter(["emacsclient", "--eval", '(org-match-sparse-tree nil "{query}")'])
    cmd, stdin = f.build("TODO={DONE}")
    expect(cmd == ["emacsclient", "--eval", '(org-match-sparse-tree nil "TODO={DONE}")'] and stdin is None,
           f"placeholder substituted: {cmd}")
    cmd, stdin = CommandDocumentFilter(["cat"]).build("TODO={DONE}")
    expect(cmd == ["cat"] and stdin == "TODO={DONE}\n", "no placeholder: query on stdin")
    expect_raises(core.InvalidArgument, CommandDocumentFilter, [])


def test_command_document_filter_failure_is_reported():
    f = CommandDocumentFilter([sys.executable, "-c", "import sys; sys.exit(3)"], retries=1)
    expect_raises(core.SparsewinError, f.apply, "TODO={DONE}")
    ok = CommandDocumentFilter([sys.executable, "-c", "import sys; sys.stdin.read()"], retries=1)
    ok.apply("TODO={DONE}")


# -------- Command line --------------------------------------------------------

def test_parse_command_word():
    expect(parse_command_word("range-forward:3") == ("range-forward", 3), "colon form")
    expect(parse_command_word(" f 2 ") == ("f", 2), "space form")
    expect(parse_command_word("reset") == ("reset", None), "no count")
    expect_raises(core.InvalidArgument, parse_command_word, "")
    expect_raises(core.InvalidArgument, parse_command_word, "range-forward:x")
    expect_raises(core.InvalidArgument, parse_command_word, "f 1 2")


def test_print_query_runs_commands_without_prompt():
    with tempfile.TemporaryDirectory() as td:
        path = os.path.join(td, "sparsewin.toml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("auto_apply = false\n")
        out = io.StringIO()
        with redirect_stdout(out):
            rc = navigator_main(["--config", path, "--today", "2020-12-31", "--mode", "timestamp",
                                 "--print-query", "range-forward:2"])
        expect(rc == 0, f"exit code {rc}")
        want = f"TIMESTAMP>={D('2020-12-30')}&TIMESTAMP<={D('2021-01-05')}"
        expect(out.getvalue().strip() == want, f"printed {out.getvalue()!r}")

        out = io.StringIO()
        with redirect_stdout(out):
            rc = navigator_main(["--config", path, "--today", "2020-12-31", "--print-query", "todo-next:2"])
        expect(rc == 1, "a rejected command fails the run")
        expect("does not take a day count" in out.getvalue() and "TODO=" not in out.getvalue(),
               f"error reported instead of a query: {out.getvalue()!r}")


# -------- Runner --------------------------------------------------------------

TESTS = [
    test_iso_roundtrip_boundaries,
    test_format_iso_pads_small_years,
    test_invalid_calendar_dates_rejected,
    test_visible_window_across_year_rollover,
    test_visible_window_wider_offsets_and_range_ends,
    test_reset_centers_on_today,
    test_normalize_is_idempotent,
    test_shift_range_roundtrip,
    test_week_shift_is_one_atomic_shift,
    test_upper_bound_dragged_below_lower_bound,
    test_lower_bound_dragged_past_upper_bound,
    test_normalize_lets_the_moved_flank_win,
    test_midpoint_snaps_only_when_outside,
    test_flank_shift_keeps_selector_range_shift_clears_it,
    test_invalid_shift_amounts,
    test_failed_command_leaves_state_unchanged,
    test_shift_off_the_calendar_is_rejected,
    test_cycler_wraps_both_ways,
    test_cycler_needs_no_filter_sentinel,
    test_time_mode_cycle_order,
    test_reset_then_timestamp_query,
    test_end_to_end_todo_and_priority,
    test_todo_alternation_is_escaped,
    test_clause_order_date_todo_priority,
    test_from_midpoint_before_and_back,
    test_no_active_clause_gives_none,
    test_highlights_cover_range_and_tag_midpoint,
    test_highlights_clamped_to_visible_window,
    test_one_sided_highlights,
    test_compile_is_idempotent,
    test_compile_refuses_unnormalized_interval,
    test_sync_paints_always_applies_only_with_auto_apply,
    test_quiet_batch_then_sync,
    test_empty_query_is_never_applied,
    test_force_apply_without_document_reports_nothing_pushed,
    test_dispatch_failure_keeps_committed_state,
    test_reset_command_and_reset_filters,
    test_command_surface_errors,
    test_describe_status_line,
    test_config_from_mapping_defaults_and_coercion,
    test_load_config_from_toml_file,
    test_config_wrong_types_fall_back_to_defaults,
    test_config_spans_are_bounded,
    test_command_document_filter_arguments,
    test_command_document_filter_failure_is_reported,
    test_parse_command_word,
    test_print_query_runs_commands_without_prompt,
]


def main():
    import argparse
    ap = argparse.ArgumentParser()
    ap.add_argument("--only", help="substring filter for test names")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    selected = TESTS
    if args.only:
        selected = [fn for fn in TESTS if args.only.lower() in fn.__name__.lower()]

    fails = 0
    for fn in selected:
        try:
            fn()
            if args.verbose:
                print(f"✓ {fn.__name__}")
        except AssertionError as e:
            fails += 1
            print(f"✗ {fn.__name__}: {e}")
        except Exception as e:
            fails += 1
            print(f"✗ {fn.__name__}: unexpected error {e}")

    total = len(selected)
    print(f"\nDone: {total - fails}/{total} passing")
    sys.exit(1 if fails else 0)


if __name__ == "__main__":
    main()
