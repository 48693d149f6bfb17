#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
sparsewin_core.py

Shared core for the sparse-window filter: a movable date interval plus TODO and
priority filter groups, compiled into a match query for a document filter and a
highlight set for a calendar.

Sections:
  1) Errors
  2) Diagnostics
  3) Absolute dates
  4) Interval state
  5) Filter groups & time mode
  6) Query compiler
  7) Config & defaults
"""

from __future__ import annotations

import json
import os
import sys
import time
from dataclasses import dataclass, replace
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Any, Generic, Iterable, Mapping, TypeVar

from dateutil import tz

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Python 3.10 and earlier (pip install tomli)


# ==============================================================================
# SECTION: Errors
# ==============================================================================
class SparsewinError(Exception):
    """Base class for every error raised by sparsewin."""


class InvalidArgument(SparsewinError, ValueError):
    """A caller passed a value the core refuses to coerce (bad shift amount, bad date...)."""


class InconsistentInterval(SparsewinError):
    """An interval reached the compiler without being normalized first."""


class ConfigError(SparsewinError):
    """An explicitly requested config file could not be read or holds invalid groups."""


class DispatchError(SparsewinError):
    """One or more collaborators failed while receiving a compiled query."""

    def __init__(self, failures: list[tuple[str, Exception]]):
        self.failures = list(failures)
        names = ", ".join(f"{name}: {err}" for name, err in self.failures)
        super().__init__(f"dispatch failed ({names})")


# ==============================================================================
# SECTION: Diagnostics
# ==============================================================================
# --- Diagnostic logging ---
def _sparsewin_cache_dir() -> str:
    base = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "sparsewin")


def _diag_enabled() -> bool:
    return os.environ.get("SPARSEWIN_DIAG") == "1"


def _diag_log_path() -> str:
    p = os.environ.get("SPARSEWIN_DIAG_LOG_PATH")
    if p:
        return os.path.abspath(os.path.expanduser(p))
    return os.path.join(_sparsewin_cache_dir(), "diag.jsonl")


def diag_log(msg: Any, source: str = "sparsewin") -> None:
    """Append a JSONL diagnostic log entry (when SPARSEWIN_DIAG_LOG=1)."""
    if os.environ.get("SPARSEWIN_DIAG_LOG") != "1":
        return
    path = _diag_log_path()
    try:
        max_bytes = int(os.environ.get("SPARSEWIN_DIAG_LOG_MAX_BYTES") or 262144)
    except ValueError:
        max_bytes = 262144
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
    except Exception:
        pass
    try:
        if max_bytes > 0 and os.path.exists(path):
            try:
                if os.stat(path).st_size > max_bytes:
                    overflow = path.replace(".jsonl", f".overflow.{int(time.time())}.jsonl")
                    os.replace(path, overflow)
            except Exception:
                pass
        payload: dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "source": source,
            "pid": os.getpid(),
        }
        if isinstance(msg, dict):
            payload["msg"] = str(msg.get("msg") or msg.get("message") or "")
            payload["data"] = msg
        else:
            payload["msg"] = str(msg)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n")
    except Exception:
        pass


def diag(msg: Any, source: str = "sparsewin") -> None:
    """Write diagnostics to stderr when SPARSEWIN_DIAG=1 and append to diag log when SPARSEWIN_DIAG_LOG=1."""
    if _diag_enabled():
        try:
            sys.stderr.write(f"[sparsewin] {msg}\n")
        except Exception:
            pass
    diag_log(msg, source)


def _warn_once_per_day(key: str, message: str) -> None:
    """Persist a tiny sentinel so repeated config problems do not spam stderr."""
    if not _diag_enabled():
        return
    try:
        d = _sparsewin_cache_dir()
        os.makedirs(d, exist_ok=True)
        stamp_path = os.path.join(d, f".diag_{key}.stamp")

        today = date.today().isoformat()
        if os.path.exists(stamp_path):
            try:
                with open(stamp_path, "r", encoding="utf-8") as f:
                    if f.read().strip() == today:
                        return
            except Exception:
                pass

        with open(stamp_path, "w", encoding="utf-8") as f:
            f.write(today)
        try:
            print(message, file=sys.stderr)
        except Exception:
            pass
    except Exception:
        pass


# ==============================================================================
# SECTION: Absolute dates
# ==============================================================================
# An absolute day is the proleptic Gregorian ordinal: 0001-01-01 is day 1.
MIN_DAY = date.min.toordinal()
MAX_DAY = date.max.toordinal()

LOCAL_ZONE = tz.tzlocal()
UTC_ZONE = tz.tzutc()


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def check_day(day: Any) -> int:
    if not _is_int(day):
        raise InvalidArgument(f"absolute day must be an int, got {day!r}")
    if day < MIN_DAY or day > MAX_DAY:
        raise InvalidArgument(f"absolute day {day} outside {MIN_DAY}..{MAX_DAY}")
    return day


def resolve_tz(name: str | None) -> tzinfo:
    """Resolve "local" / "UTC" / an IANA name into a tzinfo."""
    s = (name or "").strip()
    low = s.lower()
    if not s or low in ("local", "system"):
        return LOCAL_ZONE
    if low in ("utc", "z", "gmt"):
        return UTC_ZONE
    zone = tz.gettz(s)
    if zone is None:
        raise InvalidArgument(f"Invalid timezone identifier: {s!r}")
    return zone


def today_absolute(zone: tzinfo | None = None) -> int:
    return datetime.now(tz=zone or LOCAL_ZONE).date().toordinal()


def to_calendar_date(day: int) -> tuple[int, int, int]:
    d = date.fromordinal(check_day(day))
    return d.year, d.month, d.day


def from_calendar_date(year: int, month: int, day: int) -> int:
    if not (_is_int(year) and _is_int(month) and _is_int(day)):
        raise InvalidArgument(f"calendar date parts must be ints: {year!r}-{month!r}-{day!r}")
    try:
        return date(year, month, day).toordinal()
    except ValueError as e:
        raise InvalidArgument(f"invalid calendar date {year}-{month}-{day}: {e}") from e


def format_iso(day: int) -> str:
    """YYYY-MM-DD, zero padded, whatever the locale says."""
    y, m, d = to_calendar_date(day)
    return f"{y:04d}-{m:02d}-{d:02d}"


def parse_iso(s: str) -> int:
    try:
        return date.fromisoformat(str(s).strip()).toordinal()
    except ValueError as e:
        raise InvalidArgument(f"not a YYYY-MM-DD date: {s!r}") from e


def _shift_month(year: int, month: int, n: int) -> tuple[int, int]:
    y = year + (month - 1 + n) // 12
    m = (month - 1 + n) % 12 + 1
    return y, m


def _check_months(months: Any) -> int:
    if not _is_int(months) or months < 0:
        raise InvalidArgument(f"month offset must be a non-negative int, got {months!r}")
    return months


def first_day_of_previous_month(ref: int, months: int = 1) -> int:
    d = date.fromordinal(check_day(ref))
    y, m = _shift_month(d.year, d.month, -_check_months(months))
    if y < date.min.year:
        return MIN_DAY
    return date(y, m, 1).toordinal()


def last_day_of_next_month(ref: int, months: int = 1) -> int:
    d = date.fromordinal(check_day(ref))
    y, m = _shift_month(d.year, d.month, _check_months(months) + 1)
    if y > date.max.year:
        return MAX_DAY
    return date(y, m, 1).toordinal() - 1


def visible_window(today: int, before: int = 1, after: int = 1) -> tuple[int, int]:
    """Calendar span highlights are clamped to: start of the month `before` months back
    through the end of the month `after` months ahead."""
    return first_day_of_previous_month(today, before), last_day_of_next_month(today, after)


# ==============================================================================
# SECTION: Interval state
# ==============================================================================
class Direction(Enum):
    FORWARD = 1
    BACKWARD = -1


class Flank(Enum):
    LEFT = "left"
    RIGHT = "right"


class Selector(Enum):
    NONE = "none"
    BEFORE = "before"
    AFTER = "after"


DEFAULT_HALF_WIDTH = 3


@dataclass(frozen=True)
class Interval:
    left: int | None = None
    right: int | None = None
    midpoint: int | None = None
    selector: Selector = Selector.NONE

    @property
    def is_normalized(self) -> bool:
        return (
            self.left is not None
            and self.right is not None
            and self.midpoint is not None
            and self.left <= self.right
            and self.left <= self.midpoint <= self.right
        )

    @property
    def from_midpoint(self) -> bool:
        return self.selector is not Selector.NONE

    def triple(self) -> tuple[int | None, int | None, int | None]:
        return self.left, self.right, self.midpoint


@dataclass(frozen=True)
class Shift:
    interval: Interval
    midpoint_moved: bool


def check_amount(n: Any) -> int:
    if not _is_int(n) or n < 1:
        raise InvalidArgument(f"shift amount must be a positive int, got {n!r}")
    return n


def _require_normalized(interval: Interval) -> Interval:
    if not interval.is_normalized:
        raise InconsistentInterval(f"interval is not normalized: {interval!r}")
    return interval


def _repair(left: int, right: int, midpoint: int, moved: Flank | None) -> tuple[int, int, int]:
    # The flank that was just moved wins; the other one is pushed next to it.
    if left > right:
        if moved is Flank.RIGHT:
            left = right - 1
        else:
            right = left + 1
    if midpoint < left or midpoint > right:
        if moved is Flank.LEFT:
            midpoint = left
        elif moved is Flank.RIGHT:
            midpoint = right
        else:
            midpoint = min(max(midpoint, left), right)
    return check_day(left), check_day(right), check_day(midpoint)


def normalize(
    interval: Interval,
    today: int,
    half_width: int = DEFAULT_HALF_WIDTH,
    moved: Flank | None = None,
) -> Interval:
    """Fill in unset days around `today` and repair ordering.

    Idempotent: a normalized interval comes back unchanged. `moved` names the flank
    the last mutation touched; it decides which side gives way when the flanks
    cross and where the midpoint snaps when it falls outside the range.
    """
    if not _is_int(half_width) or half_width < 0:
        raise InvalidArgument(f"half width must be a non-negative int, got {half_width!r}")
    mid = interval.midpoint if interval.midpoint is not None else check_day(today)
    left = interval.left if interval.left is not None else mid - half_width
    right = interval.right if interval.right is not None else mid + half_width
    left, right, mid = _repair(left, right, mid, moved)
    if (left, right, mid) == interval.triple():
        return interval
    return Interval(left, right, mid, interval.selector)


def reset(today: int, half_width: int = DEFAULT_HALF_WIDTH) -> Interval:
    return normalize(Interval(), today, half_width)


def shift_range(interval: Interval, direction: Direction, n: int = 1) -> Shift:
    """Move both flanks and the midpoint together. Leaves from-midpoint mode."""
    n = check_amount(n)
    iv = _require_normalized(interval)
    delta = direction.value * n
    out = Interval(
        check_day(iv.left + delta),
        check_day(iv.right + delta),
        check_day(iv.midpoint + delta),
        Selector.NONE,
    )
    return Shift(out, True)


def shift_flank(interval: Interval, which: Flank, direction: Direction, n: int = 1) -> Shift:
    """Move one flank; the selector is kept as is."""
    n = check_amount(n)
    iv = _require_normalized(interval)
    delta = direction.value * n
    left, right = iv.left, iv.right
    if which is Flank.LEFT:
        left = check_day(left + delta)
    else:
        right = check_day(right + delta)
    out = normalize(Interval(left, right, iv.midpoint, iv.selector), iv.midpoint, moved=which)
    return Shift(out, out.midpoint != iv.midpoint)


def shift_lower_bound(interval: Interval, direction: Direction, n: int = 1) -> Shift:
    return shift_flank(interval, Flank.LEFT, direction, n)


def shift_upper_bound(interval: Interval, direction: Direction, n: int = 1) -> Shift:
    return shift_flank(interval, Flank.RIGHT, direction, n)


def set_from_midpoint(interval: Interval, selector: Selector) -> Interval:
    if selector is Selector.NONE:
        raise InvalidArgument("from-midpoint mode needs BEFORE or AFTER")
    return replace(interval, selector=selector)


def clear_from_midpoint(interval: Interval) -> Interval:
    return replace(interval, selector=Selector.NONE)


# ==============================================================================
# SECTION: Filter groups & time mode
# ==============================================================================
T = TypeVar("T")


@dataclass(frozen=True)
class FilterGroupCycler(Generic[T]):
    """Wrap-around picker over a fixed list of presets; entry 0 means "no filter"."""

    groups: tuple[T | None, ...]
    index: int = 0

    def __post_init__(self) -> None:
        groups = tuple(self.groups)
        if not groups:
            raise InvalidArgument("filter group list must not be empty")
        if groups[0] is not None:
            raise InvalidArgument(f"first filter group must be None (no filter), got {groups[0]!r}")
        if not _is_int(self.index) or not 0 <= self.index < len(groups):
            raise InvalidArgument(f"group index {self.index!r} outside 0..{len(groups) - 1}")
        object.__setattr__(self, "groups", groups)

    def __len__(self) -> int:
        return len(self.groups)

    def current(self) -> T | None:
        return self.groups[self.index]

    def next(self) -> FilterGroupCycler[T]:
        return replace(self, index=(self.index + 1) % len(self.groups))

    def previous(self) -> FilterGroupCycler[T]:
        return replace(self, index=(self.index - 1) % len(self.groups))

    def reset(self) -> FilterGroupCycler[T]:
        return replace(self, index=0)


def priority_value(v: Any) -> int:
    """Priorities are compared by character code: "A" -> 65."""
    if _is_int(v):
        return v
    s = str(v).strip()
    if len(s) == 1 and s.isalpha():
        return ord(s.upper())
    try:
        return int(s)
    except ValueError:
        raise InvalidArgument(f"priority must be an int or a single letter, got {v!r}") from None


def todo_cycler(groups: Iterable[Iterable[str] | None]) -> FilterGroupCycler[tuple[str, ...]]:
    """Build the TODO cycler; the leading "no filter" entry is added when missing."""
    out: list[tuple[str, ...] | None] = [None]
    for i, g in enumerate(groups):
        if g is None:
            if i == 0:
                continue
            raise InvalidArgument(f"todo group {i} is empty")
        if isinstance(g, str):
            g = [g]
        elif not isinstance(g, (list, tuple)):
            raise InvalidArgument(f"todo group {i} must be a list of labels: {g!r}")
        labels = tuple(str(x).strip() for x in g)
        if not labels or any(not x for x in labels):
            raise InvalidArgument(f"todo group {i} needs non-empty labels: {g!r}")
        out.append(labels)
    return FilterGroupCycler(tuple(out))


def priority_cycler(groups: Iterable[Iterable[Any] | None]) -> FilterGroupCycler[tuple[int, int]]:
    out: list[tuple[int, int] | None] = [None]
    for i, g in enumerate(groups):
        if g is None:
            if i == 0:
                continue
            raise InvalidArgument(f"priority group {i} is empty")
        if not isinstance(g, (list, tuple)):
            raise InvalidArgument(f"priority group {i} must be [min, max]: {g!r}")
        pair = list(g)
        if len(pair) != 2:
            raise InvalidArgument(f"priority group {i} must be [min, max]: {g!r}")
        lo, hi = priority_value(pair[0]), priority_value(pair[1])
        if lo > hi:
            raise InvalidArgument(f"priority group {i} has min > max: {g!r}")
        out.append((lo, hi))
    return FilterGroupCycler(tuple(out))


class TimeMode(Enum):
    NONE = "none"
    TIMESTAMP = "timestamp"
    SCHEDULED = "scheduled"
    DEADLINE = "deadline"

    @property
    def field(self) -> str:
        return self.name

    @classmethod
    def parse(cls, s: Any) -> TimeMode:
        try:
            return cls(str(s or "none").strip().lower())
        except ValueError:
            raise InvalidArgument(f"unknown time mode {s!r}") from None


_TIME_MODES = (TimeMode.NONE, TimeMode.TIMESTAMP, TimeMode.SCHEDULED, TimeMode.DEADLINE)


@dataclass(frozen=True)
class TimeModeSelector:
    mode: TimeMode = TimeMode.NONE

    def next(self) -> TimeModeSelector:
        i = _TIME_MODES.index(self.mode)
        return TimeModeSelector(_TIME_MODES[(i + 1) % len(_TIME_MODES)])

    def previous(self) -> TimeModeSelector:
        i = _TIME_MODES.index(self.mode)
        return TimeModeSelector(_TIME_MODES[(i - 1) % len(_TIME_MODES)])


# ==============================================================================
# SECTION: Query compiler
# ==============================================================================
# Backslash + pipe: the alternation separator inside a {a\|b} set literal.
ALT_SEPARATOR = "\\|"


@dataclass(frozen=True)
class Highlight:
    day: int
    is_midpoint: bool = False


@dataclass(frozen=True)
class CompiledQuery:
    text: str | None
    highlights: tuple[Highlight, ...] = ()

    @property
    def days(self) -> frozenset[int]:
        return frozenset(h.day for h in self.highlights)

    @property
    def midpoint(self) -> int | None:
        for h in self.highlights:
            if h.is_midpoint:
                return h.day
        return None


def date_literal(day: int) -> str:
    return f'"<{format_iso(day)}>"'


def date_clause(interval: Interval, mode: TimeMode) -> str | None:
    if mode is TimeMode.NONE:
        return None
    f = mode.field
    if interval.selector is Selector.BEFORE:
        return f"{f}<={date_literal(interval.midpoint)}"
    if interval.selector is Selector.AFTER:
        return f"{f}>={date_literal(interval.midpoint)}"
    return f"{f}>={date_literal(interval.left)}&{f}<={date_literal(interval.right)}"


def todo_clause(group: Iterable[str] | None) -> str | None:
    if group is None:
        return None
    return "TODO={" + ALT_SEPARATOR.join(group) + "}"


def priority_clause(group: tuple[int, int] | None) -> str | None:
    if group is None:
        return None
    lo, hi = group
    return f"PRIORITY>={lo}&PRIORITY<={hi}"


def highlight_days(
    interval: Interval,
    mode: TimeMode,
    today: int,
    window_before: int = 1,
    window_after: int = 1,
) -> tuple[Highlight, ...]:
    if mode is TimeMode.NONE:
        return ()
    start, end = visible_window(today, window_before, window_after)
    mid = interval.midpoint
    if interval.selector is Selector.BEFORE:
        lo, hi = start, mid
    elif interval.selector is Selector.AFTER:
        lo, hi = mid, end
    else:
        lo, hi = interval.left, interval.right
    lo, hi = max(lo, start), min(hi, end)
    return tuple(Highlight(d, d == mid) for d in range(lo, hi + 1))


def compile_query(
    interval: Interval,
    todo: FilterGroupCycler,
    priority: FilterGroupCycler,
    time_mode: TimeModeSelector,
    *,
    today: int,
    window_before: int = 1,
    window_after: int = 1,
) -> CompiledQuery:
    """Build the query text and the highlight set from scratch.

    Clauses are joined with "&" in the fixed order date, TODO, priority. When no
    clause is active the text is None; callers skip the apply step in that case.
    """
    _require_normalized(interval)
    mode = time_mode.mode
    clauses = [
        c
        for c in (
            date_clause(interval, mode),
            todo_clause(todo.current()),
            priority_clause(priority.current()),
        )
        if c
    ]
    text = "&".join(clauses) if clauses else None
    return CompiledQuery(text, highlight_days(interval, mode, today, window_before, window_after))


# ==============================================================================
# SECTION: Config & defaults
# ==============================================================================
_DEFAULTS: dict[str, Any] = {
    "todo_groups": [["TODO"], ["DOING"], ["TODO", "DOING"], ["DONE"]],
    "priority_groups": [["A", "A"], ["A", "B"], ["A", "C"], ["B", "D"]],
    "half_width": DEFAULT_HALF_WIDTH,
    "week_days": 7,
    "visible_months_before": 1,
    "visible_months_after": 1,
    "time_mode": "none",
    "auto_apply": False,
    "reset_filters": False,
    "apply_command": [],
    "apply_timeout": 3.0,
    "tz": "local",
}

# upper bound for half_width and week_days
MAX_SPAN_DAYS = 3650


@dataclass(frozen=True)
class Config:
    todo_groups: FilterGroupCycler
    priority_groups: FilterGroupCycler
    half_width: int = DEFAULT_HALF_WIDTH
    week_days: int = 7
    visible_months_before: int = 1
    visible_months_after: int = 1
    time_mode: TimeMode = TimeMode.NONE
    auto_apply: bool = False
    reset_filters: bool = False
    apply_command: tuple[str, ...] = ()
    apply_timeout: float = 3.0
    tz_name: str = "local"
    source: str | None = None

    @property
    def zone(self) -> tzinfo:
        return resolve_tz(self.tz_name)


def _read_toml(path: str, explicit: bool = False) -> dict:
    # Fast path: missing file => no config here
    if not path or not os.path.exists(path):
        if explicit:
            raise ConfigError(f"config file not found: {path}")
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f) or {}
    except (OSError, tomllib.TOMLDecodeError) as e:
        if explicit:
            raise ConfigError(f"config parse failed for {path}: {e}") from e
        _warn_once_per_day(
            "toml_parse_error",
            "[sparsewin] Config file found but could not be parsed; defaults will be used.\n"
            f"          Path: {path}\n"
            f"          Error: {e}\n",
        )
        return {}


def _config_paths() -> list[str]:
    def _candidates_in_dir(d: str) -> list[str]:
        d = os.path.abspath(os.path.expanduser(d))
        return [
            os.path.join(d, "config-sparsewin.toml"),
            os.path.join(d, "sparsewin.toml"),
        ]

    paths: list[str] = []
    # module-adjacent
    paths.extend(_candidates_in_dir(os.path.dirname(os.path.abspath(__file__))))
    # XDG config (explicit, then default)
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        paths.extend(_candidates_in_dir(os.path.join(xdg, "sparsewin")))
    paths.extend(_candidates_in_dir("~/.config/sparsewin"))

    seen = set()
    out = []
    for p in paths:
        if p not in seen:
            seen.add(p)
            out.append(p)
    return out


def _normalize_keys(d: Mapping[str, Any] | None) -> dict:
    # allow users to write keys in any case
    return {str(k).strip().lower(): v for k, v in (d or {}).items()}


def _conf_int(
    cfg: Mapping[str, Any],
    key: str,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    v = cfg.get(key)
    default = int(_DEFAULTS[key])
    try:
        out = int(str(v).strip())
    except (TypeError, ValueError):
        if v is not None:
            diag(f"config {key}={v!r} is not an int; using {default}")
        out = default
    if min_value is not None and out < min_value:
        out = int(min_value)
    if max_value is not None and out > max_value:
        out = int(max_value)
    return out


def _conf_float(cfg: Mapping[str, Any], key: str, min_value: float = 0.0) -> float:
    v = cfg.get(key)
    try:
        out = float(v)
    except (TypeError, ValueError):
        out = float(_DEFAULTS[key])
    return max(out, min_value)


def _conf_bool(cfg: Mapping[str, Any], key: str) -> bool:
    v = cfg.get(key)
    default = bool(_DEFAULTS[key])
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off", "none"):
        return False
    return default


def _conf_str(cfg: Mapping[str, Any], key: str) -> str:
    v = cfg.get(key)
    if v is None:
        return str(_DEFAULTS[key])
    s = str(v).strip()
    return s if s else str(_DEFAULTS[key])


def _conf_command(cfg: Mapping[str, Any], key: str) -> tuple[str, ...]:
    v = cfg.get(key)
    if not v:
        return tuple(_DEFAULTS[key])
    if isinstance(v, str):
        return (v,)
    if isinstance(v, (list, tuple)) and all(isinstance(x, (str, int, float)) for x in v):
        return tuple(str(x) for x in v)
    diag(f"config {key}={v!r} is not a list of strings; using the default")
    return tuple(_DEFAULTS[key])


def _conf_groups(cfg: Mapping[str, Any], key: str, build, strict: bool) -> FilterGroupCycler:
    raw = cfg.get(key)
    if raw is not None:
        try:
            if not isinstance(raw, list):
                raise InvalidArgument(f"{key} must be a list of groups")
            return build(raw)
        except InvalidArgument as e:
            if strict:
                raise ConfigError(f"invalid {key}: {e}") from e
            diag(f"invalid {key} ({e}); using defaults")
    return build(_DEFAULTS[key])


def config_from_mapping(
    data: Mapping[str, Any] | None = None,
    source: str | None = None,
    strict: bool = False,
) -> Config:
    """Turn a raw mapping (TOML table) into a Config, falling back to defaults per key."""
    cfg = _normalize_keys(data)
    try:
        mode = TimeMode.parse(cfg.get("time_mode", _DEFAULTS["time_mode"]))
    except InvalidArgument as e:
        diag(f"{e}; using none")
        mode = TimeMode.NONE
    tz_name = _conf_str(cfg, "tz")
    try:
        resolve_tz(tz_name)
    except InvalidArgument as e:
        diag(f"{e}; using local")
        tz_name = "local"
    return Config(
        todo_groups=_conf_groups(cfg, "todo_groups", todo_cycler, strict),
        priority_groups=_conf_groups(cfg, "priority_groups", priority_cycler, strict),
        half_width=_conf_int(cfg, "half_width", min_value=0, max_value=MAX_SPAN_DAYS),
        week_days=_conf_int(cfg, "week_days", min_value=1, max_value=MAX_SPAN_DAYS),
        visible_months_before=_conf_int(cfg, "visible_months_before", min_value=0, max_value=12),
        visible_months_after=_conf_int(cfg, "visible_months_after", min_value=0, max_value=12),
        time_mode=mode,
        auto_apply=_conf_bool(cfg, "auto_apply"),
        reset_filters=_conf_bool(cfg, "reset_filters"),
        apply_command=_conf_command(cfg, "apply_command"),
        apply_timeout=_conf_float(cfg, "apply_timeout", min_value=0.1),
        tz_name=tz_name,
        source=source,
    )


def load_config(path: str | None = None) -> Config:
    """Load the first config file found; an explicit path (argument or SPARSEWIN_CONFIG) must exist."""
    explicit = path or os.environ.get("SPARSEWIN_CONFIG")
    if explicit:
        ap = os.path.abspath(os.path.expanduser(explicit))
        data = _read_toml(ap, explicit=True)
        diag(f"Using config: {ap}")
        return config_from_mapping(data, source=ap, strict=True)

    paths = _config_paths()
    for p in paths:
        data = _read_toml(p)
        if data:
            diag(f"Using config: {p}")
            return config_from_mapping(data, source=p)
    diag("No config file found; using defaults.")
    return config_from_mapping({})


__all__ = [
    "SparsewinError",
    "InvalidArgument",
    "InconsistentInterval",
    "ConfigError",
    "DispatchError",
    "diag",
    "MIN_DAY",
    "MAX_DAY",
    "today_absolute",
    "to_calendar_date",
    "from_calendar_date",
    "format_iso",
    "parse_iso",
    "first_day_of_previous_month",
    "last_day_of_next_month",
    "visible_window",
    "Direction",
    "Flank",
    "Selector",
    "Interval",
    "Shift",
    "normalize",
    "reset",
    "shift_range",
    "shift_flank",
    "shift_lower_bound",
    "shift_upper_bound",
    "set_from_midpoint",
    "clear_from_midpoint",
    "FilterGroupCycler",
    "todo_cycler",
    "priority_cycler",
    "TimeMode",
    "TimeModeSelector",
    "Highlight",
    "CompiledQuery",
    "compile_query",
    "Config",
    "config_from_mapping",
    "load_config",
]
