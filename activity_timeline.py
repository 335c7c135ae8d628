"""
Activity Timeline Materializer

Turns a finished schedule matrix into per-voice, tick-level activity
timelines, then post-processes them:

  materialize        section bits -> ticks (each bit spans its section's length)
  modifications      set/clear/flip and logical operators over section ranges
  shift_boundaries   prepone/postpone every start and stop by a tick offset

Text form of a timeline (one "state/length" pair per interval):
  1/384,0/192,1/768
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from activity_errors import InvalidConfiguration

# Operators and the number of operand voices each takes
OPERAND_COUNTS = {
    'set': 0,
    'clear': 0,
    'flip': 0,
    'not': 1,
    'and': 2,
    'andnot': 2,
    'or': 2,
    'xor': 2,
}

_BASE62 = '0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ'


def _normalize(intervals, total_ticks):
    """Sort, clip to [0, total_ticks) and merge touching intervals."""
    merged = []
    for start, end in sorted(intervals):
        start, end = max(start, 0), min(end, total_ticks)
        if start >= end:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


class ActivityTimeline:
    """Activity of one voice over every tick of the song."""

    def __init__(self, name: str, total_ticks: int, intervals=()):
        if total_ticks <= 0:
            raise InvalidConfiguration(f"Timeline '{name}' needs a positive tick count")
        self.name = name
        self.total_ticks = total_ticks
        self._intervals = _normalize(intervals, total_ticks)

    def __eq__(self, other):
        if not isinstance(other, ActivityTimeline):
            return NotImplemented
        return (self.name == other.name and self.total_ticks == other.total_ticks
                and self._intervals == other._intervals)

    def __repr__(self):
        return f"ActivityTimeline({self.name!r}, {self.total_ticks}, {self._intervals!r})"

    def copy(self, name: str | None = None) -> ActivityTimeline:
        return ActivityTimeline(self.name if name is None else name,
                                self.total_ticks, self._intervals)

    # -- queries ---------------------------------------------------------

    def is_active(self, tick: int) -> bool:
        idx = bisect_right(self._intervals, (tick, self.total_ticks + 1)) - 1
        return idx >= 0 and tick < self._intervals[idx][1]

    def intervals(self) -> list[tuple[int, int]]:
        """Active intervals as half-open (start, end) tick pairs."""
        return list(self._intervals)

    def segments(self) -> list[tuple[int, int]]:
        """Active intervals as (start tick, length) pairs."""
        return [(start, end - start) for start, end in self._intervals]

    @property
    def segment_count(self) -> int:
        return len(self._intervals)

    @property
    def active_ticks(self) -> int:
        return sum(end - start for start, end in self._intervals)

    @property
    def first_active_tick(self) -> int:
        return self._intervals[0][0] if self._intervals else -1

    @property
    def last_active_tick(self) -> int:
        return self._intervals[-1][1] - 1 if self._intervals else -1

    def active_ratio(self) -> float:
        return self.active_ticks / self.total_ticks

    # -- text form -------------------------------------------------------

    def to_run_lengths(self) -> str:
        parts = []
        tick = 0
        for start, end in self._intervals:
            if start > tick:
                parts.append(f"0/{start - tick}")
            parts.append(f"1/{end - start}")
            tick = end
        if tick < self.total_ticks:
            parts.append(f"0/{self.total_ticks - tick}")
        return ','.join(parts)

    @classmethod
    def from_run_lengths(cls, name: str, text: str) -> ActivityTimeline:
        intervals = []
        tick = 0
        for part in text.split(','):
            try:
                state, length = part.strip().split('/')
                length = int(length)
            except ValueError:
                raise InvalidConfiguration(f"Invalid run '{part}' in timeline '{name}'") from None
            if state not in ('0', '1') or length <= 0:
                raise InvalidConfiguration(f"Invalid run '{part}' in timeline '{name}'")
            if state == '1':
                intervals.append((tick, tick + length))
            tick += length
        return cls(name, tick, intervals)

    # -- editing ---------------------------------------------------------

    def _repaint(self, start, end, value_at, operands=()):
        """Replace [start, end) with value_at(tick), evaluated once per span
        between consecutive interval boundaries."""
        start, end = max(start, 0), min(end, self.total_ticks)
        if start >= end:
            return
        for operand in operands:
            if operand.total_ticks != self.total_ticks:
                raise InvalidConfiguration(
                    f"Timeline '{operand.name}' has {operand.total_ticks} ticks, "
                    f"'{self.name}' has {self.total_ticks}")

        points = {start, end}
        for timeline in (self,) + tuple(operands):
            for a, b in timeline._intervals:
                points.update(p for p in (a, b) if start < p < end)
        points = sorted(points)

        outside = []
        for a, b in self._intervals:
            if a < start:
                outside.append((a, min(b, start)))
            if b > end:
                outside.append((max(a, end), b))
        painted = [(a, b) for a, b in zip(points, points[1:]) if value_at(a)]
        self._intervals = _normalize(outside + painted, self.total_ticks)

    def set_activity(self, start: int, end: int, active: bool = True) -> None:
        self._repaint(start, end, lambda tick: active)

    def flip(self, start: int, end: int) -> None:
        self._repaint(start, end, lambda tick: not self.is_active(tick))

    def apply_not(self, operand, start, end):
        self._repaint(start, end, lambda t: not operand.is_active(t), (operand,))

    def apply_and(self, a, b, start, end):
        self._repaint(start, end, lambda t: a.is_active(t) and b.is_active(t), (a, b))

    def apply_and_not(self, a, b, start, end):
        self._repaint(start, end, lambda t: a.is_active(t) and not b.is_active(t), (a, b))

    def apply_or(self, a, b, start, end):
        self._repaint(start, end, lambda t: a.is_active(t) or b.is_active(t), (a, b))

    def apply_xor(self, a, b, start, end):
        self._repaint(start, end, lambda t: a.is_active(t) != b.is_active(t), (a, b))


def materialize(rows, names, sections):
    """
    Expand schedule matrix rows (one bit tuple per section) into one
    ActivityTimeline per voice, keyed by name in voice order.
    """
    if len(rows) != sections.section_count():
        raise ValueError(f"{len(rows)} rows for {sections.section_count()} sections")
    timelines = {}
    for voice, name in enumerate(names):
        intervals = [(sections.section_tick(s), sections.section_tick(s + 1))
                     for s, row in enumerate(rows) if row[voice]]
        timelines[name] = ActivityTimeline(name, sections.total_ticks, intervals)
    return timelines


def section_activity(timeline, sections):
    """Per-section activity: a section counts as active when more than half its ticks are."""
    result = []
    for s in range(sections.section_count()):
        lo, hi = sections.section_tick(s), sections.section_tick(s + 1)
        overlap = sum(max(0, min(end, hi) - max(start, lo))
                      for start, end in timeline.intervals())
        result.append(2 * overlap > hi - lo)
    return result


def shift_boundaries(timeline, start_shift, stop_shift):
    """
    Return a copy with every start moved by `start_shift` ticks and every
    stop by `stop_shift` ticks (positive postpones, negative prepones).

    A start at tick 0 and a stop at the song end stay where they are, even
    for a negative `stop_shift`: a voice playing to the end of the song
    keeps playing to the end.
    """
    if start_shift == 0 and stop_shift == 0:
        return timeline.copy()
    total = timeline.total_ticks
    shifted = []
    for start, end in timeline.intervals():
        if start > 0:
            start += start_shift
        if end < total:
            end += stop_shift
        shifted.append((start, end))
    return ActivityTimeline(timeline.name, total, shifted)


@dataclass(frozen=True)
class ActivityModification:
    operator: str
    target: str
    start: str = '0'
    end: str = '-1'
    operand1: str | None = None
    operand2: str | None = None

    _CONFIG_KEYS = {'operator': 'operator', 'target': 'target', 'from': 'start',
                    'to': 'end', 'operand1': 'operand1', 'operand2': 'operand2'}

    @classmethod
    def from_dict(cls, data: dict) -> ActivityModification:
        """Build from a config mapping with keys operator, target, from, to, operand1, operand2."""
        unknown = sorted(set(data) - set(cls._CONFIG_KEYS))
        if unknown:
            raise InvalidConfiguration(f"Unknown modification key(s): {', '.join(unknown)}")
        values = {attr: data[key] for key, attr in cls._CONFIG_KEYS.items() if key in data}
        if 'operator' not in values or 'target' not in values:
            raise InvalidConfiguration("A modification needs an operator and a target")
        values['operator'] = str(values['operator']).lower()
        for attr in ('start', 'end'):
            if attr in values:
                values[attr] = str(values[attr])
        modification = cls(**values)
        modification.check()
        return modification

    def check(self) -> None:
        if self.operator not in OPERAND_COUNTS:
            raise InvalidConfiguration(f"Invalid activity modification operator '{self.operator}'")
        given = [op for op in (self.operand1, self.operand2) if op is not None]
        expected = OPERAND_COUNTS[self.operator]
        if len(given) != expected or (expected == 1 and self.operand1 is None):
            raise InvalidConfiguration(
                f"Operator '{self.operator}' takes {expected} operand(s), got {len(given)}")

    def operands(self) -> list[str]:
        return [op for op in (self.operand1, self.operand2) if op is not None]

    def apply(self, timelines, sections):
        """Apply in place to `timelines` (name -> ActivityTimeline)."""
        for name in [self.target] + self.operands():
            if name not in timelines:
                raise InvalidConfiguration(
                    f"Modification '{self.operator}' references unknown voice '{name}'",
                    voice=name)
        first = sections.resolve_reference(self.start)
        last = sections.resolve_reference(self.end)
        if first > last:
            first, last = last, first
        lo, hi = sections.section_tick(first), sections.section_tick(last + 1)

        target = timelines[self.target]
        args = [timelines[name] for name in self.operands()]
        if self.operator == 'set':
            target.set_activity(lo, hi, True)
        elif self.operator == 'clear':
            target.set_activity(lo, hi, False)
        elif self.operator == 'flip':
            target.flip(lo, hi)
        elif self.operator == 'not':
            target.apply_not(*args, lo, hi)
        elif self.operator == 'and':
            target.apply_and(*args, lo, hi)
        elif self.operator == 'andnot':
            target.apply_and_not(*args, lo, hi)
        elif self.operator == 'or':
            target.apply_or(*args, lo, hi)
        else:
            target.apply_xor(*args, lo, hi)


def apply_modifications(timelines, modifications, sections):
    """Apply modifications in order to copies of `timelines`; the input is left untouched."""
    result = {name: timeline.copy() for name, timeline in timelines.items()}
    for modification in modifications:
        modification.apply(result, sections)
    return result


def format_matrix(timelines, sections, title="Song structure"):
    """
    Text dump of the activity matrix: one row per voice with '*' for an
    active section and '-' otherwise, the active percentage, and a final
    row with the number of active voices per section in base 62.
    """
    count = sections.section_count()
    starts = [sections.section_tick(s) for s in range(count)]
    width = max([len(name) for name in timelines] + [len("# active")])

    lines = [title]
    if count >= 10:
        lines.append(f"{'':>{width}}  " + ''.join(str(s // 10 % 10) if s >= 10 else ' '
                                                   for s in range(count)))
    lines.append(f"{'':>{width}}  " + ''.join(str(s % 10) for s in range(count)))

    for name, timeline in timelines.items():
        cells = ''.join('*' if timeline.is_active(tick) else '-' for tick in starts)
        line = f"{name:>{width}}: {cells}"
        if timeline.active_ticks:
            line += f" {100.0 * timeline.active_ratio():5.1f}%"
        lines.append(line)

    totals = ''.join(_BASE62[min(sum(t.is_active(tick) for t in timelines.values()), 61)]
                     for tick in starts)
    lines.append(f"{'# active':>{width}}: {totals}")
    return "\n".join(lines)
