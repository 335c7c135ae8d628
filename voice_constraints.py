"""
Voice Constraint Sets

Per-voice rules for when a voice may be active, stated in percent and in
sections. `VoiceConstraints` is what a configuration says; `VoiceLimits` is
the same rule set resolved against a concrete song length, with every bound
as a plain integer, and is what the scheduler checks run states against.

Section positions:
    start_after_section < first active section < start_before_section
    stop_before_section < remaining(last active section) < stop_after_section
where remaining(s) = sections - 1 - s (0 is the last section).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields

from activity_errors import InvalidConfiguration

# Constraint kinds, as reported in violation tallies and validation issues.
MIN_ACTIVE = 'min_active'
MAX_ACTIVE = 'max_active'
MIN_SEGMENT_COUNT = 'min_segment_count'
MAX_SEGMENT_COUNT = 'max_segment_count'
MIN_SEGMENT_LENGTH = 'min_segment_length'
MAX_SEGMENT_LENGTH = 'max_segment_length'
MIN_PAUSE_LENGTH = 'min_pause_length'
MAX_PAUSE_LENGTH = 'max_pause_length'
START_BEFORE_SECTION = 'start_before_section'
START_AFTER_SECTION = 'start_after_section'
STOP_BEFORE_SECTION = 'stop_before_section'
STOP_AFTER_SECTION = 'stop_after_section'

# Float slack for percent -> section count rounding.
_ROUNDING_EPSILON = 1e-6


@dataclass(frozen=True)
class VoiceConstraints:
    name: str
    min_active: float = 0.0
    max_active: float = 100.0
    allow_inactive: bool = False
    start_before_section: int | None = None
    start_after_section: int = -1
    stop_before_section: int = -1
    stop_after_section: int | None = None
    min_segment_count: int = 0
    max_segment_count: int | None = None
    min_segment_length: int = 0
    max_segment_length: int | None = None
    min_pause_length: int = 0
    max_pause_length: int | None = None
    start_shift: int = 0
    stop_shift: int = 0

    @classmethod
    def from_dict(cls, name: str, data: dict) -> VoiceConstraints:
        """
        Build constraints from a config mapping (snake_case keys).

        Missing keys take the dataclass defaults; unknown keys are rejected
        so a typo cannot silently drop a constraint.
        """
        known = {f.name for f in fields(cls)} - {'name'}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfiguration(
                f"Voice '{name}' has unknown constraint(s): {', '.join(unknown)}",
                voice=name)

        values = {}
        for f in fields(cls):
            if f.name == 'name' or f.name not in data:
                continue
            raw = data[f.name]
            if raw is None:
                values[f.name] = None
            elif f.name == 'allow_inactive':
                values[f.name] = bool(raw)
            elif f.name in ('min_active', 'max_active'):
                values[f.name] = float(raw)
            else:
                if (isinstance(raw, bool) or not isinstance(raw, (int, float))
                        or int(raw) != raw):
                    raise InvalidConfiguration(
                        f"Voice '{name}': {f.name} must be an integer, got {raw!r}",
                        voice=name)
                values[f.name] = int(raw)
        constraints = cls(name=name, **values)
        constraints.check()
        return constraints

    def check(self) -> None:
        """Reject bounds that are invalid regardless of song length."""
        def fail(message):
            raise InvalidConfiguration(f"Voice '{self.name}': {message}", voice=self.name)

        if not self.name:
            raise InvalidConfiguration("Voice name must not be empty")
        for attr in ('min_active', 'max_active'):
            value = getattr(self, attr)
            if value is None or value < 0 or value > 100:
                fail(f"{attr} must be between 0 and 100, got {value}")
        if self.min_active > self.max_active:
            fail(f"min_active {self.min_active} > max_active {self.max_active}")

        for attr in ('min_segment_count', 'min_segment_length', 'min_pause_length'):
            if getattr(self, attr) is None or getattr(self, attr) < 0:
                fail(f"{attr} must be non-negative")
        for attr in ('start_after_section', 'stop_before_section'):
            if getattr(self, attr) is None or getattr(self, attr) < -1:
                fail(f"{attr} must be -1 or a section number")
        for attr in ('start_before_section', 'stop_after_section'):
            value = getattr(self, attr)
            if value is not None and value < 0:
                fail(f"{attr} must be a section number")

        for low, high in ((MIN_SEGMENT_COUNT, MAX_SEGMENT_COUNT),
                          (MIN_SEGMENT_LENGTH, MAX_SEGMENT_LENGTH),
                          (MIN_PAUSE_LENGTH, MAX_PAUSE_LENGTH)):
            upper = getattr(self, high)
            if upper is not None and getattr(self, low) > upper:
                fail(f"{low} {getattr(self, low)} > {high} {upper}")

    def resolve(self, sections: int) -> VoiceLimits:
        """Resolve against a song of `sections` sections."""
        self.check()
        if sections <= 0:
            raise InvalidConfiguration("A song needs at least one section")

        # min rounds up, max rounds down
        min_count = max(0, math.ceil(sections * self.min_active / 100.0 - _ROUNDING_EPSILON))
        max_count = int(sections * self.max_active / 100.0 + _ROUNDING_EPSILON)

        def bound(value):
            return sections if value is None else min(value, sections)

        limits = VoiceLimits(
            name=self.name,
            allow_inactive=self.allow_inactive,
            min_active_sections=min_count,
            max_active_sections=max_count,
            min_segment_count=self.min_segment_count,
            max_segment_count=bound(self.max_segment_count),
            min_segment_length=self.min_segment_length,
            max_segment_length=bound(self.max_segment_length),
            min_pause_length=self.min_pause_length,
            max_pause_length=bound(self.max_pause_length),
            start_before_section=bound(self.start_before_section),
            start_after_section=self.start_after_section,
            stop_before_section=self.stop_before_section,
            stop_after_section=bound(self.stop_after_section),
            sections=sections,
        )
        limits.check()
        return limits


@dataclass(frozen=True)
class VoiceLimits:
    """Constraints of one voice resolved to section counts for one song."""
    name: str
    allow_inactive: bool
    min_active_sections: int
    max_active_sections: int
    min_segment_count: int
    max_segment_count: int
    min_segment_length: int
    max_segment_length: int
    min_pause_length: int
    max_pause_length: int
    start_before_section: int
    start_after_section: int
    stop_before_section: int
    stop_after_section: int
    sections: int

    @property
    def requires_activity(self) -> bool:
        """True if the voice can never stay silent for the whole song."""
        return ((self.min_active_sections > 0 and not self.allow_inactive)
                or self.min_segment_count > 0)

    @property
    def first_section_window(self) -> tuple[int, int]:
        """Inclusive range the first active section must fall into."""
        return (self.start_after_section + 1,
                min(self.start_before_section - 1, self.sections - 1))

    @property
    def last_section_window(self) -> tuple[int, int]:
        """Inclusive range the last active section must fall into."""
        return (max(0, self.sections - self.stop_after_section),
                self.sections - 2 - self.stop_before_section)

    def in_stop_window(self, remaining: int) -> bool:
        return self.stop_before_section < remaining < self.stop_after_section

    def check(self) -> None:
        """Reject song-length dependent contradictions."""
        def fail(message):
            raise InvalidConfiguration(f"Voice '{self.name}': {message}", voice=self.name)

        if self.min_active_sections > self.max_active_sections:
            fail(f"needs at least {self.min_active_sections} but at most "
                 f"{self.max_active_sections} active sections out of {self.sections}")
        if not self.requires_activity:
            return

        first_lo, first_hi = self.first_section_window
        last_lo, last_hi = self.last_section_window
        if first_lo > first_hi:
            fail(f"no section left to start in (start_after_section="
                 f"{self.start_after_section}, start_before_section="
                 f"{self.start_before_section}, {self.sections} sections)")
        if last_lo > last_hi:
            fail(f"no section left to stop in (stop_before_section="
                 f"{self.stop_before_section}, stop_after_section="
                 f"{self.stop_after_section}, {self.sections} sections)")
        if first_lo > last_hi:
            fail("start and stop windows leave no section for activity")
        if self.max_active_sections == 0:
            fail("must be active but max_active allows no section")

        runs = max(self.min_segment_count, 1)
        needed = runs * max(self.min_segment_length, 1) + (runs - 1) * max(self.min_pause_length, 1)
        available = last_hi - first_lo + 1
        if not self.allow_inactive and self.min_active_sections > available:
            fail(f"needs {self.min_active_sections} active sections, "
                 f"only {available} lie between its start and stop windows")
        if needed > available:
            fail(f"{runs} segment(s) need at least {needed} sections, "
                 f"only {available} available")
        if self.min_segment_count > self.max_segment_count:
            fail(f"min_segment_count {self.min_segment_count} > "
                 f"max_segment_count {self.max_segment_count}")

    def violations(self, state, active, section, remaining):
        """
        Yield every constraint kind the advanced `state` violates at
        `section` (`remaining` sections still to come).

        Bounds that can only be reached later are projected: a minimum
        fails only once the remaining sections can no longer make it up.
        """
        # a voice whose pause exceeds max_pause_length may never restart
        retired = (not active and state.active_count > 0
                   and state.run_length > self.max_pause_length)
        horizon = 0 if retired else remaining

        if ((not self.allow_inactive or state.active_count > 0)
                and state.active_count + horizon < self.min_active_sections):
            yield MIN_ACTIVE
        if state.active_count > self.max_active_sections:
            yield MAX_ACTIVE
        if state.run_count > self.max_segment_count:
            yield MAX_SEGMENT_COUNT
        future_runs = 0 if retired else (horizon + (0 if active else 1)) // 2
        if state.run_count + future_runs < self.min_segment_count:
            yield MIN_SEGMENT_COUNT

        if active:
            if state.run_length > self.max_segment_length:
                yield MAX_SEGMENT_LENGTH
            if state.run_length + remaining < self.min_segment_length:
                yield MIN_SEGMENT_LENGTH
            if state.active_count == 1 and section >= self.start_before_section:
                yield START_BEFORE_SECTION
            if remaining <= self.stop_before_section:
                yield STOP_BEFORE_SECTION

        if state.active_count > 0:
            if section <= self.start_after_section:
                yield START_AFTER_SECTION
            if (not state.active_in_stop_window
                    and (remaining <= self.stop_before_section or remaining == 0)):
                yield STOP_AFTER_SECTION

    def first_violation(self, state, active, section, remaining):
        """First violated constraint kind, or None."""
        return next(self.violations(state, active, section, remaining), None)
