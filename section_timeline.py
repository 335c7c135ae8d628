"""
Section Timeline

The song's division into sections (usually chord sections), as seen by the
activity scheduler. Only section counts, lengths in ticks and the mapping
between ticks and sections are exposed; the harmony that produced them is
not.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from itertools import accumulate

from activity_errors import InvalidConfiguration


@dataclass(frozen=True)
class SectionTimeline:
    lengths: tuple[int, ...]
    starts: tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        lengths = tuple(int(n) for n in self.lengths)
        if not lengths:
            raise InvalidConfiguration("A song needs at least one section")
        for idx, n in enumerate(lengths):
            if n <= 0:
                raise InvalidConfiguration(
                    f"Section {idx} has non-positive length {n}")
        object.__setattr__(self, 'lengths', lengths)
        object.__setattr__(self, 'starts', (0,) + tuple(accumulate(lengths)))

    @classmethod
    def uniform(cls, count: int, ticks: int) -> SectionTimeline:
        """`count` sections of `ticks` ticks each."""
        return cls((ticks,) * count)

    def section_count(self) -> int:
        return len(self.lengths)

    def section_length(self, section: int) -> int:
        return self.lengths[section]

    def section_tick(self, section: int) -> int:
        """Start tick of `section`; `section_count()` gives the song end."""
        return self.starts[section]

    @property
    def total_ticks(self) -> int:
        return self.starts[-1]

    def section_at_tick(self, tick: int) -> int:
        """Section containing `tick`, or -1 outside the song."""
        if tick < 0 or tick >= self.total_ticks:
            return -1
        return bisect_right(self.starts, tick) - 1

    def resolve_reference(self, ref) -> int:
        """
        Resolve a section reference to a section number.

        Accepts an int or a string: "3" (from the start), "-1" (from the
        end, -1 being the last section) or "50%" (the section containing
        that fraction of the song's ticks).
        """
        count = self.section_count()
        text = str(ref).strip()
        if text.endswith('%'):
            try:
                percentage = float(text[:-1])
            except ValueError:
                raise InvalidConfiguration(f"Invalid section reference '{ref}'") from None
            if percentage < 0 or percentage > 100:
                raise InvalidConfiguration(
                    f"Percentage '{ref}' must be between 0 and 100")
            number = self.section_at_tick(int(self.total_ticks * percentage / 100.0))
            return count - 1 if number == -1 else number

        try:
            number = int(text)
        except ValueError:
            raise InvalidConfiguration(f"Invalid section reference '{ref}'") from None
        if number < 0:
            number += count
        if number < 0 or number >= count:
            raise InvalidConfiguration(
                f"Section reference '{ref}' is outside the song ({count} sections)")
        return number
