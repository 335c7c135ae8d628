"""
Schedule state: per-voice run bookkeeping and the schedule matrix.

The scheduler never mutates an accepted section. Each accepted section is
pushed as an immutable `SectionSnapshot`; backtracking pops it. The matrix
is therefore its own undo log.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class VoiceRunState:
    active_count: int = 0
    run_count: int = 0
    run_length: int = 0         # length of the run or pause in progress
    active_in_stop_window: bool = False

    def activated(self) -> VoiceRunState:
        """The voice starts a new run (ending a pause, if any)."""
        return replace(self, run_count=self.run_count + 1, run_length=0)

    def deactivated(self) -> VoiceRunState:
        """The voice starts a pause (ending a run)."""
        return replace(self, run_length=0)

    def advanced(self, active: bool, in_stop_window: bool) -> VoiceRunState:
        """State after one more section, active or not."""
        return VoiceRunState(
            active_count=self.active_count + (1 if active else 0),
            run_count=self.run_count,
            run_length=self.run_length + 1,
            active_in_stop_window=self.active_in_stop_window or (active and in_stop_window),
        )


@dataclass(frozen=True)
class SectionSnapshot:
    bits: tuple[bool, ...]
    states: tuple[VoiceRunState, ...]

    @classmethod
    def empty(cls, voice_count: int) -> SectionSnapshot:
        """The state before the first section: nothing active, nothing counted."""
        return cls((False,) * voice_count, (VoiceRunState(),) * voice_count)

    @property
    def active_count(self) -> int:
        return sum(self.bits)

    def active_voices(self) -> list[int]:
        return [i for i, bit in enumerate(self.bits) if bit]


class ScheduleMatrix:
    """Accepted sections of a search, first section at the bottom of the stack."""

    def __init__(self, voice_count: int, section_count: int):
        self.voice_count = voice_count
        self.section_count = section_count
        self._snapshots: list[SectionSnapshot] = []
        self._empty = SectionSnapshot.empty(voice_count)

    def __len__(self):
        return len(self._snapshots)

    def __getitem__(self, section):
        return self._snapshots[section]

    @property
    def is_complete(self) -> bool:
        return len(self._snapshots) == self.section_count

    def top(self) -> SectionSnapshot:
        """Last accepted section, or the empty pre-song snapshot."""
        return self._snapshots[-1] if self._snapshots else self._empty

    def push(self, snapshot: SectionSnapshot) -> None:
        if self.is_complete:
            raise IndexError("Schedule matrix already holds every section")
        if len(snapshot.bits) != self.voice_count or len(snapshot.states) != self.voice_count:
            raise ValueError(
                f"Snapshot covers {len(snapshot.bits)} voices, expected {self.voice_count}")
        self._snapshots.append(snapshot)

    def pop(self) -> SectionSnapshot:
        if not self._snapshots:
            raise IndexError("Cannot backtrack before the first section")
        return self._snapshots.pop()

    def rows(self) -> list[tuple[bool, ...]]:
        """One bit tuple per accepted section."""
        return [snapshot.bits for snapshot in self._snapshots]

    def column(self, voice: int) -> list[bool]:
        """Activity of one voice across the accepted sections."""
        return [snapshot.bits[voice] for snapshot in self._snapshots]

    def active_counts(self) -> list[int]:
        return [snapshot.active_count for snapshot in self._snapshots]
