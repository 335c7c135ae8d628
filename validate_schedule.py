"""
Schedule Matrix Validation & Scoring Harness

Re-derives runs and pauses from a finished schedule matrix and checks every
voice against its resolved limits, independently of the search that built
it. Greedy schedules may legitimately fail here; exact schedules must not.

API:
    from validate_schedule import validate
    scorecard = validate(rows, limits)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from voice_constraints import (
    MAX_ACTIVE, MAX_PAUSE_LENGTH, MAX_SEGMENT_COUNT, MAX_SEGMENT_LENGTH,
    MIN_ACTIVE, MIN_PAUSE_LENGTH, MIN_SEGMENT_COUNT, MIN_SEGMENT_LENGTH,
    START_AFTER_SECTION, START_BEFORE_SECTION, STOP_AFTER_SECTION,
    STOP_BEFORE_SECTION, VoiceLimits,
)


@dataclass
class Issue:
    """A single validation issue (error or warning)."""
    level: str          # 'error' or 'warning'
    check: str          # constraint kind, e.g. 'min_segment_length'
    voice: str | None   # voice name, or None for section-wide issues
    section: int        # section number (0-based), or -1 for the whole song
    message: str


def _runs(column: list[bool]) -> list[tuple[int, int]]:
    """Active runs as (first section, length)."""
    runs = []
    for s, active in enumerate(column):
        if not active:
            continue
        if runs and runs[-1][0] + runs[-1][1] == s:
            runs[-1] = (runs[-1][0], runs[-1][1] + 1)
        else:
            runs.append((s, 1))
    return runs


# ---------------------------------------------------------------------------
# Per-voice checks
# ---------------------------------------------------------------------------

def check_activity_ratio(column: list[bool], limits: VoiceLimits) -> list[Issue]:
    issues = []
    active = sum(column)
    if active < limits.min_active_sections and not (limits.allow_inactive and active == 0):
        issues.append(Issue('error', MIN_ACTIVE, limits.name, -1,
            f"{active} active sections, at least {limits.min_active_sections} required"))
    if active > limits.max_active_sections:
        issues.append(Issue('error', MAX_ACTIVE, limits.name, -1,
            f"{active} active sections, at most {limits.max_active_sections} allowed"))
    return issues


def check_segments(column: list[bool], limits: VoiceLimits) -> list[Issue]:
    issues = []
    runs = _runs(column)
    if len(runs) < limits.min_segment_count:
        issues.append(Issue('error', MIN_SEGMENT_COUNT, limits.name, -1,
            f"{len(runs)} segments, at least {limits.min_segment_count} required"))
    if len(runs) > limits.max_segment_count:
        issues.append(Issue('error', MAX_SEGMENT_COUNT, limits.name, -1,
            f"{len(runs)} segments, at most {limits.max_segment_count} allowed"))
    for start, length in runs:
        if length < limits.min_segment_length:
            issues.append(Issue('error', MIN_SEGMENT_LENGTH, limits.name, start,
                f"segment of {length} sections, minimum is {limits.min_segment_length}"))
        if length > limits.max_segment_length:
            issues.append(Issue('error', MAX_SEGMENT_LENGTH, limits.name, start,
                f"segment of {length} sections, maximum is {limits.max_segment_length}"))
    return issues


def check_pauses(column: list[bool], limits: VoiceLimits) -> list[Issue]:
    """Pauses between two segments; leading and trailing silence is not a pause."""
    issues = []
    runs = _runs(column)
    for (start, length), (next_start, _) in zip(runs, runs[1:]):
        pause = next_start - (start + length)
        if pause < limits.min_pause_length:
            issues.append(Issue('error', MIN_PAUSE_LENGTH, limits.name, start + length,
                f"pause of {pause} sections, minimum is {limits.min_pause_length}"))
        if pause > limits.max_pause_length:
            issues.append(Issue('error', MAX_PAUSE_LENGTH, limits.name, start + length,
                f"pause of {pause} sections, maximum is {limits.max_pause_length}"))
    return issues


def check_start_stop(column: list[bool], limits: VoiceLimits) -> list[Issue]:
    issues = []
    runs = _runs(column)
    if not runs:
        return issues
    first = runs[0][0]
    last = runs[-1][0] + runs[-1][1] - 1
    remaining = len(column) - 1 - last

    if first <= limits.start_after_section:
        issues.append(Issue('error', START_AFTER_SECTION, limits.name, first,
            f"starts in section {first}, must start after {limits.start_after_section}"))
    if first >= limits.start_before_section:
        issues.append(Issue('error', START_BEFORE_SECTION, limits.name, first,
            f"starts in section {first}, must start before {limits.start_before_section}"))
    if remaining <= limits.stop_before_section:
        issues.append(Issue('error', STOP_BEFORE_SECTION, limits.name, last,
            f"stops {remaining} sections before the end, "
            f"must stop more than {limits.stop_before_section} before"))
    if remaining >= limits.stop_after_section:
        issues.append(Issue('error', STOP_AFTER_SECTION, limits.name, last,
            f"stops {remaining} sections before the end, "
            f"must stop fewer than {limits.stop_after_section} before"))
    return issues


# ---------------------------------------------------------------------------
# Section-wide checks
# ---------------------------------------------------------------------------

def check_section_counts(rows, wanted) -> list[Issue]:
    """Sections whose number of active voices differs from the desired count."""
    issues = []
    for s, (row, count) in enumerate(zip(rows, wanted)):
        actual = sum(row)
        if actual != count:
            issues.append(Issue('warning', 'activity_count', None, s,
                f"{actual} active voices, {count} desired"))
    return issues


# ---------------------------------------------------------------------------
# Scorecard
# ---------------------------------------------------------------------------

@dataclass
class Scorecard:
    """Aggregated validation results for a schedule matrix."""
    errors: list[Issue] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    scores: dict = field(default_factory=dict)      # voice -> active ratio
    passed: bool = True

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def overall_score(self) -> float:
        """0-100: share of voices without errors."""
        if not self.scores:
            return 0.0
        failing = {issue.voice for issue in self.errors if issue.voice is not None}
        clean = sum(1 for voice in self.scores if voice not in failing)
        return round(100.0 * clean / len(self.scores), 1)


def validate(rows, limits: list[VoiceLimits], wanted=None) -> Scorecard:
    """Run every check over a schedule matrix (one bit tuple per section)."""
    sc = Scorecard()
    for voice, voice_limits in enumerate(limits):
        column = [bool(row[voice]) for row in rows]
        for check_fn in (check_activity_ratio, check_segments,
                         check_pauses, check_start_stop):
            sc.errors.extend(check_fn(column, voice_limits))
        sc.scores[voice_limits.name] = sum(column) / len(column) if column else 0.0

    sc.passed = len(sc.errors) == 0

    if wanted is not None:
        sc.warnings.extend(check_section_counts(rows, wanted))
    return sc


def print_scorecard(sc: Scorecard) -> None:
    """Print a human-readable scorecard to stdout."""
    print("=" * 60)
    print("  SCHEDULE SCORECARD")
    print("=" * 60)
    print()

    status = "PASS" if sc.passed else "FAIL"
    print(f"  Status:         {status}")
    print(f"  Overall Score:  {sc.overall_score}/100")
    print(f"  Errors:         {sc.error_count}")
    print(f"  Warnings:       {sc.warning_count}")
    print()

    if sc.errors:
        print("  ERRORS:")
        for issue in sc.errors[:20]:
            where = f"section {issue.section}" if issue.section >= 0 else "song"
            print(f"    [{issue.check}] {issue.voice} {where}: {issue.message}")
        if len(sc.errors) > 20:
            print(f"    ... and {len(sc.errors) - 20} more")
        print()

    print("  ACTIVITY:")
    for voice, ratio in sc.scores.items():
        print(f"    {voice:<16} {ratio:6.1%}")
    print()

    if sc.warnings:
        print(f"  WARNINGS (first 10 of {len(sc.warnings)}):")
        for issue in sc.warnings[:10]:
            print(f"    [{issue.check}] section {issue.section}: {issue.message}")
        print()

    print("=" * 60)
