"""
Activity Scheduling Engine
Decides, for every section of a song, which voices are active, using
randomized backtracking search over per-voice constraint sets.

The schedule matrix is built one section at a time, left to right:
1. Compute how many voices the section wants active (fade-in, random walk, fade-out).
2. Derive the section from the previous one by activating/deactivating random voices.
3. Advance every voice's run state and check it against its limits.
4. Accept the section, retry it, or backtrack to the previous one.

Greedy mode replaces step 4 with scoring: every section keeps the
least-penalized of many attempts and the search never backtracks.
"""

import math
import random
import time

from activity_errors import InvalidConfiguration, SearchExhausted
from feasibility import DEFAULT_TIME_LIMIT, check_voice_feasibility
from schedule_state import ScheduleMatrix, SectionSnapshot
from voice_constraints import (
    MAX_ACTIVE, MAX_PAUSE_LENGTH, MAX_SEGMENT_COUNT, MAX_SEGMENT_LENGTH,
    MIN_ACTIVE, MIN_PAUSE_LENGTH, MIN_SEGMENT_COUNT, MIN_SEGMENT_LENGTH,
    START_AFTER_SECTION, START_BEFORE_SECTION, STOP_AFTER_SECTION,
    STOP_BEFORE_SECTION,
)

EXACT = 'exact'
GREEDY = 'greedy'
MODES = (EXACT, GREEDY)

DEFAULT_START_ACTIVITY_COUNTS = (1, 2, 3)
DEFAULT_STOP_ACTIVITY_COUNTS = (3, 2, 1)
DEFAULT_MIN_ACTIVITY_COUNT = 2
DEFAULT_MAX_ACTIVITY_CHANGE_COUNT = 2
DEFAULT_MAX_ITERATIONS = {EXACT: 1000000, GREEDY: 1000}

# Tries per section before backtracking. Section 0 is only ever ended by
# the global iteration budget.
FIRST_SECTION_TRIES = 1000000000
SECTION_TRIES = 2

REPEAT_COUNT_PROBABILITY = 0.1
LATERAL_MOVE_PROBABILITY = 0.5

# Greedy mode penalty per violated constraint kind
GREEDY_PENALTIES = {
    MIN_ACTIVE: 100,
    MAX_ACTIVE: 100,
    MIN_SEGMENT_COUNT: 100,
    MAX_SEGMENT_COUNT: 100,
    MIN_SEGMENT_LENGTH: 250,
    MAX_SEGMENT_LENGTH: 250,
    MIN_PAUSE_LENGTH: 400,
    MAX_PAUSE_LENGTH: 400,
    START_BEFORE_SECTION: 15,
    START_AFTER_SECTION: 15,
    STOP_BEFORE_SECTION: 15,
    STOP_AFTER_SECTION: 15,
}


def max_active_voices(voice_count, factor=0.40, decay=0.2):
    """
    Default upper bound on simultaneously active voices.

    Small arrangements may use almost every voice; large ones converge
    towards `factor` of them.
    """
    if voice_count <= 0:
        return 0
    share = factor + (1.0 - factor) * math.exp(-decay * (voice_count - 1))
    return int(0.5 + voice_count * share)


def _activity_counts(counts, voice_count, label):
    result = []
    for count in counts:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidConfiguration(
                f"{label} must be positive integers, got {list(counts)}")
        result.append(min(count, voice_count))
    return tuple(result)


class ActivityScheduler:
    def __init__(self, voices, section_count, rng=None, seed=None,
                 start_activity_counts=DEFAULT_START_ACTIVITY_COUNTS,
                 stop_activity_counts=DEFAULT_STOP_ACTIVITY_COUNTS,
                 min_activity_count=DEFAULT_MIN_ACTIVITY_COUNT,
                 max_activity_count=0,
                 max_activity_change_count=DEFAULT_MAX_ACTIVITY_CHANGE_COUNT,
                 max_iterations=None, mode=EXACT, check_feasibility=True,
                 feasibility_time_limit=DEFAULT_TIME_LIMIT, verbose=False):
        voices = list(voices)
        if not voices:
            raise InvalidConfiguration("At least one voice is required")
        names = [v.name for v in voices]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidConfiguration(f"Duplicate voice name(s): {', '.join(duplicates)}")
        if mode not in MODES:
            raise InvalidConfiguration(f"Unknown mode '{mode}' (expected one of {', '.join(MODES)})")
        if section_count <= 0:
            raise InvalidConfiguration("A song needs at least one section")
        if max_iterations is None:
            max_iterations = DEFAULT_MAX_ITERATIONS[mode]
        if max_iterations <= 0:
            raise InvalidConfiguration(f"max_iterations must be positive, got {max_iterations}")
        max_activity_count = max_activity_count or 0
        for label, value in (('min_activity_count', min_activity_count),
                             ('max_activity_count', max_activity_count),
                             ('max_activity_change_count', max_activity_change_count)):
            if value < 0:
                raise InvalidConfiguration(f"{label} must not be negative, got {value}")

        self.voices = voices
        self.voice_names = names
        self.section_count = section_count
        self.limits = [v.resolve(section_count) for v in voices]
        self.rng = rng if rng is not None else random.Random(seed)
        self.mode = mode
        self.max_iterations = max_iterations
        self.check_feasibility = check_feasibility
        self.feasibility_time_limit = feasibility_time_limit
        self.verbose = verbose

        voice_count = len(voices)
        self.start_counts = _activity_counts(start_activity_counts, voice_count,
                                             'Start activity counts')
        self.stop_counts = _activity_counts(stop_activity_counts, voice_count,
                                            'Stop activity counts')
        self.max_voices = min(max_activity_count, voice_count)
        if self.max_voices == 0:
            self.max_voices = max_active_voices(voice_count)
        self.min_activity_count = min_activity_count
        self.max_change = max_activity_change_count

        self.stats = {}
        self._violations = {}           # {(voice_name, kind): count}
        self._diagnostics = []          # populated by validate()
        self._failure_stats = None      # populated by schedule() on failure

    # ------------------------------------------------------------------
    # Desired-activity schedule
    # ------------------------------------------------------------------

    def wanted_count(self, section, last_count):
        """Number of voices `section` should have active, given the previous section's count."""
        sections = self.section_count
        fade_in = min(sections // 2, len(self.start_counts))
        fade_out = min(sections // 2, len(self.stop_counts))
        fade_out_from = sections - fade_out

        if section < fade_in:
            return self.start_counts[section]
        if section >= fade_out_from:
            return self.stop_counts[len(self.stop_counts) - sections + section]
        if fade_out and section == fade_out_from - 1:
            first_stop = self.stop_counts[len(self.stop_counts) - fade_out]
            count = (last_count + first_stop) // 2
            while count in (last_count, first_stop) and count < self.max_voices:
                count += 1
            return count
        return self._random_walk(last_count)

    def _random_walk(self, last_count):
        high = self.max_voices
        low = min(high, self.min_activity_count)
        change = self.max_change

        if not any(abs(count - last_count) <= change for count in range(low, high + 1)):
            return last_count - change if last_count > high else last_count + change

        while True:
            count = low + self.rng.randrange(high - low + 1)
            if abs(count - last_count) > change:
                continue
            if count == last_count and self.rng.random() >= REPEAT_COUNT_PROBABILITY:
                continue
            return count

    # ------------------------------------------------------------------
    # Section mutation
    # ------------------------------------------------------------------

    def _set_random_bit(self, bits):
        """Activate a random inactive voice and return its index."""
        candidates = [i for i, bit in enumerate(bits) if not bit]
        voice = candidates[self.rng.randrange(len(candidates))]
        bits[voice] = True
        return voice

    def _clear_random_bit(self, bits):
        """Deactivate a random active voice and return its index."""
        candidates = [i for i, bit in enumerate(bits) if bit]
        voice = candidates[self.rng.randrange(len(candidates))]
        bits[voice] = False
        return voice

    def _activate(self, states, voice, penalties=None):
        """
        Start a run for `voice`. Returns the (voice, kind) that forbids it,
        or None. With `penalties`, violations are recorded there instead and
        the run starts anyway.
        """
        state = states[voice]
        limits = self.limits[voice]
        if state.active_count > 0:
            kind = None
            if state.run_length < limits.min_pause_length:
                kind = MIN_PAUSE_LENGTH
            elif state.run_length > limits.max_pause_length:
                kind = MAX_PAUSE_LENGTH
            if kind is not None:
                if penalties is None:
                    return voice, kind
                penalties.append((voice, kind))
        states[voice] = state.activated()
        return None

    def _deactivate(self, states, voice, penalties=None):
        """Start a pause for `voice`; see `_activate`."""
        state = states[voice]
        if state.run_length < self.limits[voice].min_segment_length:
            if penalties is None:
                return voice, MIN_SEGMENT_LENGTH
            penalties.append((voice, MIN_SEGMENT_LENGTH))
        states[voice] = state.deactivated()
        return None

    def _mutate(self, previous, wanted, penalties=None):
        """
        Derive a section from `previous` with `wanted` active voices.

        Returns (bits, states, failure); failure is the (voice, kind) that
        aborted the attempt, and always None when collecting penalties.
        """
        bits = list(previous.bits)
        states = list(previous.states)
        diff = wanted - previous.active_count

        if diff > 0:
            for _ in range(diff):
                failure = self._activate(states, self._set_random_bit(bits), penalties)
                if failure:
                    return bits, states, failure
        elif diff < 0:
            for _ in range(-diff):
                failure = self._deactivate(states, self._clear_random_bit(bits), penalties)
                if failure:
                    return bits, states, failure
        elif self.rng.random() < LATERAL_MOVE_PROBABILITY and wanted < len(bits):
            mark = len(penalties) if penalties is not None else 0
            voice = self._set_random_bit(bits)
            failure = self._activate(states, voice, penalties)
            if failure:
                return bits, states, failure
            other = self._clear_random_bit(bits)
            if other == voice:
                # set and clear cancel out
                states[voice] = previous.states[voice]
                if penalties is not None:
                    del penalties[mark:]
            else:
                failure = self._deactivate(states, other, penalties)
                if failure:
                    return bits, states, failure
        return bits, states, None

    def _check_section(self, section, bits, states, penalties=None):
        """
        Advance every voice by one section and check it.

        Returns the first (voice, kind) violation, or None. With `penalties`
        every violation of every voice is recorded there.
        """
        remaining = self.section_count - 1 - section
        for voice, limits in enumerate(self.limits):
            active = bits[voice]
            state = states[voice].advanced(active, limits.in_stop_window(remaining))
            states[voice] = state
            if penalties is None:
                kind = limits.first_violation(state, active, section, remaining)
                if kind is not None:
                    return voice, kind
            else:
                for kind in limits.violations(state, active, section, remaining):
                    penalties.append((voice, kind))
        return None

    def _tally(self, voice, kind):
        key = (self.voice_names[voice], kind)
        self._violations[key] = self._violations.get(key, 0) + 1

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _schedule_exact(self):
        matrix = ScheduleMatrix(len(self.voices), self.section_count)
        tries = [0] * self.section_count
        iterations = 0
        violations = 0
        backtracks = 0
        section = 0

        while section < self.section_count:
            previous = matrix.top()
            # drawn once per visit; a revisit after backtracking may draw a different count
            wanted = self.wanted_count(section, previous.active_count)
            budget = FIRST_SECTION_TRIES if section == 0 else SECTION_TRIES
            accepted = False

            while tries[section] < budget:
                tries[section] += 1
                bits, states, failure = self._mutate(previous, wanted)
                if failure is None:
                    failure = self._check_section(section, bits, states)
                iterations += 1

                if failure is None:
                    matrix.push(SectionSnapshot(tuple(bits), tuple(states)))
                    section += 1
                    if section < self.section_count:
                        tries[section] = 0
                    accepted = True
                    break

                violations += 1
                self._tally(*failure)
                if iterations > self.max_iterations:
                    self.stats = {'iterations': iterations, 'violations': violations,
                                  'backtracks': backtracks}
                    raise SearchExhausted(self.max_iterations, self._violations, self.stats)

            if accepted:
                continue

            # tries for this section spent, step back to the previous one
            if section == 0:
                self.stats = {'iterations': iterations, 'violations': violations,
                              'backtracks': backtracks}
                raise SearchExhausted(self.max_iterations, self._violations, self.stats)
            matrix.pop()
            section -= 1
            backtracks += 1

        self.stats = {'iterations': iterations, 'violations': violations,
                      'backtracks': backtracks}
        return matrix

    def _schedule_greedy(self):
        matrix = ScheduleMatrix(len(self.voices), self.section_count)
        total_penalty = 0

        for section in range(self.section_count):
            previous = matrix.top()
            best_penalty = None
            candidates = []
            for _ in range(self.max_iterations):
                wanted = self.wanted_count(section, previous.active_count)
                penalties = []
                bits, states, _ = self._mutate(previous, wanted, penalties)
                self._check_section(section, bits, states, penalties)
                penalty = sum(GREEDY_PENALTIES[kind] for _, kind in penalties)
                if best_penalty is None or penalty < best_penalty:
                    best_penalty = penalty
                    candidates = []
                if penalty == best_penalty and all(c.bits != tuple(bits) for c, _ in candidates):
                    candidates.append((SectionSnapshot(tuple(bits), tuple(states)), penalties))

            snapshot, penalties = candidates[self.rng.randrange(len(candidates))]
            matrix.push(snapshot)
            total_penalty += best_penalty
            for voice, kind in penalties:
                self._tally(voice, kind)

        self.stats = {'iterations': self.max_iterations * self.section_count,
                      'violations': sum(self._violations.values()),
                      'backtracks': 0,
                      'penalty': total_penalty}
        return matrix

    def validate(self):
        """
        Pre-search validation. Returns a list of (level, message) tuples
        where level is 'ERROR', 'WARN', or 'INFO'.
        """
        results = []

        # Check A: voices whose own constraints can never be met
        if self.check_feasibility:
            for limits in self.limits:
                status = check_voice_feasibility(limits, self.feasibility_time_limit)
                if status == 'INFEASIBLE':
                    results.append(('ERROR',
                        f"Voice '{limits.name}' cannot satisfy its constraints "
                        f"over {self.section_count} sections"))
                elif status not in ('OPTIMAL', 'FEASIBLE'):
                    results.append(('WARN',
                        f"Feasibility of voice '{limits.name}' undecided ({status})"))

        # Check B: total required activity vs. what the desired schedule offers
        required = sum(l.min_active_sections for l in self.limits if not l.allow_inactive)
        sections = self.section_count
        fade_in = min(sections // 2, len(self.start_counts))
        fade_out = min(sections // 2, len(self.stop_counts))
        capacity = (sum(self.start_counts[:fade_in])
                    + sum(self.stop_counts[len(self.stop_counts) - fade_out:])
                    + max(sections - fade_in - fade_out, 0) * self.max_voices)
        if required > capacity:
            results.append(('WARN',
                f"Voices need {required} active sections in total, the activity "
                f"schedule offers at most {capacity}"))

        # Check C: activity band
        if self.min_activity_count > self.max_voices:
            results.append(('INFO',
                f"min_activity_count {self.min_activity_count} exceeds the maximum "
                f"of {self.max_voices} active voices and is clamped"))

        return results

    def schedule(self):
        """
        Runs the search and returns the completed ScheduleMatrix.

        Raises InvalidConfiguration if pre-search validation reports an
        error, SearchExhausted if the iteration budget runs out.
        """
        self._diagnostics = self.validate()
        if self.verbose:
            for level, msg in self._diagnostics:
                if level in ('ERROR', 'WARN'):
                    print(f"[{level}] {msg}")
        errors = [msg for level, msg in self._diagnostics if level == 'ERROR']
        if errors:
            raise InvalidConfiguration('; '.join(errors))

        self._violations = {}
        self._failure_stats = None
        started = time.perf_counter()
        try:
            if self.mode == GREEDY:
                matrix = self._schedule_greedy()
            else:
                matrix = self._schedule_exact()
        except SearchExhausted:
            self.stats['wall_time'] = time.perf_counter() - started
            self._failure_stats = dict(self.stats, status='EXHAUSTED')
            raise
        self.stats['wall_time'] = time.perf_counter() - started

        if self.verbose:
            elapsed = self.stats['wall_time']
            rate = self.stats['iterations'] / elapsed if elapsed > 0 else 0.0
            print(f"Scheduled {self.section_count} sections x {len(self.voices)} voices "
                  f"({self.mode}) in {elapsed * 1000:.0f} ms. "
                  f"Iterations: {self.stats['iterations']} ({rate:.0f}/s), "
                  f"violations: {self.stats['violations']}, "
                  f"backtracks: {self.stats['backtracks']}")
        return matrix

    def violation_tally(self):
        """{(voice_name, kind): count} of rejected (or, greedy, accepted) violations."""
        return dict(self._violations)

    def get_diagnostic_report(self, limit=10):
        """
        Formats a human-readable diagnostic report from validate() results,
        search statistics and the violation tally.
        """
        lines = []
        lines.append("=" * 60)
        lines.append("SCHEDULER DIAGNOSTIC REPORT")
        lines.append("=" * 60)

        if self._diagnostics:
            lines.append("")
            lines.append("Pre-search checks:")
            for level, msg in self._diagnostics:
                lines.append(f"  [{level}] {msg}")
        else:
            lines.append("")
            lines.append("Pre-search checks: all passed")

        if self.stats:
            lines.append("")
            lines.append("Search stats:")
            if self._failure_stats:
                lines.append(f"  Status: {self._failure_stats['status']}")
            lines.append(f"  Mode: {self.mode}")
            lines.append(f"  Iterations: {self.stats.get('iterations', 0)} "
                         f"(limit {self.max_iterations})")
            lines.append(f"  Violations: {self.stats.get('violations', 0)}")
            lines.append(f"  Backtracks: {self.stats.get('backtracks', 0)}")
            if 'penalty' in self.stats:
                lines.append(f"  Penalty: {self.stats['penalty']}")
            if 'wall_time' in self.stats:
                lines.append(f"  Wall time: {self.stats['wall_time']:.3f}s")

        if self._violations:
            lines.append("")
            lines.append("Most frequent violations:")
            ranked = sorted(self._violations.items(), key=lambda item: (-item[1], item[0]))
            for (voice, kind), count in ranked[:limit]:
                lines.append(f"  {voice} {kind}: {count}")

        lines.append("=" * 60)
        return "\n".join(lines)
