import os
import sys

from activity_errors import InvalidConfiguration, SearchExhausted
from activity_scheduler import ActivityScheduler
from song_arranger import SongArranger, load_config
from validate_schedule import validate
from voice_constraints import VoiceConstraints

EXAMPLE_CONFIG = os.path.join(os.path.dirname(os.path.abspath(__file__)),
                              'example_arrangement.json')


def run_verification():
    """Three voices over eight sections; A must be active at least half the time."""
    print("=== Scheduler Fade-in / Fade-out Verification ===")

    voices = [VoiceConstraints('A', min_active=50),
              VoiceConstraints('B'),
              VoiceConstraints('C')]
    print(f"Initializing problem with voices: {[v.name for v in voices]}")
    scheduler = ActivityScheduler(voices, 8, seed=42,
                                  start_activity_counts=(1, 2),
                                  stop_activity_counts=(2, 1),
                                  min_activity_count=1)

    print("STATUS: Scheduling...")
    matrix = scheduler.schedule()
    rows = matrix.rows()
    for section, row in enumerate(rows):
        print(f"  section {section}: {''.join('*' if bit else '-' for bit in row)}")

    ok = True
    a_active = sum(row[0] for row in rows)
    if a_active >= 4:
        print(f"PASS: A active in {a_active} of 8 sections.")
    else:
        print(f"FAIL: A active in only {a_active} sections!")
        ok = False

    if sum(rows[0]) == 1 and sum(rows[-1]) == 1:
        print("PASS: Song starts and ends with exactly one voice.")
    else:
        print(f"FAIL: first/last section counts are {sum(rows[0])}/{sum(rows[-1])}")
        ok = False

    sc = validate(rows, scheduler.limits)
    if sc.passed:
        print("PASS: Schedule matrix satisfies every voice constraint.")
    else:
        print(f"FAIL: {sc.error_count} constraint violation(s): {sc.errors[0].message}")
        ok = False
    return ok


def test_exhausted_budget():
    """One voice that may be active in one section of four, but the fade-in and
    fade-out both want it active. The search must give up and say why."""
    print("\n=== Test: Exhausted Iteration Budget ===")
    scheduler = ActivityScheduler([VoiceConstraints('A', max_active=25)], 4, seed=1,
                                  start_activity_counts=(1,), stop_activity_counts=(1,),
                                  max_iterations=500)
    try:
        scheduler.schedule()
    except SearchExhausted as e:
        (voice, kind), count = e.top_violations(1)[0]
        print(f"RESULT: {e}")
        if (voice, kind) == ('A', 'max_active'):
            print(f"PASS: Most frequent violation is A max_active (x{count})")
            print(scheduler.get_diagnostic_report())
            return True
        print(f"FAIL: Unexpected top violation {voice} {kind}")
        return False
    print("FAIL: Scheduler returned a matrix")
    return False


def test_impossible_segment_count():
    """Five segments can never fit into three sections."""
    print("\n=== Test: Impossible Segment Count ===")
    try:
        ActivityScheduler([VoiceConstraints('A', min_segment_count=5)], 3, seed=1)
    except InvalidConfiguration as e:
        print(f"PASS: Rejected before search: {e}")
        return True
    print("FAIL: Configuration accepted")
    return False


def test_example_arrangement():
    """End-to-end run of the bundled example config."""
    print("\n=== Test: Example Arrangement ===")
    config = load_config(EXAMPLE_CONFIG)
    result = SongArranger(config, verbose=False).arrange()
    if not result.scorecard.passed:
        print(f"FAIL: {result.scorecard.error_count} violation(s)")
        return False
    muted = [v.name for v in config.voices if v.name not in result.voice_names]
    print(f"RESULT: {len(result.voice_names)} voices scheduled, "
          f"{result.stats['iterations']} iterations, not scheduled: {muted or 'none'}")
    print("PASS: Example arrangement is valid.")
    return True


def test_greedy_never_fails():
    """Greedy mode returns a matrix even for the exhausted-budget case."""
    print("\n=== Test: Greedy Mode ===")
    scheduler = ActivityScheduler([VoiceConstraints('A', max_active=25)], 4, seed=1,
                                  start_activity_counts=(1,), stop_activity_counts=(1,),
                                  mode='greedy', max_iterations=50)
    matrix = scheduler.schedule()
    if matrix.is_complete:
        print(f"PASS: Greedy matrix complete, penalty {scheduler.stats['penalty']}")
        return True
    print("FAIL: Greedy matrix incomplete")
    return False


if __name__ == "__main__":
    results = []
    results.append(("Fade-in / fade-out", run_verification()))
    results.append(("Exhausted budget", test_exhausted_budget()))
    results.append(("Impossible segment count", test_impossible_segment_count()))
    results.append(("Example arrangement", test_example_arrangement()))
    results.append(("Greedy mode", test_greedy_never_fails()))

    print("\n=== Summary ===")
    for name, passed in results:
        status = "PASS" if passed else "FAIL"
        print(f"  {status}: {name}")

    if all(p for _, p in results):
        print("\nAll tests passed!")
    else:
        print("\nSome tests failed!")
        sys.exit(1)
