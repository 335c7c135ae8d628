#!/usr/bin/env python3
"""
Tests for voice run states and the schedule matrix undo stack.

Tests:
1. VoiceRunState transitions
2. SectionSnapshot.empty and counts
3. ScheduleMatrix push/pop/top
4. ScheduleMatrix rejects bad pushes and pops

Usage:
    python test_schedule_state.py
"""

import sys

from schedule_state import ScheduleMatrix, SectionSnapshot, VoiceRunState


def _assert_eq(actual, expected, msg=""):
    if actual != expected:
        raise AssertionError(f"{msg}\n  expected: {expected!r}\n  actual:   {actual!r}")


def _assert_raises(fn, exc_type, msg=""):
    try:
        fn()
    except exc_type:
        return
    raise AssertionError(f"{msg}: expected {exc_type.__name__}")


def test_run_state_transitions():
    print("Test 1: VoiceRunState transitions")

    state = VoiceRunState()
    state = state.activated().advanced(True, False)
    _assert_eq(state, VoiceRunState(1, 1, 1, False), "first active section")
    state = state.advanced(True, True)
    _assert_eq(state, VoiceRunState(2, 1, 2, True), "run continues into stop window")
    state = state.deactivated().advanced(False, False)
    _assert_eq(state, VoiceRunState(2, 1, 1, True), "pause starts, window flag sticks")
    state = state.advanced(False, True)
    _assert_eq(state.active_in_stop_window, True, "inactive sections never clear the flag")
    _assert_eq(state.activated().run_count, 2, "second run")

    print("  PASSED")


def test_snapshot():
    print("Test 2: SectionSnapshot")

    empty = SectionSnapshot.empty(3)
    _assert_eq(empty.bits, (False, False, False), "empty bits")
    _assert_eq(empty.active_count, 0, "empty count")

    snap = SectionSnapshot((True, False, True), (VoiceRunState(),) * 3)
    _assert_eq(snap.active_count, 2, "active count")
    _assert_eq(snap.active_voices(), [0, 2], "active voices")

    print("  PASSED")


def test_matrix_stack():
    print("Test 3: ScheduleMatrix push/pop/top")

    matrix = ScheduleMatrix(2, 3)
    _assert_eq(matrix.top(), SectionSnapshot.empty(2), "top of empty matrix")

    states = (VoiceRunState(),) * 2
    first = SectionSnapshot((True, False), states)
    second = SectionSnapshot((True, True), states)
    matrix.push(first)
    matrix.push(second)
    _assert_eq(len(matrix), 2, "two sections")
    _assert_eq(matrix.top(), second, "top is the last push")
    _assert_eq(matrix.column(1), [False, True], "column")
    _assert_eq(matrix.active_counts(), [1, 2], "active counts")

    _assert_eq(matrix.pop(), second, "pop returns the last push")
    _assert_eq(matrix.top(), first, "previous section is intact")
    _assert_eq(matrix.rows(), [(True, False)], "rows after pop")

    matrix.push(second)
    matrix.push(first)
    _assert_eq(matrix.is_complete, True, "complete after three sections")

    print("  PASSED")


def test_matrix_errors():
    print("Test 4: ScheduleMatrix errors")

    matrix = ScheduleMatrix(2, 1)
    _assert_raises(matrix.pop, IndexError, "pop on empty matrix")
    _assert_raises(lambda: matrix.push(SectionSnapshot.empty(3)), ValueError, "wrong width")
    matrix.push(SectionSnapshot.empty(2))
    _assert_raises(lambda: matrix.push(SectionSnapshot.empty(2)), IndexError, "overfull")

    print("  PASSED")


def main():
    tests = [
        test_run_state_transitions,
        test_snapshot,
        test_matrix_stack,
        test_matrix_errors,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except AssertionError as e:
            print(f"  FAILED: {e}")
            failed += 1
        except Exception as e:
            print(f"  ERROR: {type(e).__name__}: {e}")
            failed += 1

    print()
    print("=" * 70)
    total = passed + failed
    print(f"Results: {passed}/{total} passed, {failed} failed")
    print("=" * 70)

    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
