#!/usr/bin/env python3
"""
Tests for arrangement config loading and the end-to-end pipeline.

Tests:
1. ArrangementConfig.from_dict - sections, voices, rejected keys
2. Track selection - solo, mute, no tracks
3. Example arrangement end to end
4. CLI - output file and exit codes
5. load_config - missing and malformed files

Usage:
    python test_song_arranger.py
"""

import json
import os
import sys
import tempfile

from activity_errors import InvalidConfiguration
from song_arranger import ArrangementConfig, SongArranger, load_config, main

HERE = os.path.dirname(os.path.abspath(__file__))
EXAMPLE_CONFIG = os.path.join(HERE, 'example_arrangement.json')


def _assert_eq(actual, expected, msg=""):
    if actual != expected:
        raise AssertionError(f"{msg}\n  expected: {expected!r}\n  actual:   {actual!r}")


def _assert_true(value, msg=""):
    if not value:
        raise AssertionError(msg)


def _assert_raises(fn, exc_type, msg=""):
    try:
        fn()
    except exc_type:
        return
    raise AssertionError(f"{msg}: expected {exc_type.__name__}")


def _config(**overrides):
    data = {
        'sections': {'count': 8, 'ticks': 192},
        'voices': {'a': {'min_active': 50}, 'b': {}, 'c': {}},
    }
    data.update(overrides)
    return data


def _write_json(data):
    fd, path = tempfile.mkstemp(suffix='.json')
    with os.fdopen(fd, 'w') as f:
        json.dump(data, f)
    return path


# ============================================================================
# Test 1: config parsing
# ============================================================================

def test_config_parsing():
    print("Test 1: ArrangementConfig.from_dict")

    config = ArrangementConfig.from_dict(_config(seed=9))
    _assert_eq(config.sections.section_count(), 8, "section count")
    _assert_eq(config.sections.total_ticks, 8 * 192, "total ticks")
    _assert_eq([v.name for v in config.voices], ['a', 'b', 'c'], "voice order")
    _assert_eq(config.voices[0].min_active, 50.0, "voice constraints")
    _assert_eq(config.seed, 9, "seed")

    config = ArrangementConfig.from_dict(_config(sections={'lengths': [192, 96, 192]}))
    _assert_eq(config.sections.total_ticks, 480, "explicit lengths")

    _assert_raises(lambda: ArrangementConfig.from_dict(_config(tempo=120)),
                   InvalidConfiguration, "unknown top-level key")
    _assert_raises(lambda: ArrangementConfig.from_dict(_config(scheduler={'mood': 'calm'})),
                   InvalidConfiguration, "unknown scheduler key")
    _assert_raises(lambda: ArrangementConfig.from_dict(_config(sections={'count': 8})),
                   InvalidConfiguration, "sections without ticks")
    _assert_raises(lambda: ArrangementConfig.from_dict(_config(voices={})),
                   InvalidConfiguration, "no voices")
    _assert_raises(lambda: ArrangementConfig.from_dict(
        _config(tracks=[{'instrument': 'Piano', 'voices': ['zz']}])),
        InvalidConfiguration, "track with undefined voice")
    _assert_raises(lambda: ArrangementConfig.from_dict(
        _config(modifications=[{'operator': 'and', 'target': 'a'}])),
        InvalidConfiguration, "modification arity")

    print("  PASSED")


# ============================================================================
# Test 2: track selection
# ============================================================================

def test_track_selection():
    print("Test 2: track selection")

    tracks = [
        {'instrument': 'Piano', 'voices': ['a']},
        {'instrument': 'Bass', 'voices': ['b'], 'mute': True},
        {'instrument': 'Lead', 'voices': 'c'},
    ]
    config = ArrangementConfig.from_dict(_config(tracks=tracks))
    _assert_eq([t.instrument for t in config.active_tracks()], ['Piano', 'Lead'], "mute")
    _assert_eq([v.name for v in config.needed_voices()], ['a', 'c'], "muted voice not needed")

    tracks[1]['solo'] = True
    config = ArrangementConfig.from_dict(_config(tracks=tracks))
    _assert_eq([t.instrument for t in config.active_tracks()], ['Bass'], "solo wins over mute")
    _assert_eq([v.name for v in config.needed_voices()], ['b'], "soloed voice only")

    config = ArrangementConfig.from_dict(_config())
    _assert_eq([v.name for v in config.needed_voices()], ['a', 'b', 'c'], "no tracks")

    print("  PASSED")


# ============================================================================
# Test 3: example arrangement
# ============================================================================

def test_example_arrangement():
    print("Test 3: example arrangement end to end")

    config = load_config(EXAMPLE_CONFIG)
    result = SongArranger(config, verbose=False).arrange()
    sections = config.sections

    _assert_true(result.scorecard.passed,
                 f"violations: {[i.message for i in result.scorecard.errors]}")
    _assert_eq(result.voice_names, ['base', 'bass', 'melody', 'pad', 'drums'], "needed voices")
    _assert_true('Arpeggio' not in result.tracks, "muted track left out")
    _assert_eq(result.seed, 1234, "config seed used")

    # pad never plays together with melody in the first half (andnot modification)
    pad, melody = result.timelines['pad'], result.timelines['melody']
    last = sections.resolve_reference('50%')
    for s in range(last + 1):
        tick = sections.section_tick(s)
        _assert_true(not (pad.is_active(tick) and melody.is_active(tick)),
                     f"pad and melody overlap in section {s}")

    # drums start half a section early
    drums = result.timelines['drums']
    _assert_eq(drums.first_active_tick % 192, 96, "drums start shift")

    data = result.to_dict()
    _assert_eq(sorted(data), ['seed', 'stats', 'tracks', 'voices'], "output keys")
    for name, text in data['voices'].items():
        total = sum(int(part.split('/')[1]) for part in text.split(','))
        _assert_eq(total, sections.total_ticks, f"{name} spans the song")

    again = SongArranger(config, verbose=False).arrange()
    _assert_eq(again.rows, result.rows, "same seed, same schedule")

    print("  PASSED")


# ============================================================================
# Test 4: CLI
# ============================================================================

def test_cli():
    print("Test 4: CLI")

    fd, output = tempfile.mkstemp(suffix='.json')
    os.close(fd)
    try:
        code = main([EXAMPLE_CONFIG, '--seed', '7', '--quiet', '-o', output])
        _assert_eq(code, 0, "exit code")
        with open(output) as f:
            data = json.load(f)
        _assert_eq(data['seed'], 7, "seed override")
        _assert_eq(set(data['voices']), {'base', 'bass', 'melody', 'pad', 'drums'}, "voices")
        _assert_eq(data['stats']['mode'], 'exact', "mode")

        code = main([EXAMPLE_CONFIG, '--mode', 'greedy', '--max-iterations', '20', '--quiet'])
        _assert_eq(code, 0, "greedy run")
    finally:
        os.remove(output)

    bad = _write_json(_config(voices={'a': {'min_segment_count': 5, 'max_active': 10}}))
    try:
        _assert_eq(main([bad, '--quiet']), 1, "invalid configuration")
    finally:
        os.remove(bad)

    exhausted = _write_json({
        'sections': {'count': 4, 'ticks': 96},
        'scheduler': {'start_activity_counts': [1], 'stop_activity_counts': [1],
                      'max_iterations': 200},
        'voices': {'a': {'max_active': 25}},
    })
    try:
        _assert_eq(main([exhausted, '--quiet']), 1, "search exhausted")
    finally:
        os.remove(exhausted)

    _assert_eq(main([os.path.join(HERE, 'no_such_config.json'), '--quiet']), 1, "missing file")

    print("  PASSED")


# ============================================================================
# Test 5: load_config errors
# ============================================================================

def test_load_config_errors():
    print("Test 5: load_config errors")

    fd, path = tempfile.mkstemp(suffix='.json')
    with os.fdopen(fd, 'w') as f:
        f.write('{"sections": ')
    try:
        _assert_raises(lambda: load_config(path), InvalidConfiguration, "malformed JSON")
    finally:
        os.remove(path)

    listed = _write_json([1, 2, 3])
    try:
        _assert_raises(lambda: load_config(listed), InvalidConfiguration, "not an object")
    finally:
        os.remove(listed)

    print("  PASSED")


def main_tests():
    tests = [
        test_config_parsing,
        test_track_selection,
        test_example_arrangement,
        test_cli,
        test_load_config_errors,
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
    sys.exit(main_tests())
