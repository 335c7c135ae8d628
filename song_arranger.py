"""
Song Activity Arranger
Loads a JSON arrangement config, selects the voices its tracks need,
schedules their activity section by section, applies activity
modifications and boundary shifts, and reports the result.

Usage:
    arrange-activity example_arrangement.json --seed 1234 -o activity.json
"""

from __future__ import annotations

import argparse
import json
import random
import sys
from dataclasses import dataclass, field

from activity_errors import InvalidConfiguration, SearchExhausted
from activity_scheduler import ActivityScheduler, EXACT, MODES
from activity_timeline import (
    ActivityModification, apply_modifications, format_matrix, materialize,
    shift_boundaries,
)
from section_timeline import SectionTimeline
from validate_schedule import Scorecard, print_scorecard, validate
from voice_constraints import VoiceConstraints

# Keys accepted in the "scheduler" block, passed through to ActivityScheduler
SCHEDULER_KEYS = (
    'mode', 'max_iterations', 'start_activity_counts', 'stop_activity_counts',
    'min_activity_count', 'max_activity_count', 'max_activity_change_count',
    'check_feasibility', 'feasibility_time_limit',
)

CONFIG_KEYS = ('seed', 'sections', 'scheduler', 'voices', 'tracks', 'modifications')


def _reject_unknown(data, allowed, where):
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise InvalidConfiguration(f"Unknown key(s) in {where}: {', '.join(unknown)}")


@dataclass
class TrackEntry:
    instrument: str
    voices: list[str]
    solo: bool = False
    mute: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> TrackEntry:
        _reject_unknown(data, ('instrument', 'voices', 'solo', 'mute'), 'track')
        if 'instrument' not in data:
            raise InvalidConfiguration("A track needs an instrument")
        voices = data.get('voices', [])
        if isinstance(voices, str):
            voices = [voices]
        return cls(instrument=str(data['instrument']),
                   voices=[str(v) for v in voices],
                   solo=bool(data.get('solo', False)),
                   mute=bool(data.get('mute', False)))


def _parse_sections(data) -> SectionTimeline:
    if not isinstance(data, dict):
        raise InvalidConfiguration("'sections' must be an object")
    if 'lengths' in data:
        _reject_unknown(data, ('lengths',), 'sections')
        return SectionTimeline(tuple(data['lengths']))
    _reject_unknown(data, ('count', 'ticks'), 'sections')
    if 'count' not in data or 'ticks' not in data:
        raise InvalidConfiguration("'sections' needs either 'lengths' or 'count' and 'ticks'")
    if int(data['count']) <= 0:
        raise InvalidConfiguration("A song needs at least one section")
    return SectionTimeline.uniform(int(data['count']), int(data['ticks']))


@dataclass
class ArrangementConfig:
    sections: SectionTimeline
    voices: list[VoiceConstraints]
    tracks: list[TrackEntry] = field(default_factory=list)
    modifications: list[ActivityModification] = field(default_factory=list)
    scheduler: dict = field(default_factory=dict)
    seed: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> ArrangementConfig:
        if not isinstance(data, dict):
            raise InvalidConfiguration("Arrangement config must be a JSON object")
        _reject_unknown(data, CONFIG_KEYS, 'arrangement config')
        if 'sections' not in data:
            raise InvalidConfiguration("Arrangement config needs 'sections'")
        if not data.get('voices'):
            raise InvalidConfiguration("Arrangement config needs at least one voice")

        scheduler = dict(data.get('scheduler', {}))
        _reject_unknown(scheduler, SCHEDULER_KEYS, 'scheduler')

        voices = [VoiceConstraints.from_dict(name, entry or {})
                  for name, entry in data['voices'].items()]
        tracks = [TrackEntry.from_dict(t) for t in data.get('tracks', [])]
        modifications = [ActivityModification.from_dict(m)
                         for m in data.get('modifications', [])]

        config = cls(sections=_parse_sections(data['sections']), voices=voices,
                     tracks=tracks, modifications=modifications,
                     scheduler=scheduler, seed=data.get('seed'))
        config.check_tracks()
        return config

    def check_tracks(self) -> None:
        defined = {v.name for v in self.voices}
        for track in self.tracks:
            for name in track.voices:
                if name not in defined:
                    raise InvalidConfiguration(
                        f"Track '{track.instrument}' uses undefined voice '{name}'",
                        voice=name)

    def active_tracks(self) -> list[TrackEntry]:
        """Soloed tracks if any track is soloed, otherwise every unmuted track."""
        soloed = [t for t in self.tracks if t.solo]
        if soloed:
            return soloed
        return [t for t in self.tracks if not t.mute]

    def needed_voices(self) -> list[VoiceConstraints]:
        """Voices used by an active track, in config order; all voices without tracks."""
        if not self.tracks:
            return list(self.voices)
        used = {name for track in self.active_tracks() for name in track.voices}
        return [v for v in self.voices if v.name in used]


def load_config(path: str) -> ArrangementConfig:
    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidConfiguration(f"{path}: invalid JSON ({e})") from e
    return ArrangementConfig.from_dict(data)


@dataclass
class ArrangementResult:
    seed: int
    rows: list[tuple[bool, ...]]
    voice_names: list[str]
    timelines: dict             # voice name -> ActivityTimeline, after modifications and shifts
    tracks: dict                # instrument -> voice names
    stats: dict
    scorecard: Scorecard

    def to_dict(self) -> dict:
        return {
            'seed': self.seed,
            'voices': {name: t.to_run_lengths() for name, t in self.timelines.items()},
            'tracks': self.tracks,
            'stats': self.stats,
        }


class SongArranger:
    """Top-level orchestrator: config -> scheduler -> timelines -> validation."""

    def __init__(self, config: ArrangementConfig, seed: int | None = None,
                 mode: str | None = None, max_iterations: int | None = None,
                 verbose: bool = True):
        self.config = config
        self.seed = seed if seed is not None else config.seed
        self.mode = mode
        self.max_iterations = max_iterations
        self.verbose = verbose
        self.scheduler = None

    def _scheduler_options(self) -> dict:
        options = dict(self.config.scheduler)
        if self.mode is not None:
            options['mode'] = self.mode
        if self.max_iterations is not None:
            options['max_iterations'] = self.max_iterations
        for key in ('start_activity_counts', 'stop_activity_counts'):
            if key in options:
                options[key] = tuple(options[key])
        return options

    def arrange(self) -> ArrangementResult:
        """
        Full pipeline: select voices -> schedule -> materialize ->
        modify -> shift -> validate.

        Raises InvalidConfiguration or SearchExhausted; the scheduler's
        diagnostic report stays available on self.scheduler.
        """
        sections = self.config.sections
        seed = self.seed if self.seed is not None else random.randrange(2 ** 31)

        # 1. Voices needed by the active tracks
        voices = self.config.needed_voices()
        if not voices:
            raise InvalidConfiguration("No active track uses any voice")
        names = [v.name for v in voices]
        if self.verbose:
            print(f"Scheduling {len(voices)} voices over {sections.section_count()} "
                  f"sections (seed {seed})")

        # 2. Search
        self.scheduler = ActivityScheduler(voices, sections.section_count(),
                                           seed=seed, verbose=self.verbose,
                                           **self._scheduler_options())
        matrix = self.scheduler.schedule()
        rows = matrix.rows()

        # 3. Section bits -> ticks
        timelines = materialize(rows, names, sections)
        if self.config.modifications:
            if self.verbose:
                print(format_matrix(timelines, sections,
                                    "Song structure before activity modifications"))
            timelines = apply_modifications(timelines, self.config.modifications, sections)

        # 4. Boundary shifts
        by_name = {v.name: v for v in voices}
        timelines = {name: shift_boundaries(t, by_name[name].start_shift, by_name[name].stop_shift)
                     for name, t in timelines.items()}

        # 5. Post-hoc validation of the searched matrix
        scorecard = validate(rows, self.scheduler.limits)

        tracks = {t.instrument: list(t.voices) for t in self.config.active_tracks()}
        stats = dict(self.scheduler.stats, mode=self.scheduler.mode)
        return ArrangementResult(seed=seed, rows=rows, voice_names=names,
                                 timelines=timelines, tracks=tracks, stats=stats,
                                 scorecard=scorecard)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main(argv=None):
    parser = argparse.ArgumentParser(description='Song Activity Arranger')
    parser.add_argument('config', help='Path to the arrangement config (JSON)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed (default: config seed, else random)')
    parser.add_argument('--mode', choices=MODES, default=None,
                        help=f'Search mode (default: config, else {EXACT})')
    parser.add_argument('--max-iterations', type=int, default=None,
                        help='Iteration budget (default: config, else mode default)')
    parser.add_argument('-o', '--output', default=None,
                        help='Write voice timelines and stats to this JSON file')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Only print errors')
    args = parser.parse_args(argv)
    verbose = not args.quiet

    arranger = None
    try:
        config = load_config(args.config)
        arranger = SongArranger(config, seed=args.seed, mode=args.mode,
                                max_iterations=args.max_iterations, verbose=verbose)
        result = arranger.arrange()
    except FileNotFoundError:
        print(f"[ERROR] File not found: {args.config}")
        return 1
    except (InvalidConfiguration, SearchExhausted) as e:
        print(f"[ERROR] {e}")
        if arranger is not None and arranger.scheduler is not None:
            print(arranger.scheduler.get_diagnostic_report())
        return 1

    if verbose:
        print(format_matrix(result.timelines, config.sections))
        print_scorecard(result.scorecard)

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)
        if verbose:
            print(f"Written to {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
