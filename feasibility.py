"""
Static per-voice feasibility using Google OR-Tools (CP-SAT).

Each voice is modelled on its own: one boolean per section, constrained by
exactly the rules the scheduler enforces for that voice (activity counts,
segment counts and lengths, pauses between segments, start/stop windows).
A voice whose model CP-SAT proves infeasible is reported before searching.

The global desired-activity schedule couples voices together and is not
modelled here; a feasible verdict does not guarantee the search succeeds.

Only linear constraints over booleans are used, so every implication is
written as an inequality between 0/1 variables.
"""

from ortools.sat.python import cp_model

DEFAULT_TIME_LIMIT = 5.0


def build_voice_model(limits):
    """
    Build the CP-SAT model for one voice.

    Returns (model, sections) where sections[s] is the BoolVar for
    "active in section s".
    """
    model = cp_model.CpModel()
    n = limits.sections
    name = limits.name
    x = [model.new_bool_var(f'{name}_s{s}') for s in range(n)]

    # any_active == OR(x)
    any_active = model.new_bool_var(f'{name}_any')
    model.add(sum(x) >= any_active)
    for var in x:
        model.add(any_active >= var)

    # Activity counts
    total = sum(x)
    if limits.allow_inactive:
        model.add(total >= limits.min_active_sections * any_active)
    else:
        model.add(total >= limits.min_active_sections)
    model.add(total <= limits.max_active_sections)

    # Segment starts: start[s] == x[s] AND NOT x[s-1]
    starts = []
    for s in range(n):
        st = model.new_bool_var(f'{name}_start_s{s}')
        if s == 0:
            model.add(st == x[0])
        else:
            model.add(st >= x[s] - x[s - 1])
            model.add(st <= x[s])
            model.add(st <= 1 - x[s - 1])
        starts.append(st)
    model.add(sum(starts) >= limits.min_segment_count)
    model.add(sum(starts) <= limits.max_segment_count)

    # Segment lengths
    for s, st in enumerate(starts):
        for k in range(1, limits.min_segment_length):
            if s + k >= n:
                model.add(st == 0)
                break
            model.add(x[s + k] >= st)
    longest = limits.max_segment_length
    if longest < n:
        for s in range(n - longest):
            model.add(sum(x[s:s + longest + 1]) <= longest)

    # Pauses between segments; a trailing pause is unconstrained.
    for s in range(n - 1):
        end = model.new_bool_var(f'{name}_end_s{s}')
        model.add(end >= x[s] - x[s + 1])
        model.add(end <= x[s])
        model.add(end <= 1 - x[s + 1])
        for k in range(1, limits.min_pause_length + 1):
            if s + k >= n:
                break
            model.add(x[s + k] <= 1 - end)

    gap = limits.max_pause_length + 1
    if gap <= n - 2:
        # before[a] == OR(x[:a]), after[b] == OR(x[b+1:])
        before = {}
        after = {}
        for a in range(1, n - gap):
            b = a + gap - 1
            if a not in before:
                before[a] = model.new_bool_var(f'{name}_before_s{a}')
                model.add(sum(x[:a]) >= before[a])
                for var in x[:a]:
                    model.add(before[a] >= var)
            if b not in after:
                after[b] = model.new_bool_var(f'{name}_after_s{b}')
                model.add(sum(x[b + 1:]) >= after[b])
                for var in x[b + 1:]:
                    model.add(after[b] >= var)
            # an all-zero window may not have activity on both sides
            model.add(sum(x[a:b + 1]) + (1 - before[a]) + (1 - after[b]) >= 1)

    # Start window
    for s in range(min(limits.start_after_section + 1, n)):
        model.add(x[s] == 0)
    if limits.start_before_section < n:
        model.add(sum(x[:max(limits.start_before_section, 0)]) >= any_active)

    # Stop window (remaining = n - 1 - s)
    for s in range(n):
        if n - 1 - s <= limits.stop_before_section:
            model.add(x[s] == 0)
    in_window = [x[s] for s in range(n) if n - 1 - s < limits.stop_after_section]
    model.add(sum(in_window) >= any_active)

    return model, x


def _solve(limits, time_limit):
    model, x = build_voice_model(limits)
    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = time_limit
    solver.parameters.num_workers = 1
    status = solver.solve(model)
    return solver, status, x


def check_voice_feasibility(limits, time_limit=DEFAULT_TIME_LIMIT):
    """
    Returns the CP-SAT status name for the voice's model:
    'OPTIMAL' / 'FEASIBLE' (satisfiable), 'INFEASIBLE', or 'UNKNOWN' when
    the time limit ran out.
    """
    solver, status, _ = _solve(limits, time_limit)
    return solver.status_name(status)


def find_witness(limits, time_limit=DEFAULT_TIME_LIMIT):
    """One activity column satisfying the voice's constraints, or None."""
    solver, status, x = _solve(limits, time_limit)
    if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
        return None
    return [bool(solver.value(var)) for var in x]
