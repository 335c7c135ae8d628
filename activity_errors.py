"""
Errors raised while scheduling voice activity.

Both kinds are fatal for a given configuration: running again with the same
settings reproduces the same failure. Rejected search attempts are not
errors; the scheduler only tallies them.
"""


class InvalidConfiguration(ValueError):
    """A voice or scheduler setting can never be satisfied.

    Raised before the search starts. `voice` names the offending voice when
    the problem belongs to one.
    """

    def __init__(self, message, voice=None):
        super().__init__(message)
        self.voice = voice


class SearchExhausted(RuntimeError):
    """The iteration budget ran out before a valid schedule matrix was found.

    `violations` maps (voice name, constraint kind) to the number of times
    that constraint rejected an attempt.
    """

    def __init__(self, max_iterations, violations=None, stats=None):
        self.max_iterations = max_iterations
        self.violations = dict(violations or {})
        self.stats = dict(stats or {})
        message = (f"Unable to find a valid schedule matrix within "
                   f"{max_iterations} iterations")
        top = self.top_violations(1)
        if top:
            (voice, kind), count = top[0]
            message += f" (most frequent violation: {voice} {kind} x{count})"
        super().__init__(message)

    def top_violations(self, limit=10):
        """Most frequent (voice, kind) violations, largest count first."""
        ranked = sorted(self.violations.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]
