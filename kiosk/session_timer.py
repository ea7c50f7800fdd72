"""
session_timer.py  —  One countdown shared by every election in a session.

The timer has no deadline until start() is called on the voter's first
ballot. Reaching zero grants a grace extension (up to max_grace times);
reaching zero again after the last grace is a hard timeout.
"""

GRACE = "grace"
EXPIRED = "expired"


class SessionTimer:

    def __init__(self, per_election_seconds: int, grace_seconds: int, max_grace: int = 1):
        self.per_election_seconds = per_election_seconds
        self.grace_seconds = grace_seconds
        self.max_grace = max_grace
        self.remaining = None
        self.grace_used = 0
        self.expired = False

    @property
    def started(self) -> bool:
        return self.remaining is not None

    def start(self, election_count: int):
        """Start once; later calls are no-ops. Returns the granted seconds or None."""
        if self.started:
            return None
        self.remaining = max(1, election_count) * self.per_election_seconds
        return self.remaining

    def tick(self, seconds: int = 1):
        """
        Advance the countdown.

        Returns:
            None, GRACE (extension just granted), or EXPIRED (hard timeout).
        """
        if not self.started or self.expired:
            return None
        self.remaining = max(0, self.remaining - seconds)
        if self.remaining > 0:
            return None
        if self.grace_used < self.max_grace:
            self.grace_used += 1
            self.remaining += self.grace_seconds
            return GRACE
        self.expired = True
        return EXPIRED

    def reset(self) -> None:
        self.remaining = None
        self.grace_used = 0
        self.expired = False

    def format_remaining(self) -> str:
        if self.remaining is None:
            return "--:--"
        mins, secs = divmod(self.remaining, 60)
        return f"{mins}:{secs:02d}"
