"""
catalog.py  —  Which elections a voter may vote in right now.

Windows are half-open: an election is open from start_date (inclusive)
until end_date (exclusive). Elections whose is_active flag is off are
never offered and never listed as closed.
"""

from kiosk.models import utc_now


def election_status(election, now=None) -> str:
    """One of "active", "upcoming", "closed", "inactive"."""
    now = now or utc_now()
    if not election.is_active:
        return "inactive"
    if election.is_open(now):
        return "active"
    if election.is_upcoming(now):
        return "upcoming"
    return "closed"


def resolve_elections(elections, now=None) -> dict:
    """
    Partition elections for the selection screen.

    Returns:
        {"active": [...], "expired": [...], "upcoming": [...]}
    """
    now = now or utc_now()
    buckets = {"active": [], "expired": [], "upcoming": []}
    for election in elections:
        status = election_status(election, now)
        if status == "active":
            buckets["active"].append(election)
        elif status == "closed":
            buckets["expired"].append(election)
        elif status == "upcoming":
            buckets["upcoming"].append(election)
    return buckets


def sort_elections(elections, now=None) -> list:
    """Open first, then upcoming (soonest start first), then closed (latest end first)."""
    now = now or utc_now()

    def key(election):
        status = election_status(election, now)
        if status == "active":
            return (0, 0.0)
        if status == "upcoming":
            return (1, election.start_date.timestamp())
        return (2, -election.end_date.timestamp())

    return sorted(elections, key=key)
