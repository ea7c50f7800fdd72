"""
tests/kiosk_fixtures.py
=======================
Shared builders for the kiosk test suites: a controllable clock, seeded
in-memory stores and default settings that ignore the local config.json.
"""

import os, sys, tempfile
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kiosk.config import load_settings
from kiosk.memory_store import InMemoryStore
from kiosk.models import Candidate, Election, Voter

T0 = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)

STORED_FACE = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
MATCHING_FACE = [0.30, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]     # distance 0.30
STRANGER_FACE = [0.50, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]     # distance 0.50

OTHER_FACE = [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0]

_NO_CONFIG = os.path.join(tempfile.gettempdir(), "kiosk-tests-no-such-config.json")


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_settings(**overrides) -> dict:
    return load_settings(_NO_CONFIG, overrides=overrides or None)


def make_voter(voter_id="V-1", rfid_tag="1234567890", descriptor=STORED_FACE,
               email="maria.santos@campus.edu") -> Voter:
    return Voter(id=voter_id, rfid_tag=rfid_tag, face_descriptor=descriptor,
                 first_name="Maria", last_name="Santos", email=email)


def make_election(election_id, title=None, start=-1, end=1, active=True, now=T0) -> Election:
    """start/end are day offsets from *now*."""
    return Election(id=election_id, title=title or election_id,
                    start_date=now + timedelta(days=start),
                    end_date=now + timedelta(days=end), is_active=active)


def make_candidates(election_id, positions=("President",), per_position=2) -> list:
    candidates = []
    for p_index, position in enumerate(positions):
        for order in range(1, per_position + 1):
            candidates.append(Candidate(
                id=f"{election_id}-{p_index}-{order}", election_id=election_id,
                name=f"{position} Candidate {order}", position=position,
                slate="Slate A" if order == 1 else None, display_order=order))
    return candidates


def make_store(election_ids=("E-X", "E-Y"), positions=("President",), voters=None) -> InMemoryStore:
    store = InMemoryStore(voters=voters or [make_voter()])
    for election_id in election_ids:
        store.add_election(make_election(election_id, title=f"Election {election_id}"))
        for candidate in make_candidates(election_id, positions):
            store.add_candidate(candidate)
    return store
