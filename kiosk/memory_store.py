"""
memory_store.py  —  In-process store with the same contract as MySQLStore.

Used by the demo kiosk ("store": "memory" in config.json) and by the test
suite. One lock serialises every operation, which gives the unique keys
on voter_sessions.voter_id and ballots(voter_id, election_id) the same
all-or-nothing behaviour the database provides.
"""

import threading

from kiosk.errors import DuplicateRowError
from kiosk.models import (Candidate, Election, SessionEvent, Vote, Voter, VoterSession,
                          ballot_key)


class InMemoryStore:

    def __init__(self, voters=(), elections=(), candidates=()):
        self._lock = threading.Lock()
        self.voters = {v.id: v for v in voters}
        self.elections = {e.id: e for e in elections}
        self.candidates = list(candidates)
        self.sessions = {}
        self.ballots = {}
        self.votes = []
        self.session_logs = []
        self.auth_logs = []

    # ── seeding ─────────────────────────────────────────────────────

    def add_voter(self, voter: Voter) -> None:
        with self._lock:
            self.voters[voter.id] = voter

    def add_election(self, election: Election) -> None:
        with self._lock:
            self.elections[election.id] = election

    def add_candidate(self, candidate: Candidate) -> None:
        with self._lock:
            self.candidates.append(candidate)

    # ── voters ──────────────────────────────────────────────────────

    def get_voter_by_rfid(self, rfid_tag: str):
        with self._lock:
            return next((v for v in self.voters.values() if v.rfid_tag == rfid_tag), None)

    def list_voters_with_face(self) -> list:
        with self._lock:
            return [v for v in self.voters.values() if v.has_face_template]

    # ── elections / candidates ──────────────────────────────────────

    def list_elections(self) -> list:
        with self._lock:
            return sorted(self.elections.values(), key=lambda e: e.start_date)

    def list_candidates(self, election_id: str) -> list:
        with self._lock:
            rows = [c for c in self.candidates if c.election_id == election_id]
        return sorted(rows, key=lambda c: (c.position, c.display_order is None, c.display_order or 0))

    # ── voter_sessions ──────────────────────────────────────────────

    def create_session(self, voter_id: str, expires_at, now, kiosk_id: str = None) -> VoterSession:
        with self._lock:
            existing = self.sessions.get(voter_id)
            if existing is not None and existing.is_live(now):
                raise DuplicateRowError(f"Live session exists for voter {voter_id}")
            session = VoterSession(voter_id=voter_id, expires_at=expires_at, kiosk_id=kiosk_id)
            self.sessions[voter_id] = session
            return session

    def get_session(self, voter_id: str):
        with self._lock:
            return self.sessions.get(voter_id)

    def update_session_expiry(self, voter_id: str, expires_at) -> bool:
        with self._lock:
            session = self.sessions.get(voter_id)
            if session is None:
                return False
            self.sessions[voter_id] = session.model_copy(update={"expires_at": expires_at})
            return True

    def delete_session(self, voter_id: str) -> None:
        with self._lock:
            self.sessions.pop(voter_id, None)

    # ── votes ───────────────────────────────────────────────────────

    def insert_ballot(self, votes: list) -> None:
        if not votes:
            return
        key = ballot_key(votes)
        positions = [v.position for v in votes]
        with self._lock:
            voted = any((v.voter_id, v.election_id) == key for v in self.votes)
            if key in self.ballots or voted or len(set(positions)) != len(positions):
                raise DuplicateRowError(f"Voter {key[0]} already voted in {key[1]}")
            self.ballots[key] = votes[0].receipt_hash
            self.votes.extend(Vote.model_validate(v.model_dump()) for v in votes)

    def voted_election_ids(self, voter_id: str) -> set:
        with self._lock:
            return {v.election_id for v in self.votes if v.voter_id == voter_id}

    # ── audit logs ──────────────────────────────────────────────────

    def insert_session_log(self, event: SessionEvent) -> None:
        with self._lock:
            self.session_logs.append(event)

    def insert_auth_log(self, event_type: str, rfid_tag: str, distance: float = None) -> None:
        with self._lock:
            self.auth_logs.append({
                "event_type": event_type,
                "rfid_tag": rfid_tag,
                "distance_score": distance,
            })

    def session_actions(self, voter_id: str = None) -> list:
        """Audit actions in insertion order (optionally for one voter)."""
        with self._lock:
            return [e.action for e in self.session_logs
                    if voter_id is None or e.voter_id == voter_id]
