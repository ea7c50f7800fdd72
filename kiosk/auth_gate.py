"""
auth_gate.py  —  RFID + face authentication and session exclusion.

Flow for a normal card:
  1. scan(tag)        voter looked up by rfid_tag, stored template required
  2. verify(live)     face compared against the stored template
  3. session claim    atomic insert into voter_sessions; a live row held by
                      another kiosk rejects the login

The master (staff) card skips step 1 and identifies the voter by face
alone, comparing the capture with every stored template. It still goes
through the session claim.
"""

import logging
from datetime import timedelta

from kiosk.errors import (DuplicateRowError, FaceMismatch, NoBiometricData,
                          NotRegistered, SessionAlreadyActive, StoreError)
from kiosk.models import utc_now
from kiosk.session_log import log_session_event

log = logging.getLogger(__name__)


class PendingAuth:
    """A scanned card waiting for its face capture."""

    def __init__(self, rfid_tag: str, voter=None, override: bool = False):
        self.rfid_tag = rfid_tag
        self.voter = voter
        self.override = override

    def __repr__(self):
        who = "override" if self.override else self.voter.id
        return f"PendingAuth({self.rfid_tag!r}, {who})"


class AuthenticationGate:

    def __init__(self, store, face_matcher, settings: dict, log_fn=None, now_fn=utc_now):
        self.store = store
        self.face_matcher = face_matcher
        self.settings = settings
        self._log_fn = log_fn
        self._now = now_fn

    def _log(self, msg):
        if self._log_fn: self._log_fn(msg)

    # ── step 1: RFID ────────────────────────────────────────────────

    def scan(self, rfid_tag: str) -> PendingAuth:
        rfid_tag = rfid_tag.strip()
        if rfid_tag == self.settings["master_rfid_tag"]:
            self._log("Admin override activated -> proceeding to face scan.")
            return PendingAuth(rfid_tag, override=True)

        self._log("Checking RFID in database ...")
        voter = self.store.get_voter_by_rfid(rfid_tag)
        if voter is None:
            self._log(f"RFID {rfid_tag} not registered.")
            raise NotRegistered()
        if not voter.has_face_template:
            self._log(f"No face template stored for voter {voter.id}.")
            raise NoBiometricData()

        self._log("RFID verified. Proceed to face recognition.")
        return PendingAuth(rfid_tag, voter=voter)

    # ── step 2+3: face, then session claim ──────────────────────────

    def verify(self, pending: PendingAuth, live_descriptor) -> dict:
        """
        Match the live capture and claim the voter's session.

        Returns:
            {"voter": Voter, "session": VoterSession, "distance": float}

        Raises:
            FaceMismatch, SessionAlreadyActive
        """
        if pending.override:
            voter, distance = self._identify(live_descriptor)
        else:
            voter = pending.voter
            result = self.face_matcher.compare(voter.face_descriptor, live_descriptor)
            distance = result["distance"]
            if not result["match"]:
                voter = None

        if voter is None:
            self._log(f"Face mismatch (distance {distance:.3f}). Suspicious login attempt.")
            self._audit_mismatch(pending.rfid_tag, distance)
            raise FaceMismatch(distance=distance)

        self._log(f"Face match successful (distance {distance:.3f}).")
        session = self._claim_session(voter)
        return {"voter": voter, "session": session, "distance": distance}

    def authenticate(self, rfid_tag: str, live_descriptor=None) -> dict:
        """scan + capture + verify in one call."""
        pending = self.scan(rfid_tag)
        if live_descriptor is None:
            live_descriptor = self.face_matcher.capture()
        return self.verify(pending, live_descriptor)

    def _identify(self, live_descriptor):
        best, best_distance = None, float("inf")
        for voter in self.store.list_voters_with_face():
            result = self.face_matcher.compare(voter.face_descriptor, live_descriptor)
            if result["match"] and result["distance"] < best_distance:
                best, best_distance = voter, result["distance"]
        return best, best_distance

    def _audit_mismatch(self, rfid_tag: str, distance: float) -> None:
        score = distance if distance != float("inf") else None
        try:
            self.store.insert_auth_log("FACE_MISMATCH", rfid_tag, score)
        except StoreError as exc:
            log.error("[auth_gate] could not record FACE_MISMATCH for %s: %s", rfid_tag, exc)

    def _claim_session(self, voter):
        now = self._now()
        expires_at = now + timedelta(seconds=self.settings["base_session_seconds"])
        kiosk_id = self.settings.get("kiosk_id")
        try:
            session = self.store.create_session(voter.id, expires_at, now, kiosk_id=kiosk_id)
        except DuplicateRowError:
            self._log(f"Active session already exists for voter {voter.id}. Login blocked.")
            log_session_event(self.store, voter.id, "simultaneous_block", kiosk_id,
                              self.settings.get("user_agent"), now=now)
            raise SessionAlreadyActive()

        log_session_event(self.store, voter.id, "session_start", kiosk_id,
                          self.settings.get("user_agent"), now=now)
        self._log(f"Session started for {voter.full_name}; expires {expires_at.isoformat()}.")
        return session
