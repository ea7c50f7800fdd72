"""
state_machine.py  —  The kiosk's voting-session controller.

Steps:
  auth -> election-select -> ballot -> review -> election-finished
       -> election-select ... -> review-final -> submitting -> complete -> auth

  * election-select is skipped when exactly one election is open.
  * review -> ballot (edit) is the only backward edge.
  * any step except submitting/complete may fall into error; error and
    complete both count down back to auth.

Screens call the public methods below; nothing else changes the step.
The countdown and heartbeat are driven from outside through tick() and
heartbeat(), one call per second and one per heartbeat interval.
"""

import logging
from datetime import timedelta

from kiosk.auth_gate import AuthenticationGate
from kiosk.ballot import BallotCollector
from kiosk.catalog import resolve_elections
from kiosk.config import load_settings
from kiosk.errors import (AuthError, ElectionUnavailable, EmptyBallot,
                          InvalidTransition, StoreError)
from kiosk.models import utc_now
from kiosk.session_log import log_session_event
from kiosk.session_timer import EXPIRED, GRACE, SessionTimer
from kiosk.submission import CONFIRMED, SubmissionJob, group_by_election

log = logging.getLogger(__name__)

AUTH              = "auth"
ELECTION_SELECT   = "election-select"
BALLOT            = "ballot"
REVIEW            = "review"
ELECTION_FINISHED = "election-finished"
REVIEW_FINAL      = "review-final"
SUBMITTING        = "submitting"
COMPLETE          = "complete"
ERROR             = "error"

TRANSITIONS = {
    AUTH:              {ELECTION_SELECT, BALLOT, ERROR},
    ELECTION_SELECT:   {BALLOT, AUTH, ERROR},
    BALLOT:            {REVIEW, AUTH, ERROR},
    REVIEW:            {BALLOT, ELECTION_FINISHED, REVIEW_FINAL, AUTH, ERROR},
    ELECTION_FINISHED: {ELECTION_SELECT, REVIEW_FINAL, AUTH, ERROR},
    REVIEW_FINAL:      {SUBMITTING, AUTH, ERROR},
    SUBMITTING:        {COMPLETE, ERROR},
    COMPLETE:          {AUTH},
    ERROR:             {AUTH},
}

# Steps during which the countdown runs and the heartbeat keeps the
# server-side session alive.
_TIMED_STEPS = (ELECTION_SELECT, BALLOT, REVIEW, ELECTION_FINISHED, REVIEW_FINAL)

STORE_FAULT_MESSAGE = "Unable to reach the election server. Please try again or contact staff."
SESSION_LOST_MESSAGE = "Your voting session is no longer valid. Please start again."


class KioskStateMachine:

    def __init__(self, store, face_matcher, settings: dict = None, ledger=None, mailer=None,
                 log_fn=None, now_fn=utc_now, async_submission: bool = True):
        self.store = store
        self.face_matcher = face_matcher
        self.settings = settings or load_settings()
        self.ledger = ledger
        self.mailer = mailer
        self.async_submission = async_submission
        self._log_fn = log_fn
        self._now = now_fn

        self.gate = AuthenticationGate(store, face_matcher, self.settings, log_fn, now_fn)
        self.timer = SessionTimer(self.settings["per_election_seconds"],
                                  self.settings["grace_seconds"],
                                  self.settings["max_grace_extensions"])
        self._clear()

    def _log(self, msg):
        if self._log_fn: self._log_fn(msg)

    def _clear(self) -> None:
        self._step = AUTH
        self.voter = None
        self._pending = None
        self._session_owned = False

        self.active_elections = []
        self.expired_elections = []
        self.upcoming_elections = []
        self.completed_elections = set()

        self._election = None
        self.ballot = None
        self.current_selections = []
        self.all_selections = []

        self.job = None
        self.receipt = None
        self.error_message = None
        self.timeout_warning = False
        self.countdown = None
        self.timer.reset()

    # ── state ───────────────────────────────────────────────────────

    @property
    def step(self) -> str:
        return self._step

    @property
    def selected_election(self):
        """The election being filled in; None outside the ballot step."""
        return self._election if self._step == BALLOT else None

    @property
    def reviewing_election(self):
        return self._election if self._step == REVIEW else None

    @property
    def remaining_elections(self) -> list:
        return [e for e in self.active_elections if e.id not in self.completed_elections]

    @property
    def pending_auth(self):
        return self._pending if self._step == AUTH else None

    def selections_by_election(self) -> list:
        return group_by_election(self.all_selections)

    def _go(self, target: str) -> None:
        allowed = TRANSITIONS[self._step]
        if target not in allowed:
            raise InvalidTransition(
                f"Illegal transition: {self._step} -> {target}. "
                f"Allowed: {', '.join(sorted(allowed)) or 'NONE'}")
        self._log(f"[{self._step}] -> [{target}]")
        self._step = target

    def _require(self, *steps) -> None:
        if self._step not in steps:
            raise InvalidTransition(f"Not allowed during '{self._step}'.")

    # ── auth ────────────────────────────────────────────────────────

    def bind_reader(self, reader) -> None:
        reader.on_scan(self.scan_rfid)

    def scan_rfid(self, rfid_tag: str):
        """RFID callback. Scans outside the auth step are ignored."""
        if self._step != AUTH:
            return None
        try:
            self._pending = self.gate.scan(rfid_tag)
        except AuthError as exc:
            self._fail(exc.message)
            return None
        except StoreError as exc:
            log.error("[kiosk] voter lookup failed: %s", exc)
            self._fail(STORE_FAULT_MESSAGE)
            return None
        return self._pending

    def submit_face(self, live_descriptor=None) -> str:
        self._require(AUTH)
        if self._pending is None:
            raise InvalidTransition("Scan an RFID card before face verification.")
        pending, self._pending = self._pending, None
        try:
            if live_descriptor is None:
                live_descriptor = self.face_matcher.capture()
            result = self.gate.verify(pending, live_descriptor)
        except AuthError as exc:
            self._fail(exc.message)
            return self._step
        except StoreError as exc:
            log.error("[kiosk] authentication failed on store access: %s", exc)
            self._fail(STORE_FAULT_MESSAGE)
            return self._step

        self.voter = result["voter"]
        self._session_owned = True
        try:
            self._load_catalog()
        except StoreError as exc:
            log.error("[kiosk] could not load elections: %s", exc)
            self._fail(STORE_FAULT_MESSAGE)
            return self._step

        remaining = self.remaining_elections
        if len(self.active_elections) == 1 and len(remaining) == 1:
            self._enter_ballot(remaining[0])
        else:
            self._go(ELECTION_SELECT)
        return self._step

    def _load_catalog(self) -> None:
        buckets = resolve_elections(self.store.list_elections(), self._now())
        self.active_elections = buckets["active"]
        self.expired_elections = buckets["expired"]
        self.upcoming_elections = buckets["upcoming"]
        active_ids = {e.id for e in self.active_elections}
        self.completed_elections = self.store.voted_election_ids(self.voter.id) & active_ids

    # ── ballot ──────────────────────────────────────────────────────

    def select_election(self, election_id: str) -> None:
        self._require(ELECTION_SELECT)
        election = next((e for e in self.active_elections if e.id == election_id), None)
        if election is None:
            raise ElectionUnavailable(f"Election {election_id} is not open for voting.")
        if election_id in self.completed_elections:
            raise ElectionUnavailable(f"You have already voted in {election.title}.")
        self._enter_ballot(election)

    def _enter_ballot(self, election) -> None:
        granted = self.timer.start(len(self.active_elections))
        try:
            if granted is not None and not self._extend_session(granted):
                return
            candidates = self.store.list_candidates(election.id)
        except StoreError as exc:
            log.error("[kiosk] could not open ballot for %s: %s", election.id, exc)
            self._fail(STORE_FAULT_MESSAGE)
            return

        previous = [s for s in self.all_selections if s.election_id == election.id]
        self.ballot = BallotCollector(election, candidates, previous)
        self._election = election
        self.current_selections = []
        self._go(BALLOT)

    def complete_ballot(self) -> list:
        self._require(BALLOT)
        selections = self.ballot.submit()
        election_id = self._election.id
        self.current_selections = selections
        self.all_selections = [s for s in self.all_selections if s.election_id != election_id]
        self.all_selections.extend(selections)
        self._go(REVIEW)
        return selections

    # ── review ──────────────────────────────────────────────────────

    def edit_ballot(self) -> None:
        self._require(REVIEW)
        self._go(BALLOT)

    def confirm_review(self) -> str:
        self._require(REVIEW)
        self.completed_elections.add(self._election.id)
        self._election = None
        self.ballot = None
        if self.remaining_elections:
            self._go(ELECTION_FINISHED)
        else:
            self._go(REVIEW_FINAL)
        return self._step

    def continue_voting(self) -> str:
        self._require(ELECTION_FINISHED)
        if self.remaining_elections:
            self.current_selections = []
            self._go(ELECTION_SELECT)
        else:
            self._go(REVIEW_FINAL)
        return self._step

    def confirm_final_review(self):
        """Start final submission. Confirming again returns the same job."""
        if self._step in (SUBMITTING, COMPLETE) and self.job is not None:
            return self.job
        self._require(REVIEW_FINAL)
        if not self.all_selections:
            raise EmptyBallot()

        self.job = SubmissionJob(self.store, self.voter, self.all_selections, self.settings,
                                 ledger=self.ledger, mailer=self.mailer, log_fn=self._log_fn,
                                 now_fn=self._now)
        self.timeout_warning = False
        self._go(SUBMITTING)
        if self.async_submission:
            self.job.start()
        else:
            self.job.run()
            self.poll_submission()
        return self.job

    def poll_submission(self) -> str:
        if self._step != SUBMITTING or not self.job.done:
            return self._step
        if self.job.status == CONFIRMED:
            self.receipt = self.job.receipt
            self.countdown = self.settings["complete_reset_seconds"]
            self._go(COMPLETE)
        elif self.job.stages["recording"] == CONFIRMED:
            self._fail("Your votes were recorded, but the receipt could not be anchored. "
                       "Please contact election staff.\n"
                       f"({self.job.error})")
        else:
            self._fail("Your ballot could not be recorded. Please contact election staff.\n"
                       f"({self.job.error})")
        return self._step

    # ── timing ──────────────────────────────────────────────────────

    def tick(self, seconds: int = 1):
        """
        Advance one display tick.

        Returns:
            None, GRACE, EXPIRED, or "reset" when a countdown sent the
            kiosk back to auth.
        """
        if self._step == SUBMITTING:
            self.poll_submission()
            return None
        if self._step in (COMPLETE, ERROR):
            self.countdown -= seconds
            if self.countdown <= 0:
                self.reset()
                return "reset"
            return None
        if self._step not in _TIMED_STEPS:
            return None

        event = self.timer.tick(seconds)
        if event == GRACE:
            self.timeout_warning = True
            self._log(f"Time is up; granted {self.settings['grace_seconds']}s grace.")
            try:
                if not self._extend_session(self.timer.remaining):
                    return None
            except StoreError as exc:
                log.error("[kiosk] grace extension not persisted: %s", exc)
        elif event == EXPIRED:
            self._fail("Your voting time has ended. Please start again.")
        return event

    def acknowledge_timeout(self) -> None:
        self.timeout_warning = False

    def heartbeat(self) -> bool:
        """Push the live deadline to voter_sessions; no-op outside timed steps."""
        if self._step not in _TIMED_STEPS or not self._session_owned:
            return False
        seconds = self.timer.remaining if self.timer.started else self.settings["base_session_seconds"]
        try:
            still_held = self.store.update_session_expiry(
                self.voter.id, self._now() + timedelta(seconds=seconds))
        except StoreError as exc:
            log.warning("[kiosk] heartbeat failed: %s", exc)
            return False
        if not still_held:
            self._session_owned = False
            self._fail(SESSION_LOST_MESSAGE)
            return False
        return True

    def _extend_session(self, seconds: int) -> bool:
        """Move expires_at; a vanished session row sends the kiosk to error."""
        expires_at = self._now() + timedelta(seconds=seconds)
        if not self.store.update_session_expiry(self.voter.id, expires_at):
            self._session_owned = False
            self._fail(SESSION_LOST_MESSAGE)
            return False
        log_session_event(self.store, self.voter.id, "session_extend",
                          self.settings.get("kiosk_id"), self.settings.get("user_agent"),
                          now=self._now())
        return True

    # ── teardown ────────────────────────────────────────────────────

    def reset(self) -> None:
        """Tear down the session and return to auth."""
        if self._step != AUTH:
            self._go(AUTH)
        self._teardown()
        self._clear()

    def _teardown(self) -> None:
        if self.voter is None or not self._session_owned:
            return
        voter_id = self.voter.id
        self._session_owned = False
        try:
            self.store.delete_session(voter_id)
        except StoreError as exc:
            log.error("[kiosk] could not delete session for %s: %s", voter_id, exc)
        log_session_event(self.store, voter_id, "session_end",
                          self.settings.get("kiosk_id"), self.settings.get("user_agent"),
                          now=self._now())
        self._log(f"Session ended for voter {voter_id}.")

    def _fail(self, message: str) -> None:
        self._go(ERROR)
        self._teardown()
        self._clear()
        self._step = ERROR
        self.error_message = message
        self.countdown = self.settings["error_reset_seconds"]
        self._log(f"ERROR: {message}")
