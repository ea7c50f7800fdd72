"""
Entity schemas for the voting kiosk.

Each Pydantic model mirrors one table of the relational store (or, for
CandidateSelection, the in-memory ballot entry). Rows are validated here
when they cross the store boundary; a malformed row is rejected instead of
being passed along as a bare dict.

Tables:
- voters:             registration records (read-only to the kiosk)
- elections:          election metadata and voting window
- candidates:         candidates per election/position
- voter_sessions:     one live authenticated session per voter
- votes:              one row per (voter, election, position) choice
- voter_session_logs: append-only session audit trail
"""

import json
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ABSTAIN = "ABSTAIN"

SESSION_ACTIONS = ("session_start", "session_extend", "session_end", "simultaneous_block")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # MySQL DATETIME columns come back naive; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Voter(BaseModel):
    id: str = Field(..., description="Voter primary key")
    rfid_tag: Optional[str] = Field(None, description="Student ID card UID")
    face_descriptor: Optional[List[float]] = Field(None, description="Stored face template")
    first_name: str = Field(...)
    last_name: str = Field(...)
    email: Optional[str] = None
    student_id: Optional[str] = None
    year_level: Optional[int] = None
    org_affiliations: List[str] = Field(default_factory=list)

    @field_validator("face_descriptor", mode="before")
    @classmethod
    def _parse_descriptor(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, (str, bytes)):
            value = json.loads(value)
        return value

    @field_validator("org_affiliations", mode="before")
    @classmethod
    def _parse_orgs(cls, value):
        if value is None or value == "":
            return []
        if isinstance(value, str):
            if value.startswith("["):
                return json.loads(value)
            return [org.strip() for org in value.split("|") if org.strip()]
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def has_face_template(self) -> bool:
        return bool(self.face_descriptor)


class Election(BaseModel):
    id: str = Field(...)
    title: str = Field(...)
    description: Optional[str] = None
    start_date: datetime = Field(...)
    end_date: datetime = Field(...)
    is_active: bool = Field(False)

    @field_validator("is_active", mode="before")
    @classmethod
    def _null_is_inactive(cls, value):
        return False if value is None else value

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _window_order(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date precedes start_date")
        return self

    def is_open(self, now: datetime) -> bool:
        return self.is_active and self.start_date <= now < self.end_date

    def is_expired(self, now: datetime) -> bool:
        return self.is_active and self.end_date <= now

    def is_upcoming(self, now: datetime) -> bool:
        return self.is_active and now < self.start_date


class Candidate(BaseModel):
    id: str = Field(...)
    election_id: str = Field(...)
    name: str = Field(...)
    position: str = Field(...)
    slate: Optional[str] = None
    display_order: Optional[int] = None


class CandidateSelection(BaseModel):
    """One position's choice on an in-progress ballot. Never persisted as-is."""

    model_config = ConfigDict(frozen=True)

    election_id: str
    election_name: Optional[str] = None
    position: str
    candidate_id: str
    candidate_name: str
    slate: str = "N/A"

    @property
    def is_abstain(self) -> bool:
        return self.candidate_id == ABSTAIN


class VoterSession(BaseModel):
    voter_id: str = Field(..., description="Unique: one live session per voter")
    expires_at: datetime = Field(...)
    kiosk_id: Optional[str] = None

    @field_validator("expires_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


class Vote(BaseModel):
    election_id: str = Field(...)
    voter_id: str = Field(...)
    position: str = Field(...)
    candidate_id: Optional[str] = Field(None, description="NULL when abstaining")
    is_abstain: bool = False
    receipt_hash: Optional[str] = None

    @model_validator(mode="after")
    def _abstain_has_no_candidate(self):
        if self.is_abstain and self.candidate_id is not None:
            raise ValueError("abstain vote must not reference a candidate")
        if not self.is_abstain and self.candidate_id is None:
            raise ValueError("vote without candidate must be marked as abstain")
        return self

    @classmethod
    def from_selection(cls, voter_id: str, selection: CandidateSelection,
                       receipt_hash: str = None) -> "Vote":
        return cls(
            election_id=selection.election_id,
            voter_id=voter_id,
            position=selection.position,
            candidate_id=None if selection.is_abstain else selection.candidate_id,
            is_abstain=selection.is_abstain,
            receipt_hash=receipt_hash,
        )


class SessionEvent(BaseModel):
    voter_id: str
    action: Literal["session_start", "session_extend", "session_end", "simultaneous_block"]
    timestamp: datetime = Field(default_factory=utc_now)
    user_agent: Optional[str] = None
    kiosk_id: Optional[str] = None


def ballot_key(votes) -> tuple:
    """(voter_id, election_id) shared by every row of one ballot."""
    keys = {(v.voter_id, v.election_id) for v in votes}
    if len(keys) != 1:
        raise ValueError(f"A ballot covers exactly one voter and election, got {sorted(keys)}")
    return keys.pop()
