"""
errors.py  —  Exception hierarchy for the voting kiosk.

Store faults subclass RuntimeError so callers written against the plain
"raise RuntimeError(...) from exc" convention of the data layer keep
working.
"""


class KioskError(Exception):
    pass


# ── Store ────────────────────────────────────────────────────────────

class StoreError(KioskError, RuntimeError):
    """Any failure talking to the relational store."""


class DuplicateRowError(StoreError):
    """A unique key rejected the write (live session, vote already cast)."""


class MalformedRowError(StoreError):
    """A row read from the store failed validation."""


# ── Authentication ───────────────────────────────────────────────────

class AuthError(KioskError):
    code = "auth_error"
    message = "Authentication failed."

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class NotRegistered(AuthError):
    code = "not_registered"
    message = "RFID not registered. Please contact election staff."


class NoBiometricData(AuthError):
    code = "no_biometric_data"
    message = "No facial data found for this RFID."


class FaceMismatch(AuthError):
    code = "face_mismatch"
    message = "Face mismatch detected. Suspicious login attempt logged."

    def __init__(self, message: str = None, distance: float = None):
        super().__init__(message)
        self.distance = distance


class SessionAlreadyActive(AuthError):
    code = "session_already_active"
    message = ("There is already an active voting session for this voter. "
               "Please wait before trying again.")


# ── Ballot ───────────────────────────────────────────────────────────

class BallotError(KioskError):
    pass


class EmptyBallot(BallotError):
    def __init__(self):
        super().__init__("Select at least one candidate or abstain.")


class UnknownCandidate(BallotError):
    pass


class ElectionUnavailable(BallotError):
    pass


# ── Flow ─────────────────────────────────────────────────────────────

class InvalidTransition(KioskError):
    pass


class SubmissionError(KioskError):
    pass
