"""
db.py  —  MySQL access layer for the voting kiosk.
All relational-store interactions for the production kiosk live here.

Every call opens its own connection, commits or rolls back, and closes it
in `finally`, so a kiosk never holds a connection between voter actions.
"""

from datetime import timezone

import mysql.connector
from mysql.connector import Error as MySQLError
from mysql.connector import errorcode
from pydantic import ValidationError

from kiosk.config import load_config
from kiosk.errors import DuplicateRowError, MalformedRowError, StoreError
from kiosk.models import Candidate, Election, Voter, VoterSession, ballot_key

_VOTER_COLUMNS = ("id, rfid_tag, face_descriptor, first_name, last_name, email, "
                  "student_id, year_level, org_affiliations")


def _load_db_config() -> dict:
    return load_config()["db"]


def get_connection(cfg: dict = None):
    cfg = cfg or _load_db_config()
    try:
        conn = mysql.connector.connect(
            host=cfg["host"],
            port=int(cfg["port"]),
            user=cfg["user"],
            password=cfg["password"],
            database=cfg["database"],
            autocommit=False,
            charset="utf8mb4",
            collation="utf8mb4_unicode_ci",
        )
        return conn
    except MySQLError as exc:
        raise StoreError(f"Database connection failed: {exc}") from exc


def test_connection(cfg: dict = None) -> bool:
    try:
        conn = get_connection(cfg)
        conn.close()
        return True
    except StoreError:
        return False


def _db_time(value):
    """Aware datetime -> naive UTC for DATETIME columns."""
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _row_to(model, row: dict):
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise MalformedRowError(f"Rejected malformed {model.__name__} row: {exc}") from exc


def _is_duplicate(exc) -> bool:
    return getattr(exc, "errno", None) == errorcode.ER_DUP_ENTRY


class MySQLStore:
    """Relational store backed by the schema in schema.sql."""

    def __init__(self, db_config: dict = None):
        self._cfg = db_config

    def _connect(self):
        return get_connection(self._cfg)

    def _fetch_all(self, sql: str, params: tuple = ()) -> list:
        conn = self._connect()
        try:
            cur = conn.cursor(dictionary=True)
            cur.execute(sql, params)
            return cur.fetchall()
        except MySQLError as exc:
            raise StoreError(f"Query failed: {exc}") from exc
        finally:
            conn.close()

    def _execute(self, sql: str, params: tuple, what: str) -> int:
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()
            return cur.rowcount
        except MySQLError as exc:
            conn.rollback()
            if _is_duplicate(exc):
                raise DuplicateRowError(f"Duplicate {what}: {exc}") from exc
            raise StoreError(f"Failed to record {what}: {exc}") from exc
        finally:
            conn.close()

    # ── voters ──────────────────────────────────────────────────────

    def get_voter_by_rfid(self, rfid_tag: str):
        sql = f"SELECT {_VOTER_COLUMNS} FROM voters WHERE rfid_tag=%s LIMIT 1"
        rows = self._fetch_all(sql, (rfid_tag,))
        return _row_to(Voter, rows[0]) if rows else None

    def list_voters_with_face(self) -> list:
        sql = f"SELECT {_VOTER_COLUMNS} FROM voters WHERE face_descriptor IS NOT NULL"
        return [_row_to(Voter, row) for row in self._fetch_all(sql)]

    # ── elections / candidates ──────────────────────────────────────

    def list_elections(self) -> list:
        sql = ("SELECT id, title, description, start_date, end_date, is_active "
               "FROM elections ORDER BY start_date ASC")
        return [_row_to(Election, row) for row in self._fetch_all(sql)]

    def list_candidates(self, election_id: str) -> list:
        sql = ("SELECT id, election_id, name, position, slate, display_order "
               "FROM candidates WHERE election_id=%s "
               "ORDER BY position ASC, display_order ASC")
        return [_row_to(Candidate, row) for row in self._fetch_all(sql, (election_id,))]

    # ── voter_sessions ──────────────────────────────────────────────

    def create_session(self, voter_id: str, expires_at, now, kiosk_id: str = None) -> VoterSession:
        """
        Claim the voter's single session slot.

        Stale rows are cleared and the new row inserted in one transaction.
        The unique key on voter_id rejects the insert while another kiosk
        holds a live session, so two concurrent logins cannot both win.

        Raises:
            DuplicateRowError: a live session already exists.
        """
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM voter_sessions WHERE voter_id=%s AND expires_at<=%s",
                        (voter_id, _db_time(now)))
            cur.execute("INSERT INTO voter_sessions (voter_id, expires_at, kiosk_id) "
                        "VALUES (%s, %s, %s)",
                        (voter_id, _db_time(expires_at), kiosk_id))
            conn.commit()
        except MySQLError as exc:
            conn.rollback()
            if _is_duplicate(exc):
                raise DuplicateRowError(f"Live session exists for voter {voter_id}") from exc
            raise StoreError(f"Failed to create session: {exc}") from exc
        finally:
            conn.close()
        return VoterSession(voter_id=voter_id, expires_at=expires_at, kiosk_id=kiosk_id)

    def get_session(self, voter_id: str):
        rows = self._fetch_all(
            "SELECT voter_id, expires_at, kiosk_id FROM voter_sessions WHERE voter_id=%s LIMIT 1",
            (voter_id,))
        return _row_to(VoterSession, rows[0]) if rows else None

    def update_session_expiry(self, voter_id: str, expires_at) -> bool:
        count = self._execute("UPDATE voter_sessions SET expires_at=%s WHERE voter_id=%s",
                              (_db_time(expires_at), voter_id), "session expiry")
        return count > 0

    def delete_session(self, voter_id: str) -> None:
        self._execute("DELETE FROM voter_sessions WHERE voter_id=%s", (voter_id,), "session delete")

    # ── votes ───────────────────────────────────────────────────────

    def insert_ballot(self, votes: list) -> None:
        """
        Insert every row of one election's ballot, all or nothing.

        The ballots row is claimed first under UNIQUE(voter_id, election_id),
        so a second ballot for the same election is rejected even when it
        covers other positions.

        Raises:
            DuplicateRowError: the voter already has a ballot in this election.
        """
        if not votes:
            return
        voter_id, election_id = ballot_key(votes)
        sql = ("INSERT INTO votes (election_id, voter_id, position, candidate_id, "
               "is_abstain, receipt_hash) VALUES (%s, %s, %s, %s, %s, %s)")
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("INSERT INTO ballots (voter_id, election_id, receipt_hash) "
                        "VALUES (%s, %s, %s)",
                        (voter_id, election_id, votes[0].receipt_hash))
            for vote in votes:
                cur.execute(sql, (vote.election_id, vote.voter_id, vote.position,
                                  vote.candidate_id, int(vote.is_abstain), vote.receipt_hash))
            conn.commit()
        except MySQLError as exc:
            conn.rollback()
            if _is_duplicate(exc):
                raise DuplicateRowError(
                    f"Voter {voter_id} already voted in {election_id}") from exc
            raise StoreError(f"Failed to record vote: {exc}") from exc
        finally:
            conn.close()

    def voted_election_ids(self, voter_id: str) -> set:
        rows = self._fetch_all("SELECT DISTINCT election_id FROM votes WHERE voter_id=%s",
                               (voter_id,))
        return {row["election_id"] for row in rows}

    # ── audit logs ──────────────────────────────────────────────────

    def insert_session_log(self, event) -> None:
        self._execute(
            "INSERT INTO voter_session_logs (voter_id, action, kiosk_id, user_agent, created_at) "
            "VALUES (%s, %s, %s, %s, %s)",
            (event.voter_id, event.action, event.kiosk_id, event.user_agent,
             _db_time(event.timestamp)),
            "session log")

    def insert_auth_log(self, event_type: str, rfid_tag: str, distance: float = None) -> None:
        self._execute(
            "INSERT INTO auth_logs (event_type, rfid_tag, distance_score) VALUES (%s, %s, %s)",
            (event_type, rfid_tag, distance), "auth log")
