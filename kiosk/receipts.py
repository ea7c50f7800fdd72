"""
receipts.py
===========
Hashing helpers for ballot receipts.

Provides:
  - SHA-256 helpers
  - Voter-agnostic ballot payload construction
  - Receipt hash computation (vote hash + kiosk salt + nonce)
  - Transaction hash over a batch of receipts

Receipts let a voter check that a ballot was counted without the receipt
itself naming the voter.
"""

import hashlib
import json
import secrets
from datetime import datetime, timezone


# ------------------------------------------------------------------ #
#  SHA-256 Helpers                                                     #
# ------------------------------------------------------------------ #

def sha256_hex(data: bytes) -> str:
    """Return the hex-encoded SHA-256 digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def sha256_of_string(text: str) -> str:
    """Return SHA-256 hex digest of a UTF-8 string."""
    return sha256_hex(text.encode("utf-8"))


# ------------------------------------------------------------------ #
#  Ballot Payload                                                      #
# ------------------------------------------------------------------ #

def build_ballot_payload(election_id: str, selections, nonce: str = None, now=None) -> dict:
    """
    Construct the payload hashed into a ballot receipt.

    Args:
        election_id: Election the selections belong to.
        selections: CandidateSelection entries for that election.
        nonce: Optional nonce; one is generated if not supplied.
        now: Timestamp to stamp; the current UTC time if not supplied.

    Returns:
        dict with keys: election_id, choices, timestamp, nonce.
        The voter id is deliberately absent.
    """
    if nonce is None:
        nonce = secrets.token_hex(16)
    if now is None:
        now = datetime.now(timezone.utc)
    return {
        "election_id": election_id,
        "choices": [{"position": s.position, "candidate_id": s.candidate_id}
                    for s in selections],
        "timestamp": now.isoformat(),
        "nonce": nonce,
    }


def payload_to_bytes(payload: dict) -> bytes:
    """Deterministically serialise a payload dict to UTF-8 bytes."""
    return json.dumps(payload, sort_keys=True, ensure_ascii=True).encode("utf-8")


def hash_payload(payload: dict) -> str:
    """SHA-256 hash of the canonical JSON form of a payload."""
    return sha256_hex(payload_to_bytes(payload))


# ------------------------------------------------------------------ #
#  Receipt & Transaction Hashes                                        #
# ------------------------------------------------------------------ #

def compute_receipt_hash(vote_hash: str, server_salt: str, nonce: str) -> str:
    """
    Formula: SHA256(vote_hash + SERVER_SALT + nonce)
    """
    return sha256_of_string(f"{vote_hash}{server_salt}{nonce}")


def compute_tx_hash(receipt_hashes) -> str:
    """Order-independent 0x-prefixed hash over a batch of receipt hashes."""
    joined = "|".join(sorted(receipt_hashes))
    return "0x" + sha256_of_string(joined)
