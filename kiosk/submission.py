"""
submission.py  —  Final vote submission as an observable job.

Stages, in order:
  recording   one all-or-nothing insert per election; an election the
              voter already has votes in is noted as a duplicate
  anchoring   the batch of receipt hashes is anchored on the ledger
  notifying   confirmation message to the voter (failure is non-fatal)

Each stage moves pending -> running -> confirmed | failed | skipped; the
job itself ends confirmed or failed. A job may run inline (run()) or on a
daemon thread (start()) while the kiosk polls it.
"""

import logging
import secrets
import threading
import traceback

from kiosk import receipts
from kiosk.errors import DuplicateRowError, StoreError, SubmissionError
from kiosk.models import Vote, utc_now

log = logging.getLogger(__name__)

STAGES = ("recording", "anchoring", "notifying")

PENDING, RUNNING, CONFIRMED, FAILED, SKIPPED = (
    "pending", "running", "confirmed", "failed", "skipped")


class LocalLedger:
    """Keeps anchored batches in memory and derives their tx hash."""

    def __init__(self):
        self.anchored = {}

    def anchor(self, receipt_hashes) -> str:
        receipt_hashes = list(receipt_hashes)
        if not receipt_hashes:
            raise SubmissionError("Nothing to anchor.")
        tx_hash = receipts.compute_tx_hash(receipt_hashes)
        self.anchored[tx_hash] = receipt_hashes
        return tx_hash


class LogMailer:
    """Writes the confirmation to the kiosk log instead of sending mail."""

    def __init__(self, log_fn=None):
        self._log_fn = log_fn
        self.sent = []

    def send_confirmation(self, voter, receipt) -> None:
        msg = (f"Confirmation for {voter.email}: {len(receipt.recorded)} election(s) "
               f"recorded, tx {receipt.tx_hash}")
        self.sent.append((voter.email, receipt.tx_hash))
        if self._log_fn: self._log_fn(msg)


class TransactionReceipt:

    def __init__(self):
        self.tx_hash = None
        self.recorded = []
        self.duplicates = []
        self.receipt_hashes = {}
        self.confirmed_at = None

    @property
    def fully_recorded(self) -> bool:
        return not self.duplicates

    def as_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "recorded": list(self.recorded),
            "duplicates": list(self.duplicates),
            "receipt_hashes": dict(self.receipt_hashes),
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }


def group_by_election(selections) -> list:
    grouped = {}
    for sel in selections:
        grouped.setdefault(sel.election_id, []).append(sel)
    return list(grouped.items())


class SubmissionJob:

    def __init__(self, store, voter, selections, settings: dict,
                 ledger=None, mailer=None, log_fn=None, now_fn=utc_now):
        self.store = store
        self.voter = voter
        self.selections = list(selections)
        self.settings = settings
        self.ledger = ledger or LocalLedger()
        self.mailer = mailer
        self._log_fn = log_fn
        self._now = now_fn

        self.status = PENDING
        self.stages = {stage: PENDING for stage in STAGES}
        self.receipt = TransactionReceipt()
        self.error = None
        self._done = threading.Event()
        self._thread = None

    def _log(self, msg):
        if self._log_fn: self._log_fn(msg)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        if self._thread is not None or self.done:
            return
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()

    def wait(self, timeout: float = None) -> bool:
        return self._done.wait(timeout)

    def run(self) -> None:
        if self.status != PENDING:
            return
        self.status = RUNNING
        try:
            self._record()
            self._anchor()
            self._notify()
            self.receipt.confirmed_at = self._now()
            self.status = CONFIRMED
            self._log(f"Submission confirmed. tx {self.receipt.tx_hash}")
        except (SubmissionError, StoreError) as exc:
            self._fail(str(exc))
        except Exception as exc:
            log.error("[submission] unexpected failure:\n%s", traceback.format_exc())
            self._fail(f"Unexpected error: {exc}")
        finally:
            self._done.set()

    def _fail(self, message: str) -> None:
        for stage, state in self.stages.items():
            if state == RUNNING:
                self.stages[stage] = FAILED
        self.error = message
        self.status = FAILED
        self._log(f"Submission FAILED: {message}")

    # ── stages ──────────────────────────────────────────────────────

    def _record(self) -> None:
        self.stages["recording"] = RUNNING
        retries = self.settings.get("submit_retries", 0)
        salt = self.settings.get("server_salt", "")

        for election_id, selections in group_by_election(self.selections):
            nonce = secrets.token_hex(16)
            payload = receipts.build_ballot_payload(election_id, selections, nonce, now=self._now())
            receipt_hash = receipts.compute_receipt_hash(
                receipts.hash_payload(payload), salt, nonce)
            votes = [Vote.from_selection(self.voter.id, s, receipt_hash) for s in selections]

            last_error = None
            for attempt in range(retries + 1):
                try:
                    self.store.insert_ballot(votes)
                except DuplicateRowError:
                    log.warning("[submission] voter %s already voted in %s; skipping",
                                self.voter.id, election_id)
                    self._log(f"Election {election_id}: already recorded, skipped.")
                    self.receipt.duplicates.append(election_id)
                    break
                except StoreError as exc:
                    last_error = exc
                    log.warning("[submission] insert for %s failed (attempt %d/%d): %s",
                                election_id, attempt + 1, retries + 1, exc)
                    continue
                self.receipt.recorded.append(election_id)
                self.receipt.receipt_hashes[election_id] = receipt_hash
                self._log(f"Election {election_id}: {len(votes)} vote(s) recorded.")
                break
            else:
                raise SubmissionError(
                    f"Could not record votes for election {election_id}: {last_error}")

        self.stages["recording"] = CONFIRMED

    def _anchor(self) -> None:
        if not self.receipt.recorded:
            self.stages["anchoring"] = SKIPPED
            return
        self.stages["anchoring"] = RUNNING
        self.receipt.tx_hash = self.ledger.anchor(self.receipt.receipt_hashes.values())
        self.stages["anchoring"] = CONFIRMED

    def _notify(self) -> None:
        if self.mailer is None or not self.voter.email or not self.receipt.recorded:
            self.stages["notifying"] = SKIPPED
            return
        self.stages["notifying"] = RUNNING
        try:
            self.mailer.send_confirmation(self.voter, self.receipt)
        except Exception:
            log.error("[submission] confirmation to %s failed:\n%s",
                      self.voter.email, traceback.format_exc())
            self.stages["notifying"] = FAILED
            return
        self.stages["notifying"] = CONFIRMED
