"""
tests/test_submission.py
========================
Final submission job: per-election all-or-nothing recording, duplicate
handling, retries, ledger anchoring and the non-fatal notification.

Run with:  python -m pytest tests/ -v
"""

import os, sys, unittest
from unittest import mock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from kiosk_fixtures import T0, FakeClock, make_settings, make_store, make_voter
from kiosk.errors import StoreError, SubmissionError
from kiosk.models import ABSTAIN, CandidateSelection, Vote
from kiosk.receipts import (build_ballot_payload, compute_receipt_hash, compute_tx_hash,
                            hash_payload)
from kiosk.submission import (CONFIRMED, FAILED, PENDING, SKIPPED, LocalLedger,
                              LogMailer, SubmissionJob, group_by_election)


def _selection(election_id, position, candidate_id):
    return CandidateSelection(election_id=election_id, position=position,
                              candidate_id=candidate_id,
                              candidate_name=ABSTAIN if candidate_id == ABSTAIN else candidate_id)


class SubmissionBase(unittest.TestCase):

    def setUp(self):
        self.store = make_store(positions=("President", "Treasurer"))
        self.voter = make_voter()
        self.settings = make_settings(submit_retries=2, server_salt="test-salt")
        self.selections = [
            _selection("E-X", "President", "E-X-0-1"),
            _selection("E-X", "Treasurer", ABSTAIN),
            _selection("E-Y", "President", "E-Y-0-2"),
        ]

    def _job(self, selections=None, **kwargs):
        return SubmissionJob(self.store, self.voter,
                             self.selections if selections is None else selections,
                             self.settings, now_fn=FakeClock(), **kwargs)


class TestRecording(SubmissionBase):

    def test_all_elections_recorded(self):
        job = self._job()
        job.run()
        self.assertEqual(job.status, CONFIRMED)
        self.assertTrue(job.done)
        self.assertEqual(job.receipt.recorded, ["E-X", "E-Y"])
        self.assertTrue(job.receipt.fully_recorded)
        self.assertEqual(job.receipt.confirmed_at, T0)
        self.assertEqual(len(self.store.votes), 3)

    def test_abstention_stored_without_candidate(self):
        self._job().run()
        abstained = [v for v in self.store.votes if v.is_abstain]
        self.assertEqual(len(abstained), 1)
        self.assertIsNone(abstained[0].candidate_id)
        self.assertEqual(abstained[0].position, "Treasurer")

    def test_one_receipt_hash_per_election(self):
        job = self._job()
        job.run()
        by_election = {}
        for vote in self.store.votes:
            by_election.setdefault(vote.election_id, set()).add(vote.receipt_hash)
        self.assertEqual({k: len(v) for k, v in by_election.items()}, {"E-X": 1, "E-Y": 1})
        self.assertEqual(job.receipt.receipt_hashes["E-X"], by_election["E-X"].pop())

    def test_receipt_hash_does_not_contain_voter(self):
        job = self._job()
        job.run()
        for receipt_hash in job.receipt.receipt_hashes.values():
            self.assertNotIn(self.voter.id, receipt_hash)
            self.assertEqual(len(receipt_hash), 64)

    def test_already_voted_election_reported_as_duplicate(self):
        self.store.insert_ballot([Vote(election_id="E-X", voter_id="V-1",
                                       position="President", candidate_id="E-X-0-2")])
        job = self._job()
        job.run()
        self.assertEqual(job.status, CONFIRMED)
        self.assertEqual(job.receipt.duplicates, ["E-X"])
        self.assertEqual(job.receipt.recorded, ["E-Y"])
        self.assertFalse(job.receipt.fully_recorded)
        # Nothing from the rejected E-X ballot was written.
        self.assertEqual(len([v for v in self.store.votes if v.election_id == "E-X"]), 1)

    def test_every_election_duplicate_skips_anchoring(self):
        self._job().run()
        job = self._job()
        job.run()
        self.assertEqual(job.status, CONFIRMED)
        self.assertEqual(job.receipt.recorded, [])
        self.assertEqual(job.stages["anchoring"], SKIPPED)
        self.assertIsNone(job.receipt.tx_hash)

    def test_second_ballot_for_other_positions_is_duplicate(self):
        """One ballot per voter and election, even when positions do not overlap."""
        first = self._job([_selection("E-X", "President", "E-X-0-1")])
        first.run()
        second = self._job([_selection("E-X", "Treasurer", "E-X-1-1")])
        second.run()

        self.assertEqual(first.receipt.recorded, ["E-X"])
        self.assertEqual(second.status, CONFIRMED)
        self.assertEqual(second.receipt.recorded, [])
        self.assertEqual(second.receipt.duplicates, ["E-X"])
        self.assertEqual([v.position for v in self.store.votes], ["President"])
        self.assertEqual(len({v.receipt_hash for v in self.store.votes}), 1)

    def test_receipt_timestamp_uses_job_clock(self):
        nonce = "ab" * 16
        with mock.patch("kiosk.submission.secrets.token_hex", return_value=nonce):
            job = self._job(self.selections[:2])
            job.run()
        payload = build_ballot_payload("E-X", self.selections[:2], nonce, now=T0)
        self.assertEqual(payload["timestamp"], T0.isoformat())
        expected = compute_receipt_hash(hash_payload(payload), "test-salt", nonce)
        self.assertEqual(job.receipt.receipt_hashes["E-X"], expected)

    def test_transient_failure_retried(self):
        real_insert = self.store.insert_ballot
        calls = []

        def flaky(votes):
            calls.append(votes[0].election_id)
            if len(calls) == 1:
                raise StoreError("connection reset")
            real_insert(votes)

        with mock.patch.object(self.store, "insert_ballot", side_effect=flaky):
            job = self._job()
            job.run()
        self.assertEqual(job.status, CONFIRMED)
        self.assertEqual(calls, ["E-X", "E-X", "E-Y"])

    def test_retries_exhausted_fails_job(self):
        with mock.patch.object(self.store, "insert_ballot",
                               side_effect=StoreError("server gone")) as insert:
            job = self._job()
            job.run()
        self.assertEqual(insert.call_count, 3)
        self.assertEqual(job.status, FAILED)
        self.assertEqual(job.stages["recording"], FAILED)
        self.assertEqual(job.stages["anchoring"], PENDING)
        self.assertIn("E-X", job.error)
        self.assertIsNone(job.receipt.confirmed_at)

    def test_run_twice_records_once(self):
        job = self._job()
        job.run()
        job.run()
        self.assertEqual(len(self.store.votes), 3)

    def test_background_thread(self):
        job = self._job()
        job.start()
        self.assertTrue(job.wait(5))
        self.assertEqual(job.status, CONFIRMED)


class TestAnchoringAndNotification(SubmissionBase):

    def test_tx_hash_covers_receipts(self):
        ledger = LocalLedger()
        job = self._job(ledger=ledger)
        job.run()
        expected = compute_tx_hash(job.receipt.receipt_hashes.values())
        self.assertEqual(job.receipt.tx_hash, expected)
        self.assertTrue(expected.startswith("0x"))
        self.assertIn(expected, ledger.anchored)

    def test_ledger_failure_fails_job(self):
        ledger = mock.Mock()
        ledger.anchor.side_effect = SubmissionError("ledger unreachable")
        job = self._job(ledger=ledger)
        job.run()
        self.assertEqual(job.status, FAILED)
        self.assertEqual(job.stages["recording"], CONFIRMED)
        self.assertEqual(job.stages["anchoring"], FAILED)

    def test_confirmation_sent(self):
        messages = []
        mailer = LogMailer(log_fn=messages.append)
        job = self._job(mailer=mailer)
        job.run()
        self.assertEqual(job.stages["notifying"], CONFIRMED)
        self.assertEqual(mailer.sent, [("maria.santos@campus.edu", job.receipt.tx_hash)])
        self.assertTrue(any("maria.santos@campus.edu" in m for m in messages))

    def test_notification_failure_is_not_fatal(self):
        mailer = mock.Mock()
        mailer.send_confirmation.side_effect = OSError("smtp down")
        job = self._job(mailer=mailer)
        job.run()
        self.assertEqual(job.status, CONFIRMED)
        self.assertEqual(job.stages["notifying"], FAILED)

    def test_any_mailer_exception_is_not_fatal(self):
        mailer = mock.Mock()
        mailer.send_confirmation.side_effect = ValueError("smtp template error")
        job = self._job(mailer=mailer)
        job.run()
        self.assertEqual(job.status, CONFIRMED)
        self.assertIsNone(job.error)
        self.assertEqual(job.stages["notifying"], FAILED)
        self.assertEqual(len(self.store.votes), 3)

    def test_no_mailer_skips_notification(self):
        job = self._job()
        job.run()
        self.assertEqual(job.stages["notifying"], SKIPPED)

    def test_receipt_as_dict(self):
        job = self._job()
        job.run()
        data = job.receipt.as_dict()
        self.assertEqual(data["recorded"], ["E-X", "E-Y"])
        self.assertEqual(data["confirmed_at"], T0.isoformat())


class TestGrouping(unittest.TestCase):

    def test_group_by_election_keeps_first_seen_order(self):
        sels = [_selection("E-Y", "P", "a"), _selection("E-X", "P", "b"),
                _selection("E-Y", "Q", "c")]
        grouped = group_by_election(sels)
        self.assertEqual([eid for eid, _ in grouped], ["E-Y", "E-X"])
        self.assertEqual(len(grouped[0][1]), 2)


if __name__ == "__main__":
    unittest.main(verbosity=2)
