"""
tests/test_session_timer.py
===========================
Shared session countdown with a single grace extension.

Run with:  python -m pytest tests/ -v
"""

import os, sys, unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kiosk.session_timer import EXPIRED, GRACE, SessionTimer


class TestSessionTimer(unittest.TestCase):

    def setUp(self):
        self.timer = SessionTimer(per_election_seconds=180, grace_seconds=90, max_grace=1)

    def test_not_started_until_first_ballot(self):
        self.assertFalse(self.timer.started)
        self.assertIsNone(self.timer.tick())
        self.assertEqual(self.timer.format_remaining(), "--:--")

    def test_grant_scales_with_election_count(self):
        self.assertEqual(self.timer.start(2), 360)
        self.assertEqual(self.timer.format_remaining(), "6:00")

    def test_zero_elections_still_grant_one_period(self):
        self.assertEqual(self.timer.start(0), 180)

    def test_start_only_once(self):
        self.timer.start(2)
        self.timer.tick(60)
        self.assertIsNone(self.timer.start(2))
        self.assertEqual(self.timer.remaining, 300)

    def test_grace_then_expiry(self):
        self.timer.start(1)
        self.assertIsNone(self.timer.tick(179))
        self.assertEqual(self.timer.tick(), GRACE)
        self.assertEqual(self.timer.remaining, 90)
        self.assertEqual(self.timer.format_remaining(), "1:30")
        self.assertIsNone(self.timer.tick(89))
        self.assertEqual(self.timer.tick(), EXPIRED)
        self.assertTrue(self.timer.expired)
        self.assertIsNone(self.timer.tick())

    def test_overshoot_clamps_to_zero(self):
        self.timer.start(1)
        self.assertEqual(self.timer.tick(500), GRACE)
        self.assertEqual(self.timer.remaining, 90)

    def test_no_grace_configured(self):
        timer = SessionTimer(60, 90, max_grace=0)
        timer.start(1)
        self.assertEqual(timer.tick(60), EXPIRED)

    def test_reset(self):
        self.timer.start(1)
        self.timer.tick(180)
        self.timer.reset()
        self.assertFalse(self.timer.started)
        self.assertEqual(self.timer.grace_used, 0)
        self.assertEqual(self.timer.start(1), 180)


if __name__ == "__main__":
    unittest.main(verbosity=2)
