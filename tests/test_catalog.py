"""
tests/test_catalog.py
=====================
Election window resolution and ordering.

Run with:  python -m pytest tests/ -v
"""

import os, sys, unittest
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from kiosk_fixtures import T0, make_election
from kiosk.catalog import election_status, resolve_elections, sort_elections
from kiosk.models import Election


def _exact(election_id, start, end, active=True):
    return Election(id=election_id, title=election_id, start_date=start, end_date=end,
                    is_active=active)


class TestElectionStatus(unittest.TestCase):

    def test_start_boundary_is_open(self):
        e = _exact("E", T0, T0 + timedelta(hours=1))
        self.assertEqual(election_status(e, T0), "active")

    def test_end_boundary_is_closed(self):
        e = _exact("E", T0 - timedelta(hours=1), T0)
        self.assertEqual(election_status(e, T0), "closed")

    def test_one_second_before_end_is_open(self):
        e = _exact("E", T0 - timedelta(hours=1), T0 + timedelta(seconds=1))
        self.assertEqual(election_status(e, T0), "active")

    def test_future_start_is_upcoming(self):
        self.assertEqual(election_status(make_election("E", start=2, end=3), T0), "upcoming")

    def test_inactive_flag_wins(self):
        self.assertEqual(election_status(make_election("E", active=False), T0), "inactive")


class TestResolveElections(unittest.TestCase):

    def setUp(self):
        self.open_a = make_election("E-A")
        self.open_b = make_election("E-B", start=-3)
        self.closed = make_election("E-C", start=-10, end=-2)
        self.later = make_election("E-D", start=5, end=6)
        self.off = make_election("E-E", active=False)

    def test_partition(self):
        buckets = resolve_elections(
            [self.open_a, self.closed, self.off, self.later, self.open_b], T0)
        self.assertEqual([e.id for e in buckets["active"]], ["E-A", "E-B"])
        self.assertEqual([e.id for e in buckets["expired"]], ["E-C"])
        self.assertEqual([e.id for e in buckets["upcoming"]], ["E-D"])

    def test_inactive_never_listed(self):
        buckets = resolve_elections([self.off], T0)
        self.assertEqual(buckets, {"active": [], "expired": [], "upcoming": []})

    def test_empty_catalog(self):
        self.assertEqual(resolve_elections([], T0)["active"], [])


class TestSortElections(unittest.TestCase):

    def test_open_then_upcoming_then_closed(self):
        elections = [
            make_election("closed-old", start=-20, end=-10),
            make_election("upcoming-late", start=9, end=10),
            make_election("closed-recent", start=-5, end=-1),
            make_election("open"),
            make_election("upcoming-soon", start=2, end=3),
        ]
        ordered = [e.id for e in sort_elections(elections, T0)]
        self.assertEqual(ordered, ["open", "upcoming-soon", "upcoming-late",
                                   "closed-recent", "closed-old"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
