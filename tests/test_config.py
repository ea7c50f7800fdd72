"""
tests/test_config.py
====================
Settings loading and the demo CSV seed data.

Run with:  python -m pytest tests/ -v
"""

import json, os, shutil, sys, tempfile, unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kiosk.config import DEFAULTS, load_config, load_settings
from kiosk.errors import MalformedRowError
from kiosk.seed import build_demo_store, load_elections_csv


class TestSettings(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp, "config.json")

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _write(self, data):
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)

    def test_missing_file_gives_defaults(self):
        self.assertEqual(load_config(self.path), {})
        self.assertEqual(load_settings(self.path), DEFAULTS)

    def test_partial_section_merged(self):
        self._write({"kiosk": {"grace_seconds": "120", "kiosk_id": "KIOSK-07",
                               "master_rfid_tag": 1226512821}})
        settings = load_settings(self.path)
        self.assertEqual(settings["grace_seconds"], 120)
        self.assertEqual(settings["kiosk_id"], "KIOSK-07")
        self.assertEqual(settings["master_rfid_tag"], "1226512821")
        self.assertEqual(settings["per_election_seconds"], 180)

    def test_overrides_win(self):
        self._write({"kiosk": {"submit_retries": 5}})
        self.assertEqual(load_settings(self.path, {"submit_retries": 0})["submit_retries"], 0)

    def test_bad_number_rejected(self):
        self._write({"kiosk": {"face_threshold": "close enough"}})
        with self.assertRaises(ValueError):
            load_settings(self.path)

    def test_shipped_config_is_valid(self):
        settings = load_settings()
        self.assertEqual(settings["master_rfid_tag"], "1226512821")
        self.assertIn("db", load_config())


class TestDemoSeed(unittest.TestCase):

    def test_demo_store_loads(self):
        store = build_demo_store()
        self.assertIsNotNone(store.get_voter_by_rfid("1234567890"))
        self.assertEqual(len(store.list_voters_with_face()), 2)
        self.assertEqual([c.position for c in store.list_candidates("E-SSC-2026")],
                         ["President", "President", "Vice President", "Vice President"])

    def test_bad_row_names_file_and_line(self):
        tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmp, True)
        path = os.path.join(tmp, "elections.csv")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("id,title,description,start_date,end_date,is_active\n")
            fh.write("E-1,Broken,,2026-02-01T00:00:00Z,2026-01-01T00:00:00Z,true\n")
        with self.assertRaises(MalformedRowError) as ctx:
            load_elections_csv(path)
        self.assertIn("elections.csv:2", str(ctx.exception))


if __name__ == "__main__":
    unittest.main(verbosity=2)
