"""
seed.py  —  CSV loaders for the demo kiosk.

data/voters.csv, data/elections.csv and data/candidates.csv are read into
an InMemoryStore. Rows go through the same Pydantic validation as rows
coming back from MySQL.
"""

import csv

from pydantic import ValidationError

from kiosk.errors import MalformedRowError
from kiosk.memory_store import InMemoryStore
from kiosk.models import Candidate, Election, Voter
from kiosk.paths import CANDIDATES_CSV, ELECTIONS_CSV, VOTERS_CSV


def _read_rows(path: str) -> list:
    rows = []
    with open(path, newline="", encoding="utf-8") as fh:
        for row in csv.DictReader(fh):
            rows.append({k.strip(): (v.strip() if v is not None else None) or None
                         for k, v in row.items()})
    return rows


def _load(model, path: str) -> list:
    items = []
    for line_no, row in enumerate(_read_rows(path), start=2):
        try:
            items.append(model.model_validate(row))
        except ValidationError as exc:
            raise MalformedRowError(f"{path}:{line_no}: {exc}") from exc
    return items


def load_voters_csv(csv_path: str = None) -> list:
    return _load(Voter, csv_path or VOTERS_CSV)


def load_elections_csv(csv_path: str = None) -> list:
    return _load(Election, csv_path or ELECTIONS_CSV)


def load_candidates_csv(csv_path: str = None) -> list:
    return _load(Candidate, csv_path or CANDIDATES_CSV)


def build_demo_store(voters_csv: str = None, elections_csv: str = None,
                     candidates_csv: str = None) -> InMemoryStore:
    return InMemoryStore(
        voters=load_voters_csv(voters_csv),
        elections=load_elections_csv(elections_csv),
        candidates=load_candidates_csv(candidates_csv),
    )
