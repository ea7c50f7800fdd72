"""
paths.py
========
Single source of truth for all absolute paths in the project.

Every module imports from here instead of computing paths individually,
so the kiosk resolves its files the same way no matter which directory
`python app.py` is started from.
"""

import os

# The directory that contains THIS file (kiosk/)
_KIOSK_DIR = os.path.dirname(os.path.abspath(__file__))

# The project root is always one level above kiosk/
PROJECT_ROOT = os.path.dirname(_KIOSK_DIR)

# Key paths
CONFIG_PATH      = os.path.join(PROJECT_ROOT, "config.json")
SCHEMA_PATH      = os.path.join(PROJECT_ROOT, "schema.sql")
DATA_DIR         = os.path.join(PROJECT_ROOT, "data")
VOTERS_CSV       = os.path.join(DATA_DIR, "voters.csv")
ELECTIONS_CSV    = os.path.join(DATA_DIR, "elections.csv")
CANDIDATES_CSV   = os.path.join(DATA_DIR, "candidates.csv")
