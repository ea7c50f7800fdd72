"""
config.py  —  Kiosk settings loaded from config.json.

The "kiosk" section of config.json is merged over DEFAULTS so a partial
file (or no file at all) still yields a complete settings dict.
"""

import json
import os

from kiosk.paths import CONFIG_PATH


DEFAULTS = {
    "kiosk_id":               "KIOSK-01",
    "master_rfid_tag":        "1226512821",
    "face_threshold":         0.45,
    "base_session_seconds":   300,
    "per_election_seconds":   180,
    "grace_seconds":          90,
    "max_grace_extensions":   1,
    "heartbeat_seconds":      30,
    "complete_reset_seconds": 30,
    "error_reset_seconds":    5,
    "submit_retries":         2,
    "min_rfid_length":        4,
    "server_salt":            "change-me",
    "user_agent":             "kiosk-tk",
}

_INT_KEYS = (
    "base_session_seconds", "per_election_seconds", "grace_seconds",
    "max_grace_extensions", "heartbeat_seconds", "complete_reset_seconds",
    "error_reset_seconds", "submit_retries", "min_rfid_length",
)


def load_config(path: str = None) -> dict:
    """Return the whole config.json as a dict ({} if the file is missing)."""
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def load_settings(path: str = None, overrides: dict = None) -> dict:
    settings = dict(DEFAULTS)
    settings.update(load_config(path).get("kiosk", {}))
    if overrides:
        settings.update(overrides)

    try:
        for key in _INT_KEYS:
            settings[key] = int(settings[key])
        settings["face_threshold"] = float(settings["face_threshold"])
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid kiosk setting in config: {exc}") from exc
    settings["master_rfid_tag"] = str(settings["master_rfid_tag"])
    return settings
