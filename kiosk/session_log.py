"""
session_log.py  —  Append-only session audit trail (voter_session_logs).

An audit insert that fails is reported through `logging` and never
interrupts the voter's flow.
"""

import logging

from kiosk.errors import StoreError
from kiosk.models import SessionEvent

log = logging.getLogger(__name__)


def log_session_event(store, voter_id: str, action: str, kiosk_id: str = None,
                      user_agent: str = None, now=None) -> bool:
    """Insert one SessionEvent row. Returns False if the insert failed."""
    fields = {"voter_id": voter_id, "action": action,
              "kiosk_id": kiosk_id, "user_agent": user_agent}
    if now is not None:
        fields["timestamp"] = now
    event = SessionEvent(**fields)
    try:
        store.insert_session_log(event)
        return True
    except StoreError as exc:
        log.error("[session_log] insert failed for %s/%s: %s", voter_id, action, exc)
        return False
