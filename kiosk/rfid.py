"""
rfid.py  —  RFID reader capability.

The authentication gate only ever sees on_scan(tag). How the tag arrives
(HID keyboard wedge, a test harness, ...) is the reader's business.
"""


class RfidReader:

    def __init__(self):
        self._listeners = []

    def on_scan(self, callback) -> None:
        """Register callback(tag); fired once per completed scan."""
        self._listeners.append(callback)

    def remove_listener(self, callback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, tag: str) -> None:
        for callback in list(self._listeners):
            callback(tag)


class KeyboardWedgeReader(RfidReader):
    """
    Reader that types the card UID followed by Enter.

    Some readers send digits one key at a time, others push the whole UID
    as a single key event; both end with "Enter".
    """

    def __init__(self, min_length: int = 4):
        super().__init__()
        self.min_length = min_length
        self._buffer = ""

    def feed_key(self, key: str) -> None:
        if key in ("Enter", "Return", "\r", "\n"):
            tag, self._buffer = self._buffer, ""
            if len(tag) >= self.min_length:
                self._emit(tag)
            return
        if len(key) > 1 and key != "Unidentified":
            self._buffer = key
            return
        if key.isdigit():
            self._buffer += key

    def clear(self) -> None:
        self._buffer = ""


class SimulatedRfidReader(RfidReader):

    def scan(self, tag: str) -> None:
        self._emit(tag.strip())
