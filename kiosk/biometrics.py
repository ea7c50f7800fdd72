"""
biometrics.py  —  Face descriptor matching for kiosk authentication.

Capture is hardware specific and lives behind FaceMatcher.capture();
comparison is a plain Euclidean distance between descriptors, a match
being anything strictly under the threshold.
"""

import numpy as np

DEFAULT_THRESHOLD = 0.45


def compare_descriptors(stored, live, threshold: float = DEFAULT_THRESHOLD) -> dict:
    """
    Compare a stored face template with a live capture.

    Returns:
        {"match": bool, "distance": float}. Descriptors of different
        length never match (distance is infinite).
    """
    known = np.asarray(stored, dtype=np.float64)
    probe = np.asarray(live, dtype=np.float64)
    if known.shape != probe.shape or known.size == 0:
        return {"match": False, "distance": float("inf")}
    distance = float(np.linalg.norm(known - probe))
    return {"match": distance < threshold, "distance": distance}


class FaceMatcher:
    """Capture + compare capability used by the authentication gate."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        self.threshold = threshold

    def capture(self) -> list:
        raise NotImplementedError

    def compare(self, stored, live) -> dict:
        return compare_descriptors(stored, live, self.threshold)


class SimulatedFaceMatcher(FaceMatcher):
    """Returns a preset descriptor instead of reading a camera."""

    def __init__(self, descriptor=None, threshold: float = DEFAULT_THRESHOLD):
        super().__init__(threshold)
        self.descriptor = descriptor

    def present(self, descriptor) -> None:
        self.descriptor = list(descriptor)

    def capture(self) -> list:
        if self.descriptor is None:
            raise RuntimeError("No face presented to the simulated camera.")
        return list(self.descriptor)
