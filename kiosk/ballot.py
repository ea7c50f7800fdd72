"""
ballot.py  —  Single-election ballot collection.

Candidates are grouped by position (ordered by position, then display
order). Each position takes one candidate or an explicit abstention;
abstaining needs a second confirmation. A ballot may be submitted once at
least one position has a choice, so voters can skip positions outright.
"""

from kiosk.errors import EmptyBallot, UnknownCandidate
from kiosk.models import ABSTAIN, CandidateSelection


def group_by_position(candidates) -> list:
    """[(position, [Candidate, ...]), ...] in first-seen position order."""
    positions = {}
    for candidate in candidates:
        running = positions.setdefault(candidate.position, [])
        # Legacy rows may carry a literal "Abstain" candidate; the position stays.
        if candidate.name.strip().lower() != "abstain":
            running.append(candidate)
    return list(positions.items())


class BallotCollector:

    def __init__(self, election, candidates, initial_selections=()):
        self.election = election
        self.positions = group_by_position(candidates)
        self._by_position = dict(self.positions)
        self.choices = {}
        self.pending_abstain = None
        for sel in initial_selections:
            if sel.election_id != election.id or sel.position not in self._by_position:
                continue
            if sel.is_abstain or any(c.id == sel.candidate_id for c in self._by_position[sel.position]):
                self.choices[sel.position] = sel.candidate_id

    @property
    def position_titles(self) -> list:
        return [title for title, _ in self.positions]

    def _require_position(self, position: str):
        if position not in self._by_position:
            raise UnknownCandidate(f"No position '{position}' on this ballot.")
        return self._by_position[position]

    def select(self, position: str, candidate_id: str) -> None:
        """Choose a candidate. Choosing ABSTAIN only opens the confirmation."""
        if candidate_id == ABSTAIN:
            self.request_abstain(position)
            return
        candidates = self._require_position(position)
        if not any(c.id == candidate_id for c in candidates):
            raise UnknownCandidate(f"Candidate {candidate_id} is not running for {position}.")
        self.choices[position] = candidate_id

    def request_abstain(self, position: str) -> None:
        self._require_position(position)
        self.pending_abstain = position

    def confirm_abstain(self) -> str:
        position = self.pending_abstain
        if position is None:
            raise UnknownCandidate("No abstention awaiting confirmation.")
        self.choices[position] = ABSTAIN
        self.pending_abstain = None
        return position

    def cancel_abstain(self) -> None:
        self.pending_abstain = None

    def clear(self, position: str) -> None:
        self.choices.pop(position, None)

    def has_selection(self) -> bool:
        return bool(self.choices)

    def submit(self) -> list:
        """Turn the current choices into CandidateSelection entries."""
        if not self.choices:
            raise EmptyBallot()

        selections = []
        for position, _ in self.positions:
            candidate_id = self.choices.get(position)
            if candidate_id is None:
                continue
            if candidate_id == ABSTAIN:
                selections.append(CandidateSelection(
                    election_id=self.election.id,
                    election_name=self.election.title,
                    position=position,
                    candidate_id=ABSTAIN,
                    candidate_name=ABSTAIN,
                    slate="N/A",
                ))
                continue
            candidate = next(c for c in self._by_position[position] if c.id == candidate_id)
            selections.append(CandidateSelection(
                election_id=self.election.id,
                election_name=self.election.title,
                position=position,
                candidate_id=candidate.id,
                candidate_name=candidate.name,
                slate=candidate.slate or "N/A",
            ))
        return selections
