from typing import List, Sequence

from sqlalchemy import distinct, func, select

from ..errors import EmptyResult
from ..models.candidate import Candidate
from ..models.school import School
from ..models.vote import Vote


class VoteLedger:
    """Owns vote rows: one row per (token, choice), written only inside a redemption."""

    def __init__(self, session):
        self.session = session

    def record(self, token: str, school: School, choices: Sequence[str]) -> List[Vote]:
        # Duplicates are kept: each entry is a separate mark on the ballot
        votes = [Vote(token=token, school=school, choice=choice) for choice in choices]
        self.session.add_all(votes)
        self.session.flush()
        return votes

    def redeemed_token_count(self) -> int:
        return self.session.execute(select(func.count(distinct(Vote.token)))).scalar_one()

    def total(self) -> int:
        return self.session.execute(select(func.count(Vote.id))).scalar_one()

    def tally(self) -> List[dict]:
        rows = self.session.execute(
            select(Vote.school, Vote.choice, func.count(Vote.id).label("count"))
            .group_by(Vote.school, Vote.choice)
            .order_by(Vote.school, Vote.choice)
        ).all()
        return [{"school": s.value, "choice": c, "count": int(n)} for s, c, n in rows]

    def export_tally(self) -> List[dict]:
        rows = self.tally()
        if not rows:
            raise EmptyResult("No votes recorded", code="NO_VOTES")
        return rows

    # ---- candidates ----

    def candidates(self, school: School) -> List[str]:
        return list(self.session.execute(
            select(Candidate.name).where(Candidate.school == school).order_by(Candidate.name)
        ).scalars())

    def all_candidates(self) -> List[dict]:
        rows = self.session.execute(
            select(Candidate.id, Candidate.school, Candidate.name).order_by(Candidate.school, Candidate.name)
        ).all()
        return [{"id": i, "school": s.value, "name": n} for i, s, n in rows]

    def add_candidate(self, school: School, name: str) -> Candidate:
        candidate = Candidate(school=school, name=name)
        self.session.add(candidate)
        self.session.flush()
        return candidate
