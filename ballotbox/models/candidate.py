from datetime import datetime
from ..extensions import db
from .school import school_column_type


class Candidate(db.Model):
    __tablename__ = "candidates"

    id = db.Column(db.Integer, primary_key=True)
    school = db.Column(school_column_type(db), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("school", "name", name="uq_candidates_school_name"),
    )
