from datetime import datetime
from ..extensions import db
from .school import school_column_type


class Vote(db.Model):
    __tablename__ = "votes"

    id = db.Column(db.Integer, primary_key=True)

    # Plain reference: votes are kept even if token bookkeeping changes
    token = db.Column(db.String(32), nullable=False, index=True)
    school = db.Column(school_column_type(db), nullable=False)
    choice = db.Column(db.String(200), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_votes_school_choice", "school", "choice"),
    )
