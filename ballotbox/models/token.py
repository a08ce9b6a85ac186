from datetime import datetime
from ..extensions import db
from .school import School, school_column_type


class Token(db.Model):
    __tablename__ = "tokens"

    ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"  # no I, L, O, 0, 1

    token = db.Column(db.String(32), primary_key=True)
    school = db.Column(school_column_type(db), nullable=False, index=True)
    used = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Token {self.token} {self.school.value} used={self.used}>"
