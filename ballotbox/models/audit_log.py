from datetime import datetime
from sqlalchemy.dialects.postgresql import JSONB
from ..extensions import db
from .school import school_column_type

JSONType = db.JSON().with_variant(JSONB(), "postgresql")


class VoteAudit(db.Model):
    """One hash-chained, HMAC-signed record per committed redemption. Append-only."""

    __tablename__ = "vote_audit"

    id = db.Column(db.Integer, primary_key=True)

    token = db.Column(db.String(32), nullable=False, index=True)
    school = db.Column(school_column_type(db), nullable=False)
    choices = db.Column(JSONType, nullable=False)  # input order, as submitted
    choice_count = db.Column(db.Integer, nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=False)

    user_agent = db.Column(db.String(512), nullable=True)
    masked_ip = db.Column(db.String(64), nullable=True)
    request_id = db.Column(db.String(64), nullable=False, unique=True)

    hmac = db.Column(db.String(64), nullable=False)
    chain_prev_hash = db.Column(db.String(64), nullable=False, default="")
    chain_hash = db.Column(db.String(64), nullable=False)


class AuditChainHead(db.Model):
    """Sentinel row; locking it serializes chain appends."""

    __tablename__ = "audit_chain_head"

    SINGLETON_ID = 1

    id = db.Column(db.Integer, primary_key=True)
    record_count = db.Column(db.Integer, nullable=False, default=0)
    tail_hash = db.Column(db.String(64), nullable=False, default="")
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class AdminAudit(db.Model):
    __tablename__ = "admin_audit"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(80), nullable=False, index=True)  # e.g. TOKENS_GENERATED
    meta = db.Column(JSONType, nullable=False, default=dict)
    at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
