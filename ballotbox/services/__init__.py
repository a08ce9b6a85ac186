from flask import current_app

from ..extensions import db
from .audit_chain import AuditChain
from .redemption import RedemptionService
from .token_store import TokenStore
from .vote_ledger import VoteLedger


def get_token_store() -> TokenStore:
    cfg = current_app.config
    return TokenStore(db.session, cfg["TOKEN_LENGTH"], cfg["TOKEN_MAX_ATTEMPTS"])


def get_vote_ledger() -> VoteLedger:
    return VoteLedger(db.session)


def get_audit_chain() -> AuditChain:
    return AuditChain.from_config(db.session, current_app.config)


def get_redemption_service() -> RedemptionService:
    return RedemptionService.from_config(db.session, current_app.config)
