from .school import School  # noqa: F401
from .token import Token  # noqa: F401
from .candidate import Candidate  # noqa: F401
from .vote import Vote  # noqa: F401
from .audit_log import VoteAudit, AuditChainHead, AdminAudit  # noqa: F401

# Import ALL models so SQLAlchemy registers them

__all__ = [
    "School",
    "Token",
    "Candidate",
    "Vote",
    "VoteAudit",
    "AuditChainHead",
    "AdminAudit",
]
