from datetime import datetime, timezone
from functools import wraps
from typing import Optional

from flask import current_app

from ..errors import VotingNotOpen

STATE_PRE = "pre"
STATE_OPEN = "open"
STATE_POST = "post"


def parse_instant(value) -> Optional[datetime]:
    """ISO-8601 -> aware UTC datetime; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def voting_status(now: Optional[datetime] = None) -> dict:
    start = parse_instant(current_app.config.get("VOTING_START"))
    end = parse_instant(current_app.config.get("VOTING_END"))
    now = now or datetime.now(timezone.utc)

    if start and now < start:
        state = STATE_PRE
    elif end and now > end:
        state = STATE_POST
    else:
        state = STATE_OPEN

    return {
        "state": state,
        "starts_at": start.isoformat() if start else None,
        "ends_at": end.isoformat() if end else None,
    }


def require_voting_open(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        status = voting_status()
        if status["state"] == STATE_PRE:
            raise VotingNotOpen("Voting has not started yet", details=status)
        if status["state"] == STATE_POST:
            raise VotingNotOpen("Voting has ended", details=status)
        return fn(*args, **kwargs)
    return wrapper
