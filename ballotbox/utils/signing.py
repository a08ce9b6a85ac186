import hmac
import hashlib
from datetime import datetime, timezone
from typing import Iterable

CHOICE_SEPARATOR = "|"
FIELD_SEPARATOR = "|"


def iso_timestamp(dt: datetime) -> str:
    """
    Fixed ISO-8601 form used in signatures and chain hashes:
    'YYYY-MM-DDTHH:MM:SS.mmmZ' in UTC. Naive datetimes are taken as UTC.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def truncate_to_millis(dt: datetime) -> datetime:
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


class Signer:
    def __init__(self, key: str):
        if not key:
            raise ValueError("Signing key must not be empty")
        self._key = key.encode("utf-8")

    @staticmethod
    def payload(token: str, school: str, choices: Iterable[str], submitted_at: datetime, request_id: str) -> str:
        # Sorted so the tag does not depend on the order choices were ticked
        joined_choices = CHOICE_SEPARATOR.join(sorted(choices))
        return FIELD_SEPARATOR.join([
            token,
            school,
            joined_choices,
            iso_timestamp(submitted_at),
            request_id,
        ])

    def sign(self, token: str, school: str, choices: Iterable[str], submitted_at: datetime, request_id: str) -> str:
        msg = self.payload(token, school, choices, submitted_at, request_id).encode("utf-8")
        return hmac.new(self._key, msg, hashlib.sha256).hexdigest()

    def verify(self, tag: str, **fields) -> bool:
        return hmac.compare_digest(self.sign(**fields), tag or "")
