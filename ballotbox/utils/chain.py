"""
Hash chain over vote audit records.

Each record's chain_hash is sha256 over a canonical JSON form of every other
field, including chain_prev_hash, so changing, removing or reordering any
record breaks the link from that point on. The functions here work on plain
mappings (as produced by the audit export) so a third party can re-verify an
export without access to the live database.

The canonical form sorts choices, matching the HMAC payload. Reordering the
choices inside one record therefore still verifies: tamper evidence covers
which choices were cast and how many, not the order they were ticked in.
A row whose fields no longer parse is reported as the first invalid record.
"""
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

from .signing import Signer, iso_timestamp

# Field order is part of the hash; do not reorder.
CANONICAL_FIELDS = (
    "token",
    "school",
    "choices",
    "choice_count",
    "submitted_at",
    "user_agent",
    "masked_ip",
    "request_id",
    "hmac",
    "chain_prev_hash",
)


def _choices(value) -> List[str]:
    if isinstance(value, str):
        value = json.loads(value) if value else []
    return [str(c) for c in (value or [])]


def _timestamp(value) -> str:
    if isinstance(value, datetime):
        return iso_timestamp(value)
    return str(value)


def canonical(record: Mapping[str, Any]) -> str:
    """Deterministic JSON of a record's hashed fields (chain_hash excluded)."""
    body = {
        "token": record["token"],
        "school": record["school"],
        "choices": sorted(_choices(record["choices"])),
        "choice_count": int(record["choice_count"]),
        "submitted_at": _timestamp(record["submitted_at"]),
        "user_agent": record.get("user_agent") or None,
        "masked_ip": record.get("masked_ip") or None,
        "request_id": record["request_id"],
        "hmac": record["hmac"],
        "chain_prev_hash": record.get("chain_prev_hash") or "",
    }
    return json.dumps({k: body[k] for k in CANONICAL_FIELDS}, separators=(",", ":"), ensure_ascii=False)


def compute_chain_hash(record: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical(record).encode("utf-8")).hexdigest()


@dataclass
class ChainVerification:
    ok: bool
    checked: int
    first_invalid_index: Optional[int] = None
    first_invalid_id: Optional[Any] = None
    reason: Optional[str] = None
    untrusted_ids: List[Any] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "checked": self.checked,
            "first_invalid_index": self.first_invalid_index,
            "first_invalid_id": self.first_invalid_id,
            "reason": self.reason,
            "untrusted_ids": self.untrusted_ids,
        }


def verify_chain(records: Iterable[Mapping[str, Any]], signer: Optional[Signer] = None) -> ChainVerification:
    """
    Walk records in insertion order and recompute every link.

    A record fails if its stored chain_hash differs from the recomputed one, if
    its chain_prev_hash is not the previous record's recomputed hash ("" for the
    first), or (when a signer is given) if its hmac does not match. The first
    failing record and every record after it are reported as untrusted.
    """
    rows = list(records)
    prev_hash = ""

    for index, row in enumerate(rows):
        try:
            recomputed, reason = _check_row(row, prev_hash, signer)
        except (KeyError, TypeError, ValueError) as exc:
            # Unparseable fields (edited JSON, non-numeric counts) count as tampering
            recomputed, reason = None, f"malformed record: {exc.__class__.__name__}"

        if reason:
            return ChainVerification(
                ok=False,
                checked=len(rows),
                first_invalid_index=index,
                first_invalid_id=row.get("id"),
                reason=reason,
                untrusted_ids=[r.get("id", i) for i, r in enumerate(rows) if i >= index],
            )

        prev_hash = recomputed

    return ChainVerification(ok=True, checked=len(rows))


def _check_row(row: Mapping[str, Any], prev_hash: str, signer: Optional[Signer]):
    recomputed = compute_chain_hash(row)

    if (row.get("chain_prev_hash") or "") != prev_hash:
        return recomputed, "chain_prev_hash does not match previous record"
    if recomputed != row.get("chain_hash"):
        return recomputed, "chain_hash mismatch"
    if signer is not None and not signer.verify(
        row.get("hmac"),
        token=row["token"],
        school=row["school"],
        choices=_choices(row["choices"]),
        submitted_at=_parse_timestamp(row["submitted_at"]),
        request_id=row["request_id"],
    ):
        return recomputed, "hmac mismatch"
    return recomputed, None


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)
