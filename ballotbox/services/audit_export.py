"""
Audit export: the artifact a third party uses to re-verify the chain offline.

vote_audit rows carry every stored field (choices as a JSON text array),
admin_audit rows carry their meta as JSON text, and a version marker records
when the export was taken and from which build.
"""
import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List

from ..errors import EmptyResult
from ..models.audit_log import AdminAudit
from ..utils.chain import ChainVerification, verify_chain
from ..utils.signing import Signer, iso_timestamp
from .audit_chain import AuditChain, record_as_dict

VOTE_AUDIT_COLUMNS = [
    "id", "token", "school", "choices", "choice_count", "submitted_at",
    "user_agent", "masked_ip", "request_id", "hmac", "chain_prev_hash", "chain_hash",
]
ADMIN_AUDIT_COLUMNS = ["id", "action", "meta", "at"]


@dataclass
class AuditExport:
    vote_audit: List[dict]
    admin_audit: List[dict]
    commit: str
    exported_at: str

    def as_dict(self) -> dict:
        return {
            "vote_audit": self.vote_audit,
            "admin_audit": self.admin_audit,
            "version": {"commit": self.commit, "exported_at": self.exported_at},
        }

    def files(self) -> Dict[str, str]:
        return {
            "vote_audit.csv": rows_to_csv(self.vote_audit, VOTE_AUDIT_COLUMNS),
            "admin_audit.csv": rows_to_csv(self.admin_audit, ADMIN_AUDIT_COLUMNS),
            "VERSION.txt": f"commit={self.commit}\nexported_at={self.exported_at}\n",
        }


def _admin_row(entry: AdminAudit) -> dict:
    return {
        "id": entry.id,
        "action": entry.action,
        "meta": json.dumps(entry.meta or {}, sort_keys=True, ensure_ascii=False),
        "at": iso_timestamp(entry.at),
    }


def _vote_row(record) -> dict:
    row = record_as_dict(record)
    row["choices"] = json.dumps(row["choices"], ensure_ascii=False)
    return row


def build_audit_export(chain: AuditChain, commit: str) -> AuditExport:
    """Snapshot both audit tables; fails closed when no submission has been recorded."""
    vote_rows = [_vote_row(r) for r in chain.records()]
    if not vote_rows:
        raise EmptyResult("No audit records available", code="NO_AUDIT_RECORDS")
    admin_rows = [_admin_row(a) for a in chain.admin_records()]
    return AuditExport(
        vote_audit=vote_rows,
        admin_audit=admin_rows,
        commit=commit,
        exported_at=iso_timestamp(datetime.utcnow()),
    )


def rows_to_csv(rows: List[dict], columns: List[str]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: ("" if row.get(k) is None else row.get(k)) for k in columns})
    return buf.getvalue()


def _int_or_text(value):
    # Left as text when edited into a non-number; verify_chain flags the row
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


def read_vote_audit_csv(text: str) -> List[dict]:
    """Parse an exported vote_audit.csv back into rows for verify_chain."""
    rows = []
    for raw in csv.DictReader(io.StringIO(text)):
        row = dict(raw)
        row["id"] = _int_or_text(row["id"]) if row.get("id") else None
        row["choice_count"] = _int_or_text(row.get("choice_count"))
        row["user_agent"] = row.get("user_agent") or None
        row["masked_ip"] = row.get("masked_ip") or None
        row["chain_prev_hash"] = row.get("chain_prev_hash") or ""
        rows.append(row)
    return rows


def verify_export(text: str, hmac_key: str = None) -> ChainVerification:
    signer = Signer(hmac_key) if hmac_key else None
    return verify_chain(read_vote_audit_csv(text), signer=signer)
