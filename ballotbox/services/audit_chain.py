from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import AuditAppendFailure
from ..models.audit_log import AdminAudit, AuditChainHead, VoteAudit
from ..models.school import School
from ..utils.chain import ChainVerification, compute_chain_hash, verify_chain
from ..utils.ip_mask import IpMasker
from ..utils.retry import RetriesExhausted, with_bounded_retry
from ..utils.signing import Signer, iso_timestamp, truncate_to_millis
from .vote_ledger import VoteLedger


@dataclass
class SubmissionFacts:
    token: str
    school: School
    choices: Sequence[str]
    submitted_at: datetime
    request_id: str
    user_agent: Optional[str] = None
    source_address: Optional[str] = None


@dataclass
class ReconciliationReport:
    redeemed_tokens: int
    audit_records: int
    head_record_count: int

    @property
    def ok(self) -> bool:
        return self.redeemed_tokens == self.audit_records == self.head_record_count

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "redeemed_tokens": self.redeemed_tokens,
            "audit_records": self.audit_records,
            "head_record_count": self.head_record_count,
            "missing_audit_records": self.redeemed_tokens - self.audit_records,
        }


def record_as_dict(record: VoteAudit) -> dict:
    return {
        "id": record.id,
        "token": record.token,
        "school": record.school.value,
        "choices": list(record.choices or []),
        "choice_count": record.choice_count,
        "submitted_at": iso_timestamp(record.submitted_at),
        "user_agent": record.user_agent,
        "masked_ip": record.masked_ip,
        "request_id": record.request_id,
        "hmac": record.hmac,
        "chain_prev_hash": record.chain_prev_hash or "",
        "chain_hash": record.chain_hash,
    }


class AuditChain:
    """
    Append-only, hash-chained log of accepted submissions, plus the plain
    admin action log.

    Appends are serialized on the audit_chain_head row: the first statement of
    every append transaction updates that row, which blocks other appenders
    until commit (row lock on PostgreSQL, write lock on SQLite). Reading the
    previous hash, hashing and inserting therefore happen as one unit.
    """

    def __init__(self, session, signer: Signer, masker: IpMasker, append_attempts: int = 3):
        self.session = session
        self.signer = signer
        self.masker = masker
        self.append_attempts = append_attempts

    @classmethod
    def from_config(cls, session, config) -> "AuditChain":
        return cls(
            session,
            signer=Signer(config["AUDIT_HMAC_KEY"]),
            masker=IpMasker(config["AUDIT_IP_MODE"], config["AUDIT_SALT"]),
            append_attempts=config.get("AUDIT_APPEND_ATTEMPTS", 3),
        )

    # ---- vote audit ----

    def append(self, facts: SubmissionFacts) -> VoteAudit:
        """
        Write one record for a committed redemption. Retries storage errors
        with identical facts; raises AuditAppendFailure once attempts run out.
        """
        submitted_at = truncate_to_millis(facts.submitted_at)
        masked_ip = self.masker.mask(facts.source_address)
        tag = self.signer.sign(
            facts.token, facts.school.value, facts.choices, submitted_at, facts.request_id
        )

        def attempt() -> VoteAudit:
            try:
                record = self._append_once(facts, submitted_at, masked_ip, tag)
                self.session.commit()
                return record
            except IntegrityError:
                self.session.rollback()
                # An earlier attempt may have committed before reporting failure
                existing = self.find_by_request_id(facts.request_id)
                if existing is not None:
                    return existing
                raise
            except SQLAlchemyError:
                self.session.rollback()
                raise

        def log_retry(attempt_no: int, exc: BaseException) -> None:
            current_app.logger.warning(
                "Audit append attempt %s/%s failed request_id=%s: %s",
                attempt_no, self.append_attempts, facts.request_id, exc,
            )

        try:
            return with_bounded_retry(
                attempt,
                retry_on=(SQLAlchemyError,),
                attempts=self.append_attempts,
                on_retry=log_retry,
            )
        except RetriesExhausted as exc:
            raise AuditAppendFailure(facts.request_id, exc.attempts) from exc.last_error

    def _append_once(self, facts: SubmissionFacts, submitted_at: datetime, masked_ip, tag: str) -> VoteAudit:
        head_id = AuditChainHead.SINGLETON_ID
        locked = self.session.execute(
            update(AuditChainHead)
            .where(AuditChainHead.id == head_id)
            .values(record_count=AuditChainHead.record_count + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if locked == 0:
            # First append on a fresh schema; a concurrent creator makes this
            # flush fail and the attempt is retried.
            self.session.add(AuditChainHead(id=head_id, record_count=1, tail_hash=""))
            self.session.flush()

        prev_hash = self.session.execute(
            select(VoteAudit.chain_hash).order_by(VoteAudit.id.desc()).limit(1)
        ).scalar_one_or_none() or ""

        fields = {
            "token": facts.token,
            "school": facts.school.value,
            "choices": list(facts.choices),
            "choice_count": len(facts.choices),
            "submitted_at": submitted_at,
            "user_agent": facts.user_agent or None,
            "masked_ip": masked_ip,
            "request_id": facts.request_id,
            "hmac": tag,
            "chain_prev_hash": prev_hash,
        }
        fields["chain_hash"] = compute_chain_hash(fields)

        record = VoteAudit(**{**fields, "school": facts.school})
        self.session.add(record)
        self.session.flush()

        self.session.execute(
            update(AuditChainHead)
            .where(AuditChainHead.id == head_id)
            .values(tail_hash=fields["chain_hash"], updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return record

    def find_by_request_id(self, request_id: str) -> Optional[VoteAudit]:
        return self.session.execute(
            select(VoteAudit).where(VoteAudit.request_id == request_id)
        ).scalar_one_or_none()

    def records(self) -> List[VoteAudit]:
        return list(self.session.execute(select(VoteAudit).order_by(VoteAudit.id)).scalars())

    def verify(self) -> ChainVerification:
        rows = [record_as_dict(r) for r in self.records()]
        result = verify_chain(rows, signer=self.signer)
        if not result.ok:
            current_app.logger.error(
                "Audit chain verification failed at id=%s: %s", result.first_invalid_id, result.reason
            )
        return result

    def reconcile(self) -> ReconciliationReport:
        """Compare redemptions (distinct tokens with votes) against audit records."""
        head = self.session.get(AuditChainHead, AuditChainHead.SINGLETON_ID)
        report = ReconciliationReport(
            redeemed_tokens=VoteLedger(self.session).redeemed_token_count(),
            audit_records=self.session.execute(select(func.count(VoteAudit.id))).scalar_one(),
            head_record_count=head.record_count if head else 0,
        )
        if not report.ok:
            current_app.logger.error("Audit reconciliation mismatch: %s", report.as_dict())
        return report

    # ---- admin audit ----

    def log_admin(self, action: str, meta: Optional[dict] = None) -> AdminAudit:
        """Stage an admin record in the caller's transaction."""
        entry = AdminAudit(action=action, meta=meta or {})
        self.session.add(entry)
        return entry

    def safe_log_admin(self, action: str, meta: Optional[dict] = None) -> None:
        """
        Best-effort admin audit so read/export endpoints won't fail if auditing fails.
        """
        try:
            self.log_admin(action, meta)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.exception("Admin audit logging failed: %s", action)

    def admin_records(self) -> List[AdminAudit]:
        return list(self.session.execute(select(AdminAudit).order_by(AdminAudit.id)).scalars())
