import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import AuditAppendFailure, ChoiceCountOutOfRange, RedemptionRejected, StorageFailure, UnknownChoice
from ..models.school import School
from .audit_chain import AuditChain, SubmissionFacts
from .token_store import TokenStore, normalize_token
from .vote_ledger import VoteLedger


@dataclass
class Redemption:
    token: str
    school: School
    choices: List[str]
    request_id: str
    submitted_at: datetime
    audit_record_id: Optional[int] = None
    audit_error: Optional[str] = field(default=None, repr=False)


class RedemptionService:
    """
    submit() consumes a token and records its votes in one transaction:

        claim token (row lock) -> check choice bound -> insert votes
        -> mark token used -> commit

    Nothing is persisted unless all of it commits. The audit record is
    appended after the commit; if that append fails the vote stands (it cannot
    be re-run without double counting) and the gap is logged as critical.
    """

    def __init__(
        self,
        session,
        tokens: TokenStore,
        ledger: VoteLedger,
        audit: AuditChain,
        max_choices: dict,
        enforce_candidate_list: bool = False,
    ):
        self.session = session
        self.tokens = tokens
        self.ledger = ledger
        self.audit = audit
        self.max_choices = max_choices
        self.enforce_candidate_list = enforce_candidate_list

    @classmethod
    def from_config(cls, session, config) -> "RedemptionService":
        return cls(
            session,
            tokens=TokenStore(session, config["TOKEN_LENGTH"], config["TOKEN_MAX_ATTEMPTS"]),
            ledger=VoteLedger(session),
            audit=AuditChain.from_config(session, config),
            max_choices=max_choices_from_config(config),
            enforce_candidate_list=config.get("ENFORCE_CANDIDATE_LIST", False),
        )

    def max_choices_for(self, school: School) -> int:
        return self.max_choices[school]

    def submit(
        self,
        raw_token,
        choices: Sequence[str],
        *,
        user_agent: Optional[str] = None,
        source_address: Optional[str] = None,
    ) -> Redemption:
        token = normalize_token(raw_token)
        choices = [str(c) for c in (choices or [])]

        try:
            school = self.tokens.claim(token)

            limit = self.max_choices_for(school)
            if not choices or len(choices) > limit:
                raise ChoiceCountOutOfRange(limit, len(choices))

            if self.enforce_candidate_list:
                self._check_candidates(school, choices)

            self.ledger.record(token, school, choices)
            self.tokens.mark_used(token)
            self.session.commit()

        except RedemptionRejected as e:
            self.session.rollback()
            current_app.logger.info("Submission rejected code=%s", e.code)
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.exception("DB error while recording votes")
            raise StorageFailure() from exc
        except Exception:
            self.session.rollback()
            raise

        redemption = Redemption(
            token=token,
            school=school,
            choices=choices,
            request_id=str(uuid.uuid4()),
            submitted_at=datetime.utcnow(),
        )
        self._append_audit(redemption, user_agent, source_address)
        return redemption

    def _check_candidates(self, school: School, choices: Sequence[str]) -> None:
        registered = set(self.ledger.candidates(school))
        unknown = sorted({c for c in choices if c not in registered})
        if unknown:
            raise UnknownChoice(details={"unknown": unknown})

    def _append_audit(self, redemption: Redemption, user_agent, source_address) -> None:
        facts = SubmissionFacts(
            token=redemption.token,
            school=redemption.school,
            choices=redemption.choices,
            submitted_at=redemption.submitted_at,
            request_id=redemption.request_id,
            user_agent=user_agent,
            source_address=source_address,
        )
        try:
            record = self.audit.append(facts)
            redemption.audit_record_id = record.id
        except AuditAppendFailure as exc:
            # Past the point of no return: the vote is committed and stays.
            redemption.audit_error = str(exc)
            current_app.logger.critical(
                "AUDIT GAP: vote committed without audit record request_id=%s token=%s school=%s choice_count=%s",
                redemption.request_id, redemption.token, redemption.school.value, len(redemption.choices),
                exc_info=True,
            )
            self.audit.safe_log_admin("AUDIT_APPEND_FAILED", {
                "request_id": redemption.request_id,
                "school": redemption.school.value,
                "attempts": exc.attempts,
            })


def max_choices_from_config(config) -> dict:
    return {
        School.PRIMARY: int(config["MAX_CHOICES_PRIMARY"]),
        School.SECONDARY: int(config["MAX_CHOICES_SECONDARY"]),
    }
