import secrets
from typing import List, Optional

from flask import current_app
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import EmptyResult, InvalidOrUsedToken, StorageFailure, TokenGenerationFailed
from ..models.school import School
from ..models.token import Token
from ..utils.retry import RetriesExhausted, with_bounded_retry


def normalize_token(raw) -> str:
    """Trim and upper-case user input to match the generation alphabet."""
    return str(raw or "").strip().upper()


def generate_token(length: int = 8, alphabet: str = Token.ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


class TokenStore:
    """Owns token rows: bulk generation, claim under lock, read-only lookups."""

    def __init__(self, session, token_length: int = 8, max_attempts: int = 8):
        self.session = session
        self.token_length = token_length
        self.max_attempts = max_attempts

    # ---- redemption (caller owns the transaction) ----

    def claim(self, token: str) -> School:
        """
        Lock the unused token row and return its school.
        Must run inside the redemption transaction; mark_used() finishes the claim.
        """
        row = self.session.execute(
            select(Token.school)
            .where(Token.token == token, Token.used.is_(False))
            .with_for_update()
        ).first()
        if row is None:
            raise InvalidOrUsedToken()
        return row.school

    def mark_used(self, token: str) -> None:
        result = self.session.execute(
            update(Token)
            .where(Token.token == token, Token.used.is_(False))
            .values(used=True)
            .execution_options(synchronize_session=False)
        )
        # Lost a race to another redemption of the same token
        if result.rowcount != 1:
            raise InvalidOrUsedToken()

    # ---- reads ----

    def lookup(self, token: str) -> School:
        school = self.session.execute(
            select(Token.school).where(Token.token == token, Token.used.is_(False))
        ).scalar_one_or_none()
        if school is None:
            raise InvalidOrUsedToken()
        return school

    def stats(self) -> dict:
        rows = self.session.execute(
            select(Token.school, Token.used, func.count().label("n"))
            .group_by(Token.school, Token.used)
        ).all()

        per_school = {s.value: {"total": 0, "used": 0} for s in School}
        for school, used, n in rows:
            per_school[school.value]["total"] += n
            if used:
                per_school[school.value]["used"] += n

        return {
            "total": sum(v["total"] for v in per_school.values()),
            "used": sum(v["used"] for v in per_school.values()),
            "by_school": per_school,
        }

    def export_rows(self, school: Optional[School] = None) -> List[dict]:
        q = select(Token.token, Token.school, Token.used).order_by(Token.school, Token.token)
        if school is not None:
            q = q.where(Token.school == school)
        rows = [
            {"token": t.upper(), "school": s.value, "used": bool(u)}
            for t, s, u in self.session.execute(q).all()
        ]
        if not rows:
            raise EmptyResult("No tokens available", details={"school": school.value if school else None}, code="NO_TOKENS")
        return rows

    # ---- generation ----

    def generate(self, school: School, count: int, audit=None) -> List[str]:
        """
        Insert `count` fresh tokens for a school in one transaction.
        When an AuditChain is passed, TOKENS_GENERATED is logged in the same
        transaction.

        A collision redraws the token, up to max_attempts per token. If any
        token exhausts its attempts the whole batch is rolled back and
        TokenGenerationFailed is raised; nothing is committed partially.
        """
        if count < 1:
            raise ValueError("count must be >= 1")

        tokens: List[str] = []
        try:
            for _ in range(count):
                tokens.append(self._insert_unique(school))
            if audit is not None:
                audit.log_admin("TOKENS_GENERATED", {"school": school.value, "count": len(tokens)})
            self.session.commit()
        except RetriesExhausted as exc:
            self.session.rollback()
            current_app.logger.error(
                "Token generation failed after %s attempts school=%s generated=%s",
                exc.attempts, school.value, len(tokens),
            )
            raise TokenGenerationFailed(details={"school": school.value, "requested": count}) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.exception("DB error generating tokens school=%s", school.value)
            raise StorageFailure("Failed to generate tokens") from exc

        current_app.logger.info("Generated %s tokens school=%s", len(tokens), school.value)
        return tokens

    def _insert_unique(self, school: School) -> str:
        def attempt() -> str:
            candidate = generate_token(self.token_length)
            # Savepoint so a uniqueness violation only discards this draw
            with self.session.begin_nested():
                self.session.execute(insert(Token).values(token=candidate, school=school, used=False))
            return candidate

        def log_collision(attempt_no: int, exc: BaseException) -> None:
            current_app.logger.info("Token collision, redrawing (attempt %s/%s)", attempt_no, self.max_attempts)

        return with_bounded_retry(
            attempt,
            retry_on=(IntegrityError,),
            attempts=self.max_attempts,
            on_retry=log_collision,
        )
