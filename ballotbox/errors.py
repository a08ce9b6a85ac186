from flask import jsonify, g, current_app
from werkzeug.exceptions import HTTPException


class BallotError(Exception):
    """Base for errors that carry a client-facing code and message."""

    code = "BALLOT_ERROR"
    status = 400
    message = "Request could not be processed"

    def __init__(self, message: str | None = None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class RedemptionRejected(BallotError):
    """Submission refused before any mutation; the transaction was rolled back."""


class InvalidOrUsedToken(RedemptionRejected):
    code = "INVALID_OR_USED_TOKEN"
    status = 409
    message = "Invalid or already used token"


class ChoiceCountOutOfRange(RedemptionRejected):
    code = "CHOICE_COUNT_OUT_OF_RANGE"
    status = 400

    def __init__(self, max_choices: int, given: int):
        super().__init__(
            f"Between 1 and {max_choices} choices may be submitted",
            details={"max_choices": max_choices, "given": given},
        )
        self.max_choices = max_choices
        self.given = given


class UnknownChoice(RedemptionRejected):
    code = "UNKNOWN_CHOICE"
    status = 400
    message = "Choice is not a registered candidate"


class VotingNotOpen(RedemptionRejected):
    code = "VOTING_NOT_OPEN"
    status = 403
    message = "Voting is not open"


class StorageFailure(BallotError):
    code = "STORAGE_FAILURE"
    status = 500
    message = "Failed to record vote, please try again"


class TokenGenerationFailed(BallotError):
    code = "TOKEN_GENERATION_FAILED"
    status = 500
    message = "Could not generate unique tokens"


class EmptyResult(BallotError):
    """Export requested but there is nothing to export (fail closed, no empty artifact)."""

    code = "EMPTY_RESULT"
    status = 404
    message = "Nothing to export"

    def __init__(self, message: str | None = None, details=None, code: str | None = None):
        super().__init__(message, details)
        if code:
            self.code = code


class AuditAppendFailure(Exception):
    """Vote committed but its audit record could not be written."""

    def __init__(self, request_id: str, attempts: int):
        super().__init__(f"audit append failed request_id={request_id} attempts={attempts}")
        self.request_id = request_id
        self.attempts = attempts


def _payload(code: str, message: str, details=None, status=400):
    return (
        jsonify({
            "success": False,
            "error": {
                "code": code,
                "message": message,
                "details": details or None,
            },
            "request_id": getattr(g, "request_id", None),
        }),
        status,
    )


def register_error_handlers(app):
    @app.errorhandler(BallotError)
    def handle_ballot_error(e: BallotError):
        return _payload(e.code, e.message, details=e.details, status=e.status)

    # Generic HTTP errors (404, 403, 401, etc.)
    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        desc = e.description

        # If we pass structured error info via abort(description=dict)
        if isinstance(desc, dict):
            code = desc.get("code") or e.name.replace(" ", "_").upper()
            message = desc.get("message") or e.name
            details = desc.get("errors") or desc.get("details")
            return _payload(code=code, message=message, details=details, status=e.code or 400)

        return _payload(
            code=e.name.replace(" ", "_").upper(),
            message=desc or e.name,
            details=None,
            status=e.code or 400
        )

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        current_app.logger.exception("Unhandled exception request_id=%s", getattr(g, "request_id", None))
        # Don't leak internals
        return _payload("INTERNAL_SERVER_ERROR", "An unexpected error occurred", status=500)
