from flask import Blueprint, request
from flasgger import swag_from

from ...schemas.vote import BallotRequestSchema, VoteSubmitSchema, BallotSchema, VoteReceiptSchema
from ...services import get_redemption_service, get_token_store, get_vote_ledger
from ...services.token_store import normalize_token
from ...utils.request_context import client_address, user_agent
from ...utils.validation import validate_or_abort
from ...utils.voting_window import require_voting_open, voting_status

voting_bp = Blueprint("voting", __name__)

ballot_request_schema = BallotRequestSchema()
vote_submit_schema = VoteSubmitSchema()
ballot_schema = BallotSchema()
vote_receipt_schema = VoteReceiptSchema()


@voting_bp.get("/voting/status")
@swag_from({
    "tags": ["Voting"],
    "summary": "Voting window state (pre / open / post)",
    "responses": {200: {"description": "OK"}},
})
def status():
    return voting_status(), 200


@voting_bp.post("/ballot")
@require_voting_open
@swag_from({
    "tags": ["Voting"],
    "summary": "Open the ballot for an unused token",
    "parameters": [{
        "in": "body",
        "name": "body",
        "required": True,
        "schema": {
            "type": "object",
            "properties": {"token": {"type": "string", "example": "ABCD2345"}},
            "required": ["token"],
        },
    }],
    "responses": {
        200: {"description": "School, choice limit and candidate list"},
        400: {"description": "Validation error"},
        403: {"description": "Voting not open"},
        409: {"description": "Invalid or already used token"},
    },
})
def open_ballot():
    payload = request.get_json(silent=True) or {}
    payload = validate_or_abort(ballot_request_schema, payload)

    token = normalize_token(payload["token"])
    school = get_token_store().lookup(token)
    service = get_redemption_service()

    return ballot_schema.dump({
        "token": token,
        "school": school.value,
        "max_choices": service.max_choices_for(school),
        "candidates": get_vote_ledger().candidates(school),
    }), 200


@voting_bp.post("/votes")
@require_voting_open
@swag_from({
    "tags": ["Voting"],
    "summary": "Redeem a token and cast its choices",
    "parameters": [{
        "in": "body",
        "name": "body",
        "required": True,
        "schema": {
            "type": "object",
            "properties": {
                "token": {"type": "string", "example": "ABCD2345"},
                "choices": {"type": "array", "items": {"type": "string"}, "example": ["Anna GS", "Clara GS"]},
            },
            "required": ["token", "choices"],
        },
    }],
    "responses": {
        201: {"description": "Votes recorded"},
        400: {"description": "Validation error / choice count out of range"},
        403: {"description": "Voting not open"},
        409: {"description": "Invalid or already used token"},
        500: {"description": "Storage failure"},
    },
})
def submit_votes():
    payload = request.get_json(silent=True) or {}
    payload = validate_or_abort(vote_submit_schema, payload)

    # Rejections and storage failures propagate as BallotError -> error envelope
    redemption = get_redemption_service().submit(
        payload["token"],
        payload["choices"],
        user_agent=user_agent(),
        source_address=client_address(),
    )

    return vote_receipt_schema.dump({
        "message": "Votes recorded",
        "school": redemption.school.value,
        "choices": redemption.choices,
        "request_id": redemption.request_id,
    }), 201
