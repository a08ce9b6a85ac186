from flask import Blueprint, request, current_app, Response, abort
from flasgger import swag_from
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from flask_jwt_extended import jwt_required

from ...errors import StorageFailure
from ...extensions import db
from ...models.school import School
from ...schemas.admin import TokenGenerateSchema, CandidateCreateSchema
from ...services import get_audit_chain, get_token_store, get_vote_ledger
from ...services.audit_export import build_audit_export, rows_to_csv
from ...utils.rbac import roles_required, ELECTION_ADMIN
from ...utils.validation import validate_or_abort

admin_bp = Blueprint("admin", __name__)

token_generate_schema = TokenGenerateSchema()
candidate_create_schema = CandidateCreateSchema()


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _school_arg():
    raw = request.args.get("school")
    if not raw:
        return None
    try:
        return School.parse(raw)
    except ValueError:
        abort(400, description={"code": "VALIDATION_ERROR", "message": "Unknown school", "errors": {"school": [raw]}})


@admin_bp.post("/tokens")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({
    "tags": ["Admin"],
    "summary": "Generate single-use tokens for a school",
    "parameters": [{
        "in": "body",
        "name": "body",
        "required": True,
        "schema": {
            "type": "object",
            "properties": {
                "school": {"type": "string", "enum": ["primary", "secondary"]},
                "count": {"type": "integer", "example": 50},
            },
            "required": ["school"],
        },
    }],
    "responses": {201: {"description": "Tokens created"}, 400: {"description": "Validation error"}, 500: {"description": "Generation failed"}},
})
def generate_tokens():
    payload = request.get_json(silent=True) or {}
    payload = validate_or_abort(token_generate_schema, payload)

    limit = current_app.config["TOKEN_BATCH_LIMIT"]
    if payload["count"] > limit:
        return {"message": f"At most {limit} tokens per batch"}, 400

    school = School.parse(payload["school"])
    tokens = get_token_store().generate(school, payload["count"], audit=get_audit_chain())

    return {"school": school.value, "count": len(tokens), "tokens": tokens}, 201


@admin_bp.get("/export/tokens")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({
    "tags": ["Admin"],
    "summary": "Export tokens as CSV (optionally one school)",
    "parameters": [{"in": "query", "name": "school", "type": "string", "required": False}],
    "responses": {200: {"description": "CSV"}, 404: {"description": "No tokens"}},
})
def export_tokens():
    school = _school_arg()
    rows = get_token_store().export_rows(school)

    get_audit_chain().safe_log_admin("TOKENS_EXPORTED_CSV", {
        "schools": [school.value] if school else sorted({r["school"] for r in rows}),
        "count": len(rows),
    })

    filename = f"tokens-{school.value}.csv" if school else "tokens.csv"
    return _csv_response(rows_to_csv(rows, ["token", "school", "used"]), filename)


@admin_bp.get("/candidates")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({"tags": ["Admin"], "summary": "List registered candidates", "responses": {200: {}}})
def list_candidates():
    return {"candidates": get_vote_ledger().all_candidates()}, 200


@admin_bp.post("/candidates")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({
    "tags": ["Admin"],
    "summary": "Register a candidate for a school",
    "responses": {201: {"description": "Created"}, 400: {"description": "Validation error"}, 409: {"description": "Already registered"}},
})
def add_candidate():
    payload = request.get_json(silent=True) or {}
    payload = validate_or_abort(candidate_create_schema, payload)

    school = School.parse(payload["school"])
    name = payload["name"].strip()

    try:
        candidate = get_vote_ledger().add_candidate(school, name)
        get_audit_chain().log_admin("CANDIDATE_ADDED", {"school": school.value, "name": name})
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return {"message": "Candidate already registered for this school"}, 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("DB error adding candidate")
        raise StorageFailure("Failed to add candidate") from exc

    return {"id": candidate.id, "school": school.value, "name": name}, 201


@admin_bp.get("/overview")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({"tags": ["Admin"], "summary": "Vote tallies and token usage", "responses": {200: {}}})
def overview():
    ledger = get_vote_ledger()
    return {
        "results": ledger.tally(),
        "total_votes": ledger.total(),
        "tokens": get_token_store().stats(),
    }, 200


@admin_bp.get("/export/results")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({
    "tags": ["Admin"],
    "summary": "Export tallies per school and candidate as CSV",
    "responses": {200: {"description": "CSV"}, 404: {"description": "No votes"}},
})
def export_results():
    rows = get_vote_ledger().export_tally()

    get_audit_chain().safe_log_admin("RESULTS_EXPORTED_CSV", {
        "schools": sorted({r["school"] for r in rows}),
    })

    return _csv_response(rows_to_csv(rows, ["school", "choice", "count"]), "results.csv")


@admin_bp.get("/export/audit")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({
    "tags": ["Admin"],
    "summary": "Export the vote audit chain and admin log for offline verification",
    "responses": {200: {"description": "Audit bundle"}, 404: {"description": "No audit records"}},
})
def export_audit():
    chain = get_audit_chain()
    bundle = build_audit_export(chain, current_app.config["BUILD_COMMIT"])
    chain.safe_log_admin("AUDIT_EXPORTED", {
        "vote_records": len(bundle.vote_audit),
        "admin_records": len(bundle.admin_audit),
    })
    return bundle.as_dict(), 200


@admin_bp.get("/audit/verify")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({"tags": ["Admin"], "summary": "Recompute the audit hash chain", "responses": {200: {}}})
def verify_audit():
    chain = get_audit_chain()
    result = chain.verify()
    chain.safe_log_admin("AUDIT_VERIFIED", {"ok": result.ok, "checked": result.checked})
    return result.as_dict(), 200


@admin_bp.get("/audit/reconcile")
@jwt_required()
@roles_required(ELECTION_ADMIN)
@swag_from({"tags": ["Admin"], "summary": "Compare redemptions with audit records", "responses": {200: {}}})
def reconcile_audit():
    chain = get_audit_chain()
    report = chain.reconcile()
    chain.safe_log_admin("AUDIT_RECONCILED", report.as_dict())
    return report.as_dict(), 200
