from flask import Blueprint, request, current_app
from flasgger import swag_from
from flask_jwt_extended import create_access_token

from ...schemas.auth import AdminLoginSchema, TokenSchema
from ...services import get_audit_chain
from ...utils.rbac import ELECTION_ADMIN
from ...utils.security import check_admin_password
from ...utils.validation import validate_or_abort

auth_bp = Blueprint("auth", __name__)

login_schema = AdminLoginSchema()
token_schema = TokenSchema()


@auth_bp.post("/login")
@swag_from({
    "tags": ["Auth"],
    "summary": "Admin login",
    "description": "Checks the election admin password and returns an access token.",
    "parameters": [{
        "in": "body",
        "name": "body",
        "required": True,
        "schema": {
            "type": "object",
            "properties": {"password": {"type": "string"}},
            "required": ["password"],
        },
    }],
    "responses": {
        200: {"description": "Login successful, token returned"},
        400: {"description": "Validation error"},
        401: {"description": "Invalid credentials"},
    },
})
def login():
    payload = request.get_json(silent=True) or {}
    payload = validate_or_abort(login_schema, payload)

    chain = get_audit_chain()

    if not check_admin_password(payload["password"]):
        chain.safe_log_admin("ADMIN_LOGIN_FAILED", {})
        current_app.logger.warning("Failed admin login from %s", request.remote_addr)
        return {"message": "Invalid password"}, 401

    access_token = create_access_token(identity="admin", additional_claims={"role": ELECTION_ADMIN})
    chain.safe_log_admin("ADMIN_LOGIN", {})

    return token_schema.dump({"access_token": access_token}), 200
