from flask import current_app
from werkzeug.security import generate_password_hash, check_password_hash


def hash_password(raw_password: str) -> str:
    return generate_password_hash(raw_password)


def verify_password(raw_password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, raw_password)


def admin_password_hash(app) -> str:
    """Resolve the admin hash once at startup; a plain ADMIN_PASSWORD is hashed here."""
    configured = app.config.get("ADMIN_PASSWORD_HASH")
    if configured:
        return configured
    return hash_password(app.config["ADMIN_PASSWORD"])


def check_admin_password(raw_password: str) -> bool:
    return verify_password(raw_password or "", current_app.config["ADMIN_PASSWORD_HASH"])
