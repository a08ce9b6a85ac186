from dotenv import load_dotenv
from flask import Flask

from .config import Config, DEV_HMAC_KEY, DEV_IP_SALT
from .errors import register_error_handlers
from .extensions import db, migrate, jwt, swagger
from .swagger_config import swagger_template
from .middleware.request_id import init_request_id
from .utils.ip_mask import VALID_MODES
from .utils.security import admin_password_hash
from .utils.voting_window import parse_instant
from . import database

load_dotenv()


def _apply_audit_defaults(app: Flask) -> None:
    """
    Missing secrets fall back to fixed development values so signing stays
    deterministic and verifiable; deployment must set real ones.
    """
    if not app.config.get("AUDIT_HMAC_KEY"):
        app.logger.warning("AUDIT_HMAC_KEY is not set; signing with the development key %r", DEV_HMAC_KEY)
        app.config["AUDIT_HMAC_KEY"] = DEV_HMAC_KEY
    if not app.config.get("AUDIT_SALT"):
        app.logger.warning("AUDIT_SALT is not set; using the development salt")
        app.config["AUDIT_SALT"] = DEV_IP_SALT

    mode = (app.config.get("AUDIT_IP_MODE") or "subnet").strip().lower()
    if mode not in VALID_MODES:
        raise RuntimeError(f"AUDIT_IP_MODE must be one of {VALID_MODES}, got {mode!r}")
    app.config["AUDIT_IP_MODE"] = mode


def _apply_voting_window(app: Flask) -> None:
    """Parse VOTING_START / VOTING_END once so a typo stops startup instead of every request."""
    bounds = {}
    for key in ("VOTING_START", "VOTING_END"):
        try:
            bounds[key] = parse_instant(app.config.get(key))
        except ValueError:
            raise RuntimeError(f"{key} must be an ISO-8601 timestamp, got {app.config.get(key)!r}") from None

    start, end = bounds["VOTING_START"], bounds["VOTING_END"]
    if start and end and start >= end:
        raise RuntimeError("VOTING_START must be before VOTING_END")
    app.config.update(bounds)


def create_app(config_class=Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)
    _apply_audit_defaults(app)
    _apply_voting_window(app)
    app.config["ADMIN_PASSWORD_HASH"] = admin_password_hash(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    swagger.template = swagger_template(app)
    swagger.init_app(app)
    database.init_app(app)

    # Middleware + errors
    init_request_id(app)
    register_error_handlers(app)

    # Blueprint imports
    from .api.auth.routes import auth_bp
    from .api.voting.routes import voting_bp
    from .api.admin.routes import admin_bp

    # Blueprints
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(voting_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    from .cli import register_cli
    register_cli(app)

    # Health check
    @app.get("/health")
    def health():
        return {"status": "ok"}, 200

    return app
