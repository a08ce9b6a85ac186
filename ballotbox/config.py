import os
from datetime import timedelta
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent  # project root (where wsgi.py is)
load_dotenv(BASE_DIR / ".env")

DEV_HMAC_KEY = "dev-key-change-me"
DEV_IP_SALT = "change-me"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///" + str(BASE_DIR / "ballotbox.db"))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "jwt-dev-secret")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        minutes=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_MIN", "30"))
    )

    # Admin login (either a werkzeug hash or a plain password to hash at startup)
    ADMIN_PASSWORD_HASH = os.getenv("ADMIN_PASSWORD_HASH")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "test123")

    # Ballot rules
    MAX_CHOICES_PRIMARY = int(os.getenv("MAX_CHOICES_PRIMARY", "12"))
    MAX_CHOICES_SECONDARY = int(os.getenv("MAX_CHOICES_SECONDARY", "7"))
    ENFORCE_CANDIDATE_LIST = _env_bool("ENFORCE_CANDIDATE_LIST")

    # Voting window, ISO-8601; unset means open-ended
    VOTING_START = os.getenv("VOTING_START")
    VOTING_END = os.getenv("VOTING_END")

    # Tokens
    TOKEN_LENGTH = int(os.getenv("TOKEN_LENGTH", "8"))
    TOKEN_MAX_ATTEMPTS = int(os.getenv("TOKEN_MAX_ATTEMPTS", "8"))
    TOKEN_BATCH_LIMIT = int(os.getenv("TOKEN_BATCH_LIMIT", "5000"))

    # Audit chain
    AUDIT_HMAC_KEY = os.getenv("AUDIT_HMAC_KEY")
    AUDIT_SALT = os.getenv("AUDIT_SALT")
    AUDIT_IP_MODE = os.getenv("AUDIT_IP_MODE", "subnet")  # subnet | hash
    AUDIT_APPEND_ATTEMPTS = int(os.getenv("AUDIT_APPEND_ATTEMPTS", "3"))

    # Shown in audit exports
    BUILD_COMMIT = os.getenv("RENDER_GIT_COMMIT") or os.getenv("COMMIT") or "unknown"

    SWAGGER = {"title": "Ballotbox API", "uiversion": 3}


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "jwt-test-secret-with-enough-length-for-hs256"
    ADMIN_PASSWORD_HASH = None
    ADMIN_PASSWORD = "admin-pass"
    AUDIT_HMAC_KEY = "test-hmac-key"
    AUDIT_SALT = "test-salt"
    AUDIT_IP_MODE = "subnet"
    VOTING_START = None
    VOTING_END = None
    ENFORCE_CANDIDATE_LIST = False
    BUILD_COMMIT = "test"
