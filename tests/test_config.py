from datetime import datetime, timezone

import pytest

from ballotbox import create_app
from ballotbox import config
from ballotbox.config import DEV_HMAC_KEY, DEV_IP_SALT
from ballotbox.utils.security import check_admin_password


def test_missing_audit_secrets_fall_back_to_dev_values():
    class NoSecrets(config.TestConfig):
        AUDIT_HMAC_KEY = None
        AUDIT_SALT = ""

    app = create_app(NoSecrets)

    assert app.config["AUDIT_HMAC_KEY"] == DEV_HMAC_KEY
    assert app.config["AUDIT_SALT"] == DEV_IP_SALT


def test_ip_mode_is_normalised():
    class HashMode(config.TestConfig):
        AUDIT_IP_MODE = " HASH "

    assert create_app(HashMode).config["AUDIT_IP_MODE"] == "hash"


def test_unknown_ip_mode_refuses_to_start():
    class BadMode(config.TestConfig):
        AUDIT_IP_MODE = "plain"

    with pytest.raises(RuntimeError):
        create_app(BadMode)


def test_admin_password_is_hashed_at_startup(app):
    stored = app.config["ADMIN_PASSWORD_HASH"]

    assert stored and stored != config.TestConfig.ADMIN_PASSWORD
    assert check_admin_password(config.TestConfig.ADMIN_PASSWORD)
    assert not check_admin_password("wrong")


@pytest.mark.parametrize("key", ["VOTING_START", "VOTING_END"])
def test_malformed_voting_window_refuses_to_start(key):
    Broken = type("Broken", (config.TestConfig,), {key: "next tuesday"})

    with pytest.raises(RuntimeError, match=key):
        create_app(Broken)


def test_inverted_voting_window_refuses_to_start():
    class Inverted(config.TestConfig):
        VOTING_START = "2030-06-02T08:00:00Z"
        VOTING_END = "2030-06-01T08:00:00Z"

    with pytest.raises(RuntimeError):
        create_app(Inverted)


def test_voting_window_is_parsed_once():
    class Window(config.TestConfig):
        VOTING_START = "2000-01-01T08:00:00+02:00"
        VOTING_END = "2999-01-01T08:00:00Z"

    app = create_app(Window)

    assert app.config["VOTING_START"] == datetime(2000, 1, 1, 6, 0, tzinfo=timezone.utc)
    body = app.test_client().get("/api/voting/status").get_json()
    assert body["state"] == "open"
    assert body["starts_at"] == "2000-01-01T06:00:00+00:00"
