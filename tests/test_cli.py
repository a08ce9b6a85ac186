import pytest

from ballotbox.extensions import db
from ballotbox.models import School, Token
from ballotbox.services import get_redemption_service


@pytest.fixture
def voted_app(file_app):
    with file_app.app_context():
        for name in ("CLI00001", "CLI00002"):
            db.session.add(Token(token=name, school=School.PRIMARY, used=False))
        db.session.commit()
        service = get_redemption_service()
        service.submit("CLI00001", ["Anna GS", "Clara GS"], source_address="203.0.113.5")
        service.submit("CLI00002", ["Bernd GS"], user_agent="kiosk/1.0")
        db.session.remove()
    return file_app


def test_init_db(file_app):
    result = file_app.test_cli_runner().invoke(args=["init-db"])
    assert result.exit_code == 0
    assert "Database initialised." in result.output


def test_export_then_verify(voted_app, tmp_path):
    runner = voted_app.test_cli_runner()
    out = tmp_path / "audit"

    exported = runner.invoke(args=["audit", "export", str(out)])
    assert exported.exit_code == 0, exported.output
    assert sorted(p.name for p in out.iterdir()) == ["VERSION.txt", "admin_audit.csv", "vote_audit.csv"]
    assert "commit=test" in (out / "VERSION.txt").read_text()

    key = voted_app.config["AUDIT_HMAC_KEY"]
    verified = runner.invoke(args=["audit", "verify", str(out / "vote_audit.csv"), "--hmac-key", key])
    assert verified.exit_code == 0, verified.output
    assert "OK: 2 records" in verified.output

    wrong_key = runner.invoke(args=["audit", "verify", str(out / "vote_audit.csv"), "--hmac-key", "nope"])
    assert wrong_key.exit_code != 0
    assert "hmac mismatch" in wrong_key.output


def test_verify_detects_edited_export(voted_app, tmp_path):
    runner = voted_app.test_cli_runner()
    out = tmp_path / "audit"
    runner.invoke(args=["audit", "export", str(out)])

    csv_path = out / "vote_audit.csv"
    csv_path.write_text(csv_path.read_text().replace("Bernd GS", "Mallory GS"))

    result = runner.invoke(args=["audit", "verify", str(csv_path)])
    assert result.exit_code != 0
    assert "Chain broken at row 1" in result.output


def test_export_with_no_records_fails(file_app, tmp_path):
    result = file_app.test_cli_runner().invoke(args=["audit", "export", str(tmp_path / "audit")])
    assert result.exit_code != 0
    assert "No audit records available" in result.output
    assert not (tmp_path / "audit").exists()


def test_reconcile(voted_app):
    result = voted_app.test_cli_runner().invoke(args=["audit", "reconcile"])
    assert result.exit_code == 0, result.output
    assert "redeemed_tokens=2" in result.output
    assert "audit_records=2" in result.output


def test_verify_reports_unparseable_export(voted_app, tmp_path):
    runner = voted_app.test_cli_runner()
    out = tmp_path / "audit"
    runner.invoke(args=["audit", "export", str(out)])

    csv_path = out / "vote_audit.csv"
    csv_path.write_text(csv_path.read_text().replace('"[""Bernd GS""]"', "Mallory GS"))

    result = runner.invoke(args=["audit", "verify", str(csv_path)])
    assert result.exit_code != 0
    assert "Chain broken at row 1" in result.output
    assert "malformed record" in result.output
    assert "Traceback" not in result.output
