import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ballotbox.errors import ChoiceCountOutOfRange, InvalidOrUsedToken, StorageFailure, UnknownChoice
from ballotbox.extensions import db
from ballotbox.models import AdminAudit, AuditChainHead, School, Token, Vote, VoteAudit
from ballotbox.services import get_audit_chain, get_redemption_service
from ballotbox.services.audit_chain import AuditChain
from ballotbox.services.token_store import TokenStore
from ballotbox.services.vote_ledger import VoteLedger
from ballotbox.utils.chain import compute_chain_hash
from ballotbox.utils.signing import Signer, iso_timestamp


def boom(*args, **kwargs):
    raise OperationalError("INSERT", {}, Exception("disk I/O error"))


def votes_for(token):
    return db.session.execute(select(Vote).where(Vote.token == token).order_by(Vote.id)).scalars().all()


def audit_rows():
    return db.session.execute(select(VoteAudit).order_by(VoteAudit.id)).scalars().all()


def is_used(token):
    db.session.expire_all()
    return db.session.get(Token, token).used


def test_primary_submission_records_votes_and_audit(app, make_token):
    make_token("T1")

    redemption = get_redemption_service().submit(
        "t1", ["Anna GS", "Clara GS"], user_agent="pytest", source_address="203.0.113.77"
    )

    assert redemption.school is School.PRIMARY
    assert redemption.audit_record_id is not None
    assert is_used("T1")
    assert [(v.school, v.choice) for v in votes_for("T1")] == [
        (School.PRIMARY, "Anna GS"),
        (School.PRIMARY, "Clara GS"),
    ]

    [record] = audit_rows()
    assert record.school is School.PRIMARY
    assert record.choice_count == 2
    assert record.masked_ip == "203.0.113.0"
    assert record.user_agent == "pytest"
    assert record.request_id == redemption.request_id
    assert record.chain_prev_hash == ""

    signer = Signer(app.config["AUDIT_HMAC_KEY"])
    assert record.hmac == signer.sign("T1", "primary", ["Anna GS", "Clara GS"], record.submitted_at, record.request_id)


def test_second_submission_is_rejected(app, make_token):
    make_token("T1")
    service = get_redemption_service()
    service.submit("T1", ["Anna GS"])

    with pytest.raises(InvalidOrUsedToken):
        service.submit("T1", ["Clara GS"])

    assert [v.choice for v in votes_for("T1")] == ["Anna GS"]
    assert len(audit_rows()) == 1


def test_unknown_token_is_rejected(app):
    with pytest.raises(InvalidOrUsedToken):
        get_redemption_service().submit("NOPE2345", ["Anna GS"])


@pytest.mark.parametrize("school, count", [
    (School.PRIMARY, 0),
    (School.PRIMARY, 13),
    (School.SECONDARY, 0),
    (School.SECONDARY, 8),
])
def test_choice_bound_leaves_token_unused(app, make_token, school, count):
    make_token("BOUND234", school)

    with pytest.raises(ChoiceCountOutOfRange) as exc:
        get_redemption_service().submit("BOUND234", [f"C{i}" for i in range(count)])

    assert exc.value.details["given"] == count
    assert not is_used("BOUND234")
    assert votes_for("BOUND234") == []
    assert audit_rows() == []


@pytest.mark.parametrize("school, count", [(School.PRIMARY, 12), (School.SECONDARY, 7)])
def test_choice_bound_is_inclusive(app, make_token, school, count):
    make_token("LIMIT234", school)
    get_redemption_service().submit("LIMIT234", [f"C{i}" for i in range(count)])
    assert len(votes_for("LIMIT234")) == count


def test_duplicate_choices_are_kept(app, make_token):
    make_token("DUPE2345")
    get_redemption_service().submit("DUPE2345", ["Anna GS", "Anna GS"])

    assert [v.choice for v in votes_for("DUPE2345")] == ["Anna GS", "Anna GS"]
    assert audit_rows()[0].choice_count == 2


@pytest.mark.parametrize("target, method", [(VoteLedger, "record"), (TokenStore, "mark_used")])
def test_storage_failure_rolls_back_everything(app, make_token, monkeypatch, target, method):
    make_token("ATOM2345")
    original = getattr(target, method)

    def fail_after(self, *args, **kwargs):
        original(self, *args, **kwargs)
        boom()

    monkeypatch.setattr(target, method, fail_after)

    with pytest.raises(StorageFailure):
        get_redemption_service().submit("ATOM2345", ["Anna GS"])

    assert not is_used("ATOM2345")
    assert votes_for("ATOM2345") == []
    assert audit_rows() == []


def test_token_usable_after_storage_failure(app, make_token, monkeypatch):
    make_token("RETRY234")
    monkeypatch.setattr(VoteLedger, "record", boom)
    with pytest.raises(StorageFailure):
        get_redemption_service().submit("RETRY234", ["Anna GS"])

    monkeypatch.undo()
    get_redemption_service().submit("RETRY234", ["Anna GS"])
    assert is_used("RETRY234")


def test_candidate_list_enforced_when_enabled(app, make_token, make_candidates):
    app.config["ENFORCE_CANDIDATE_LIST"] = True
    make_candidates(School.PRIMARY, "Anna GS", "Clara GS")
    make_token("CAND2345")

    with pytest.raises(UnknownChoice) as exc:
        get_redemption_service().submit("CAND2345", ["Anna GS", "Zed GS"])
    assert exc.value.details == {"unknown": ["Zed GS"]}
    assert not is_used("CAND2345")

    get_redemption_service().submit("CAND2345", ["Clara GS"])
    assert is_used("CAND2345")


def test_chain_links_across_submissions(app, make_token):
    service = get_redemption_service()
    for i in range(5):
        make_token(f"CHAIN00{i}")
        service.submit(f"CHAIN00{i}", ["Anna GS", "Bernd GS"][: 1 + i % 2])

    rows = audit_rows()
    assert len(rows) == 5
    assert rows[0].chain_prev_hash == ""
    for prev, cur in zip(rows, rows[1:]):
        assert cur.chain_prev_hash == prev.chain_hash

    head = db.session.get(AuditChainHead, AuditChainHead.SINGLETON_ID)
    assert head.record_count == 5
    assert head.tail_hash == rows[-1].chain_hash
    assert get_audit_chain().verify().ok


def test_stored_record_hash_matches_recomputation(app, make_token):
    make_token("HASH2345")
    get_redemption_service().submit("HASH2345", ["Clara GS", "Anna GS"])

    record = audit_rows()[0]
    assert record.choices == ["Clara GS", "Anna GS"]
    assert record.chain_hash == compute_chain_hash({
        "token": record.token,
        "school": record.school.value,
        "choices": record.choices,
        "choice_count": record.choice_count,
        "submitted_at": iso_timestamp(record.submitted_at),
        "user_agent": record.user_agent,
        "masked_ip": record.masked_ip,
        "request_id": record.request_id,
        "hmac": record.hmac,
        "chain_prev_hash": record.chain_prev_hash,
    })


def test_tampered_database_row_fails_verification(app, make_token):
    service = get_redemption_service()
    for i in range(4):
        make_token(f"TAMPER0{i}")
        service.submit(f"TAMPER0{i}", ["Anna GS"])

    rows = audit_rows()
    rows[1].choices = ["Mallory GS"]
    db.session.commit()

    result = get_audit_chain().verify()
    assert not result.ok
    assert result.first_invalid_id == rows[1].id
    assert result.untrusted_ids == [r.id for r in rows[1:]]


def test_audit_failure_keeps_vote_and_flags_gap(app, make_token, monkeypatch):
    make_token("GAP23456")
    monkeypatch.setattr(AuditChain, "_append_once", boom)

    redemption = get_redemption_service().submit("GAP23456", ["Anna GS"])

    assert redemption.audit_record_id is None
    assert redemption.audit_error
    assert is_used("GAP23456")
    assert len(votes_for("GAP23456")) == 1
    assert audit_rows() == []

    flagged = db.session.execute(
        select(AdminAudit).where(AdminAudit.action == "AUDIT_APPEND_FAILED")
    ).scalar_one()
    assert flagged.meta["request_id"] == redemption.request_id
    assert flagged.meta["attempts"] == app.config["AUDIT_APPEND_ATTEMPTS"]

    report = get_audit_chain().reconcile()
    assert not report.ok
    assert report.as_dict()["missing_audit_records"] == 1


def test_transient_audit_failure_is_retried(app, make_token, monkeypatch):
    make_token("FLAKY234")
    original = AuditChain._append_once
    calls = []

    def flaky(self, *args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            boom()
        return original(self, *args, **kwargs)

    monkeypatch.setattr(AuditChain, "_append_once", flaky)

    redemption = get_redemption_service().submit("FLAKY234", ["Anna GS"])

    assert len(calls) == 2
    assert redemption.audit_record_id is not None
    assert get_audit_chain().reconcile().ok


def test_concurrent_submissions_of_one_token(file_app):
    with file_app.app_context():
        db.session.add(Token(token="RACE2345", school=School.PRIMARY, used=False))
        db.session.commit()
        db.session.remove()

    n = 6
    barrier = threading.Barrier(n)
    outcomes = []
    lock = threading.Lock()

    def worker(i):
        with file_app.app_context():
            barrier.wait()
            try:
                get_redemption_service().submit("RACE2345", [f"Choice {i}"])
                result = "accepted"
            except InvalidOrUsedToken:
                result = "rejected"
            finally:
                db.session.remove()
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["accepted"] + ["rejected"] * (n - 1)
    with file_app.app_context():
        assert db.session.execute(select(func.count()).select_from(Vote)).scalar_one() == 1
        assert db.session.execute(select(func.count()).select_from(VoteAudit)).scalar_one() == 1
        assert db.session.get(Token, "RACE2345").used


def test_concurrent_appends_form_one_chain(file_app):
    n = 8
    with file_app.app_context():
        for i in range(n):
            db.session.add(Token(token=f"PAR{i:05d}", school=School.SECONDARY, used=False))
        db.session.commit()
        db.session.remove()

    barrier = threading.Barrier(n)
    errors = []

    def worker(i):
        with file_app.app_context():
            barrier.wait()
            try:
                redemption = get_redemption_service().submit(f"PAR{i:05d}", ["Anna GS"])
                if redemption.audit_record_id is None:
                    errors.append(redemption.audit_error)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with file_app.app_context():
        chain = get_audit_chain()
        assert chain.verify().ok
        assert chain.reconcile().ok
        rows = chain.records()
        assert len(rows) == n
        assert len({r.chain_prev_hash for r in rows}) == n
