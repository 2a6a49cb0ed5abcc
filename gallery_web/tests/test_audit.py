"""
Tests for the audit trail. No tokens or codes in audit records.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gallery_web.audit import (
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    OUTCOME_FAIL,
    SessionLocal,
    init_db,
    log_audit,
    make_engine,
    query_audit_logs,
)
from gallery_web.models import AuditLog, Base


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    session.query(AuditLog).delete()
    session.commit()
    try:
        yield session
    finally:
        session.close()


def test_log_and_query_most_recent_first(db):
    log_audit(db, EVENT_LOGIN_OK, ip="10.0.0.1")
    log_audit(db, EVENT_LOGIN_FAIL, ip="10.0.0.2", outcome=OUTCOME_FAIL, detail="InvalidState")

    events = query_audit_logs(db)
    assert [e["event_type"] for e in events] == [EVENT_LOGIN_FAIL, EVENT_LOGIN_OK]
    assert events[0]["detail"] == "InvalidState"
    assert events[0]["outcome"] == OUTCOME_FAIL
    assert events[1]["ip"] == "10.0.0.1"


def test_query_filters(db):
    log_audit(db, EVENT_LOGIN_OK)
    log_audit(db, EVENT_LOGIN_FAIL, outcome=OUTCOME_FAIL)
    log_audit(db, EVENT_LOGIN_FAIL, outcome=OUTCOME_FAIL)

    assert len(query_audit_logs(db, event_type=EVENT_LOGIN_FAIL)) == 2
    assert len(query_audit_logs(db, outcome="success")) == 1
    assert len(query_audit_logs(db, limit=1)) == 1


def test_audit_record_has_no_secret_columns():
    columns = set(AuditLog.__table__.columns.keys())
    assert columns == {"id", "created_at", "event_type", "ip", "outcome", "detail"}


def test_make_engine_shares_in_memory_database():
    assert isinstance(make_engine("sqlite:///:memory:").pool, StaticPool)


def test_file_database_session_usable_from_worker_thread(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'audit.db'}")
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(bind=engine)()
    try:
        # connection is opened on this thread, the write happens on another
        db.execute(select(1))
        with ThreadPoolExecutor(max_workers=1) as pool:
            pool.submit(log_audit, db, EVENT_LOGIN_OK).result()
        assert db.query(AuditLog).count() == 1
    finally:
        db.close()
