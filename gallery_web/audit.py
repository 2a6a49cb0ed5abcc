"""
Audit logging for security-relevant events: logins, denials, webhook rejections.
No tokens, codes, verifiers or request bodies are recorded.
The trail lives in its own small SQL database (SQLite unless AUDIT_DATABASE_URL says otherwise).
"""
from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gallery_web.config import AUDIT_DATABASE_URL
from gallery_web.models import AuditLog, Base

EVENT_LOGIN_OK = "login_ok"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_LOGOUT = "logout"
EVENT_INTERACTION_OK = "interaction_ok"
EVENT_INTERACTION_REJECTED = "interaction_rejected"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url)
    # audit writes happen in threadpool workers, not the thread that opened the connection
    connect_args = {"check_same_thread": False}
    if ":memory:" in url:
        # one shared connection, otherwise every checkout sees an empty database
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


engine = make_engine(AUDIT_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency: one audit DB session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
    detail: str | None = None,
) -> None:
    """Append one audit record."""
    db.add(AuditLog(event_type=event_type, ip=ip, outcome=outcome, detail=detail))
    db.commit()


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
) -> list[dict]:
    """Query audit logs with optional filters. Most recent first."""
    q = db.query(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "ip": r.ip,
            "outcome": r.outcome,
            "detail": r.detail,
        }
        for r in rows
    ]
