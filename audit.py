import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Protocol
from uuid import uuid4

from sqlalchemy.orm import Session

import post_commit
from models import AuditEvent
from orm import AuditLogORM

logger = logging.getLogger("app.audit")

SENSITIVE_FIELDS = {"password", "password_hash", "token", "refresh_token", "secret", "access_token"}
DEFAULT_ACTOR = "system"


class AuditRecorder(Protocol):
    def record(self, event: AuditEvent) -> None: ...


def sanitize(values: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """JSON-friendly copy of ``values`` with sensitive keys redacted."""
    if values is None:
        return None
    clean: dict[str, Any] = {}
    for k, v in values.items():
        if k in SENSITIVE_FIELDS:
            clean[k] = "[REDACTED]"
        elif isinstance(v, (datetime, date)):
            clean[k] = v.isoformat()
        else:
            clean[k] = v
    return clean


class DatabaseAuditRecorder:
    """Writes one audit_logs row per event, in its own session."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    def _open(self) -> Session:
        if self._session_factory is None:
            from db import SessionLocal
            return SessionLocal()
        return self._session_factory()

    def record(self, event: AuditEvent) -> None:
        db = self._open()
        try:
            db.add(
                AuditLogORM(
                    id=str(uuid4()),
                    user_id=event.actor_id,
                    action=event.action,
                    table_name=event.table_name,
                    record_id=event.record_id,
                    old_values=sanitize(event.old_values),
                    new_values=sanitize(event.new_values),
                    created_at=datetime.now(timezone.utc),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.debug(
            "audit action=%s table=%s record=%s actor=%s",
            event.action, event.table_name, event.record_id, event.actor_id,
        )


recorder: AuditRecorder = DatabaseAuditRecorder()


def set_recorder(new_recorder: AuditRecorder) -> AuditRecorder:
    global recorder
    previous = recorder
    recorder = new_recorder
    return previous


def _deliver(event: AuditEvent) -> None:
    recorder.record(event)


def record_after_commit(
    db: Session,
    action: str,
    table_name: str,
    record_id: str,
    *,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    actor_id: Optional[str] = None,
) -> None:
    event = AuditEvent(
        action=action,  # type: ignore[arg-type]
        table_name=table_name,
        record_id=record_id,
        actor_id=actor_id or DEFAULT_ACTOR,
        old_values=sanitize(old_values),
        new_values=sanitize(new_values),
    )
    post_commit.after_commit(db, _deliver, event)
