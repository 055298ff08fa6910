"""Callbacks that run once the surrounding transaction has committed.

Housekeeping (audit rows, signature file removal) must never decide the
outcome of a loan operation, so it is queued on the session and executed
from SQLAlchemy's ``after_commit`` event. A rollback drops the queue.
"""
import logging
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger("app.post_commit")

_PENDING_KEY = "post_commit_callbacks"


def after_commit(db: Session, fn: Callable[..., Any], *args: Any) -> None:
    db.info.setdefault(_PENDING_KEY, []).append((fn, args))


def pending(db: Session) -> int:
    return len(db.info.get(_PENDING_KEY, []))


@event.listens_for(Session, "after_commit")
def _run_pending(session: Session) -> None:
    callbacks = session.info.pop(_PENDING_KEY, [])
    for fn, args in callbacks:
        try:
            fn(*args)
        except Exception:
            logger.exception("post-commit callback failed callback=%s", getattr(fn, "__name__", fn))


@event.listens_for(Session, "after_rollback")
def _drop_pending(session: Session) -> None:
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.debug("dropped %s post-commit callbacks after rollback", len(dropped))
