from collections.abc import Generator
from typing import Optional

from fastapi import Header
from sqlalchemy.orm import Session

from audit import DEFAULT_ACTOR
from db import SessionLocal
from signature_store import SignatureStore, get_signature_store


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        # anything not committed yet (e.g. client went away) is rolled back here
        db.close()


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> str:
    return (x_actor_id or "").strip() or DEFAULT_ACTOR


def get_store() -> SignatureStore:
    return get_signature_store()
