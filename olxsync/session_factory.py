from sqlalchemy.orm import Session

from olxsync.db import SessionLocal


def session_factory() -> Session:
    return SessionLocal()
