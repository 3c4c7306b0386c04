from collections.abc import Iterator

from fastapi import Header
from sqlalchemy.orm import Session

from posledger.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(x_actor: str | None = Header(default=None)) -> str:
    actor = (x_actor or "").strip()
    return actor[:100] or "system"
