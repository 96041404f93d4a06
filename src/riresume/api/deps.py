from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Header, HTTPException, WebSocket
from sqlalchemy.orm import Session

from riresume.db.repositories import Repository
from riresume.db.session import get_db_session


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> str:
    """Resolve the signed-in user from the ``X-User-Id`` header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not signed in")
    user = Repository(db).get_user(x_user_id)
    if user is None or user.account_status != "active":
        raise HTTPException(status_code=403, detail="Account is not active")
    return x_user_id


def get_stream_user(websocket: WebSocket, db: Session = Depends(get_db)) -> str | None:
    """Resolve a websocket caller; browsers cannot set headers, so ``?uid=`` also works."""
    uid = websocket.headers.get("x-user-id") or websocket.query_params.get("uid")
    if not uid:
        return None
    user = Repository(db).get_user(uid)
    if user is None or user.account_status != "active":
        return None
    return uid
