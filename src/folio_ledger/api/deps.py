"""Request dependencies shared by the ledger routes."""

from fastapi import Header, HTTPException, Request

from folio_ledger.services.ledger import FolioLedger

ACTOR_HEADER = "X-Actor-Id"


def get_ledger(request: Request) -> FolioLedger:
    return request.app.state.ledger


def get_actor_id(x_actor_id: str | None = Header(default=None, alias=ACTOR_HEADER)) -> str:
    """Acting user id, set by the authenticating gateway in front of the API."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {ACTOR_HEADER} header")
    return x_actor_id.strip()
