"""Request dependencies shared by the routes."""

from fastapi import HTTPException, Request

from sync_engine.engine import SyncEngine


def get_engine(request: Request) -> SyncEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine is not initialised")
    return engine
