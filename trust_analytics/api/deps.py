# Shared FastAPI dependencies

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from trust_analytics.core.config import settings
from trust_analytics.core.database import get_db
from trust_analytics.services.analytics import AnalyticsEngine
from trust_analytics.services.cache import result_cache
from trust_analytics.services.event_store import EventStore


def get_store(db: Session = Depends(get_db)) -> EventStore:
    return EventStore(db, cache=result_cache)


def get_engine(store: EventStore = Depends(get_store)) -> AnalyticsEngine:
    return AnalyticsEngine(store, cache=result_cache)


def require_api_key(
        authorization: str | None = Header(default=None),
        x_api_key: str | None = Header(default=None)
) -> None:
    """Reject the request unless it carries the configured API key.

    No-op when ``settings.api_key`` is unset. Accepts ``Authorization: Bearer``
    or ``X-API-Key``.
    """
    if not settings.api_key:
        return

    supplied = x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        supplied = authorization[7:].strip()

    if supplied != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"}
        )
