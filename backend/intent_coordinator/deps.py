from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from intent_coordinator.config import Settings, settings
from intent_coordinator.db.session import make_engine, make_sessionmaker
from intent_coordinator.repos.intent_store import IntentStore
from intent_coordinator.services.intent_service import IntentService


def get_settings() -> Settings:
    return settings


_store_instance: IntentStore | None = None


def get_store() -> IntentStore:
    global _store_instance
    if _store_instance is None:
        engine = make_engine(settings.dsn, pool_size=settings.postgres_pool_size)
        _store_instance = IntentStore(make_sessionmaker(engine))
    return _store_instance


def get_intent_service(store: Annotated[IntentStore, Depends(get_store)]) -> IntentService:
    return IntentService(store)


def require_admin(
    cfg: Annotated[Settings, Depends(get_settings)],
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    # без ADMIN_TOKEN эндпоинт выключен
    if not cfg.admin_token or not x_admin_token:
        raise HTTPException(403, "forbidden")
    if not secrets.compare_digest(x_admin_token.encode(), cfg.admin_token.encode()):
        raise HTTPException(403, "forbidden")
