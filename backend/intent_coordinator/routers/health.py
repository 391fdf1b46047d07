from __future__ import annotations

import os
import time
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response, status

from intent_coordinator.deps import get_store
from intent_coordinator.repos.intent_store import IntentStore

router = APIRouter(tags=["health"])
START_TIME = time.time()


@router.get("/health", status_code=status.HTTP_200_OK)
async def health(store: Annotated[IntentStore, Depends(get_store)], response: Response) -> dict[str, Any]:
    checks: dict[str, Any] = {}
    try:
        await store.ping()
        checks["db"] = "ok"
    except Exception as e:
        checks["db"] = {"error": str(e)}
    is_healthy = all(v == "ok" for v in checks.values())
    if not is_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if is_healthy else "degraded",
        "version": os.getenv("GIT_SHA") or "dev",
        "uptime": time.time() - START_TIME,
        "checks": checks,
    }


@router.get("/live", status_code=status.HTTP_200_OK)
def live() -> dict[str, str]:
    return {"status": "alive"}
