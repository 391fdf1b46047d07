from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from intent_coordinator.deps import get_intent_service, require_admin
from intent_coordinator.errors import (
    DuplicateIntentId,
    IntentNotFound,
    InvariantViolation,
    TerminalStateError,
)
from intent_coordinator.schemas.intents import (
    IntentOut,
    IntentSubmitIn,
    IntentSubmitOut,
    IntentSummaryOut,
    IntentUpdateIn,
    IntentUpdateOut,
    UserIntentsOut,
)
from intent_coordinator.services.intent_service import IntentService
from intent_coordinator.validators import validate_hex32

router = APIRouter(prefix="/intents", tags=["intents"])

ServiceDep = Annotated[IntentService, Depends(get_intent_service)]


def _check_intent_id(intent_id: str) -> str:
    if not validate_hex32(intent_id):
        raise HTTPException(status_code=400, detail="bad_intent_id")
    return intent_id.lower()


@router.post("", response_model=IntentSubmitOut, status_code=201)
async def submit_intent(body: IntentSubmitIn, svc: ServiceDep) -> IntentSubmitOut:
    try:
        intent = await svc.submit_intent(body)
    except DuplicateIntentId:
        raise HTTPException(status_code=409, detail="duplicate_intent")
    return IntentSubmitOut(intentId=intent.intent_id, status=str(intent.status), createdAt=intent.created_at)


@router.get("/user/{address}", response_model=UserIntentsOut)
async def get_user_intents(
    address: str,
    svc: ServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> UserIntentsOut:
    res = await svc.get_user_intents(address, page, limit)
    return UserIntentsOut(
        intents=[IntentSummaryOut.of(i) for i in res.items],
        count=res.count,
        page=res.page,
        totalPages=res.total_pages,
    )


@router.get("/{intent_id}", response_model=IntentOut)
async def get_intent(intent_id: str, svc: ServiceDep) -> IntentOut:
    found = await svc.get_intent(_check_intent_id(intent_id))
    if found is None:
        raise HTTPException(status_code=404, detail="intent_not_found")
    intent, txs = found
    return IntentOut.of(intent, txs)


@router.put("/{intent_id}", response_model=IntentUpdateOut, dependencies=[Depends(require_admin)])
async def update_intent(intent_id: str, body: IntentUpdateIn, svc: ServiceDep) -> IntentUpdateOut:
    try:
        intent = await svc.update_intent(_check_intent_id(intent_id), body.status)
    except TerminalStateError:
        raise HTTPException(status_code=409, detail="intent_terminal")
    except IntentNotFound:
        raise HTTPException(status_code=404, detail="intent_not_found")
    except InvariantViolation as e:
        raise HTTPException(status_code=409, detail=str(e))
    return IntentUpdateOut(intentId=intent.intent_id, status=str(intent.status), updatedAt=intent.updated_at)
