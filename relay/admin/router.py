from fastapi import APIRouter, HTTPException, Request

from relay.dependencies import get_dead_letters, get_registry
from relay.models import DeadLetterRecord, EnablementRequest, EnablementResponse

router = APIRouter(prefix="/chatbot")


@router.post("/enable", response_model=EnablementResponse)
async def enable_auto_reply(body: EnablementRequest, request: Request) -> EnablementResponse:
    if not body.user_ids:
        raise HTTPException(status_code=400, detail="user_ids must not be empty")
    await get_registry(request).enable(body.user_ids)
    return EnablementResponse(status="enabled", user_ids=body.user_ids)


@router.post("/disable", response_model=EnablementResponse)
async def disable_auto_reply(body: EnablementRequest, request: Request) -> EnablementResponse:
    if not body.user_ids:
        raise HTTPException(status_code=400, detail="user_ids must not be empty")
    await get_registry(request).disable(body.user_ids)
    return EnablementResponse(status="disabled", user_ids=body.user_ids)


@router.get("/enabled", response_model=EnablementResponse)
async def list_enabled(request: Request) -> EnablementResponse:
    registry = get_registry(request)
    return EnablementResponse(
        status="loaded" if registry.loaded else "not_loaded",
        user_ids=sorted(registry.list_enabled()),
    )


@router.get("/dead-letters", response_model=list[DeadLetterRecord])
async def list_dead_letters(request: Request, limit: int = 100) -> list[DeadLetterRecord]:
    return await get_dead_letters(request).recent(limit=limit)
