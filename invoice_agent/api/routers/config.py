from fastapi import APIRouter, Body, HTTPException
from loguru import logger

from ...core.errors import ProviderError
from ...services import llm
from ..deps import ConnectionTestResponse, ProviderSelectionRequest, ProvidersResponse

router = APIRouter(prefix="/api/config", tags=["config"])

PING_PROMPT = "Reply with only the word: OK"


@router.get("/providers", response_model=ProvidersResponse)
def list_providers():
    return ProvidersResponse(**llm.provider_config.describe())


@router.post("/set", response_model=ProvidersResponse)
def set_provider(req: ProviderSelectionRequest):
    """Change the default provider/model used by requests that start after this call"""
    if not req.provider:
        raise HTTPException(status_code=400, detail="Provider is required")
    llm.provider_config.set(req.provider, req.model)
    return ProvidersResponse(**llm.provider_config.describe())


@router.post("/test", response_model=ConnectionTestResponse)
async def test_connection(req: ProviderSelectionRequest | None = Body(None)):
    """
    Send a trivial prompt to a provider.

    Tests the given provider/model when supplied, otherwise the current
    default. The default selection is never changed by this call.
    """
    current = llm.current_selection()
    if req is not None and req.provider:
        name = llm.resolve_provider(req.provider)
        selection = llm.ProviderSelection(name.value, req.model or current.model)
    elif req is not None and req.model:
        selection = llm.ProviderSelection(current.provider, req.model)
    else:
        selection = current

    masked = llm.mask_api_key(selection.provider)
    logger.info("Testing provider connection", provider=selection.provider, model=selection.model, api_key=masked)

    result = {"provider": selection.provider, "model": selection.model, "api_key": masked}
    try:
        reply = (await llm.invoke(selection, llm.user_message(PING_PROMPT), max_tokens=16)).strip()
    except ProviderError as e:
        logger.warning("Provider connection test failed", kind=e.kind.value)
        return ConnectionTestResponse(success=False, status="error", error=e.message, **result)

    if not reply:
        return ConnectionTestResponse(success=False, status="no_response", error="Empty response from model", **result)
    return ConnectionTestResponse(success=True, status="connected", reply=reply, **result)
