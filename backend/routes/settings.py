"""Health check and LLM connection check endpoints."""

import httpx
from fastapi import APIRouter, Request

router = APIRouter()

_MODEL_PATHS = {
    "koboldcpp": "/api/v1/model",
    "openai": "/v1/models",
    "openai_chat": "/v1/models",
}


@router.get("/health")
async def health(request: Request):
    """Health check, including which LLM provider is configured."""
    settings = request.app.state.settings
    return {
        "status": "ok",
        "llm": "mock" if settings.mock_llm else settings.llm_provider_format,
    }


@router.get("/check-connection")
async def check_connection(request: Request):
    """Quick reachability check against the configured LLM backend."""
    settings = request.app.state.settings
    if settings.mock_llm:
        return {"ok": True, "mock": True}

    url = settings.llm_provider_url.rstrip("/") + _MODEL_PATHS[settings.llm_provider_format]
    headers: dict[str, str] = {}
    if settings.llm_api_key:
        headers["Authorization"] = f"Bearer {settings.llm_api_key}"
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError:
        return {"ok": False}
