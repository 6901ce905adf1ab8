# The module is to define the API endpoints for provider discovery.
# Date: 2025-10-02
# Version: 0.1.0

from fastapi import APIRouter, HTTPException
from typing import List

from arcchat.core.config import get_settings
from arcchat.core.errors import CompletionError, ProviderConfigError
from arcchat.core.providers import PROVIDER_ORDER, PROVIDERS
from arcchat.services.llm_connector import fetch_models
from arcchat.models.api_models import ModelListResponse, ProviderSummary

router = APIRouter()

@router.get("/", response_model=List[ProviderSummary])
def list_providers():
    """Lists the known providers and whether an API key is configured for each."""
    settings = get_settings()
    return [
        ProviderSummary(
            id=PROVIDERS[provider_id].id,
            name=PROVIDERS[provider_id].name,
            protocol=PROVIDERS[provider_id].protocol,
            default_model=PROVIDERS[provider_id].default_model,
            configured=bool(settings.api_key_for(provider_id)),
        )
        for provider_id in PROVIDER_ORDER
    ]

@router.get("/{provider_id}/models", response_model=ModelListResponse)
async def list_models(provider_id: str):
    """Lists the models a provider offers, with their supported parameters."""
    try:
        models = await fetch_models(provider_id)
    except ProviderConfigError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CompletionError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return ModelListResponse(provider=provider_id, models=models)
