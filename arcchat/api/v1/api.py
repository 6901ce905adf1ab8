# The module is to define the API router for the application.
# Date: 2025-10-02
# Version: 0.2.0

from fastapi import APIRouter
from arcchat.api.v1.endpoints import session, chat, providers

api_router = APIRouter()

# Include the session router with a '/session' prefix
api_router.include_router(session.router, prefix="/session", tags=["Session Management"])

# Include the chat router with a '/chat' prefix
api_router.include_router(chat.router, prefix="/chat", tags=["Conversation"])

# Include the providers router with a '/providers' prefix
api_router.include_router(providers.router, prefix="/providers", tags=["Providers"])
