# The module provides the FastAPI application that serves as the entry point for ArcChat.
# Date: 2025-10-02
# Version: 0.2.0

from fastapi import FastAPI
from arcchat.api.v1.api import api_router
from arcchat.core.config import get_settings
from arcchat.utils.logger import console

console.set_level(get_settings().LOG_LEVEL)

app = FastAPI(
    title="ArcChat",
    version="0.2.0",
    description="Streaming LLM chat with a bounded agentic tool loop.",
)

@app.get("/", summary="Health Check", tags=["Status"])
def read_root():
    """Root endpoint to check if the service is alive."""
    console.info("Health check endpoint was hit.")
    return {"message": "ArcChat is alive and running!"}

# Include the v1 router with a global '/v1' prefix
app.include_router(api_router, prefix="/v1")
