"""
Session Core Component - FastAPI Application.

This is the main entry point for the Session Core service, providing a
FastAPI application with the session endpoints.
"""
import logging

import uvicorn

from session_core.app import create_app
from session_core.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
)
logger = logging.getLogger("session_core")

app = create_app(settings)


# Run the application if executed directly
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
