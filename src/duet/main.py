# src/duet/main.py
"""Main entry point for the Duet chat service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from duet.api.v1 import chats_router, notifications_router, realtime_router
from duet.core.errors import register_error_handlers
from duet.core.settings import settings
from duet.services.outbound import OutboundQueue
from duet.services.push import PushGateway
from duet.services.realtime import RealtimeHub

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Two-person real-time chat with request admission and a compatibility quiz",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

register_error_handlers(app)

# Include API routers
app.include_router(chats_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    app.state.realtime = RealtimeHub()
    outbound = OutboundQueue()
    await outbound.start()
    app.state.outbound = outbound
    app.state.push_gateway = PushGateway()
    if not app.state.push_gateway.enabled:
        logger.info("Push gateway disabled; offline recipients will not be notified")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    outbound: OutboundQueue | None = getattr(app.state, "outbound", None)
    if outbound:
        await outbound.stop()
    gateway: PushGateway | None = getattr(app.state, "push_gateway", None)
    if gateway:
        await gateway.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("duet.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
