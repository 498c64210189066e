# src/rcon_courier/main.py
"""Main entry point for the RCON Courier application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from rcon_courier.api.v1 import delivery_router, presence_router, system_router
from rcon_courier.core.settings import settings
from rcon_courier.services.queue_sweeper import QueueSweeper

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Reliable RCON command delivery for game-server storefronts",
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

# Include API routers
app.include_router(delivery_router, prefix="/api/v1")
app.include_router(presence_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.queue_sweep_enabled:
        sweeper = QueueSweeper()
        await sweeper.start()
        app.state.queue_sweeper = sweeper
    else:
        app.state.queue_sweeper = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper: QueueSweeper | None = getattr(app.state, "queue_sweeper", None)
    if sweeper:
        await sweeper.stop()


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
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("rcon_courier.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
