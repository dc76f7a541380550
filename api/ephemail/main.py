"""Ephemail FastAPI host: background loops, health, webhook and push adapters"""

from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import asyncio
import logging
import os

from ephemail.config import settings
from ephemail.database import Base, engine
from ephemail.dependencies import get_service, service
from ephemail.errors import TempMailError
from ephemail.routers import mailboxes_router
from ephemail.schemas import InboundMail
from ephemail.service import TempMailService

LOG_FORMATS = {
    'text': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'json': '{"time": "%(asctime)s", "logger": "%(name)s", "level": "%(levelname)s", "message": "%(message)s"}',
}

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=LOG_FORMATS.get(settings.LOG_FORMAT, LOG_FORMATS['text'])
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "quota_exceeded": 429,
    "domain_invalid": 400,
    "invalid_tier": 400,
    "not_found": 404,
    "address_generation_exhausted": 503,
    "storage_unavailable": 503,
    "no_gmail_accounts": 503,
}

# Create FastAPI app
app = FastAPI(
    title="Ephemail API",
    description="Ephemeral mailbox core - inbound delivery, live push and cache administration",
    version="1.0.0",
    docs_url="/docs" if settings.DOCS_ENABLED else None,
    redoc_url="/redoc" if settings.DOCS_ENABLED else None,
    openapi_url="/openapi.json" if settings.DOCS_ENABLED else None
)

# CORS middleware - configured via config.yaml
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.on_event("startup")
async def startup_event():
    """Run on application startup"""
    # Skip startup tasks in test mode
    if os.getenv("TESTING"):
        logger.info("Running in test mode - skipping startup tasks")
        return

    logger.info("Ephemail API starting...")

    if not service.storage.ping():
        logger.error("Failed to connect to database!")
        raise Exception("Database connection failed")

    Base.metadata.create_all(bind=engine)
    logger.info("Database connection successful")
    logger.info(f"Tier durations: {settings.TIER_DURATIONS}")
    logger.info(f"Daily limits: {settings.DAILY_LIMITS}")

    service.start()
    logger.info("Ephemail API ready!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown"""
    if os.getenv("TESTING"):
        return
    logger.info("Ephemail API shutting down...")
    # Blocks until the final flush has run
    await asyncio.to_thread(service.stop)


# Health check endpoint
@app.get("/api/v1/health")
def health_check(svc: TempMailService = Depends(get_service)):
    """Health check endpoint for monitoring"""
    db_ok = svc.storage.ping()

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "healthy" if db_ok else "unhealthy",
            "database": "connected" if db_ok else "disconnected",
            "entities": svc.entity_count(),
            "owners": svc.owner_count(),
        }
    )


# Webhook ingestion
@app.post("/api/v1/webhook/inbound")
def inbound_mail(mail: InboundMail, svc: TempMailService = Depends(get_service)):
    """
    Accept a forwarded message.

    Unknown or expired addresses are acknowledged with delivered=false so the
    mail server does not retry.
    """
    delivered = svc.deliver(mail)
    if not delivered:
        logger.debug(f"No live mailbox for {mail.address}")
    return {"delivered": delivered}


# Live push
class WebSocketSink:
    """Bridges worker-thread sends onto the websocket's event loop"""

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self._websocket = websocket
        self._loop = loop

    def send(self, payload: dict, timeout: float) -> None:
        future = asyncio.run_coroutine_threadsafe(self._websocket.send_json(payload), self._loop)
        future.result(timeout=timeout)


@app.websocket("/api/v1/ws")
async def subscribe(websocket: WebSocket, owner_id: str, address: str,
                    svc: TempMailService = Depends(get_service)):
    await websocket.accept()
    sink = WebSocketSink(websocket, asyncio.get_running_loop())

    if not svc.subscribe(owner_id, address, sink):
        await websocket.send_json({"type": "error", "message": "Mailbox not found or expired"})
        await websocket.close()
        return

    await websocket.send_json({"type": "connected", "address": address.lower()})
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        svc.unsubscribe(owner_id, address, sink)


# Admin surface
@app.get("/api/v1/admin/stats")
def admin_stats(svc: TempMailService = Depends(get_service)):
    return {"cache": svc.cache_sizes()}


@app.post("/api/v1/admin/flush")
def admin_flush(svc: TempMailService = Depends(get_service)):
    return {"results": svc.flush()}


@app.post("/api/v1/admin/domains/invalidate")
def admin_invalidate_domains(owner_id: Optional[str] = None, svc: TempMailService = Depends(get_service)):
    svc.invalidate_domains(owner_id)
    return {"invalidated": owner_id or "global"}


# Include routers
app.include_router(mailboxes_router)


# Error handlers
@app.exception_handler(TempMailError)
async def tempmail_error_handler(request, exc: TempMailError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.code, 400),
        content={"error": exc.code, "detail": exc.message}
    )


@app.exception_handler(404)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"detail": "Not found"}
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    logger.error(f"Internal error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ephemail.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,  # For development
        log_level=settings.LOG_LEVEL.lower()
    )
