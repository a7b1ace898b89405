import asyncio
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, WebSocket
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from shared.core import get_logger
from stockscan.core_settings import get_settings
from stockscan.infrastructure.db import get_db
from stockscan.infrastructure.change_feed import change_feed
from stockscan.application.errors import ScanError, MSG_SERVER_ERROR
from stockscan.application.service import ScanService, MovementService
from stockscan.application.schemas import (
    ScanEvent,
    ScanAccepted,
    ScanRejected,
    WebhookStatus,
    MovementRead,
)

logger = get_logger(__name__)
settings = get_settings()

# Headers the firmware and the browser dashboard send on pre-flight
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

webhook_router = APIRouter(prefix="/esp32-webhook", tags=["scanner"])
movements_router = APIRouter(prefix="/movements", tags=["movements"])


@webhook_router.post(
    "",
    response_model=ScanAccepted,
    responses={404: {"model": ScanRejected}, 500: {"model": ScanRejected}},
)
def receive_scan(event: ScanEvent, db: Session = Depends(get_db)):
    try:
        return ScanService(db).process(event)
    except ScanError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())
    except SQLAlchemyError:
        # Handled inside the route so the response still gets CORS headers
        logger.error(f"Store error while processing scan from {event.device_id}", exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "message": MSG_SERVER_ERROR})


@webhook_router.get("", response_model=WebhookStatus)
def webhook_status():
    """Liveness probe for the device endpoint; never touches the database."""
    return {
        "message": "ESP32 Webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@webhook_router.options("")
def webhook_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@movements_router.get("/", response_model=list[MovementRead])
def list_movements(
    db: Session = Depends(get_db),
    limit: int = Query(20, ge=1, le=settings.MOVEMENTS_PAGE_LIMIT, description="Maximum number of movements to return"),
    device_id: Optional[str] = Query(None, max_length=100, description="Only movements from this scanner"),
    scanned_only: bool = Query(False, description="Only movements that came from a scanner"),
):
    """Recent movement history, newest first"""
    return MovementService(db).recent(limit=limit, device_id=device_id, scanned_only=scanned_only)


@movements_router.websocket("/ws")
async def movements_feed(
    websocket: WebSocket,
    device_id: Optional[str] = None,
    movement_type: Optional[str] = None,
):
    """Streams each committed movement as {"type": "movement", "data": {...}}"""
    # Subscribe before accepting so nothing committed after the handshake is missed
    subscription = change_feed.subscribe(device_id=device_id, movement_type=movement_type)
    sender = None

    async def forward():
        async for record in subscription:
            await websocket.send_json({"type": "movement", "data": record})

    try:
        await websocket.accept()
        sender = asyncio.create_task(forward())
        # Client messages are ignored; reading them is how a disconnect is noticed
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.close()
        if sender is not None:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.warning("Movement feed sender stopped with an error", exc_info=True)
    logger.info("Movement feed subscriber disconnected")
