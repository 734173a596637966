"""
Presence routes.

The WebSocket endpoint appliers keep open while working, plus read-only
lookups of who is connected to this instance.
"""

from fastapi import APIRouter, Query, WebSocket

from app.features.presence.services.presence_service import PRESENCE_PATH, presence_service

router = APIRouter(tags=["presence"])


@router.websocket(PRESENCE_PATH)
async def presence_socket(websocket: WebSocket, applier_id: str | None = Query(None, alias="applierId")):
    await presence_service.serve(websocket, applier_id)


@router.get("/api/presence/connected")
async def list_connected_appliers() -> dict:
    applier_ids = presence_service.get_connected_appliers()
    return {"applier_ids": applier_ids, "count": len(applier_ids)}


@router.get("/api/presence/{applier_id}")
async def get_applier_presence(applier_id: str) -> dict:
    return {
        "applier_id": applier_id,
        "connected": presence_service.is_applier_connected(applier_id),
    }
