from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

router = APIRouter(prefix="", tags=["status"])


@router.get("/", response_class=PlainTextResponse)
async def index():
    return "Card Duel Multiplayer Server Running"


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    return {
        "status": "ok",
        "rooms": len(state.registry),
        "connections": len(state.connections),
    }
