from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.admin import router as admin_router
from app.database import dispose_db, init_db
from app.settings import settings
from catalog import CARDS
from database import StoreError
from gateway import presence_sweeper, scheduler, serve, sessions

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = settings.allowed_origins

app = FastAPI(title="Lotería")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

logger.info("[CORS] allow_origins: %s", ALLOWED_ORIGINS)

app.include_router(admin_router)

_sweeper: Optional[asyncio.Task] = None


@app.on_event("startup")
async def _prepare() -> None:
    global _sweeper
    await init_db()
    if settings.clear_players_on_startup:
        await sessions.clear_all_players()
    _sweeper = asyncio.create_task(presence_sweeper(), name="presence-sweeper")


@app.on_event("shutdown")
async def _teardown() -> None:
    if _sweeper is not None:
        _sweeper.cancel()
        await asyncio.gather(_sweeper, return_exceptions=True)
    await scheduler.shutdown()
    await dispose_db()


@app.exception_handler(StoreError)
async def _store_error(request: Request, exc: StoreError):
    logger.error("[Store] %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "server_error"})


# ---------- REST ----------
@app.get("/api/health")
async def health():
    return {"ok": True, "callers": len(scheduler)}


@app.get("/api/cards")
async def cards():
    return [card.model_dump(by_alias=True) for card in CARDS]


# ---------- WS endpoint ----------
@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
    await serve(ws)
