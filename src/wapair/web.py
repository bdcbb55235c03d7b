"""HTTP API for requesting pairing codes and collecting finished sessions."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse
from loguru import logger

from .adapter import DisconnectReason
from .exceptions import AttemptAlreadyActive, InvalidPhoneFormat, ProtocolError, ProtocolRejected
from .manager import SessionLifecycleManager
from .phone import digits_only, normalize_phone

STATIC_DIR = Path(__file__).parent / "static"

PAIR_INSTRUCTIONS = (
    "Open WhatsApp → Linked devices → Link a device → Link with phone number and type this code."
)
MSG_ALREADY_ACTIVE = (
    "A pairing session already exists for this number. Please wait 1 minute and try again."
)
MSG_BLOCKED = "WhatsApp blocked this pairing request (428). Try again in a few minutes."
MSG_PROTOCOL_ERROR = "Failed to ask WhatsApp for a pairing code. Please try again."
MSG_SERVER_ERROR = "Server error. Please try again."


def _fail(message: str) -> dict[str, Any]:
    return {"status": False, "message": message}


async def _phone_field(request: Request) -> str | int | None:
    """The `phone` member of a JSON object body; anything else counts as missing."""
    try:
        payload = await request.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    raw = payload.get("phone")
    if isinstance(raw, bool) or not isinstance(raw, str | int):
        return None
    return raw


def _rejection_message(e: ProtocolRejected) -> str:
    if e.status_code == DisconnectReason.CONNECTION_CLOSED:
        return MSG_BLOCKED
    return f"WhatsApp rejected this pairing request ({e.status_code}). Please try again."


def create_app(manager: SessionLifecycleManager) -> FastAPI:
    """Build the FastAPI app around an already-wired lifecycle manager."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await manager.aclose()

    app = FastAPI(title=f"{manager.brand} Session Server", lifespan=lifespan)

    @app.get("/")
    async def index() -> FileResponse:
        return FileResponse(STATIC_DIR / "pair.html")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "active": len(manager.registry)}

    @app.post("/api/pair")
    async def pair(request: Request) -> dict[str, Any]:
        try:
            phone = normalize_phone(await _phone_field(request))
        except InvalidPhoneFormat as e:
            return _fail(str(e))

        try:
            code = await manager.start_pairing(phone)
        except AttemptAlreadyActive:
            return _fail(MSG_ALREADY_ACTIVE)
        except ProtocolRejected as e:
            return _fail(_rejection_message(e))
        except ProtocolError:
            return _fail(MSG_PROTOCOL_ERROR)
        except Exception:
            logger.exception("POST /api/pair error")
            return _fail(MSG_SERVER_ERROR)

        return {
            "status": True,
            "brand": manager.brand,
            "code": code,
            "message": PAIR_INSTRUCTIONS,
        }

    @app.get("/api/session")
    async def session(phone: str = "") -> dict[str, Any]:
        blob = manager.deliveries.take(digits_only(phone))
        if blob is None:
            return {"ready": False}
        return {"ready": True, "brand": manager.brand, "session": blob}

    return app
