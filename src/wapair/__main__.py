from __future__ import annotations

import uvicorn
from fastapi import FastAPI
from loguru import logger

from .adapter import WhatsAppAdapter
from .config import Settings, get_settings
from .credentials import CredentialStore
from .delivery import DeliverySlots
from .manager import SessionLifecycleManager, SessionRegistry
from .util.logging import setup_logging
from .web import create_app


def build_app(settings: Settings) -> FastAPI:
    manager = SessionLifecycleManager(
        registry=SessionRegistry(),
        adapter=WhatsAppAdapter(),
        store=CredentialStore(settings.sessions_dir),
        deliveries=DeliverySlots(ttl_s=settings.delivery_ttl_s),
    )
    return create_app(manager)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)

    app = build_app(settings)
    logger.info(f"🚀 Session server running on http://{settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
