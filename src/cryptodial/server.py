"""FastAPI app serving the carrier's USSD callback."""

from __future__ import annotations

import asyncio
import contextlib
import logging

import uvicorn
from fastapi import FastAPI, Form
from fastapi.responses import PlainTextResponse

from cryptodial.config import CryptodialConfig, load_config
from cryptodial.service import WalletService
from cryptodial.ussd.menu import MenuRequest

logger = logging.getLogger("cryptodial.server")


def create_app(
    config: CryptodialConfig | None = None,
    service: WalletService | None = None,
) -> FastAPI:
    """Build the app. A pre-built *service* is used as-is (and not closed)."""
    config = config or (service.config if service else load_config())

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = service is None
        svc = service or await WalletService.open(config)
        app.state.service = svc

        await svc.sessions.sweep_expired()
        sweeper = asyncio.create_task(svc.sessions.run_sweeper(config.sessions.sweep_interval))
        logger.info(f"USSD service '{config.name}' started")
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            if owned:
                await svc.shutdown()

    app = FastAPI(title=f"{config.name} USSD", lifespan=lifespan)

    @app.post("/ussd", response_class=PlainTextResponse)
    async def ussd_callback(
        sessionId: str = Form(...),
        phoneNumber: str = Form(...),
        serviceCode: str = Form(""),
        text: str = Form(""),
    ) -> str:
        request = MenuRequest(
            session_id=sessionId,
            phone_number=phoneNumber,
            text=text,
            service_code=serviceCode,
        )
        prompt = await app.state.service.handle(request)
        return prompt.render()

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": config.name}

    return app


def run_server(config: CryptodialConfig, host: str | None = None, port: int | None = None,
               log_level: str = "info") -> None:
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=log_level,
    )
