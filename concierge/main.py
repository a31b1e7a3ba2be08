from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request

from .approvals import ApprovalRegistry
from .config import Settings, load_settings
from .identity import CustomerDirectory, ShopifyCustomerDirectory
from .mailer import ResilientMailer, build_mailer, validate_mail_config
from .otp.dispatcher import OtpDispatcher
from .otp.store import ChallengeStore, build_store
from .otp.verifier import OtpVerifier
from .routes.api_auth import router as api_auth_router
from .routes.api_health import router as api_health_router
from .sweeper import run_sweeper

_log = logging.getLogger("concierge")
if not _log.handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    validate_mail_config(settings)
    sweeper = asyncio.create_task(
        run_sweeper(app.state.store, settings.auth.sweep_interval_seconds),
        name="otp-sweeper",
    )
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        aclose = getattr(app.state.directory, "aclose", None)
        if aclose is not None:
            await aclose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ChallengeStore] = None,
    directory: Optional[CustomerDirectory] = None,
    mailer: Optional[ResilientMailer] = None,
    approvals: Optional[ApprovalRegistry] = None,
) -> FastAPI:
    settings = settings or load_settings()
    store = store if store is not None else build_store(settings.auth.store_backend, settings.postgres)
    directory = directory if directory is not None else ShopifyCustomerDirectory(settings.shopify)
    mailer = mailer if mailer is not None else build_mailer(settings)
    if approvals is None:
        data_path = settings.approvals.data_path
        approvals = ApprovalRegistry(
            Path(data_path) if data_path else None,
            link_ttl=timedelta(days=settings.approvals.link_ttl_days),
        )

    app = FastAPI(title="PSA Concierge Auth API", lifespan=_lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.directory = directory
    app.state.mailer = mailer
    app.state.approvals = approvals
    app.state.dispatcher = OtpDispatcher(
        settings.auth,
        store=store,
        directory=directory,
        mailer=mailer,
        approvals=approvals,
        service_name=settings.smtp.from_name or "PSA Concierge",
    )
    app.state.verifier = OtpVerifier(settings.auth, store=store)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        _log.info("rid=%s method=%s path=%s status=%s", rid, request.method, request.url.path, response.status_code)
        return response

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if (request.url.path or "").startswith("/api/auth/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_auth_router)
    app.include_router(api_health_router)

    @app.get("/")
    def home():
        return {"status": "ok", "message": "PSA concierge auth service. Open /docs for the API."}

    return app


app = create_app()
