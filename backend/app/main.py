from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import (
    admin,
    auth,
    checkout,
    coupons,
    customer,
    health,
    payments,
    plans,
    webhooks,
)
from app.core.config import settings, validate_runtime_settings
from app.core.logging_setup import logger
from app.db.session import init_db


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
    # Falha na subida se a configuração de produção estiver incompleta
    validate_runtime_settings(settings)
    init_db()
    yield


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    logger.info("UNIPET API inicializada (ambiente=%s)", settings.environment)

    # ===============================================================
    # CORS
    # ===============================================================
    origins: list[str] = []
    for item in settings.allowed_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)

    if not origins:
        origins = ["http://localhost:5173", "http://127.0.0.1:5173"]

    logger.info("CORS configurado com origins: %s", origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===============================================================
    # ROTAS
    # ===============================================================
    application.include_router(health.router, prefix="/health")
    application.include_router(auth.router, prefix=settings.api_v1_str)
    application.include_router(plans.router, prefix=settings.api_v1_str)
    application.include_router(checkout.router, prefix=settings.api_v1_str)
    application.include_router(coupons.router, prefix=settings.api_v1_str)
    application.include_router(payments.router, prefix=settings.api_v1_str)
    application.include_router(webhooks.router, prefix=settings.api_v1_str)
    application.include_router(customer.router, prefix=settings.api_v1_str)
    application.include_router(admin.router, prefix=settings.api_v1_str)

    @application.get("/")
    def root():
        return {"service": settings.project_name}

    return application


app = create_app()
