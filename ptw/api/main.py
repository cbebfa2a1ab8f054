from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ptw.api.routers import permits, approvals, extensions, notifications, health, users
from ptw.common.logger import setup_logger
from ptw.core.config import get_settings
from ptw.db.session import engine, init_db

settings = get_settings()

setup_logger(settings)


def create_app(*, create_schema: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_schema:
            init_db(engine)
        yield

    app = FastAPI(
        title=settings.app_name,
        description="Permit-to-work approval and lifecycle service",
        version=health.VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(permits.router, prefix="/api")
    app.include_router(approvals.router, prefix="/api")
    app.include_router(extensions.router, prefix="/api")
    app.include_router(notifications.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    app.include_router(health.router)

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": health.VERSION,
            "docs": "/docs" if settings.debug else None,
        }

    return app


app = create_app()
