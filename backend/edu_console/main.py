from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edu_console.api.v1.router import api_router, mux_router
from edu_console.core.logging import setup_logging
from edu_console.core.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    stores = getattr(app.state, "tenant_stores", None)
    if stores is not None:
        await stores.close_all()


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Edu Console API", lifespan=lifespan)

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/health")
    async def health():
        return {"ok": True, "mux": settings.mux_configured}

    app.include_router(mux_router, prefix="/api")
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()
