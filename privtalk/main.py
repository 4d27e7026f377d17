import logging
import time
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from privtalk.chat.chat_routes import router as messages_router
from privtalk.chat.errors import ChatError
from privtalk.configs.logging_config import setup_logging
from privtalk.configs.settings import CORS_ORIGINS, is_development
from privtalk.media.media_routes import router as files_router
from privtalk.realtime.socket_routes import router as socket_router
from privtalk.services import ChatServices, build_services

setup_logging()
logger = logging.getLogger(__name__)


def create_app(services: Optional[ChatServices] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "services", None) is None:
            owned = build_services()
            await owned.startup()
            app.state.services = owned
        yield
        if owned is not None:
            owned.close()

    app = FastAPI(
        title="PrivTalk API",
        description="Two-party direct messaging with realtime delivery",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.info(f"{request.method} {request.url.path} {status_code} {latency_ms} ms")

    @app.exception_handler(ChatError)
    async def chat_error_handler(_request: Request, exc: ChatError):
        content = {"error": exc.error}
        if exc.status_code >= 500:
            if exc.detail:
                content["message"] = exc.detail
            if is_development():
                content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/api/health")
    async def health_check():
        """Health check"""
        svc = app.state.services
        return {
            "status": "ok",
            "service": "privtalk",
            "online_users": len(svc.presence) if svc else 0,
        }

    app.include_router(messages_router, prefix="/api")
    app.include_router(files_router, prefix="/api")
    app.include_router(socket_router)
    return app


app = create_app()
