# app/main.py
import logging
import os
import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.modules.docchat.services.errors import DocChatError
from app.modules.router import router as modules_router
from core.config import settings, wire_services
from core.logging import get_logger

logger = get_logger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version="1.0.0",
        docs_url="/docs" if settings.ENVIRONMENT == "dev" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT == "dev" else None,
        openapi_url="/openapi.json" if settings.ENVIRONMENT == "dev" else None,
    )

    # Middleware to log every request
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        logger.info(f"Incoming request: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = (time.time() - start_time) * 1000
        logger.info(f"Response status: {response.status_code} | Time: {process_time:.2f}ms")
        return response

    @app.exception_handler(DocChatError)
    async def docchat_error_handler(request: Request, exc: DocChatError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=settings.CORS_EXPOSE_HEADERS,
    )

    app.include_router(modules_router, prefix=settings.FASTAPI_API_V1_PATH)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME} API!"}

    @app.api_route("/healthz", methods=["GET", "HEAD"], include_in_schema=False)
    async def healthz():
        return JSONResponse({"status": "ok"})

    @app.on_event("startup")
    async def startup_event():
        """Application startup event handler."""
        logger.info(f"Starting {settings.PROJECT_NAME} API...")

        from app.services.memory.init_db import init_database

        logger.info("Initializing conversation database...")
        await init_database()

        if settings.LOG_QDRANT_HTTP == "1":
            logging.getLogger("httpx").setLevel(logging.INFO)

        wire_services(app)
        logger.info("Application startup completed successfully")

    @app.on_event("shutdown")
    async def shutdown_event():
        pipeline = getattr(app.state, "pipeline", None)
        if pipeline is not None:
            # Let in-flight turn persistence finish before the loop goes away
            await pipeline.drain()
        logger.info("FastAPI application stopped")

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port)
