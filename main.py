import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tradesync.api.router import CORS_HEADERS, router
from tradesync.config import settings
from tradesync.core.errors import ServiceError
from tradesync.database.engine import init_engine, init_schema_check
from tradesync.utils.logger import setup_logging

logger = logging.getLogger("tradesync.main")


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=CORS_HEADERS)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse({"error": "Server error"}, status_code=500, headers=CORS_HEADERS)


def create_app(init_db: bool = True) -> FastAPI:
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="tradesync",
        version="1.0.0",
        # Reverse-proxy aware Swagger/OpenAPI paths:
        root_path=settings.API_ROOT_PATH,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
    )

    # Browser preflights; bare terminal OPTIONS calls are answered by the router.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    )

    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)

    if init_db:
        @app.on_event("startup")
        async def _startup() -> None:
            init_engine()
            init_schema_check()
            logger.info("tradesync started env=%s", settings.ENV)

    return app


app = create_app()
