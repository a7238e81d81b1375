import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.dependencies import get_db
from app.api.v1 import router as api_router
from app.config.config import settings
from app.core.exceptions import AppError
from app.core.rbac_init import initialize_rbac
from app.core.utils import configure_logging
from app.db.session import AsyncSessionLocal, engine

logger = logging.getLogger("uvicorn")

_HTTP_ERROR_KINDS = {
    400: "validation_error",
    401: "auth_error",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
}


def error_body(kind: str, message: str, details=None) -> dict:
    body = {"kind": kind, "message": message}
    if details:
        body["details"] = details
    return {"error": body}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup & Shutdown lifespan events."""
    # -------- STARTUP --------
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting FastAPI application...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    try:
        async with engine.begin() as conn:
            await conn.run_sync(lambda _: None)
        logger.info("Database connection established successfully.")

        async with AsyncSessionLocal() as db:
            await initialize_rbac(db)
        logger.info("RBAC initialized successfully.")

    except Exception as e:
        logger.error(f"Startup initialization failed: {e}")
        logger.error(traceback.format_exc())
        logger.error("Application may not function correctly")

    yield

    # -------- SHUTDOWN --------
    await engine.dispose()
    logger.info("Database engine disposed")
    logger.info("Shutdown complete")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=error_body("validation_error", "Invalid request payload", errors),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        kind = _HTTP_ERROR_KINDS.get(exc.status_code, "internal")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(kind, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error(f"Unhandled Error: {trace}")

        return JSONResponse(
            status_code=500,
            content=error_body("internal", "Internal server error"),
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        lifespan=lifespan,
    )

    # ---------------------- EXCEPTION HANDLERS ----------------------
    register_exception_handlers(app)

    # ---------------------- CORS ----------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000, compresslevel=6)

    # ---------------------- ROUTES ----------------------
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # ---------------------- HEALTH CHECK ----------------------
    @app.get("/health")
    async def health_check(db: AsyncSession = Depends(get_db)):
        try:
            await db.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "environment": settings.ENVIRONMENT,
                "database": "connected",
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}", exc_info=True)
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "disconnected"},
            )

    @app.get("/")
    async def root():
        return {"environment": settings.ENVIRONMENT, "version": settings.VERSION}

    return app


app = create_app()
