from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from epg_guide.config import setup_logging
from epg_guide.dependencies import get_refresh_coordinator
from epg_guide.schemas import ErrorDetail, StandardErrorResponse
from epg_guide.services.scheduler_service import epg_scheduler

from epg_guide.routers import guide_router, main_router


setup_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting EPG Guide Service...")

    try:
        logger.info("Starting scheduler...")
        epg_scheduler.start(get_refresh_coordinator())
        logger.info("EPG Guide Service started successfully")
    except Exception as e:
        logger.error(f"Failed to start EPG Guide Service: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down EPG Guide Service...")

    try:
        epg_scheduler.shutdown()
        await get_refresh_coordinator().shutdown()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)

    logger.info("EPG Guide Service stopped")


app = FastAPI(
    title="EPG Guide Service",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(main_router)
app.include_router(guide_router)


def _error_response(status_code: int, code: str, message: str, context=None) -> JSONResponse:
    body = StandardErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        error=ErrorDetail(code=code, message=message, context=context),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Reject missing or malformed parameters with 400"""
    logger.error(f"Validation error for {request.method} {request.url.path}")
    logger.error(f"Validation details: {exc.errors()}")

    # Create a properly serializable error response
    errors = []
    for error in exc.errors():
        error_dict = {
            "type": error.get("type"),
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100]
        }
        errors.append(error_dict)

    return _error_response(400, "VALIDATION_ERROR", "Missing or invalid request parameters", errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Turn unexpected failures into a 500 response"""
    logger.error(f"Unhandled error for {request.method} {request.url.path}: {exc}", exc_info=True)
    return _error_response(500, "INTERNAL_ERROR", "Internal server error")
