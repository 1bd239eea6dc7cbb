"""FastAPI application entry point."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.api import router as api_router
from app.core.config import get_settings
from app.core.errors import parse_error_message
from app.core.logging import get_logger
from app.core.schemas_api import ApiResponse

logger = get_logger(__name__)

app = FastAPI(
    title="ASK Conversation Engine",
    description="ASK conversation sessions, plans and insights over Supabase",
    version="0.1.0",
)


def _error_response(status_code: int, error: str) -> JSONResponse:
    body = ApiResponse(success=False, error=error).model_dump(exclude_none=True)
    return JSONResponse(content=body, status_code=status_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(exc.status_code, parse_error_message(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid payload")
        error = f"{field}: {message}" if field else message
    else:
        error = "Invalid payload"
    return _error_response(400, error)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    if get_settings().APP_ENV == "prod":
        return _error_response(500, "Internal server error")
    return _error_response(500, parse_error_message(exc))


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include ASK API router
app.include_router(api_router, prefix="/api")
