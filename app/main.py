import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, Response, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.storage import (
    init_db,
    check_db_health,
    get_db,
    StorageError,
    MessageNotFound,
    list_messages as fetch_messages,
    create_message as insert_message,
    get_message_by_id,
    delete_message as remove_message,
    increment_likes,
)
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_operation_data
from app.metrics import record_message_operation, get_metrics, get_metrics_content_type
from app.schemas import (
    ApiResponse,
    DeletedMessage,
    HealthResponse,
    MessageCreateRequest,
    MessageResponse,
    NotFoundResponse,
    utc_timestamp,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

API_VERSION = "2.0.0"

# SQLite INTEGER is a signed 64-bit value
MAX_MESSAGE_ID = 2**63 - 1


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables and seed sample messages into an empty board
    """
    init_db()
    yield


app = FastAPI(
    title="Class Message Board API",
    description="Anonymous class message board: post, list, like and delete short messages",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Helpers
# =============================================================================

def envelope(status_code: int, success: bool, data: Any = None, message: str = "") -> JSONResponse:
    """Wrap a payload in the {success, data, message, timestamp} envelope."""
    body = ApiResponse[Any](success=success, data=data, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def serialize_message(message) -> dict:
    return MessageResponse.model_validate(message).model_dump()


def parse_message_id(raw: str) -> Optional[int]:
    """
    Parse a path id; only plain positive decimal integers are accepted.

    Stricter than a parseInt-style prefix parse: "12abc" and "1.5" are
    rejected instead of being read as 12 and 1.
    """
    if not raw.isascii() or not raw.isdigit():
        return None
    value = int(raw)
    if value <= 0 or value > MAX_MESSAGE_ID:
        return None
    return value


def client_ip(request: Request) -> str:
    """Caller address, honouring X-Forwarded-For when running behind a proxy."""
    if settings.TRUST_PROXY:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def track(request: Request, result: str, message_id: Optional[int] = None) -> None:
    """Record a message operation outcome in metrics and the request log."""
    route = request.scope.get("route")
    operation = getattr(route, "name", None) or "unknown"
    record_message_operation(operation, result)
    log_operation_data(request, operation=operation, result=result, message_id=message_id)


def invalid_id(request: Request, raw: str) -> JSONResponse:
    logger.info(f"Rejected message id: {raw!r}")
    track(request, "validation_error")
    return envelope(status.HTTP_400_BAD_REQUEST, False, message="Invalid message id")


def not_found(request: Request, message_id: int) -> JSONResponse:
    track(request, "not_found", message_id)
    return envelope(status.HTTP_404_NOT_FOUND, False, message="Message not found")


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Log storage failures server-side; clients only see a generic error."""
    logger.error(f"Storage failure on {request.method} {request.url.path}", exc_info=exc)
    track(request, "error")
    return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, False, message="Internal server error")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        body = NotFoundResponse(message="Endpoint not found", path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())
    return envelope(exc.status_code, False, message=str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, False, message="Internal server error")


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="healthy")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    messages table exists, otherwise 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


@app.get("/api")
async def api_info() -> dict:
    """Service information and endpoint map."""
    return {
        "name": "Class Message Board API",
        "version": API_VERSION,
        "description": "FastAPI + SQLite RESTful API",
        "status": "running",
        "endpoints": {
            "GET /api/messages": "List all messages, newest first",
            "POST /api/messages": "Create a message",
            "GET /api/messages/{id}": "Get one message",
            "DELETE /api/messages/{id}": "Delete a message",
            "PUT /api/messages/{id}/like": "Like a message",
        },
        "timestamp": utc_timestamp(),
    }


# =============================================================================
# Message Routes
# =============================================================================

@app.get(
    "/api/messages",
    name="list",
    response_model=ApiResponse[list[MessageResponse]],
)
async def list_messages(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """List every message, newest first."""
    messages = fetch_messages(db)
    track(request, "ok")
    return envelope(
        status.HTTP_200_OK,
        True,
        [serialize_message(m) for m in messages],
        "Messages retrieved",
    )


@app.post(
    "/api/messages",
    name="create",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[MessageResponse],
    responses={400: {"model": ApiResponse[None], "description": "Validation error"}},
)
async def create_message(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """
    Post a new message.

    Body:
        - content: required, 1-200 characters after trimming
        - nickname: optional, at most 20 characters after trimming;
          defaults to the anonymous nickname
    """
    raw_body = await request.body()

    try:
        payload = json.loads(raw_body) if raw_body else None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.info(f"Invalid JSON body: {e}")
        payload = None

    if not isinstance(payload, dict):
        track(request, "validation_error")
        return envelope(
            status.HTTP_400_BAD_REQUEST, False,
            message="Request body must be a JSON object",
        )

    try:
        data = MessageCreateRequest.model_validate(payload)
    except ValidationError as e:
        reason = e.errors()[0]["msg"]
        logger.info(f"Message rejected: {reason}")
        track(request, "validation_error")
        return envelope(status.HTTP_400_BAD_REQUEST, False, message=reason)

    message = insert_message(
        db=db,
        content=data.content,
        nickname=data.nickname,
        ip_address=client_ip(request),
    )
    track(request, "ok", message.id)
    return envelope(
        status.HTTP_201_CREATED, True, serialize_message(message), "Message created"
    )


@app.get(
    "/api/messages/{message_id}",
    name="get",
    response_model=ApiResponse[MessageResponse],
)
async def get_message(message_id: str, request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """Fetch one message by id."""
    parsed_id = parse_message_id(message_id)
    if parsed_id is None:
        return invalid_id(request, message_id)

    message = get_message_by_id(db, parsed_id)
    if message is None:
        return not_found(request, parsed_id)

    track(request, "ok", parsed_id)
    return envelope(status.HTTP_200_OK, True, serialize_message(message), "Message retrieved")


@app.delete(
    "/api/messages/{message_id}",
    name="delete",
    response_model=ApiResponse[DeletedMessage],
)
async def delete_message(message_id: str, request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """
    Permanently delete a message.
    Existence is checked first so a missing id answers 404, not 500.
    """
    parsed_id = parse_message_id(message_id)
    if parsed_id is None:
        return invalid_id(request, message_id)

    if get_message_by_id(db, parsed_id) is None:
        return not_found(request, parsed_id)

    if not remove_message(db, parsed_id):
        # Removed by another request since the existence check
        return not_found(request, parsed_id)

    track(request, "ok", parsed_id)
    return envelope(
        status.HTTP_200_OK, True, DeletedMessage(id=parsed_id).model_dump(), "Message deleted"
    )


@app.put(
    "/api/messages/{message_id}/like",
    name="like",
    response_model=ApiResponse[MessageResponse],
)
async def like_message(message_id: str, request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """Add one like and return the updated message."""
    parsed_id = parse_message_id(message_id)
    if parsed_id is None:
        return invalid_id(request, message_id)

    try:
        message = increment_likes(db, parsed_id)
    except MessageNotFound:
        return not_found(request, parsed_id)

    track(request, "ok", parsed_id)
    return envelope(status.HTTP_200_OK, True, serialize_message(message), "Message liked")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
