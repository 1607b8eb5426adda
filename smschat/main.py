import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from smschat import storage
from smschat.auth import get_current_user_name, hash_password, issue_token, seed_users, verify_password
from smschat.config import settings
from smschat.lifecycle import (
    CallbackResult,
    MessageLifecycleService,
    MessageValidationError,
    get_lifecycle_service,
)
from smschat.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from smschat.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from smschat.provider_config import ProviderConfig, get_provider_config
from smschat.schemas import (
    DeliveryFailureResponse,
    ErrorListResponse,
    ErrorResponse,
    HealthResponse,
    LivenessResponse,
    LoginRequest,
    MessageCreateRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    StatusUpdatesResponse,
    TokenResponse,
    WebhookResponse,
    format_validation_errors,
)
from smschat.utils import utc_now_iso, verify_twilio_signature


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables and any configured accounts, then report whether
    SMS delivery is available.
    """
    storage.init_db()

    if settings.seed_users:
        with storage.SessionLocal() as db:
            seed_users(db, settings.seed_users)

    provider_config = get_provider_config()
    if provider_config.is_configured():
        logger.info("Twilio configuration verified")
    else:
        logger.warning(
            f"Twilio not fully configured. Missing: {', '.join(provider_config.missing_fields())}. "
            "SMS delivery will be disabled."
        )
    yield


app = FastAPI(
    title="SMS Chat API",
    description="Chat-style SMS messages relayed through Twilio with delivery status tracking",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = format_validation_errors(exc.errors())
    logger.info(f"Request validation failed: {errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"errors": errors},
    )


@app.exception_handler(MessageValidationError)
async def message_validation_handler(request: Request, exc: MessageValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"errors": exc.errors},
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Internal error: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "An internal error occurred"},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=LivenessResponse)
async def health_live() -> LivenessResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return LivenessResponse(status="ok")


@app.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "A dependency check failed"}},
)
async def health(
    response: Response,
    provider_config: ProviderConfig = Depends(get_provider_config),
) -> HealthResponse:
    """
    Readiness report for the app, the database and the Twilio configuration.

    Returns 503 unless every check reports "ok".
    """
    checks = {
        "app": "ok",
        "database": "ok" if storage.check_db_health() else "error",
        "twilio": "ok" if provider_config.is_configured() else "warning",
    }

    if checks["twilio"] != "ok":
        logger.warning("Twilio configuration incomplete")

    healthy = all(value == "ok" for value in checks.values())
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        checks=checks,
        timestamp=utc_now_iso(),
    )


# =============================================================================
# Auth Routes
# =============================================================================

@app.post(
    "/login",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
)
async def login(payload: LoginRequest, db: Session = Depends(storage.get_db)) -> TokenResponse:
    """Exchange a username/password pair for a bearer token."""
    user = storage.get_user_by_name(db, payload.user_name)

    if user is None or not await run_in_threadpool(verify_password, payload.password, user.password_digest):
        logger.info(f"Failed login for {payload.user_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    logger.info(f"User logged in: {user.user_name}")
    return TokenResponse(token=issue_token(user.user_name), user_name=user.user_name)


@app.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorListResponse, "description": "Validation error"}},
)
async def register(payload: RegisterRequest, db: Session = Depends(storage.get_db)):
    """Create an account and return a bearer token for it."""
    if storage.get_user_by_name(db, payload.user_name) is not None:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"errors": ["user_name has already been taken"]},
        )

    digest = await run_in_threadpool(hash_password, payload.password)
    try:
        user = storage.create_user(db, payload.user_name, digest)
    except storage.DuplicateUserError:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"errors": ["user_name has already been taken"]},
        )

    return RegisterResponse(token=issue_token(user.user_name), user_name=user.user_name)


# =============================================================================
# Messages Routes
# =============================================================================

@app.get("/messages", response_model=list[MessageResponse])
async def list_messages(
    user_name: str = Depends(get_current_user_name),
    service: MessageLifecycleService = Depends(get_lifecycle_service),
) -> list[MessageResponse]:
    """The caller's messages, newest first."""
    messages = service.list_messages(user_name)
    logger.debug(f"GET /messages: {len(messages)} messages for {user_name}")
    return [MessageResponse.model_validate(message) for message in messages]


@app.post(
    "/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        422: {"model": DeliveryFailureResponse, "description": "Validation error or delivery failure"},
    },
)
async def create_message(
    payload: MessageCreateRequest,
    user_name: str = Depends(get_current_user_name),
    service: MessageLifecycleService = Depends(get_lifecycle_service),
):
    """
    Store a new outbound message and hand it to Twilio.

    The record is kept even when delivery fails; the 422 response then
    carries the failed record alongside the error summary.
    """
    outcome = await run_in_threadpool(
        service.send_message,
        user_name,
        payload.message.phone_number,
        payload.message.message_body,
    )
    message = MessageResponse.model_validate(outcome.message)

    if not outcome.ok:
        body = DeliveryFailureResponse(errors=[f"SMS failed: {outcome.error}"], message=message)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=jsonable_encoder(body),
        )

    return message


@app.get("/messages/check_status_updates", response_model=StatusUpdatesResponse)
async def check_status_updates(
    user_name: str = Depends(get_current_user_name),
    service: MessageLifecycleService = Depends(get_lifecycle_service),
) -> StatusUpdatesResponse:
    """
    Poll Twilio for the caller's recent pending messages.

    Always returns the caller's full message list plus how many statuses
    changed during this call.
    """
    outcome = await run_in_threadpool(service.refresh_statuses, user_name)
    logger.info(f"Status refresh for {user_name}: {outcome.updates_count} updates")
    return StatusUpdatesResponse(
        messages=[MessageResponse.model_validate(message) for message in outcome.messages],
        updates_count=outcome.updates_count,
    )


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhooks/twilio/status",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Incomplete payload"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        404: {"model": ErrorResponse, "description": "Unknown MessageSid"},
    },
)
async def twilio_status_webhook(
    request: Request,
    provider_config: ProviderConfig = Depends(get_provider_config),
    service: MessageLifecycleService = Depends(get_lifecycle_service),
) -> WebhookResponse:
    """
    Twilio delivery status callback.

    Form fields: MessageSid, MessageStatus. Safe to receive repeatedly for
    the same SID; a status that does not change anything still returns
    success.
    """
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    message_sid = params.get("MessageSid")
    message_status = params.get("MessageStatus")

    if settings.TWILIO_VALIDATE_WEBHOOK_SIGNATURE:
        signature = request.headers.get("X-Twilio-Signature")
        if not verify_twilio_signature(str(request.url), params, signature, provider_config.auth_token):
            logger.warning("Invalid Twilio signature on status webhook")
            record_webhook_outcome("invalid_signature")
            log_webhook_data(request, message_sid, message_status, "invalid_signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

    if not message_sid or not message_status:
        logger.warning("Invalid webhook payload: missing MessageSid or MessageStatus")
        record_webhook_outcome("invalid_payload")
        log_webhook_data(request, message_sid, message_status, "invalid_payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    result = service.apply_status_callback(message_sid, message_status)
    record_webhook_outcome(result.value)
    log_webhook_data(request, message_sid, message_status, result.value)

    if result is CallbackResult.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found",
        )

    return WebhookResponse(status="success")


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
