import logging
import os
from contextlib import asynccontextmanager
from urllib.parse import urlencode

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .dependencies import GateRedirect
from .errors import (
    AppError,
    AuthError,
    InternalError,
    NotFoundError,
    PermissionError,
    ValidationError,
    error_payload,
    resolve_error_code,
)
from .routers import access
from .state import AppState

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()


def _resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


log_level = _resolve_log_level(log_level_name)

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
logger = logging.getLogger("admin_gate")
logger.setLevel(log_level)

SAFE_HTTP_MESSAGES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.message,
    status.HTTP_401_UNAUTHORIZED: AuthError.message,
    status.HTTP_403_FORBIDDEN: PermissionError.message,
    status.HTTP_404_NOT_FOUND: NotFoundError.message,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.message,
}


def _log_error(request: Request, status_code: int, code: str, message: str, exc: Exception | None = None) -> None:
    request_id = request.headers.get("x-request-id")
    log_message = f"[{code}] path={request.url.path} request_id={request_id or 'n/a'} message={message}"
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(log_message, exc_info=exc)
    else:
        logger.warning(log_message, exc_info=exc)


def redirect_url(redirect_to: str, from_location: str | None) -> str:
    if from_location is None:
        return redirect_to
    return f"{redirect_to}?{urlencode({'next': from_location})}"


async def handle_gate_redirect(request: Request, exc: GateRedirect) -> Response:
    decision = exc.decision
    if exc.wants_json:
        error = AuthError if decision.from_location is not None else PermissionError
        _log_error(request, error.status_code, error.code, error.message)
        return JSONResponse(
            status_code=error.status_code,
            content=error_payload(
                error.code,
                error.message,
                {"redirect_to": decision.redirect_to, "from": decision.from_location},
            ),
        )
    logger.info(
        "Gate redirect path=%s redirect_to=%s", request.url.path, decision.redirect_to
    )
    return RedirectResponse(
        redirect_url(decision.redirect_to, decision.from_location),
        status_code=status.HTTP_303_SEE_OTHER,
    )


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.code, exc.message, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.code, exc.message, exc.details),
    )


async def handle_http_exception(
    request: Request, exc: HTTPException | StarletteHTTPException
) -> JSONResponse:
    safe_message = SAFE_HTTP_MESSAGES.get(
        exc.status_code,
        InternalError.message if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else "Request failed",
    )
    detail = exc.detail
    detail_message = detail if isinstance(detail, str) else ""
    log_message = detail_message.strip() or safe_message
    code = resolve_error_code(exc.status_code)
    _log_error(request, exc.status_code, code, log_message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code, safe_message, detail),
    )


async def handle_unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
    _log_error(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        InternalError.message,
        exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(InternalError.code, InternalError.message, None),
    )


def create_app(state: AppState | None = None) -> FastAPI:
    """Build the application.

    With ``state`` the caller owns the collaborators; otherwise they are
    built from settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application")
        owned = getattr(app.state, "gate", None) is None
        if owned:
            settings = get_settings()
            if settings.debug:
                logger.warning("DEBUG=true, do not use in production")
            app.state.gate = AppState.from_settings(settings)

        yield

        if owned:
            await app.state.gate.aclose()
            app.state.gate = None

    app = FastAPI(title="Admin Dashboard Gate", lifespan=lifespan)
    app.state.gate = state

    app.include_router(access.router)

    app.add_exception_handler(GateRedirect, handle_gate_redirect)
    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unhandled_exception)

    @app.get("/health", tags=["health"])
    async def healthcheck(request: Request) -> JSONResponse:
        gate_state: AppState | None = request.app.state.gate
        if gate_state is not None and gate_state.engine is not None:
            try:
                async with gate_state.engine.connect() as connection:
                    await connection.execute(text("SELECT 1"))
            except SQLAlchemyError as exc:
                logger.error("Healthcheck database probe failed: %s", exc)
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "error"}
                )
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})

    return app


app = create_app()
