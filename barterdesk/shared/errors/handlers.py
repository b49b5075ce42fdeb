"""
Centralized error handlers for FastAPI.

Maps barter domain errors to HTTP responses.
No stack traces or internal details are exposed to clients.
All error responses use the ErrorResponse schema: the stable error
code plus a human-readable detail.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from barterdesk.domain.barter.errors import (
    ActorNotPermittedError,
    BarterDomainError,
    ExternalDependencyError,
    GuardError,
    LedgerUnavailableError,
    NotFoundError,
    TradeTerminalError,
    ValidationError,
)

logger = logging.getLogger(__name__)

HTTP_403 = 403
HTTP_404 = 404
HTTP_409 = 409
HTTP_422 = 422
HTTP_500 = 500
HTTP_502 = 502
HTTP_503 = 503


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: dict[str, str | None] = {"error": error}
    if detail:
        body["detail"] = detail
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    """Register all domain error handlers on the FastAPI application.

    Starlette picks the handler of the most specific class in the
    exception's MRO, so ActorNotPermittedError wins over GuardError.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation(_request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("Validation failed: code=%s", exc.code)
        return _error_response(HTTP_422, exc.code, exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        logger.warning("Not found: %s", exc.message)
        return _error_response(HTTP_404, exc.code, exc.message)

    @app.exception_handler(ActorNotPermittedError)
    async def handle_actor_not_permitted(
        _request: Request, exc: ActorNotPermittedError
    ) -> JSONResponse:
        logger.warning("Actor not permitted: actor_id=%s", exc.actor_id)
        return _error_response(HTTP_403, exc.code, exc.message)

    @app.exception_handler(GuardError)
    async def handle_guard(_request: Request, exc: GuardError) -> JSONResponse:
        logger.warning("Guard failed: code=%s", exc.code)
        return _error_response(HTTP_409, exc.code, exc.message)

    @app.exception_handler(TradeTerminalError)
    async def handle_terminal(_request: Request, exc: TradeTerminalError) -> JSONResponse:
        logger.warning("Mutation of terminal trade refused: trade_id=%s", exc.trade_id)
        return _error_response(HTTP_409, exc.code, exc.message)

    @app.exception_handler(LedgerUnavailableError)
    async def handle_ledger_unavailable(
        _request: Request, exc: LedgerUnavailableError
    ) -> JSONResponse:
        logger.error("Ledger unavailable: %s", exc.reason)
        return _error_response(HTTP_503, exc.code, "Escrow ledger unavailable, retry later")

    @app.exception_handler(ExternalDependencyError)
    async def handle_external(
        _request: Request, exc: ExternalDependencyError
    ) -> JSONResponse:
        logger.error("External dependency failed: code=%s", exc.code)
        return _error_response(HTTP_502, exc.code, exc.message)

    @app.exception_handler(BarterDomainError)
    async def handle_barter_domain(
        _request: Request, exc: BarterDomainError
    ) -> JSONResponse:
        """Catch-all for unmapped barter domain errors."""
        logger.error("Unhandled barter domain error: %s", exc.message)
        return _error_response(HTTP_500, "INTERNAL_ERROR", "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected errors. Never exposes internals."""
        logger.exception("Unexpected error: %s", type(exc).__name__)
        return _error_response(HTTP_500, "INTERNAL_ERROR", "Internal server error")
