"""Map domain and chain failures onto consistent JSON error responses.

Claim precondition failures carry their own status code. Chain failures
surface as 502 (reverted or timed out upstream) or 503 (not configured);
in every chain case nothing was written to the database.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from web3.exceptions import TimeExhausted

from badgebound.errors import ChainConfigError, ChainTransactionError, ClaimError

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"error": "Validation error", "details": exc.errors()},
        )

    @app.exception_handler(ClaimError)
    async def claim_error_handler(_request: Request, exc: ClaimError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(ChainConfigError)
    async def chain_config_handler(_request: Request, exc: ChainConfigError) -> JSONResponse:
        logger.error("chain_not_configured", error=str(exc))
        return JSONResponse(status_code=503, content={"error": "Badge minting is not available"})

    @app.exception_handler(ChainTransactionError)
    async def chain_tx_handler(request: Request, exc: ChainTransactionError) -> JSONResponse:
        logger.error("chain_transaction_failed", path=request.url.path, tx_hash=exc.tx_hash, error=str(exc))
        return JSONResponse(
            status_code=502,
            content={"error": "Badge mint transaction failed", "txHash": exc.tx_hash},
        )

    @app.exception_handler(TimeExhausted)
    async def chain_timeout_handler(request: Request, exc: TimeExhausted) -> JSONResponse:
        logger.error("chain_receipt_timeout", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=502, content={"error": "Badge mint transaction not confirmed in time"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
