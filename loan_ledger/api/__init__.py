"""
Loan Ledger API Application Factory
"""

from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import get_config
from ..clock import SystemClock
from ..store import create_store
from ..service import LoanService
from ..errors import LedgerError, LoanNotFound, ConcurrentModification
from ..logging_config import setup_logging, get_logger
from .loans import router as loans_router

logger = get_logger("loan_ledger.api")


def error_status(error: LedgerError) -> int:
    """HTTP status of a ledger error"""
    if isinstance(error, LoanNotFound):
        return 404
    if isinstance(error, ConcurrentModification):
        return 409
    return 400


def create_app(service: Optional[LoanService] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if service is None:
        config = get_config()
        service = LoanService(create_store(config.database_url), SystemClock(), config=config)

    app = FastAPI(
        title="Loan Ledger API",
        description="Collection ledger for weekly, monthly, daily, interest-only and EMI loans",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.loan_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return JSONResponse(status_code=error_status(exc), content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        # Unparseable dates, unknown loan kinds or payment modes, duplicate loan ids
        logger.info(f"Rejected request to {request.url.path}: {exc}")
        return JSONResponse(
            status_code=400,
            content={"code": "INVALID_REQUEST", "message": str(exc), "details": {}}
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
