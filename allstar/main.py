"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from allstar.config import get_settings
from allstar.domain.billing import BillingNotFoundError, BillingValidationError
from allstar.domain.schedule import ScheduleValidationError
from allstar.infrastructure.db.session import check_db_connection
from allstar.api.v1 import cron, invoices, payments, subscriptions

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.SCHEDULER_ENABLED:
        from allstar.application.scheduler import start_scheduler, shutdown_scheduler
        start_scheduler()
        yield
        shutdown_scheduler()
    else:
        yield


def create_app() -> FastAPI:
    """
    Application factory: builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Allstar Billing",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # Error-logging middleware: catches ALL exceptions including sync routes
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import Response

    class ErrorLoggingMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            try:
                response = await call_next(request)
                return response
            except Exception as exc:
                tb_str = traceback.format_exc()
                logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
                return Response(content=f"Internal Server Error: {exc}", status_code=500)

    app.add_middleware(ErrorLoggingMiddleware)

    # Domain errors -> HTTP
    @app.exception_handler(BillingNotFoundError)
    async def not_found_handler(request: Request, exc: BillingNotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(BillingValidationError)
    async def validation_handler(request: Request, exc: BillingValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ScheduleValidationError)
    async def schedule_handler(request: Request, exc: ScheduleValidationError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    # Routers
    app.include_router(cron.router)
    app.include_router(invoices.router)
    app.include_router(subscriptions.router)
    app.include_router(payments.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (checks the database)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "allstar.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
