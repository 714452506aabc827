"""
Checkout Backend - FastAPI Application

Card payment demonstration: tokenization, fraud scoring, device data
collection, 3-D Secure authentication and customer-initiated payment.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from . import __version__
from .config import settings
from .exceptions import CheckoutError
from .services.checkout_service import CheckoutService
from .services.gateway_client import GatewayClient
from .services.scheduler import ExpiryScheduler
from .services.transaction_store import InMemoryTransactionStore
from .api.checkout import router as checkout_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: start the transaction expiry sweep
    - Shutdown: stop the scheduler, close the gateway client
    """
    # Startup
    logger.info("Starting checkout server...")
    logger.info(f"Demo mode: {settings.demo_mode}")
    logger.info(f"Gateway: {settings.gateway_base_url}")
    logger.info(f"Public base URL: {settings.public_base_url}")

    service: CheckoutService = app.state.checkout_service
    expiry_scheduler = ExpiryScheduler(service.store, service.config.sweep_interval_minutes)
    expiry_scheduler.start()
    app.state.expiry_scheduler = expiry_scheduler

    logger.info("Server startup complete")

    yield

    # Shutdown
    logger.info("Shutting down checkout server...")

    expiry_scheduler.shutdown(wait=True)
    await service.gateway.aclose()
    logger.info("Gateway client closed")


def create_app(checkout_service: Optional[CheckoutService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        checkout_service: Service to serve requests with; built from settings if omitted
    """
    app = FastAPI(
        title="Checkout API",
        description="Card payment with fraud scoring and 3-D Secure",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.checkout_service = checkout_service or CheckoutService(
        store=InMemoryTransactionStore(ttl_minutes=settings.transaction_ttl_minutes),
        gateway=GatewayClient(settings),
        config=settings,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        """
        Handle workflow errors with standardized response format.

        Client errors (bad input, unknown reference, wrong stage) return 400;
        gateway failures return 502 without the gateway body.
        """
        logger.warning(
            f"Checkout error: {exc.error_code} - {exc.message}",
            extra={"details": exc.details}
        )

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs full exception for debugging but returns generic message to client.
        """
        logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error_code": "internal_error",
                "message": "An unexpected error occurred",
                "details": {"error_type": type(exc).__name__} if settings.demo_mode else {}
            }
        )

    @app.get("/api/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers.

        Returns:
            Server status and version information
        """
        return {
            "status": "healthy",
            "version": __version__,
            "demo_mode": settings.demo_mode,
            "in_flight_transactions": len(app.state.checkout_service.store),
        }

    app.include_router(checkout_router, tags=["Checkout"])

    return app


app = create_app()


def run():
    """Console entry point."""
    import uvicorn
    uvicorn.run(
        "checkout.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.demo_mode,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
