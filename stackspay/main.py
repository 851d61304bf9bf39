from typing import Any, Optional
import logging

from fastapi import FastAPI

from stackspay.api.endpoints import services
from stackspay.api.models.services import HealthResponse
from stackspay.core.config import settings
from stackspay.core.version import VERSION
from stackspay.services.chain import ChainClient
from stackspay.x402.middleware import PaymentMiddleware

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(chain_client: Optional[ChainClient] = None, **gate_options: Any) -> FastAPI:
    """
    Build the demo seller app.

    ``chain_client`` and ``gate_options`` are passed to PaymentMiddleware;
    anything not given falls back to settings.
    """
    application = FastAPI(title=settings.PROJECT_NAME, version=VERSION)

    application.add_middleware(
        PaymentMiddleware,
        routes=services.PAID_ROUTES,
        chain_client=chain_client,
        **gate_options,
    )

    application.include_router(services.router, tags=["services"])

    @application.get("/health", response_model=HealthResponse, summary="Health Check", tags=["default"])
    def health() -> HealthResponse:
        """ Basic health check endpoint (free). """
        logger.info("Health endpoint accessed.")
        return HealthResponse(status="healthy", agent="demo-seller", version=VERSION)

    if settings.X402_ENABLED:
        logger.info(
            f"x402 gate enabled on {settings.X402_NETWORK}, paying to {settings.X402_PAY_TO_ADDRESS} "
            f"({len(services.PAID_ROUTES)} paid routes)"
        )
    else:
        logger.warning("x402 gate disabled (X402_ENABLED=false); paid routes are free")

    return application


app = create_app()
