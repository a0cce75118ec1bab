"""FastAPI dependencies for reaching the service container."""
import logging

from fastapi import HTTPException, Request

from services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """Return the container built at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        logger.error("Service container not initialized")
        raise HTTPException(status_code=503, detail="Service not ready")
    return services
