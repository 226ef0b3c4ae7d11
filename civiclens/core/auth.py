import logging
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from civiclens.core.errors import ServiceNotInitializedError
from civiclens.services.complaint_service import ComplaintService
from civiclens.services.dashboard_service import DashboardService
from civiclens.services.service_factory import ServiceFactory

logger = logging.getLogger(__name__)


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Acting user for write operations, taken from the `X-User-Id` header.

    Identity is asserted by the gateway in front of this service; nothing here
    verifies it.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return x_user_id.strip()


def get_service_factory(request: Request) -> ServiceFactory:
    factory = getattr(request.app.state, "services", None)
    if factory is None or not factory.initialized:
        raise HTTPException(status_code=503, detail=str(ServiceNotInitializedError()))
    return factory


def get_complaint_service(request: Request) -> ComplaintService:
    factory = get_service_factory(request)
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        logger.warning("⚠️ Complaint store unavailable")
        raise HTTPException(status_code=503, detail="Complaint store unavailable")
    return ComplaintService(repository, factory.get_complaint_ai())


def get_dashboard_service(request: Request) -> DashboardService:
    get_service_factory(request)
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Complaint store unavailable")
    return DashboardService(repository)
