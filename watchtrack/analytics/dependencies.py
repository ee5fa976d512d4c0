"""FastAPI dependencies for analytics."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .repository import SummaryRepository
from .rollup import DailyRollupService


def _unavailable(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "service_unavailable", "message": f"{name} not available"},
    )


async def get_rollup_service(request: Request) -> DailyRollupService:
    """Get rollup service from app state."""
    service = getattr(request.app.state, "rollup_service", None)
    if not service:
        raise _unavailable("Rollup service")
    return service


async def get_summary_repository(request: Request) -> SummaryRepository:
    """Get summary repository from app state."""
    repository = getattr(request.app.state, "summary_repository", None)
    if not repository:
        raise _unavailable("Analytics")
    return repository


RollupServiceDep = Annotated[DailyRollupService, Depends(get_rollup_service)]
SummaryRepositoryDep = Annotated[SummaryRepository, Depends(get_summary_repository)]
