from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_api.core.security import get_human_principal
from relay_api.schemas.jobs import (
    AdminJobOut,
    ExpireResourcesOut,
    ExpireResourcesRequest,
    JobKind,
    JobStatus,
    ReapExpiredOut,
    ReapExpiredRequest,
)
from relay_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.get("/jobs", response_model=list[AdminJobOut])
async def list_jobs(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    kind: JobKind | None = Query(default=None),
    target_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[AdminJobOut]:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        rows = await repository.list_admin_jobs(
            status=status_filter,
            kind=kind,
            target_type=target_type,
            limit=limit,
            offset=offset,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return [AdminJobOut(**row) for row in rows]


@router.post("/jobs/reap-expired", response_model=ReapExpiredOut)
async def reap_expired_jobs(
    payload: ReapExpiredRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ReapExpiredOut:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        requeued = await repository.admin_requeue_expired_claimed_jobs(
            actor_user_id=principal.actor_id,
            limit=payload.limit,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return ReapExpiredOut(requeued=requeued)


@router.post("/jobs/{job_id}/requeue", response_model=AdminJobOut)
async def requeue_job(
    job_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> AdminJobOut:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        row = await repository.admin_requeue_job(job_id=job_id, actor_user_id=principal.actor_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return AdminJobOut(**row)


@router.post("/resources/expire", response_model=ExpireResourcesOut)
async def expire_resources(
    payload: ExpireResourcesRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ExpireResourcesOut:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        swept = await repository.expire_resources(
            actor_type=principal.actor_type,
            actor_id=principal.actor_id,
            limit=payload.limit,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ExpireResourcesOut(**swept)
