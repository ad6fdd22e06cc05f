from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_api.core.security import get_machine_principal
from relay_api.schemas.jobs import (
    ClaimRequest,
    ExpireResourcesOut,
    ExpireResourcesRequest,
    JobOut,
    ReapExpiredOut,
    ReapExpiredRequest,
    ResultRequest,
)
from relay_api.services.repository import (
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()


@router.get("", response_model=list[JobOut])
async def get_jobs(
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=20, ge=1, le=100),
) -> list[JobOut]:
    try:
        principal.require_scopes({"jobs:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        jobs = await repository.list_queued_jobs(limit=limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [JobOut(**job) for job in jobs]


@router.post("/reap-expired", response_model=ReapExpiredOut)
async def reap_expired_jobs(
    payload: ReapExpiredRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> ReapExpiredOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid machine principal")

    try:
        requeued = await repository.requeue_expired_claimed_jobs(module_db_id=principal.actor_id, limit=payload.limit)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ReapExpiredOut(requeued=requeued)


@router.post("/expire-resources", response_model=ExpireResourcesOut)
async def expire_resources(
    payload: ExpireResourcesRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> ExpireResourcesOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid machine principal")

    try:
        swept = await repository.expire_resources(
            actor_type=principal.actor_type,
            actor_id=principal.actor_id,
            limit=payload.limit,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return ExpireResourcesOut(**swept)


@router.post("/{job_id}/claim", response_model=JobOut)
async def claim_job(
    job_id: str,
    payload: ClaimRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> JobOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid machine principal")

    try:
        job = await repository.claim_job(
            job_id=job_id,
            module_db_id=principal.actor_id,
            lease_seconds=payload.lease_seconds,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return JobOut(**job)


@router.post("/{job_id}/result", response_model=JobOut)
async def submit_job_result(
    job_id: str,
    payload: ResultRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> JobOut:
    try:
        principal.require_scopes({"jobs:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid machine principal")

    try:
        job = await repository.submit_job_result(
            job_id=job_id,
            module_db_id=principal.actor_id,
            status=payload.status,
            result_json=payload.result_json,
            error_json=payload.error_json,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return JobOut(**job)
