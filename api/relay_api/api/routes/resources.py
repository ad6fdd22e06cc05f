from fastapi import APIRouter, Depends, HTTPException, Query, status

from relay_api.core.security import get_human_principal
from relay_api.schemas.resources import (
    MatchingStatus,
    NotificationOut,
    ResourceApproveRequest,
    ResourceMergeRequest,
    ResourceOut,
    ResourceRejectRequest,
    ResourceStatus,
    ResourceVersionOut,
)
from relay_api.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.get("", response_model=list[ResourceOut])
async def list_resources(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    status_filter: ResourceStatus | None = Query(default=None, alias="status"),
    matching_status: MatchingStatus | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ResourceOut]:
    try:
        principal.require_scopes({"resources:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        rows = await repository.list_resources(
            status=status_filter,
            matching_status=matching_status,
            limit=limit,
            offset=offset,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return [ResourceOut(**row) for row in rows]


@router.get("/review-queue", response_model=list[ResourceOut])
async def list_review_queue(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ResourceOut]:
    try:
        principal.require_scopes({"review:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        rows = await repository.list_review_queue(limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [ResourceOut(**row) for row in rows]


@router.get("/{resource_id}", response_model=ResourceOut)
async def get_resource(
    resource_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ResourceOut:
    try:
        principal.require_scopes({"resources:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        row = await repository.get_resource(resource_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return ResourceOut(**row)


@router.post("/{resource_id}/approve", response_model=ResourceOut)
async def approve_resource(
    resource_id: str,
    payload: ResourceApproveRequest | None = None,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ResourceOut:
    try:
        principal.require_scopes({"review:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    edits = payload.model_dump(exclude_none=True) if payload is not None else {}
    try:
        row = await repository.approve_resource(
            resource_id=resource_id,
            actor_user_id=principal.actor_id,
            edits=edits,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return ResourceOut(**row)


@router.post("/{resource_id}/reject", response_model=ResourceOut)
async def reject_resource(
    resource_id: str,
    payload: ResourceRejectRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ResourceOut:
    try:
        principal.require_scopes({"review:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        row = await repository.reject_resource(
            resource_id=resource_id,
            actor_user_id=principal.actor_id,
            reason=payload.reason,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return ResourceOut(**row)


@router.post("/{resource_id}/merge", response_model=ResourceOut)
async def merge_resource(
    resource_id: str,
    payload: ResourceMergeRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ResourceOut:
    try:
        principal.require_scopes({"review:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        row = await repository.merge_resource(
            resource_id=resource_id,
            canonical_resource_id=payload.canonical_resource_id,
            actor_user_id=principal.actor_id,
            reason=payload.reason,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return ResourceOut(**row)


@router.post("/{resource_id}/rematch", response_model=ResourceOut)
async def rematch_resource(
    resource_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ResourceOut:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    try:
        row = await repository.request_rematch(resource_id=resource_id, actor_user_id=principal.actor_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return ResourceOut(**row)


@router.get("/{resource_id}/versions", response_model=list[ResourceVersionOut])
async def list_resource_versions(
    resource_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[ResourceVersionOut]:
    try:
        principal.require_scopes({"resources:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        rows = await repository.list_resource_versions(resource_id=resource_id, limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return [ResourceVersionOut(**row) for row in rows]


@router.get("/{resource_id}/notifications", response_model=list[NotificationOut])
async def list_resource_notifications(
    resource_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[NotificationOut]:
    try:
        principal.require_scopes({"resources:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        rows = await repository.list_resource_notifications(resource_id=resource_id, limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return [NotificationOut(**row) for row in rows]
