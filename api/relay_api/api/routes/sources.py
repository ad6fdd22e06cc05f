from fastapi import APIRouter, Depends, HTTPException, status

from relay_api.core.security import get_machine_principal
from relay_api.schemas.snapshots import SnapshotBatchAccepted, SnapshotBatchRequest
from relay_api.services.repository import (
    RepositoryForbiddenError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.post(
    "/{source_key}/snapshots",
    response_model=SnapshotBatchAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_snapshots(
    source_key: str,
    payload: SnapshotBatchRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> SnapshotBatchAccepted:
    try:
        principal.require_scopes({"snapshots:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid machine principal")

    try:
        accepted = await repository.create_snapshots_and_enqueue_sync(
            source_key=source_key,
            source_kind=payload.source_kind,
            source_url=payload.source_url,
            cycle_key=payload.cycle_key,
            pages=[page.model_dump() for page in payload.pages],
            actor_module_db_id=principal.actor_id,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return SnapshotBatchAccepted(**accepted)
