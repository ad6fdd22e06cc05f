from fastapi import APIRouter, Depends, HTTPException, status

from relay_api.core.security import get_machine_principal
from relay_api.schemas.members import MemberOut, MemberUpsertRequest
from relay_api.services.repository import (
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.put("", response_model=MemberOut)
async def upsert_member(
    payload: MemberUpsertRequest,
    principal=Depends(get_machine_principal),
    repository=Depends(get_repository),
) -> MemberOut:
    try:
        principal.require_scopes({"members:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid machine principal")

    try:
        member = await repository.upsert_member(
            external_id=payload.external_id,
            push_token=payload.push_token,
            profile_text=payload.profile_text,
            active=payload.active,
            actor_module_db_id=principal.actor_id,
        )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    return MemberOut(**member)
