from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from vision_console.api.deps import Claims, ClientId, require_perm
from vision_console.domain.access import FullAccess, allowed_vision_types, has_client_access
from vision_console.domain.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransientIOError,
    ValidationConflictError,
)
from vision_console.domain.models import AccessRead, CompanyCreate, CompanyRead, RootRead
from vision_console.domain.permissions import PERM_COMPANY_READ, PERM_COMPANY_WRITE
from vision_console.services.access_service import AccessService
from vision_console.services.roster_service import RosterService, to_company_read

router = APIRouter()


def get_roster_service() -> RosterService:
    return RosterService()


def get_access_service() -> AccessService:
    return AccessService()


Roster = Annotated[RosterService, Depends(get_roster_service)]
Access = Annotated[AccessService, Depends(get_access_service)]


def _handle_roster_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, ValidationConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, TransientIOError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


@router.get("/access", response_model=AccessRead)
def read_access(client_id: ClientId, claims: Claims, access_service: Access) -> AccessRead:
    try:
        access = access_service.resolve_access(claims["sub"], client_id)
    except TransientIOError as exc:
        _handle_roster_error(exc)
        raise
    return AccessRead(
        client_id=client_id,
        full_access=isinstance(access, FullAccess),
        company_ids=[] if isinstance(access, FullAccess) else sorted(access.company_ids),
        allowed_vision_types=sorted(allowed_vision_types(access)) if has_client_access(access) else [],
    )


@router.get(
    "/companies",
    response_model=list[CompanyRead],
    dependencies=[Depends(require_perm(PERM_COMPANY_READ))],
)
def list_companies(client_id: ClientId, claims: Claims, access_service: Access, roster: Roster) -> list[CompanyRead]:
    try:
        access = access_service.resolve_access(claims["sub"], client_id)
        if not has_client_access(access):
            raise PermissionDeniedError("no access to this client")
        companies = roster.list_accessible_companies(client_id, access)
        return [to_company_read(item) for item in companies]
    except (PermissionDeniedError, TransientIOError) as exc:
        _handle_roster_error(exc)
        raise


@router.get(
    "/companies/roots",
    response_model=list[RootRead],
    dependencies=[Depends(require_perm(PERM_COMPANY_READ))],
)
def list_roots(client_id: ClientId, claims: Claims, access_service: Access, roster: Roster) -> list[RootRead]:
    try:
        access = access_service.resolve_access(claims["sub"], client_id)
        if not has_client_access(access):
            raise PermissionDeniedError("no access to this client")
        return roster.list_roots(client_id, access)
    except (PermissionDeniedError, TransientIOError) as exc:
        _handle_roster_error(exc)
        raise


@router.post(
    "/companies",
    response_model=CompanyRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_COMPANY_WRITE))],
)
def create_company(client_id: ClientId, payload: CompanyCreate, claims: Claims, roster: Roster) -> CompanyRead:
    try:
        company = roster.create_company(claims["sub"], client_id, payload)
        return to_company_read(company)
    except (NotFoundError, PermissionDeniedError, ValidationConflictError, TransientIOError) as exc:
        _handle_roster_error(exc)
        raise
