from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from vision_console.api.deps import Claims, require_perm
from vision_console.domain.errors import NotFoundError, ValidationConflictError
from vision_console.domain.models import (
    AccessGrantRead,
    BootstrapAdminRequest,
    ClientCreate,
    ClientRead,
    DevLoginRequest,
    GrantReplaceRequest,
    OperatorCreate,
    OperatorRead,
    TokenResponse,
)
from vision_console.domain.permissions import PERM_IDENTITY_READ, PERM_IDENTITY_WRITE
from vision_console.infra.auth import create_access_token
from vision_console.services.access_service import AccessService
from vision_console.services.identity_service import AuthError, IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_access_service() -> AccessService:
    return AccessService()


Service = Annotated[IdentityService, Depends(get_identity_service)]
Access = Annotated[AccessService, Depends(get_access_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ValidationConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


@router.post(
    "/clients",
    response_model=ClientRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_client(payload: ClientCreate, service: Service) -> ClientRead:
    try:
        client = service.create_client(payload)
        return ClientRead.model_validate(client)
    except (NotFoundError, ValidationConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.get("/clients", response_model=list[ClientRead])
def list_available_clients(claims: Claims, access: Access) -> list[ClientRead]:
    clients = access.list_available_clients(claims["sub"])
    return [ClientRead.model_validate(item) for item in clients]


@router.post("/bootstrap-admin", response_model=OperatorRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> OperatorRead:
    try:
        operator = service.bootstrap_admin(payload)
        return OperatorRead.model_validate(operator)
    except (NotFoundError, ValidationConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        operator = service.dev_login(payload.username, payload.password)
    except AuthError as exc:
        _handle_identity_error(exc)
        raise
    token = create_access_token(
        operator_id=operator.id,
        username=operator.username,
        permissions=operator.permissions,
    )
    return TokenResponse(access_token=token, permissions=operator.permissions)


@router.post(
    "/operators",
    response_model=OperatorRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def create_operator(payload: OperatorCreate, service: Service) -> OperatorRead:
    try:
        operator = service.create_operator(payload)
        return OperatorRead.model_validate(operator)
    except (NotFoundError, ValidationConflictError) as exc:
        _handle_identity_error(exc)
        raise


@router.get(
    "/operators/{operator_id}/clients/{client_id}/grants",
    response_model=list[AccessGrantRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_grants(operator_id: str, client_id: str, service: Service) -> list[AccessGrantRead]:
    grants = service.list_grants(operator_id, client_id)
    return [AccessGrantRead.model_validate(item) for item in grants]


@router.put(
    "/operators/{operator_id}/clients/{client_id}/grants",
    response_model=list[AccessGrantRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def replace_grants(
    operator_id: str,
    client_id: str,
    payload: GrantReplaceRequest,
    service: Service,
) -> list[AccessGrantRead]:
    try:
        grants = service.replace_grants(operator_id, client_id, payload.grants)
        return [AccessGrantRead.model_validate(item) for item in grants]
    except (NotFoundError, ValidationConflictError) as exc:
        _handle_identity_error(exc)
        raise
