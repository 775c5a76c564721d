from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from vision_console.api.deps import Claims, ClientId, require_perm
from vision_console.domain.access import allowed_vision_types, has_client_access
from vision_console.domain.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransientIOError,
    ValidationConflictError,
    VisionEngineError,
)
from vision_console.domain.membership import VisionParams
from vision_console.domain.models import (
    MembershipPreviewRead,
    MembershipPreviewRequest,
    UniquenessCheckRead,
    UniquenessCheckRequest,
    VisionDetailRead,
    VisionSave,
    VisionSummaryRead,
    VisionType,
)
from vision_console.domain.permissions import PERM_VISION_READ, PERM_VISION_WRITE
from vision_console.domain.uniqueness import Conflict
from vision_console.infra.audit import set_audit_context
from vision_console.services.access_service import AccessService
from vision_console.services.vision_service import VisionService

router = APIRouter()


def get_vision_service() -> VisionService:
    return VisionService()


def get_access_service() -> AccessService:
    return AccessService()


Service = Annotated[VisionService, Depends(get_vision_service)]
Access = Annotated[AccessService, Depends(get_access_service)]

ENGINE_ERRORS = (NotFoundError, PermissionDeniedError, ValidationConflictError, TransientIOError)


def _handle_vision_error(exc: Exception, request: Request | None = None, action: str | None = None) -> None:
    if request is not None and action is not None and isinstance(exc, VisionEngineError):
        result: dict[str, object] = {"reason": str(exc)}
        if isinstance(exc, ValidationConflictError) and exc.conflicting_vision_id:
            result["conflicting_vision_id"] = exc.conflicting_vision_id
        set_audit_context(request, action=action, detail={"result": result})
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, ValidationConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, TransientIOError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    raise exc


def _params(payload: MembershipPreviewRequest | UniquenessCheckRequest | VisionSave) -> VisionParams:
    return VisionParams.build(root=payload.root, roots=payload.roots, company_ids=payload.company_ids)


@router.get(
    "/vision-types",
    response_model=list[VisionType],
    dependencies=[Depends(require_perm(PERM_VISION_READ))],
)
def list_vision_types(client_id: ClientId, claims: Claims, access_service: Access) -> list[VisionType]:
    try:
        access = access_service.resolve_access(claims["sub"], client_id)
    except TransientIOError as exc:
        _handle_vision_error(exc)
        raise
    if not has_client_access(access):
        return []
    return sorted(allowed_vision_types(access))


@router.post(
    "/visions/membership-preview",
    response_model=MembershipPreviewRead,
    dependencies=[Depends(require_perm(PERM_VISION_READ))],
)
def preview_membership(
    client_id: ClientId,
    payload: MembershipPreviewRequest,
    claims: Claims,
    service: Service,
) -> MembershipPreviewRead:
    try:
        membership = service.preview_membership(claims["sub"], client_id, payload.vision_type, _params(payload))
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc)
        raise
    return MembershipPreviewRead(vision_type=payload.vision_type, company_ids=sorted(membership))


@router.post(
    "/visions/uniqueness-check",
    response_model=UniquenessCheckRead,
    dependencies=[Depends(require_perm(PERM_VISION_READ))],
)
def check_uniqueness(
    client_id: ClientId,
    payload: UniquenessCheckRequest,
    claims: Claims,
    service: Service,
) -> UniquenessCheckRead:
    try:
        result = service.check_uniqueness(
            claims["sub"],
            client_id,
            payload.vision_type,
            _params(payload),
            exclude_vision_id=payload.exclude_vision_id,
        )
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc)
        raise
    if isinstance(result, Conflict):
        return UniquenessCheckRead(conflict=True, conflicting_vision_id=result.vision_id, reason=result.reason)
    return UniquenessCheckRead(conflict=False)


@router.get(
    "/visions",
    response_model=list[VisionSummaryRead],
    dependencies=[Depends(require_perm(PERM_VISION_READ))],
)
def list_visions(
    client_id: ClientId,
    claims: Claims,
    service: Service,
    name: Annotated[str | None, Query(max_length=200)] = None,
) -> list[VisionSummaryRead]:
    try:
        return service.list_visible_visions(claims["sub"], client_id, name_filter=name)
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc)
        raise


@router.post(
    "/visions",
    response_model=VisionDetailRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_VISION_WRITE))],
)
def create_vision(
    client_id: ClientId,
    payload: VisionSave,
    claims: Claims,
    service: Service,
    request: Request,
) -> VisionDetailRead:
    try:
        vision = service.save_vision(claims["sub"], client_id, payload)
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc, request, "vision.create")
        raise
    set_audit_context(
        request,
        action="vision.create",
        resource=f"vision:{vision.id}",
        detail={"what": {"vision_type": vision.vision_type.value, "membership_count": vision.membership_count}},
    )
    return vision


@router.get(
    "/visions/{vision_id}",
    response_model=VisionDetailRead,
    dependencies=[Depends(require_perm(PERM_VISION_READ))],
)
def get_vision(client_id: ClientId, vision_id: str, claims: Claims, service: Service) -> VisionDetailRead:
    try:
        return service.get_vision(claims["sub"], client_id, vision_id)
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc)
        raise


@router.put(
    "/visions/{vision_id}",
    response_model=VisionDetailRead,
    dependencies=[Depends(require_perm(PERM_VISION_WRITE))],
)
def update_vision(
    client_id: ClientId,
    vision_id: str,
    payload: VisionSave,
    claims: Claims,
    service: Service,
    request: Request,
) -> VisionDetailRead:
    try:
        vision = service.save_vision(claims["sub"], client_id, payload, vision_id=vision_id)
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc, request, "vision.update")
        raise
    set_audit_context(
        request,
        action="vision.update",
        resource=f"vision:{vision.id}",
        detail={"what": {"vision_type": vision.vision_type.value, "membership_count": vision.membership_count}},
    )
    return vision


@router.delete(
    "/visions/{vision_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_VISION_WRITE))],
)
def delete_vision(
    client_id: ClientId,
    vision_id: str,
    claims: Claims,
    service: Service,
    request: Request,
) -> Response:
    try:
        service.delete_vision(claims["sub"], client_id, vision_id)
    except ENGINE_ERRORS as exc:
        _handle_vision_error(exc, request, "vision.delete")
        raise
    set_audit_context(request, action="vision.delete", resource=f"vision:{vision_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
