from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from vision_console.domain.access import AccessDecision, ensure_vision_type_allowed
from vision_console.domain.errors import NotFoundError, ValidationConflictError
from vision_console.domain.membership import VisionParams, params_for_type, resolve_membership
from vision_console.domain.models import (
    Client,
    Vision,
    VisionDetailRead,
    VisionGroupRoot,
    VisionMembership,
    VisionSave,
    VisionSummaryRead,
    VisionType,
    now_utc,
)
from vision_console.domain.uniqueness import Conflict, SiblingVision, UniquenessResult, check_uniqueness
from vision_console.domain.visibility import filter_visible, is_visible
from vision_console.infra.db import open_session, store_errors
from vision_console.infra.events import event_bus
from vision_console.services.access_service import AccessService
from vision_console.services.roster_service import RosterService

logger = logging.getLogger(__name__)


class VisionService:
    def __init__(self) -> None:
        self._access = AccessService()
        self._roster = RosterService()

    def _session(self) -> Session:
        return open_session()

    def _get_scoped_vision(self, session: Session, client_id: str, vision_id: str) -> Vision:
        vision = session.exec(
            select(Vision).where(Vision.client_id == client_id).where(Vision.id == vision_id)
        ).first()
        if vision is None:
            raise NotFoundError("vision not found")
        return vision

    def _membership_by_vision(self, session: Session, vision_ids: Iterable[str]) -> dict[str, set[str]]:
        ids = sorted(set(vision_ids))
        result: dict[str, set[str]] = {vision_id: set() for vision_id in ids}
        if not ids:
            return result
        rows = session.exec(
            select(VisionMembership.vision_id, VisionMembership.company_id).where(
                col(VisionMembership.vision_id).in_(ids)
            )
        ).all()
        for vision_id, company_id in rows:
            result[vision_id].add(company_id)
        return result

    def _group_roots_by_vision(self, session: Session, vision_ids: Iterable[str]) -> dict[str, set[str]]:
        ids = sorted(set(vision_ids))
        result: dict[str, set[str]] = defaultdict(set)
        if not ids:
            return result
        rows = session.exec(
            select(VisionGroupRoot.vision_id, VisionGroupRoot.root).where(col(VisionGroupRoot.vision_id).in_(ids))
        ).all()
        for vision_id, root in rows:
            result[vision_id].add(root)
        return result

    def _load_siblings(self, session: Session, client_id: str, vision_type: VisionType) -> list[SiblingVision]:
        visions = list(
            session.exec(
                select(Vision)
                .where(Vision.client_id == client_id)
                .where(Vision.vision_type == vision_type)
                .where(col(Vision.is_active))
            ).all()
        )
        group_roots = (
            self._group_roots_by_vision(session, [item.id for item in visions])
            if vision_type == VisionType.GROUP_SCOPED
            else {}
        )
        return [
            SiblingVision(
                id=item.id,
                name=item.name,
                vision_type=item.vision_type,
                is_active=item.is_active,
                root=item.root,
                roots=frozenset(group_roots.get(item.id, set())),
            )
            for item in visions
        ]

    def _ensure_visible(self, access: AccessDecision, membership: Iterable[str]) -> None:
        # Hidden and foreign visions are indistinguishable from missing ones.
        if not is_visible(access, membership):
            raise NotFoundError("vision not found")

    def _ensure_complete(self, vision_type: VisionType, params: VisionParams) -> None:
        if vision_type == VisionType.ROOT_SCOPED and params.root is None:
            raise ValidationConflictError("a ROOT_SCOPED vision requires a root")
        if vision_type == VisionType.GROUP_SCOPED and not params.roots:
            raise ValidationConflictError("a GROUP_SCOPED vision requires at least one root")

    def _raise_on_conflict(self, result: UniquenessResult) -> None:
        if isinstance(result, Conflict):
            raise ValidationConflictError(result.reason, conflicting_vision_id=result.vision_id)

    def _client_name(self, session: Session, client_id: str) -> str:
        client = session.get(Client, client_id)
        return client.name if client is not None else ""

    def _to_summary(self, vision: Vision, client_name: str, membership_count: int) -> VisionSummaryRead:
        return VisionSummaryRead(
            id=vision.id,
            client_id=vision.client_id,
            client_name=client_name,
            name=vision.name,
            description=vision.description,
            is_active=vision.is_active,
            vision_type=vision.vision_type,
            membership_count=membership_count,
        )

    def _to_detail(
        self,
        vision: Vision,
        client_name: str,
        membership: Iterable[str],
        roots: Iterable[str],
    ) -> VisionDetailRead:
        company_ids = sorted(membership)
        return VisionDetailRead(
            **self._to_summary(vision, client_name, len(company_ids)).model_dump(),
            root=vision.root,
            roots=sorted(roots),
            company_ids=company_ids,
            created_at=vision.created_at,
            updated_at=vision.updated_at,
        )

    def preview_membership(
        self,
        operator_id: str,
        client_id: str,
        vision_type: VisionType,
        params: VisionParams,
    ) -> frozenset[str]:
        with store_errors("previewing membership"), self._session() as session:
            access = self._access.require_access(session, operator_id, client_id)
            ensure_vision_type_allowed(access, vision_type)
            roster = self._roster.load_roster(session, client_id, access)
        return resolve_membership(vision_type, params, roster)

    def check_uniqueness(
        self,
        operator_id: str,
        client_id: str,
        vision_type: VisionType,
        params: VisionParams,
        exclude_vision_id: str | None = None,
        candidate_active: bool = True,
    ) -> UniquenessResult:
        # Conflicts are only reported for types the operator may create.
        with store_errors("checking uniqueness"), self._session() as session:
            access = self._access.require_access(session, operator_id, client_id)
            ensure_vision_type_allowed(access, vision_type)
            if vision_type == VisionType.CUSTOM:
                return check_uniqueness(vision_type, params, [])
            siblings = self._load_siblings(session, client_id, vision_type)
        return check_uniqueness(
            vision_type,
            params,
            siblings,
            exclude_vision_id=exclude_vision_id,
            candidate_active=candidate_active,
        )

    def save_vision(
        self,
        operator_id: str,
        client_id: str,
        payload: VisionSave,
        vision_id: str | None = None,
    ) -> VisionDetailRead:
        """Create or rewrite a vision with its membership and group roots in one transaction."""
        vision_type = payload.vision_type
        params = params_for_type(
            vision_type,
            VisionParams.build(root=payload.root, roots=payload.roots, company_ids=payload.company_ids),
        )
        with store_errors("saving vision"), self._session() as session:
            access = self._access.require_access(session, operator_id, client_id)

            vision: Vision | None = None
            if vision_id is not None:
                vision = self._get_scoped_vision(session, client_id, vision_id)
                existing = self._membership_by_vision(session, [vision.id])[vision.id]
                self._ensure_visible(access, existing)

            ensure_vision_type_allowed(access, vision_type)
            self._ensure_complete(vision_type, params)
            roster = self._roster.load_roster(session, client_id, access)
            membership = resolve_membership(vision_type, params, roster)

            if payload.is_active:
                siblings = self._load_siblings(session, client_id, vision_type)
                self._raise_on_conflict(
                    check_uniqueness(vision_type, params, siblings, exclude_vision_id=vision_id)
                )

            created = vision is None
            if vision is None:
                vision = Vision(client_id=client_id, name=payload.name, vision_type=vision_type)
            vision.name = payload.name
            vision.description = payload.description
            vision.is_active = payload.is_active
            vision.vision_type = vision_type
            vision.root = params.root
            vision.updated_at = now_utc()
            session.add(vision)

            integration_codes = {company.id: company.integration_code for company in roster}
            event = event_bus.build(
                "vision.created" if created else "vision.updated",
                client_id,
                {
                    "vision_id": vision.id,
                    "vision_type": vision_type.value,
                    "is_active": vision.is_active,
                    "membership_count": len(membership),
                },
                actor_id=operator_id,
            )
            try:
                session.flush()
                # Children are rewritten wholesale; deletes run before the new rows are flushed.
                session.execute(sa.delete(VisionMembership).where(col(VisionMembership.vision_id) == vision.id))
                session.execute(sa.delete(VisionGroupRoot).where(col(VisionGroupRoot.vision_id) == vision.id))
                session.add_all(
                    VisionMembership(
                        vision_id=vision.id,
                        company_id=company_id,
                        client_id=client_id,
                        integration_code=integration_codes.get(company_id),
                    )
                    for company_id in sorted(membership)
                )
                session.add_all(
                    VisionGroupRoot(
                        vision_id=vision.id,
                        root=root,
                        client_id=client_id,
                        vision_active=vision.is_active,
                    )
                    for root in sorted(params.roots)
                )
                event_bus.record(event, session)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.info("vision save for client %s rejected by storage constraint", client_id)
                raise ValidationConflictError("conflicts with another active vision of this client") from exc
            client_name = self._client_name(session, client_id)

        event_bus.dispatch(event)
        logger.info("%s vision %s (%s, %d companies)", event.event_type, vision.id, vision_type, len(membership))
        return self._to_detail(vision, client_name, membership, params.roots)

    def get_vision(self, operator_id: str, client_id: str, vision_id: str) -> VisionDetailRead:
        with store_errors("reading vision"), self._session() as session:
            access = self._access.require_access(session, operator_id, client_id)
            vision = self._get_scoped_vision(session, client_id, vision_id)
            membership = self._membership_by_vision(session, [vision.id])[vision.id]
            self._ensure_visible(access, membership)
            roots = self._group_roots_by_vision(session, [vision.id])[vision.id]
            return self._to_detail(vision, self._client_name(session, client_id), membership, roots)

    def list_visible_visions(
        self,
        operator_id: str,
        client_id: str,
        name_filter: str | None = None,
    ) -> list[VisionSummaryRead]:
        with store_errors("listing visions"), self._session() as session:
            access = self._access.require_access(session, operator_id, client_id)
            statement = select(Vision).where(Vision.client_id == client_id)
            if name_filter and name_filter.strip():
                statement = statement.where(col(Vision.name).ilike(f"%{name_filter.strip()}%"))
            visions = list(session.exec(statement.order_by(col(Vision.name))).all())
            membership = self._membership_by_vision(session, [item.id for item in visions])
            client_name = self._client_name(session, client_id)

        visible = filter_visible(access, visions, lambda item: membership[item.id])
        return [self._to_summary(item, client_name, len(membership[item.id])) for item in visible]

    def delete_vision(self, operator_id: str, client_id: str, vision_id: str) -> None:
        with store_errors("deleting vision"), self._session() as session:
            access = self._access.require_access(session, operator_id, client_id)
            vision = self._get_scoped_vision(session, client_id, vision_id)
            membership = self._membership_by_vision(session, [vision.id])[vision.id]
            self._ensure_visible(access, membership)

            event = event_bus.build(
                "vision.deleted",
                client_id,
                {"vision_id": vision.id, "vision_type": vision.vision_type.value},
                actor_id=operator_id,
            )
            session.execute(sa.delete(VisionMembership).where(col(VisionMembership.vision_id) == vision.id))
            session.execute(sa.delete(VisionGroupRoot).where(col(VisionGroupRoot.vision_id) == vision.id))
            session.delete(vision)
            event_bus.record(event, session)
            session.commit()

        event_bus.dispatch(event)
        logger.info("deleted vision %s", vision_id)
