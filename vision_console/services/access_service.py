from __future__ import annotations

import logging

from sqlmodel import Session, col, select

from vision_console.domain.access import AccessDecision, has_client_access, resolve_access
from vision_console.domain.errors import NotFoundError, PermissionDeniedError
from vision_console.domain.models import AccessGrant, Client, GrantStatus
from vision_console.infra.db import open_session, store_errors

logger = logging.getLogger(__name__)


class AccessService:
    def _session(self) -> Session:
        return open_session()

    def load_access(self, session: Session, operator_id: str, client_id: str) -> AccessDecision:
        grants = session.exec(
            select(AccessGrant)
            .where(AccessGrant.operator_id == operator_id)
            .where(AccessGrant.client_id == client_id)
            .where(AccessGrant.status == GrantStatus.ACTIVE)
        ).all()
        return resolve_access(grants)

    def require_access(self, session: Session, operator_id: str, client_id: str) -> AccessDecision:
        """Resolve access and reject operators holding no grant on the client."""
        if session.get(Client, client_id) is None:
            raise NotFoundError("client not found")
        access = self.load_access(session, operator_id, client_id)
        if not has_client_access(access):
            logger.info("operator %s has no grant on client %s", operator_id, client_id)
            raise PermissionDeniedError("no access to this client")
        return access

    def resolve_access(self, operator_id: str, client_id: str) -> AccessDecision:
        with store_errors("resolving access"), self._session() as session:
            return self.load_access(session, operator_id, client_id)

    def list_available_clients(self, operator_id: str) -> list[Client]:
        """Clients the operator holds at least one active grant on, ordered by name."""
        with store_errors("listing clients"), self._session() as session:
            client_ids = set(
                session.exec(
                    select(AccessGrant.client_id)
                    .where(AccessGrant.operator_id == operator_id)
                    .where(AccessGrant.status == GrantStatus.ACTIVE)
                ).all()
            )
            if not client_ids:
                return []
            return list(
                session.exec(
                    select(Client).where(col(Client.id).in_(sorted(client_ids))).order_by(col(Client.name))
                ).all()
            )
