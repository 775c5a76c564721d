from __future__ import annotations

import hashlib
import logging
import os

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from vision_console.domain.errors import NotFoundError, ValidationConflictError
from vision_console.domain.models import (
    AccessGrant,
    BootstrapAdminRequest,
    Client,
    ClientCreate,
    Company,
    GrantEntry,
    Operator,
    OperatorCreate,
)
from vision_console.domain.permissions import DEFAULT_PERMISSION_NAMES, OPERATOR_PERMISSION_NAMES, PERM_WILDCARD
from vision_console.infra.db import open_session

logger = logging.getLogger(__name__)


class AuthError(Exception):
    pass


class IdentityService:
    def _session(self) -> Session:
        return open_session()

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "vision-console-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _normalize_permissions(self, permissions: list[str]) -> list[str]:
        if not permissions:
            return list(OPERATOR_PERMISSION_NAMES)
        unknown = sorted(set(permissions) - set(DEFAULT_PERMISSION_NAMES))
        if unknown:
            raise ValidationConflictError(f"unknown permissions: {', '.join(unknown)}")
        return sorted(set(permissions))

    def create_client(self, payload: ClientCreate) -> Client:
        with self._session() as session:
            client = Client(name=payload.name.strip())
            session.add(client)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationConflictError("client name already exists") from exc
            session.refresh(client)
            return client

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> Operator:
        with self._session() as session:
            if session.exec(select(Operator.id)).first() is not None:
                raise ValidationConflictError("console already initialized")
            admin = Operator(
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=True,
                permissions=[PERM_WILDCARD],
            )
            session.add(admin)
            session.commit()
            session.refresh(admin)
            logger.info("bootstrapped admin operator %s", admin.id)
            return admin

    def create_operator(self, payload: OperatorCreate) -> Operator:
        with self._session() as session:
            operator = Operator(
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=payload.is_active,
                permissions=self._normalize_permissions(payload.permissions),
            )
            session.add(operator)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationConflictError("username already exists") from exc
            session.refresh(operator)
            return operator

    def list_grants(self, operator_id: str, client_id: str) -> list[AccessGrant]:
        with self._session() as session:
            return list(
                session.exec(
                    select(AccessGrant)
                    .where(AccessGrant.operator_id == operator_id)
                    .where(AccessGrant.client_id == client_id)
                    .order_by(col(AccessGrant.created_at))
                ).all()
            )

    def replace_grants(self, operator_id: str, client_id: str, entries: list[GrantEntry]) -> list[AccessGrant]:
        """Swap every grant the operator holds on the client for ``entries``."""
        with self._session() as session:
            if session.get(Operator, operator_id) is None:
                raise NotFoundError("operator not found")
            if session.get(Client, client_id) is None:
                raise NotFoundError("client not found")

            company_ids = sorted({item.company_id for item in entries if item.company_id is not None})
            if company_ids:
                known = set(
                    session.exec(
                        select(Company.id)
                        .where(Company.client_id == client_id)
                        .where(col(Company.id).in_(company_ids))
                    ).all()
                )
                missing = [item for item in company_ids if item not in known]
                if missing:
                    raise NotFoundError(f"companies not found in client: {', '.join(missing)}")

            session.execute(
                sa.delete(AccessGrant)
                .where(col(AccessGrant.operator_id) == operator_id)
                .where(col(AccessGrant.client_id) == client_id)
            )
            grants = [
                AccessGrant(
                    operator_id=operator_id,
                    client_id=client_id,
                    company_id=item.company_id,
                    status=item.status,
                )
                for item in entries
            ]
            session.add_all(grants)
            session.commit()
            for grant in grants:
                session.refresh(grant)
            logger.info("replaced grants of operator %s on client %s (%d rows)", operator_id, client_id, len(grants))
            return grants

    def dev_login(self, username: str, password: str) -> Operator:
        with self._session() as session:
            operator = session.exec(select(Operator).where(Operator.username == username)).first()
            if operator is None:
                raise AuthError("invalid credentials")
            if not operator.is_active:
                raise AuthError("operator disabled")
            if operator.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            return operator
