from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from vision_console.domain.access import AccessDecision, FullAccess
from vision_console.domain.errors import ValidationConflictError
from vision_console.domain.models import Company, CompanyCreate, CompanyRead, RootRead
from vision_console.infra.db import open_session, store_errors
from vision_console.services.access_service import AccessService

MISSING_NAME = "NAME UNAVAILABLE"


def company_label(company: Company) -> str:
    tax_part = f"({company.tax_id or 'no tax id'})"
    extra = " ".join(item for item in (company.short_name, company.complement_name) if item)
    return f"{tax_part} {extra or company.name}"


def to_company_read(company: Company) -> CompanyRead:
    read = CompanyRead.model_validate(company)
    read.label = company_label(company)
    return read


class RosterService:
    """Companies of a client, narrowed to what an operator's access decision allows."""

    def __init__(self) -> None:
        self._access = AccessService()

    def _session(self) -> Session:
        return open_session()

    def load_roster(self, session: Session, client_id: str, access: AccessDecision) -> list[Company]:
        statement = select(Company).where(Company.client_id == client_id)
        if not isinstance(access, FullAccess):
            if not access.company_ids:
                return []
            statement = statement.where(col(Company.id).in_(sorted(access.company_ids)))
        return list(session.exec(statement.order_by(col(Company.name))).all())

    def list_accessible_companies(self, client_id: str, access: AccessDecision) -> list[Company]:
        with store_errors("loading companies"), self._session() as session:
            return self.load_roster(session, client_id, access)

    def list_roots(self, client_id: str, access: AccessDecision) -> list[RootRead]:
        # The first company seen for a root names it.
        names: dict[str, str] = {}
        for company in self.list_accessible_companies(client_id, access):
            if company.root not in names:
                names[company.root] = company.short_name or company.name or MISSING_NAME
        return sorted(
            (RootRead(root=root, name=name) for root, name in names.items()),
            key=lambda item: (item.name, item.root),
        )

    def create_company(self, operator_id: str, client_id: str, payload: CompanyCreate) -> Company:
        with store_errors("creating company"), self._session() as session:
            self._access.require_access(session, operator_id, client_id)
            company = Company(client_id=client_id, **payload.model_dump())
            session.add(company)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValidationConflictError("company could not be stored") from exc
            session.refresh(company)
            return company
