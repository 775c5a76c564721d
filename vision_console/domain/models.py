from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class VisionType(StrEnum):
    CLIENT_WIDE = "CLIENT_WIDE"
    ROOT_SCOPED = "ROOT_SCOPED"
    GROUP_SCOPED = "GROUP_SCOPED"
    CUSTOM = "CUSTOM"


class GrantStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    client_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    client_id: str | None = Field(default=None, index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Client(SQLModel, table=True):
    __tablename__ = "clients"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Operator(SQLModel, table=True):
    __tablename__ = "operators"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    is_active: bool = Field(default=True)
    permissions: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Company(SQLModel, table=True):
    __tablename__ = "companies"
    __table_args__ = (
        UniqueConstraint("client_id", "id", name="uq_companies_client_id_id"),
        Index("ix_companies_client_root", "client_id", "root"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    root: str = Field(index=True)
    name: str
    short_name: str | None = None
    complement_name: str | None = None
    tax_id: str | None = None
    integration_code: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AccessGrant(SQLModel, table=True):
    __tablename__ = "access_grants"
    __table_args__ = (
        ForeignKeyConstraint(
            ["client_id", "company_id"],
            ["companies.client_id", "companies.id"],
            ondelete="CASCADE",
        ),
        Index("ix_access_grants_operator_client", "operator_id", "client_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    operator_id: str = Field(foreign_key="operators.id", index=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    company_id: str | None = Field(default=None, index=True)
    status: GrantStatus = Field(default=GrantStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Vision(SQLModel, table=True):
    __tablename__ = "visions"
    __table_args__ = (
        UniqueConstraint("client_id", "id", name="uq_visions_client_id_id"),
        Index("ix_visions_client_type", "client_id", "vision_type"),
        Index(
            "uq_visions_active_client_wide",
            "client_id",
            unique=True,
            sqlite_where=text("vision_type = 'CLIENT_WIDE' AND is_active"),
            postgresql_where=text("vision_type = 'CLIENT_WIDE' AND is_active"),
        ),
        Index(
            "uq_visions_active_root",
            "client_id",
            "root",
            unique=True,
            sqlite_where=text("vision_type = 'ROOT_SCOPED' AND is_active"),
            postgresql_where=text("vision_type = 'ROOT_SCOPED' AND is_active"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    client_id: str = Field(foreign_key="clients.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    is_active: bool = Field(default=True, index=True)
    vision_type: VisionType = Field(index=True)
    root: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class VisionGroupRoot(SQLModel, table=True):
    __tablename__ = "vision_group_roots"
    __table_args__ = (
        ForeignKeyConstraint(
            ["client_id", "vision_id"],
            ["visions.client_id", "visions.id"],
            ondelete="CASCADE",
        ),
        Index(
            "uq_vision_group_roots_active_root",
            "client_id",
            "root",
            unique=True,
            sqlite_where=text("vision_active"),
            postgresql_where=text("vision_active"),
        ),
    )

    vision_id: str = Field(primary_key=True)
    root: str = Field(primary_key=True)
    client_id: str = Field(index=True)
    vision_active: bool = Field(default=True)


class VisionMembership(SQLModel, table=True):
    __tablename__ = "vision_memberships"
    __table_args__ = (
        ForeignKeyConstraint(
            ["client_id", "vision_id"],
            ["visions.client_id", "visions.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["client_id", "company_id"],
            ["companies.client_id", "companies.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_vision_memberships_company", "client_id", "company_id"),
    )

    vision_id: str = Field(primary_key=True)
    company_id: str = Field(primary_key=True)
    client_id: str = Field(index=True)
    integration_code: str | None = None
    created_at: datetime = Field(default_factory=now_utc)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    client_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ClientCreate(BaseModel):
    name: str


class ClientRead(ORMReadModel):
    id: str
    name: str
    created_at: datetime


class OperatorCreate(BaseModel):
    username: str
    password: str
    is_active: bool = True
    permissions: list[str] = PydanticField(default_factory=list)


class OperatorRead(ORMReadModel):
    id: str
    username: str
    is_active: bool
    permissions: list[str]
    created_at: datetime


class DevLoginRequest(BaseModel):
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str]


class GrantEntry(BaseModel):
    company_id: str | None = None
    status: GrantStatus = GrantStatus.ACTIVE


class GrantReplaceRequest(BaseModel):
    grants: list[GrantEntry] = PydanticField(default_factory=list)


class AccessGrantRead(ORMReadModel):
    id: str
    operator_id: str
    client_id: str
    company_id: str | None = None
    status: GrantStatus


class AccessRead(BaseModel):
    client_id: str
    full_access: bool
    company_ids: list[str] = PydanticField(default_factory=list)
    allowed_vision_types: list[VisionType] = PydanticField(default_factory=list)


class CompanyCreate(BaseModel):
    root: str
    name: str
    short_name: str | None = None
    complement_name: str | None = None
    tax_id: str | None = None
    integration_code: str | None = None

    @field_validator("root", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class CompanyRead(ORMReadModel):
    id: str
    client_id: str
    root: str
    name: str
    short_name: str | None = None
    complement_name: str | None = None
    tax_id: str | None = None
    integration_code: str | None = None
    label: str = ""


class RootRead(BaseModel):
    root: str
    name: str


class VisionParamsPayload(BaseModel):
    root: str | None = None
    roots: list[str] = PydanticField(default_factory=list)
    company_ids: list[str] = PydanticField(default_factory=list)


class MembershipPreviewRequest(VisionParamsPayload):
    vision_type: VisionType


class MembershipPreviewRead(BaseModel):
    vision_type: VisionType
    company_ids: list[str]


class UniquenessCheckRequest(VisionParamsPayload):
    vision_type: VisionType
    exclude_vision_id: str | None = None


class UniquenessCheckRead(BaseModel):
    conflict: bool
    conflicting_vision_id: str | None = None
    reason: str | None = None


class VisionSave(VisionParamsPayload):
    name: str
    description: str | None = None
    is_active: bool = True
    vision_type: VisionType

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("name must not be blank")
        return value


class VisionSummaryRead(BaseModel):
    id: str
    client_id: str
    client_name: str
    name: str
    description: str | None = None
    is_active: bool
    vision_type: VisionType
    membership_count: int


class VisionDetailRead(VisionSummaryRead):
    root: str | None = None
    roots: list[str] = PydanticField(default_factory=list)
    company_ids: list[str] = PydanticField(default_factory=list)
    created_at: datetime
    updated_at: datetime
