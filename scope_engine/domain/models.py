from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

PATH_SEPARATOR = "/"
FULL_PATH_SEPARATOR = " > "


def now_utc() -> datetime:
    return datetime.now(UTC)


def split_path(path: str) -> list[str]:
    return [part for part in path.split(PATH_SEPARATOR) if part]


def join_path(entity_ids: list[str]) -> str:
    return PATH_SEPARATOR + PATH_SEPARATOR.join(entity_ids)


def is_path_ancestor(ancestor_path: str, descendant_path: str) -> bool:
    # strict: an entity is not its own ancestor
    return descendant_path.startswith(f"{ancestor_path}{PATH_SEPARATOR}")


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    tenant_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
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


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EntityType(StrEnum):
    ORGANIZATION = "organization"
    LOCATION = "location"


class Entity(SQLModel, table=True):
    __tablename__ = "entities"
    __table_args__ = (
        UniqueConstraint("tenant_id", "id", name="uq_entities_tenant_id_id"),
        UniqueConstraint("tenant_id", "code", name="uq_entities_tenant_code"),
        ForeignKeyConstraint(
            ["tenant_id", "parent_entity_id"],
            ["entities.tenant_id", "entities.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_entities_tenant_parent", "tenant_id", "parent_entity_id"),
        Index("ix_entities_tenant_path", "tenant_id", "path"),
        Index("ix_entities_tenant_level", "tenant_id", "entity_level"),
        Index(
            "uq_entities_tenant_root",
            "tenant_id",
            unique=True,
            sqlite_where=text("parent_entity_id IS NULL"),
            postgresql_where=text("parent_entity_id IS NULL"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    entity_type: EntityType = Field(default=EntityType.ORGANIZATION, index=True)
    parent_entity_id: str | None = Field(default=None, index=True)
    entity_level: int = Field(default=1)
    path: str = Field(default="", index=True)
    full_hierarchy_path: str = Field(default="")
    name: str = Field(index=True)
    code: str = Field(index=True)
    description: str | None = None
    organization_type: str | None = None
    location_attributes: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    is_active: bool = Field(default=True, index=True)
    version: int = Field(default=1)
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)

    @property
    def hierarchy_path(self) -> list[str]:
        return split_path(self.path)

    def touch(self, actor_id: str | None) -> None:
        self.updated_at = now_utc()
        self.updated_by = actor_id
        self.version += 1


class AssignmentType(StrEnum):
    MEMBERSHIP = "membership"
    LOCATION_ASSIGNMENT = "location_assignment"
    RESPONSIBLE_PERSON = "responsible_person"


class Assignment(SQLModel, table=True):
    __tablename__ = "assignments"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "entity_id"],
            ["entities.tenant_id", "entities.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_assignments_tenant_user_active", "tenant_id", "user_id", "is_active"),
        Index("ix_assignments_tenant_entity", "tenant_id", "entity_id"),
        Index(
            "uq_assignments_active",
            "tenant_id",
            "user_id",
            "entity_id",
            "assignment_type",
            unique=True,
            sqlite_where=text("is_active"),
            postgresql_where=text("is_active"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    user_id: str = Field(index=True)
    entity_id: str = Field(index=True)
    assignment_type: AssignmentType = Field(default=AssignmentType.MEMBERSHIP, index=True)
    is_active: bool = Field(default=True, index=True)
    assigned_by: str | None = None
    assigned_at: datetime = Field(default_factory=now_utc, index=True)
    revoked_by: str | None = None
    revoked_at: datetime | None = Field(default=None, index=True)
    supersedes_id: str | None = Field(default=None, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    tenant_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TenantCreate(BaseModel):
    name: str = PydanticField(min_length=1)


class TenantRead(ORMReadModel):
    id: str
    name: str
    created_at: datetime


class EntityCreate(BaseModel):
    entity_type: EntityType = EntityType.ORGANIZATION
    parent_entity_id: str | None = None
    name: str = PydanticField(min_length=2)
    code: str | None = None
    description: str | None = None
    organization_type: str | None = None
    location_attributes: dict[str, Any] = PydanticField(default_factory=dict)


class EntityUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=2)
    code: str | None = None
    description: str | None = None
    organization_type: str | None = None
    location_attributes: dict[str, Any] | None = None
    is_active: bool | None = None


class EntityMoveRequest(BaseModel):
    new_parent_entity_id: str | None = None


class EntityRead(ORMReadModel):
    id: str
    tenant_id: str
    entity_type: EntityType
    parent_entity_id: str | None = None
    entity_level: int
    hierarchy_path: list[str]
    full_hierarchy_path: str
    name: str
    code: str
    description: str | None = None
    organization_type: str | None = None
    location_attributes: dict[str, Any]
    is_active: bool
    version: int
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime
    updated_at: datetime


class EntityDeleteRead(BaseModel):
    entity_id: str
    cascade: bool
    deleted_entity_ids: list[str]


class EntityTreeNode(BaseModel):
    id: str
    entity_type: EntityType
    name: str
    code: str
    entity_level: int
    hierarchy_path: list[str]
    full_hierarchy_path: str
    parent_entity_id: str | None = None
    organization_type: str | None = None
    is_active: bool
    children: list[EntityTreeNode] = PydanticField(default_factory=list)


EntityTreeNode.model_rebuild()


class RebuildResultRead(BaseModel):
    tenant_id: str
    updated_count: int
    orphans: list[str]
    dry_run: bool = False


class IntegrityCheckRead(BaseModel):
    ancestor_id: str
    descendant_id: str
    is_ancestor: bool


class BulkEntityCreateRequest(BaseModel):
    items: list[EntityCreate] = PydanticField(min_length=1)


class BulkEntityUpdateItem(BaseModel):
    entity_id: str = PydanticField(min_length=1)
    changes: EntityUpdate


class BulkEntityUpdateRequest(BaseModel):
    items: list[BulkEntityUpdateItem] = PydanticField(min_length=1)


class BulkEntityDeleteRequest(BaseModel):
    entity_ids: list[str] = PydanticField(min_length=1)
    cascade: bool = False


class BulkItemResult(BaseModel):
    index: int
    success: bool
    entity_id: str | None = None
    error_code: str | None = None
    error: str | None = None


class BulkOperationRead(BaseModel):
    total_processed: int
    successful: int
    failed: int
    results: list[BulkItemResult]


class AssignmentCreate(BaseModel):
    user_id: str = PydanticField(min_length=1)
    entity_id: str
    assignment_type: AssignmentType = AssignmentType.MEMBERSHIP


class AssignmentSupersedeRequest(BaseModel):
    entity_id: str | None = None
    assignment_type: AssignmentType | None = None


class AssignmentRead(ORMReadModel):
    id: str
    tenant_id: str
    user_id: str
    entity_id: str
    assignment_type: AssignmentType
    is_active: bool
    assigned_by: str | None = None
    assigned_at: datetime
    revoked_by: str | None = None
    revoked_at: datetime | None = None
    supersedes_id: str | None = None


class ScopeMode(StrEnum):
    TENANT_ADMIN = "tenant_admin"
    SCOPED = "scoped"


class ScopeRead(BaseModel):
    tenant_id: str
    actor_id: str
    mode: ScopeMode
    entity_ids: list[str]
    direct_entity_ids: list[str]
    writable_entity_ids: list[str] = PydanticField(default_factory=list)


class AccessCheckRead(BaseModel):
    entity_id: str
    allowed: bool
