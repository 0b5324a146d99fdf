from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from scope_engine.domain.errors import ConflictError, InvalidAssignmentError, NotFoundError
from scope_engine.domain.models import (
    Assignment,
    AssignmentCreate,
    AssignmentSupersedeRequest,
    AssignmentType,
    Entity,
    EntityType,
    now_utc,
)
from scope_engine.infra import scope_cache
from scope_engine.infra.db import get_engine
from scope_engine.infra.events import (
    ASSIGNMENT_CREATED,
    ASSIGNMENT_REVOKED,
    ASSIGNMENT_SUPERSEDED,
    event_bus,
)
from scope_engine.infra.logging import get_logger

logger = get_logger(__name__)


def active_entity_ids(session: Session, tenant_id: str, user_id: str) -> list[str]:
    statement = (
        select(Assignment.entity_id)
        .where(Assignment.tenant_id == tenant_id)
        .where(Assignment.user_id == user_id)
        .where(col(Assignment.is_active).is_(True))
    )
    return sorted(set(session.exec(statement).all()))


class AssignmentService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_assignment(self, session: Session, tenant_id: str, assignment_id: str) -> Assignment | None:
        statement = (
            select(Assignment)
            .where(Assignment.tenant_id == tenant_id)
            .where(Assignment.id == assignment_id)
        )
        return session.exec(statement).first()

    def _validate_target(
        self,
        session: Session,
        tenant_id: str,
        entity_id: str,
        assignment_type: AssignmentType,
    ) -> Entity:
        entity = session.exec(
            select(Entity).where(Entity.tenant_id == tenant_id).where(Entity.id == entity_id)
        ).first()
        if entity is None:
            raise NotFoundError("entity not found", entity_id=entity_id)
        if assignment_type == AssignmentType.LOCATION_ASSIGNMENT and entity.entity_type != EntityType.LOCATION:
            raise InvalidAssignmentError("location assignments must target a location", entity_id=entity_id)
        return entity

    def _ensure_no_active_duplicate(
        self,
        session: Session,
        tenant_id: str,
        user_id: str,
        entity_id: str,
        assignment_type: AssignmentType,
        *,
        ignore_id: str | None = None,
    ) -> None:
        statement = (
            select(Assignment.id)
            .where(Assignment.tenant_id == tenant_id)
            .where(Assignment.user_id == user_id)
            .where(Assignment.entity_id == entity_id)
            .where(Assignment.assignment_type == assignment_type)
            .where(col(Assignment.is_active).is_(True))
        )
        if ignore_id is not None:
            statement = statement.where(Assignment.id != ignore_id)
        existing = session.exec(statement).first()
        if existing is not None:
            raise ConflictError("user already holds an active assignment of this type", assignment_id=existing)

    def _stamp_revoked(self, assignment: Assignment, actor_id: str | None) -> None:
        assignment.is_active = False
        assignment.revoked_at = now_utc()
        assignment.revoked_by = actor_id

    def _commit(self, session: Session) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("assignment conflicts with existing data") from exc

    def assign(self, tenant_id: str, payload: AssignmentCreate, actor_id: str | None = None) -> Assignment:
        with self._session() as session:
            self._validate_target(session, tenant_id, payload.entity_id, payload.assignment_type)
            self._ensure_no_active_duplicate(
                session,
                tenant_id,
                payload.user_id,
                payload.entity_id,
                payload.assignment_type,
            )
            assignment = Assignment(
                tenant_id=tenant_id,
                user_id=payload.user_id,
                entity_id=payload.entity_id,
                assignment_type=payload.assignment_type,
                assigned_by=actor_id,
            )
            session.add(assignment)
            event_bus.record(
                session,
                ASSIGNMENT_CREATED,
                tenant_id,
                {
                    "assignment_id": assignment.id,
                    "user_id": assignment.user_id,
                    "entity_id": assignment.entity_id,
                    "assignment_type": assignment.assignment_type.value,
                },
                actor_id=actor_id,
            )
            self._commit(session)
            session.refresh(assignment)

        scope_cache.invalidate_tenant(tenant_id)
        logger.info(
            "assignment.created",
            assignment_id=assignment.id,
            assignee_id=assignment.user_id,
            entity_id=assignment.entity_id,
        )
        return assignment

    def revoke(self, tenant_id: str, assignment_id: str, actor_id: str | None = None) -> Assignment:
        with self._session() as session:
            assignment = self._get_scoped_assignment(session, tenant_id, assignment_id)
            if assignment is None:
                raise NotFoundError("assignment not found", assignment_id=assignment_id)
            if not assignment.is_active:
                raise ConflictError("assignment already revoked", assignment_id=assignment_id)

            self._stamp_revoked(assignment, actor_id)
            session.add(assignment)
            event_bus.record(
                session,
                ASSIGNMENT_REVOKED,
                tenant_id,
                {"assignment_id": assignment.id, "user_id": assignment.user_id, "entity_id": assignment.entity_id},
                actor_id=actor_id,
            )
            self._commit(session)
            session.refresh(assignment)

        scope_cache.invalidate_tenant(tenant_id)
        logger.info("assignment.revoked", assignment_id=assignment.id, assignee_id=assignment.user_id)
        return assignment

    def supersede(
        self,
        tenant_id: str,
        assignment_id: str,
        payload: AssignmentSupersedeRequest,
        actor_id: str | None = None,
    ) -> Assignment:
        """Revoke ``assignment_id`` and create its replacement in one transaction."""
        with self._session() as session:
            previous = self._get_scoped_assignment(session, tenant_id, assignment_id)
            if previous is None:
                raise NotFoundError("assignment not found", assignment_id=assignment_id)
            if not previous.is_active:
                raise ConflictError("assignment already revoked", assignment_id=assignment_id)

            entity_id = payload.entity_id or previous.entity_id
            assignment_type = payload.assignment_type or previous.assignment_type
            self._validate_target(session, tenant_id, entity_id, assignment_type)
            self._ensure_no_active_duplicate(
                session,
                tenant_id,
                previous.user_id,
                entity_id,
                assignment_type,
                ignore_id=previous.id,
            )

            self._stamp_revoked(previous, actor_id)
            session.add(previous)
            session.flush()
            replacement = Assignment(
                tenant_id=tenant_id,
                user_id=previous.user_id,
                entity_id=entity_id,
                assignment_type=assignment_type,
                assigned_by=actor_id,
                supersedes_id=previous.id,
            )
            session.add(replacement)
            event_bus.record(
                session,
                ASSIGNMENT_SUPERSEDED,
                tenant_id,
                {
                    "assignment_id": replacement.id,
                    "supersedes_id": previous.id,
                    "user_id": replacement.user_id,
                    "entity_id": replacement.entity_id,
                    "assignment_type": replacement.assignment_type.value,
                },
                actor_id=actor_id,
            )
            self._commit(session)
            session.refresh(replacement)

        scope_cache.invalidate_tenant(tenant_id)
        logger.info("assignment.superseded", assignment_id=replacement.id, supersedes_id=assignment_id)
        return replacement

    def get_assignment(self, tenant_id: str, assignment_id: str) -> Assignment:
        with self._session() as session:
            assignment = self._get_scoped_assignment(session, tenant_id, assignment_id)
            if assignment is None:
                raise NotFoundError("assignment not found", assignment_id=assignment_id)
            return assignment

    def list_assignments(
        self,
        tenant_id: str,
        *,
        user_id: str | None = None,
        entity_id: str | None = None,
        include_revoked: bool = False,
    ) -> list[Assignment]:
        with self._session() as session:
            statement = select(Assignment).where(Assignment.tenant_id == tenant_id)
            if user_id is not None:
                statement = statement.where(Assignment.user_id == user_id)
            if entity_id is not None:
                statement = statement.where(Assignment.entity_id == entity_id)
            if not include_revoked:
                statement = statement.where(col(Assignment.is_active).is_(True))
            rows = list(session.exec(statement).all())
            return sorted(rows, key=lambda item: item.assigned_at)

    def active_entity_ids(self, session: Session, tenant_id: str, user_id: str) -> list[str]:
        return active_entity_ids(session, tenant_id, user_id)
