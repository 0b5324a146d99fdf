from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, col, select
from sqlmodel.sql.expression import SelectOfScalar

from scope_engine.domain.errors import (
    ConcurrentModificationError,
    ConflictError,
    CrossTenantError,
    CycleDetectedError,
    EngineError,
    HasChildrenError,
    InvalidParentError,
    NotFoundError,
    RootExistsError,
    RootProtectedError,
)
from scope_engine.domain.models import (
    FULL_PATH_SEPARATOR,
    PATH_SEPARATOR,
    Assignment,
    BulkEntityUpdateItem,
    BulkItemResult,
    Entity,
    EntityCreate,
    EntityTreeNode,
    EntityType,
    EntityUpdate,
    Tenant,
    TenantCreate,
    is_path_ancestor,
    join_path,
)
from scope_engine.domain.scope import ResolvedScope
from scope_engine.infra import scope_cache
from scope_engine.infra.db import apply_lock_timeout, get_engine
from scope_engine.infra.events import (
    ENTITY_CREATED,
    ENTITY_DELETED,
    ENTITY_MOVED,
    ENTITY_UPDATED,
    PATHS_REBUILT,
    event_bus,
)
from scope_engine.infra.logging import get_logger
from scope_engine.infra.tenant import require_tenant_id
from scope_engine.services.query_filter import filter_by_scope

logger = get_logger(__name__)

CODE_PREFIXES = {
    EntityType.ORGANIZATION: "ORG",
    EntityType.LOCATION: "LOC",
}


@dataclass(frozen=True)
class RebuildResult:
    tenant_id: str
    updated_count: int
    orphans: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class BulkOperationResult:
    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for item in self.results if item.success)

    @property
    def failed(self) -> int:
        return self.total_processed - self.successful


@dataclass(frozen=True)
class _Placement:
    path: str
    full_hierarchy_path: str
    entity_level: int


def _placement(entity_id: str, name: str, parent: _Placement | None) -> _Placement:
    if parent is None:
        return _Placement(join_path([entity_id]), name, 1)
    return _Placement(
        f"{parent.path}{PATH_SEPARATOR}{entity_id}",
        f"{parent.full_hierarchy_path}{FULL_PATH_SEPARATOR}{name}",
        parent.entity_level + 1,
    )


def _placement_of(entity: Entity) -> _Placement:
    return _Placement(entity.path, entity.full_hierarchy_path, entity.entity_level)


class HierarchyService:
    """Owns the organization/location tree of every tenant.

    All writes keep ``path``, ``entity_level`` and ``full_hierarchy_path``
    consistent for the touched entity and its whole subtree inside a single
    transaction. Rows are locked ancestor-first in ``entity_level`` order and
    lock waits are bounded by ``LOCK_TIMEOUT_MS``.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_scoped_entity(self, session: Session, tenant_id: str, entity_id: str) -> Entity | None:
        statement = select(Entity).where(Entity.tenant_id == tenant_id).where(Entity.id == entity_id)
        return session.exec(statement).first()

    def _require_entity(self, session: Session, tenant_id: str, entity_id: str) -> Entity:
        entity = self._get_scoped_entity(session, tenant_id, entity_id)
        if entity is None:
            raise NotFoundError("entity not found", entity_id=entity_id)
        return entity

    def _tenant_root(self, session: Session, tenant_id: str) -> Entity | None:
        statement = (
            select(Entity)
            .where(Entity.tenant_id == tenant_id)
            .where(col(Entity.parent_entity_id).is_(None))
        )
        return session.exec(statement).first()

    def _ensure_not_root(self, entity: Entity) -> None:
        if entity.parent_entity_id is None:
            raise RootProtectedError("cannot delete the tenant's root organization", entity_id=entity.id)

    def _generate_code(self, entity_type: EntityType, entity_id: str) -> str:
        return f"{CODE_PREFIXES[entity_type]}_{entity_id.replace('-', '')[:8].upper()}"

    def _place(self, entity: Entity, parent: Entity | None) -> None:
        placement = _placement(entity.id, entity.name, _placement_of(parent) if parent is not None else None)
        entity.path = placement.path
        entity.full_hierarchy_path = placement.full_hierarchy_path
        entity.entity_level = placement.entity_level

    def _replace_subtree(self, entity: Entity, descendants: Sequence[Entity], actor_id: str | None) -> None:
        # parents are placed before their children; old depth orders them
        by_id = {entity.id: entity}
        for child in sorted(descendants, key=lambda item: len(item.hierarchy_path)):
            parent = by_id.get(child.parent_entity_id or "")
            if parent is None:
                continue
            self._place(child, parent)
            child.touch(actor_id)
            by_id[child.id] = child

    def _locked(self, session: Session, statement: SelectOfScalar[Entity]) -> list[Entity]:
        try:
            return list(session.exec(statement).all())
        except OperationalError as exc:
            session.rollback()
            logger.warning("hierarchy.lock_failed", error=str(exc.orig))
            raise ConcurrentModificationError("entity rows are locked by a concurrent change; retry") from exc

    def _lock_entity(self, session: Session, tenant_id: str, entity_id: str, *, read: bool = False) -> Entity:
        statement = (
            select(Entity)
            .where(Entity.tenant_id == tenant_id)
            .where(Entity.id == entity_id)
            .with_for_update(read=read)
            .execution_options(populate_existing=True)
        )
        rows = self._locked(session, statement)
        if not rows:
            raise NotFoundError("entity not found", entity_id=entity_id)
        return rows[0]

    def _lock_subtree(self, session: Session, tenant_id: str, entity_id: str) -> tuple[Entity, list[Entity]]:
        """Lock ``entity_id`` and all of its current descendants.

        The descendant query is repeated until the locked set is stable, which
        picks up children attached by a writer that committed while we waited.
        """
        apply_lock_timeout(session)
        entity = self._lock_entity(session, tenant_id, entity_id)
        locked_ids: set[str] = set()
        while True:
            statement = (
                select(Entity)
                .where(Entity.tenant_id == tenant_id)
                .where(col(Entity.path).like(f"{entity.path}{PATH_SEPARATOR}%"))
                .order_by(col(Entity.entity_level), col(Entity.id))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            descendants = self._locked(session, statement)
            current_ids = {item.id for item in descendants}
            if current_ids <= locked_ids:
                return entity, descendants
            locked_ids |= current_ids

    def _commit(self, session: Session, conflict: EngineError) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise conflict from exc
        except OperationalError as exc:
            session.rollback()
            raise ConcurrentModificationError("entity rows are locked by a concurrent change; retry") from exc

    def _event_payload(self, entity: Entity) -> dict[str, Any]:
        return {
            "entity_id": entity.id,
            "entity_type": entity.entity_type.value,
            "parent_entity_id": entity.parent_entity_id,
            "entity_level": entity.entity_level,
            "hierarchy_path": entity.hierarchy_path,
        }

    def create_tenant(self, payload: TenantCreate) -> Tenant:
        with self._session() as session:
            tenant = Tenant(name=payload.name)
            session.add(tenant)
            self._commit(session, ConflictError("tenant name already exists", name=payload.name))
            session.refresh(tenant)
        logger.info("tenant.created", created_tenant_id=tenant.id)
        return tenant

    def get_tenant(self, tenant_id: str) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("tenant not found", tenant_id=tenant_id)
            return tenant

    def _resolve_create_parent(self, session: Session, tenant_id: str, payload: EntityCreate) -> Entity | None:
        if payload.parent_entity_id is None:
            if payload.entity_type == EntityType.LOCATION:
                raise InvalidParentError("a location must have an organization parent")
            root = self._tenant_root(session, tenant_id)
            if root is not None:
                raise RootExistsError("tenant already has a root organization", root_entity_id=root.id)
            return None
        parent = self._get_scoped_entity(session, tenant_id, payload.parent_entity_id)
        if parent is None:
            raise InvalidParentError("parent entity not found", parent_entity_id=payload.parent_entity_id)
        if parent.entity_type != EntityType.ORGANIZATION:
            raise InvalidParentError("parent must be an organization", parent_entity_id=parent.id)
        return parent

    def create_entity(self, tenant_id: str, payload: EntityCreate, actor_id: str | None = None) -> Entity:
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found", tenant_id=tenant_id)

            parent = self._resolve_create_parent(session, tenant_id, payload)
            entity = Entity(
                tenant_id=tenant_id,
                entity_type=payload.entity_type,
                parent_entity_id=payload.parent_entity_id,
                name=payload.name,
                code="",
                description=payload.description,
                organization_type=payload.organization_type,
                location_attributes=dict(payload.location_attributes),
                created_by=actor_id,
                updated_by=actor_id,
            )
            entity.code = payload.code or self._generate_code(entity.entity_type, entity.id)
            self._place(entity, parent)
            session.add(entity)
            event_bus.record(session, ENTITY_CREATED, tenant_id, self._event_payload(entity), actor_id=actor_id)
            if parent is None:
                conflict: EngineError = RootExistsError("tenant already has a root organization")
            else:
                conflict = ConflictError("entity code already exists in tenant", code=entity.code)
            self._commit(session, conflict)
            session.refresh(entity)

        scope_cache.invalidate_tenant(tenant_id)
        logger.info(
            "hierarchy.entity_created",
            entity_id=entity.id,
            entity_type=entity.entity_type.value,
            entity_level=entity.entity_level,
        )
        return entity

    def _validate_move(
        self,
        session: Session,
        tenant_id: str,
        entity: Entity,
        new_parent_entity_id: str | None,
    ) -> Entity | None:
        if new_parent_entity_id is None:
            if entity.entity_type == EntityType.LOCATION:
                raise InvalidParentError("a location cannot become a root", entity_id=entity.id)
            root = self._tenant_root(session, tenant_id)
            if root is not None and root.id != entity.id:
                raise RootExistsError("tenant already has a root organization", root_entity_id=root.id)
            return None
        if new_parent_entity_id == entity.id:
            raise CycleDetectedError("entity cannot be its own parent", entity_id=entity.id)

        parent = session.get(Entity, new_parent_entity_id)
        if parent is None:
            raise InvalidParentError("parent entity not found", parent_entity_id=new_parent_entity_id)
        if parent.tenant_id != tenant_id:
            raise CrossTenantError("parent entity belongs to another tenant", parent_entity_id=parent.id)
        if parent.entity_type != EntityType.ORGANIZATION:
            raise InvalidParentError("parent must be an organization", parent_entity_id=parent.id)
        if is_path_ancestor(entity.path, parent.path):
            raise CycleDetectedError(
                "entity cannot move under its own descendant",
                entity_id=entity.id,
                parent_entity_id=parent.id,
            )
        return parent

    def move_entity(
        self,
        entity_id: str,
        new_parent_entity_id: str | None,
        actor_id: str | None = None,
        *,
        tenant_id: str | None = None,
    ) -> Entity:
        tenant_id = require_tenant_id(tenant_id)
        with self._session() as session:
            entity = self._require_entity(session, tenant_id, entity_id)
            self._validate_move(session, tenant_id, entity, new_parent_entity_id)

            entity, descendants = self._lock_subtree(session, tenant_id, entity_id)
            old_parent_entity_id = entity.parent_entity_id
            noop = old_parent_entity_id == new_parent_entity_id
            if not noop and new_parent_entity_id is not None:
                self._lock_entity(session, tenant_id, new_parent_entity_id, read=True)
            # re-check against the locked rows
            new_parent = self._validate_move(session, tenant_id, entity, new_parent_entity_id)

            if not noop:
                entity.parent_entity_id = new_parent_entity_id
                self._place(entity, new_parent)
                self._replace_subtree(entity, descendants, actor_id)
            entity.touch(actor_id)
            event_bus.record(
                session,
                ENTITY_MOVED,
                tenant_id,
                {
                    **self._event_payload(entity),
                    "from_parent_entity_id": old_parent_entity_id,
                    "descendants_rewritten": 0 if noop else len(descendants),
                },
                actor_id=actor_id,
            )
            self._commit(session, RootExistsError("tenant already has a root organization"))
            session.refresh(entity)

        if not noop:
            scope_cache.invalidate_tenant(tenant_id)
        logger.info(
            "hierarchy.entity_moved",
            entity_id=entity.id,
            from_parent_entity_id=old_parent_entity_id,
            to_parent_entity_id=new_parent_entity_id,
            descendants=len(descendants),
            noop=noop,
        )
        return entity

    def update_entity(
        self,
        tenant_id: str,
        entity_id: str,
        payload: EntityUpdate,
        actor_id: str | None = None,
    ) -> Entity:
        with self._session() as session:
            entity = self._require_entity(session, tenant_id, entity_id)
            fields = payload.model_fields_set
            renamed = "name" in fields and payload.name is not None and payload.name != entity.name

            descendants: list[Entity] = []
            if renamed and payload.name is not None:
                entity, descendants = self._lock_subtree(session, tenant_id, entity_id)
                entity.name = payload.name
            if "code" in fields and payload.code is not None:
                entity.code = payload.code
            if "description" in fields:
                entity.description = payload.description
            if "organization_type" in fields:
                entity.organization_type = payload.organization_type
            if "location_attributes" in fields and payload.location_attributes is not None:
                entity.location_attributes = dict(payload.location_attributes)
            if "is_active" in fields and payload.is_active is not None:
                entity.is_active = payload.is_active

            if renamed:
                parent = None
                if entity.parent_entity_id is not None:
                    parent = self._get_scoped_entity(session, tenant_id, entity.parent_entity_id)
                self._place(entity, parent)
                self._replace_subtree(entity, descendants, actor_id)
            entity.touch(actor_id)
            session.add(entity)
            event_bus.record(
                session,
                ENTITY_UPDATED,
                tenant_id,
                {**self._event_payload(entity), "fields": sorted(fields)},
                actor_id=actor_id,
            )
            self._commit(session, ConflictError("entity code already exists in tenant", code=entity.code))
            session.refresh(entity)

        logger.info("hierarchy.entity_updated", entity_id=entity.id, fields=sorted(fields))
        return entity

    def delete_entity(
        self,
        entity_id: str,
        actor_id: str | None = None,
        *,
        cascade: bool = False,
        tenant_id: str | None = None,
    ) -> list[str]:
        """Delete an entity, or with ``cascade`` its whole subtree.

        Returns the deleted ids, deepest level first. Assignments that point at
        deleted entities are removed in the same transaction. The tenant's
        root organization cannot be deleted.
        """
        tenant_id = require_tenant_id(tenant_id)
        with self._session() as session:
            self._ensure_not_root(self._require_entity(session, tenant_id, entity_id))
            child = session.exec(
                select(Entity.id)
                .where(Entity.tenant_id == tenant_id)
                .where(Entity.parent_entity_id == entity_id)
            ).first()
            if child is not None and not cascade:
                raise HasChildrenError("entity has child entities", entity_id=entity_id)

            entity, descendants = self._lock_subtree(session, tenant_id, entity_id)
            self._ensure_not_root(entity)
            if descendants and not cascade:
                raise HasChildrenError("entity has child entities", entity_id=entity_id)

            levels: dict[int, list[str]] = defaultdict(list)
            for item in [entity, *descendants]:
                levels[len(item.hierarchy_path)].append(item.id)
            deleted_ids = [item_id for level in sorted(levels, reverse=True) for item_id in levels[level]]

            removed_assignments = session.execute(
                delete(Assignment)
                .where(col(Assignment.tenant_id) == tenant_id)
                .where(col(Assignment.entity_id).in_(deleted_ids))
                .execution_options(synchronize_session=False)
            ).rowcount
            for level in sorted(levels, reverse=True):
                session.execute(
                    delete(Entity)
                    .where(col(Entity.tenant_id) == tenant_id)
                    .where(col(Entity.id).in_(levels[level]))
                    .execution_options(synchronize_session=False)
                )
            event_bus.record(
                session,
                ENTITY_DELETED,
                tenant_id,
                {
                    **self._event_payload(entity),
                    "cascade": cascade,
                    "deleted_entity_ids": deleted_ids,
                    "removed_assignments": removed_assignments,
                },
                actor_id=actor_id,
            )
            self._commit(session, ConflictError("entity is still referenced", entity_id=entity_id))

        scope_cache.invalidate_tenant(tenant_id)
        logger.info(
            "hierarchy.entity_deleted",
            entity_id=entity_id,
            cascade=cascade,
            deleted=len(deleted_ids),
            removed_assignments=removed_assignments,
        )
        return deleted_ids

    def rebuild_all_hierarchy_paths(
        self,
        tenant_id: str,
        *,
        dry_run: bool = False,
        actor_id: str | None = None,
    ) -> RebuildResult:
        """Recompute every stored path of ``tenant_id`` from parent links.

        Walks breadth-first from the root(s). Entities the walk never reaches
        sit on a parent-link cycle; they are reported as orphans and left as-is.
        """
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found", tenant_id=tenant_id)
            statement = select(Entity).where(Entity.tenant_id == tenant_id)
            if not dry_run:
                apply_lock_timeout(session)
                statement = statement.order_by(col(Entity.entity_level), col(Entity.id)).with_for_update()
            entities = self._locked(session, statement)

            children: dict[str | None, list[Entity]] = defaultdict(list)
            for item in entities:
                children[item.parent_entity_id].append(item)

            placements: dict[str, _Placement] = {}
            queue: deque[tuple[Entity, _Placement | None]] = deque(
                (root, None) for root in sorted(children.get(None, []), key=lambda item: item.created_at)
            )
            updated = 0
            while queue:
                item, parent_placement = queue.popleft()
                if item.id in placements:
                    continue
                expected = _placement(item.id, item.name, parent_placement)
                placements[item.id] = expected
                if expected != _placement_of(item):
                    updated += 1
                    if not dry_run:
                        item.path = expected.path
                        item.full_hierarchy_path = expected.full_hierarchy_path
                        item.entity_level = expected.entity_level
                        item.touch(actor_id)
                for child in sorted(children.get(item.id, []), key=lambda entry: (entry.name, entry.id)):
                    queue.append((child, expected))

            orphans = sorted(item.id for item in entities if item.id not in placements)
            if not dry_run:
                event_bus.record(
                    session,
                    PATHS_REBUILT,
                    tenant_id,
                    {"updated_count": updated, "orphans": orphans},
                    actor_id=actor_id,
                )
                self._commit(session, ConflictError("hierarchy changed during rebuild; retry"))

        if orphans:
            logger.warning("hierarchy.orphans_detected", orphans=orphans)
        if updated and not dry_run:
            scope_cache.invalidate_tenant(tenant_id)
        logger.info("hierarchy.paths_rebuilt", updated_count=updated, orphan_count=len(orphans), dry_run=dry_run)
        return RebuildResult(tenant_id=tenant_id, updated_count=updated, orphans=orphans, dry_run=dry_run)

    def validate_hierarchy_integrity(
        self,
        ancestor_id: str,
        descendant_id: str,
        *,
        tenant_id: str | None = None,
    ) -> bool:
        """True when ``ancestor_id`` is a strict ancestor of ``descendant_id``."""
        tenant_id = require_tenant_id(tenant_id)
        with self._session() as session:
            ancestor = self._require_entity(session, tenant_id, ancestor_id)
            descendant = self._require_entity(session, tenant_id, descendant_id)
            return is_path_ancestor(ancestor.path, descendant.path)

    def get_entity(self, tenant_id: str, entity_id: str) -> Entity:
        with self._session() as session:
            return self._require_entity(session, tenant_id, entity_id)

    def list_entities(
        self,
        tenant_id: str,
        *,
        entity_type: EntityType | None = None,
        include_inactive: bool = True,
    ) -> list[Entity]:
        with self._session() as session:
            statement = select(Entity).where(Entity.tenant_id == tenant_id)
            if entity_type is not None:
                statement = statement.where(Entity.entity_type == entity_type)
            if not include_inactive:
                statement = statement.where(col(Entity.is_active).is_(True))
            entities = list(session.exec(statement).all())
            return sorted(entities, key=lambda item: item.path)

    def list_ancestors(self, tenant_id: str, entity_id: str) -> list[Entity]:
        """Ancestors ordered from the root down to the direct parent."""
        with self._session() as session:
            entity = self._require_entity(session, tenant_id, entity_id)
            ancestor_ids = entity.hierarchy_path[:-1]
            if not ancestor_ids:
                return []
            rows = session.exec(
                select(Entity).where(Entity.tenant_id == tenant_id).where(col(Entity.id).in_(ancestor_ids))
            ).all()
            return sorted(rows, key=lambda item: item.entity_level)

    def list_descendants(self, tenant_id: str, entity_id: str) -> list[Entity]:
        with self._session() as session:
            entity = self._require_entity(session, tenant_id, entity_id)
            rows = session.exec(
                select(Entity)
                .where(Entity.tenant_id == tenant_id)
                .where(col(Entity.path).like(f"{entity.path}{PATH_SEPARATOR}%"))
            ).all()
            return sorted(rows, key=lambda item: (item.entity_level, item.path))

    def get_hierarchy_tree(
        self,
        tenant_id: str,
        scope: ResolvedScope | None = None,
        *,
        include_inactive: bool = False,
    ) -> list[EntityTreeNode]:
        """Nest the tenant's entities; a node whose parent is filtered out becomes top-level."""
        entities = self.list_entities(tenant_id, include_inactive=include_inactive)
        if scope is not None:
            entities = filter_by_scope(entities, scope, key="id")

        nodes = {
            item.id: EntityTreeNode(
                id=item.id,
                entity_type=item.entity_type,
                name=item.name,
                code=item.code,
                entity_level=item.entity_level,
                hierarchy_path=item.hierarchy_path,
                full_hierarchy_path=item.full_hierarchy_path,
                parent_entity_id=item.parent_entity_id,
                organization_type=item.organization_type,
                is_active=item.is_active,
            )
            for item in entities
        }
        roots: list[EntityTreeNode] = []
        for node in sorted(nodes.values(), key=lambda item: (item.entity_level, item.name, item.id)):
            parent = nodes.get(node.parent_entity_id or "")
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    def bulk_create_entities(
        self,
        tenant_id: str,
        payloads: Sequence[EntityCreate],
        actor_id: str | None = None,
    ) -> BulkOperationResult:
        """Create each item in its own transaction; failures do not stop the batch."""
        result = BulkOperationResult()
        for index, payload in enumerate(payloads):
            try:
                entity = self.create_entity(tenant_id, payload, actor_id)
            except EngineError as exc:
                result.results.append(
                    BulkItemResult(index=index, success=False, error_code=exc.code, error=exc.message)
                )
                continue
            result.results.append(BulkItemResult(index=index, success=True, entity_id=entity.id))
        logger.info("hierarchy.bulk_create", total=result.total_processed, failed=result.failed)
        return result

    def bulk_update_entities(
        self,
        tenant_id: str,
        items: Sequence[BulkEntityUpdateItem],
        actor_id: str | None = None,
    ) -> BulkOperationResult:
        result = BulkOperationResult()
        for index, item in enumerate(items):
            try:
                self.update_entity(tenant_id, item.entity_id, item.changes, actor_id)
            except EngineError as exc:
                result.results.append(
                    BulkItemResult(
                        index=index,
                        success=False,
                        entity_id=item.entity_id,
                        error_code=exc.code,
                        error=exc.message,
                    )
                )
                continue
            result.results.append(BulkItemResult(index=index, success=True, entity_id=item.entity_id))
        logger.info("hierarchy.bulk_update", total=result.total_processed, failed=result.failed)
        return result

    def bulk_delete_entities(
        self,
        tenant_id: str,
        entity_ids: Sequence[str],
        actor_id: str | None = None,
        *,
        cascade: bool = False,
    ) -> BulkOperationResult:
        result = BulkOperationResult()
        for index, entity_id in enumerate(entity_ids):
            try:
                self.delete_entity(entity_id, actor_id, cascade=cascade, tenant_id=tenant_id)
            except EngineError as exc:
                result.results.append(
                    BulkItemResult(
                        index=index,
                        success=False,
                        entity_id=entity_id,
                        error_code=exc.code,
                        error=exc.message,
                    )
                )
                continue
            result.results.append(BulkItemResult(index=index, success=True, entity_id=entity_id))
        logger.info("hierarchy.bulk_delete", total=result.total_processed, failed=result.failed)
        return result
