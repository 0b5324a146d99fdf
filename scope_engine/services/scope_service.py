from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import or_
from sqlmodel import Session, col, select

from scope_engine.domain.models import Entity, EntityType, ScopeMode, is_path_ancestor
from scope_engine.domain.permissions import is_tenant_admin
from scope_engine.domain.scope import ResolvedScope
from scope_engine.infra import scope_cache
from scope_engine.infra.db import get_engine
from scope_engine.infra.logging import get_logger
from scope_engine.infra.tenant import require_tenant_id
from scope_engine.services.assignment_service import active_entity_ids

logger = get_logger(__name__)


def _outermost_paths(paths: Iterable[str]) -> list[str]:
    # a path nested under another kept path adds no new descendants
    kept: list[str] = []
    for path in sorted(set(paths), key=len):
        if not any(path == item or is_path_ancestor(item, path) for item in kept):
            kept.append(path)
    return kept


class AccessScopeService:
    """Turns an actor's assignments into the set of entities they may touch.

    A scoped actor sees each directly assigned entity together with its
    ancestors as context. A directly assigned organization also grants its
    whole subtree; a directly assigned location grants only itself.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _tenant_entity_ids(self, session: Session, tenant_id: str) -> frozenset[str]:
        return frozenset(session.exec(select(Entity.id).where(Entity.tenant_id == tenant_id)).all())

    def _direct_entities(self, session: Session, tenant_id: str, actor_id: str) -> list[Entity]:
        direct_ids = active_entity_ids(session, tenant_id, actor_id)
        if not direct_ids:
            return []
        statement = select(Entity).where(Entity.tenant_id == tenant_id).where(col(Entity.id).in_(direct_ids))
        return list(session.exec(statement).all())

    def _expand(self, session: Session, tenant_id: str, direct: list[Entity]) -> tuple[frozenset[str], frozenset[str]]:
        """Return ``(visible, writable)`` ids for the given direct entities."""
        context_ids: set[str] = set()
        for entity in direct:
            context_ids.update(entity.hierarchy_path)

        granted_ids = {item.id for item in direct}
        org_paths = _outermost_paths(item.path for item in direct if item.entity_type == EntityType.ORGANIZATION)
        if org_paths:
            statement = (
                select(Entity.id)
                .where(Entity.tenant_id == tenant_id)
                .where(or_(*[col(Entity.path).like(f"{path}/%") for path in org_paths]))
            )
            granted_ids.update(session.exec(statement).all())
        return frozenset(context_ids | granted_ids), frozenset(granted_ids)

    def resolve_scope(
        self,
        actor_id: str,
        tenant_id: str | None = None,
        *,
        permissions: Iterable[str] = (),
    ) -> ResolvedScope:
        tenant_id = require_tenant_id(tenant_id)
        mode = ScopeMode.TENANT_ADMIN if is_tenant_admin(permissions) else ScopeMode.SCOPED

        generation = scope_cache.current_generation(tenant_id)
        if generation is not None:
            cached = scope_cache.load(tenant_id, generation, mode.value, actor_id)
            if cached is not None:
                logger.debug("scope.cache_hit", actor_id=actor_id, mode=mode.value)
                return ResolvedScope(
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                    mode=mode,
                    entity_ids=frozenset(cached["entity_ids"]),
                    direct_entity_ids=frozenset(cached["direct_entity_ids"]),
                    writable_entity_ids=frozenset(cached["writable_entity_ids"]),
                )

        with self._session() as session:
            if mode == ScopeMode.TENANT_ADMIN:
                entity_ids = self._tenant_entity_ids(session, tenant_id)
                writable_ids = entity_ids
                direct_ids: frozenset[str] = frozenset()
            else:
                direct = self._direct_entities(session, tenant_id, actor_id)
                entity_ids, writable_ids = self._expand(session, tenant_id, direct)
                direct_ids = frozenset(item.id for item in direct)

        scope = ResolvedScope(
            tenant_id=tenant_id,
            actor_id=actor_id,
            mode=mode,
            entity_ids=entity_ids,
            direct_entity_ids=direct_ids,
            writable_entity_ids=writable_ids,
        )
        if generation is not None:
            scope_cache.store(
                tenant_id,
                generation,
                mode.value,
                actor_id,
                entity_ids=sorted(entity_ids),
                direct_entity_ids=sorted(direct_ids),
                writable_entity_ids=sorted(writable_ids),
            )
        logger.debug("scope.resolved", actor_id=actor_id, mode=mode.value, size=len(entity_ids))
        return scope

    def can_access(
        self,
        actor_id: str,
        entity_id: str,
        *,
        tenant_id: str | None = None,
        permissions: Iterable[str] = (),
    ) -> bool:
        """Check a single entity without materialising the whole scope."""
        tenant_id = require_tenant_id(tenant_id)
        with self._session() as session:
            target = session.exec(
                select(Entity).where(Entity.tenant_id == tenant_id).where(Entity.id == entity_id)
            ).first()
            if target is None:
                return False
            if is_tenant_admin(permissions):
                return True
            for direct in self._direct_entities(session, tenant_id, actor_id):
                if target.id in direct.hierarchy_path:
                    return True
                if direct.entity_type == EntityType.ORGANIZATION and is_path_ancestor(direct.path, target.path):
                    return True
            return False
