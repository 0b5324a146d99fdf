from __future__ import annotations

from dataclasses import dataclass, field

from scope_engine.domain.models import ScopeMode


@dataclass(frozen=True)
class ResolvedScope:
    """The closed set of entity ids an actor may touch inside one tenant.

    ``mode`` tags the variant: a tenant admin's scope is every entity of the
    tenant at resolution time; a scoped user's scope is derived from their
    active assignments.

    ``entity_ids`` is what the actor may see. ``writable_entity_ids`` is the
    subset granted by an assignment (the direct entities and the subtrees of
    direct organizations); ancestors shown only as context are never writable.
    """

    tenant_id: str
    actor_id: str
    mode: ScopeMode = ScopeMode.SCOPED
    entity_ids: frozenset[str] = frozenset()
    direct_entity_ids: frozenset[str] = field(default_factory=frozenset)
    writable_entity_ids: frozenset[str] = field(default_factory=frozenset)

    def is_tenant_admin(self) -> bool:
        return self.mode == ScopeMode.TENANT_ADMIN

    def is_empty(self) -> bool:
        return not self.entity_ids

    def contains(self, entity_id: str | None) -> bool:
        if entity_id is None:
            return False
        return entity_id in self.entity_ids

    def can_write(self, entity_id: str | None) -> bool:
        if self.is_tenant_admin():
            return True
        if entity_id is None:
            return False
        return entity_id in self.writable_entity_ids

    def __contains__(self, entity_id: object) -> bool:
        return isinstance(entity_id, str) and self.contains(entity_id)
