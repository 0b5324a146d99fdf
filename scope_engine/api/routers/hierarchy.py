from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from scope_engine.api.deps import ActorScope, CurrentActor, require_perm, require_tenant_admin
from scope_engine.api.errors import raise_http_error
from scope_engine.domain.errors import EngineError
from scope_engine.domain.models import (
    BulkEntityCreateRequest,
    BulkEntityDeleteRequest,
    BulkEntityUpdateRequest,
    BulkOperationRead,
    EntityCreate,
    EntityDeleteRead,
    EntityMoveRequest,
    EntityRead,
    EntityTreeNode,
    EntityType,
    EntityUpdate,
    IntegrityCheckRead,
    RebuildResultRead,
)
from scope_engine.domain.permissions import PERM_HIERARCHY_READ, PERM_HIERARCHY_WRITE
from scope_engine.domain.scope import ResolvedScope
from scope_engine.infra.audit import set_audit_context
from scope_engine.services.hierarchy_service import BulkOperationResult, HierarchyService
from scope_engine.services.query_filter import ensure_access, ensure_write_access, filter_by_scope

router = APIRouter()


def get_hierarchy_service() -> HierarchyService:
    return HierarchyService()


Service = Annotated[HierarchyService, Depends(get_hierarchy_service)]


def _ensure_in_scope(scope: ResolvedScope, *entity_ids: str) -> None:
    try:
        for entity_id in entity_ids:
            ensure_access(scope, entity_id)
    except EngineError as exc:
        raise_http_error(exc)


def _ensure_writable(scope: ResolvedScope, *entity_ids: str) -> None:
    try:
        for entity_id in entity_ids:
            ensure_write_access(scope, entity_id)
    except EngineError as exc:
        raise_http_error(exc)


def _ensure_deletable(
    scope: ResolvedScope,
    service: HierarchyService,
    tenant_id: str,
    entity_id: str,
    *,
    cascade: bool,
) -> None:
    # cascade deletes need every row of the subtree writable
    _ensure_writable(scope, entity_id)
    if not cascade or scope.is_tenant_admin():
        return
    try:
        descendants = service.list_descendants(tenant_id, entity_id)
    except EngineError as exc:
        raise_http_error(exc)
    _ensure_writable(scope, *(item.id for item in descendants))


def _ensure_can_create_root(scope: ResolvedScope) -> None:
    if not scope.is_tenant_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant admin required to manage the root organization",
        )


def _bulk_read(result: BulkOperationResult) -> BulkOperationRead:
    return BulkOperationRead(
        total_processed=result.total_processed,
        successful=result.successful,
        failed=result.failed,
        results=result.results,
    )


@router.post(
    "/entities",
    response_model=EntityRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def create_entity(
    payload: EntityCreate,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> EntityRead:
    set_audit_context(
        request,
        action="hierarchy.entity.create",
        detail={"what": {"entity_type": payload.entity_type.value, "parent_entity_id": payload.parent_entity_id}},
    )
    if payload.parent_entity_id is None:
        _ensure_can_create_root(scope)
    else:
        _ensure_writable(scope, payload.parent_entity_id)
    try:
        entity = service.create_entity(actor.tenant_id, payload, actor.user_id)
    except EngineError as exc:
        raise_http_error(exc)
    set_audit_context(request, resource=f"entity:{entity.id}")
    return EntityRead.model_validate(entity)


@router.post(
    "/entities/bulk",
    response_model=BulkOperationRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def bulk_create_entities(
    payload: BulkEntityCreateRequest,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> BulkOperationRead:
    set_audit_context(request, action="hierarchy.entity.bulk_create", detail={"what": {"count": len(payload.items)}})
    for item in payload.items:
        if item.parent_entity_id is None:
            _ensure_can_create_root(scope)
        else:
            _ensure_writable(scope, item.parent_entity_id)
    result = service.bulk_create_entities(actor.tenant_id, payload.items, actor.user_id)
    set_audit_context(request, detail={"result": {"successful": result.successful, "failed": result.failed}})
    return _bulk_read(result)


@router.post(
    "/entities/bulk-update",
    response_model=BulkOperationRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def bulk_update_entities(
    payload: BulkEntityUpdateRequest,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> BulkOperationRead:
    set_audit_context(
        request,
        action="hierarchy.entity.bulk_update",
        detail={"what": {"entity_ids": [item.entity_id for item in payload.items]}},
    )
    _ensure_writable(scope, *(item.entity_id for item in payload.items))
    result = service.bulk_update_entities(actor.tenant_id, payload.items, actor.user_id)
    set_audit_context(request, detail={"result": {"successful": result.successful, "failed": result.failed}})
    return _bulk_read(result)


@router.post(
    "/entities/bulk-delete",
    response_model=BulkOperationRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def bulk_delete_entities(
    payload: BulkEntityDeleteRequest,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> BulkOperationRead:
    set_audit_context(
        request,
        action="hierarchy.entity.bulk_delete",
        detail={"what": {"entity_ids": payload.entity_ids, "cascade": payload.cascade}},
    )
    for entity_id in payload.entity_ids:
        _ensure_deletable(scope, service, actor.tenant_id, entity_id, cascade=payload.cascade)
    result = service.bulk_delete_entities(
        actor.tenant_id,
        payload.entity_ids,
        actor.user_id,
        cascade=payload.cascade,
    )
    set_audit_context(request, detail={"result": {"successful": result.successful, "failed": result.failed}})
    return _bulk_read(result)


@router.get(
    "/entities",
    response_model=list[EntityRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_entities(
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
    entity_type: EntityType | None = None,
    include_inactive: bool = True,
) -> list[EntityRead]:
    entities = service.list_entities(actor.tenant_id, entity_type=entity_type, include_inactive=include_inactive)
    return [EntityRead.model_validate(item) for item in filter_by_scope(entities, scope, key="id")]


@router.get(
    "/entities/{entity_id}",
    response_model=EntityRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def get_entity(entity_id: str, actor: CurrentActor, scope: ActorScope, service: Service) -> EntityRead:
    _ensure_in_scope(scope, entity_id)
    try:
        entity = service.get_entity(actor.tenant_id, entity_id)
    except EngineError as exc:
        raise_http_error(exc)
    return EntityRead.model_validate(entity)


@router.get(
    "/entities/{entity_id}/ancestors",
    response_model=list[EntityRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_ancestors(entity_id: str, actor: CurrentActor, scope: ActorScope, service: Service) -> list[EntityRead]:
    _ensure_in_scope(scope, entity_id)
    try:
        ancestors = service.list_ancestors(actor.tenant_id, entity_id)
    except EngineError as exc:
        raise_http_error(exc)
    return [EntityRead.model_validate(item) for item in filter_by_scope(ancestors, scope, key="id")]


@router.get(
    "/entities/{entity_id}/descendants",
    response_model=list[EntityRead],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def list_descendants(entity_id: str, actor: CurrentActor, scope: ActorScope, service: Service) -> list[EntityRead]:
    _ensure_in_scope(scope, entity_id)
    try:
        descendants = service.list_descendants(actor.tenant_id, entity_id)
    except EngineError as exc:
        raise_http_error(exc)
    return [EntityRead.model_validate(item) for item in filter_by_scope(descendants, scope, key="id")]


@router.patch(
    "/entities/{entity_id}",
    response_model=EntityRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def update_entity(
    entity_id: str,
    payload: EntityUpdate,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> EntityRead:
    set_audit_context(
        request,
        action="hierarchy.entity.update",
        resource=f"entity:{entity_id}",
        detail={"what": {"changed_fields": sorted(payload.model_fields_set)}},
    )
    _ensure_writable(scope, entity_id)
    try:
        entity = service.update_entity(actor.tenant_id, entity_id, payload, actor.user_id)
    except EngineError as exc:
        raise_http_error(exc)
    return EntityRead.model_validate(entity)


@router.post(
    "/entities/{entity_id}/move",
    response_model=EntityRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def move_entity(
    entity_id: str,
    payload: EntityMoveRequest,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> EntityRead:
    set_audit_context(
        request,
        action="hierarchy.entity.move",
        resource=f"entity:{entity_id}",
        detail={"what": {"new_parent_entity_id": payload.new_parent_entity_id}},
    )
    _ensure_writable(scope, entity_id)
    if payload.new_parent_entity_id is None:
        _ensure_can_create_root(scope)
    else:
        _ensure_writable(scope, payload.new_parent_entity_id)
    try:
        entity = service.move_entity(
            entity_id,
            payload.new_parent_entity_id,
            actor.user_id,
            tenant_id=actor.tenant_id,
        )
    except EngineError as exc:
        raise_http_error(exc)
    return EntityRead.model_validate(entity)


@router.delete(
    "/entities/{entity_id}",
    response_model=EntityDeleteRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_WRITE))],
)
def delete_entity(
    entity_id: str,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
    cascade: bool = False,
) -> EntityDeleteRead:
    set_audit_context(
        request,
        action="hierarchy.entity.delete",
        resource=f"entity:{entity_id}",
        detail={"what": {"cascade": cascade}},
    )
    _ensure_deletable(scope, service, actor.tenant_id, entity_id, cascade=cascade)
    try:
        deleted_ids =service.delete_entity(entity_id, actor.user_id, cascade=cascade, tenant_id=actor.tenant_id)
    except EngineError as exc:
        raise_http_error(exc)
    set_audit_context(request, detail={"result": {"deleted_count": len(deleted_ids)}})
    return EntityDeleteRead(entity_id=entity_id, cascade=cascade, deleted_entity_ids=deleted_ids)


@router.get(
    "/tree",
    response_model=list[EntityTreeNode],
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def get_hierarchy_tree(
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
    include_inactive: bool = False,
) -> list[EntityTreeNode]:
    return service.get_hierarchy_tree(actor.tenant_id, scope, include_inactive=include_inactive)


@router.get(
    "/integrity",
    response_model=IntegrityCheckRead,
    dependencies=[Depends(require_perm(PERM_HIERARCHY_READ))],
)
def check_integrity(
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
    ancestor_id: Annotated[str, Query(min_length=1)],
    descendant_id: Annotated[str, Query(min_length=1)],
) -> IntegrityCheckRead:
    _ensure_in_scope(scope, ancestor_id, descendant_id)
    try:
        is_ancestor = service.validate_hierarchy_integrity(ancestor_id, descendant_id, tenant_id=actor.tenant_id)
    except EngineError as exc:
        raise_http_error(exc)
    return IntegrityCheckRead(ancestor_id=ancestor_id, descendant_id=descendant_id, is_ancestor=is_ancestor)


@router.post(
    "/rebuild",
    response_model=RebuildResultRead,
    dependencies=[Depends(require_tenant_admin)],
)
def rebuild_hierarchy_paths(
    request: Request,
    actor: CurrentActor,
    service: Service,
    dry_run: bool = False,
) -> RebuildResultRead:
    set_audit_context(request, action="hierarchy.paths.rebuild", detail={"what": {"dry_run": dry_run}})
    try:
        result = service.rebuild_all_hierarchy_paths(actor.tenant_id, dry_run=dry_run, actor_id=actor.user_id)
    except EngineError as exc:
        raise_http_error(exc)
    set_audit_context(
        request,
        detail={"result": {"updated_count": result.updated_count, "orphans": result.orphans}},
    )
    return RebuildResultRead(
        tenant_id=result.tenant_id,
        updated_count=result.updated_count,
        orphans=result.orphans,
        dry_run=result.dry_run,
    )
