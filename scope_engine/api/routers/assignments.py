from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from scope_engine.api.deps import ActorScope, CurrentActor, require_perm
from scope_engine.api.errors import raise_http_error
from scope_engine.domain.errors import EngineError
from scope_engine.domain.models import AssignmentCreate, AssignmentRead, AssignmentSupersedeRequest
from scope_engine.domain.permissions import PERM_ASSIGNMENT_READ, PERM_ASSIGNMENT_WRITE
from scope_engine.infra.audit import set_audit_context
from scope_engine.services.assignment_service import AssignmentService
from scope_engine.services.query_filter import ensure_write_access, filter_by_scope

router = APIRouter()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Service = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def create_assignment(
    payload: AssignmentCreate,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> AssignmentRead:
    set_audit_context(
        request,
        action="assignment.create",
        detail={
            "what": {
                "target": {"user_id": payload.user_id, "entity_id": payload.entity_id},
                "assignment_type": payload.assignment_type.value,
            }
        },
    )
    try:
        ensure_write_access(scope, payload.entity_id)
        assignment = service.assign(actor.tenant_id, payload, actor.user_id)
    except EngineError as exc:
        raise_http_error(exc)
    set_audit_context(request, resource=f"assignment:{assignment.id}")
    return AssignmentRead.model_validate(assignment)


@router.get(
    "",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_READ))],
)
def list_assignments(
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
    user_id: str | None = None,
    entity_id: str | None = None,
    include_revoked: bool = False,
) -> list[AssignmentRead]:
    rows = service.list_assignments(
        actor.tenant_id,
        user_id=user_id,
        entity_id=entity_id,
        include_revoked=include_revoked,
    )
    return [AssignmentRead.model_validate(item) for item in filter_by_scope(rows, scope)]


@router.post(
    "/{assignment_id}/revoke",
    response_model=AssignmentRead,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def revoke_assignment(
    assignment_id: str,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> AssignmentRead:
    set_audit_context(request, action="assignment.revoke", resource=f"assignment:{assignment_id}")
    try:
        current = service.get_assignment(actor.tenant_id, assignment_id)
        ensure_write_access(scope, current.entity_id)
        assignment = service.revoke(actor.tenant_id, assignment_id, actor.user_id)
    except EngineError as exc:
        raise_http_error(exc)
    return AssignmentRead.model_validate(assignment)


@router.post(
    "/{assignment_id}/supersede",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def supersede_assignment(
    assignment_id: str,
    payload: AssignmentSupersedeRequest,
    request: Request,
    actor: CurrentActor,
    scope: ActorScope,
    service: Service,
) -> AssignmentRead:
    set_audit_context(
        request,
        action="assignment.supersede",
        resource=f"assignment:{assignment_id}",
        detail={"what": {"requested": payload.model_dump(mode="json", exclude_none=True)}},
    )
    try:
        current = service.get_assignment(actor.tenant_id, assignment_id)
        ensure_write_access(scope, current.entity_id)
        if payload.entity_id is not None:
            ensure_write_access(scope, payload.entity_id)
        assignment = service.supersede(actor.tenant_id, assignment_id, payload, actor.user_id)
    except EngineError as exc:
        raise_http_error(exc)
    set_audit_context(request, detail={"result": {"assignment_id": assignment.id}})
    return AssignmentRead.model_validate(assignment)
