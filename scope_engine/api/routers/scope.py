from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from scope_engine.api.deps import ActorScope, CurrentActor, get_scope_service
from scope_engine.api.errors import raise_http_error
from scope_engine.domain.errors import EngineError
from scope_engine.domain.models import AccessCheckRead, ScopeRead
from scope_engine.services.scope_service import AccessScopeService

router = APIRouter()

Service = Annotated[AccessScopeService, Depends(get_scope_service)]


@router.get("/me", response_model=ScopeRead)
def get_my_scope(scope: ActorScope) -> ScopeRead:
    return ScopeRead(
        tenant_id=scope.tenant_id,
        actor_id=scope.actor_id,
        mode=scope.mode,
        entity_ids=sorted(scope.entity_ids),
        direct_entity_ids=sorted(scope.direct_entity_ids),
        writable_entity_ids=sorted(scope.writable_entity_ids),
    )


@router.get("/check/{entity_id}", response_model=AccessCheckRead)
def check_access(entity_id: str, actor: CurrentActor, service: Service) -> AccessCheckRead:
    try:
        allowed = service.can_access(
            actor.user_id,
            entity_id,
            tenant_id=actor.tenant_id,
            permissions=actor.permissions,
        )
    except EngineError as exc:
        raise_http_error(exc)
    return AccessCheckRead(entity_id=entity_id, allowed=allowed)
