from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from scope_engine.api.errors import raise_http_error
from scope_engine.domain.errors import EngineError
from scope_engine.domain.models import TenantCreate, TenantRead
from scope_engine.infra.audit import set_audit_context
from scope_engine.services.hierarchy_service import HierarchyService

router = APIRouter()


def get_hierarchy_service() -> HierarchyService:
    return HierarchyService()


Service = Annotated[HierarchyService, Depends(get_hierarchy_service)]


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def register_tenant(payload: TenantCreate, request: Request, service: Service) -> TenantRead:
    set_audit_context(request, action="tenant.register", detail={"what": {"name": payload.name}})
    try:
        tenant = service.create_tenant(payload)
    except EngineError as exc:
        raise_http_error(exc)
    set_audit_context(request, resource=f"tenant:{tenant.id}")
    return TenantRead.model_validate(tenant)
