from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from scope_engine.domain.errors import EngineError, MissingTenantContextError
from scope_engine.infra.logging import get_logger

logger = get_logger(__name__)

STATUS_BY_CODE = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "access_denied": status.HTTP_403_FORBIDDEN,
    "invalid_assignment": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "root_protected": status.HTTP_409_CONFLICT,
    "invalid_parent": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "root_exists": status.HTTP_409_CONFLICT,
    "cycle_detected": status.HTTP_409_CONFLICT,
    "cross_tenant": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "has_children": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "concurrent_modification": status.HTTP_409_CONFLICT,
    "missing_tenant_context": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_http_error(exc: EngineError) -> NoReturn:
    if isinstance(exc, MissingTenantContextError):
        logger.error("request.missing_tenant_context", error=exc.message)
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=status_code, detail=exc.to_detail()) from exc
