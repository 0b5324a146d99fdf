from __future__ import annotations

from contextvars import ContextVar

import structlog

from scope_engine.domain.errors import MissingTenantContextError
from scope_engine.infra.logging import get_logger

logger = get_logger(__name__)

tenant_id_ctx: ContextVar[str | None] = ContextVar("tenant_id", default=None)


def set_request_context(tenant_id: str | None, user_id: str | None) -> None:
    tenant_id_ctx.set(tenant_id)
    structlog.contextvars.bind_contextvars(tenant_id=tenant_id, user_id=user_id)


def clear_request_context() -> None:
    tenant_id_ctx.set(None)
    structlog.contextvars.unbind_contextvars("tenant_id", "user_id")


def get_tenant_id() -> str | None:
    return tenant_id_ctx.get()


def require_tenant_id(tenant_id: str | None = None) -> str:
    """Return the explicit tenant id, falling back to the request context."""
    resolved = tenant_id or get_tenant_id()
    if not resolved:
        logger.error("tenant_context.missing")
        raise MissingTenantContextError("tenant context is required but was not set")
    return resolved
