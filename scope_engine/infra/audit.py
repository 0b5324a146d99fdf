from __future__ import annotations

from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from scope_engine.domain.models import AuditLog
from scope_engine.infra.db import engine
from scope_engine.infra.logging import get_logger

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"

logger = get_logger(__name__)


def _merge_sections(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    # detail is grouped into "what" / "result" sections; later calls extend a section
    merged = dict(base)
    for section, values in extra.items():
        current = merged.get(section)
        if isinstance(values, dict) and isinstance(current, dict):
            merged[section] = {**current, **values}
        else:
            merged[section] = values
    return merged


def _outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Attach the hierarchy or assignment change a route performs to its audit row."""
    context = dict(getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {}))
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        context["detail"] = _merge_sections(context.get("detail", {}), detail)
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


class AuditMiddleware(BaseHTTPMiddleware):
    """Records one ``AuditLog`` row per mutating request, allowed or not."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.method not in MUTATING_METHODS:
            return response

        context: dict[str, Any] = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
        claims = getattr(request.state, "claims", {})
        action = context.get("action", f"{request.method}:{request.url.path}")
        resource = context.get("resource", request.url.path)
        detail = _merge_sections(
            {"result": {"status_code": response.status_code, "outcome": _outcome(response.status_code)}},
            context.get("detail", {}),
        )
        log = AuditLog(
            tenant_id=claims.get("tenant_id", "system"),
            actor_id=claims.get("sub"),
            action=action,
            resource=resource,
            method=request.method,
            status_code=response.status_code,
            detail=detail,
        )
        try:
            with Session(engine) as session:
                session.add(log)
                session.commit()
        except SQLAlchemyError as exc:
            # audit never blocks the response
            logger.error("audit.write_failed", action=action, error=str(exc))
        return response
