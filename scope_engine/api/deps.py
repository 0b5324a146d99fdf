from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from scope_engine.api.errors import raise_http_error
from scope_engine.domain.errors import EngineError
from scope_engine.domain.permissions import claim_permissions, has_permission, is_tenant_admin
from scope_engine.domain.scope import ResolvedScope
from scope_engine.infra.auth import decode_access_token
from scope_engine.infra.tenant import set_request_context
from scope_engine.services.scope_service import AccessScopeService

# tokens are issued by the identity provider, not by this service
AUTH_TOKEN_URL = os.getenv("AUTH_TOKEN_URL", "/api/identity/dev-login")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=AUTH_TOKEN_URL)


@dataclass(frozen=True)
class Actor:
    user_id: str
    tenant_id: str
    permissions: tuple[str, ...] = ()

    @property
    def is_tenant_admin(self) -> bool:
        return is_tenant_admin(self.permissions)


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    set_request_context(claims.get("tenant_id"), claims.get("sub"))
    return claims


def require_perm(permission: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not has_permission(claims, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return claims

    return _checker


def require_tenant_admin(
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> dict[str, Any]:
    if not is_tenant_admin(claim_permissions(claims)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant admin required",
        )
    return claims


def get_actor(claims: Annotated[dict[str, Any], Depends(get_current_claims)]) -> Actor:
    return Actor(
        user_id=str(claims["sub"]),
        tenant_id=str(claims["tenant_id"]),
        permissions=tuple(claim_permissions(claims)),
    )


def get_scope_service() -> AccessScopeService:
    return AccessScopeService()


def get_actor_scope(
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[AccessScopeService, Depends(get_scope_service)],
) -> ResolvedScope:
    try:
        return service.resolve_scope(actor.user_id, actor.tenant_id, permissions=actor.permissions)
    except EngineError as exc:
        raise_http_error(exc)


CurrentActor = Annotated[Actor, Depends(get_actor)]
ActorScope = Annotated[ResolvedScope, Depends(get_actor_scope)]
