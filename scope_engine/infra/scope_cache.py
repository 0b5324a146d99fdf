"""Redis-backed cache of resolved access scopes.

Keys carry a per-tenant generation number. Any committed hierarchy or
assignment mutation bumps the generation, which orphans every cached scope of
that tenant at once; stale entries simply expire through their TTL.

Readers must take the generation *before* computing a scope and store under
that same generation, so a scope computed against a pre-commit tree can never
be filed under the post-commit generation.
"""

from __future__ import annotations

import json
import os

from redis.exceptions import RedisError

from scope_engine.infra import redis_state
from scope_engine.infra.logging import get_logger

SCOPE_CACHE_ENABLED = os.getenv("SCOPE_CACHE_ENABLED", "1") not in {"0", "false", "False"}
SCOPE_CACHE_TTL_SECONDS = int(os.getenv("SCOPE_CACHE_TTL_SECONDS", "300"))

logger = get_logger(__name__)


def _generation_key(tenant_id: str) -> str:
    return f"scope-gen:{tenant_id}"


def _scope_key(tenant_id: str, generation: str, mode: str, actor_id: str) -> str:
    return f"scope:{tenant_id}:{generation}:{mode}:{actor_id}"


def _decode(raw: object) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw.decode()
    return str(raw)


def current_generation(tenant_id: str) -> str | None:
    """Return the tenant's cache generation, or None when caching is unavailable."""
    if not SCOPE_CACHE_ENABLED:
        return None
    try:
        raw = redis_state.get_redis().get(_generation_key(tenant_id))
    except RedisError as exc:
        logger.warning("scope_cache.read_failed", tenant_id=tenant_id, error=str(exc))
        return None
    return _decode(raw) or "0"


def load(tenant_id: str, generation: str, mode: str, actor_id: str) -> dict[str, list[str]] | None:
    try:
        raw = _decode(redis_state.get_redis().get(_scope_key(tenant_id, generation, mode, actor_id)))
    except RedisError as exc:
        logger.warning("scope_cache.read_failed", tenant_id=tenant_id, error=str(exc))
        return None
    if raw is None:
        return None
    cached = json.loads(raw)
    if not isinstance(cached, dict):
        return None
    return {
        "entity_ids": [str(item) for item in cached.get("entity_ids", [])],
        "direct_entity_ids": [str(item) for item in cached.get("direct_entity_ids", [])],
        "writable_entity_ids": [str(item) for item in cached.get("writable_entity_ids", [])],
    }


def store(
    tenant_id: str,
    generation: str,
    mode: str,
    actor_id: str,
    *,
    entity_ids: list[str],
    direct_entity_ids: list[str],
    writable_entity_ids: list[str],
) -> None:
    payload = json.dumps(
        {
            "entity_ids": entity_ids,
            "direct_entity_ids": direct_entity_ids,
            "writable_entity_ids": writable_entity_ids,
        }
    )
    try:
        redis_state.get_redis().set(
            _scope_key(tenant_id, generation, mode, actor_id),
            payload,
            ex=SCOPE_CACHE_TTL_SECONDS,
        )
    except RedisError as exc:
        logger.warning("scope_cache.write_failed", tenant_id=tenant_id, error=str(exc))


def invalidate_tenant(tenant_id: str) -> None:
    if not SCOPE_CACHE_ENABLED:
        return
    try:
        redis_state.get_redis().incr(_generation_key(tenant_id))
    except RedisError as exc:
        # entries still expire through their TTL
        logger.warning("scope_cache.invalidate_failed", tenant_id=tenant_id, error=str(exc))
