from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from sqlalchemy import false, true
from sqlalchemy.sql.elements import ColumnElement

from scope_engine.domain.errors import AccessDeniedError, NotFoundError
from scope_engine.domain.scope import ResolvedScope

T = TypeVar("T")

KeyFunc = Callable[[Any], str | None]


class ScopeDenied(NotFoundError):
    """Out-of-scope rows are reported as missing rather than forbidden."""


def _key_func(key: str | KeyFunc) -> KeyFunc:
    if callable(key):
        return key

    def extract(row: Any) -> str | None:
        if isinstance(row, Mapping):
            value = row.get(key)
        else:
            value = getattr(row, key, None)
        return None if value is None else str(value)

    return extract


def filter_by_scope(rows: Iterable[T], scope: ResolvedScope, *, key: str | KeyFunc = "entity_id") -> list[T]:
    if scope.is_tenant_admin():
        return list(rows)
    if scope.is_empty():
        return []
    extract = _key_func(key)
    return [row for row in rows if scope.contains(extract(row))]


def scope_predicate(scope: ResolvedScope, column: Any) -> ColumnElement[bool]:
    if scope.is_tenant_admin():
        return true()
    if scope.is_empty():
        return false()
    return column.in_(sorted(scope.entity_ids))


def ensure_access(scope: ResolvedScope, entity_id: str) -> None:
    if scope.is_tenant_admin() or scope.contains(entity_id):
        return
    raise ScopeDenied("entity not found", entity_id=entity_id)


def ensure_write_access(scope: ResolvedScope, entity_id: str) -> None:
    """Allow writes only where an assignment grants them.

    Entities the actor cannot see at all stay hidden (404); ancestors visible
    only as context are refused (403).
    """
    if scope.can_write(entity_id):
        return
    ensure_access(scope, entity_id)
    raise AccessDeniedError("entity is visible for context only", entity_id=entity_id)
