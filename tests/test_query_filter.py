from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import column
from sqlalchemy.sql.elements import False_, True_

from scope_engine.domain.errors import AccessDeniedError
from scope_engine.domain.models import ScopeMode
from scope_engine.domain.scope import ResolvedScope
from scope_engine.services.query_filter import (
    ScopeDenied,
    ensure_access,
    ensure_write_access,
    filter_by_scope,
    scope_predicate,
)


@dataclass
class Row:
    id: str
    entity_id: str | None


def _scoped(*entity_ids: str) -> ResolvedScope:
    return ResolvedScope(tenant_id="tenant-a", actor_id="user-a", entity_ids=frozenset(entity_ids))


def _admin() -> ResolvedScope:
    return ResolvedScope(
        tenant_id="tenant-a",
        actor_id="admin",
        mode=ScopeMode.TENANT_ADMIN,
        entity_ids=frozenset({"e1"}),
    )


def test_filter_by_attribute_keeps_rows_in_scope() -> None:
    rows = [Row("r1", "e1"), Row("r2", "e2"), Row("r3", None)]

    assert filter_by_scope(rows, _scoped("e1")) == [rows[0]]
    assert filter_by_scope(rows, _admin()) == rows
    assert filter_by_scope(rows, _scoped()) == []


def test_filter_by_mapping_and_callable_keys() -> None:
    mappings = [{"id": "e1"}, {"id": "e3"}, {"other": "e1"}]
    assert filter_by_scope(mappings, _scoped("e1", "e2"), key="id") == [{"id": "e1"}]

    pairs = [("a", "e2"), ("b", "e9")]
    assert filter_by_scope(pairs, _scoped("e2"), key=lambda item: item[1]) == [("a", "e2")]


def test_scope_predicate_variants() -> None:
    entity_id = column("entity_id")

    assert isinstance(scope_predicate(_admin(), entity_id), True_)
    assert isinstance(scope_predicate(_scoped(), entity_id), False_)

    predicate = scope_predicate(_scoped("e2", "e1"), entity_id)
    assert predicate.right.value == ["e1", "e2"]


def test_ensure_access_reports_missing() -> None:
    ensure_access(_scoped("e1"), "e1")
    ensure_access(_admin(), "anything")

    with pytest.raises(ScopeDenied) as excinfo:
        ensure_access(_scoped("e1"), "e2")
    assert excinfo.value.code == "not_found"


def test_ensure_write_access_refuses_context_only_entities() -> None:
    scope = ResolvedScope(
        tenant_id="tenant-a",
        actor_id="user-a",
        entity_ids=frozenset({"root", "site", "crew"}),
        direct_entity_ids=frozenset({"crew"}),
        writable_entity_ids=frozenset({"crew"}),
    )

    ensure_write_access(scope, "crew")
    ensure_write_access(_admin(), "anything")

    with pytest.raises(AccessDeniedError) as excinfo:
        ensure_write_access(scope, "root")
    assert excinfo.value.code == "access_denied"

    with pytest.raises(ScopeDenied):
        ensure_write_access(scope, "elsewhere")
