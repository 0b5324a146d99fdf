from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine, select

from scope_engine import main as app_main
from scope_engine.domain.errors import ConcurrentModificationError
from scope_engine.domain.models import Entity, EntityCreate, EntityType, EntityUpdate, EventRecord, TenantCreate
from scope_engine.infra import audit, db, events, redis_state
from scope_engine.infra.auth import create_access_token
from scope_engine.services.hierarchy_service import HierarchyService


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def incr(self, key: str) -> int:
        value = int(self._store.get(key, "0")) + 1
        self._store[key] = str(value)
        return value

    def ping(self) -> bool:
        return True


def _is_locking(statement: Any) -> bool:
    return getattr(statement, "_for_update_arg", None) is not None


class LockTimeoutSession(Session):
    """Fails every ``SELECT ... FOR UPDATE`` the way Postgres does on lock_timeout."""

    def exec(self, statement: Any, *args: Any, **kwargs: Any) -> Any:
        if _is_locking(statement):
            raise OperationalError(
                "SELECT ... FOR UPDATE",
                {},
                Exception("canceling statement due to lock timeout"),
            )
        return super().exec(statement, *args, **kwargs)


class CommitFailureSession(Session):
    def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("could not serialize access due to concurrent update"))


class _Rows:
    def __init__(self, rows: list[Any]) -> None:
        self._rows = rows

    def all(self) -> list[Any]:
        return self._rows


@pytest.fixture()
def contention_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "lock_contention_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    fake_redis = FakeRedis()
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)

    client = TestClient(app_main.app)
    yield client
    client.close()


def _seed(tenant_name: str) -> tuple[str, Entity, Entity, Entity, Entity]:
    hierarchy = HierarchyService()
    tenant = hierarchy.create_tenant(TenantCreate(name=tenant_name))
    root = hierarchy.create_entity(tenant.id, EntityCreate(name="Root"))
    a = hierarchy.create_entity(tenant.id, EntityCreate(name="A", parent_entity_id=root.id))
    b = hierarchy.create_entity(tenant.id, EntityCreate(name="B", parent_entity_id=root.id))
    branch = hierarchy.create_entity(tenant.id, EntityCreate(name="Branch", parent_entity_id=a.id))
    return tenant.id, root, a, b, branch


def _use_session(monkeypatch: pytest.MonkeyPatch, session_cls: type[Session]) -> None:
    monkeypatch.setattr(
        HierarchyService,
        "_session",
        lambda self: session_cls(db.engine, expire_on_commit=False),
    )


def _snapshot(tenant_id: str) -> dict[str, tuple[str, str, int, int]]:
    with Session(db.engine) as session:
        rows = session.exec(select(Entity).where(Entity.tenant_id == tenant_id)).all()
        return {row.id: (row.path, row.full_hierarchy_path, row.entity_level, row.version) for row in rows}


def _event_types(tenant_id: str) -> list[str]:
    with Session(db.engine) as session:
        rows = session.exec(select(EventRecord).where(EventRecord.tenant_id == tenant_id)).all()
        return [row.event_type for row in rows]


def test_lock_timeout_aborts_mutations_without_partial_writes(
    contention_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id, _, a, b, branch = _seed("lock-timeout")
    before = _snapshot(tenant_id)
    events_before = _event_types(tenant_id)
    _use_session(monkeypatch, LockTimeoutSession)
    service = HierarchyService()

    with pytest.raises(ConcurrentModificationError) as excinfo:
        service.move_entity(a.id, b.id, "mover", tenant_id=tenant_id)
    assert excinfo.value.code == "concurrent_modification"
    assert isinstance(excinfo.value.__cause__, OperationalError)

    with pytest.raises(ConcurrentModificationError):
        service.update_entity(tenant_id, a.id, EntityUpdate(name="Renamed"))
    with pytest.raises(ConcurrentModificationError):
        service.delete_entity(a.id, cascade=True, tenant_id=tenant_id)
    with pytest.raises(ConcurrentModificationError):
        service.rebuild_all_hierarchy_paths(tenant_id)

    assert _snapshot(tenant_id) == before
    assert _event_types(tenant_id) == events_before
    assert service.get_entity(tenant_id, branch.id).full_hierarchy_path == "Root > A > Branch"


def test_lock_timeout_maps_to_conflict_over_http(
    contention_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id, _, a, b, _ = _seed("lock-timeout-api")
    before = _snapshot(tenant_id)
    _use_session(monkeypatch, LockTimeoutSession)
    token = create_access_token(user_id="admin-1", tenant_id=tenant_id, permissions=["tenant.admin"])
    headers = {"Authorization": f"Bearer {token}"}

    moved = contention_client.post(
        f"/api/hierarchy/entities/{a.id}/move",
        json={"new_parent_entity_id": b.id},
        headers=headers,
    )
    assert moved.status_code == 409
    assert moved.json()["detail"]["code"] == "concurrent_modification"

    deleted = contention_client.delete(
        f"/api/hierarchy/entities/{a.id}",
        params={"cascade": "true"},
        headers=headers,
    )
    assert deleted.status_code == 409

    rebuilt = contention_client.post("/api/hierarchy/rebuild", headers=headers)
    assert rebuilt.status_code == 409

    assert _snapshot(tenant_id) == before


def test_commit_failure_is_reported_as_concurrent_modification(
    contention_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id, _, a, b, _ = _seed("commit-failure")
    before = _snapshot(tenant_id)
    _use_session(monkeypatch, CommitFailureSession)
    service = HierarchyService()

    with pytest.raises(ConcurrentModificationError):
        service.update_entity(tenant_id, a.id, EntityUpdate(name="Renamed"))
    with pytest.raises(ConcurrentModificationError):
        service.move_entity(a.id, b.id, tenant_id=tenant_id)

    assert _snapshot(tenant_id) == before


def test_child_attached_while_locking_is_moved_with_subtree(
    contention_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant_id, root, a, b, branch = _seed("late-child")
    late = Entity(
        tenant_id=tenant_id,
        entity_type=EntityType.LOCATION,
        parent_entity_id=branch.id,
        name="Late",
        code="LOC_LATE",
    )
    late.path = f"{branch.path}/{late.id}"
    late.full_hierarchy_path = f"{branch.full_hierarchy_path} > Late"
    late.entity_level = branch.entity_level + 1
    late_id = late.id
    locking_calls: list[Any] = []

    class LateChildSession(Session):
        """Commits a new child from another connection right after the first descendant scan."""

        def exec(self, statement: Any, *args: Any, **kwargs: Any) -> Any:
            result = super().exec(statement, *args, **kwargs)
            if not _is_locking(statement):
                return result
            locking_calls.append(statement)
            if len(locking_calls) != 2:
                return result
            rows = list(result.all())
            with Session(db.engine, expire_on_commit=False) as writer:
                writer.add(late)
                writer.commit()
            return _Rows(rows)

    _use_session(monkeypatch, LateChildSession)

    moved = HierarchyService().move_entity(a.id, b.id, "mover", tenant_id=tenant_id)

    assert moved.hierarchy_path == [root.id, b.id, a.id]
    with Session(db.engine) as session:
        stored = session.get(Entity, late_id)
        assert stored is not None
        assert stored.hierarchy_path == [root.id, b.id, a.id, branch.id, late_id]
        assert stored.full_hierarchy_path == "Root > B > A > Branch > Late"
        assert stored.entity_level == 5
