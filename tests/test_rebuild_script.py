from __future__ import annotations

import importlib.util
import json
from pathlib import Path
from types import ModuleType

import pytest
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from scope_engine.domain.models import Entity, EntityCreate, TenantCreate
from scope_engine.infra import db, events, redis_state
from scope_engine.services.hierarchy_service import HierarchyService

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "infra" / "scripts" / "rebuild_hierarchy_paths.py"


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


def _load_script() -> ModuleType:
    spec = importlib.util.spec_from_file_location("rebuild_hierarchy_paths", SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture()
def script_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'rebuild_script_test.db'}",
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
    monkeypatch.setattr(events, "engine", test_engine)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)
    return test_engine


def _run(monkeypatch: pytest.MonkeyPatch, argv: list[str]) -> tuple[int, dict[str, object]]:
    script = _load_script()
    printed: list[str] = []
    monkeypatch.setattr(script, "print", printed.append, raising=False)
    code = script.main(argv)
    return code, json.loads(printed[-1])


def test_rebuild_script_repairs_paths(script_engine, monkeypatch: pytest.MonkeyPatch) -> None:
    hierarchy = HierarchyService()
    tenant = hierarchy.create_tenant(TenantCreate(name="script-tenant"))
    root = hierarchy.create_entity(tenant.id, EntityCreate(name="Root"))
    child = hierarchy.create_entity(tenant.id, EntityCreate(name="Child", parent_entity_id=root.id))

    with Session(script_engine) as session:
        broken = session.get(Entity, child.id)
        assert broken is not None
        broken.path = f"/{child.id}"
        broken.entity_level = 1
        session.add(broken)
        session.commit()

    code, dry = _run(monkeypatch, ["--tenant-id", tenant.id, "--dry-run"])
    assert code == 0
    assert dry == {"dry_run": True, "orphans": [], "tenant_id": tenant.id, "updated_count": 1}

    code, applied = _run(monkeypatch, ["--tenant-id", tenant.id])
    assert code == 0
    assert applied["updated_count"] == 1

    repaired = hierarchy.get_entity(tenant.id, child.id)
    assert repaired.hierarchy_path == [root.id, child.id]
    assert repaired.entity_level == 2


def test_rebuild_script_reports_unknown_tenant(script_engine, monkeypatch: pytest.MonkeyPatch) -> None:
    code, detail = _run(monkeypatch, ["--tenant-id", "missing"])

    assert code == 1
    assert detail["code"] == "not_found"
