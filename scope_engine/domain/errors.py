from __future__ import annotations

from typing import Any


class EngineError(Exception):
    code = "engine_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            detail["context"] = self.context
        return detail


class NotFoundError(EngineError):
    code = "not_found"


class ConflictError(EngineError):
    code = "conflict"


class InvalidParentError(EngineError):
    code = "invalid_parent"


class RootExistsError(InvalidParentError):
    code = "root_exists"


class CycleDetectedError(EngineError):
    code = "cycle_detected"


class CrossTenantError(EngineError):
    code = "cross_tenant"


class HasChildrenError(EngineError):
    code = "has_children"


class ConcurrentModificationError(EngineError):
    code = "concurrent_modification"


class MissingTenantContextError(EngineError):
    code = "missing_tenant_context"


class RootProtectedError(ConflictError):
    code = "root_protected"


class InvalidAssignmentError(EngineError):
    code = "invalid_assignment"


class AccessDeniedError(EngineError):
    code = "access_denied"
