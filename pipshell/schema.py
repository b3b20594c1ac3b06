"""
Schema models for pipshell.

Pydantic models for the values that flow between the classifier, the
workspace, the installer bridge and the load interceptor.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ModuleKind(str, Enum):
    """What kind of dependency a reference names."""

    LOCAL = "local"
    BUILTIN = "builtin"
    SCOPED = "scoped"
    ORDINARY = "ordinary"


INSTALLABLE_KINDS = frozenset({ModuleKind.SCOPED, ModuleKind.ORDINARY})


class ModuleClassification(BaseModel):
    """
    Classification of a single load request.

    resolved_path is an absolute filesystem path for LOCAL references and
    the top-level package identifier for everything else.
    """

    model_config = ConfigDict(frozen=True)

    reference: str
    kind: ModuleKind
    resolved_path: str

    @property
    def is_installable(self) -> bool:
        """Only scoped and ordinary third-party packages can be installed."""
        return self.kind in INSTALLABLE_KINDS

    @model_validator(mode="after")
    def _require_resolved_path(self) -> "ModuleClassification":
        if self.is_installable and not self.resolved_path:
            raise ValueError(f"installable reference {self.reference!r} has no package identifier")
        return self


class InstallOutcome(BaseModel):
    """Result of one installer run. Consumed immediately, never persisted."""

    success: bool
    requirement: str
    message: str | None = None
    returncode: int | None = None
    duration_ms: float = 0.0


class WorkspaceStatus(str, Enum):
    """Initialization state of a workspace."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


class WorkspaceState(BaseModel):
    """One session's private project root."""

    path: str
    persistent: bool = False
    status: WorkspaceStatus = WorkspaceStatus.UNINITIALIZED
    search_paths: list[str] = Field(default_factory=list)


class BestEffort(BaseModel):
    """
    Result of a side-channel operation whose failure must not abort the session.

    Callers may discard a failed result; the discard is logged where it happens.
    """

    ok: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, exc: BaseException) -> "BestEffort":
        return cls(ok=False, error=f"{type(exc).__name__}: {exc}")
