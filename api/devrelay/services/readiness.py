"""Readiness gates consulted before a task is accepted.

A gate is any object with ``check() -> ReadinessReport``. Gates are polled
synchronously on every submission and by the health endpoints, so they must be
cheap.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Protocol, Sequence

from devrelay.services.relay_errors import NotReady


@dataclass(frozen=True)
class ReadinessReport:
    ready: bool
    reason: str = "READY"
    message: str = ""
    action_required: str | None = None
    suggestions: tuple[str, ...] = ()
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "reason": self.reason,
            "message": self.message,
            "actionRequired": self.action_required,
            "suggestions": list(self.suggestions),
            "detail": dict(self.detail),
        }

    def as_error(self) -> NotReady:
        return NotReady(
            self.message or "Service is not ready to accept tasks",
            reason=self.reason,
            action_required=self.action_required,
            suggestions=list(self.suggestions),
        )


class ReadinessGate(Protocol):
    def check(self) -> ReadinessReport: ...


class StaticReadiness:
    """Fixed answer; used when no precondition applies and in tests."""

    def __init__(self, ready: bool = True, *, reason: str = "NOT_READY", message: str = "") -> None:
        self.ready = ready
        self.reason = reason
        self.message = message

    def check(self) -> ReadinessReport:
        if self.ready:
            return ReadinessReport(ready=True, message=self.message or "ready")
        return ReadinessReport(ready=False, reason=self.reason, message=self.message or "Service is not ready")


class WorkspaceReadiness:
    """Ready when at least one configured workspace directory exists."""

    def __init__(self, folders: Iterable[Path]) -> None:
        self.folders = [Path(folder) for folder in folders]

    def check(self) -> ReadinessReport:
        present = [folder for folder in self.folders if folder.is_dir()]
        detail = {
            "folders": [{"name": folder.name or str(folder), "path": str(folder)} for folder in present],
        }
        if present:
            return ReadinessReport(
                ready=True,
                message=f"{len(present)} workspace folder(s) open",
                detail=detail,
            )
        return ReadinessReport(
            ready=False,
            reason="NO_WORKSPACE",
            message="No workspace folder is available. Please open a project folder first.",
            action_required="open_workspace",
            suggestions=(
                "Set RELAY_WORKSPACE_DIRS to an existing project directory",
                "Start the relay from inside the project folder",
            ),
            detail=detail,
        )


class ExecutorReadiness:
    """Ready when the executor credentials are present in the environment."""

    def __init__(self, env_var: str = "OPENROUTER_API_KEY") -> None:
        self.env_var = env_var

    def check(self) -> ReadinessReport:
        configured = bool(os.getenv(self.env_var, "").strip())
        detail = {"executor_credentials": self.env_var, "configured": configured}
        if configured:
            return ReadinessReport(ready=True, message="executor configured", detail=detail)
        return ReadinessReport(
            ready=False,
            reason="EXECUTOR_NOT_CONFIGURED",
            message=f"{self.env_var} is not configured",
            action_required="configure_executor",
            suggestions=(
                f"Export {self.env_var} before starting the relay",
                "Add it to api/.env",
            ),
            detail=detail,
        )


class CompositeReadiness:
    """All gates must pass; the first failing gate decides the report."""

    def __init__(self, gates: Sequence[ReadinessGate]) -> None:
        self.gates = list(gates)

    def check(self) -> ReadinessReport:
        merged: dict[str, Any] = {}
        for gate in self.gates:
            report = gate.check()
            merged.update(report.detail)
            if not report.ready:
                return ReadinessReport(
                    ready=False,
                    reason=report.reason,
                    message=report.message,
                    action_required=report.action_required,
                    suggestions=report.suggestions,
                    detail=merged,
                )
        return ReadinessReport(ready=True, message="ready", detail=merged)
