"""Base types for the tool system."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from codeloop.core.cancellation import CancellationToken
from codeloop.permissions import ApprovalMode, PermissionStore, PermissionUiHint


class PermissionRequiredError(Exception):
    """Raised by a tool that needs approval before it may act.

    The tool runner converts it to a ``permission_required`` tool call; it
    never travels further up.
    """

    def __init__(self, ui_hint: PermissionUiHint) -> None:
        super().__init__(ui_hint.message or "Permission required")
        self.ui_hint = ui_hint


@dataclass
class ToolResult:
    """Standard envelope for all tool responses."""

    ok: bool
    error_code: Optional[str] = None
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    aborted: bool = False

    @property
    def is_error(self) -> bool:
        return not self.ok

    def payload(self) -> Dict[str, Any]:
        """The dict reported back to the model for a successful call."""
        payload = dict(self.data)
        if self.message:
            payload.setdefault("message", self.message)
        if self.warnings:
            payload.setdefault("warnings", list(self.warnings))
        return payload

    @classmethod
    def success(
        cls,
        data: Optional[Dict[str, Any]] = None,
        message: str = "",
        warnings: Optional[List[str]] = None,
    ) -> "ToolResult":
        return cls(ok=True, message=message, data=data or {}, warnings=warnings or [])

    @classmethod
    def failure(
        cls,
        error_code: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        return cls(ok=False, error_code=error_code, message=message, data=data or {})

    @classmethod
    def cancelled(cls, message: str = "Aborted", data: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(ok=False, error_code="ABORTED", message=message, data=data or {}, aborted=True)


@dataclass
class ToolExecutionContext:
    """What a tool may see of the running task."""

    cwd: str
    approval_mode: ApprovalMode
    session_id: str
    permissions: PermissionStore
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    def resolve_path(self, raw_path: str) -> Path:
        path = Path(raw_path)
        if not path.is_absolute():
            path = Path(self.cwd) / path
        return path.resolve()

    def display_path(self, path: Path) -> str:
        try:
            return "./" + str(path.relative_to(Path(self.cwd).resolve()))
        except ValueError:
            return str(path)

    def require_fs_write(self, path: Path) -> None:
        """Raise ``PermissionRequiredError`` unless writing ``path`` is already allowed."""
        if self.permissions.check_fs_write(self.cwd, str(path), self.approval_mode):
            return
        raise PermissionRequiredError(PermissionUiHint(
            kind="fs",
            message=f"Permission required to modify: {self.display_path(path)}",
            path=str(path),
        ))


_TYPE_MAP = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
}


def validate_args(args: Dict[str, Any], schema: Dict[str, Any]) -> Optional[str]:
    """Minimal JSON-schema-style validation (type + required)."""
    for name in schema.get("required", []):
        if name not in args:
            return f"Missing required field: '{name}'"

    properties = schema.get("properties", {})
    for key, value in args.items():
        expected_type = properties.get(key, {}).get("type")
        if expected_type in _TYPE_MAP:
            # bool is an int subclass; don't let True pass as an integer
            if expected_type in ("integer", "number") and isinstance(value, bool):
                return f"Field '{key}' expected type '{expected_type}', got bool."
            if not isinstance(value, _TYPE_MAP[expected_type]):
                return (
                    f"Field '{key}' expected type '{expected_type}', "
                    f"got {type(value).__name__}."
                )
    return None


class Tool:
    """A capability the model can invoke.

    Subclasses set ``name``, ``description``, ``readonly`` and ``schema`` and
    implement ``run``. Read-only tools must never raise
    ``PermissionRequiredError``.
    """

    name: str = ""
    description: str = ""
    readonly: bool = False
    schema: Dict[str, Any] = {"properties": {}, "required": []}

    async def execute(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        if context.cancellation.cancelled:
            return ToolResult.cancelled()
        error = validate_args(args, self.schema)
        if error:
            return ToolResult.failure("INVALID_ARGS", error)
        return await self.run(args, context)

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        raise NotImplementedError

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.schema.get("properties", {}),
                    "required": self.schema.get("required", []),
                },
            },
        }
