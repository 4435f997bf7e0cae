"""
codeloop.tools
~~~~~~~~~~~~~~
Tool interface, registry, execution primitive and the built-in tools.

Quick registration example::

    from codeloop.tools import build_registry

    registry = build_registry()
    schemas = registry.to_openai_tools()
"""
from __future__ import annotations

from codeloop.tools.base import (
    PermissionRequiredError,
    Tool,
    ToolExecutionContext,
    ToolResult,
    validate_args,
)
from codeloop.tools.bash import BashTool
from codeloop.tools.file_edit import FileEditTool
from codeloop.tools.file_read import FileReadTool
from codeloop.tools.file_write import FileWriteTool
from codeloop.tools.glob import GlobTool
from codeloop.tools.grep import GrepTool
from codeloop.tools.registry import ToolRegistry
from codeloop.tools.runner import ToolRunner

__all__ = [
    "PermissionRequiredError", "Tool", "ToolExecutionContext", "ToolResult", "validate_args",
    "FileReadTool", "GlobTool", "GrepTool", "FileWriteTool", "FileEditTool", "BashTool",
    "ToolRegistry", "ToolRunner", "build_registry",
]


def build_registry() -> ToolRegistry:
    """Registry holding every built-in tool."""
    return ToolRegistry([
        FileReadTool(),
        GlobTool(),
        GrepTool(),
        FileWriteTool(),
        FileEditTool(),
        BashTool(),
    ])
