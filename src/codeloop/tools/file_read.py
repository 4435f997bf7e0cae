from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from codeloop.tools.base import Tool, ToolExecutionContext, ToolResult

SCHEMA = {
    "properties": {
        "path": {"type": "string", "description": "Relative or absolute path to the file."},
        "offset": {"type": "integer", "description": "0-based line index to start reading from. Default: 0."},
        "limit": {"type": "integer", "description": "Maximum number of lines to return. Omit to read entire file."},
    },
    "required": ["path"],
}


class FileReadTool(Tool):
    name = "file_read"
    description = (
        "Read the contents of a file from the workspace. "
        "Optionally control the line range returned via offset and limit."
    )
    readonly = True
    schema = SCHEMA

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        return await asyncio.to_thread(self._run_sync, args, context)

    def _run_sync(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        path = context.resolve_path(args["path"])
        offset: int = max(0, int(args.get("offset", 0)))
        limit: Optional[int] = args.get("limit")

        if not path.exists():
            return ToolResult.failure("FILE_NOT_FOUND", f"File not found: {path}")
        if not path.is_file():
            return ToolResult.failure("NOT_A_FILE", f"Path is not a file: {path}")

        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
        except OSError as exc:
            return ToolResult.failure("READ_ERROR", f"Could not read file: {exc}")

        total_lines = len(lines)
        sliced = lines[offset:] if limit is None else lines[offset: offset + limit]

        return ToolResult.success(
            data={
                "path": str(path),
                "content": "".join(sliced),
                "total_lines": total_lines,
                "returned_lines": len(sliced),
                "offset": offset,
                "truncated": offset + len(sliced) < total_lines,
            },
        )
