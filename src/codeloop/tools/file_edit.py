from __future__ import annotations

from typing import Any, Dict

from codeloop.tools.base import Tool, ToolExecutionContext, ToolResult

SCHEMA = {
    "properties": {
        "path": {"type": "string", "description": "Path to the file to edit."},
        "old_str": {"type": "string", "description": "Exact substring to find and replace. Must occur exactly once."},
        "new_str": {"type": "string", "description": "Replacement text."},
    },
    "required": ["path", "old_str", "new_str"],
}


class FileEditTool(Tool):
    name = "file_edit"
    description = (
        "Edit an existing file by replacing an exact string with new content. "
        "The old_str must match exactly once in the file; use file_read first if unsure."
    )
    schema = SCHEMA

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        path = context.resolve_path(args["path"])
        old_str: str = args["old_str"]
        new_str: str = args["new_str"]

        if not old_str:
            return ToolResult.failure("INVALID_ARGS", "old_str must not be empty")
        if not path.exists():
            return ToolResult.failure("FILE_NOT_FOUND", f"File not found: {path}")
        if not path.is_file():
            return ToolResult.failure("NOT_A_FILE", f"Path is not a file: {path}")

        try:
            original = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            return ToolResult.failure("READ_ERROR", f"Could not read file: {exc}")

        count = original.count(old_str)
        if count == 0:
            return ToolResult.failure(
                "MATCH_NOT_FOUND",
                "old_str was not found in the file. Use file_read to inspect current content.",
            )
        if count > 1:
            return ToolResult.failure(
                "AMBIGUOUS_MATCH",
                f"old_str matched {count} times. Make old_str more specific so it matches exactly once.",
            )

        # Ask only once the edit is known to apply
        context.require_fs_write(path)

        try:
            path.write_text(original.replace(old_str, new_str, 1), encoding="utf-8")
        except OSError as exc:
            return ToolResult.failure("WRITE_ERROR", f"Could not write file: {exc}")

        old_lines = old_str.count("\n") + 1
        new_lines = new_str.count("\n") + 1
        return ToolResult.success(
            data={
                "path": str(path),
                "old_lines": old_lines,
                "new_lines": new_lines,
                "net_line_change": new_lines - old_lines,
            },
            message=f"Edited {path.name}: replaced {old_lines}-line block with {new_lines}-line block",
        )
