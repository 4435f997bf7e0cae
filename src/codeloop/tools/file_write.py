from __future__ import annotations

from typing import Any, Dict

from codeloop.tools.base import Tool, ToolExecutionContext, ToolResult

SCHEMA = {
    "properties": {
        "path": {"type": "string", "description": "Relative or absolute path to the destination file."},
        "content": {"type": "string", "description": "Text content to write."},
        "overwrite": {"type": "boolean", "description": "Allow overwriting an existing file. Default: true."},
    },
    "required": ["path", "content"],
}


class FileWriteTool(Tool):
    name = "file_write"
    description = (
        "Create or overwrite a file in the workspace. "
        "Intermediate directories are created automatically."
    )
    schema = SCHEMA

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        path = context.resolve_path(args["path"])
        content: str = args["content"]
        overwrite: bool = bool(args.get("overwrite", True))

        existed = path.exists()
        if existed and not overwrite:
            return ToolResult.failure(
                "FILE_EXISTS",
                f"File already exists and overwrite=false: {path}",
            )

        context.require_fs_write(path)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            return ToolResult.failure("WRITE_ERROR", f"Could not write file: {exc}")

        size = len(content.encode("utf-8"))
        return ToolResult.success(
            data={
                "path": str(path),
                "bytes_written": size,
                "created": not existed,
            },
            message=f"{'Overwrote' if existed else 'Created'} {path.name} ({size} bytes)",
        )
