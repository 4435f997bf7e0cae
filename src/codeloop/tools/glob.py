from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List

from codeloop.tools.base import Tool, ToolExecutionContext, ToolResult

SCHEMA = {
    "properties": {
        "pattern": {
            "type": "string",
            "description": "Glob pattern, e.g. '**/*.py', 'src/**/*.ts', '*.json'.",
        },
        "base_path": {
            "type": "string",
            "description": "Directory to search from. Defaults to the working directory.",
        },
        "include_hidden": {
            "type": "boolean",
            "description": "Include files/dirs starting with '.'. Default: false.",
        },
        "max_results": {
            "type": "integer",
            "description": "Maximum number of results to return. Default: 500.",
        },
    },
    "required": ["pattern"],
}


class GlobTool(Tool):
    name = "glob"
    description = (
        "Search for files in the workspace using a glob pattern. "
        "Returns matching file paths sorted alphabetically."
    )
    readonly = True
    schema = SCHEMA

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        return await asyncio.to_thread(self._run_sync, args, context)

    def _run_sync(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        pattern: str = args["pattern"]
        include_hidden: bool = bool(args.get("include_hidden", False))
        max_results: int = int(args.get("max_results", 500))

        root = Path(context.cwd).resolve()
        base = context.resolve_path(args["base_path"]) if args.get("base_path") else root

        if not base.exists():
            return ToolResult.failure("DIR_NOT_FOUND", f"Base path does not exist: {base}")

        matches: List[str] = []
        truncated = False
        try:
            for p in sorted(base.glob(pattern)):
                if context.cancellation.cancelled:
                    return ToolResult.cancelled(data={"matches": matches})
                if not include_hidden and any(part.startswith(".") for part in p.relative_to(base).parts):
                    continue
                try:
                    matches.append(str(p.relative_to(root)))
                except ValueError:
                    matches.append(str(p))
                if len(matches) >= max_results:
                    truncated = True
                    break
        except (OSError, ValueError) as exc:
            return ToolResult.failure("GLOB_ERROR", f"Glob failed: {exc}")

        warnings = []
        if truncated:
            warnings.append(
                f"Results truncated at {max_results}. Use a more specific pattern or increase max_results."
            )

        return ToolResult.success(
            data={
                "pattern": pattern,
                "base_path": str(base),
                "matches": matches,
                "count": len(matches),
                "truncated": truncated,
            },
            warnings=warnings,
        )
