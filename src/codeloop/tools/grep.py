from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from codeloop.tools.base import Tool, ToolExecutionContext, ToolResult

SCHEMA = {
    "properties": {
        "pattern": {"type": "string", "description": "Regular expression to search for."},
        "path": {
            "type": "string",
            "description": "File or directory to search. Defaults to the working directory.",
        },
        "glob": {
            "type": "string",
            "description": "Limit search to files matching this glob pattern, e.g. '*.py'.",
        },
        "case_sensitive": {
            "type": "boolean",
            "description": "Case-sensitive search. Default: true.",
        },
        "max_results": {
            "type": "integer",
            "description": "Maximum number of matching lines to return. Default: 200.",
        },
    },
    "required": ["pattern"],
}


class GrepTool(Tool):
    name = "grep"
    description = (
        "Search inside files using regular expressions. "
        "Returns matching file paths, line numbers, and matching lines."
    )
    readonly = True
    schema = SCHEMA

    async def run(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        return await asyncio.to_thread(self._run_sync, args, context)

    def _run_sync(self, args: Dict[str, Any], context: ToolExecutionContext) -> ToolResult:
        pattern: str = args["pattern"]
        case_sensitive: bool = bool(args.get("case_sensitive", True))
        max_results: int = int(args.get("max_results", 200))
        glob_pattern: Optional[str] = args.get("glob")

        root = Path(context.cwd).resolve()
        search_path = context.resolve_path(args["path"]) if args.get("path") else root
        if not search_path.exists():
            return ToolResult.failure("PATH_NOT_FOUND", f"Search path does not exist: {search_path}")

        try:
            regex = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
        except re.error as exc:
            return ToolResult.failure("INVALID_REGEX", f"Invalid regex pattern: {exc}")

        if search_path.is_file():
            files = [search_path]
        elif glob_pattern:
            files = [p for p in search_path.rglob(glob_pattern) if p.is_file()]
        else:
            files = [p for p in search_path.rglob("*") if p.is_file()]

        matches: List[Dict[str, Any]] = []
        files_matched: set = set()
        truncated = False

        for file_path in sorted(files):
            if truncated:
                break
            if context.cancellation.cancelled:
                return ToolResult.cancelled(data={"matches": matches})
            try:
                lines = file_path.read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError:
                continue
            try:
                rel = str(file_path.relative_to(root))
            except ValueError:
                rel = str(file_path)
            for i, line in enumerate(lines):
                if regex.search(line):
                    matches.append({"file": rel, "line_number": i + 1, "line": line})
                    files_matched.add(rel)
                    if len(matches) >= max_results:
                        truncated = True
                        break

        warnings = []
        if truncated:
            warnings.append(f"Results truncated at {max_results}.")

        return ToolResult.success(
            data={
                "pattern": pattern,
                "matches": matches,
                "match_count": len(matches),
                "files_matched": sorted(files_matched),
                "truncated": truncated,
            },
            warnings=warnings,
        )
