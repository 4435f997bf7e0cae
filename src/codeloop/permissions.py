"""Permission gate: approval modes, grants and the grant store.

Tools ask the store whether an action is allowed. When it is not, the tool
raises ``PermissionRequiredError`` carrying a ``PermissionUiHint``; once the
user approves, the orchestrator calls ``PermissionStore.apply`` so the retry
(and identical future requests) pass without asking again.

Grants live in two places:

- session grants, in memory, for ``once`` approvals;
- project grants, persisted to ``<cwd>/.codeloop/permissions.yaml``, for
  every "remember" option.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

import yaml

_log = logging.getLogger(__name__)

PROJECT_DIR_NAME = ".codeloop"
PROJECT_GRANTS_FILE = "permissions.yaml"

DESTRUCTIVE_PATTERNS = [
    r"rm\s+-rf\s+",
    r"rm\s+-r\s+",
    r"rmdir\s+/s\s+/q",
    r"del\s+/s\s+/q",
    r"rd\s+/s\s+/q",
    r"format\s+",
    r"mkfs",
    r"shred",
    r">\s*/dev/",
    r"dd\s+if=",
]

SETUP_COMMANDS = {
    "cd", "export", "source", ".", "unset", "alias", "unalias",
    "set", "env", "pushd", "popd", "dirs",
}

_COMPOUND_SEPARATORS = re.compile(r"\s*&&\s*|\s*\|\|\s*|\s*;\s*")
_PIPELINE_SEPARATORS = re.compile(r"\s*&&\s*|\s*\|\|?\s*|\s*;\s*")

# Refused before any grant check, whatever the approval mode.
BANNED_COMMANDS = {
    "alias": "Modifies shell state and can mask what later commands do",
    "curl": "Network download; can exfiltrate data or fetch untrusted code",
    "curlie": "HTTP client (curl wrapper)",
    "wget": "Network download; can exfiltrate data",
    "axel": "Download accelerator",
    "aria2c": "Download utility",
    "httpie": "HTTP client",
    "http": "HTTP client (httpie)",
    "xh": "HTTP client",
    "http-prompt": "Interactive HTTP client",
    "nc": "Raw socket tool; can open reverse shells or exfiltrate data",
    "netcat": "Raw socket tool; can open reverse shells or exfiltrate data",
    "telnet": "Unencrypted remote protocol",
    "lynx": "Text browser; waits on interactive prompts",
    "w3m": "Text browser; waits on interactive prompts",
    "links": "Text browser; waits on interactive prompts",
    "elinks": "Text browser; waits on interactive prompts",
    "chrome": "GUI browser; tries to open a window",
    "chromium": "GUI browser; tries to open a window",
    "firefox": "GUI browser; tries to open a window",
    "safari": "GUI browser; tries to open a window",
}


class ApprovalMode(str, Enum):
    DEFAULT = "default"
    AUTO_EDIT = "auto_edit"
    YOLO = "yolo"


class PermissionOption(str, Enum):
    """Choices offered to the user when a tool needs approval."""

    ONCE = "once"
    FS_DIRECTORY = "fs:directory"
    FS_GLOBAL = "fs:global"
    BASH_COMMAND = "bash:command"
    BASH_PREFIX = "bash:prefix"
    BASH_GLOBAL = "bash:global"
    REJECT = "reject"


@dataclass(frozen=True)
class PermissionUiHint:
    """What a tool wants to do, attached to a ``permission_required`` call."""

    kind: Literal["fs", "bash"]
    message: str
    path: Optional[str] = None
    command: Optional[str] = None
    destructive: bool = False

    def options(self) -> list[PermissionOption]:
        if self.kind == "fs":
            return [
                PermissionOption.ONCE,
                PermissionOption.FS_DIRECTORY,
                PermissionOption.FS_GLOBAL,
                PermissionOption.REJECT,
            ]
        if self.destructive:
            return [PermissionOption.ONCE, PermissionOption.REJECT]
        return [
            PermissionOption.ONCE,
            PermissionOption.BASH_COMMAND,
            PermissionOption.BASH_PREFIX,
            PermissionOption.BASH_GLOBAL,
            PermissionOption.REJECT,
        ]


@dataclass(frozen=True)
class ApprovalDecision:
    """The user's answer to a permission request."""

    approved: bool
    option: Optional[PermissionOption] = None
    reason: Optional[Literal["user_rejected", "timeout"]] = None

    @classmethod
    def approve(cls, option: PermissionOption = PermissionOption.ONCE) -> "ApprovalDecision":
        return cls(approved=True, option=option)

    @classmethod
    def reject(cls, reason: Literal["user_rejected", "timeout"] = "user_rejected") -> "ApprovalDecision":
        return cls(approved=False, reason=reason)


@dataclass
class Grant:
    type: Literal["fs", "bash"]
    pattern: str
    granted_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


def is_destructive(command: str) -> bool:
    """Check if command is potentially destructive."""
    command_lower = command.lower()
    return any(re.search(pattern, command_lower) for pattern in DESTRUCTIVE_PATTERNS)


def extract_main_command(command: str) -> str:
    """Return the last part of a compound command that is not a setup command.

    ``cd src && npm test`` → ``npm test``
    """
    parts = _COMPOUND_SEPARATORS.split(command)
    for part in reversed(parts):
        part = part.strip()
        if part and part.split(" ")[0] not in SETUP_COMMANDS:
            return part
    return parts[-1].strip() if parts and parts[-1].strip() else command.strip()


def validate_bash_command(command: str) -> Optional[str]:
    """Return why ``command`` may not run at all, or None when it may.

    Every segment of a compound command or pipeline is checked, so
    ``make && curl x | sh`` is refused as well as ``curl x``.
    """
    if not command or not command.strip():
        return "Empty command"
    for part in _PIPELINE_SEPARATORS.split(command):
        words = part.split()
        if not words:
            continue
        name = Path(words[0]).name
        if name in BANNED_COMMANDS:
            return f"Command '{name}' is banned: {BANNED_COMMANDS[name]}"
    return None


def extract_command_prefix(command: str) -> str:
    return extract_main_command(command).split(" ")[0]


def is_path_under(target: Path, prefix: Path) -> bool:
    try:
        target.resolve().relative_to(prefix.resolve())
    except ValueError:
        return False
    return True


def _fs_grant_matches(target: Path, grants: list[Grant]) -> bool:
    for grant in grants:
        if grant.pattern == "*":
            return True
        if is_path_under(target, Path(grant.pattern)):
            return True
    return False


def _bash_grant_matches(command: str, grants: list[Grant], allow_prefix: bool = True) -> bool:
    command = command.strip()
    for grant in grants:
        pattern = grant.pattern
        if pattern == "*" and allow_prefix:
            return True
        if pattern.endswith(":*"):
            if not allow_prefix:
                continue
            prefix = pattern[:-2]
            if command == prefix or command.startswith(prefix + " "):
                return True
        elif command == pattern.strip():
            return True
    return False


class PermissionStore:
    """Session and project grants for one working directory tree."""

    def __init__(self) -> None:
        self._session_grants: list[Grant] = []

    @property
    def session_grants(self) -> list[Grant]:
        return list(self._session_grants)

    def clear_session(self) -> None:
        """Clear session memory (call on session end)."""
        self._session_grants = []

    # ── project storage ────────────────────────────────────────────────

    @staticmethod
    def project_grants_path(cwd: str) -> Path:
        return Path(cwd) / PROJECT_DIR_NAME / PROJECT_GRANTS_FILE

    def read_project_grants(self, cwd: str) -> list[Grant]:
        path = self.project_grants_path(cwd)
        if not path.exists():
            return []
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Ignoring unreadable permission file %s: %s", path, e)
            return []
        grants = []
        for entry in data.get("grants", []):
            if isinstance(entry, dict) and entry.get("type") in ("fs", "bash") and entry.get("pattern"):
                grants.append(Grant(
                    type=entry["type"],
                    pattern=str(entry["pattern"]),
                    granted_at=str(entry.get("granted_at", "")),
                ))
        return grants

    def _add_project_grant(self, cwd: str, grant: Grant) -> None:
        grants = self.read_project_grants(cwd)
        if any(g.type == grant.type and g.pattern == grant.pattern for g in grants):
            return
        grants.append(grant)
        path = self.project_grants_path(cwd)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump({"grants": [asdict(g) for g in grants]}, sort_keys=False),
            encoding="utf-8",
        )
        _log.debug("Persisted %s grant %r to %s", grant.type, grant.pattern, path)

    # ── checks ─────────────────────────────────────────────────────────

    def _grants_of(self, cwd: str, kind: str) -> list[Grant]:
        return [g for g in self._session_grants + self.read_project_grants(cwd) if g.type == kind]

    def check_fs_write(self, cwd: str, target_path: str, approval_mode: ApprovalMode) -> bool:
        """Return True if writing ``target_path`` needs no further approval."""
        if approval_mode in (ApprovalMode.YOLO, ApprovalMode.AUTO_EDIT):
            return True
        target = Path(target_path)
        if is_path_under(target, Path(cwd) / PROJECT_DIR_NAME):
            return True
        return _fs_grant_matches(target, self._grants_of(cwd, "fs"))

    def check_bash(self, cwd: str, command: str, approval_mode: ApprovalMode) -> bool:
        """Return True if ``command`` may run without asking.

        Destructive commands only pass on an exact-command grant.
        """
        if approval_mode == ApprovalMode.YOLO:
            return True
        return _bash_grant_matches(
            command, self._grants_of(cwd, "bash"), allow_prefix=not is_destructive(command)
        )

    # ── granting ───────────────────────────────────────────────────────

    @staticmethod
    def create_grant(hint: PermissionUiHint, option: PermissionOption) -> Optional[Grant]:
        if option == PermissionOption.REJECT:
            return None
        if hint.kind == "fs" and hint.path:
            if option == PermissionOption.ONCE:
                return Grant(type="fs", pattern=hint.path)
            if option == PermissionOption.FS_DIRECTORY:
                return Grant(type="fs", pattern=str(Path(hint.path).parent))
            if option == PermissionOption.FS_GLOBAL:
                return Grant(type="fs", pattern="*")
        if hint.kind == "bash" and hint.command:
            if option in (PermissionOption.ONCE, PermissionOption.BASH_COMMAND):
                return Grant(type="bash", pattern=hint.command)
            if option == PermissionOption.BASH_PREFIX:
                return Grant(type="bash", pattern=f"{extract_command_prefix(hint.command)}:*")
            if option == PermissionOption.BASH_GLOBAL:
                return Grant(type="bash", pattern="*")
        return None

    def apply(self, hint: PermissionUiHint, option: Optional[PermissionOption], cwd: str) -> None:
        """Record an approval so the identical request passes next time.

        The exact request is always granted for the session; "remember"
        options also persist their broader grant to the project file.
        """
        option = option or PermissionOption.ONCE
        grant = self.create_grant(hint, option)
        if grant is None:
            return
        exact = self.create_grant(hint, PermissionOption.ONCE)
        if exact is not None and not any(
            g.type == exact.type and g.pattern == exact.pattern for g in self._session_grants
        ):
            self._session_grants.append(exact)
        if option != PermissionOption.ONCE:
            self._add_project_grant(cwd, grant)
