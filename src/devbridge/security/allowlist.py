"""Command allowlist for terminal execution.

Every command line a client asks to run is checked here before any
process is created. The check is default-deny: a command runs only if
its name is in the allow table, is not in the blocklist, and its
argument string is acceptable under the entry's argument policy.

The argument string is checked as a whole, exactly as typed after the
command name. Pattern entries must match that entire string
(``re.fullmatch``); a prefix match is never enough.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from types import MappingProxyType
from typing import Mapping

from devbridge.domain.models import AllowedCommandSpec, ArgumentPolicy, ValidationResult

logger = logging.getLogger(__name__)


def _any(name: str, description: str) -> AllowedCommandSpec:
    return AllowedCommandSpec(name=name, description=description, policy=ArgumentPolicy.ANY)


def _bare(name: str, description: str) -> AllowedCommandSpec:
    return AllowedCommandSpec(name=name, description=description, policy=ArgumentPolicy.NONE)


def _patterns(name: str, description: str, *patterns: str) -> AllowedCommandSpec:
    return AllowedCommandSpec(
        name=name,
        description=description,
        policy=ArgumentPolicy.PATTERNS,
        patterns=tuple(re.compile(p) for p in patterns),
    )


ALLOWED_COMMANDS: tuple[AllowedCommandSpec, ...] = (
    # File system navigation and inspection
    _any("ls", "List directory contents"),
    _bare("pwd", "Print working directory"),
    _any("cat", "Display file contents"),
    _any("head", "Display first lines of file"),
    _any("tail", "Display last lines of file"),
    _any("find", "Find files"),
    _any("tree", "Display directory tree"),
    # Text processing
    _any("grep", "Search text patterns"),
    _any("wc", "Count words, lines, bytes"),
    _any("sort", "Sort lines of text"),
    _any("uniq", "Report or omit repeated lines"),
    # System info
    _bare("whoami", "Print current user"),
    _any("date", "Display or set date"),
    _bare("uptime", "Show system uptime"),
    _any("uname", "Print system information"),
    _bare("hostname", "Show system hostname"),
    # Version control
    _patterns(
        "git",
        "Version control (safe commands only)",
        r"status",
        r"log(\s+.*)?",
        r"diff(\s+.*)?",
        r"branch(\s+.*)?",
        r"show(\s+.*)?",
        r"blame(\s+.*)?",
        r"rev-parse(\s+.*)?",
        r"ls-files(\s+.*)?",
        r"remote(\s+-v)?",
        r"config(\s+--list)?",
    ),
    # Node.js / npm
    _patterns("node", "Node.js (version only)", r"--version", r"-v"),
    _patterns(
        "npm",
        "Node package manager (safe commands only)",
        r"--version",
        r"-v",
        r"list(\s+.*)?",
        r"ls(\s+.*)?",
        r"view(\s+.*)?",
        r"show(\s+.*)?",
        r"outdated",
        r"run\s+\w+",
        r"test",
        r"install(\s+.*)?",
        r"i(\s+.*)?",
    ),
    _any("npx", "Execute npm package binaries"),
    # Development tools
    _any("echo", "Display text"),
    _any("which", "Locate command"),
    _bare("env", "Show environment variables"),
    _any("printenv", "Print environment variables"),
)

# Destructive, privileged, and network tools. Denied even if an allow
# table lists them.
BLOCKED_COMMANDS: frozenset[str] = frozenset({
    "rm", "rmdir", "dd", "mkfs", "fdisk",
    "sudo", "su",
    "chmod", "chown", "chgrp",
    "kill", "killall", "pkill",
    "shutdown", "reboot", "halt", "poweroff",
    "passwd", "useradd", "userdel", "usermod",
    "iptables", "ufw", "firewall-cmd",
    "curl", "wget", "nc", "netcat", "telnet",
    "ssh", "scp", "sftp", "rsync",
    "mount", "umount",
    "systemctl", "service",
})

_WHITESPACE = re.compile(r"\s+")


def parse_command(command_line: str) -> tuple[str, str]:
    """Split a command line into its name and the raw argument string.

    The argument string is not tokenized; it is returned trimmed, as a
    single string, so argument patterns see exactly what was typed.
    """
    parts = _WHITESPACE.split(command_line.strip(), maxsplit=1)
    name = parts[0]
    rest = parts[1].strip() if len(parts) > 1 else ""
    return name, rest


class Allowlist:
    """An immutable allow table paired with a blocklist.

    Built once at import time for the default table; tests and embedders
    may build their own. Nothing mutates an instance after construction.
    """

    def __init__(
        self,
        commands: Iterable[AllowedCommandSpec] = ALLOWED_COMMANDS,
        blocked: Iterable[str] = BLOCKED_COMMANDS,
    ) -> None:
        self._commands: Mapping[str, AllowedCommandSpec] = MappingProxyType(
            {spec.name: spec for spec in commands}
        )
        self._blocked = frozenset(blocked)

    def __contains__(self, name: str) -> bool:
        return name in self._commands and name not in self._blocked

    def validate(self, command_line: str) -> ValidationResult:
        """Decide whether ``command_line`` may be executed.

        Args:
            command_line: The command exactly as received from the client.

        Returns:
            A ValidationResult. ``reason`` is set on every denial.
        """
        name, args = parse_command(command_line)

        if not name:
            return _deny("No command provided")

        if name in self._blocked:
            return _deny(f"Command '{name}' is blocked for security reasons")

        spec = self._commands.get(name)
        if spec is None:
            return _deny(f"Command '{name}' is not in the allowlist")

        if not args:
            return ValidationResult(allowed=True)

        if spec.policy is ArgumentPolicy.ANY:
            return ValidationResult(allowed=True)

        if spec.policy is ArgumentPolicy.NONE or not spec.patterns:
            return _deny(f"Command '{name}' does not accept arguments")

        if any(pattern.fullmatch(args) for pattern in spec.patterns):
            return ValidationResult(allowed=True)

        return _deny(f"Arguments '{args}' are not allowed for command '{name}'")

    def command_names(self) -> list[str]:
        """Names in the allow table that are not blocked, in table order."""
        return [name for name in self._commands if name not in self._blocked]

    def descriptions(self) -> dict[str, str]:
        return {name: self._commands[name].description for name in self.command_names()}


def _deny(reason: str) -> ValidationResult:
    logger.info("Command denied: %s", reason)
    return ValidationResult(allowed=False, reason=reason)


DEFAULT_ALLOWLIST = Allowlist()


def validate(command_line: str) -> ValidationResult:
    """Check ``command_line`` against the default allowlist."""
    return DEFAULT_ALLOWLIST.validate(command_line)


def allowed_command_names() -> list[str]:
    return DEFAULT_ALLOWLIST.command_names()


def command_descriptions() -> dict[str, str]:
    return DEFAULT_ALLOWLIST.descriptions()
