"""Security boundary for devbridge.

Public API:
    Allowlist -- Immutable allow table plus blocklist
    validate -- Check a command line against the default allowlist
"""

from devbridge.security.allowlist import (
    DEFAULT_ALLOWLIST,
    Allowlist,
    allowed_command_names,
    command_descriptions,
    validate,
)

__all__ = [
    "DEFAULT_ALLOWLIST",
    "Allowlist",
    "allowed_command_names",
    "command_descriptions",
    "validate",
]
