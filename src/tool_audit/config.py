"""Service registry and timing configuration.

A registry file lists the services to audit in the same shape VS Code uses
for ``.vscode/mcp.json``, with a few audit-specific keys::

    {
      "servers": {
        // Relative cwd resolves against --base-path or this file's directory
        "osmmcp": {
          "language": "Go",
          "command": "go",
          "args": ["run", "./cmd/osmmcp"],
          "cwd": "osmmcp"
        },
        "aismcp": {
          "language": "Python",
          "command": ["./venv/bin/python", "-m", "aismcp"],
          "cwd": "aismcp",
          "timeout_seconds": 60
        }
      }
    }

The audit core never mutates descriptors; it only reads them.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# =============================================================================
# Constants
# =============================================================================

#: Language tag whose services start slowly and need PYTHONPATH set.
PYTHON_LANGUAGE = "Python"

#: Extra environment injected per language tag (matched case-insensitively).
LANGUAGE_ENVIRONMENT: dict[str, dict[str, str]] = {
    PYTHON_LANGUAGE.lower(): {"PYTHONPATH": "src"},
}

DEFAULT_CONFIG_FILE = "tool-audit.json"


@dataclass(frozen=True)
class TimingProfile:
    """Warm-up delay and whole-session deadline for one service.

    Attributes:
        warmup_seconds: Delay between launch and the first request.
        timeout_seconds: Deadline for the whole exchange, warm-up included.
    """

    warmup_seconds: float
    timeout_seconds: float


DEFAULT_TIMING = TimingProfile(warmup_seconds=3.0, timeout_seconds=30.0)

#: Per-language defaults; anything not listed uses DEFAULT_TIMING.
LANGUAGE_TIMINGS: dict[str, TimingProfile] = {
    PYTHON_LANGUAGE.lower(): TimingProfile(warmup_seconds=5.0, timeout_seconds=45.0),
}


class ConfigError(ValueError):
    """Registry file missing, unparseable, or describing an invalid service."""


@dataclass(frozen=True)
class ServiceDescriptor:
    """One service to audit.

    Attributes:
        name: Identity used in logs and reports.
        language: Implementation language tag; only selects timing and
            environment defaults.
        command: Executable followed by its arguments.
        work_dir: Directory the service is launched in.
        warmup_seconds: Optional override of the language warm-up delay.
        timeout_seconds: Optional override of the language deadline.
        env: Extra environment variables from the registry entry.
    """

    name: str
    language: str
    command: tuple[str, ...]
    work_dir: Path
    warmup_seconds: float | None = None
    timeout_seconds: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def timing(self) -> TimingProfile:
        """Language defaults with this descriptor's overrides applied."""
        base = LANGUAGE_TIMINGS.get(self.language.lower(), DEFAULT_TIMING)
        return TimingProfile(
            warmup_seconds=(
                base.warmup_seconds if self.warmup_seconds is None else self.warmup_seconds
            ),
            timeout_seconds=(
                base.timeout_seconds
                if self.timeout_seconds is None
                else self.timeout_seconds
            ),
        )

    def environment_overrides(self) -> dict[str, str]:
        """Variables added to the inherited environment at launch."""
        return {**LANGUAGE_ENVIRONMENT.get(self.language.lower(), {}), **self.env}


# =============================================================================
# Registry loading
# =============================================================================


def strip_jsonc_comments(text: str) -> str:
    """Strip ``//`` comments and the trailing commas they leave behind.

    String literals are copied verbatim, so ``https://`` or ``"a // b"``
    inside a value survives, as does a comma inside a string. Block
    comments are not supported.

    Example:
        >>> strip_jsonc_comments('{"url": "https://x", // site\\n}')
        '{"url": "https://x" \\n}'
    """
    out: list[str] = []
    in_string = False
    escaped = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = len(text) if end < 0 else end
            continue
        elif ch in "}]":
            _drop_trailing_comma(out)
        out.append(ch)
        i += 1
    return "".join(out)


def _drop_trailing_comma(out: list[str]) -> None:
    j = len(out) - 1
    while j >= 0 and out[j].isspace():
        j -= 1
    if j >= 0 and out[j] == ",":
        del out[j]


def _number(name: str, entry: Mapping[str, Any], key: str) -> float | None:
    value = entry.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
        raise ConfigError(f"server '{name}': '{key}' must be a non-negative number")
    return float(value)


def parse_service(
    name: str, entry: Mapping[str, Any], base_dir: Path
) -> ServiceDescriptor:
    """Build a ServiceDescriptor from one ``servers`` entry.

    Args:
        name: Key of the entry in ``servers``.
        entry: Entry mapping (``command``, ``args``, ``cwd``, ``language``,
            ``warmup_seconds``, ``timeout_seconds``, ``env``).
        base_dir: Directory relative ``cwd`` values resolve against.

    Raises:
        ConfigError: If the command is missing or a field has the wrong type.
    """
    if not isinstance(entry, Mapping):
        raise ConfigError(f"server '{name}': entry must be an object")

    command = entry.get("command")
    if isinstance(command, str):
        argv = [command]
    elif isinstance(command, list) and all(isinstance(c, str) for c in command):
        argv = list(command)
    else:
        raise ConfigError(f"server '{name}': 'command' must be a string or list of strings")

    args = entry.get("args", [])
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ConfigError(f"server '{name}': 'args' must be a list of strings")
    argv.extend(args)
    if not argv or not argv[0]:
        raise ConfigError(f"server '{name}': empty command")

    cwd = entry.get("cwd")
    if cwd is not None and not isinstance(cwd, str):
        raise ConfigError(f"server '{name}': 'cwd' must be a string")
    work_dir = base_dir / cwd if cwd else base_dir

    env = entry.get("env", {})
    if not isinstance(env, Mapping) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in env.items()
    ):
        raise ConfigError(f"server '{name}': 'env' must map strings to strings")

    return ServiceDescriptor(
        name=name,
        language=str(entry.get("language", "unknown")),
        command=tuple(argv),
        work_dir=work_dir,
        warmup_seconds=_number(name, entry, "warmup_seconds"),
        timeout_seconds=_number(name, entry, "timeout_seconds"),
        env=dict(env),
    )


def load_registry(path: Path, base_path: Path | None = None) -> list[ServiceDescriptor]:
    """Load service descriptors from a JSON/JSONC registry file.

    Services are returned in file order.

    Args:
        path: Registry file.
        base_path: Directory for relative ``cwd`` values; defaults to the
            registry file's directory.

    Returns:
        Descriptors in declaration order.

    Raises:
        ConfigError: If the file cannot be read or is not a valid registry.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read registry {path}: {e}") from e

    try:
        data = json.loads(strip_jsonc_comments(text))
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in registry {path}: {e}") from e

    servers = data.get("servers") if isinstance(data, dict) else None
    if not isinstance(servers, dict):
        raise ConfigError(f"registry {path} has no 'servers' object")

    base_dir = base_path if base_path is not None else path.resolve().parent
    return [parse_service(name, entry, base_dir) for name, entry in servers.items()]


def generate_registry_template() -> str:
    """Commented registry template written by ``tool-audit init``."""
    return """\
{
  // Services to audit. Each entry is launched as a subprocess and asked
  // for its tool list over stdio (initialize, then tools/list).
  "servers": {
    "example-go": {
      // Language tag selects timing defaults:
      //   Python: 5s warm-up / 45s deadline, PYTHONPATH=src injected
      //   anything else: 3s warm-up / 30s deadline
      "language": "Go",
      "command": "go",
      "args": ["run", "./cmd/example"],
      // Relative to --base-path, or to this file's directory
      "cwd": "example-go"
    },
    "example-python": {
      "language": "Python",
      "command": "./venv/bin/python",
      "args": ["-m", "example"],
      "cwd": "example-python"
      // "warmup_seconds": 5,
      // "timeout_seconds": 45,
      // "env": {"LOG_LEVEL": "warning"}
    }
  }
}
"""
