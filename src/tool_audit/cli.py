"""CLI entry point for mcp-tool-audit.

Provides the ``tool-audit`` console script with subcommands:

- ``run`` — Audit every server in the registry (default if no subcommand)
- ``init`` — Write a commented registry template

Usage::

    # Write tool-audit.json in the current directory
    tool-audit init

    # Audit everything in ./tool-audit.json, reports in the current directory
    tool-audit

    # Explicit registry, four concurrent audits, reports into ./reports
    tool-audit run --config servers.json --workers 4 --output-dir reports

Module Structure:
    - ``main()`` — CLI entry point, dispatches subcommands
    - ``run_command()`` — Load registry, audit, write reports
    - ``run_init()`` — Write the registry template
"""

from __future__ import annotations

import argparse
import logging
import sys
from functools import lru_cache
from pathlib import Path

from tool_audit.auditor import AuditOutcome, run_audit
from tool_audit.client import ReadPolicy
from tool_audit.config import DEFAULT_CONFIG_FILE, ConfigError, generate_registry_template, load_registry
from tool_audit.observability import AuditStats, configure_logging
from tool_audit.report import (
    console_summary,
    write_json_report,
    write_markdown_report,
)

PROG = "tool-audit"
SUBCOMMANDS = ("run", "init")
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


class _StdoutHandler(logging.StreamHandler):
    """StreamHandler that always writes to the current ``sys.stdout``."""

    @property
    def stream(self):  # type: ignore[override]
        return sys.stdout

    @stream.setter
    def stream(self, value) -> None:
        pass


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Get the console logger with cached initialization.

    Message-only format on stdout, independent of the diagnostic log
    configured by ``--log-level``. Cached to avoid handler duplication on
    repeated calls.

    Returns:
        logging.Logger: Configured logger for CLI output.
    """
    logger = logging.getLogger("tool_audit.console")
    handler = _StdoutHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def _log(message: str, *, emoji: str = "") -> None:
    """Log message with optional emoji prefix for CLI feedback.

    Example:
        >>> _log("Report saved", emoji="✅")
    """
    prefix = f"{emoji} " if emoji else ""
    _get_logger().info(f"{prefix}{message}")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def _non_negative_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {value}")
    return number


def _report_outcome(outcome: AuditOutcome) -> None:
    """Print one line per audited service."""
    name = outcome.descriptor.name
    if outcome.audit is not None:
        audit = outcome.audit
        _log(
            f"{name}: {audit.summary.tool_count} tools, {audit.total_tokens} tokens",
            emoji="✅",
        )
    else:
        _log(f"Error auditing {name}: {outcome.error}", emoji="❌")


def run_command(args: argparse.Namespace) -> int:
    """Audit every registered server and write the reports.

    Args:
        args: Parsed ``run`` arguments.

    Returns:
        0 once every server was attempted (individual failures included),
        2 when the registry cannot be loaded.
    """
    config_path = Path(args.config)
    base_path = Path(args.base_path) if args.base_path else None
    try:
        descriptors = load_registry(config_path, base_path)
    except ConfigError as e:
        _log(str(e), emoji="❌")
        return EXIT_CONFIG_ERROR

    if not descriptors:
        _log(f"No servers configured in {config_path}", emoji="⚠️")
    else:
        _log(f"Auditing {len(descriptors)} server(s) from {config_path}", emoji="🔍")

    stats = AuditStats()
    read_policy = ReadPolicy(
        max_attempts=args.read_attempts,
        read_timeout=args.read_timeout,
    )
    run = run_audit(
        descriptors,
        workers=args.workers,
        warmup_seconds=args.warmup,
        timeout_seconds=args.timeout,
        read_policy=read_policy,
        stats=stats,
        on_outcome=_report_outcome,
    )

    _log("Generating reports...", emoji="📝")
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    json_path = write_json_report(run, output_dir, stats.get_summary())
    _log(f"JSON report saved to {json_path}", emoji="✅")
    if not args.no_markdown:
        markdown_path = write_markdown_report(run, output_dir)
        _log(f"Human-readable report saved to {markdown_path}", emoji="✅")

    for line in console_summary(run, markdown_written=not args.no_markdown):
        _log(line)
    return EXIT_OK


def run_init(path: str | None = None) -> int:
    """Write the registry template.

    Args:
        path: Target file. Defaults to ``tool-audit.json`` in the current
            directory.

    Returns:
        0 on success, 1 when the file already exists.
    """
    target = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILE
    if target.exists():
        _log(f"{target} already exists, not overwriting", emoji="❌")
        return EXIT_FAILURE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(generate_registry_template(), encoding="utf-8")
    _log(f"Created {target}", emoji="✅")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Audit the token cost of the tools MCP servers advertise",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run", help="Audit all configured servers (default if no subcommand)"
    )
    run_parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        help=f"Registry file (default: {DEFAULT_CONFIG_FILE})",
    )
    run_parser.add_argument(
        "--base-path",
        help="Directory for relative cwd values (default: registry directory)",
    )
    run_parser.add_argument(
        "--output-dir", default=".", help="Directory for reports (default: .)"
    )
    run_parser.add_argument(
        "--no-markdown", action="store_true", help="Skip the Markdown report"
    )
    run_parser.add_argument(
        "--workers", type=_positive_int, default=1, help="Concurrent audits (default: 1)"
    )
    run_parser.add_argument(
        "--warmup",
        type=_non_negative_float,
        help="Warm-up seconds for every server (overrides registry and language defaults)",
    )
    run_parser.add_argument(
        "--timeout",
        type=_non_negative_float,
        help="Deadline seconds for every server (overrides registry and language defaults)",
    )
    run_parser.add_argument(
        "--read-attempts",
        type=_positive_int,
        default=ReadPolicy.max_attempts,
        help=f"Empty reads tolerated per response (default: {ReadPolicy.max_attempts})",
    )
    run_parser.add_argument(
        "--read-timeout",
        type=_non_negative_float,
        default=ReadPolicy.read_timeout,
        help=f"Seconds each read waits (default: {ReadPolicy.read_timeout:g})",
    )
    run_parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Diagnostic log level on stderr (default: WARNING)",
    )
    run_parser.add_argument(
        "--json-logs", action="store_true", help="Emit diagnostic logs as JSON lines"
    )

    init_parser = subparsers.add_parser("init", help=f"Write a {DEFAULT_CONFIG_FILE} template")
    init_parser.add_argument(
        "--path", help=f"Target file (default: ./{DEFAULT_CONFIG_FILE})"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for tool-audit.

    Dispatches to subcommands; with no subcommand the arguments are
    treated as ``run`` arguments.

    Args:
        argv: Arguments without the program name; defaults to
            ``sys.argv[1:]``.

    Returns:
        Exit code: 0 success, 1 init refused, 2 registry error.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    args_list = list(sys.argv[1:] if argv is None else argv)
    if not args_list or args_list[0] not in (*SUBCOMMANDS, "-h", "--help"):
        args_list.insert(0, "run")

    args = build_parser().parse_args(args_list)

    if args.command == "init":
        return run_init(args.path)

    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)
    return run_command(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
