"""Command-line interface for authflow configuration and token inspection."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import time

from pathlib import Path
from typing import TYPE_CHECKING

from .config import REDACTED, SENSITIVE_FIELDS
from .exceptions import AuthFlowError


if TYPE_CHECKING:
    from .config import AuthFlowSettings


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="authflow",
        description="authflow configuration and token tools",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Initialize an authflow.toml configuration file",
    )
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite existing configuration file",
    )
    init_parser.add_argument(
        "--path",
        "-p",
        type=str,
        default="authflow.toml",
        help="Path for configuration file (default: authflow.toml)",
    )

    # token command
    token_parser = subparsers.add_parser(
        "token",
        help="Inspect or clear the stored token record",
    )
    token_parser.add_argument(
        "action",
        choices=["status", "clear"],
        help="'status' shows the stored record's expiry, 'clear' removes it",
    )

    args = parser.parse_args(argv)

    if args.command == "config":
        return handle_config(args)
    if args.command == "init":
        return handle_init(args)
    if args.command == "token":
        return handle_token(args)
    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import AuthFlowSettings

    if args.sources:
        return show_config_sources()

    settings = AuthFlowSettings()
    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = format_config_show(settings)

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def handle_init(args: argparse.Namespace) -> int:
    """Handle the init command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import AuthFlowSettings

    path = Path(args.path)

    if path.exists() and not args.force:
        print(f"Error: {path} already exists. Use --force to overwrite.", file=sys.stderr)
        return 1

    header = """# authflow configuration file
#
# Environment variables override any setting:
#   AUTHFLOW_OAUTH__BASE_URL="https://api.asgardeo.io/t/acme"
#   AUTHFLOW_OAUTH__CLIENT_ID="..."
#   AUTHFLOW_TIMEOUT__TOKEN=15.0
#   AUTHFLOW_TOKEN__STORE_BACKEND="keyring"
#
# Use nested keys with __ (double underscore) delimiter.

"""
    path.write_text(header + AuthFlowSettings().to_toml(), encoding="utf-8")
    print(f"Created {path}")

    return 0


def handle_token(args: argparse.Namespace) -> int:
    """Handle the token command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import AuthFlowSettings
    from .lifecycle import TokenLifecycleManager
    from .log import configure_logging
    from .token_store import storage_from_settings

    settings = AuthFlowSettings()
    configure_logging(settings.log)
    try:
        lifecycle = TokenLifecycleManager(storage_from_settings(settings.token))
    except ImportError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    backend = settings.token.store_backend
    if args.action == "clear":
        asyncio.run(lifecycle.clear())
        print(f"Token record cleared ({backend} storage)")
        return 0

    try:
        record = asyncio.run(lifecycle.get())
    except AuthFlowError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if record is None:
        print(f"No token record stored ({backend} storage)")
        return 0

    remaining = record.expires_at - int(time.time())
    status = f"valid for {remaining}s" if remaining > 0 else f"expired {-remaining}s ago"
    print(f"Token record ({backend} storage)")
    print(f"  token_type    = {record.token_type}")
    print(f"  scope         = {record.scope}")
    print(f"  expires_at    = {record.expires_at} ({status})")
    print(f"  refresh_token = {'present' if record.refresh_token else 'absent'}")
    print(f"  id_token      = {'present' if record.id_token else 'absent'}")
    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    env_file = os.environ.get("AUTHFLOW_CONFIG_FILE", "")
    sources = [
        ("Built-in defaults", "", True),
        ("pyproject.toml [tool.authflow]", "pyproject.toml", None),
        ("./authflow.toml", "authflow.toml", None),
        ("~/.config/authflow/config.toml", "~/.config/authflow/config.toml", None),
        ("AUTHFLOW_CONFIG_FILE", env_file, None if env_file else False),
        ("Environment variables", "AUTHFLOW_* vars", None),
    ]

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<40} {'Status':<15} {'Path'}")
    print("-" * 80)

    for name, path_str, forced_status in sources:
        if forced_status is True:
            status = "✓ Active"
            path_display = ""
        elif forced_status is False:
            status = "✗ Not set"
            path_display = ""
        elif name == "Environment variables":
            authflow_vars = [k for k in os.environ if k.startswith("AUTHFLOW_")]
            if authflow_vars:
                status = f"✓ {len(authflow_vars)} vars"
                path_display = ", ".join(authflow_vars[:3])
                if len(authflow_vars) > 3:
                    path_display += "..."
            else:
                status = "✗ No vars"
                path_display = ""
        else:
            path = Path(path_str).expanduser()
            status = "✓ Found" if path.exists() else "✗ Not found"
            path_display = str(path)

        print(f"{name:<40} {status:<15} {path_display}")

    print("\nNote: Later sources override earlier ones.")
    return 0


def format_config_show(settings: AuthFlowSettings) -> str:
    """Format configuration for display.

    Parameters
    ----------
    settings : AuthFlowSettings
        The settings object to format.

    Returns
    -------
    str
        Formatted configuration string.
    """
    lines = ["authflow Configuration\n" + "=" * 40 + "\n"]

    sections = [
        ("oauth", settings.oauth),
        ("timeout", settings.timeout),
        ("token", settings.token),
        ("log", settings.log),
    ]

    for section_name, section in sections:
        if lines[-1] != "":
            lines.append("")
        lines.append(f"[{section_name}]")
        for field, value in section.model_dump(exclude=SENSITIVE_FIELDS).items():
            lines.append(f"  {field} = {value!r}")
        lines.extend(
            f"  {name} = '{REDACTED}'"
            for name in sorted(SENSITIVE_FIELDS & type(section).model_fields.keys())
        )

    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())
