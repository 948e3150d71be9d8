"""Command-line interface for goiam sessions and configuration."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from .config import _user_config_path
from .exceptions import GoIamException


if TYPE_CHECKING:
    from collections.abc import Sequence

    from .config import GoIamSettings
    from .models import UserProfile
    from .session import SessionManager


def main(argv: Sequence[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : sequence of str, optional
        Arguments to parse instead of ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="goiam",
        description="GoIAM session and configuration tools",
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
        help="Initialize a goiam.toml configuration file",
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
        default="goiam.toml",
        help="Path for configuration file (default: goiam.toml)",
    )

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Sign in through the browser and store the session",
    )
    login_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Callback server port (uses config default)",
    )
    login_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the browser callback (uses config default)",
    )

    # whoami command
    whoami_parser = subparsers.add_parser(
        "whoami",
        help="Show the signed-in user",
    )
    whoami_parser.add_argument(
        "--force",
        action="store_true",
        help="Bypass the cached profile",
    )

    subparsers.add_parser("logout", help="Drop the stored session")
    subparsers.add_parser("pkce", help="Print a fresh PKCE verifier and challenge")

    args = parser.parse_args(argv)

    if args.command == "config":
        return handle_config(args)
    if args.command == "init":
        return handle_init(args)
    if args.command == "pkce":
        return handle_pkce()
    if args.command in {"login", "whoami", "logout"}:
        return handle_session(args)
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
    from .config import GoIamSettings

    if args.sources:
        return show_config_sources()

    settings = GoIamSettings()
    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def handle_init(args: argparse.Namespace) -> int:
    """Handle the init command."""
    from .config import GoIamSettings

    path = Path(args.path)

    if path.exists() and not args.force:
        print(f"Error: {path} already exists. Use --force to overwrite.", file=sys.stderr)
        return 1

    header = """# goiam Configuration File
#
# Environment variables can override any setting:
#   GOIAM_CLIENT__BASE_URL="https://iam.example.com"
#   GOIAM_CLIENT__CLIENT_ID="my-client"
#   GOIAM_SESSION__CACHE_TTL_SECONDS=300
#   GOIAM_STORE__BACKEND="keyring"
#
# Use nested keys with __ (double underscore) delimiter.

"""
    path.write_text(header + GoIamSettings().to_toml(), encoding="utf-8")
    print(f"Created {path}")

    return 0


def handle_pkce() -> int:
    """Print a fresh PKCE pair."""
    from .pkce import PKCEChallenge

    pkce = PKCEChallenge.generate()
    print(f"code_verifier:         {pkce.verifier}")
    print(f"code_challenge:        {pkce.challenge}")
    print(f"code_challenge_method: {pkce.method}")
    return 0


def handle_session(args: argparse.Namespace) -> int:
    """Handle the login, whoami and logout commands."""
    from . import log
    from .config import get_settings
    from .session import SessionManager

    settings = get_settings()
    log.configure(settings.log.level, settings.log.format)

    try:
        manager = SessionManager.from_settings(settings)
        if args.command == "logout":
            manager.logout()
            print("Logged out")
            return 0
        return asyncio.run(_run_session_command(args, manager, settings))
    except GoIamException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


async def _run_session_command(
    args: argparse.Namespace,
    manager: SessionManager,
    settings: GoIamSettings,
) -> int:
    from .flow import LoginFlow

    async with manager:
        if args.command == "login":
            flow = LoginFlow(
                manager,
                host=settings.session.callback_host,
                port=args.port if args.port is not None else settings.session.callback_port,
                timeout=args.timeout or settings.session.login_timeout_seconds,
            )
            print("Opening the browser to sign in...")
            user = await flow.run()
        else:
            if not manager.is_authenticated:
                print("Not logged in. Run 'goiam login' first.", file=sys.stderr)
                return 1
            user = await manager.refresh_profile(force=args.force)

    if user is None:
        print("Session expired. Run 'goiam login' again.", file=sys.stderr)
        return 1
    print(format_user(user))
    return 0


def format_user(user: UserProfile) -> str:
    """Format a user profile for display.

    Parameters
    ----------
    user : UserProfile
        The profile to format.

    Returns
    -------
    str
        Formatted profile string.
    """
    lines = [
        f"{user.name or user.id} <{user.email}>" if user.email else user.name or user.id,
        f"  id:        {user.id}",
        f"  project:   {user.project_id}",
        f"  enabled:   {user.enabled}",
    ]
    if user.roles:
        lines.append("  roles:     " + ", ".join(sorted(r.name or k for k, r in user.roles.items())))
    if user.resources:
        lines.append("  resources: " + ", ".join(sorted(user.resources)))
    return "\n".join(lines)


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    sources = [
        ("Built-in defaults", "", True),
        ("pyproject.toml [tool.goiam]", "pyproject.toml", None),
        ("./goiam.toml", "goiam.toml", None),
        ("User config", str(_user_config_path()), None),
        ("GOIAM_CONFIG_FILE", os.environ.get("GOIAM_CONFIG_FILE", ""), None),
        ("Environment variables", "GOIAM_* vars", None),
    ]

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<32} {'Status':<15} {'Path'}")
    print("-" * 80)

    for name, path_str, forced_status in sources:
        if forced_status is True:
            status = "✓ Active"
            path_display = ""
        elif name == "Environment variables":
            goiam_vars = sorted(k for k in os.environ if k.startswith("GOIAM_"))
            if goiam_vars:
                status = f"✓ {len(goiam_vars)} vars"
                path_display = ", ".join(goiam_vars[:3])
                if len(goiam_vars) > 3:
                    path_display += "..."
            else:
                status = "✗ No vars"
                path_display = ""
        elif not path_str:
            status = "✗ Not set"
            path_display = ""
        else:
            path = Path(path_str).expanduser()
            status = "✓ Found" if path.exists() else "✗ Not found"
            path_display = str(path)

        print(f"{name:<32} {status:<15} {path_display}")

    print("\nNote: Later sources override earlier ones.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
