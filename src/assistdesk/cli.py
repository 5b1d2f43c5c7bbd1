"""
Command-line interface for assistdesk.

Provides commands for inspecting the assistant history, exporting it to a
portable archive, importing archives, managing attachments and the stored
API key.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, NoReturn

from assistdesk import __version__
from assistdesk.backup import (
    BackupError,
    BackupManager,
    ConsolePrompt,
    ImportMode,
    PathPrompt,
    StaticPathPrompt,
)
from assistdesk.config.credentials import ApiKeyStore, CredentialError
from assistdesk.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
)
from assistdesk.storage import AttachmentStore, HistoryStore

# Set up logging
logger = logging.getLogger(__name__)

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the assistdesk CLI."""
    parser = argparse.ArgumentParser(
        prog="assistdesk",
        description="Desktop assistant history with portable backups",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"assistdesk {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.assistdesk/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show paths and store statistics",
        description="Display version, data paths, agent and attachment counts.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # agents command
    agents_parser = subparsers.add_parser(
        "agents",
        help="List stored agents",
        description="List agents with their id, title and attachment count.",
    )
    agents_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    agents_parser.set_defaults(func=cmd_agents)

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export agents to a portable archive",
        description="Write agents, title settings and attachments into a ZIP archive.",
    )
    export_parser.add_argument(
        "--output",
        "-o",
        metavar="PATH",
        help="Archive path or directory (asks interactively if omitted)",
    )
    export_parser.add_argument(
        "--agents",
        metavar="ID",
        type=int,
        nargs="+",
        help="Export only these agents (title settings are not included)",
    )
    export_parser.add_argument(
        "--no-history",
        action="store_true",
        dest="no_history",
        help="With --agents, export without conversation history",
    )
    export_parser.set_defaults(func=cmd_export)

    # import command
    import_parser = subparsers.add_parser(
        "import",
        help="Import an archive or legacy JSON export",
        description="Replace the current history with an export, or append its agents.",
    )
    import_parser.add_argument(
        "file",
        metavar="FILE",
        nargs="?",
        help="Archive (.zip) or legacy JSON export (asks interactively if omitted)",
    )
    import_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ImportMode],
        default=ImportMode.APPEND.value,
        help="replace: swap the whole history; append: add agents (default: append)",
    )
    import_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    import_parser.set_defaults(func=cmd_import)

    # attach command
    attach_parser = subparsers.add_parser(
        "attach",
        help="Copy a file into the attachments directory",
        description=(
            "Copy a file into the attachments directory, optionally linking it to an agent."
        ),
    )
    attach_parser.add_argument("file", metavar="FILE", help="File to attach")
    attach_parser.add_argument(
        "--agent",
        metavar="ID",
        type=int,
        help="Add the attachment to this agent",
    )
    attach_parser.set_defaults(func=cmd_attach)

    # detach command
    detach_parser = subparsers.add_parser(
        "detach",
        help="Delete an attachment",
        description="Delete an attached file and remove it from every agent that references it.",
    )
    detach_parser.add_argument("path", metavar="PATH", help="Attachment path")
    detach_parser.set_defaults(func=cmd_detach)

    # api-key command
    api_key_parser = subparsers.add_parser(
        "api-key",
        help="Manage the stored chat API key",
        description="Store, show (masked) or remove the encrypted chat API key.",
    )
    api_key_parser.add_argument(
        "action",
        choices=["set", "show", "clear"],
        help="Action to perform",
    )
    api_key_parser.add_argument(
        "--value",
        metavar="KEY",
        help="API key for 'set' (prompted without echo if omitted)",
    )
    api_key_parser.set_defaults(func=cmd_api_key)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _load_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config) if args.config else None
    return load_config(config_path)


def _store(settings: Settings) -> HistoryStore:
    return HistoryStore.for_user_data(settings.user_data_path)


def mask_api_key(api_key: str) -> str:
    """Mask all but the last four characters of an API key."""
    if len(api_key) <= 4:
        return "*" * len(api_key)
    return "*" * (len(api_key) - 4) + api_key[-4:]


def cmd_info(args: argparse.Namespace) -> int:
    """Show paths and store statistics."""
    settings = _load_settings(args)
    store = _store(settings)
    attachments = AttachmentStore.for_user_data(settings.user_data_path)

    info: dict[str, Any] = {
        "version": __version__,
        "config_file": str(Path(args.config) if args.config else get_config_path()),
        "user_data_dir": str(settings.user_data_path),
        "store_path": str(store.path),
        "files_root": str(attachments.files_root),
        "agents": len(store.load_agents()),
        "attachments": len(attachments.list_files()),
        "title_settings": store.load_title_settings() is not None,
        "api_key_saved": ApiKeyStore(settings.user_data_path).has_api_key(),
    }

    if args.json:
        output(json.dumps(info, indent=2), force=True)
        return 0

    output("assistdesk System Information")
    output("=" * 50)
    output()
    output(f"Version: {info['version']}")
    output()
    output("Paths:")
    output(f"  Config file: {info['config_file']}")
    output(f"  User data: {info['user_data_dir']}")
    output(f"  History store: {info['store_path']}")
    output(f"  Attachments: {info['files_root']}")
    output()
    output("Status:")
    output(f"  Agents: {info['agents']}")
    output(f"  Attachment files: {info['attachments']}")
    output(f"  Title settings: {'Yes' if info['title_settings'] else 'No'}")
    output(f"  API key saved: {'Yes' if info['api_key_saved'] else 'No'}")
    return 0


def cmd_agents(args: argparse.Namespace) -> int:
    """List stored agents."""
    settings = _load_settings(args)
    agents = _store(settings).load_agents()

    if args.json:
        rows = [
            {
                "id": agent.id,
                "title": agent.custom_title,
                "created_at": agent.created_at,
                "messages": len(agent.messages),
                "attachments": len(agent.agent_file_paths),
            }
            for agent in agents
        ]
        output(json.dumps(rows, indent=2, ensure_ascii=False), force=True)
        return 0

    if not agents:
        output("No agents stored.")
        return 0

    output(f"{'ID':>15}  {'Messages':>8}  {'Files':>5}  Title")
    output("-" * 60)
    for agent in agents:
        output(
            f"{agent.id:>15}  {len(agent.messages):>8}  "
            f"{len(agent.agent_file_paths):>5}  {agent.custom_title}"
        )
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export agents to a portable archive."""
    settings = _load_settings(args)
    manager = BackupManager.from_settings(settings)

    prompt: PathPrompt = StaticPathPrompt(Path(args.output)) if args.output else ConsolePrompt()

    if args.agents:
        result = manager.export_selected(
            prompt, args.agents, include_history=not args.no_history
        )
    else:
        result = manager.export_all(prompt)

    if result.cancelled:
        output("Export cancelled.")
        return 0

    output("Export created successfully!")
    output()
    output(f"  File: {result.path}")
    output(f"  Size: {result.size_bytes:,} bytes")
    output(f"  Agents: {result.agent_count}")
    output()
    output("To import this archive elsewhere, run:")
    output(f"  assistdesk import {result.path} --mode append")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import an archive or legacy JSON export."""
    settings = _load_settings(args)
    mode = ImportMode(args.mode)

    if args.file and not Path(args.file).exists():
        output_error(f"Error: Import file not found: {args.file}")
        return 1

    if mode is ImportMode.REPLACE and not args.force:
        output("WARNING: This will replace all stored agents and title settings.")
        output("(The current history is kept as a single backup file)")
        response = input("Proceed with import? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Import cancelled.")
            return 0

    manager = BackupManager.from_settings(settings)
    prompt: PathPrompt = StaticPathPrompt(Path(args.file)) if args.file else ConsolePrompt()
    result = manager.import_archive(prompt, mode)

    if result.cancelled:
        output("Import cancelled.")
        return 0

    output("Import completed successfully!")
    output()
    output(f"  Source: {result.source}{' (legacy JSON)' if result.legacy else ''}")
    output(f"  Mode: {mode.value}")
    output(f"  Agents imported: {result.agent_count}")
    output(f"  Files copied: {result.files_copied}")
    if result.backup_created:
        output(f"  Previous history backed up to: {result.backup_created}")
    if result.merge and result.merge.remapped:
        output("  Reassigned ids:")
        for old_id, new_id in result.merge.remapped.items():
            output(f"    {old_id} -> {new_id}")
    return 0


def cmd_attach(args: argparse.Namespace) -> int:
    """Copy a file into the attachments directory."""
    settings = _load_settings(args)
    attachments = AttachmentStore.for_user_data(settings.user_data_path)
    store = _store(settings)

    with store.lock:
        agents = store.load_agents()
        if args.agent is not None and args.agent not in {agent.id for agent in agents}:
            output_error(f"Error: No agent with id {args.agent}")
            return 1

        dest = attachments.add_file(Path(args.file))

        if args.agent is not None:
            updated = [
                replace(agent, agent_file_paths=agent.agent_file_paths + (str(dest),))
                if agent.id == args.agent and str(dest) not in agent.agent_file_paths
                else agent
                for agent in agents
            ]
            store.save_agents(updated)

    output(f"Attached: {dest}")
    return 0


def cmd_detach(args: argparse.Namespace) -> int:
    """Delete an attachment and unlink it from agents."""
    settings = _load_settings(args)
    attachments = AttachmentStore.for_user_data(settings.user_data_path)
    store = _store(settings)
    path = str(Path(args.path).expanduser().absolute())

    with store.lock:
        agents = store.load_agents()
        updated = [
            replace(agent, agent_file_paths=tuple(p for p in agent.agent_file_paths if p != path))
            for agent in agents
        ]
        if updated != agents:
            store.save_agents(updated)
        deleted = attachments.delete(Path(path))

    if not deleted:
        output_error(f"Error: No attachment at {path}")
        return 1

    output(f"Deleted: {path}")
    return 0


def cmd_api_key(args: argparse.Namespace) -> int:
    """Manage the stored chat API key."""
    settings = _load_settings(args)
    keys = ApiKeyStore(settings.user_data_path)

    if args.action == "set":
        value = args.value or getpass.getpass("API key: ")
        if not value:
            output_error("Error: API key must not be empty")
            return 1
        keys.save(value)
        output("API key saved.")
    elif args.action == "show":
        api_key = keys.load()
        output(mask_api_key(api_key) if api_key else "No API key saved.", force=True)
    else:
        output("API key removed." if keys.clear() else "No API key saved.")
    return 0


def main() -> NoReturn:
    """Main entry point for the assistdesk CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except CredentialError as e:
        output_error(f"Credential error: {e}")
        sys.exit(1)
    except BackupError as e:
        output_error(f"Operation failed: {e}")
        sys.exit(1)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
