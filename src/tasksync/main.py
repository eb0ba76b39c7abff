"""Command-line entry point for the tasksync client.

This module contains the TaskClientApp class, which wires the backend client,
session manager, change feed, and task view model together and runs one CLI
command against them.

Exit Codes:
    0: The command succeeded
    1: Configuration failures (TOML parse errors, validation failures, missing
       explicitly specified files, unknown configuration keys), a failed
       sign-in, or a failed task operation
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import tomllib
from datetime import date
from pathlib import Path
from typing import Any

from tasksync.api.client import TaskStoreClient
from tasksync.api.models import Task, TaskPriority
from tasksync.config import ClientConfig
from tasksync.notifications import LoggingNotifier
from tasksync.projection import FilterMode, SortMode
from tasksync.realtime import LocalChangeFeed, PollingChangeFeed
from tasksync.session import SessionManager
from tasksync.view_model import LoadState, TaskViewModel

DEFAULT_CONFIG_FILE = "./tasksync.toml"

logger = logging.getLogger(__name__)


def format_task(task: Task) -> str:
    """Render one task as a single line of CLI output."""
    mark = "x" if task.completed else " "
    details = [task.priority.value]
    if task.due_date is not None:
        details.append(f"due {task.due_date.isoformat()}")
    line = f"[{mark}] {task.title} ({', '.join(details)}) {task.id}"
    if task.description:
        line += f"\n      {task.description}"
    return line


class TaskClientApp:
    """Runs CLI commands against the hosted task store.

    Args:
        config: Validated client configuration
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self._setup_logging()
        self._client: TaskStoreClient | None = None
        self._notifier = LoggingNotifier()

    def _setup_logging(self) -> None:
        """Configure logging to stderr so stdout carries only command output."""
        log_level = getattr(logging, self.config.log_level)
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            stream=sys.stderr,
        )

    def get_client(self) -> TaskStoreClient:
        """Get or create the backend client instance."""
        if self._client is None:
            self._client = TaskStoreClient(self.config)
        return self._client

    def run(self, args: argparse.Namespace) -> int:
        """Run the selected command and return the process exit status."""
        return asyncio.run(self.run_command(args))

    async def run_command(
        self, args: argparse.Namespace, stop_event: asyncio.Event | None = None
    ) -> int:
        """Sign in, run ``args.command``, and tear everything down.

        Args:
            args: Parsed command-line arguments
            stop_event: Ends ``watch`` when set (runs until cancelled otherwise)

        Returns:
            int: Exit status
        """
        if not self.config.account_email or not self.config.account_password:
            logger.error("Account email and password are required (config file or --email/--password)")
            return 1

        client = self.get_client()
        async with client:
            session = SessionManager(client, self._notifier)
            signed_in = await session.sign_in(
                self.config.account_email, self.config.account_password
            )
            if not signed_in:
                return 1

            feed: LocalChangeFeed | PollingChangeFeed
            if args.command == "watch":
                feed = PollingChangeFeed(client, self.config.poll_interval_seconds)
            else:
                feed = LocalChangeFeed()

            view_model = TaskViewModel(client, feed, self._notifier)
            try:
                await view_model.attach(session)
                return await self._dispatch(view_model, args, stop_event)
            finally:
                await view_model.close()
                if isinstance(feed, PollingChangeFeed):
                    await feed.aclose()

    async def _dispatch(
        self,
        view_model: TaskViewModel,
        args: argparse.Namespace,
        stop_event: asyncio.Event | None,
    ) -> int:
        command = args.command
        if command == "list":
            return self._print_list(view_model, args)
        if command == "watch":
            return await self._watch(view_model, args, stop_event)
        if command == "add":
            fields: dict[str, Any] = {"title": args.title, "priority": args.priority}
            if args.description is not None:
                fields["description"] = args.description
            if args.due is not None:
                fields["due_date"] = args.due
            result = await view_model.create(fields)
        elif command in ("complete", "reopen"):
            result = await view_model.toggle_completion(args.task_id, command == "complete")
        elif command == "delete":
            result = await view_model.remove(args.task_id)
        elif command == "edit":
            changes = _collect_edit_fields(args)
            if not changes:
                logger.error("Nothing to change: pass at least one of --title, --description, --priority, --due")
                return 1
            result = await view_model.update(args.task_id, changes)
        else:
            logger.error("Unknown command: %s", command)
            return 1

        if result.task is not None:
            print(format_task(result.task))
        return 0 if result.ok else 1

    def _print_list(self, view_model: TaskViewModel, args: argparse.Namespace) -> int:
        if view_model.load_state is LoadState.FAILED:
            return 1
        tasks = view_model.project(args.search, args.filter, args.sort)
        for task in tasks:
            print(format_task(task))
        counts = view_model.counts()
        print(f"{counts.total} total, {counts.active} active, {counts.completed} completed")
        return 0

    async def _watch(
        self,
        view_model: TaskViewModel,
        args: argparse.Namespace,
        stop_event: asyncio.Event | None,
    ) -> int:
        if self._print_list(view_model, args) != 0:
            return 1

        def reprint() -> None:
            print()
            self._print_list(view_model, args)

        remove = view_model.add_change_listener(reprint)
        try:
            await (stop_event or asyncio.Event()).wait()
        finally:
            remove()
        return 0


def _collect_edit_fields(args: argparse.Namespace) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    if args.title is not None:
        changes["title"] = args.title
    if args.description is not None:
        # An empty string clears the description
        changes["description"] = args.description or None
    if args.priority is not None:
        changes["priority"] = args.priority
    if args.due is not None:
        changes["due_date"] = args.due
    return changes


def _get_known_config_fields() -> set[str]:
    """Get the set of known configuration field names.

    Returns:
        set[str]: Set of valid configuration field names for TOML validation.
    """
    return set(ClientConfig.model_fields)


def _load_config_from_file(config_file: str) -> dict[str, Any]:
    """Load configuration from a TOML file with validation.

    Args:
        config_file: Path to the configuration file.

    Returns:
        dict[str, Any]: Configuration data loaded from file (empty if it does not exist).

    Raises:
        SystemExit: On file parsing errors or unknown configuration keys.
    """
    config_data: dict[str, Any] = {}
    config_path = Path(config_file)

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                file_config = tomllib.load(f)

            unknown_keys = set(file_config.keys()) - _get_known_config_fields()
            if unknown_keys:
                logger.error(
                    "Unknown configuration keys in %s: %s",
                    config_path,
                    ", ".join(sorted(unknown_keys)),
                )
                sys.exit(1)

            config_data.update(file_config)
            logger.info("Loaded configuration from %s", config_path)
        except tomllib.TOMLDecodeError:
            logger.exception("Failed to parse TOML configuration file %s", config_path)
            sys.exit(1)
        except OSError:
            logger.exception("Failed to read configuration file %s", config_path)
            sys.exit(1)

    return config_data


def _apply_cli_overrides(config_data: dict[str, Any], args: argparse.Namespace) -> None:
    """Apply CLI argument overrides to configuration data (CLI takes precedence)."""
    overrides = {
        "log_level": "log_level",
        "backend_url": "base_url",
        "anon_key": "anon_key",
        "account_email": "email",
        "account_password": "password",
    }
    for field_name, arg_name in overrides.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            config_data[field_name] = value


def _create_validated_config(config_data: dict[str, Any]) -> ClientConfig:
    """Create and validate ClientConfig from configuration data.

    Raises:
        SystemExit: On configuration validation errors.
    """
    try:
        config = ClientConfig(**config_data)
    except Exception:
        logger.exception("Configuration validation failed")
        sys.exit(1)
    else:
        logger.debug("Effective configuration: %s", config.to_redacted_dict())
        return config


def load_configuration(args: argparse.Namespace) -> ClientConfig:
    """Load configuration from defaults, file, and CLI arguments.

    Precedence order (CLI > file > defaults).

    Raises:
        SystemExit: On configuration validation errors or file parsing errors.
    """
    config_file = args.config_file or DEFAULT_CONFIG_FILE

    if args.config_file and not Path(config_file).exists():
        logger.error("Configuration file not found: %s", config_file)
        sys.exit(1)

    config_data = _load_config_from_file(config_file)
    _apply_cli_overrides(config_data, args)
    config_data["config_file"] = config_file

    return _create_validated_config(config_data)


def _add_projection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--search", default="", help="Case-insensitive text to match")
    parser.add_argument(
        "--filter",
        choices=[mode.value for mode in FilterMode],
        default=FilterMode.ALL.value,
        help="Completion filter (default: all)",
    )
    parser.add_argument(
        "--sort",
        choices=[mode.value for mode in SortMode],
        default=SortMode.CREATED.value,
        help="Sort order (default: created)",
    )


def _add_task_field_arguments(parser: argparse.ArgumentParser, *, priority_default: str | None) -> None:
    parser.add_argument("--description", help="Task description")
    parser.add_argument(
        "--priority",
        choices=[priority.value for priority in TaskPriority],
        default=priority_default,
        help="Task priority",
    )
    parser.add_argument("--due", type=date.fromisoformat, help="Due date (YYYY-MM-DD)")


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Arguments to parse (defaults to ``sys.argv[1:]``)

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Manage your tasks in the hosted task store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config-file",
        type=str,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--base-url", type=str, help="Override backend base URL")
    parser.add_argument("--anon-key", type=str, help="Override the project API key")
    parser.add_argument("--email", type=str, help="Account email")
    parser.add_argument("--password", type=str, help="Account password")

    commands = parser.add_subparsers(dest="command", required=True)

    list_parser = commands.add_parser("list", help="Show tasks")
    _add_projection_arguments(list_parser)

    watch_parser = commands.add_parser("watch", help="Show tasks and reprint on every change")
    _add_projection_arguments(watch_parser)

    add_parser = commands.add_parser("add", help="Create a task")
    add_parser.add_argument("title", help="Task title")
    _add_task_field_arguments(add_parser, priority_default=TaskPriority.MEDIUM.value)

    for name, help_text in (
        ("complete", "Mark a task as done"),
        ("reopen", "Mark a task as not done"),
        ("delete", "Delete a task"),
    ):
        command_parser = commands.add_parser(name, help=help_text)
        command_parser.add_argument("task_id", help="Task ID")

    edit_parser = commands.add_parser("edit", help="Change fields of a task")
    edit_parser.add_argument("task_id", help="Task ID")
    edit_parser.add_argument("--title", help="New title")
    _add_task_field_arguments(edit_parser, priority_default=None)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the tasksync CLI."""
    try:
        args = parse_cli_args(argv)
        config = load_configuration(args)
        exit_code = TaskClientApp(config).run(args)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return
    except Exception:
        logger.exception("Unhandled exception in tasksync")
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
