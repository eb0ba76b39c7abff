"""Tests for the command-line entry point."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest
from pydantic import HttpUrl
from pytest_mock import MockerFixture

from tasksync.api.exceptions import BadRequestError, NotFoundError
from tasksync.api.models import AuthSession, TaskCreate, TaskPriority, TaskUpdate
from tasksync.config import ClientConfig
from tasksync.main import TaskClientApp, format_task, main, parse_cli_args
from tests.factories import BASE_TIME, create_task
from tests.test_api_client_common import (
    DEFAULT_BACKEND_URL,
    TEST_ANON_KEY,
    TEST_PASSWORD,
    session_payload,
)


@pytest.fixture
def app_config() -> ClientConfig:
    return ClientConfig(
        backend_url=HttpUrl(DEFAULT_BACKEND_URL),
        anon_key=TEST_ANON_KEY,
        account_email="alice@example.com",
        account_password=TEST_PASSWORD,
        http_user_agent="tasksync/test",
        poll_interval_seconds=0.5,
    )


@pytest.fixture
def app(app_config: ClientConfig, mocker: MockerFixture) -> TaskClientApp:
    """Provide an app whose client signs in without network access."""
    app = TaskClientApp(app_config)
    client = app.get_client()
    mocker.patch.object(
        client,
        "sign_in_with_password",
        return_value=AuthSession.model_validate(session_payload()),
    )
    return app


class TestParseCliArgs:
    """Argument parsing."""

    def test_list_with_options(self) -> None:
        args = parse_cli_args(
            ["--email", "a@example.com", "list", "--search", "milk", "--filter", "active", "--sort", "due"]
        )

        assert args.email == "a@example.com"
        assert args.command == "list"
        assert args.search == "milk"
        assert args.filter == "active"
        assert args.sort == "due"

    def test_list_defaults(self) -> None:
        args = parse_cli_args(["list"])

        assert args.search == ""
        assert args.filter == "all"
        assert args.sort == "created"

    def test_add_parses_due_date(self) -> None:
        args = parse_cli_args(["add", "Pay rent", "--priority", "high", "--due", "2025-09-01"])

        assert args.title == "Pay rent"
        assert args.priority == "high"
        assert args.due == date(2025, 9, 1)

    def test_edit_priority_defaults_to_unset(self) -> None:
        args = parse_cli_args(["edit", "t1", "--title", "New"])

        assert args.task_id == "t1"
        assert args.priority is None

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_cli_args([])

    def test_invalid_filter_rejected(self) -> None:
        with pytest.raises(SystemExit):
            parse_cli_args(["list", "--filter", "someday"])


class TestFormatTask:
    """Rendering of task lines."""

    def test_open_task(self) -> None:
        line = format_task(create_task(task_id="t1", title="Buy milk"))
        assert line == "[ ] Buy milk (medium) t1"

    def test_completed_task_with_details(self) -> None:
        task = create_task(
            task_id="t2",
            title="Pay rent",
            description="landlord",
            completed=True,
            priority=TaskPriority.HIGH,
            due_date=date(2025, 9, 1),
        )
        assert format_task(task) == "[x] Pay rent (high, due 2025-09-01) t2\n      landlord"


class TestRunCommand:
    """Running commands against a mocked backend."""

    @pytest.mark.asyncio
    async def test_list_prints_projection_and_counts(
        self, app: TaskClientApp, mocker: MockerFixture, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mocker.patch.object(
            app.get_client(),
            "list_tasks",
            return_value=[
                create_task(task_id="t2", title="Pay rent", completed=True),
                create_task(task_id="t1", title="Buy milk"),
            ],
        )

        code = await app.run_command(parse_cli_args(["list", "--filter", "active"]))

        out = capsys.readouterr().out
        assert code == 0
        assert "Buy milk" in out
        assert "Pay rent" not in out
        assert "2 total, 1 active, 1 completed" in out

    @pytest.mark.asyncio
    async def test_list_fails_when_load_fails(
        self, app: TaskClientApp, mocker: MockerFixture
    ) -> None:
        mocker.patch.object(app.get_client(), "list_tasks", side_effect=NotFoundError())

        code = await app.run_command(parse_cli_args(["list"]))

        assert code == 1

    @pytest.mark.asyncio
    async def test_add_creates_task(
        self, app: TaskClientApp, mocker: MockerFixture, capsys: pytest.CaptureFixture[str]
    ) -> None:
        client = app.get_client()
        mocker.patch.object(client, "list_tasks", return_value=[])
        create = mocker.patch.object(
            client, "create_task", return_value=create_task(task_id="new-1", title="Pay rent")
        )

        code = await app.run_command(parse_cli_args(["add", "Pay rent", "--due", "2025-09-01"]))

        assert code == 0
        payload, owner_id = create.await_args.args
        assert isinstance(payload, TaskCreate)
        assert payload.due_date == date(2025, 9, 1)
        assert owner_id == session_payload()["user"]["id"]
        assert "Pay rent" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_add_blank_title_fails(self, app: TaskClientApp, mocker: MockerFixture) -> None:
        client = app.get_client()
        mocker.patch.object(client, "list_tasks", return_value=[])
        create = mocker.patch.object(client, "create_task")

        code = await app.run_command(parse_cli_args(["add", "  "]))

        assert code == 1
        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_complete_sends_update(self, app: TaskClientApp, mocker: MockerFixture) -> None:
        client = app.get_client()
        mocker.patch.object(client, "list_tasks", return_value=[create_task(task_id="t1")])
        update = mocker.patch.object(
            client, "update_task", return_value=create_task(task_id="t1", completed=True)
        )

        code = await app.run_command(parse_cli_args(["complete", "t1"]))

        assert code == 0
        task_id, sent = update.await_args.args
        assert task_id == "t1"
        assert isinstance(sent, TaskUpdate)
        assert sent.completed is True

    @pytest.mark.asyncio
    async def test_delete_missing_task_fails(self, app: TaskClientApp, mocker: MockerFixture) -> None:
        client = app.get_client()
        mocker.patch.object(client, "list_tasks", return_value=[])
        mocker.patch.object(client, "delete_task", side_effect=NotFoundError.task("t404"))

        code = await app.run_command(parse_cli_args(["delete", "t404"]))

        assert code == 1

    @pytest.mark.asyncio
    async def test_edit_without_changes_fails(self, app: TaskClientApp, mocker: MockerFixture) -> None:
        client = app.get_client()
        mocker.patch.object(client, "list_tasks", return_value=[])
        update = mocker.patch.object(client, "update_task")

        code = await app.run_command(parse_cli_args(["edit", "t1"]))

        assert code == 1
        update.assert_not_called()

    @pytest.mark.asyncio
    async def test_edit_empty_description_clears_it(
        self, app: TaskClientApp, mocker: MockerFixture
    ) -> None:
        client = app.get_client()
        mocker.patch.object(client, "list_tasks", return_value=[])
        update = mocker.patch.object(client, "update_task", return_value=create_task(task_id="t1"))

        await app.run_command(parse_cli_args(["edit", "t1", "--description", ""]))

        _, sent = update.await_args.args
        assert sent.model_fields_set == {"description"}
        assert sent.description is None

    @pytest.mark.asyncio
    async def test_watch_prints_and_stops(
        self, app: TaskClientApp, mocker: MockerFixture, capsys: pytest.CaptureFixture[str]
    ) -> None:
        mocker.patch.object(
            app.get_client(), "list_tasks", return_value=[create_task(created_at=BASE_TIME)]
        )
        stop = asyncio.Event()
        stop.set()

        code = await app.run_command(parse_cli_args(["watch"]), stop_event=stop)

        assert code == 0
        assert "Buy milk" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_failed_sign_in_exits_nonzero(
        self, app: TaskClientApp, mocker: MockerFixture
    ) -> None:
        mocker.patch.object(
            app.get_client(),
            "sign_in_with_password",
            side_effect=BadRequestError("Invalid login credentials"),
        )

        code = await app.run_command(parse_cli_args(["list"]))

        assert code == 1

    @pytest.mark.asyncio
    async def test_missing_credentials_exit_nonzero(self, app_config: ClientConfig) -> None:
        app = TaskClientApp(app_config.model_copy(update={"account_password": None}))

        code = await app.run_command(parse_cli_args(["list"]))

        assert code == 1


class TestMain:
    """The console script entry point."""

    def test_missing_config_file_exits(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--config-file", "/nonexistent/tasksync.toml", "list"])

        assert exc_info.value.code == 1

    def test_failed_command_exits_with_status(
        self, temp_config_file: str, mocker: MockerFixture
    ) -> None:
        mocker.patch.object(TaskClientApp, "run", return_value=1)

        with pytest.raises(SystemExit) as exc_info:
            main(["--config-file", temp_config_file, "list"])

        assert exc_info.value.code == 1

    def test_successful_command_returns(self, temp_config_file: str, mocker: MockerFixture) -> None:
        run = mocker.patch.object(TaskClientApp, "run", return_value=0)

        main(["--config-file", temp_config_file, "list"])

        run.assert_called_once()
