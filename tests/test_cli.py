from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from pathlib import Path

import allure
import httpx
import pytest
from click.testing import CliRunner

from primenet_manager.config import Settings
from primenet_manager.http.fetcher import HttpFetcher
from primenet_manager.main import primenet_manager
from primenet_manager.sync import controllers

pytestmark = [
    allure.epic("Update Loop"),
    allure.feature("CLI Ops"),
]

ASSIGNMENT_PAGE = "<pre>Factor=AAAA1111,71234567,72,73\nFactor=BBBB2222,71234589,72,73</pre>"


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _fake_mersenne(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/manual_assignment/":
        return httpx.Response(200, text=ASSIGNMENT_PAGE)
    if request.url.path == "/manual_result/default.php":
        return httpx.Response(200, text="processing: 1 result")
    return httpx.Response(200, text="Hello alice<br>logged in")


def test_write_settings_merges_options_into_yaml(tmp_path: Path) -> None:
    output = tmp_path / "out.yml"
    runner = CliRunner()

    result = runner.invoke(
        primenet_manager,
        [
            "write-settings",
            "--settings",
            str(tmp_path / "missing.yml"),
            "--user",
            "alice",
            "--password",
            "secret",
            "--directory",
            str(tmp_path / "gpu0"),
            "--kind",
            "LL",
            "--assignments",
            "3",
            "--output",
            str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    assert f"Settings written to {output}" in result.output
    settings = Settings.load(output)
    assert settings.primenet.username == "alice"
    assert settings.devices[0].kind == "ll"
    assert settings.devices[0].work_type == "101"
    assert settings.devices[0].assignments == 3
    assert settings.devices[0].directory == tmp_path / "gpu0"


def test_status_reports_queue_depth_and_pending_results(tmp_path: Path) -> None:
    (tmp_path / "worktodo.txt").write_text(
        "Factor=AAAA1111,71234567,72,73\nFactor=BBBB2222,71234589,72,73\n",
        encoding="utf-8",
    )
    (tmp_path / "results.txt").write_text(
        "M71234567 has a factor: 12345\nM60000001 no factor from 2^72 to 2^73\n",
        encoding="utf-8",
    )
    runner = CliRunner()

    result = runner.invoke(
        primenet_manager,
        ["status", "--settings", str(tmp_path / "missing.yml"), "--directory", str(tmp_path)],
    )

    assert result.exit_code == 0, result.output
    assert "queue=2/5" in result.output
    assert "results_retained=1 results_ready=1" in result.output
    assert not list(tmp_path.glob("*.lck"))


def test_status_reports_busy_device(tmp_path: Path) -> None:
    (tmp_path / "worktodo.txt.lck").write_text("", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(
        primenet_manager,
        ["status", "--settings", str(tmp_path / "missing.yml"), "--directory", str(tmp_path)],
    )

    assert result.exit_code == 0, result.output
    assert "busy" in result.output
    assert (tmp_path / "worktodo.txt.lck").exists()


def test_run_without_credentials_fails(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        primenet_manager,
        ["run", "--settings", str(tmp_path / "missing.yml"), "--directory", str(tmp_path)],
    )

    assert result.exit_code != 0
    assert "credentials are required" in result.output


def test_run_single_shot_tops_off_queue_and_sends_results(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        controllers,
        "HttpFetcher",
        lambda **_: HttpFetcher(transport=httpx.MockTransport(_fake_mersenne)),
    )
    (tmp_path / "results.txt").write_text(
        "M60000001 no factor from 2^72 to 2^73\n",
        encoding="utf-8",
    )
    runner = CliRunner()

    result = runner.invoke(
        primenet_manager,
        [
            "run",
            "--settings",
            str(tmp_path / "missing.yml"),
            "--user",
            "alice",
            "--password",
            "secret",
            "--poll-hours",
            "0",
            "--assignments",
            "2",
            "--directory",
            str(tmp_path),
            "--log-file",
            str(tmp_path / "manager.log"),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Update cycles: 1 (completed=1 failed=0)" in result.output
    assert (tmp_path / "worktodo.txt").read_text(encoding="utf-8") == (
        "Factor=AAAA1111,71234567,72,73\nFactor=BBBB2222,71234589,72,73\n"
    )
    assert (tmp_path / "results.txt").read_text(encoding="utf-8") == ""
    assert (tmp_path / "results_sent.txt").read_text(encoding="utf-8") == (
        "M60000001 no factor from 2^72 to 2^73\n"
    )
    assert "Update complete" in (tmp_path / "manager.log").read_text(encoding="utf-8")


def test_configure_logging_uses_utc_only_on_its_own_handler(tmp_path: Path) -> None:
    controllers.configure_logging(log_file=tmp_path / "manager.log", level="debug")

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler, logging.FileHandler)
    assert handler.formatter is not None
    assert handler.formatter.converter is time.gmtime
    assert logging.Formatter.converter is time.localtime
    assert logging.getLogger().level == logging.DEBUG
