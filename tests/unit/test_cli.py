"""Tests for the command-line entry point."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from push_dispatch.__main__ import (
    EXIT_FAILURE,
    EXIT_PARTIAL,
    EXIT_SUCCESS,
    build_parser,
    exit_code_for,
    main,
    parse_filters,
    read_body,
)
from push_dispatch.core.config import ConfigurationError

from conftest import VALID_AUTH, VALID_P256DH


@pytest.fixture(autouse=True)
def restore_root_logger() -> Iterator[None]:
    """main() reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "push-dispatch.yaml"
    _ = path.write_text(
        f"""
vapid:
  private_key: test-private-key
  public_key: test-public-key
  email: ops@example.com
database:
  path: {tmp_path / "cli.db"}
application:
  dry_run: true
  syslog_enabled: false
"""
    )
    return path


def _write_json(path: Path, body: object) -> Path:
    _ = path.write_text(json.dumps(body))
    return path


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    code = exc_info.value.code
    assert isinstance(code, int)
    return code


@pytest.mark.unit
class TestHelpers:
    def test_exit_codes(self) -> None:
        assert exit_code_for(200) == EXIT_SUCCESS
        assert exit_code_for(201) == EXIT_SUCCESS
        assert exit_code_for(207) == EXIT_PARTIAL
        assert exit_code_for(500) == EXIT_FAILURE
        assert exit_code_for(404) == EXIT_FAILURE

    def test_parse_filters(self) -> None:
        assert parse_filters(["room=kitchen", "floor=2", "active=true"]) == {
            "room": "kitchen",
            "floor": 2,
            "active": True,
        }

    def test_parse_filters_value_may_contain_equals(self) -> None:
        assert parse_filters(["note=a=b"]) == {"note": "a=b"}

    @pytest.mark.parametrize("pair", ["room", "=kitchen"])
    def test_parse_filters_rejects_malformed_pairs(self, pair: str) -> None:
        with pytest.raises(ConfigurationError, match="expected KEY=VALUE"):
            _ = parse_filters([pair])

    def test_read_body_from_stdin(self) -> None:
        assert read_body("-", io.StringIO('{"device_ids": ["a"]}')) == {"device_ids": ["a"]}

    def test_read_body_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Failed to read request body"):
            _ = read_body(str(tmp_path / "missing.json"))

    def test_read_body_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "body.json"
        _ = path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            _ = read_body(str(path))

    def test_parser_requires_a_command(self) -> None:
        with pytest.raises(SystemExit):
            _ = build_parser().parse_args([])

    def test_parser_global_overrides(self) -> None:
        args = build_parser().parse_args(["--dry-run", "--log-level", "DEBUG", "--no-syslog", "purge-expired"])

        assert args.dry_run is True
        assert args.log_level == "DEBUG"
        assert args.no_syslog is True
        assert args.command == "purge-expired"


@pytest.mark.unit
class TestMain:
    def test_subscribe_then_notify(
        self,
        tmp_path: Path,
        config_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        subscribe_body = _write_json(
            tmp_path / "subscribe.json",
            {
                "subscription": {
                    "endpoint": "https://push.example.com/send/kitchen",
                    "keys": {"p256dh": VALID_P256DH, "auth": VALID_AUTH},
                },
                "device_id": "kitchen-tablet",
            },
        )
        notify_body = _write_json(
            tmp_path / "notify.json",
            {"device_ids": ["kitchen-tablet", "office-laptop"], "payload": {"title": "Doorbell"}},
        )

        assert _run(["-c", str(config_file), "--no-syslog", "subscribe", str(subscribe_body)]) == EXIT_SUCCESS
        subscribed = json.loads(capsys.readouterr().out)
        assert subscribed["status_code"] == 201

        assert _run(["-c", str(config_file), "--no-syslog", "notify", str(notify_body)]) == EXIT_PARTIAL
        notified = json.loads(capsys.readouterr().out)
        assert notified["message"] == "1 notifications sent, 1 failed"
        assert notified["data"]["summary"] == {"total": 2, "successful": 1, "failed": 1}

    def test_unsubscribe_unknown_device_prints_error_envelope(
        self,
        config_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        code = _run(["-c", str(config_file), "--no-syslog", "unsubscribe", "ghost"])

        assert code == EXIT_FAILURE
        error = json.loads(capsys.readouterr().out)
        assert error == {
            "status_code": 404,
            "message": "SubscriptionNotFoundError",
            "error": "No subscriptions found for provided device IDs",
        }

    def test_subscriptions_listing(
        self,
        config_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        code = _run(["-c", str(config_file), "--no-syslog", "subscriptions", "--filter", "room=kitchen"])

        assert code == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["data"] == {"count": 0, "subscriptions": []}

    def test_missing_config_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        code = _run(["-c", str(tmp_path / "absent.yaml"), "--no-syslog", "purge-expired"])

        assert code == EXIT_FAILURE
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Configuration error" in captured.err

    def test_unresolved_environment_variable(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.delenv("PUSH_DISPATCH_TEST_UNSET_KEY", raising=False)
        path = tmp_path / "env.yaml"
        _ = path.write_text(
            """
vapid:
  private_key: ${PUSH_DISPATCH_TEST_UNSET_KEY}
  public_key: test-public-key
  email: ops@example.com
"""
        )

        code = _run(["-c", str(path), "--no-syslog", "purge-expired"])

        assert code == EXIT_FAILURE
        assert "PUSH_DISPATCH_TEST_UNSET_KEY" in capsys.readouterr().err

    def test_dry_run_flag_tolerates_unset_vapid_variables(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.delenv("PUSH_DISPATCH_TEST_UNSET_KEY", raising=False)
        path = tmp_path / "dry.yaml"
        _ = path.write_text(
            f"""
vapid:
  private_key: ${{PUSH_DISPATCH_TEST_UNSET_KEY}}
  public_key: test-public-key
  email: ops@example.com
database:
  path: {tmp_path / "dry.db"}
"""
        )

        code = _run(["-c", str(path), "--dry-run", "--no-syslog", "purge-expired"])

        assert code == EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)["data"] == {"purged_count": 0}
