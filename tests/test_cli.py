from __future__ import annotations

import json
from pathlib import Path

import pytest

from wifi_autologin.cli import main


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> list[str]:
    monkeypatch.chdir(tmp_path)
    for k in ("PORTAL_LOGIN_URL", "PORTAL_USERNAME", "PORTAL_PASSWORD", "PORTAL_EXTRA_FIELDS"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("CONFIG_STORE_PATH", str(tmp_path / "store" / "portal.json"))
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "autologin.log"))
    return ["--env-file", str(tmp_path / "missing.env"), "--config", str(tmp_path / "missing.yaml")]


def test_save_show_clear_roundtrip(cli_env: list[str], tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(cli_env + ["save-config", "--username", "alice", "--password", "s3cret", "--extra-fields", '{"mode": "191"}'])
    assert rc == 0
    assert (tmp_path / "store" / "portal.json").exists()

    capsys.readouterr()
    assert main(cli_env + ["show-config"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["login_url"] == "http://172.16.2.1:1000"
    assert shown["user_field"] == "username"
    assert shown["extra_fields"] == {"mode": "191"}
    assert "password" not in shown

    assert main(cli_env + ["clear-config"]) == 0
    assert main(cli_env + ["show-config"]) == 1


def test_save_config_reads_credentials_from_env(
    cli_env: list[str], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PORTAL_USERNAME", "bob")
    monkeypatch.setenv("PORTAL_PASSWORD", "pw")
    assert main(cli_env + ["save-config", "--login-url", "https://portal.example.net/login"]) == 0
    saved = json.loads((tmp_path / "store" / "portal.json").read_text(encoding="utf-8"))
    assert (saved["username"], saved["password"]) == ("bob", "pw")


def test_save_config_requires_username(cli_env: list[str]) -> None:
    with pytest.raises(SystemExit):
        main(cli_env + ["save-config", "--password", "pw"])


def test_run_help_says_only_the_engine_browser_is_watched(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["run", "--help"])
    assert exc.value.code == 0
    text = " ".join(capsys.readouterr().out.split())
    assert "--no-watch" in text
    assert "engine's own browser context" in text
