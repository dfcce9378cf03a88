from __future__ import annotations

import json
from pathlib import Path

from wifi_autologin.config import PortalConfig
from wifi_autologin.state import ConfigStore


def _cfg() -> PortalConfig:
    return PortalConfig(
        login_url="http://172.16.2.1:1000",
        user_field="username",
        pass_field="password",
        username="alice",
        password="s3cret",
        extra_fields={"mode": "191"},
    )


def test_missing_store_means_unconfigured(tmp_path: Path) -> None:
    assert ConfigStore(str(tmp_path / "portal.json")).load() is None


def test_save_then_load_creates_backup(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "portal.json"
    store = ConfigStore(str(path))
    store.save(_cfg())

    assert path.exists()
    assert (tmp_path / "nested" / "portal.json.bak").exists()
    assert json.loads(path.read_text(encoding="utf-8"))["username"] == "alice"
    assert store.load() == _cfg()


def test_restores_from_backup_when_corrupted(tmp_path: Path) -> None:
    path = tmp_path / "portal.json"
    store = ConfigStore(str(path))
    store.save(_cfg())

    path.write_text("{not json", encoding="utf-8")

    assert store.load() == _cfg()
    quarantined = list(tmp_path.glob("portal.json.corrupt-*"))
    assert quarantined, "expected the corrupted file to be quarantined"
    # restored copy is readable again
    assert json.loads(path.read_text(encoding="utf-8"))["login_url"] == "http://172.16.2.1:1000"


def test_corrupted_without_backup_starts_unconfigured(tmp_path: Path) -> None:
    path = tmp_path / "portal.json"
    path.write_text('{"login_url": "not a url"}', encoding="utf-8")
    assert ConfigStore(str(path)).load() is None


def test_clear_removes_file_and_backup(tmp_path: Path) -> None:
    path = tmp_path / "portal.json"
    store = ConfigStore(str(path))
    store.save(_cfg())
    store.clear()
    assert not path.exists()
    assert not (tmp_path / "portal.json.bak").exists()
    # clearing twice is fine
    store.clear()
