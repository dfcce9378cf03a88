from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .config import PortalConfig


logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Remembered portal config ("remember me"), stored as JSON at `path` with a last-known-good
    copy at `<path>.bak`. The engine reads it once at startup; absence means "not configured".
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._backup_path = self.path.with_name(self.path.name + ".bak")

    def load(self) -> Optional[PortalConfig]:
        if not self.path.exists():
            return None
        try:
            return PortalConfig.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Stored portal config is unreadable; attempting restore from backup. (%s)", e)
            self._quarantine(self.path)

        if not self._backup_path.exists():
            logger.warning("No stored portal config backup found; starting unconfigured.")
            return None
        try:
            cfg = PortalConfig.model_validate_json(self._backup_path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError):
            logger.warning("Stored portal config backup is unreadable too; starting unconfigured.", exc_info=True)
            return None
        shutil.copy2(self._backup_path, self.path)
        logger.warning("Restored portal config from backup: %s", self._backup_path)
        return cfg

    def save(self, cfg: PortalConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(cfg.model_dump_json(indent=2), encoding="utf-8")
        self._restrict_permissions(tmp)
        tmp.replace(self.path)
        try:
            shutil.copy2(self.path, self._backup_path)
        except OSError:
            logger.debug("Failed to write portal config backup.", exc_info=True)

    def clear(self) -> None:
        for p in (self.path, self._backup_path):
            try:
                p.unlink()
            except FileNotFoundError:
                continue
        logger.info("Removed stored portal config: %s", self.path)

    def _quarantine(self, path: Path) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        try:
            path.replace(path.with_name(path.name + f".corrupt-{stamp}"))
        except OSError:
            logger.debug("Failed to quarantine path=%s", path, exc_info=True)

    @staticmethod
    def _restrict_permissions(path: Path) -> None:
        # The file holds a plaintext password.
        try:
            os.chmod(path, 0o600)
        except OSError:
            pass
