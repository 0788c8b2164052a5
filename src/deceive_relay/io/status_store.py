"""Persisted visibility status.

A single plain-text file at XDG_CONFIG_HOME/deceive-relay/status holding
"chat", "offline" or "mobile".

This module is a STABLE BOUNDARY.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from deceive_relay.core.visibility import Visibility

logger = logging.getLogger(__name__)


def get_status_path() -> Path:
    """Return path to the status file.

    Uses XDG_CONFIG_HOME (default ~/.config) / deceive-relay / status.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "deceive-relay" / "status"


class StatusStore:
    """Loads and saves the user's selected visibility."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or get_status_path()

    def load(self) -> Visibility:
        """Return the persisted visibility.

        Only "mobile" is restored as-is; anything else, including a saved
        "chat", comes back as offline.
        """
        try:
            raw = self.path.read_bytes()
        except OSError:
            return Visibility.OFFLINE
        return Visibility.MOBILE if raw == b"mobile" else Visibility.OFFLINE

    def save(self, visibility: Visibility) -> None:
        """Atomic write: temp file then rename."""
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(visibility.value)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def safe_save(self, visibility: Visibility) -> None:
        """save() that logs I/O errors instead of raising."""
        try:
            self.save(visibility)
        except Exception:
            logger.exception("Failed to persist status to %s", self.path)
