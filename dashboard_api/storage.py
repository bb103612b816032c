"""
Dashboard API Client Token Storage Implementations

Provides storage backends for the session's Credentials.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .types import Credentials


logger = logging.getLogger("dashboard_api")


class MemoryStorage:
    """In-memory token storage (default, non-persistent)."""

    def __init__(self, credentials: Optional[Credentials] = None) -> None:
        self._credentials = credentials
        self._lock = threading.Lock()

    def get(self) -> Optional[Credentials]:
        """Get the stored credentials."""
        with self._lock:
            return self._credentials

    def set(self, credentials: Credentials) -> None:
        """Store credentials."""
        with self._lock:
            self._credentials = credentials

    def clear(self) -> None:
        """Clear stored credentials."""
        with self._lock:
            self._credentials = None


class FileStorage:
    """File-based token storage (persistent across restarts)."""

    def __init__(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to token file. Defaults to ~/.dashboard_api/tokens.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".dashboard_api" / "tokens.json"

        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._file_path

    def _read_data(self) -> Dict[str, Any]:
        """Read token data from file."""
        if not self._file_path.exists():
            return {}
        try:
            raw = json.loads(self._file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Token file %s is not valid JSON; treating as logged out", self._file_path)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Token file %s has unexpected shape; treating as logged out", self._file_path)
            return {}
        return raw

    def _write_data(self, data: Dict[str, Any]) -> None:
        """Write token data atomically with owner-only permissions."""
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._file_path.name}.",
            suffix=".tmp",
            dir=self._file_path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._file_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def get(self) -> Optional[Credentials]:
        """Read the latest credentials from disk."""
        with self._lock:
            data = self._read_data()
            if not data.get("access_token"):
                return None
            return Credentials.from_dict(data)

    def set(self, credentials: Credentials) -> None:
        """Persist credentials."""
        with self._lock:
            self._write_data(credentials.to_dict())

    def clear(self) -> None:
        """Remove the token file."""
        with self._lock:
            self._file_path.unlink(missing_ok=True)
