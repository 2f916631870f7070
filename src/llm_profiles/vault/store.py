"""
Vault Stores

Persistence primitives for the single serialized vault document.
The vault service only ever talks to the ``VaultStore`` protocol.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger("llm-profiles")


class VaultStore(Protocol):
    """Key-value persistence for one vault document (a JSON-compatible dict)."""

    def get(self) -> Optional[dict]:
        """Return the stored document, or None when nothing was stored yet."""

    def set(self, value: dict) -> None:
        """Replace the stored document."""

    def clear(self) -> None:
        """Forget the stored document."""


class InMemoryVaultStore:
    """Vault store kept in process memory. Used by tests and the demo server."""

    def __init__(self, initial: Optional[dict] = None):
        self._snapshot = copy.deepcopy(initial) if initial is not None else None

    def get(self) -> Optional[dict]:
        return copy.deepcopy(self._snapshot) if self._snapshot is not None else None

    def set(self, value: dict) -> None:
        self._snapshot = copy.deepcopy(value)

    def clear(self) -> None:
        self._snapshot = None


class JsonFileVaultStore:
    """
    Vault store backed by a JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so readers never see a half-written vault.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self) -> Optional[dict]:
        with self._lock:
            if not self.path.exists():
                return None
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)

    def set(self, value: dict) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(value, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            logger.debug(f"[VAULT] Wrote vault to {self.path}")

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()
