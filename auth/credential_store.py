from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from oacoder.constants import LOGGER

from .errors import CredentialStoreError
from .models import PersistedCredential


class CredentialStore(ABC):
    @abstractmethod
    async def load(self) -> PersistedCredential | None:
        raise NotImplementedError

    @abstractmethod
    async def save(self, credential: PersistedCredential) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    def __init__(self, credential: PersistedCredential | None = None) -> None:
        self._credential = credential

    async def load(self) -> PersistedCredential | None:
        return self._credential

    async def save(self, credential: PersistedCredential) -> None:
        self._credential = credential

    async def clear(self) -> None:
        self._credential = None


class FileCredentialStore(CredentialStore):
    """One JSON credential record at a fixed per-user path.

    Writes go to a temporary file in the same directory followed by
    ``os.replace`` so a crash never leaves a half-written record in place.
    A record that cannot be parsed is logged and treated as absent.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> PersistedCredential | None:
        if not self._path.exists():
            return None

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("expected top-level JSON object")
            return PersistedCredential.from_payload(raw)
        except (OSError, ValueError) as error:
            LOGGER.warning("Ignoring unreadable credential file %s: %s", self._path, error)
            return None

    async def save(self, credential: PersistedCredential) -> None:
        try:
            self._write(credential.to_payload())
        except OSError as error:
            raise CredentialStoreError(
                f"Failed to save credentials to {self._path}: {error}"
            ) from error
        LOGGER.info("Authentication state saved")

    async def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as error:
            raise CredentialStoreError(
                f"Failed to remove credential file {self._path}: {error}"
            ) from error

    def _write(self, payload: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
