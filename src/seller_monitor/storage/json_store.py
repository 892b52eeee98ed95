"""JSON document storage keyed by logical paths."""
from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

_UNSAFE_KEY_CHARACTERS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_cache_key(name: str) -> str:
    """Turn a username into a file-name-safe key.

    Every character outside ``[A-Za-z0-9_-]`` becomes ``_`` and the result is
    lowercased, so ``"../../etc/passwd"`` yields ``"______etc_passwd"``.
    """

    return _UNSAFE_KEY_CHARACTERS.sub("_", name).lower()


class JsonFileStore:
    """Reads and writes whole JSON documents below ``base_path``."""

    def __init__(self, base_path: Path) -> None:
        self._base_path = base_path
        self._base_path.mkdir(parents=True, exist_ok=True)

    def _file_for(self, path: str) -> Path:
        candidate = (self._base_path / path).resolve()
        base = self._base_path.resolve()
        if candidate != base and base not in candidate.parents:
            raise ValueError(f"Path escapes the data directory: {path}")
        return candidate

    def read_json(self, path: str) -> Any | None:
        """Return the parsed document, or ``None`` when it does not exist."""

        file_path = self._file_for(path)
        try:
            with file_path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None

    def write_json(self, path: str, document: Any) -> None:
        """Atomically replace the document at ``path``."""

        file_path = self._file_for(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, file_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, path: str) -> None:
        """Remove the document; a missing document is not an error."""

        self._file_for(path).unlink(missing_ok=True)

    def exists(self, path: str) -> bool:
        return self._file_for(path).exists()

    def list_files(self, directory: str) -> list[str]:
        folder = self._file_for(directory)
        if not folder.is_dir():
            return []
        return sorted(entry.name for entry in folder.iterdir() if entry.is_file())
