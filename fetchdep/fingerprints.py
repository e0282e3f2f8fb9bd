"""Persistent change fingerprints stored as small text files."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Tuple
import hashlib
import os
import tempfile

# Bump when the Build/Package/State layout changes incompatibly.
STORAGE_VERSION = "1"

SOURCE_STAMP = "source.txt"
STORAGE_STAMP = "storage.txt"
REVISION_STAMP = "commit.txt"
CONFIGURE_HASH = "configure.hash"
BUILD_HASH = "build.hash"

Field = Tuple[str, str]


def serialize_fields(fields: Iterable[Field]) -> str:
    """Serialize ordered key/value fields as one ``key=value`` per line.

    Embedded newlines are escaped so a value can never forge another field.
    """

    lines = []
    for key, value in fields:
        escaped = str(value).replace("\\", "\\\\").replace("\n", "\\n")
        lines.append(f"{key}={escaped}")
    return "\n".join(lines)


def content_digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class FingerprintStore:
    """Reads and writes fingerprint files under one State directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def child(self, name: str) -> "FingerprintStore":
        return FingerprintStore(self.directory / name)

    def path(self, name: str) -> Path:
        return self.directory / name

    def read(self, name: str) -> str | None:
        path = self.path(name)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8").rstrip("\n")

    def matches(self, name: str, value: str) -> bool:
        return self.read(name) == value

    def write(self, name: str, value: str) -> None:
        """Atomically replace the fingerprint *name* with *value*."""
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path(name)
        fd, temp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(f"{value}\n")
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def write_text(self, name: str, content: str) -> Path:
        """Write an auxiliary file (such as a generated script) next to the fingerprints."""
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path(name)
        target.write_text(content, encoding="utf-8", newline="\n")
        return target


__all__ = [
    "BUILD_HASH",
    "CONFIGURE_HASH",
    "FingerprintStore",
    "REVISION_STAMP",
    "SOURCE_STAMP",
    "STORAGE_STAMP",
    "STORAGE_VERSION",
    "content_digest",
    "serialize_fields",
]
