"""The accumulated list of package install directories and its manifest file."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, List
import os

MANIFEST_NAME = "FetchDependencyPackages.txt"


class PackageList:
    """Ordered, duplicate-free list of package directories.

    Instances are treated as values: :meth:`extended` returns a new list and
    leaves the receiver untouched, so each processing call hands its caller
    an updated copy instead of mutating shared state.
    """

    __slots__ = ("_paths",)

    def __init__(self, paths: Iterable[Path | str] = ()) -> None:
        self._paths: List[Path] = []
        for path in paths:
            self._append(Path(path))

    def _append(self, path: Path) -> None:
        normalized = path.absolute()
        if normalized not in self._paths:
            self._paths.append(normalized)

    def extended(self, paths: Iterable[Path | str]) -> "PackageList":
        result = PackageList(self._paths)
        for path in paths:
            result._append(Path(path))
        return result

    def joined(self, separator: str = os.pathsep) -> str:
        return separator.join(str(path) for path in self._paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(list(self._paths))

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, (str, Path)):
            return Path(item).absolute() in self._paths
        return False

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PackageList):
            return self._paths == other._paths
        return NotImplemented

    def __repr__(self) -> str:
        return f"PackageList({[str(path) for path in self._paths]!r})"


def read_manifest(path: Path) -> List[Path]:
    """Return the package directories listed in the manifest at *path*, if any."""

    if not path.is_file():
        return []
    entries: List[Path] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        text = line.strip()
        if text:
            entries.append(Path(text))
    return entries


def write_manifest(path: Path, packages: PackageList) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(f"{entry}\n" for entry in packages)
    path.write_text(content, encoding="utf-8", newline="\n")
    return path


__all__ = ["MANIFEST_NAME", "PackageList", "read_manifest", "write_manifest"]
