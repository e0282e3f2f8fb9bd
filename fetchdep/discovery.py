"""Locate installed packages by name within a restricted set of prefixes.

The primary finder follows CMake's config-mode search layout and looks for
``<Name>Config.cmake`` or ``<name>-config.cmake`` below each prefix. The
secondary finder asks ``pkg-config`` with its search path limited to the same
prefixes; it is a best-effort lookup and is only consulted when the primary
finder comes up empty.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence
import logging
import os
import re

from .command_runner import CommandRunner

logger = logging.getLogger(__name__)

_LIBRARY_DIRS = ("lib", "lib64", "lib32", "libx32", "share")
_CMAKE_SUBDIRS = ("cmake", "CMake")
_PKGCONFIG_SUBDIRS = ("lib/pkgconfig", "lib64/pkgconfig", "share/pkgconfig")
_VERSION_PATTERN = re.compile(r'set\s*\(\s*PACKAGE_VERSION\s+"?([^")\s]+)"?', re.IGNORECASE)


class PackageNotFoundError(RuntimeError):
    """Raised when a required package cannot be located by any finder."""

    def __init__(self, name: str, search_paths: Sequence[Path]):
        searched = ", ".join(str(path) for path in search_paths) or "<none>"
        super().__init__(
            f"Package '{name}' was not found; the dependency does not export usable build artifacts. "
            f"Searched: {searched}"
        )
        self.name = name
        self.search_paths = list(search_paths)


@dataclass(frozen=True, slots=True)
class DiscoveredPackage:
    name: str
    method: str
    location: Path
    prefix: Path | None = None
    version: str | None = None


class PackageFinder:
    """Abstract finder interface."""

    method = "unknown"

    def find(self, name: str, search_paths: Sequence[Path]) -> DiscoveredPackage | None:
        raise NotImplementedError

    def list_packages(self, prefix: Path) -> List[str]:
        """Names of the packages this finder can locate under *prefix*."""
        return []


def _name_dirs(directory: Path, name: str) -> List[Path]:
    if not directory.is_dir():
        return []
    lowered = name.lower()
    return sorted(
        child for child in directory.iterdir() if child.is_dir() and child.name.lower().startswith(lowered)
    )


def _with_cmake_subdirs(directory: Path) -> Iterator[Path]:
    yield directory
    for subdir in _CMAKE_SUBDIRS:
        yield directory / subdir


def _config_file_names(name: str) -> tuple[str, str]:
    return (f"{name}Config.cmake", f"{name.lower()}-config.cmake")


def _read_version(directory: Path, name: str) -> str | None:
    for candidate in (f"{name}ConfigVersion.cmake", f"{name.lower()}-config-version.cmake"):
        path = directory / candidate
        if not path.is_file():
            continue
        match = _VERSION_PATTERN.search(path.read_text(encoding="utf-8", errors="ignore"))
        if match:
            return match.group(1)
    return None


class CMakeConfigFinder(PackageFinder):
    method = "config"

    def candidate_directories(self, prefix: Path, name: str) -> Iterator[Path]:
        yield from _with_cmake_subdirs(prefix)
        for child in _name_dirs(prefix, name):
            yield from _with_cmake_subdirs(child)
        for library_dir in _LIBRARY_DIRS:
            base = prefix / library_dir
            if not base.is_dir():
                continue
            yield from _name_dirs(base / "cmake", name)
            for child in _name_dirs(base, name):
                yield from _with_cmake_subdirs(child)
            if library_dir == "lib":
                # Debian-style multiarch: lib/<triplet>/cmake/<name>*
                for arch_dir in sorted(base.iterdir()):
                    if arch_dir.is_dir() and arch_dir.name.count("-") >= 2:
                        yield from _name_dirs(arch_dir / "cmake", name)

    def find(self, name: str, search_paths: Sequence[Path]) -> DiscoveredPackage | None:
        file_names = _config_file_names(name)
        for prefix in search_paths:
            for directory in self.candidate_directories(prefix, name):
                for file_name in file_names:
                    config_file = directory / file_name
                    if config_file.is_file():
                        return DiscoveredPackage(
                            name=name,
                            method=self.method,
                            location=config_file,
                            prefix=prefix,
                            version=_read_version(directory, name),
                        )
        return None

    def list_packages(self, prefix: Path) -> List[str]:
        """Names of every package whose config file is reachable under *prefix*.

        A config file in a directory that the name-based search would not
        visit is left out, so each listed name is findable with *prefix*.
        """

        if not prefix.is_dir():
            return []
        names: List[str] = []
        for directory in self.candidate_directories(prefix, ""):
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if not path.is_file():
                    continue
                if path.name.endswith("-config.cmake"):
                    candidate = path.name[: -len("-config.cmake")]
                elif path.name.endswith("Config.cmake"):
                    candidate = path.name[: -len("Config.cmake")]
                else:
                    continue
                if candidate and candidate not in names and self.find(candidate, [prefix]) is not None:
                    names.append(candidate)
        return names


class PkgConfigFinder(PackageFinder):
    method = "pkg-config"

    def __init__(self, runner: CommandRunner, *, executable: str = "pkg-config") -> None:
        self._runner = runner
        self._executable = executable

    @staticmethod
    def metadata_directories(search_paths: Iterable[Path]) -> List[Path]:
        directories: List[Path] = []
        for prefix in search_paths:
            for subdir in _PKGCONFIG_SUBDIRS:
                candidate = prefix / subdir
                if candidate.is_dir() and candidate not in directories:
                    directories.append(candidate)
        return directories

    def list_packages(self, prefix: Path) -> List[str]:
        names: List[str] = []
        for directory in self.metadata_directories([prefix]):
            for path in sorted(directory.glob("*.pc")):
                if path.stem not in names:
                    names.append(path.stem)
        return names

    def find(self, name: str, search_paths: Sequence[Path]) -> DiscoveredPackage | None:
        directories = self.metadata_directories(search_paths)
        if not directories:
            return None
        joined = os.pathsep.join(str(directory) for directory in directories)
        env = {"PKG_CONFIG_PATH": joined, "PKG_CONFIG_LIBDIR": joined}

        try:
            exists = self._runner.run([self._executable, "--exists", name], env=env, check=False)
        except FileNotFoundError:
            logger.debug("pkg-config is not available; skipping fallback lookup for '%s'", name)
            return None
        if not exists.ok:
            return None

        version_result = self._runner.run([self._executable, "--modversion", name], env=env, check=False)
        prefix_result = self._runner.run([self._executable, "--variable=prefix", name], env=env, check=False)
        version = version_result.output if version_result.ok and version_result.output else None
        prefix = Path(prefix_result.output) if prefix_result.ok and prefix_result.output else None

        location = next(
            (directory / f"{name}.pc" for directory in directories if (directory / f"{name}.pc").is_file()),
            directories[0],
        )
        return DiscoveredPackage(name=name, method=self.method, location=location, prefix=prefix, version=version)


class PackageDiscovery:
    """Runs the primary finder, then the optional fallback finder."""

    def __init__(self, primary: PackageFinder | None = None, fallback: PackageFinder | None = None) -> None:
        self.primary = primary or CMakeConfigFinder()
        self.fallback = fallback

    def find(self, name: str, search_paths: Sequence[Path], *, required: bool = True) -> DiscoveredPackage | None:
        paths = list(search_paths)
        found = self.primary.find(name, paths)
        if found is None and self.fallback is not None:
            logger.debug("'%s' has no %s metadata; trying %s", name, self.primary.method, self.fallback.method)
            found = self.fallback.find(name, paths)
        if found is None:
            if required:
                raise PackageNotFoundError(name, paths)
            return None
        logger.info(
            "   Found %s%s via %s: %s",
            found.name,
            f" {found.version}" if found.version else "",
            found.method,
            found.location,
        )
        return found

    def discover_all(self, prefix: Path, search_paths: Sequence[Path]) -> List[DiscoveredPackage]:
        """Discover every package installed under *prefix*.

        Packages are listed from config files, or from pkg-config metadata
        when there are none, and each listed package is required. A prefix
        without any package metadata raises :class:`PackageNotFoundError`.
        """

        names = self.primary.list_packages(prefix)
        if not names and self.fallback is not None:
            names = self.fallback.list_packages(prefix)
        if not names:
            raise PackageNotFoundError(prefix.name, [prefix])

        paths = [prefix, *search_paths]
        return [self.find(name, paths) for name in names]  # type: ignore[misc]


__all__ = [
    "CMakeConfigFinder",
    "DiscoveredPackage",
    "PackageDiscovery",
    "PackageFinder",
    "PackageNotFoundError",
    "PkgConfigFinder",
]
