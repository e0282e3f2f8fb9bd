"""Git operations that keep a dependency's source tree at the requested revision."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Mapping
import logging

from .command_runner import CommandResult, CommandRunner
from .descriptor import DependencyDescriptor, DescriptorError, SourceMode

logger = logging.getLogger(__name__)

REASON_CLONED = "source was cloned"
REASON_VERSIONS_DIFFER = "versions differ"
REASON_LOCAL_SOURCE = "local source"
REASON_LOCAL_CHANGES = "local modifications"


class RevisionKind(str, Enum):
    MOVING = "moving"
    LOCAL_BRANCH = "local-branch"
    COMMIT = "commit"


@dataclass(slots=True)
class SyncResult:
    commit: str | None
    reason: str | None = None
    fetched: bool = False
    dirty: bool = False

    @property
    def changed(self) -> bool:
        return self.reason is not None


class SourceSynchronizer:
    """Ensures a dependency's Source directory exists and matches its revision.

    Prefers comparing local commits over touching the network, and never
    updates a working tree that has uncommitted changes.
    """

    def __init__(self, runner: CommandRunner, *, git: str = "git", environment: Mapping[str, str] | None = None) -> None:
        self._runner = runner
        self._git = git
        self._environment = environment

    def sync(self, descriptor: DependencyDescriptor, source_dir: Path) -> SyncResult:
        if descriptor.mode is SourceMode.LOCAL:
            if not source_dir.is_dir():
                raise FileNotFoundError(f"Local source for '{descriptor.name}' does not exist: {source_dir}")
            return SyncResult(commit=None, reason=REASON_LOCAL_SOURCE)

        revision = str(descriptor.revision)
        reason: str | None = None
        fetched = False

        if not source_dir.exists():
            self._clone(descriptor, source_dir)
            self._check_revision(descriptor, source_dir, revision)
            reason = REASON_CLONED
        elif self._is_dirty(source_dir):
            commit = self.current_commit(source_dir)
            logger.warning(
                "   Local changes detected in %s; skipping update of '%s' to %s.",
                source_dir,
                descriptor.name,
                revision,
            )
            return SyncResult(commit=commit, reason=REASON_LOCAL_CHANGES, dirty=True)
        else:
            kind = self._check_revision(descriptor, source_dir, revision)
            if kind is RevisionKind.MOVING:
                fetched = True
            else:
                target = self._resolve_commit(source_dir, revision)
                fetched = target is None or target != self.current_commit(source_dir)
            if fetched:
                self._fetch(descriptor, source_dir)

        current = self.current_commit(source_dir)
        target = self._resolve_commit(source_dir, revision, check=True)
        if current != target:
            logger.info("   Checking out %s (%s).", revision, target)
            self._run(
                [self._git, "-c", "advice.detachedHead=false", "checkout", *self._recurse_flag(descriptor), revision],
                cwd=source_dir,
                note=f"checkout {descriptor.name}",
            )
            self._update_submodules(descriptor, source_dir)
            current = target
            reason = reason or REASON_VERSIONS_DIFFER

        return SyncResult(commit=current, reason=reason, fetched=fetched)

    def classify_revision(self, source_dir: Path, revision: str) -> RevisionKind:
        result = self._run([self._git, "show-ref", revision], cwd=source_dir, check=False)
        refs: List[str] = []
        if result.ok:
            for line in result.stdout.splitlines():
                parts = line.split()
                if len(parts) == 2:
                    refs.append(parts[1])
        if f"refs/heads/{revision}" in refs:
            return RevisionKind.LOCAL_BRANCH
        if any(ref.startswith(("refs/remotes/", "refs/tags/")) for ref in refs):
            return RevisionKind.MOVING
        return RevisionKind.COMMIT

    def _check_revision(self, descriptor: DependencyDescriptor, source_dir: Path, revision: str) -> RevisionKind:
        kind = self.classify_revision(source_dir, revision)
        if kind is RevisionKind.LOCAL_BRANCH:
            raise DescriptorError(
                f"Dependency '{descriptor.name}': git_revision '{revision}' names a local branch; "
                f"use a remote-qualified name such as 'origin/{revision}', a tag or a commit"
            )
        return kind

    def current_commit(self, source_dir: Path) -> str:
        return self._run([self._git, "rev-parse", "HEAD"], cwd=source_dir).output

    def _resolve_commit(self, source_dir: Path, revision: str, *, check: bool = False) -> str | None:
        result = self._run([self._git, "rev-parse", f"{revision}^0"], cwd=source_dir, check=check)
        if not result.ok:
            return None
        return result.output

    def _is_dirty(self, source_dir: Path) -> bool:
        result = self._run([self._git, "status", "--porcelain"], cwd=source_dir)
        return bool(result.stdout.strip())

    def _clone(self, descriptor: DependencyDescriptor, source_dir: Path) -> None:
        logger.info("   Cloning %s.", descriptor.location)
        source_dir.parent.mkdir(parents=True, exist_ok=True)
        command = [self._git, "clone"]
        if descriptor.submodules:
            command.append("--recurse-submodules")
        command.extend([descriptor.location, str(source_dir)])
        self._run(command, cwd=None, note=f"clone {descriptor.name}")

    def _fetch(self, descriptor: DependencyDescriptor, source_dir: Path) -> None:
        logger.info("   Fetching %s.", descriptor.location)
        self._run([self._git, "fetch"], cwd=source_dir, note=f"fetch {descriptor.name}")
        self._run([self._git, "fetch", "--tags"], cwd=source_dir, note=f"fetch {descriptor.name}")
        self._update_submodules(descriptor, source_dir)

    def _update_submodules(self, descriptor: DependencyDescriptor, source_dir: Path) -> None:
        if not descriptor.submodules:
            return
        command = [self._git, "submodule", "update", "--init"]
        if descriptor.submodule_remote:
            command.append("--remote")
        command.append("--recursive")
        command.extend(descriptor.submodule_paths)
        self._run(command, cwd=source_dir)

    @staticmethod
    def _recurse_flag(descriptor: DependencyDescriptor) -> List[str]:
        return ["--recurse-submodules"] if descriptor.submodules else []

    def _run(
        self, command: List[str], *, cwd: Path | None, check: bool = True, note: str | None = None
    ) -> CommandResult:
        return self._runner.run(command, cwd=cwd, env=self._environment, check=check, note=note)


__all__ = [
    "REASON_CLONED",
    "REASON_LOCAL_CHANGES",
    "REASON_LOCAL_SOURCE",
    "REASON_VERSIONS_DIFFER",
    "RevisionKind",
    "SourceSynchronizer",
    "SyncResult",
]
