from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from fetchdep.command_runner import CommandResult, RecordingCommandRunner
from fetchdep.packages import MANIFEST_NAME


def ok(command: List[str], stdout: str = "") -> CommandResult:
    return CommandResult(command=command, returncode=0, stdout=stdout, stderr="")


def fail(command: List[str], stderr: str = "error", code: int = 1) -> CommandResult:
    return CommandResult(command=command, returncode=code, stdout="", stderr=stderr)


def install_config(prefix: Path, name: str, version: str | None = None) -> Path:
    """Create ``<prefix>/lib/cmake/<name>/<name>Config.cmake``."""
    directory = prefix / "lib" / "cmake" / name
    directory.mkdir(parents=True, exist_ok=True)
    config = directory / f"{name}Config.cmake"
    config.write_text(f"# {name}\n", encoding="utf-8")
    if version:
        (directory / f"{name}ConfigVersion.cmake").write_text(
            f'set(PACKAGE_VERSION "{version}")\n', encoding="utf-8"
        )
    return config


@dataclass
class FakeRemote:
    branches: Dict[str, str]
    tags: Dict[str, str] = field(default_factory=dict)
    default_branch: str = "main"

    @property
    def commits(self) -> set[str]:
        return {*self.branches.values(), *self.tags.values()}


@dataclass
class FakeClone:
    url: str
    refs: Dict[str, str]
    commits: set[str]
    head: str
    dirty: bool = False


class FakeToolchain(RecordingCommandRunner):
    """Simulates ``git`` clones and CMake step scripts inside a temporary directory.

    Running a build script installs ``<Name>Config.cmake`` into the project's
    Package directory so that discovery succeeds afterwards.
    """

    def __init__(self) -> None:
        super().__init__()
        self.remotes: Dict[str, FakeRemote] = {}
        self.clones: Dict[Path, FakeClone] = {}
        self.steps: List[Tuple[str, str, str]] = []
        self.failing_steps: set[Tuple[str, str]] = set()
        self.skip_install: set[str] = set()
        self.package_names: Dict[str, str] = {}
        self.nested_manifests: Dict[str, List[Path]] = {}

    def add_remote(self, url: str, **branches: str) -> FakeRemote:
        remote = FakeRemote(branches=dict(branches))
        self.remotes[url] = remote
        return remote

    def clone_at(self, source_dir: Path) -> FakeClone:
        return self.clones[source_dir.resolve()]

    def steps_for(self, dependency: str) -> List[Tuple[str, str]]:
        return [(configuration, step) for name, configuration, step in self.steps if name == dependency]

    def git_commands(self) -> List[List[str]]:
        return self.commands_for("git")

    def respond(self, command: List[str], *, cwd: Path | None) -> CommandResult:
        if command[:1] == ["git"]:
            return self._git(command, cwd)
        if command[:1] in (["sh"], ["cmd"]):
            return self._script(command, cwd)
        if command[:1] == ["pkg-config"]:
            return fail(command)
        return ok(command)

    def _git(self, command: List[str], cwd: Path | None) -> CommandResult:
        args = command[1:]
        if args[:2] == ["-c", "advice.detachedHead=false"]:
            args = args[2:]
        if args[0] == "clone":
            url, destination = args[-2], Path(args[-1])
            remote = self.remotes.get(url)
            if remote is None:
                return fail(command, f"repository '{url}' not found", code=128)
            destination.mkdir(parents=True, exist_ok=True)
            (destination / "CMakeLists.txt").write_text("project(fake)\n", encoding="utf-8")
            refs = self._remote_refs(remote)
            refs[f"refs/heads/{remote.default_branch}"] = remote.branches[remote.default_branch]
            self.clones[destination.resolve()] = FakeClone(
                url=url,
                refs=refs,
                commits=set(remote.commits),
                head=remote.branches[remote.default_branch],
            )
            return ok(command)

        assert cwd is not None
        clone = self.clones[Path(cwd).resolve()]
        if args[0] == "status":
            return ok(command, " M CMakeLists.txt\n" if clone.dirty else "")
        if args[0] == "show-ref":
            revision = args[1]
            lines = [
                f"{commit} {ref}"
                for ref, commit in sorted(clone.refs.items())
                if ref == revision or ref.endswith(f"/{revision}")
            ]
            if not lines:
                return fail(command, "")
            return ok(command, "\n".join(lines) + "\n")
        if args[0] == "rev-parse":
            target = args[1]
            if target == "HEAD":
                return ok(command, f"{clone.head}\n")
            commit = self._resolve(clone, target.removesuffix("^0"))
            if commit is None:
                return fail(command, f"unknown revision {target}", code=128)
            return ok(command, f"{commit}\n")
        if args[0] == "fetch":
            remote = self.remotes[clone.url]
            clone.refs.update(self._remote_refs(remote))
            clone.commits.update(remote.commits)
            return ok(command)
        if args[0] == "checkout":
            commit = self._resolve(clone, args[-1])
            if commit is None:
                return fail(command, f"pathspec '{args[-1]}' did not match", code=1)
            clone.head = commit
            return ok(command)
        return ok(command)

    @staticmethod
    def _remote_refs(remote: FakeRemote) -> Dict[str, str]:
        refs = {f"refs/remotes/origin/{name}": commit for name, commit in remote.branches.items()}
        refs.update({f"refs/tags/{name}": commit for name, commit in remote.tags.items()})
        return refs

    @staticmethod
    def _resolve(clone: FakeClone, revision: str) -> str | None:
        if revision in clone.commits:
            return revision
        for prefix in ("refs/tags/", "refs/heads/", "refs/remotes/", "refs/remotes/origin/"):
            commit = clone.refs.get(f"{prefix}{revision}")
            if commit is not None:
                return commit
        return None

    def _script(self, command: List[str], cwd: Path | None) -> CommandResult:
        assert cwd is not None
        script = Path(command[-1])
        step = script.stem
        build_dir = Path(cwd)
        configuration = build_dir.name
        project = build_dir.parent.parent
        name = project.name
        self.steps.append((name, configuration, step))
        if (name, step) in self.failing_steps:
            return fail(command, f"{step} failed")
        if step == "build" and name not in self.skip_install:
            install_config(project / "Package", self.package_names.get(name, name))
            nested = self.nested_manifests.get(name)
            if nested is not None:
                (build_dir / MANIFEST_NAME).write_text(
                    "".join(f"{path}\n" for path in nested), encoding="utf-8"
                )
        return ok(command)
