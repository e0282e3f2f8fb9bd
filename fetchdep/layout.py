"""On-disk layout of a fetched dependency."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import shutil

from .descriptor import DependencyDescriptor, SourceMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProjectDirectories:
    """Source, Build, Package and State locations for one dependency.

    Source is shared by every configuration, Build and State are split into one
    subdirectory per configuration, and Package is the single install prefix
    all configurations install into.
    """

    project: Path
    source: Path
    build: Path
    package: Path
    state: Path

    @classmethod
    def for_dependency(cls, descriptor: DependencyDescriptor) -> "ProjectDirectories":
        project = (descriptor.root / "Projects" / descriptor.name).resolve()
        if descriptor.mode is SourceMode.LOCAL:
            source = Path(descriptor.location)
        else:
            source = project / "Source"
        return cls(
            project=project,
            source=source,
            build=project / "Build",
            package=project / "Package",
            state=project / "State",
        )

    def build_dir(self, configuration: str) -> Path:
        return self.build / configuration

    def state_dir(self, configuration: str) -> Path:
        return self.state / configuration

    def wipe_project(self) -> None:
        """Remove everything stored for the dependency, including a cloned Source."""
        if self.project.exists():
            logger.info("   Removing %s", self.project)
            shutil.rmtree(self.project)

    def wipe_outputs(self) -> None:
        """Remove Build, Package and State but keep Source."""
        for directory in (self.build, self.package, self.state):
            if directory.exists():
                logger.info("   Removing %s", directory)
                shutil.rmtree(directory)


__all__ = ["ProjectDirectories"]
