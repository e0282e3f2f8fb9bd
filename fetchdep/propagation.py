"""Fold transitively fetched packages into the caller's search list and discover them."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List
import logging

from .descriptor import DeclaredConfiguration, DependencyDescriptor
from .discovery import DiscoveredPackage, PackageDiscovery
from .layout import ProjectDirectories
from .packages import MANIFEST_NAME, PackageList, read_manifest

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Propagation:
    packages: PackageList
    package: DiscoveredPackage | None
    transitive: List[Path] = field(default_factory=list)
    inherited: List[DiscoveredPackage] = field(default_factory=list)


class DependencyGraphPropagator:
    """Merges a dependency's own package manifests into the accumulated list.

    A dependency that itself fetched dependencies leaves a manifest in the
    root of its build tree. Those package directories are merged into the
    list and discovered before the dependency's own package, so link
    interface dependencies resolve when the caller links against it.
    """

    def __init__(self, discovery: PackageDiscovery) -> None:
        self._discovery = discovery

    @staticmethod
    def transitive_directories(
        directories: ProjectDirectories,
        configurations: Iterable[DeclaredConfiguration],
    ) -> List[Path]:
        found: List[Path] = []
        for configuration in configurations:
            manifest = directories.build_dir(configuration.name) / MANIFEST_NAME
            for entry in read_manifest(manifest):
                if entry not in found:
                    found.append(entry)
        return found

    def propagate(
        self,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configurations: Iterable[DeclaredConfiguration],
        packages: PackageList,
        *,
        required: bool = True,
    ) -> Propagation:
        transitive = self.transitive_directories(directories, configurations)
        merged = packages.extended([*transitive, directories.package])
        if transitive:
            logger.info("   Inherited %d package director%s from '%s'.", len(transitive), "y" if len(transitive) == 1 else "ies", descriptor.name)

        search_paths = list(merged)
        inherited: List[DiscoveredPackage] = []
        for package_dir in transitive:
            inherited.extend(self._discovery.discover_all(package_dir, search_paths))

        package = self._discovery.find(descriptor.package, search_paths, required=required)
        return Propagation(packages=merged, package=package, transitive=transitive, inherited=inherited)


__all__ = ["DependencyGraphPropagator", "Propagation"]
