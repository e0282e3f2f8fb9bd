"""Dependency declarations and global settings read from configuration directories."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .config_loader import (
    collect_config_files,
    load_config_file,
    merge_mappings,
    normalize_string_list,
    resolve_config_paths,
)
from .descriptor import DEFAULT_CONFIGURATION, DeclaredConfiguration, DependencyDescriptor


@dataclass(slots=True)
class GlobalConfig:
    prefix: str | None = None
    generator: str | None = None
    multi_config: bool | None = None
    toolchain_file: str | None = None
    default_configuration: str = DEFAULT_CONFIGURATION
    log_level: str = "info"
    log_file: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        global_section = data.get("global", {}) if isinstance(data, Mapping) else {}
        if not isinstance(global_section, Mapping):
            raise TypeError("[global] must be a table")
        multi_config = global_section.get("multi_config")
        if multi_config is not None and not isinstance(multi_config, bool):
            raise TypeError("global.multi_config must be a boolean if specified")
        return cls(
            prefix=str(global_section["prefix"]) if global_section.get("prefix") else None,
            generator=str(global_section["generator"]) if global_section.get("generator") else None,
            multi_config=multi_config,
            toolchain_file=str(global_section["toolchain_file"]) if global_section.get("toolchain_file") else None,
            default_configuration=str(global_section.get("default_configuration", DEFAULT_CONFIGURATION)),
            log_level=str(global_section.get("log_level", "info")),
            log_file=str(global_section.get("log_file")) if global_section.get("log_file") else None,
        )


@dataclass(slots=True)
class DependencyEntry:
    """One ``dependencies/<name>.toml`` file."""

    name: str
    settings: Mapping[str, Any]
    configurations: List[DeclaredConfiguration] = field(default_factory=list)
    requires: List[str] = field(default_factory=list)
    path: Path | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, path: Path | None = None) -> "DependencyEntry":
        section = data.get("dependency")
        if not isinstance(section, Mapping):
            raise ValueError(f"[dependency] section is required in {path or 'dependency configuration'}")
        name = section.get("name")
        if not name or not str(name).strip():
            raise ValueError(f"dependency.name is required in {path or 'dependency configuration'}")
        name = str(name).strip()

        configurations_section = data.get("configurations", [])
        if not isinstance(configurations_section, Sequence) or isinstance(configurations_section, (str, bytes)):
            raise TypeError(f"[[configurations]] of '{name}' must be an array of tables")
        configurations: List[DeclaredConfiguration] = []
        for entry in configurations_section:
            if not isinstance(entry, Mapping):
                raise TypeError(f"[[configurations]] of '{name}' must be an array of tables")
            configurations.append(DeclaredConfiguration.from_mapping(entry, dependency=name))

        requires = normalize_string_list(data.get("requires"), field_name=f"{name}.requires")
        return cls(name=name, settings=dict(section), configurations=configurations, requires=requires, path=path)

    def descriptor(self, root: Path) -> DependencyDescriptor:
        """Build the descriptor; relative local sources resolve against the file's directory."""

        base_dir = self.path.parent if self.path is not None else None
        return DependencyDescriptor.from_mapping({**self.settings, "name": self.name}, root=root, base_dir=base_dir)


@dataclass(slots=True)
class ConfigurationStore:
    root: Path
    global_config: GlobalConfig
    dependencies: Dict[str, DependencyEntry]
    config_dirs: tuple[Path, ...] = field(default_factory=tuple)

    @classmethod
    def from_directory(cls, root: Path) -> "ConfigurationStore":
        return cls.from_directories(root, [root / "config"])

    @classmethod
    def from_directories(cls, root: Path, directories: Iterable[Path]) -> "ConfigurationStore":
        resolved_dirs, missing_dirs = resolve_config_paths(root, directories)
        if missing_dirs and not resolved_dirs:
            missing_display = ", ".join(str(path) for path in missing_dirs)
            raise FileNotFoundError(f"No configuration directories found. Missing: {missing_display}")
        if not resolved_dirs:
            raise FileNotFoundError("No configuration directories were provided")

        global_data: Mapping[str, Any] = {}
        dependencies: Dict[str, DependencyEntry] = {}

        for config_dir in resolved_dirs:
            top_level_files = collect_config_files(config_dir)
            global_path = top_level_files.get("config")
            if global_path is not None:
                global_data = merge_mappings(global_data, load_config_file(global_path))

            dependencies_dir = config_dir / "dependencies"
            if not dependencies_dir.exists():
                continue
            for _, path in sorted(collect_config_files(dependencies_dir).items()):
                entry = DependencyEntry.from_mapping(load_config_file(path), path=path)
                dependencies[entry.name] = entry

        return cls(
            root=root,
            config_dirs=resolved_dirs,
            global_config=GlobalConfig.from_mapping(global_data),
            dependencies=dependencies,
        )

    def list_dependencies(self) -> Iterable[str]:
        return self.dependencies.keys()

    def get_dependency(self, name: str) -> DependencyEntry:
        if name not in self.dependencies:
            available = ", ".join(sorted(self.dependencies)) or "<none>"
            raise KeyError(f"Dependency '{name}' not found. Available dependencies: {available}")
        return self.dependencies[name]

    def resolve_order(self, names: Iterable[str] | None = None) -> List[DependencyEntry]:
        """Return *names* (default: all) and their requirements, requirements first."""

        requested = list(names) if names is not None else sorted(self.dependencies)
        visiting: List[str] = []
        visited: set[str] = set()
        order: List[DependencyEntry] = []

        def visit(dependency_name: str) -> None:
            if dependency_name in visiting:
                cycle = " -> ".join([*visiting, dependency_name])
                raise ValueError(f"Circular dependency detected: {cycle}")
            if dependency_name in visited:
                return
            entry = self.get_dependency(dependency_name)
            visiting.append(dependency_name)
            for requirement in entry.requires:
                visit(requirement)
            visiting.pop()
            visited.add(dependency_name)
            order.append(entry)

        for name in requested:
            visit(name)
        return order


__all__ = [
    "ConfigurationStore",
    "DependencyEntry",
    "GlobalConfig",
]
