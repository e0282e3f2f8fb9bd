"""Dependency descriptors, declared configurations and input normalization."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import logging

from .config_loader import normalize_string_list

logger = logging.getLogger(__name__)

DEFAULT_CONFIGURATION = "Release"

# Old option name -> current option name.
DEPRECATED_OPTIONS: Dict[str, str] = {
    "generate_options": "configure_options",
    "git_tag": "git_revision",
    "cmakelist_subdirectory": "source_subdirectory",
}


class DescriptorError(ValueError):
    """Raised for invalid or contradictory dependency declarations."""


class SourceMode(str, Enum):
    GIT = "git"
    LOCAL = "local"


def translate_deprecated_options(data: Mapping[str, Any], *, context: str) -> Dict[str, Any]:
    """Rename deprecated keys in *data* to their current names.

    Runs once when input is normalized so the rest of the pipeline only sees
    current option names.
    """

    translated: Dict[str, Any] = {str(key): value for key, value in data.items()}
    for old_name, new_name in DEPRECATED_OPTIONS.items():
        if old_name not in translated:
            continue
        if new_name in translated:
            raise DescriptorError(
                f"{context}: '{old_name}' and '{new_name}' cannot both be set; use '{new_name}'"
            )
        logger.warning("%s: '%s' is deprecated, use '%s' instead", context, old_name, new_name)
        translated[new_name] = translated.pop(old_name)
    return translated


def _optional_string(value: Any, *, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise DescriptorError(f"{field_name} must be a string")
    text = value.strip()
    return text or None


def _flag(value: Any, default: bool, *, field_name: str) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise DescriptorError(f"{field_name} must be a boolean")
    return value


def _string_tuple(value: Any, *, field_name: str) -> tuple[str, ...]:
    try:
        return tuple(normalize_string_list(value, field_name=field_name))
    except TypeError as exc:
        raise DescriptorError(str(exc)) from exc


@dataclass(frozen=True, slots=True)
class DeclaredConfiguration:
    """A named build variant of one dependency."""

    name: str
    configure_options: tuple[str, ...] = ()
    build_options: tuple[str, ...] = ()
    output_binding: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, dependency: str) -> "DeclaredConfiguration":
        context = f"dependency '{dependency}' configuration"
        data = translate_deprecated_options(data, context=context)
        name = _optional_string(data.get("name"), field_name=f"{context} name")
        if not name:
            raise DescriptorError(f"{context} entries require a non-empty 'name'")
        return cls(
            name=name,
            configure_options=_string_tuple(data.get("configure_options"), field_name=f"{name}.configure_options"),
            build_options=_string_tuple(data.get("build_options"), field_name=f"{name}.build_options"),
            output_binding=_optional_string(data.get("output"), field_name=f"{name}.output"),
        )


@dataclass(frozen=True, slots=True)
class DependencyDescriptor:
    """Identifies one dependency and how it should be fetched and built."""

    name: str
    mode: SourceMode
    location: str
    root: Path
    revision: str | None = None
    package_name: str | None = None
    configuration: str | None = None
    configure_options: tuple[str, ...] = ()
    build_options: tuple[str, ...] = ()
    source_subdirectory: str | None = None
    fetch_only: bool = False
    submodules: bool = True
    submodule_paths: tuple[str, ...] = ()
    submodule_remote: bool = False

    @property
    def package(self) -> str:
        return self.package_name or self.name

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise DescriptorError("Dependency name must be provided")
        if not self.location:
            raise DescriptorError(f"Dependency '{self.name}' has no source location")
        if self.mode is SourceMode.GIT and not self.revision:
            raise DescriptorError(f"Dependency '{self.name}': git_revision must be provided")
        if self.mode is SourceMode.LOCAL and self.revision:
            raise DescriptorError(f"Dependency '{self.name}': git_revision cannot be used with local_source")
        if self.source_subdirectory and Path(self.source_subdirectory).is_absolute():
            raise DescriptorError(f"Dependency '{self.name}': source_subdirectory must be a relative path")

    def resolve_configurations(
        self,
        declared: Sequence[DeclaredConfiguration] = (),
        *,
        default: str = DEFAULT_CONFIGURATION,
    ) -> List[DeclaredConfiguration]:
        """Return the configurations to process, with shared options prepended."""

        if declared and self.configuration:
            raise DescriptorError(
                f"Dependency '{self.name}': 'configuration' cannot be combined with declared configurations"
            )
        if not declared:
            declared = [DeclaredConfiguration(name=self.configuration or default)]

        seen: set[str] = set()
        resolved: List[DeclaredConfiguration] = []
        for entry in declared:
            if entry.name in seen:
                raise DescriptorError(f"Dependency '{self.name}': configuration '{entry.name}' declared twice")
            seen.add(entry.name)
            resolved.append(
                DeclaredConfiguration(
                    name=entry.name,
                    configure_options=(*self.configure_options, *entry.configure_options),
                    build_options=(*self.build_options, *entry.build_options),
                    output_binding=entry.output_binding,
                )
            )
        return resolved

    def source_stamp_fields(self) -> list[tuple[str, str]]:
        return [("mode", self.mode.value), ("location", self.location)]

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        root: Path,
        base_dir: Path | None = None,
    ) -> "DependencyDescriptor":
        raw_name = data.get("name")
        context = f"dependency '{raw_name}'" if raw_name else "dependency"
        data = translate_deprecated_options(data, context=context)

        name = _optional_string(data.get("name"), field_name="dependency.name")
        if not name:
            raise DescriptorError("dependency.name is required")

        repository = _optional_string(data.get("git_repository"), field_name=f"{name}.git_repository")
        local_source = _optional_string(data.get("local_source"), field_name=f"{name}.local_source")
        if repository and local_source:
            raise DescriptorError(f"Dependency '{name}': git_repository and local_source are mutually exclusive")
        if not repository and not local_source:
            raise DescriptorError(f"Dependency '{name}': one of git_repository or local_source must be provided")

        if local_source:
            local_path = Path(local_source).expanduser()
            if not local_path.is_absolute() and base_dir is not None:
                local_path = base_dir / local_path
            mode = SourceMode.LOCAL
            location = str(local_path.resolve())
        else:
            mode = SourceMode.GIT
            location = str(repository)

        raw_root = _optional_string(data.get("root"), field_name=f"{name}.root")
        descriptor_root = Path(raw_root).expanduser() if raw_root else root

        descriptor = cls(
            name=name,
            mode=mode,
            location=location,
            root=descriptor_root,
            revision=_optional_string(data.get("git_revision"), field_name=f"{name}.git_revision"),
            package_name=_optional_string(data.get("package_name"), field_name=f"{name}.package_name"),
            configuration=_optional_string(data.get("configuration"), field_name=f"{name}.configuration"),
            configure_options=_string_tuple(data.get("configure_options"), field_name=f"{name}.configure_options"),
            build_options=_string_tuple(data.get("build_options"), field_name=f"{name}.build_options"),
            source_subdirectory=_optional_string(
                data.get("source_subdirectory"), field_name=f"{name}.source_subdirectory"
            ),
            fetch_only=_flag(data.get("fetch_only"), False, field_name=f"{name}.fetch_only"),
            submodules=_flag(data.get("git_submodules"), True, field_name=f"{name}.git_submodules"),
            submodule_paths=_string_tuple(data.get("git_submodule_paths"), field_name=f"{name}.git_submodule_paths"),
            submodule_remote=_flag(
                data.get("git_submodule_remote"), False, field_name=f"{name}.git_submodule_remote"
            ),
        )
        descriptor.validate()
        return descriptor


__all__ = [
    "DEFAULT_CONFIGURATION",
    "DEPRECATED_OPTIONS",
    "DeclaredConfiguration",
    "DependencyDescriptor",
    "DescriptorError",
    "SourceMode",
    "translate_deprecated_options",
]
