"""Run settings, environment switches and template contexts."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping
import os
import platform

from .descriptor import DEFAULT_CONFIGURATION, DeclaredConfiguration, DependencyDescriptor
from .layout import ProjectDirectories
from .packages import MANIFEST_NAME

FAST_MODE_VARIABLE = "FETCH_DEPENDENCY_FAST"
PREFIX_VARIABLE = "FETCH_DEPENDENCY_PREFIX"

_TRUTHY = {"1", "on", "yes", "true", "y"}


def env_flag(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in _TRUTHY


def is_multi_config_generator(generator: str | None) -> bool:
    if not generator:
        return False
    normalized = generator.lower()
    multi_keywords = ["multi-config", "visual studio", "xcode"]
    return any(keyword in normalized for keyword in multi_keywords)


@dataclass(slots=True)
class FetchSettings:
    """Settings shared by every dependency processed in one run.

    ``binary_dir`` is the calling project's build output; the package
    manifest is written there and the default storage root lives below it.
    """

    binary_dir: Path
    prefix: Path
    generator: str | None = None
    multi_config: bool = False
    toolchain_file: Path | None = None
    fast: bool = False
    default_configuration: str = DEFAULT_CONFIGURATION
    cmake: str = "cmake"
    git: str = "git"
    environment: Dict[str, str] = field(default_factory=dict)

    @property
    def manifest_path(self) -> Path:
        return self.binary_dir / MANIFEST_NAME

    @classmethod
    def from_environment(
        cls,
        binary_dir: Path,
        *,
        env: Mapping[str, str] | None = None,
        prefix: Path | None = None,
        generator: str | None = None,
        multi_config: bool | None = None,
        toolchain_file: Path | None = None,
        fast: bool | None = None,
        default_configuration: str | None = None,
    ) -> "FetchSettings":
        """Combine explicit values with the process environment.

        Explicit arguments win; otherwise ``FETCH_DEPENDENCY_PREFIX`` and
        ``FETCH_DEPENDENCY_FAST`` are consulted, and the storage root falls
        back to ``<binary_dir>/External``.
        """

        environment = dict(env) if env is not None else dict(os.environ)
        binary_dir = binary_dir.resolve()

        if prefix is None:
            env_prefix = environment.get(PREFIX_VARIABLE)
            prefix = Path(env_prefix).expanduser() if env_prefix else binary_dir / "External"
        if fast is None:
            fast = env_flag(environment.get(FAST_MODE_VARIABLE))
        if multi_config is None:
            multi_config = is_multi_config_generator(generator)

        return cls(
            binary_dir=binary_dir,
            prefix=prefix.resolve(),
            generator=generator,
            multi_config=multi_config,
            toolchain_file=toolchain_file.resolve() if toolchain_file else None,
            fast=fast,
            default_configuration=default_configuration or DEFAULT_CONFIGURATION,
            environment=environment,
        )


class ContextBuilder:
    """Builds the variable context used to resolve option placeholders."""

    def __init__(self, settings: FetchSettings) -> None:
        self._settings = settings

    @staticmethod
    def system() -> Dict[str, Any]:
        return {
            "os": platform.system().lower(),
            "architecture": platform.machine(),
        }

    def for_configuration(
        self,
        *,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configuration: DeclaredConfiguration,
    ) -> Dict[str, Any]:
        dependency: Dict[str, Any] = {
            "name": descriptor.name,
            "package_name": descriptor.package,
            "source_dir": str(directories.source),
            "package_dir": str(directories.package),
            "build_dir": str(directories.build_dir(configuration.name)),
        }
        if descriptor.revision:
            dependency["revision"] = descriptor.revision
        return {
            "dependency": dependency,
            "configuration": {"name": configuration.name},
            "system": self.system(),
            "env": dict(self._settings.environment),
            "fetchdep": {
                "binary_dir": str(self._settings.binary_dir),
                "prefix": str(self._settings.prefix),
            },
        }


__all__ = [
    "ContextBuilder",
    "FAST_MODE_VARIABLE",
    "FetchSettings",
    "PREFIX_VARIABLE",
    "env_flag",
    "is_multi_config_generator",
]
