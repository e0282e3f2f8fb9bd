"""Generation of re-executable configure and build scripts."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Sequence
import os
import shlex
import stat
import subprocess

from .descriptor import DeclaredConfiguration, DependencyDescriptor
from .environment import FetchSettings
from .fingerprints import BUILD_HASH, CONFIGURE_HASH, Field, FingerprintStore, content_digest, serialize_fields
from .layout import ProjectDirectories
from .packages import PackageList
from .template import TemplateResolver

PREFIX_PATH_VARIABLE = "CMAKE_PREFIX_PATH"

_POSIX_TEMPLATE = """#!/bin/sh
# {{step.title}} step for {{step.dependency}} ({{step.configuration}}).
# Generated by fetchdep; run this file to repeat the step by hand.
#
{{step.record}}
set -e
{{step.exports}}
cd {{step.cwd}}
exec {{step.command}}
"""

_WINDOWS_TEMPLATE = """@echo off
rem {{step.title}} step for {{step.dependency}} ({{step.configuration}}).
rem Generated by fetchdep; run this file to repeat the step by hand.
rem
{{step.record}}
{{step.exports}}
cd /d {{step.cwd}}
{{step.command}}
exit /b %ERRORLEVEL%
"""


class Step(str, Enum):
    CONFIGURE = "configure"
    BUILD = "build"

    @property
    def hash_name(self) -> str:
        return CONFIGURE_HASH if self is Step.CONFIGURE else BUILD_HASH


@dataclass(frozen=True, slots=True)
class BuildBackend:
    """Command lines for the external build system.

    ``multi_config`` is consulted in exactly two places: whether the
    configuration is injected as ``CMAKE_BUILD_TYPE`` at configure time or as
    ``--config`` at build time.
    """

    cmake: str = "cmake"
    generator: str | None = None
    multi_config: bool = False
    toolchain_file: Path | None = None

    @classmethod
    def from_settings(cls, settings: FetchSettings) -> "BuildBackend":
        return cls(
            cmake=settings.cmake,
            generator=settings.generator,
            multi_config=settings.multi_config,
            toolchain_file=settings.toolchain_file,
        )

    def configure_command(
        self,
        *,
        source_dir: Path,
        build_dir: Path,
        install_prefix: Path,
        configuration: str,
        options: Sequence[str],
    ) -> List[str]:
        command: List[str] = [self.cmake]
        if self.generator:
            command.extend(["-G", self.generator])
        command.extend(["-S", str(source_dir), "-B", str(build_dir)])
        command.append(f"-DCMAKE_INSTALL_PREFIX={install_prefix}")
        if self.toolchain_file is not None:
            command.append(f"-DCMAKE_TOOLCHAIN_FILE={self.toolchain_file}")
        if not self.multi_config:
            command.append(f"-DCMAKE_BUILD_TYPE={configuration}")
        command.extend(options)
        return command

    def build_command(self, *, build_dir: Path, configuration: str, options: Sequence[str]) -> List[str]:
        command: List[str] = [self.cmake, "--build", str(build_dir), "--target", "install"]
        if self.multi_config:
            command.extend(["--config", configuration])
        command.extend(options)
        return command


@dataclass(frozen=True, slots=True)
class StepRecord:
    """Everything that determines the content of one generated script."""

    step: Step
    dependency: str
    configuration: str
    working_dir: Path
    command: tuple[str, ...]
    environment: tuple[tuple[str, str], ...]

    def fields(self) -> List[Field]:
        fields: List[Field] = [
            ("step", self.step.value),
            ("dependency", self.dependency),
            ("configuration", self.configuration),
            ("cwd", str(self.working_dir)),
        ]
        fields.extend((f"env.{name}", value) for name, value in self.environment)
        fields.extend(("arg", argument) for argument in self.command)
        return fields


@dataclass(slots=True)
class GeneratedScript:
    step: Step
    record: StepRecord
    path: Path
    content: str
    digest: str
    previous_digest: str | None

    @property
    def changed(self) -> bool:
        return self.digest != self.previous_digest

    def invocation(self) -> List[str]:
        if self.path.suffix == ".bat":
            return ["cmd", "/c", str(self.path)]
        return ["sh", str(self.path)]


class StepScriptGenerator:
    """Materializes step scripts and reports whether their content changed."""

    def __init__(self, backend: BuildBackend, *, windows: bool | None = None) -> None:
        self.backend = backend
        self._windows = os.name == "nt" if windows is None else windows

    @property
    def suffix(self) -> str:
        return ".bat" if self._windows else ".sh"

    def record(
        self,
        *,
        step: Step,
        descriptor: DependencyDescriptor,
        configuration: DeclaredConfiguration,
        directories: ProjectDirectories,
        packages: PackageList,
    ) -> StepRecord:
        build_dir = directories.build_dir(configuration.name)
        if step is Step.CONFIGURE:
            source_dir = directories.source
            if descriptor.source_subdirectory:
                source_dir = source_dir / descriptor.source_subdirectory
            command = self.backend.configure_command(
                source_dir=source_dir,
                build_dir=build_dir,
                install_prefix=directories.package,
                configuration=configuration.name,
                options=configuration.configure_options,
            )
        else:
            command = self.backend.build_command(
                build_dir=build_dir,
                configuration=configuration.name,
                options=configuration.build_options,
            )
        return StepRecord(
            step=step,
            dependency=descriptor.name,
            configuration=configuration.name,
            working_dir=build_dir,
            command=tuple(command),
            environment=((PREFIX_PATH_VARIABLE, packages.joined()),),
        )

    def render(self, record: StepRecord) -> str:
        template = _WINDOWS_TEMPLATE if self._windows else _POSIX_TEMPLATE
        comment = "rem" if self._windows else "#"
        record_lines = "\n".join(f"{comment} {line}" for line in serialize_fields(record.fields()).splitlines())
        resolver = TemplateResolver(
            {
                "step": {
                    "title": record.step.value.capitalize(),
                    "dependency": record.dependency,
                    "configuration": record.configuration,
                    "record": record_lines,
                    "exports": self._exports(record.environment),
                    "cwd": self._quote([str(record.working_dir)]),
                    "command": self._quote(record.command),
                }
            }
        )
        return resolver.render(template)

    def generate(
        self,
        *,
        step: Step,
        descriptor: DependencyDescriptor,
        configuration: DeclaredConfiguration,
        directories: ProjectDirectories,
        packages: PackageList,
        store: FingerprintStore,
    ) -> GeneratedScript:
        record = self.record(
            step=step,
            descriptor=descriptor,
            configuration=configuration,
            directories=directories,
            packages=packages,
        )
        content = self.render(record)
        path = store.write_text(f"{step.value}{self.suffix}", content)
        if not self._windows:
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return GeneratedScript(
            step=step,
            record=record,
            path=path,
            content=content,
            digest=content_digest(content),
            previous_digest=store.read(step.hash_name),
        )

    def _quote(self, parts: Sequence[str]) -> str:
        if self._windows:
            return subprocess.list2cmdline(list(parts))
        return " ".join(shlex.quote(part) for part in parts)

    def _exports(self, environment: Sequence[tuple[str, str]]) -> str:
        lines: List[str] = []
        for name, value in environment:
            if self._windows:
                lines.append(f'set "{name}={value}"')
            else:
                lines.append(f"{name}={shlex.quote(value)}; export {name}")
        return "\n".join(lines)


__all__ = [
    "BuildBackend",
    "GeneratedScript",
    "PREFIX_PATH_VARIABLE",
    "Step",
    "StepRecord",
    "StepScriptGenerator",
]
