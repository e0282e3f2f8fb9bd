"""Decide which steps a dependency needs and run them."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import logging

from .command_runner import CommandRunner, SubprocessCommandRunner
from .descriptor import DeclaredConfiguration, DependencyDescriptor, DescriptorError
from .discovery import CMakeConfigFinder, DiscoveredPackage, PackageDiscovery, PkgConfigFinder
from .environment import ContextBuilder, FetchSettings
from .fingerprints import (
    REVISION_STAMP,
    SOURCE_STAMP,
    STORAGE_STAMP,
    STORAGE_VERSION,
    FingerprintStore,
    serialize_fields,
)
from .git_manager import SourceSynchronizer
from .layout import ProjectDirectories
from .packages import PackageList, write_manifest
from .propagation import DependencyGraphPropagator
from .scripts import BuildBackend, GeneratedScript, Step, StepScriptGenerator
from .template import TemplateError, TemplateResolver

logger = logging.getLogger(__name__)


class FastModeError(RuntimeError):
    """Raised when fast mode is requested for a dependency that was never fully processed."""


class State(str, Enum):
    UNCHECKED = "unchecked"
    SOURCE_CHECKED = "source-checked"
    SCRIPTS_GENERATED = "scripts-generated"
    CONFIGURE_NEEDED = "configure-needed"
    CONFIGURE_SKIPPED = "configure-skipped"
    BUILD_NEEDED = "build-needed"
    BUILD_SKIPPED = "build-skipped"
    PROPAGATED = "propagated"
    STAMPED = "stamped"


@dataclass(slots=True)
class FetchResult:
    descriptor: DependencyDescriptor
    directories: ProjectDirectories
    packages: PackageList
    package: DiscoveredPackage | None = None
    inherited: List[DiscoveredPackage] = field(default_factory=list)
    commit: str | None = None
    reasons: List[str] = field(default_factory=list)
    steps: List[tuple[str, Step]] = field(default_factory=list)
    outputs: Dict[str, Path] = field(default_factory=dict)
    states: List[State] = field(default_factory=lambda: [State.UNCHECKED])

    @property
    def source_dir(self) -> Path:
        return self.directories.source

    def ran(self, step: Step, configuration: str | None = None) -> bool:
        return any(
            entry_step is step and (configuration is None or entry_config == configuration)
            for entry_config, entry_step in self.steps
        )


@dataclass(slots=True)
class _PendingStamp:
    store: FingerprintStore
    configure: GeneratedScript
    build: GeneratedScript


class DependencyFetcher:
    """Processes one dependency per call: sync, configure, build, discover, stamp.

    Fingerprints are only written once every step of the pass has succeeded,
    so an interrupted or failed run is retried in full next time.
    """

    def __init__(
        self,
        settings: FetchSettings,
        runner: CommandRunner,
        *,
        discovery: PackageDiscovery | None = None,
        synchronizer: SourceSynchronizer | None = None,
        generator: StepScriptGenerator | None = None,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._synchronizer = synchronizer or SourceSynchronizer(runner, git=settings.git)
        self._generator = generator or StepScriptGenerator(BuildBackend.from_settings(settings))
        if discovery is None:
            discovery = PackageDiscovery(CMakeConfigFinder(), PkgConfigFinder(runner))
        self._propagator = DependencyGraphPropagator(discovery)
        self._contexts = ContextBuilder(settings)

    def fetch(
        self,
        descriptor: DependencyDescriptor,
        packages: PackageList | None = None,
        configurations: Sequence[DeclaredConfiguration] = (),
    ) -> FetchResult:
        descriptor.validate()
        packages = packages if packages is not None else PackageList()
        directories = ProjectDirectories.for_dependency(descriptor)
        declared = descriptor.resolve_configurations(
            configurations, default=self._settings.default_configuration
        )
        resolved = self._resolve_placeholders(descriptor, directories, declared)
        store = FingerprintStore(directories.state)
        source_stamp = serialize_fields(descriptor.source_stamp_fields())
        result = FetchResult(descriptor=descriptor, directories=directories, packages=packages)

        logger.info("-- Checking dependency %s", descriptor.name)
        if self._settings.fast:
            self._fetch_fast(descriptor, directories, resolved, store, result)
        else:
            self._fetch_full(descriptor, directories, resolved, store, source_stamp, result)
        write_manifest(self._settings.manifest_path, result.packages)
        logger.info("-- Checking dependency %s - done", descriptor.name)
        return result

    def _fetch_fast(
        self,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configurations: List[DeclaredConfiguration],
        store: FingerprintStore,
        result: FetchResult,
    ) -> None:
        if store.read(SOURCE_STAMP) is None:
            raise FastModeError(
                f"Fast mode is enabled but '{descriptor.name}' has never been fully processed in "
                f"{directories.project}; run once without fast mode first"
            )
        logger.info("   Fast mode: skipping source and build checks.")
        result.commit = store.read(REVISION_STAMP)
        self._propagate(descriptor, directories, configurations, result)

    def _fetch_full(
        self,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configurations: List[DeclaredConfiguration],
        store: FingerprintStore,
        source_stamp: str,
        result: FetchResult,
    ) -> None:
        self._prepare_storage(directories, store, source_stamp)

        sync = self._synchronizer.sync(descriptor, directories.source)
        result.commit = sync.commit
        result.states.append(State.SOURCE_CHECKED)
        if sync.commit:
            logger.info("   HEAD is at %s.", sync.commit)
        if sync.reason:
            result.reasons.append(sync.reason)
        previous_commit = store.read(REVISION_STAMP)
        if sync.commit and sync.commit != previous_commit and not sync.reason:
            result.reasons.append(f"the previous HEAD was {previous_commit or 'n/a'}")

        pending: List[_PendingStamp] = []
        if descriptor.fetch_only:
            logger.info("   Fetch only; skipping configure and build.")
        else:
            for configuration in configurations:
                pending.append(self._process_configuration(descriptor, directories, configuration, store, result))

        self._propagate(descriptor, directories, configurations, result)
        self._commit(store, pending, source_stamp=source_stamp, commit=sync.commit)
        result.states.append(State.STAMPED)

    def _prepare_storage(self, directories: ProjectDirectories, store: FingerprintStore, source_stamp: str) -> None:
        if not directories.project.exists():
            logger.info("   First run; creating %s.", directories.project)
        elif store.read(SOURCE_STAMP) != source_stamp:
            logger.info("   Rebuilding from scratch because the source location changed.")
            directories.wipe_project()
        elif store.read(STORAGE_STAMP) != STORAGE_VERSION:
            logger.info("   Discarding build outputs because the storage version changed.")
            directories.wipe_outputs()
            # Source survived, so its stamp stays valid even if this pass fails.
            store.write(SOURCE_STAMP, source_stamp)
        directories.project.mkdir(parents=True, exist_ok=True)

    def _process_configuration(
        self,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configuration: DeclaredConfiguration,
        store: FingerprintStore,
        result: FetchResult,
    ) -> _PendingStamp:
        config_store = store.child(configuration.name)
        scripts = {
            step: self._generator.generate(
                step=step,
                descriptor=descriptor,
                configuration=configuration,
                directories=directories,
                packages=result.packages,
                store=config_store,
            )
            for step in (Step.CONFIGURE, Step.BUILD)
        }
        configure, build = scripts[Step.CONFIGURE], scripts[Step.BUILD]
        result.states.append(State.SCRIPTS_GENERATED)

        # Build also runs after every configure.
        reasons = list(result.reasons)
        if configure.changed or build.changed:
            reasons.append("the dependency options have changed")
            result.states.append(State.CONFIGURE_NEEDED)
            logger.info("   Configuring %s because the dependency options have changed.", configuration.name)
            self._run_step(descriptor, configuration, configure, result)
        else:
            result.states.append(State.CONFIGURE_SKIPPED)

        if reasons:
            result.states.append(State.BUILD_NEEDED)
            logger.info("   Building %s because %s.", configuration.name, "; ".join(reasons))
            self._run_step(descriptor, configuration, build, result)
        else:
            result.states.append(State.BUILD_SKIPPED)
            logger.info("   %s is up to date.", configuration.name)

        if configuration.output_binding:
            result.outputs[configuration.output_binding] = directories.build_dir(configuration.name)
        return _PendingStamp(store=config_store, configure=configure, build=build)

    def _run_step(
        self,
        descriptor: DependencyDescriptor,
        configuration: DeclaredConfiguration,
        script: GeneratedScript,
        result: FetchResult,
    ) -> None:
        working_dir = script.record.working_dir
        working_dir.mkdir(parents=True, exist_ok=True)
        self._runner.run(
            script.invocation(),
            cwd=working_dir,
            note=f"{script.step.value} {descriptor.name} ({configuration.name})",
        )
        result.steps.append((configuration.name, script.step))

    def _propagate(
        self,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configurations: Iterable[DeclaredConfiguration],
        result: FetchResult,
    ) -> None:
        propagation = self._propagator.propagate(
            descriptor,
            directories,
            configurations,
            result.packages,
            required=not descriptor.fetch_only,
        )
        result.packages = propagation.packages
        result.package = propagation.package
        result.inherited = propagation.inherited
        result.states.append(State.PROPAGATED)

    @staticmethod
    def _commit(
        store: FingerprintStore,
        pending: Iterable[_PendingStamp],
        *,
        source_stamp: str,
        commit: str | None,
    ) -> None:
        for entry in pending:
            entry.store.write(entry.configure.step.hash_name, entry.configure.digest)
            entry.store.write(entry.build.step.hash_name, entry.build.digest)
        if commit:
            store.write(REVISION_STAMP, commit)
        store.write(STORAGE_STAMP, STORAGE_VERSION)
        store.write(SOURCE_STAMP, source_stamp)

    def _resolve_placeholders(
        self,
        descriptor: DependencyDescriptor,
        directories: ProjectDirectories,
        configurations: Iterable[DeclaredConfiguration],
    ) -> List[DeclaredConfiguration]:
        resolved: List[DeclaredConfiguration] = []
        for configuration in configurations:
            resolver = TemplateResolver(
                self._contexts.for_configuration(
                    descriptor=descriptor,
                    directories=directories,
                    configuration=configuration,
                )
            )
            try:
                configure_options = resolver.resolve(list(configuration.configure_options))
                build_options = resolver.resolve(list(configuration.build_options))
            except TemplateError as exc:
                raise DescriptorError(
                    f"Dependency '{descriptor.name}' ({configuration.name}): {exc}"
                ) from exc
            resolved.append(
                DeclaredConfiguration(
                    name=configuration.name,
                    configure_options=tuple(str(option) for option in configure_options),
                    build_options=tuple(str(option) for option in build_options),
                    output_binding=configuration.output_binding,
                )
            )
        return resolved


class FetchSession:
    """Caller-side context threading the accumulated package list through a run.

    Configurations declared with :meth:`declare_configuration` are consumed by
    the next :meth:`fetch` of that dependency.
    """

    def __init__(
        self,
        settings: FetchSettings,
        runner: CommandRunner | None = None,
        *,
        fetcher: DependencyFetcher | None = None,
        packages: Iterable[Path | str] = (),
    ) -> None:
        self.settings = settings
        self.runner = runner or SubprocessCommandRunner()
        self.fetcher = fetcher or DependencyFetcher(settings, self.runner)
        self.packages = PackageList(packages)
        self.results: Dict[str, FetchResult] = {}
        self._declarations: Dict[str, List[DeclaredConfiguration]] = {}

    def declare_configuration(
        self,
        dependency: str,
        name: str,
        *,
        configure_options: Sequence[str] = (),
        build_options: Sequence[str] = (),
        output_binding: str | None = None,
    ) -> DeclaredConfiguration:
        configuration = DeclaredConfiguration(
            name=name,
            configure_options=tuple(configure_options),
            build_options=tuple(build_options),
            output_binding=output_binding,
        )
        self._declarations.setdefault(dependency, []).append(configuration)
        return configuration

    def describe(self, name: str, **options: Any) -> DependencyDescriptor:
        """Build a descriptor from keyword options, translating deprecated names."""
        data: Mapping[str, Any] = {"name": name, **options}
        return DependencyDescriptor.from_mapping(data, root=self.settings.prefix)

    def fetch(self, descriptor: DependencyDescriptor) -> FetchResult:
        configurations = self._declarations.pop(descriptor.name, [])
        result = self.fetcher.fetch(descriptor, self.packages, configurations)
        self.packages = result.packages
        self.results[descriptor.name] = result
        return result

    def fetch_dependency(self, name: str, **options: Any) -> FetchResult:
        return self.fetch(self.describe(name, **options))


__all__ = [
    "DependencyFetcher",
    "FastModeError",
    "FetchResult",
    "FetchSession",
    "State",
]
