"""Command line interface for fetchdep."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import os
import sys

from .command_runner import CommandError, SubprocessCommandRunner
from .descriptor import DescriptorError
from .discovery import PackageNotFoundError
from .environment import FetchSettings
from .fingerprints import BUILD_HASH, CONFIGURE_HASH, REVISION_STAMP, SOURCE_STAMP, FingerprintStore
from .layout import ProjectDirectories
from .logger import setup_logging
from .orchestrator import FastModeError, FetchSession
from .store import ConfigurationStore, DependencyEntry

CONFIG_DIR_VARIABLE = "FETCHDEP_CONFIG_DIR"


def _split_config_values(values: Iterable[str]) -> List[str]:
    parts: List[str] = []
    for value in values:
        if not value:
            continue
        for segment in value.strip().split(os.pathsep):
            trimmed = segment.strip()
            if trimmed:
                parts.append(trimmed)
    return parts


def _config_directories(cli_values: Iterable[str]) -> List[Path]:
    """``./config``, then ``$FETCHDEP_CONFIG_DIR`` entries, then ``-C`` entries; later ones override."""

    entries = ["config"]
    entries.extend(_split_config_values([os.environ.get(CONFIG_DIR_VARIABLE, "")]))
    entries.extend(_split_config_values(cli_values))
    return [Path(entry).expanduser() for entry in entries]


def _load_configuration_store(args: Namespace, workspace: Path) -> ConfigurationStore:
    directories = _config_directories(getattr(args, "config_dirs", []))
    return ConfigurationStore.from_directories(workspace, directories)


def _split_names(values: Iterable[str]) -> List[str]:
    names: List[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part and part not in names:
                names.append(part)
    return names


def _workspace_path(workspace: Path, value: str | None) -> Path | None:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else workspace / path


def _make_settings(args: Namespace, store: ConfigurationStore, workspace: Path) -> FetchSettings:
    global_config = store.global_config
    binary_dir = _workspace_path(workspace, args.binary_dir) or workspace / "build"
    multi_config = args.multi_config if args.multi_config is not None else global_config.multi_config
    return FetchSettings.from_environment(
        binary_dir,
        prefix=_workspace_path(workspace, args.prefix or global_config.prefix),
        generator=args.generator or global_config.generator,
        multi_config=multi_config,
        toolchain_file=_workspace_path(workspace, args.toolchain_file or global_config.toolchain_file),
        fast=True if getattr(args, "fast", False) else None,
        default_configuration=global_config.default_configuration,
    )


def _add_location_arguments(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--binary-dir",
        metavar="PATH",
        help="Build output directory of the calling project (default: ./build)",
    )
    parser.add_argument(
        "--prefix",
        metavar="PATH",
        help="Root storage directory (default: $FETCH_DEPENDENCY_PREFIX or <binary-dir>/External)",
    )


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="fetchdep", description="Fetch, build and install project dependencies")
    parser.add_argument(
        "-C",
        "--config-dir",
        dest="config_dirs",
        action="append",
        default=[],
        metavar="PATH",
        help="Additional configuration directory (repeat or separate with PATH separator)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug output")
    parser.add_argument("--log-json", action="store_true", help="Emit log records as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch and build dependencies")
    fetch_parser.add_argument(
        "dependencies",
        nargs="*",
        metavar="DEPENDENCY",
        help="Dependencies to fetch (comma-separated allowed); omit to fetch all",
    )
    _add_location_arguments(fetch_parser)
    fetch_parser.add_argument("-G", "--generator", help="CMake generator to use")
    fetch_parser.add_argument(
        "--multi-config",
        dest="multi_config",
        action="store_true",
        help="Treat the generator as multi-configuration",
    )
    fetch_parser.add_argument(
        "--single-config",
        dest="multi_config",
        action="store_false",
        help="Treat the generator as single-configuration",
    )
    fetch_parser.add_argument("--toolchain-file", metavar="PATH", help="CMake toolchain file passed to every dependency")
    fetch_parser.add_argument(
        "--fast",
        action="store_true",
        help="Skip source and build checks for already processed dependencies",
    )
    fetch_parser.set_defaults(multi_config=None)

    subparsers.add_parser("list", help="List configured dependencies")

    status_parser = subparsers.add_parser("status", help="Show stored fingerprints of dependencies")
    status_parser.add_argument("dependencies", nargs="*", metavar="DEPENDENCY", help="Dependencies to inspect")
    _add_location_arguments(status_parser)

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(argv or sys.argv[1:])
    workspace = Path.cwd()

    try:
        store = _load_configuration_store(args, workspace)
    except (FileNotFoundError, KeyError, TypeError, ValueError) as exc:
        print(f"Error: {exc}")
        return 2

    global_config = store.global_config
    setup_logging(
        "debug" if args.verbose else global_config.log_level,
        log_file=_workspace_path(workspace, global_config.log_file),
        json_output=args.log_json,
    )

    if args.command == "fetch":
        return _handle_fetch(args, store, workspace)
    if args.command == "list":
        return _handle_list(store)
    if args.command == "status":
        return _handle_status(args, store, workspace)
    raise ValueError(f"Unknown command: {args.command}")


def _handle_fetch(args: Namespace, store: ConfigurationStore, workspace: Path) -> int:
    try:
        entries = store.resolve_order(_split_names(args.dependencies) or None)
    except (KeyError, ValueError) as exc:
        print(f"Error: {exc}")
        return 2

    settings = _make_settings(args, store, workspace)
    session = FetchSession(settings, SubprocessCommandRunner())
    rows: List[dict[str, str]] = []

    for entry in entries:
        try:
            descriptor = entry.descriptor(settings.prefix)
            for configuration in entry.configurations:
                session.declare_configuration(
                    entry.name,
                    configuration.name,
                    configure_options=configuration.configure_options,
                    build_options=configuration.build_options,
                    output_binding=configuration.output_binding,
                )
            result = session.fetch(descriptor)
        except DescriptorError as exc:
            print(f"Error: {exc}")
            return 2
        except (CommandError, FastModeError, FileNotFoundError, PackageNotFoundError) as exc:
            print(f"Error: {exc}")
            return 1

        steps = ", ".join(f"{step.value}:{configuration}" for configuration, step in result.steps) or "-"
        rows.append(
            {
                "Dependency": entry.name,
                "Commit": (result.commit or "-")[:12],
                "Steps": steps,
                "Package": str(result.package.location) if result.package else "-",
            }
        )

    if not rows:
        print("No dependencies found")
        return 0
    _print_table(["Dependency", "Commit", "Steps", "Package"], rows)
    print(f"Package list written to {settings.manifest_path}")
    return 0


def _source_display(entry: DependencyEntry) -> str:
    settings = entry.settings
    return str(settings.get("git_repository") or settings.get("local_source") or "-")


def _handle_list(store: ConfigurationStore) -> int:
    names = sorted(store.list_dependencies())
    if not names:
        print("No dependencies found")
        return 0

    rows: List[dict[str, str]] = []
    for name in names:
        entry = store.get_dependency(name)
        revision = entry.settings.get("git_revision") or entry.settings.get("git_tag") or "-"
        configurations = [configuration.name for configuration in entry.configurations]
        if not configurations:
            configurations = [str(entry.settings.get("configuration") or store.global_config.default_configuration)]
        rows.append(
            {
                "Dependency": name,
                "Source": _source_display(entry),
                "Revision": str(revision),
                "Configurations": ", ".join(configurations),
                "Requires": ", ".join(entry.requires) or "-",
            }
        )
    _print_table(["Dependency", "Source", "Revision", "Configurations", "Requires"], rows)
    return 0


def _handle_status(args: Namespace, store: ConfigurationStore, workspace: Path) -> int:
    settings = FetchSettings.from_environment(
        _workspace_path(workspace, args.binary_dir) or workspace / "build",
        prefix=_workspace_path(workspace, args.prefix or store.global_config.prefix),
        default_configuration=store.global_config.default_configuration,
    )
    names = _split_names(args.dependencies) or sorted(store.list_dependencies())

    rows: List[dict[str, str]] = []
    for name in names:
        try:
            entry = store.get_dependency(name)
            descriptor = entry.descriptor(settings.prefix)
            configurations = descriptor.resolve_configurations(
                entry.configurations, default=settings.default_configuration
            )
        except (KeyError, DescriptorError) as exc:
            print(f"Error: {exc}")
            return 2
        directories = ProjectDirectories.for_dependency(descriptor)
        fingerprints = FingerprintStore(directories.state)
        stamped = fingerprints.read(SOURCE_STAMP) is not None
        for configuration in configurations:
            config_store = fingerprints.child(configuration.name)
            rows.append(
                {
                    "Dependency": name,
                    "Configuration": configuration.name,
                    "State": "processed" if stamped else "pending",
                    "Commit": (fingerprints.read(REVISION_STAMP) or "-")[:12],
                    "Configure": (config_store.read(CONFIGURE_HASH) or "-")[:12],
                    "Build": (config_store.read(BUILD_HASH) or "-")[:12],
                }
            )

    if not rows:
        print("No dependencies found")
        return 0
    _print_table(["Dependency", "Configuration", "State", "Commit", "Configure", "Build"], rows)
    return 0


def _print_table(headers: List[str], rows: List[dict[str, str]]) -> None:
    widths = {header: len(header) for header in headers}
    for row in rows:
        for header in headers:
            widths[header] = max(widths[header], len(row.get(header, "")))

    def _format(row: dict[str, str]) -> str:
        return "  ".join(row.get(header, "").ljust(widths[header]) for header in headers).rstrip()

    print(_format({header: header for header in headers}))
    print("  ".join("-" * widths[header] for header in headers))
    for row in rows:
        print(_format(row))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
