"""Fetch, build and install CMake dependencies with incremental rebuilds."""
from .command_runner import CommandError, CommandResult, CommandRunner, SubprocessCommandRunner
from .descriptor import DeclaredConfiguration, DependencyDescriptor, DescriptorError, SourceMode
from .discovery import DiscoveredPackage, PackageDiscovery, PackageNotFoundError
from .environment import FetchSettings
from .orchestrator import DependencyFetcher, FastModeError, FetchResult, FetchSession
from .packages import PackageList

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "DeclaredConfiguration",
    "DependencyDescriptor",
    "DependencyFetcher",
    "DescriptorError",
    "DiscoveredPackage",
    "FastModeError",
    "FetchResult",
    "FetchSession",
    "FetchSettings",
    "PackageDiscovery",
    "PackageList",
    "PackageNotFoundError",
    "SourceMode",
    "SubprocessCommandRunner",
]
