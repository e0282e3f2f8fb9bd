from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from fetchdep.command_runner import CommandError
from fetchdep.descriptor import DeclaredConfiguration, DependencyDescriptor, DescriptorError
from fetchdep.discovery import PackageNotFoundError
from fetchdep.environment import FetchSettings
from fetchdep.fingerprints import REVISION_STAMP, SOURCE_STAMP, STORAGE_STAMP, STORAGE_VERSION, FingerprintStore
from fetchdep.layout import ProjectDirectories
from fetchdep.orchestrator import DependencyFetcher, FastModeError, FetchSession, State
from fetchdep.packages import PackageList, read_manifest
from fetchdep.scripts import Step

from tests.helpers import FakeToolchain, install_config

LIB_URL = "https://example.com/lib.git"
APP_URL = "https://example.com/app.git"

CONFIGURE = Step.CONFIGURE
BUILD = Step.BUILD


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.binary_dir = self.root / "build"
        self.settings = FetchSettings.from_environment(self.binary_dir, env={}, prefix=self.root / "External")
        self.runner = FakeToolchain()
        self.remote = self.runner.add_remote(LIB_URL, main="c1", develop="d1")
        self.fetcher = DependencyFetcher(self.settings, self.runner)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def descriptor(self, **overrides) -> DependencyDescriptor:
        data = {"name": "Lib", "git_repository": LIB_URL, "git_revision": "c1"}
        data.update(overrides)
        return DependencyDescriptor.from_mapping(data, root=self.settings.prefix)

    def directories(self, name: str = "Lib") -> ProjectDirectories:
        return ProjectDirectories.for_dependency(self.descriptor(name=name))

    def state(self, name: str = "Lib") -> FingerprintStore:
        return FingerprintStore(self.directories(name).state)

    def rerun(self, descriptor: DependencyDescriptor | None = None, configurations=(), fetcher=None):
        self.runner.commands.clear()
        self.runner.steps.clear()
        return (fetcher or self.fetcher).fetch(descriptor or self.descriptor(), PackageList(), configurations)


class FirstRunTests(OrchestratorTestCase):
    def test_first_run_builds_installs_and_stamps(self) -> None:
        result = self.fetcher.fetch(self.descriptor())
        directories = self.directories()

        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])
        self.assertEqual(result.commit, "c1")
        assert result.package is not None
        self.assertEqual(result.package.name, "Lib")
        self.assertEqual(list(result.packages), [directories.package])
        self.assertEqual(read_manifest(self.settings.manifest_path), [directories.package])

        state = self.state()
        self.assertEqual(state.read(REVISION_STAMP), "c1")
        self.assertEqual(state.read(STORAGE_STAMP), STORAGE_VERSION)
        self.assertIsNotNone(state.read(SOURCE_STAMP))
        self.assertIsNotNone(state.child("Release").read(CONFIGURE.hash_name))
        self.assertIsNotNone(state.child("Release").read(BUILD.hash_name))
        self.assertEqual(
            result.states,
            [
                State.UNCHECKED,
                State.SOURCE_CHECKED,
                State.SCRIPTS_GENERATED,
                State.CONFIGURE_NEEDED,
                State.BUILD_NEEDED,
                State.PROPAGATED,
                State.STAMPED,
            ],
        )

    def test_progress_messages(self) -> None:
        with self.assertLogs("fetchdep", level="INFO") as logs:
            self.fetcher.fetch(self.descriptor())
        output = "\n".join(logs.output)
        self.assertIn("-- Checking dependency Lib", output)
        self.assertIn("HEAD is at c1.", output)
        self.assertIn("Building Release because source was cloned", output)
        self.assertIn("-- Checking dependency Lib - done", output)

    def test_option_placeholders_are_resolved_before_hashing(self) -> None:
        self.fetcher.fetch(self.descriptor(configure_options=["-DLIB_SOURCE={{dependency.source_dir}}"]))
        script = (self.directories().state_dir("Release") / "configure.sh").read_text()
        self.assertIn(f"-DLIB_SOURCE={self.directories().source}", script)

    def test_unresolvable_placeholder_is_a_usage_error(self) -> None:
        with self.assertRaises(DescriptorError) as ctx:
            self.fetcher.fetch(self.descriptor(configure_options=["-DX={{env.FETCHDEP_UNSET}}"]))
        self.assertIn("env.FETCHDEP_UNSET", str(ctx.exception))
        self.assertEqual(self.runner.commands, [])

    def test_output_bindings(self) -> None:
        result = self.fetcher.fetch(
            self.descriptor(),
            configurations=[
                DeclaredConfiguration(name="Debug", output_binding="LIB_DEBUG_DIR"),
                DeclaredConfiguration(name="Release"),
            ],
        )
        self.assertEqual(result.outputs, {"LIB_DEBUG_DIR": self.directories().build_dir("Debug")})


class IncrementalTests(OrchestratorTestCase):
    def test_second_run_is_idempotent(self) -> None:
        self.fetcher.fetch(self.descriptor())
        result = self.rerun()

        self.assertEqual(result.steps, [])
        self.assertEqual(result.reasons, [])
        self.assertEqual(self.runner.steps, [])
        self.assertNotIn("checkout", [part for command in self.runner.git_commands() for part in command])
        self.assertIn(State.CONFIGURE_SKIPPED, result.states)
        self.assertIn(State.BUILD_SKIPPED, result.states)
        assert result.package is not None

    def test_option_change_only_touches_its_configuration(self) -> None:
        configurations = [
            DeclaredConfiguration(name="Debug", configure_options=("-DFOO=1",)),
            DeclaredConfiguration(name="Release", configure_options=("-DFOO=1",)),
        ]
        first = self.fetcher.fetch(self.descriptor(), configurations=configurations)
        self.assertEqual(len(first.steps), 4)

        changed = [
            DeclaredConfiguration(name="Debug", configure_options=("-DFOO=1",)),
            DeclaredConfiguration(name="Release", configure_options=("-DFOO=2",)),
        ]
        result = self.rerun(configurations=changed)

        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])

    def test_build_option_change_reconfigures(self) -> None:
        self.fetcher.fetch(self.descriptor(build_options=["-j2"]))
        result = self.rerun(self.descriptor(build_options=["-j4"]))
        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])

    def test_revision_change_builds_without_reconfiguring(self) -> None:
        self.fetcher.fetch(self.descriptor())
        self.remote.branches["main"] = "c2"

        result = self.rerun(self.descriptor(git_revision="c2"))

        self.assertEqual(result.steps, [("Release", BUILD)])
        self.assertEqual(result.commit, "c2")
        self.assertEqual(self.state().read(REVISION_STAMP), "c2")

    def test_interrupted_run_after_checkout_rebuilds(self) -> None:
        self.fetcher.fetch(self.descriptor())
        self.state().write(REVISION_STAMP, "c0")

        result = self.rerun()

        self.assertEqual(result.steps, [("Release", BUILD)])
        self.assertIn("the previous HEAD was c0", result.reasons)

    def test_failed_step_writes_no_fingerprints_and_retries(self) -> None:
        self.runner.failing_steps.add(("Lib", "build"))
        with self.assertRaises(CommandError):
            self.fetcher.fetch(self.descriptor())
        state = self.state()
        self.assertIsNone(state.read(SOURCE_STAMP))
        self.assertIsNone(state.read(REVISION_STAMP))
        self.assertIsNone(state.child("Release").read(CONFIGURE.hash_name))

        self.runner.failing_steps.clear()
        result = self.rerun()

        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])
        self.assertEqual(self.runner.git_commands()[0][1], "clone")

    def test_missing_package_is_fatal_and_unstamped(self) -> None:
        self.runner.skip_install.add("Lib")
        with self.assertRaises(PackageNotFoundError):
            self.fetcher.fetch(self.descriptor())
        self.assertIsNone(self.state().read(SOURCE_STAMP))

    def test_nested_directory_without_packages_is_fatal(self) -> None:
        empty = self.root / "nested" / "Empty"
        empty.mkdir(parents=True)
        self.runner.nested_manifests["Lib"] = [empty]
        with self.assertRaises(PackageNotFoundError) as ctx:
            self.fetcher.fetch(self.descriptor())
        self.assertIn(str(empty), str(ctx.exception))
        self.assertIsNone(self.state().read(SOURCE_STAMP))


class InvalidationTests(OrchestratorTestCase):
    def test_source_location_change_discards_project(self) -> None:
        self.runner.add_remote("https://example.com/fork.git", main="f1")
        self.fetcher.fetch(self.descriptor())
        marker = self.directories().build / "marker"
        marker.write_text("stale")

        result = self.rerun(self.descriptor(git_repository="https://example.com/fork.git", git_revision="f1"))

        self.assertFalse(marker.exists())
        self.assertEqual(self.runner.git_commands()[0][:2], ["git", "clone"])
        self.assertEqual(result.commit, "f1")
        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])

    def test_storage_version_change_keeps_source(self) -> None:
        self.fetcher.fetch(self.descriptor())
        self.state().write(STORAGE_STAMP, "0")
        marker = self.directories().package / "marker"
        marker.write_text("stale")

        result = self.rerun()

        self.assertFalse(marker.exists())
        self.assertNotIn("clone", [command[1] for command in self.runner.git_commands()])
        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])
        self.assertEqual(self.state().read(STORAGE_STAMP), STORAGE_VERSION)

    def test_failed_pass_after_storage_change_keeps_local_edits(self) -> None:
        self.fetcher.fetch(self.descriptor())
        source = self.directories().source
        patch_file = source / "my_local_patch.cpp"
        patch_file.write_text("int patched;\n")
        self.runner.clone_at(source).dirty = True
        self.state().write(STORAGE_STAMP, "0")
        self.runner.failing_steps.add(("Lib", "build"))
        with self.assertRaises(CommandError):
            self.rerun()
        self.assertIsNotNone(self.state().read(SOURCE_STAMP))

        self.runner.failing_steps.clear()
        result = self.rerun()

        self.assertTrue(patch_file.is_file())
        self.assertNotIn("clone", [command[1] for command in self.runner.git_commands()])
        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])
        self.assertIn("local modifications", result.reasons)

    def test_dirty_tree_is_never_updated_but_rebuilt(self) -> None:
        self.fetcher.fetch(self.descriptor())
        clone = self.runner.clone_at(self.directories().source)
        clone.dirty = True

        result = self.rerun(self.descriptor(git_revision="origin/develop"))

        self.assertEqual(clone.head, "c1")
        self.assertEqual(result.steps, [("Release", BUILD)])
        self.assertIn("local modifications", result.reasons)
        self.assertNotIn("fetch", [command[1] for command in self.runner.git_commands()])


class ModeTests(OrchestratorTestCase):
    def test_local_source_always_builds(self) -> None:
        local = self.root / "lib-src"
        local.mkdir()
        descriptor = DependencyDescriptor.from_mapping(
            {"name": "Lib", "local_source": str(local)}, root=self.settings.prefix
        )

        first = self.fetcher.fetch(descriptor)
        second = self.rerun(descriptor)

        self.assertEqual(first.steps, [("Release", CONFIGURE), ("Release", BUILD)])
        self.assertEqual(second.steps, [("Release", BUILD)])
        self.assertEqual(self.runner.git_commands(), [])
        self.assertTrue(local.exists())
        self.assertIsNone(self.state().read(REVISION_STAMP))

    def test_local_source_change_keeps_user_directory(self) -> None:
        local = self.root / "lib-src"
        local.mkdir()
        self.fetcher.fetch(self.descriptor())
        descriptor = DependencyDescriptor.from_mapping(
            {"name": "Lib", "local_source": str(local)}, root=self.settings.prefix
        )

        result = self.rerun(descriptor)

        self.assertTrue(local.exists())
        self.assertFalse(self.directories().project.joinpath("Source").exists())
        self.assertEqual(result.steps, [("Release", CONFIGURE), ("Release", BUILD)])

    def test_fetch_only(self) -> None:
        result = self.fetcher.fetch(self.descriptor(fetch_only=True))

        self.assertEqual(result.steps, [])
        self.assertEqual(self.runner.steps, [])
        self.assertIsNone(result.package)
        self.assertEqual(result.commit, "c1")
        self.assertEqual(self.state().read(REVISION_STAMP), "c1")
        self.assertTrue((self.directories().source / "CMakeLists.txt").exists())

    def test_fast_mode_requires_previous_run(self) -> None:
        fast_settings = FetchSettings.from_environment(
            self.binary_dir, env={"FETCH_DEPENDENCY_FAST": "1"}, prefix=self.settings.prefix
        )
        fast = DependencyFetcher(fast_settings, self.runner)
        with self.assertRaises(FastModeError):
            fast.fetch(self.descriptor())

        self.fetcher.fetch(self.descriptor())
        self.remote.branches["main"] = "c2"
        result = self.rerun(self.descriptor(git_revision="c2"), fetcher=fast)

        self.assertEqual(self.runner.commands, [])
        self.assertEqual(result.steps, [])
        self.assertEqual(result.commit, "c1")
        assert result.package is not None
        self.assertEqual(read_manifest(self.settings.manifest_path), [self.directories().package])


class SessionTests(OrchestratorTestCase):
    def test_option_change_through_session(self) -> None:
        def run(option: str) -> None:
            self.runner.steps.clear()
            session = FetchSession(self.settings, self.runner)
            session.fetch_dependency("Lib", git_repository=LIB_URL, git_revision="c1", configure_options=[option])

        run("-DFOO=1")
        run("-DFOO=1")
        self.assertEqual(self.runner.steps, [])

        run("-DFOO=2")
        self.assertEqual(self.runner.steps, [("Lib", "Release", "configure"), ("Lib", "Release", "build")])

    def test_declarations_are_consumed_once(self) -> None:
        session = FetchSession(self.settings, self.runner)
        session.declare_configuration("Lib", "Debug", configure_options=["-DDEBUG=1"])
        session.declare_configuration("Lib", "Release")

        first = session.fetch(self.descriptor())
        self.assertEqual({configuration for configuration, _ in first.steps}, {"Debug", "Release"})

        second = session.fetch(self.descriptor())
        self.assertEqual({configuration for configuration, _ in second.steps}, {"Release"})
        self.assertIs(session.results["Lib"], second)

    def test_deprecated_names_are_accepted(self) -> None:
        session = FetchSession(self.settings, self.runner)
        with self.assertLogs("fetchdep.descriptor", level="WARNING"):
            result = session.fetch_dependency("Lib", git_repository=LIB_URL, git_tag="c1", generate_options=["-DX=1"])
        self.assertEqual(result.descriptor.revision, "c1")
        self.assertEqual(result.descriptor.configure_options, ("-DX=1",))

    def test_transitive_packages_reach_later_dependencies(self) -> None:
        nested = self.root / "nested" / "Zlib"
        install_config(nested, "Zlib")
        self.runner.nested_manifests["Lib"] = [nested]
        self.runner.add_remote(APP_URL, main="a1")
        session = FetchSession(self.settings, self.runner)

        lib = session.fetch_dependency("Lib", git_repository=LIB_URL, git_revision="c1")
        self.assertEqual(list(lib.packages), [nested, self.directories("Lib").package])
        assert lib.package is not None
        self.assertEqual(lib.package.name, "Lib")
        self.assertEqual([package.name for package in lib.inherited], ["Zlib"])
        self.assertEqual(lib.inherited[0].location, nested / "lib" / "cmake" / "Zlib" / "ZlibConfig.cmake")

        session.fetch_dependency("App", git_repository=APP_URL, git_revision="a1")
        app_script = (self.directories("App").state_dir("Release") / "configure.sh").read_text()
        expected = PackageList([nested, self.directories("Lib").package]).joined()
        self.assertIn(f"CMAKE_PREFIX_PATH={expected}; export CMAKE_PREFIX_PATH", app_script)
        self.assertEqual(
            read_manifest(self.settings.manifest_path),
            [nested, self.directories("Lib").package, self.directories("App").package],
        )

    def test_upstream_package_change_rebuilds_dependents(self) -> None:
        self.runner.add_remote(APP_URL, main="a1")
        session = FetchSession(self.settings, self.runner, packages=[self.root / "first"])
        session.fetch_dependency("App", git_repository=APP_URL, git_revision="a1")

        self.runner.steps.clear()
        moved = FetchSession(self.settings, self.runner, packages=[self.root / "second"])
        moved.fetch_dependency("App", git_repository=APP_URL, git_revision="a1")

        self.assertEqual(self.runner.steps, [("App", "Release", "configure"), ("App", "Release", "build")])


if __name__ == "__main__":
    unittest.main()
