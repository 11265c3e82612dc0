"""
Tests for isolated namespaces and generated-exports discovery
"""
import pytest

from tachiyomi_runtime.errors import HostLoadError
from tachiyomi_runtime.host import IsolatedNamespace, find_generated_exports, generated_exports_of


class TestIsolatedNamespace:
    def test_each_namespace_is_fresh(self):
        first = IsolatedNamespace("a")
        second = IsolatedNamespace("b")

        first.execute("counter = 1")
        second.execute("counter = 2")

        assert first.globals["counter"] == 1
        assert second.globals["counter"] == 2
        assert first.module_name != second.module_name

    def test_installed_names_are_visible_but_not_bindings(self):
        ns = IsolatedNamespace()
        ns.install("helper", lambda: 41)

        ns.execute("answer = helper() + 1")

        assert ns.globals["answer"] == 42
        assert ns.is_installed("helper")
        assert ns.bindings() == {"answer": 42}

    def test_execute_accepts_bytes(self):
        ns = IsolatedNamespace()
        ns.execute(b"value = 'ok'")
        assert ns.globals["value"] == "ok"

    def test_execution_errors_become_host_load_errors(self):
        ns = IsolatedNamespace("bad")

        with pytest.raises(HostLoadError, match="boom") as exc_info:
            ns.execute("raise ValueError('boom')")

        assert exc_info.value.details == {"exception": "ValueError"}
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_syntax_errors_become_host_load_errors(self):
        with pytest.raises(HostLoadError):
            IsolatedNamespace().execute("def broken(:")

    def test_disposed_namespace_rejects_code(self):
        ns = IsolatedNamespace()
        ns.execute("x = 1")
        ns.dispose()

        assert ns.globals == {}
        with pytest.raises(HostLoadError, match="disposed"):
            ns.execute("y = 2")


class TestFindGeneratedExports:
    def run(self, code: str):
        ns = IsolatedNamespace()
        ns.execute(code)
        return find_generated_exports(ns)

    def test_attribute_marker(self):
        exports = self.run(
            "from types import SimpleNamespace\n"
            "def getManifest(): return '{}'\n"
            "ext = SimpleNamespace(tachiyomi=SimpleNamespace(generated=SimpleNamespace(getManifest=getManifest)))\n"
        )
        assert exports.getManifest() == "{}"

    def test_mapping_marker(self):
        exports = self.run("module = {'tachiyomi': {'generated': {'getManifest': lambda: 'm'}}}")
        assert exports["getManifest"]() == "m"

    def test_same_marker_under_two_names_is_not_ambiguous(self):
        exports = self.run(
            "generated = {'getManifest': lambda: 'm'}\n"
            "a = {'tachiyomi': {'generated': generated}}\n"
            "b = a\n"
        )
        assert exports["getManifest"]() == "m"

    def test_missing_marker(self, modules):
        with pytest.raises(HostLoadError, match="could not find tachiyomi.generated"):
            self.run(modules.no_marker)

    def test_two_markers_are_ambiguous(self, modules):
        with pytest.raises(HostLoadError, match="Ambiguous") as exc_info:
            self.run(modules.two_markers)

        assert exc_info.value.details == {"candidates": ["first", "second"]}

    def test_marker_without_get_manifest(self):
        with pytest.raises(HostLoadError, match="no getManifest"):
            self.run("ext = {'tachiyomi': {'generated': {'getPopularManga': print}}}")


def test_generated_exports_of_tolerates_odd_objects():
    class Exploding:
        def __getattr__(self, name):
            raise RuntimeError(name)

    assert generated_exports_of(Exploding()) is None
    assert generated_exports_of(None) is None
    assert generated_exports_of({"tachiyomi": None}) is None
