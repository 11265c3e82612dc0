"""
Tests for the worker loop that runs inside an isolated context
"""
from tachiyomi_runtime.config import RuntimeConfig
from tachiyomi_runtime.errors import ErrorCode
from tachiyomi_runtime.host import ExtensionHost
from tachiyomi_runtime.runtime.worker import Worker, serve


def run(messages, host_factory):
    """Feed messages through serve() and collect the replies"""
    inbox = list(messages) + [None]
    replies = []
    serve(lambda: inbox.pop(0), replies.append, host_factory, RuntimeConfig.in_thread())
    return replies


def test_replies_in_dispatch_order(stub_host):
    replies = run(
        [
            {"id": "c-1", "op": "load", "args": ["code", "stub"]},
            {"id": "c-2", "op": "get_popular_manga", "args": ["1", 1]},
            {"id": "c-3", "op": "get_popular_manga", "args": ["1", 2]},
        ],
        lambda config: stub_host,
    )

    assert [r["id"] for r in replies] == ["c-1", "c-2", "c-3"]
    assert all(r["ok"] for r in replies)
    assert replies[0]["data"] == [{"id": "1", "name": "Stub", "lang": "en"}]
    assert replies[2]["data"]["mangas"][0]["title"] == "Page 2"
    assert stub_host.loaded == ["stub"]
    assert stub_host.closed


def test_capability_before_load_is_host_load_error(stub_host):
    [reply] = run([{"id": "x", "op": "get_popular_manga", "args": ["1", 1]}], lambda config: stub_host)

    assert reply["ok"] is False
    assert reply["error"]["error"] == ErrorCode.HOST_LOAD_ERROR.value
    assert stub_host.calls == []


def test_unexpected_exceptions_become_internal_errors(stub_host):
    replies = run(
        [
            {"id": "a", "op": "load", "args": ["code"]},
            {"id": "b", "op": "get_popular_manga", "args": ["1", 13]},
            {"id": "c", "op": "get_popular_manga", "args": ["1", 2]},
        ],
        lambda config: stub_host,
    )

    assert replies[1]["ok"] is False
    assert replies[1]["error"]["error"] == ErrorCode.INTERNAL_ERROR.value
    assert "unlucky page" in replies[1]["error"]["message"]
    assert replies[2]["ok"] is True


def test_unknown_op(stub_host):
    [reply] = run([{"id": "u", "op": "format_disk", "args": []}], lambda config: stub_host)

    assert reply["ok"] is False
    assert reply["error"]["details"] == {"op": "format_disk"}


def test_load_without_sources_fails(make_stub_host):
    [reply] = run([{"id": "l", "op": "load", "args": ["code"]}], lambda config: make_stub_host(sources=False))

    assert reply["ok"] is False
    assert reply["error"]["error"] == ErrorCode.HOST_LOAD_ERROR.value
    assert "does not expose any sources" in reply["error"]["message"]


def test_preference_ops(stub_host):
    replies = run(
        [
            {"id": "p1", "op": "init_preferences", "args": ["prefs", {"a": 1}]},
            {"id": "p2", "op": "flush_pref_changes", "args": []},
        ],
        lambda config: stub_host,
    )

    assert replies[0] == {"id": "p1", "ok": True, "data": None}
    assert replies[1] == {"id": "p2", "ok": True, "data": []}
    assert stub_host.preferences.data("prefs") == {"a": 1}


def test_real_host_load_errors_are_reported(modules, fake_transport):
    worker = Worker(lambda config: ExtensionHost(transport=fake_transport, config=config), RuntimeConfig())

    reply = worker.dispatch({"id": "1", "op": "load", "args": [modules.two_markers, "two"]})

    assert reply["ok"] is False
    assert reply["error"]["error"] == ErrorCode.HOST_LOAD_ERROR.value
    assert reply["error"]["details"]["candidates"] == ["first", "second"]


def test_host_is_built_lazily():
    built = []
    worker = Worker(lambda config: built.append(config), RuntimeConfig())

    assert built == []
    worker.close()
    assert built == []

