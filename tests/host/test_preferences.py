"""
Tests for SharedPreferences exposed to extensions
"""
from tachiyomi_runtime.host import PreferenceStore


def test_typed_getters_fall_back_on_type_mismatch():
    store = PreferenceStore()
    store.init("source_1", {"name": "x", "flag": True, "count": 3.9, "tags": ["a", "b"]})
    prefs = store.get_shared_preferences("source_1")

    assert prefs.get_string("name") == "x"
    assert prefs.get_string("flag", "default") == "default"
    assert prefs.get_boolean("flag") is True
    assert prefs.get_boolean("name", True) is True
    assert prefs.get_int("count") == 3
    assert prefs.get_long("flag", 7) == 7
    assert prefs.get_float("count") == 3.9
    assert prefs.get_string_set("tags") == ["a", "b"]
    assert prefs.get_string_set("missing") is None
    assert prefs.contains("tags")
    assert not prefs.contains("missing")


def test_edits_apply_on_commit_and_are_recorded():
    store = PreferenceStore()
    store.init("p", {"old": 1, "keep": "k"})
    prefs = store.get_shared_preferences("p")

    editor = prefs.edit().put_string("title", "t").put_int("n", 5).remove("old")
    assert prefs.get_all() == {"old": 1, "keep": "k"}

    assert editor.commit() is True
    assert prefs.get_all() == {"keep": "k", "title": "t", "n": 5}
    assert store.flush_changes() == [
        {"name": "p", "key": "title", "value": "t"},
        {"name": "p", "key": "n", "value": 5},
        {"name": "p", "key": "old", "value": None},
    ]
    assert store.flush_changes() == []


def test_clear_and_null_puts_remove_keys():
    store = PreferenceStore()
    store.init("p", {"a": 1, "b": 2})
    prefs = store.get_shared_preferences("p")

    prefs.edit().clear().apply()
    assert prefs.get_all() == {}

    prefs.edit().put_string_set("s", {"x"}).apply()
    prefs.edit().put_string_set("s", None).apply()
    assert not prefs.contains("s")


def test_stores_are_independent_and_init_replaces():
    store = PreferenceStore()
    store.get_shared_preferences("a").edit().put_boolean("on", True).apply()

    assert store.get_shared_preferences("b").get_all() == {}

    store.init("a", {"fresh": 1})
    assert store.get_shared_preferences("a").get_all() == {"fresh": 1}
