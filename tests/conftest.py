"""
Pytest configuration for tachiyomi-runtime tests

Shared extension module code, manifests and stub transports.
"""
import json
import time
from types import SimpleNamespace

import pytest

from tachiyomi_runtime.config import RuntimeConfig
from tachiyomi_runtime.host import PreferenceStore
from tachiyomi_runtime.http.wire import WireResponse


EXAMPLE_EXTENSION = '''
import json
from types import SimpleNamespace

SOURCES = [
    {"id": 1001, "name": "Example", "lang": "en",
     "baseUrl": "https://example.org", "supportsLatest": True},
]

APPLIED = []


def _ok(data):
    return json.dumps({"ok": True, "data": data})


def _err(error):
    return json.dumps({"ok": False, "error": error})


def getManifest():
    return _ok(SOURCES)


def getPopularManga(source_id, page):
    return _ok({
        "mangas": [{"url": f"/manga/{page}", "title": f"Popular {page}"}],
        "hasNextPage": page < 3,
    })


def getLatestUpdates(source_id, page):
    return _err({"code": 1, "reason": "latest disabled"})


def searchManga(source_id, page, query):
    return _ok({"mangas": [{"url": "/search", "title": query}], "hasNextPage": False})


def getMangaDetails(source_id, url):
    if url == "/missing":
        return _ok(None)
    return _ok({"url": url, "title": "Details", "genre": "Action, Drama", "status": 1})


def getChapterList(source_id, url):
    return _ok([{"url": url + "/1", "name": "Chapter 1", "chapterNumber": 1}])


def getPageList(source_id, url):
    return _ok([{"index": 0, "imageUrl": "https://img.example.org/1.png"}])


def getFilterList(source_id):
    return _ok([
        {"type": "Header", "name": "Filters"},
        {"type": "CheckBox", "name": "Completed", "state": False},
        {"type": "Text", "name": "Author", "state": ""},
    ])


def applyFilterState(source_id, state_json):
    APPLIED.append(json.loads(state_json))
    return _ok(True)


def resetFilters(source_id):
    APPLIED.clear()
    return _ok(True)


def fetchImage(source_id, page_url, image_url):
    return _ok("aW1hZ2U=")


def getHeaders(source_id):
    return _ok({"Referer": "https://example.org/"})


def getSettingsSchema(source_id):
    return _ok(json.dumps([
        {"type": "SwitchPreferenceCompat", "key": "hd", "title": "HD images", "default": True},
    ]))


def setPreference(source_id, key, value_json):
    prefs = get_shared_preferences("source_" + source_id)
    prefs.edit().put_string(key, json.loads(value_json)).apply()
    return _ok(None)


def getAppliedFilters(source_id):
    return _ok(APPLIED)


example = SimpleNamespace(tachiyomi=SimpleNamespace(generated=SimpleNamespace(
    getManifest=getManifest,
    getPopularManga=getPopularManga,
    getLatestUpdates=getLatestUpdates,
    searchManga=searchManga,
    getMangaDetails=getMangaDetails,
    getChapterList=getChapterList,
    getPageList=getPageList,
    getFilterList=getFilterList,
    applyFilterState=applyFilterState,
    resetFilters=resetFilters,
    fetchImage=fetchImage,
    getHeaders=getHeaders,
    getSettingsSchema=getSettingsSchema,
    setPreference=setPreference,
)))
'''

# Fetches through the HTTP hook and reports what it saw
HTTP_EXTENSION = '''
import json

tachiyomi_rate_limit(2, 1000)


def _ok(data):
    return json.dumps({"ok": True, "data": data})


def getManifest():
    return _ok([{"id": "7", "name": "Http", "lang": "en", "baseUrl": "https://example.org"}])


def getPopularManga(source_id, page):
    response = tachiyomi_http_request(
        f"https://example.org/popular?page={page}",
        "GET",
        json.dumps({"User-Agent": "test"}),
        None,
        False,
    )
    if response["error"]:
        return json.dumps({"ok": False, "error": response["error"]})
    titles = json.loads(response["body"])
    return _ok({"mangas": [{"url": "/" + t, "title": t} for t in titles], "hasNextPage": False})


exports = {"tachiyomi": {"generated": {
    "getManifest": getManifest,
    "getPopularManga": getPopularManga,
}}}
'''

# Two sources sharing one module-level rate limit rule
TWO_SOURCE_EXTENSION = '''
import json

tachiyomi_rate_limit(1, 1000)


def _ok(data):
    return json.dumps({"ok": True, "data": data})


def getManifest():
    return _ok([
        {"id": "a", "name": "A", "lang": "en", "baseUrl": "https://a.example"},
        {"id": "b", "name": "B", "lang": "en", "baseUrl": "https://b.example"},
    ])


def getPopularManga(source_id, page):
    tachiyomi_http_request(f"https://{source_id}.example/popular?page={page}", "GET", None, None, False)
    return _ok({"mangas": [], "hasNextPage": False})


def getLatestUpdates(source_id, page):
    tachiyomi_rate_limit(4, 2000)
    return _ok({"mangas": [], "hasNextPage": False})


exports = {"tachiyomi": {"generated": {
    "getManifest": getManifest,
    "getPopularManga": getPopularManga,
    "getLatestUpdates": getLatestUpdates,
}}}
'''

NO_MARKER_EXTENSION = '''
def getManifest():
    return '{"ok": true, "data": []}'
'''

TWO_MARKER_EXTENSION = '''
from types import SimpleNamespace

def getManifest():
    return '{"ok": true, "data": [{"id": "1", "name": "A"}]}'

first = SimpleNamespace(tachiyomi=SimpleNamespace(generated=SimpleNamespace(getManifest=getManifest)))
second = SimpleNamespace(tachiyomi=SimpleNamespace(generated=SimpleNamespace(getManifest=getManifest)))
'''

NO_SOURCES_EXTENSION = '''
from types import SimpleNamespace

ext = SimpleNamespace(tachiyomi=SimpleNamespace(generated=SimpleNamespace(
    getManifest=lambda: '{"ok": true, "data": []}',
)))
'''

BROKEN_EXTENSION = '''
raise RuntimeError("boom at import")
'''


class FakeTransport:
    """Records requests and answers from a queue of WireResponses"""

    def __init__(self, *responses: WireResponse):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def execute(self, url, method, headers, body, want_bytes):
        self.requests.append(
            {"url": url, "method": method, "headers": dict(headers), "body": body, "want_bytes": want_bytes}
        )
        if self.responses:
            return self.responses.pop(0)
        return WireResponse(status=200, body=json.dumps([]))

    def close(self):
        self.closed = True


@pytest.fixture
def manifest():
    return {
        "name": "Tachiyomi: Example",
        "pkg": "eu.kanade.tachiyomi.extension.en.example",
        "version": "1.4.2",
        "nsfw": False,
        "authors": [{"name": "dev", "github": "dev", "commits": 3, "firstCommit": "abc"}],
    }


@pytest.fixture
def thread_config():
    return RuntimeConfig.in_thread()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def modules():
    """Compiled extension module code keyed by scenario"""
    return SimpleNamespace(
        example=EXAMPLE_EXTENSION,
        http=HTTP_EXTENSION,
        two_sources=TWO_SOURCE_EXTENSION,
        no_marker=NO_MARKER_EXTENSION,
        two_markers=TWO_MARKER_EXTENSION,
        no_sources=NO_SOURCES_EXTENSION,
        broken=BROKEN_EXTENSION,
    )


class StubInstance:
    """Stands in for ExtensionInstance; records every capability call"""

    def __init__(self, host):
        self.host = host

    def get_sources(self):
        return [{"id": "1", "name": "Stub", "lang": "en"}]

    def get_popular_manga(self, source_id, page):
        self.host.calls.append(("get_popular_manga", source_id, page))
        delay = self.host.delays.get(page)
        if delay:
            time.sleep(delay)
        if page == 13:
            raise ValueError("unlucky page")
        if page == 404:
            return {"mangas": "not a list"}
        return {"mangas": [{"url": f"/{page}", "title": f"Page {page}"}], "hasNextPage": False}


class StubHost:
    """Stands in for ExtensionHost inside a worker"""

    def __init__(self, sources=True):
        self.calls = []
        self.delays = {}
        self.loaded = []
        self.closed = False
        self.preferences = PreferenceStore()
        self._sources = sources

    def load(self, code, label="extension"):
        self.loaded.append(label)
        instance = StubInstance(self)
        if not self._sources:
            instance.get_sources = lambda: []
        return instance

    def unload(self):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def stub_host():
    return StubHost()


@pytest.fixture
def make_stub_host():
    return StubHost


class FakeClock:
    """Monotonic clock that only moves when a limiter pauses"""

    def __init__(self, step: float = 0.01):
        self.now = 0.0
        self.step = step
        self.pauses = 0

    def __call__(self) -> float:
        return self.now

    def pause(self, seconds: float) -> None:
        self.pauses += 1
        self.now += max(seconds, self.step)


@pytest.fixture
def fake_clock():
    return FakeClock()
