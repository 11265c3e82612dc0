"""
Tests for domain models and filter state helpers
"""
import json

import pytest
from pydantic import ValidationError

from tachiyomi_runtime.types import (
    FILTER_LIST,
    SOURCE_LIST,
    FilterCheckBox,
    FilterGroup,
    FilterHeader,
    FilterSort,
    FilterText,
    FilterTriState,
    Manga,
    MangaStatus,
    Manifest,
    SortSelection,
    build_filter_state_json,
    filter_to_state_update,
)


class TestManifest:
    def test_parse_from_json_text(self):
        manifest = Manifest.parse(
            '{"name": "Ext", "pkg": "a.b", "version": 14, "nsfw": true,'
            ' "authors": [{"github": "dev", "commits": 2, "firstCommit": "2020-01-01"}]}'
        )

        assert manifest.version == "14"
        assert manifest.nsfw is True
        assert manifest.authors[0].name is None
        assert manifest.authors[0].commits == 2

    def test_parse_passes_models_through(self):
        manifest = Manifest(name="Ext", pkg="a.b", version="1")
        assert Manifest.parse(manifest) is manifest

    def test_missing_required_field(self):
        with pytest.raises(ValidationError):
            Manifest.parse({"name": "Ext", "version": "1"})

    def test_extra_fields_are_kept(self):
        manifest = Manifest.parse({"name": "Ext", "pkg": "a.b", "version": "1", "icon": "x.png"})
        assert manifest.model_extra == {"icon": "x.png"}


def test_source_ids_are_strings():
    sources = SOURCE_LIST.validate_python([{"id": 8265469384928374837, "name": "Big"}])
    assert sources[0].id == "8265469384928374837"


def test_manga_genre_string_is_split():
    manga = Manga.model_validate({"url": "/m", "genre": "Action, Drama,, ", "status": 2})

    assert manga.genre == ["Action", "Drama"]
    assert manga.status is MangaStatus.COMPLETED


def test_filter_list_discriminates_on_type():
    filters = FILTER_LIST.validate_python([
        {"type": "Header", "name": "Note"},
        {"type": "Sort", "name": "Order", "values": ["A", "B"], "state": {"index": 1, "ascending": True}},
        {"type": "Group", "name": "Genres", "state": [{"type": "TriState", "name": "Action", "state": 1}]},
    ])

    assert isinstance(filters[0], FilterHeader)
    assert isinstance(filters[1], FilterSort)
    assert filters[1].state == SortSelection(index=1, ascending=True)
    assert isinstance(filters[2], FilterGroup)
    assert isinstance(filters[2].state[0], FilterTriState)


class TestFilterStateUpdates:
    def test_stateless_filters_are_skipped(self):
        assert filter_to_state_update(FilterHeader(name="h"), 0) is None
        assert filter_to_state_update(FilterText(name="t"), 1) is None

    def test_minimal_update_list(self):
        filters = [
            FilterHeader(name="Note"),
            FilterCheckBox(name="Completed", state=True),
            FilterText(name="Author", state="Oda"),
            FilterGroup(name="Genres", state=[
                FilterTriState(name="Action", state=2),
                FilterHeader(name="inner"),
            ]),
        ]

        updates = json.loads(build_filter_state_json(filters))

        assert updates == [
            {"index": 1, "state": True},
            {"index": 2, "state": "Oda"},
            {"index": 3, "filters": [{"index": 0, "state": 2}]},
        ]

    def test_empty_group_is_skipped(self):
        assert build_filter_state_json([FilterGroup(name="g", state=[FilterHeader(name="h")])]) == "[]"
