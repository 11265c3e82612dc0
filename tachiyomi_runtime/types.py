"""
Domain types for loaded extensions

Field names follow the JSON produced by compiled extensions (camelCase) so
payloads validate without an alias layer.
"""
from __future__ import annotations

import json
from enum import IntEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


# ============================================================================
# Extension metadata
# ============================================================================

class Author(BaseModel):
    """Contributor entry from manifest.json"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    github: Optional[str] = None
    commits: int = 0
    firstCommit: str = ""


class Manifest(BaseModel):
    """Static metadata for a built extension (manifest.json)"""
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    pkg: str
    version: str
    nsfw: bool = False
    authors: Optional[list[Author]] = None
    id: Optional[str] = None
    lang: Optional[str] = None

    @field_validator("version", "id", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def parse(cls, raw: "Manifest | dict[str, Any] | str | bytes") -> "Manifest":
        """Accept a model, a decoded dict, or manifest JSON text"""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, (str, bytes)):
            return cls.model_validate_json(raw)
        return cls.model_validate(raw)


class SourceInfo(BaseModel):
    """One content source inside an extension"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    lang: str = ""
    baseUrl: str = ""
    supportsLatest: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        # Source ids are 64-bit hashes and may arrive as JSON numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


# ============================================================================
# Manga & chapter types
# ============================================================================

class MangaStatus(IntEnum):
    UNKNOWN = 0
    ONGOING = 1
    COMPLETED = 2
    LICENSED = 3
    PUBLISHING_FINISHED = 4
    CANCELLED = 5
    ON_HIATUS = 6


class Manga(BaseModel):
    url: str
    title: str = ""
    artist: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    genre: Optional[list[str]] = None
    status: MangaStatus = MangaStatus.UNKNOWN
    thumbnailUrl: Optional[str] = None
    initialized: bool = False

    @field_validator("genre", mode="before")
    @classmethod
    def split_genre(cls, v):
        if isinstance(v, str):
            return [g.strip() for g in v.split(",") if g.strip()]
        return v


class Chapter(BaseModel):
    url: str
    name: str = ""
    dateUpload: int = 0
    chapterNumber: float = -1.0
    scanlator: Optional[str] = None


class Page(BaseModel):
    index: int
    url: str = ""
    imageUrl: Optional[str] = None


class MangasPage(BaseModel):
    mangas: list[Manga] = Field(default_factory=list)
    hasNextPage: bool = False


# ============================================================================
# Filter types
# ============================================================================

class SortSelection(BaseModel):
    index: int
    ascending: bool = False


class FilterHeader(BaseModel):
    """Section label, not interactive"""
    type: Literal["Header"] = "Header"
    name: str


class FilterSeparator(BaseModel):
    type: Literal["Separator"] = "Separator"
    name: str = ""


class FilterText(BaseModel):
    type: Literal["Text"] = "Text"
    name: str
    state: str = ""


class FilterCheckBox(BaseModel):
    type: Literal["CheckBox"] = "CheckBox"
    name: str
    state: bool = False


class FilterTriState(BaseModel):
    """0 = ignore, 1 = include, 2 = exclude"""
    type: Literal["TriState"] = "TriState"
    name: str
    state: int = 0


class FilterSort(BaseModel):
    type: Literal["Sort"] = "Sort"
    name: str
    state: Optional[SortSelection] = None
    values: list[str] = Field(default_factory=list)


class FilterSelect(BaseModel):
    type: Literal["Select"] = "Select"
    name: str
    state: int = 0
    values: list[str] = Field(default_factory=list)


class FilterGroup(BaseModel):
    type: Literal["Group"] = "Group"
    name: str
    state: list["FilterState"] = Field(default_factory=list)


FilterState = Annotated[
    Union[
        FilterHeader,
        FilterSeparator,
        FilterText,
        FilterCheckBox,
        FilterTriState,
        FilterSort,
        FilterSelect,
        FilterGroup,
    ],
    Field(discriminator="type"),
]

FilterGroup.model_rebuild()


class FilterStateUpdate(BaseModel):
    """Minimal state update accepted by applyFilterState"""
    index: int
    state: Optional[Union[bool, int, str, SortSelection]] = None
    filters: Optional[list["FilterStateUpdate"]] = None


FilterStateUpdate.model_rebuild()


def filter_to_state_update(f: FilterState, index: int) -> FilterStateUpdate | None:
    """Convert a single filter to its update form; stateless filters yield None"""
    if isinstance(f, (FilterCheckBox, FilterTriState, FilterSelect)):
        return FilterStateUpdate(index=index, state=f.state)
    if isinstance(f, (FilterText, FilterSort)):
        return FilterStateUpdate(index=index, state=f.state) if f.state else None
    if isinstance(f, FilterGroup):
        children = [
            update
            for i, child in enumerate(f.state)
            if (update := filter_to_state_update(child, i)) is not None
        ]
        return FilterStateUpdate(index=index, filters=children) if children else None
    return None


def build_filter_state_json(filters: list[FilterState]) -> str:
    """Serialize a filter list into the JSON applyFilterState expects"""
    updates = [
        update.model_dump(exclude_none=True)
        for i, f in enumerate(filters)
        if (update := filter_to_state_update(f, i)) is not None
    ]
    return json.dumps(updates)


# ============================================================================
# Settings
# ============================================================================

PreferenceType = Literal[
    "EditTextPreference",
    "CheckBoxPreference",
    "ListPreference",
    "MultiSelectListPreference",
    "SwitchPreferenceCompat",
]


class PreferenceSchema(BaseModel):
    type: PreferenceType
    key: str
    title: str = ""
    summary: Optional[str] = None
    default: Any = None
    entries: Optional[list[str]] = None
    entryValues: Optional[list[str]] = None


class SettingsSchema(BaseModel):
    preferences: list[PreferenceSchema] = Field(default_factory=list)


SOURCE_LIST = TypeAdapter(list[SourceInfo])
CHAPTER_LIST = TypeAdapter(list[Chapter])
PAGE_LIST = TypeAdapter(list[Page])
FILTER_LIST = TypeAdapter(list[FilterState])
HEADERS = TypeAdapter(dict[str, str])


__all__ = [
    "Author",
    "Manifest",
    "SourceInfo",
    "MangaStatus",
    "Manga",
    "Chapter",
    "Page",
    "MangasPage",
    "SortSelection",
    "FilterHeader",
    "FilterSeparator",
    "FilterText",
    "FilterCheckBox",
    "FilterTriState",
    "FilterSort",
    "FilterSelect",
    "FilterGroup",
    "FilterState",
    "FilterStateUpdate",
    "filter_to_state_update",
    "build_filter_state_json",
    "PreferenceSchema",
    "SettingsSchema",
    "SOURCE_LIST",
    "CHAPTER_LIST",
    "PAGE_LIST",
    "FILTER_LIST",
    "HEADERS",
]
