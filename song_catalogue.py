"""Song entries and display-name canonicalization for the beatmap library."""
from __future__ import annotations

import logging
import os
from collections import Counter
import dataclasses
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union


LOGGER = logging.getLogger(__name__)


UNKNOWN_MAPPER = "Mapper desconocido"
DIFFICULTY_SEPARATOR = " / "

EntryProgress = Callable[[int, int, "SongEntry"], None]


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _normalise_segment(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_folder_path(path: Union[str, Path, None]) -> Optional[str]:
    """Return an absolute, normalised string form of ``path``.

    Blank input is returned unchanged so callers can tell "no folder" apart.
    """

    if path is None:
        return None
    text = str(path)
    if not text.strip():
        return text
    return os.path.normpath(os.path.abspath(text))


@dataclass(frozen=True)
class SongMetadataDetails:
    title: str
    artist: str
    mapper: Optional[str]
    difficulty: Optional[str]
    beatmap_id: Optional[str]
    beatmap_set_id: Optional[str]
    source: Optional[str]
    audio_path: str
    video_path: Optional[str]
    video_offset_millis: int
    background_path: Optional[str]
    base_folder: Optional[str]
    tags: tuple = ()


@dataclass(frozen=True)
class SongDisplayParts:
    base_text: str
    difficulty_text: Optional[str] = None
    mapper_text: Optional[str] = None
    duplicate_suffix: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "difficulty_text", _normalise_segment(self.difficulty_text))
        object.__setattr__(self, "mapper_text", _normalise_segment(self.mapper_text))


@dataclass
class SongVariant:
    base_name: str
    title: str
    artist: str
    difficulty_name: Optional[str]
    mapper: Optional[str]
    audio_path: str
    video_path: Optional[str] = None
    video_offset_millis: int = 0
    background_path: Optional[str] = None
    base_folder: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    creators: List[str] = field(default_factory=list)
    beatmap_id: Optional[str] = None
    beatmap_set_id: Optional[str] = None
    source: Optional[str] = None

    def to_entry(self, show_difficulty: bool) -> "SongEntry":
        values = {item.name: getattr(self, item.name) for item in fields(SongVariant)}
        return SongEntry(show_difficulty=show_difficulty, **values)


@dataclass
class SongEntry(SongVariant):
    show_difficulty: bool = False

    def to_metadata_details(self) -> SongMetadataDetails:
        return SongMetadataDetails(
            title=self.title,
            artist=self.artist,
            mapper=self.mapper,
            difficulty=self.difficulty_name,
            beatmap_id=self.beatmap_id,
            beatmap_set_id=self.beatmap_set_id,
            source=self.source,
            audio_path=self.audio_path,
            video_path=self.video_path,
            video_offset_millis=self.video_offset_millis,
            background_path=self.background_path,
            base_folder=self.base_folder,
            tags=tuple(self.tags or ()),
        )


def build_base_display_label(entry: SongEntry) -> str:
    label = entry.base_name
    if entry.show_difficulty and not _is_blank(entry.difficulty_name):
        label += DIFFICULTY_SEPARATOR + entry.difficulty_name
    return label


def canonical_mapper_label(mapper: Optional[str]) -> str:
    if _is_blank(mapper):
        return UNKNOWN_MAPPER
    return mapper.strip()


def _decrement(counter: Dict[str, int], key: str) -> None:
    value = counter.get(key)
    if value is None:
        return
    if value <= 1:
        del counter[key]
    else:
        counter[key] = value - 1


class SongCatalogue:
    """Display-name keyed song state plus the counters used to name new entries.

    Display names are unique at all times. A suffixed name (``"... [2]"``) is
    retired once its entry is removed and is not handed out again until the
    catalogue is replaced wholesale.
    """

    def __init__(self) -> None:
        self.songs: Dict[str, str] = {}
        self._entries: Dict[str, SongEntry] = {}
        self._base_folders: Dict[str, Optional[str]] = {}
        self._display_parts: Dict[str, SongDisplayParts] = {}
        self.base_display_counts: Dict[str, int] = {}
        self.canonical_display_counters: Dict[str, int] = {}
        self._display_to_base: Dict[str, str] = {}
        self._display_to_canonical: Dict[str, str] = {}
        self._retired_names: set = set()

    def clear(self) -> None:
        self.songs.clear()
        self._entries.clear()
        self._base_folders.clear()
        self._display_parts.clear()
        self.base_display_counts.clear()
        self.canonical_display_counters.clear()
        self._display_to_base.clear()
        self._display_to_canonical.clear()
        self._retired_names.clear()

    def replace(self, entries: List[SongEntry], progress: Optional[EntryProgress] = None) -> None:
        """Rebuild the catalogue from ``entries`` in order.

        Base label counts are computed over the whole batch first, so every
        entry of a colliding label is disambiguated by mapper.
        """

        self.clear()
        self.base_display_counts.update(Counter(build_base_display_label(entry) for entry in entries))
        total = len(entries)
        for index, entry in enumerate(entries, start=1):
            if progress is not None:
                progress(index, total, entry)
            self.insert(entry, count_base=False)

    def insert(self, entry: Optional[SongEntry], count_base: bool = True) -> Optional[str]:
        if entry is None:
            return None
        base_display = build_base_display_label(entry)
        if count_base:
            self.base_display_counts[base_display] = self.base_display_counts.get(base_display, 0) + 1
        duplicated = self.base_display_counts.get(base_display, 0) > 1
        if duplicated:
            canonical_key = f"{base_display} ({canonical_mapper_label(entry.mapper)})"
        else:
            canonical_key = base_display

        occurrence = self.canonical_display_counters.get(canonical_key, 0) + 1
        display_name = self._display_name(canonical_key, occurrence)
        while display_name in self.songs or display_name in self._retired_names:
            occurrence += 1
            display_name = self._display_name(canonical_key, occurrence)
        self.canonical_display_counters[canonical_key] = self.canonical_display_counters.get(canonical_key, 0) + 1

        self.songs[display_name] = entry.audio_path
        self._entries[display_name] = entry
        self._base_folders[display_name] = normalize_folder_path(entry.base_folder)

        show_difficulty_segment = entry.show_difficulty and not _is_blank(entry.difficulty_name)
        self._display_parts[display_name] = SongDisplayParts(
            base_text=entry.base_name,
            difficulty_text=entry.difficulty_name if show_difficulty_segment else None,
            mapper_text=entry.mapper if duplicated else None,
            duplicate_suffix=f"[{occurrence}]" if occurrence > 1 else None,
        )
        self._display_to_base[display_name] = base_display
        self._display_to_canonical[display_name] = canonical_key
        return display_name

    @staticmethod
    def _display_name(canonical_key: str, occurrence: int) -> str:
        if occurrence > 1:
            return f"{canonical_key} [{occurrence}]"
        return canonical_key

    def remove(self, display_name: Optional[str]) -> bool:
        if display_name is None or display_name not in self.songs:
            return False
        parts = self._display_parts.pop(display_name, None)
        if parts is not None and parts.duplicate_suffix is not None:
            self._retired_names.add(display_name)
        self.songs.pop(display_name, None)
        self._entries.pop(display_name, None)
        self._base_folders.pop(display_name, None)

        base_display = self._display_to_base.pop(display_name, None)
        if base_display is not None:
            _decrement(self.base_display_counts, base_display)
        canonical_key = self._display_to_canonical.pop(display_name, None)
        if canonical_key is not None:
            _decrement(self.canonical_display_counters, canonical_key)
        return True

    def names_in_folder(self, folder: Union[str, Path, None]) -> List[str]:
        normalized = normalize_folder_path(folder)
        if not normalized:
            return []
        return [name for name, base in self._base_folders.items() if base == normalized]

    def export_entries(self) -> List[SongEntry]:
        return [
            dataclasses.replace(entry, base_folder=self._base_folders.get(name))
            for name, entry in self._entries.items()
        ]

    def names(self) -> List[str]:
        return list(self.songs)

    def __len__(self) -> int:
        return len(self.songs)

    def __contains__(self, display_name: object) -> bool:
        return display_name in self.songs

    def song_path(self, display_name: str) -> Optional[str]:
        return self.songs.get(display_name)

    def base_folder(self, display_name: str) -> Optional[str]:
        return self._base_folders.get(display_name)

    def entry(self, display_name: str) -> Optional[SongEntry]:
        return self._entries.get(display_name)

    def tags(self, display_name: str) -> List[str]:
        entry = self._entries.get(display_name)
        return list(entry.tags or []) if entry else []

    def creators(self, display_name: str) -> List[str]:
        entry = self._entries.get(display_name)
        return list(entry.creators or []) if entry else []

    def video_path(self, display_name: str) -> Optional[str]:
        entry = self._entries.get(display_name)
        return (entry.video_path or None) if entry else None

    def video_offset(self, display_name: str) -> int:
        entry = self._entries.get(display_name)
        return entry.video_offset_millis if entry else 0

    def background_path(self, display_name: str) -> Optional[str]:
        entry = self._entries.get(display_name)
        return (entry.background_path or None) if entry else None

    def metadata(self, display_name: str) -> Optional[SongMetadataDetails]:
        entry = self._entries.get(display_name)
        return entry.to_metadata_details() if entry else None

    def display_parts(self, display_name: str) -> Optional[SongDisplayParts]:
        return self._display_parts.get(display_name)

    def search(self, query: Optional[str]) -> List[str]:
        if not query:
            return self.names()
        lowered = query.casefold()
        results: List[str] = []
        for name in self.songs:
            if lowered in name.casefold():
                results.append(name)
                continue
            if any(lowered in tag.casefold() for tag in self.tags(name)):
                results.append(name)
        return results


def _matches_expected_segment(candidate: str, expected: Optional[str]) -> bool:
    if not candidate:
        return False
    if not expected:
        return True
    return candidate == expected


def split_display_name(
    display_name: str,
    metadata: Optional[SongMetadataDetails] = None,
) -> SongDisplayParts:
    """Best-effort split of a concatenated display name into its parts.

    Only for names whose structured parts were never recorded; titles with
    literal brackets, parentheses or slashes can be misread.
    """

    expected_difficulty = _normalise_segment(metadata.difficulty) if metadata else None
    expected_mapper = _normalise_segment(metadata.mapper) if metadata else None
    working = display_name

    duplicate_suffix: Optional[str] = None
    if working.endswith("]"):
        index = working.rfind(" [")
        if index > 0:
            duplicate_suffix = working[index:].strip()
            working = working[:index]

    mapper_text: Optional[str] = None
    if working.endswith(")"):
        open_paren = working.rfind(" (")
        if 0 < open_paren < len(working) - 2:
            candidate = working[open_paren + 2:-1].strip()
            if _matches_expected_segment(candidate, expected_mapper):
                mapper_text = candidate
                working = working[:open_paren].strip()

    base_text = working
    difficulty_text: Optional[str] = None
    slash_index = working.rfind(DIFFICULTY_SEPARATOR)
    if 0 < slash_index < len(working) - len(DIFFICULTY_SEPARATOR):
        candidate = working[slash_index + len(DIFFICULTY_SEPARATOR):].strip()
        if _matches_expected_segment(candidate, expected_difficulty):
            base_text = working[:slash_index].strip()
            difficulty_text = candidate

    return SongDisplayParts(
        base_text=base_text,
        difficulty_text=difficulty_text,
        mapper_text=mapper_text,
        duplicate_suffix=duplicate_suffix,
    )


def resolve_display_parts(catalogue: SongCatalogue, display_name: str) -> SongDisplayParts:
    """Return the recorded parts for ``display_name``, splitting only unknown names."""

    recorded = catalogue.display_parts(display_name)
    if recorded is not None:
        return recorded
    LOGGER.debug("No recorded display parts for %s; splitting name", display_name)
    return split_display_name(display_name, catalogue.metadata(display_name))
