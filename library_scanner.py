"""Beatmap folder scanning, caching and incremental updates for the song library."""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from history import HistoryManager
from library_cache import FolderSignature, LibraryCache
from osu_parser import BeatmapMetadata, OsuMetadataExtractor
from song_catalogue import (
    UNKNOWN_MAPPER,
    SongCatalogue,
    SongDisplayParts,
    SongEntry,
    SongMetadataDetails,
    SongVariant,
    normalize_folder_path,
    resolve_display_parts,
)


LOGGER = logging.getLogger(__name__)


FOLDER_SCAN_WEIGHT = 0.85
ENTRY_INTEGRATION_WEIGHT = 1.0 - FOLDER_SCAN_WEIGHT

INVALID_BEATMAP_IDS = {"0", "-1"}
UNKNOWN_DIFFICULTY = "Unknown"
STORYBOARD_IMAGE = "storyboard.png"
COMPLETED_LABEL = "Completed"

FOLDER_SET_ID_RE = re.compile(r"^(\d+)")

ProgressCallback = Callable[[float, str], None]
PathLike = Union[str, Path]


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _mtime_ns(path: Path) -> int:
    stat = path.stat()
    return getattr(stat, "st_mtime_ns", int(stat.st_mtime * 1_000_000_000))


def _list_beatmap_folders(root: Path) -> List[Path]:
    try:
        children = [child for child in root.iterdir() if child.is_dir()]
    except OSError as exc:
        LOGGER.warning("Could not list beatmap folders in %s: %s", root, exc)
        return []
    return sorted(children, key=lambda child: child.name)


def _notify_progress(callback: Optional[ProgressCallback], progress: float, current_item: str) -> None:
    if callback is None:
        return
    callback(max(0.0, min(1.0, progress)), current_item)


def capture_folder_signature(root: Optional[PathLike]) -> FolderSignature:
    """Fingerprint ``root`` from its own mtime and the mtime of each child folder.

    No file contents are read. A missing root gives an empty signature.
    """

    if root is None:
        return FolderSignature.empty()
    root_path = Path(root)
    try:
        if not root_path.is_dir():
            return FolderSignature.empty()
        root_modified = _mtime_ns(root_path)
    except OSError:
        return FolderSignature.empty()

    modified: Dict[str, int] = {}
    for child in _list_beatmap_folders(root_path):
        try:
            modified[normalize_folder_path(child)] = _mtime_ns(child)
        except OSError:
            LOGGER.debug("Folder disappeared during signature capture: %s", child)
    return FolderSignature(root_modified, modified)


def is_valid_beatmap_id(value: Optional[str]) -> bool:
    if value is None:
        return False
    trimmed = str(value).strip()
    return bool(trimmed) and trimmed not in INVALID_BEATMAP_IDS


def _has_valid_beatmap_id(metadata: Optional[BeatmapMetadata]) -> bool:
    return metadata is not None and is_valid_beatmap_id(metadata.beatmap_id)


def first_valid_id(primary: Optional[str], fallback: Optional[str]) -> Optional[str]:
    if is_valid_beatmap_id(primary):
        return primary.strip()
    if is_valid_beatmap_id(fallback):
        return fallback.strip()
    return primary.strip() if primary is not None else None


def extract_folder_set_id(folder: Optional[PathLike]) -> Optional[str]:
    """Return the leading digits of an ``<setid> Artist - Title`` folder name."""

    if folder is None:
        return None
    match = FOLDER_SET_ID_RE.match(Path(folder).name)
    return match.group(1) if match else None


def resolve_mapper(metadata: BeatmapMetadata, folder: Optional[PathLike]) -> str:
    if not _is_blank(metadata.creator):
        return metadata.creator.strip()
    if folder is None:
        return UNKNOWN_MAPPER
    return Path(folder).name


def sanitize_difficulty(version: Optional[str]) -> str:
    if _is_blank(version):
        return UNKNOWN_DIFFICULTY
    return version.strip()


def build_media_key(variant: SongVariant) -> str:
    return f"{variant.audio_path}::{variant.video_path or ''}"


def _resolve_asset(folder: Path, filename: Optional[str]) -> Optional[str]:
    if _is_blank(filename):
        return None
    candidate = folder / filename
    try:
        if not candidate.exists():
            return None
    except OSError:
        return None
    return os.path.abspath(candidate)


def _select_representative(
    parsed: List[Tuple[Path, Optional[BeatmapMetadata]]],
) -> Optional[Tuple[Path, BeatmapMetadata]]:
    for osu_file, metadata in parsed:
        if _has_valid_beatmap_id(metadata):
            return osu_file, metadata
    for osu_file, metadata in parsed:
        if metadata is not None:
            return osu_file, metadata
    return None


def build_entries_from_folder(folder: PathLike, difficulty_files: List[Path], extractor) -> List[SongEntry]:
    """Turn the difficulty files of one beatmap folder into playable entries.

    Variants sharing a base name are collapsed by audio+video pair, keeping the
    first one seen. When a base name keeps more than one distinct pair, every
    surviving entry shows its difficulty name.
    """

    folder_path = Path(folder)
    base_folder = os.path.abspath(folder_path)
    parsed = [(osu_file, extractor.parse_metadata(osu_file)) for osu_file in difficulty_files]
    folder_set_id = extract_folder_set_id(folder_path)
    representative = _select_representative(parsed)

    variants_by_base: Dict[str, List[SongVariant]] = {}
    for osu_file, metadata in parsed:
        metadata_source = osu_file
        if representative is not None and not _has_valid_beatmap_id(metadata):
            metadata_source, metadata = representative

        if metadata is None or _is_blank(metadata.audio_filename):
            LOGGER.debug("Skipping %s: no usable metadata", osu_file)
            continue

        beatmap_set_id = first_valid_id(metadata.beatmap_set_id, folder_set_id)
        beatmap_id = first_valid_id(metadata.beatmap_id, beatmap_set_id)

        audio_path = _resolve_asset(folder_path, metadata.audio_filename)
        if audio_path is None:
            LOGGER.debug("Skipping %s: audio file %s missing", osu_file, metadata.audio_filename)
            continue

        video_path: Optional[str] = None
        video_offset = 0
        video_event = extractor.parse_video_event(metadata_source)
        if video_event is not None:
            video_path = _resolve_asset(folder_path, video_event.filename)
            if video_path is not None:
                video_offset = video_event.offset_millis

        background_path = _resolve_asset(folder_path, extractor.parse_background(metadata_source))

        mapper = resolve_mapper(metadata, folder_path)
        base_name = f"{metadata.artist} - {metadata.title}"
        variant = SongVariant(
            base_name=base_name,
            title=metadata.title,
            artist=metadata.artist,
            difficulty_name=sanitize_difficulty(metadata.version),
            mapper=mapper,
            audio_path=audio_path,
            video_path=video_path,
            video_offset_millis=video_offset,
            background_path=background_path,
            base_folder=base_folder,
            tags=list(metadata.tags or []),
            creators=[] if _is_blank(mapper) else [mapper],
            beatmap_id=beatmap_id,
            beatmap_set_id=beatmap_set_id,
            source=metadata.source,
        )
        variants_by_base.setdefault(base_name, []).append(variant)

    entries: List[SongEntry] = []
    for variants in variants_by_base.values():
        representatives: Dict[str, SongVariant] = {}
        for variant in variants:
            representatives.setdefault(build_media_key(variant), variant)
        show_difficulty = len(representatives) > 1
        entries.extend(variant.to_entry(show_difficulty) for variant in representatives.values())
    return entries


class LibraryScanner:
    """Loads a songs directory into a catalogue of uniquely named songs.

    ``extractor`` provides ``list_difficulty_files``, ``parse_metadata``,
    ``parse_video_event`` and ``parse_background``. ``cache_store`` provides
    ``load_library_cache`` and ``save_library_cache``. ``history`` provides
    ``get_history``, ``get_index`` and ``set_history``.

    Instances are not thread safe: run one load, import or removal at a time.
    The progress callback is invoked on the thread performing the scan.
    """

    def __init__(self, cache_store=None, extractor=None, history=None) -> None:
        self.cache_store = cache_store
        self.extractor = extractor if extractor is not None else OsuMetadataExtractor()
        self.history = history if history is not None else HistoryManager()
        self.catalogue = SongCatalogue()
        self.folder_difficulty_counts: Dict[str, int] = {}
        self.total_difficulty_count = 0
        self._last_folder_path: Optional[str] = None
        self._last_loaded_signature: Optional[FolderSignature] = None

    @property
    def songs(self) -> Dict[str, str]:
        return self.catalogue.songs

    def _reset_library_state(self) -> None:
        self.catalogue.clear()
        self.folder_difficulty_counts.clear()
        self.total_difficulty_count = 0

    def load_songs_from_folder(
        self,
        folder: Optional[PathLike],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Dict[str, str]:
        """Load the catalogue for ``folder``, reusing cached results when unchanged."""

        if not folder or not Path(folder).is_dir():
            self._reset_library_state()
            self._last_loaded_signature = None
            self._last_folder_path = None
            return self.songs

        folder_path = Path(folder)
        normalized_folder = normalize_folder_path(folder_path)
        signature = capture_folder_signature(folder_path)

        if (
            self._last_loaded_signature is not None
            and self._last_folder_path == normalized_folder
            and self._last_loaded_signature == signature
            and self.songs
        ):
            LOGGER.debug("Library for %s unchanged since last load", normalized_folder)
            _notify_progress(progress_callback, 1.0, COMPLETED_LABEL)
            return self.songs

        cache = self._load_cache()
        if cache is not None and cache.matches(normalized_folder, signature):
            self._reset_library_state()
            self.catalogue.replace(cache.entries)
            self.folder_difficulty_counts.update(cache.folder_difficulty_counts)
            self.total_difficulty_count = cache.total_difficulty_count
            self._last_loaded_signature = signature
            self._last_folder_path = normalized_folder
            LOGGER.info("Restored %d songs for %s from library cache", len(self.songs), normalized_folder)
            _notify_progress(progress_callback, 1.0, COMPLETED_LABEL)
            return self.songs
        if cache is not None:
            LOGGER.debug("Library cache does not match %s; rescanning", normalized_folder)

        self._reset_library_state()
        beatmap_folders = _list_beatmap_folders(folder_path)
        total_folders = len(beatmap_folders)
        final_entries: List[SongEntry] = []

        for processed, beatmap_folder in enumerate(beatmap_folders, start=1):
            _notify_progress(
                progress_callback,
                processed / total_folders * FOLDER_SCAN_WEIGHT,
                f"Folder: {beatmap_folder.name}",
            )
            difficulty_files = self.extractor.list_difficulty_files(beatmap_folder)
            if not difficulty_files:
                continue
            self.total_difficulty_count += len(difficulty_files)
            self.folder_difficulty_counts[normalize_folder_path(beatmap_folder)] = len(difficulty_files)
            final_entries.extend(build_entries_from_folder(beatmap_folder, difficulty_files, self.extractor))

        def _report_entry(index: int, total: int, entry: SongEntry) -> None:
            _notify_progress(
                progress_callback,
                FOLDER_SCAN_WEIGHT + index / total * ENTRY_INTEGRATION_WEIGHT,
                f"♫ {entry.base_name}",
            )

        self.catalogue.replace(final_entries, _report_entry if progress_callback is not None else None)
        _notify_progress(progress_callback, 1.0, COMPLETED_LABEL)
        self._last_loaded_signature = signature
        self._last_folder_path = normalized_folder
        LOGGER.info(
            "Scanned %d folders in %s: %d songs, %d difficulties",
            total_folders,
            normalized_folder,
            len(self.songs),
            self.total_difficulty_count,
        )
        self._persist(normalized_folder, signature, final_entries)
        return self.songs

    def import_beatmap_folder(self, folder: Optional[PathLike]) -> List[str]:
        """Add one beatmap folder without rescanning; return the new display names."""

        if not folder or not Path(folder).is_dir():
            return []
        folder_path = Path(folder)
        difficulty_files = self.extractor.list_difficulty_files(folder_path)
        if not difficulty_files:
            return []

        added: List[str] = []
        for entry in build_entries_from_folder(folder_path, difficulty_files, self.extractor):
            display_name = self.catalogue.insert(entry, count_base=True)
            if display_name is not None:
                added.append(display_name)

        normalized_folder = normalize_folder_path(folder_path)
        self.folder_difficulty_counts[normalized_folder] = (
            self.folder_difficulty_counts.get(normalized_folder, 0) + len(difficulty_files)
        )
        self.total_difficulty_count += len(difficulty_files)
        LOGGER.info("Imported %d songs from %s", len(added), normalized_folder)
        self._refresh_cache_from_current_state()
        return added

    def remove_songs_by_folder(self, folder: Optional[PathLike]) -> List[str]:
        """Drop every song of one beatmap folder; return the removed display names.

        Occurrence suffixes of the remaining songs are left as they are.
        """

        normalized_folder = normalize_folder_path(folder)
        if not normalized_folder or not normalized_folder.strip():
            return []
        removed = self.catalogue.names_in_folder(normalized_folder)
        for display_name in removed:
            self.catalogue.remove(display_name)

        difficulties = self.folder_difficulty_counts.pop(normalized_folder, None)
        if difficulties:
            self.total_difficulty_count = max(0, self.total_difficulty_count - difficulties)
        if not removed and difficulties is None:
            return []

        self._prune_history(set(removed))
        LOGGER.info("Removed %d songs from %s", len(removed), normalized_folder)
        self._refresh_cache_from_current_state()
        return removed

    def _prune_history(self, removed_songs: Set[str]) -> None:
        if not removed_songs:
            return
        current_history = self.history.get_history()
        if not current_history:
            return
        current_index = self.history.get_index()
        filtered = [song for song in current_history if song not in removed_songs]
        if len(filtered) == len(current_history):
            return
        if not filtered:
            new_index = -1
        elif current_index >= len(filtered) or current_index < 0:
            new_index = len(filtered) - 1
        else:
            new_index = current_index
        self.history.set_history(filtered, new_index)

    def _load_cache(self) -> Optional[LibraryCache]:
        if self.cache_store is None:
            return None
        try:
            return self.cache_store.load_library_cache()
        except Exception:
            LOGGER.warning("Failed to load library cache; falling back to a full scan", exc_info=True)
            return None

    def _persist(self, folder_path: Optional[str], signature: FolderSignature, entries: List[SongEntry]) -> None:
        if self.cache_store is None or not folder_path:
            return
        cache = LibraryCache.from_snapshot(
            folder_path,
            signature,
            entries,
            self.folder_difficulty_counts,
            self.total_difficulty_count,
        )
        try:
            self.cache_store.save_library_cache(cache)
        except Exception:
            LOGGER.warning("Failed to persist library cache for %s", folder_path, exc_info=True)

    def _refresh_cache_from_current_state(self) -> None:
        if not self._last_folder_path:
            return
        root = Path(self._last_folder_path)
        if not root.is_dir():
            return
        signature = capture_folder_signature(root)
        self._persist(self._last_folder_path, signature, self.catalogue.export_entries())
        self._last_loaded_signature = signature

    def get_loaded_song_count(self) -> int:
        return len(self.catalogue)

    def get_loaded_difficulty_count(self) -> int:
        return self.total_difficulty_count

    def get_folder_difficulty_counts(self) -> Dict[str, int]:
        return dict(self.folder_difficulty_counts)

    def get_song_path(self, song_name: str) -> Optional[str]:
        return self.catalogue.song_path(song_name)

    def set_last_folder_path(self, path: Optional[PathLike]) -> None:
        self._last_folder_path = normalize_folder_path(path) if path is not None else None

    def get_last_folder_path(self) -> Optional[str]:
        return self._last_folder_path

    def get_song_base_folder(self, song_name: str) -> Optional[str]:
        return self.catalogue.base_folder(song_name)

    def get_cover_image_path(self, song_name: str) -> Optional[str]:
        return self.catalogue.background_path(song_name)

    def get_video_path(self, song_name: str) -> Optional[str]:
        return self.catalogue.video_path(song_name)

    def get_video_offset(self, song_name: str) -> int:
        return self.catalogue.video_offset(song_name)

    def get_storyboard_image_path(self, song_name: str) -> Optional[str]:
        base_folder = self.get_song_base_folder(song_name)
        if not base_folder:
            return None
        candidate = Path(base_folder) / STORYBOARD_IMAGE
        return str(candidate) if candidate.is_file() else None

    def get_metadata(self, song_name: str) -> Optional[SongMetadataDetails]:
        return self.catalogue.metadata(song_name)

    def get_display_parts(self, song_name: str) -> Optional[SongDisplayParts]:
        return self.catalogue.display_parts(song_name)

    def resolve_display_parts(self, song_name: str) -> SongDisplayParts:
        return resolve_display_parts(self.catalogue, song_name)

    def get_tags(self, song_name: str) -> List[str]:
        return self.catalogue.tags(song_name)

    def get_creators(self, song_name: str) -> List[str]:
        return self.catalogue.creators(song_name)

    def search_songs(self, query: Optional[str]) -> List[str]:
        return self.catalogue.search(query)

    def add_to_history(self, song_name: str) -> None:
        self.history.add_song(song_name)

    def get_previous_from_history(self) -> Optional[str]:
        return self.history.get_previous()

    def get_next_from_history(self) -> Optional[str]:
        return self.history.get_next()

    def has_previous_in_history(self) -> bool:
        return self.history.has_previous()

    def has_next_in_history(self) -> bool:
        return self.history.has_next()

    def get_current_history_song(self) -> Optional[str]:
        return self.history.get_current()

    def clear_history(self) -> None:
        self.history.clear()

    def get_history(self) -> List[str]:
        return self.history.get_history()

    def get_history_index(self) -> int:
        return self.history.get_index()

    def set_history_index(self, index: int) -> None:
        self.history.set_index(index)

    def set_history(self, history: List[str], index: int) -> None:
        self.history.set_history(history, index)
