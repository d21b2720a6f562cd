"""Persisted snapshot of the integrated beatmap library."""
from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Optional

from pymongo.collection import Collection
from redis import Redis

from song_catalogue import SongEntry


LOGGER = logging.getLogger(__name__)


FORMAT_VERSION = 1
DEFAULT_CACHE_NAME = "library"
DEFAULT_REDIS_KEY = "beatmap_library:cache"


@dataclass(frozen=True)
class FolderSignature:
    """Root modification time plus the modification time of each child folder."""

    root_last_modified: int = 0
    folder_modified_times: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "FolderSignature":
        return cls(0, {})


@dataclass(frozen=True)
class FolderSignatureRecord:
    path: str
    last_modified: int


@dataclass
class LibraryCache:
    folder_path: str
    root_last_modified: int
    folder_signatures: List[FolderSignatureRecord] = field(default_factory=list)
    entries: List[SongEntry] = field(default_factory=list)
    folder_difficulty_counts: Dict[str, int] = field(default_factory=dict)
    total_difficulty_count: int = 0
    version: int = FORMAT_VERSION

    @classmethod
    def from_snapshot(
        cls,
        folder_path: str,
        signature: FolderSignature,
        entries: List[SongEntry],
        folder_difficulty_counts: Mapping[str, int],
        total_difficulty_count: int,
    ) -> "LibraryCache":
        records = [
            FolderSignatureRecord(path, last_modified)
            for path, last_modified in sorted(signature.folder_modified_times.items())
        ]
        return cls(
            folder_path=folder_path,
            root_last_modified=signature.root_last_modified,
            folder_signatures=records,
            entries=list(entries),
            folder_difficulty_counts=dict(folder_difficulty_counts),
            total_difficulty_count=total_difficulty_count,
        )

    def signature_map(self) -> Dict[str, int]:
        return {record.path: record.last_modified for record in self.folder_signatures}

    def matches(self, folder_path: Optional[str], signature: FolderSignature) -> bool:
        if not folder_path or not self.folder_path:
            return False
        if os.path.normcase(folder_path) != os.path.normcase(self.folder_path):
            return False
        if self.root_last_modified != signature.root_last_modified:
            return False
        return self.signature_map() == dict(signature.folder_modified_times)


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _str_list(value: object) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError("expected a list of strings")
    return [str(item) for item in value]


def _entry_from_document(item: Mapping[str, object]) -> SongEntry:
    audio_path = item["audio_path"]
    if not isinstance(audio_path, str) or not audio_path:
        raise ValueError("cached entry without audio path")
    return SongEntry(
        base_name=str(item["base_name"]),
        title=str(item.get("title") or ""),
        artist=str(item.get("artist") or ""),
        difficulty_name=_optional_str(item.get("difficulty_name")),
        mapper=_optional_str(item.get("mapper")),
        audio_path=audio_path,
        video_path=_optional_str(item.get("video_path")),
        video_offset_millis=int(item.get("video_offset_millis") or 0),
        background_path=_optional_str(item.get("background_path")),
        base_folder=_optional_str(item.get("base_folder")),
        tags=_str_list(item.get("tags")),
        creators=_str_list(item.get("creators")),
        show_difficulty=bool(item.get("show_difficulty", False)),
        beatmap_id=_optional_str(item.get("beatmap_id")),
        beatmap_set_id=_optional_str(item.get("beatmap_set_id")),
        source=_optional_str(item.get("source")),
    )


def cache_to_document(cache: LibraryCache) -> Dict[str, object]:
    return {
        "version": cache.version,
        "folder_path": cache.folder_path,
        "root_last_modified": cache.root_last_modified,
        "folder_signatures": [
            {"path": record.path, "last_modified": record.last_modified}
            for record in cache.folder_signatures
        ],
        "entries": [asdict(entry) for entry in cache.entries],
        # MongoDB field names cannot hold arbitrary folder paths.
        "folder_difficulty_counts": [
            {"path": path, "count": count}
            for path, count in sorted(cache.folder_difficulty_counts.items())
        ],
        "total_difficulty_count": cache.total_difficulty_count,
    }


def cache_from_document(payload: object) -> Optional[LibraryCache]:
    """Rebuild a cache from its stored form, or ``None`` if it is unusable."""

    if not isinstance(payload, Mapping):
        return None
    try:
        version = int(payload["version"])
        if version != FORMAT_VERSION:
            LOGGER.debug("Ignoring library cache with format version %s", version)
            return None
        folder_path = payload["folder_path"]
        if not isinstance(folder_path, str) or not folder_path:
            return None
        signatures = [
            FolderSignatureRecord(str(item["path"]), int(item["last_modified"]))
            for item in payload["folder_signatures"]
        ]
        entries = [_entry_from_document(item) for item in payload["entries"]]
        counts: Dict[str, int] = {}
        for item in payload["folder_difficulty_counts"]:
            counts[str(item["path"])] = int(item["count"])
        total = int(payload["total_difficulty_count"])
        root_last_modified = int(payload["root_last_modified"])
    except Exception:
        LOGGER.debug("Failed to reconstruct library cache from stored payload")
        return None
    if total != sum(counts.values()):
        LOGGER.debug("Ignoring library cache with inconsistent difficulty counts")
        return None
    return LibraryCache(
        folder_path=folder_path,
        root_last_modified=root_last_modified,
        folder_signatures=signatures,
        entries=entries,
        folder_difficulty_counts=counts,
        total_difficulty_count=total,
        version=version,
    )


class MemoryLibraryCacheStore:
    """Keeps the serialized cache in process memory."""

    def __init__(self) -> None:
        self._document: Optional[Dict[str, object]] = None

    def load_library_cache(self) -> Optional[LibraryCache]:
        if self._document is None:
            return None
        return cache_from_document(self._document)

    def save_library_cache(self, cache: Optional[LibraryCache]) -> None:
        self._document = cache_to_document(cache) if cache is not None else None

    def clear_library_cache(self) -> None:
        self._document = None


class MongoLibraryCacheStore:
    def __init__(self, collection: Collection, name: str = DEFAULT_CACHE_NAME) -> None:
        self.collection = collection
        self.name = name
        try:
            self.collection.create_index("name", unique=True)
        except Exception:  # pragma: no cover - tolerate missing create_index
            LOGGER.debug("Failed to ensure unique index for library cache collection")

    def load_library_cache(self) -> Optional[LibraryCache]:
        document = self.collection.find_one({"name": self.name})
        if not document:
            return None
        return cache_from_document(document.get("cache"))

    def save_library_cache(self, cache: Optional[LibraryCache]) -> None:
        if cache is None:
            self.clear_library_cache()
            return
        self.collection.update_one(
            {"name": self.name},
            {"$set": {"cache": cache_to_document(cache), "updatedAt": int(time.time() * 1000)}},
            upsert=True,
        )

    def clear_library_cache(self) -> None:
        self.collection.delete_many({"name": self.name})


class RedisLibraryCacheStore:
    def __init__(self, client: Redis, key: str = DEFAULT_REDIS_KEY) -> None:
        self.client = client
        self.key = key

    def load_library_cache(self) -> Optional[LibraryCache]:
        raw = self.client.get(self.key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw)
        except ValueError:
            LOGGER.debug("Stored library cache under %s is not valid JSON", self.key)
            return None
        return cache_from_document(payload)

    def save_library_cache(self, cache: Optional[LibraryCache]) -> None:
        if cache is None:
            self.clear_library_cache()
            return
        self.client.set(self.key, json.dumps(cache_to_document(cache), ensure_ascii=False))

    def clear_library_cache(self) -> None:
        self.client.delete(self.key)
