"""Difficulty file (.osu) parsing utilities for the beatmap library."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union


LOGGER = logging.getLogger(__name__)


DIFFICULTY_FILE_SUFFIX = ".osu"

FILE_ENCODING = "utf-8-sig"

QUOTED_CONTENT_RE = re.compile(r'"([^"]+)"')

GENERAL_SECTION = "[General]"
METADATA_SECTION = "[Metadata]"
EVENTS_SECTION = "[Events]"

METADATA_KEYS = (
    ("titleunicode", "title_unicode"),
    ("title", "title"),
    ("artistunicode", "artist_unicode"),
    ("artist", "artist"),
    ("creator", "creator"),
    ("version", "version"),
    ("source", "source"),
    ("tags", "tags"),
    ("beatmapid", "beatmap_id"),
    ("beatmapsetid", "beatmap_set_id"),
)

PathLike = Union[str, Path]


@dataclass
class BeatmapMetadata:
    title: str
    artist: str
    audio_filename: str
    title_unicode: Optional[str] = None
    artist_unicode: Optional[str] = None
    creator: Optional[str] = None
    version: Optional[str] = None
    source: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    beatmap_id: Optional[str] = None
    beatmap_set_id: Optional[str] = None


@dataclass(frozen=True)
class VideoEvent:
    filename: Optional[str]
    offset_millis: int = 0


def _decode(raw_bytes: bytes, path: Path) -> str:
    try:
        return raw_bytes.decode(FILE_ENCODING)
    except UnicodeDecodeError:
        LOGGER.warning("Decoded %s with replacement characters", path)
        return raw_bytes.decode(FILE_ENCODING, errors="replace")


def read_osu(path: PathLike) -> Optional[str]:
    """Return the decoded text of a difficulty file, or ``None`` if unreadable."""

    osu_path = Path(path)
    try:
        raw_bytes = osu_path.read_bytes()
    except OSError as exc:
        LOGGER.debug("Could not read %s: %s", osu_path, exc)
        return None
    return _decode(raw_bytes, osu_path)


def _is_section_header(line: str) -> bool:
    return line.startswith("[") and line.endswith("]")


def _value_after_colon(line: str) -> str:
    _, _, value = line.partition(":")
    return value.strip()


def _key_before_colon(line: str) -> str:
    key, _, _ = line.partition(":")
    return key.strip().casefold()


def _iter_section_lines(text: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(section, line)`` pairs for every meaningful line."""

    section = ""
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("//"):
            continue
        if _is_section_header(line):
            section = line
            continue
        yield section, line


def list_difficulty_files(folder: Optional[PathLike]) -> List[Path]:
    if folder is None:
        return []
    folder_path = Path(folder)
    try:
        if not folder_path.is_dir():
            return []
        candidates = [
            child
            for child in folder_path.iterdir()
            if child.name.lower().endswith(DIFFICULTY_FILE_SUFFIX) and child.is_file()
        ]
    except OSError as exc:
        LOGGER.debug("Could not list difficulty files in %s: %s", folder_path, exc)
        return []
    return sorted(candidates, key=lambda child: child.name)


def parse_metadata(path: PathLike) -> Optional[BeatmapMetadata]:
    text = read_osu(path)
    if text is None:
        return None

    values = {}
    audio_filename: Optional[str] = None
    tags: List[str] = []

    for section, line in _iter_section_lines(text):
        if section == GENERAL_SECTION:
            if _key_before_colon(line) == "audiofilename":
                audio_filename = _value_after_colon(line)
        elif section == METADATA_SECTION:
            key = _key_before_colon(line)
            for raw_key, attribute in METADATA_KEYS:
                if key != raw_key:
                    continue
                value = _value_after_colon(line)
                if attribute == "tags":
                    tags = value.split() if value else []
                else:
                    values[attribute] = value
                break

    title = values.get("title")
    if title is None:
        title = values.get("title_unicode")
    artist = values.get("artist")
    if artist is None:
        artist = values.get("artist_unicode")

    if title is None or artist is None or audio_filename is None:
        LOGGER.debug("Skipping %s: missing title, artist or audio filename", path)
        return None

    return BeatmapMetadata(
        title=title,
        artist=artist,
        audio_filename=audio_filename,
        title_unicode=values.get("title_unicode"),
        artist_unicode=values.get("artist_unicode"),
        creator=values.get("creator"),
        version=values.get("version"),
        source=values.get("source"),
        tags=tags,
        beatmap_id=values.get("beatmap_id"),
        beatmap_set_id=values.get("beatmap_set_id"),
    )


def _extract_video_filename(line: str) -> Optional[str]:
    match = QUOTED_CONTENT_RE.search(line)
    if match:
        return match.group(1)
    parts = line.split(",", 2)
    if len(parts) >= 3:
        return parts[2].replace('"', "").strip()
    return None


def _extract_video_offset(line: str) -> int:
    parts = line.split(",", 2)
    if len(parts) < 2:
        return 0
    try:
        return int(parts[1].strip())
    except ValueError:
        return 0


def parse_video_event(path: PathLike) -> Optional[VideoEvent]:
    text = read_osu(path)
    if text is None:
        return None
    in_events = False
    for section, line in _iter_section_lines(text):
        if section != EVENTS_SECTION:
            if in_events:
                break
            continue
        in_events = True
        if line[:5].casefold() == "video":
            return VideoEvent(_extract_video_filename(line), _extract_video_offset(line))
    return None


def parse_background(path: PathLike) -> Optional[str]:
    text = read_osu(path)
    if text is None:
        return None
    in_events = False
    for section, line in _iter_section_lines(text):
        if section != EVENTS_SECTION:
            if in_events:
                break
            continue
        in_events = True
        if line.startswith("0,"):
            parts = line.split(",")
            if len(parts) >= 3:
                return parts[2].replace('"', "").strip()
    return None


class OsuMetadataExtractor:
    """Default metadata extractor reading osu! difficulty files from disk."""

    def list_difficulty_files(self, folder: Optional[PathLike]) -> List[Path]:
        return list_difficulty_files(folder)

    def parse_metadata(self, path: PathLike) -> Optional[BeatmapMetadata]:
        try:
            return parse_metadata(path)
        except Exception:  # pragma: no cover - parser errors must not abort a folder
            LOGGER.exception("Failed to parse %s", path)
            return None

    def parse_video_event(self, path: PathLike) -> Optional[VideoEvent]:
        try:
            return parse_video_event(path)
        except Exception:  # pragma: no cover - parser errors must not abort a folder
            LOGGER.exception("Failed to read video event from %s", path)
            return None

    def parse_background(self, path: PathLike) -> Optional[str]:
        try:
            return parse_background(path)
        except Exception:  # pragma: no cover - parser errors must not abort a folder
            LOGGER.exception("Failed to read background from %s", path)
            return None
