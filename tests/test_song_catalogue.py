from pathlib import Path
import os
import sys
import unittest
from unittest import mock

sys.path.append(str(Path(__file__).resolve().parents[1]))

from song_catalogue import (
    UNKNOWN_MAPPER,
    SongCatalogue,
    SongDisplayParts,
    SongEntry,
    normalize_folder_path,
    resolve_display_parts,
    split_display_name,
)


def _entry(mapper="X", base_name="A - B", difficulty="Normal", show_difficulty=False, folder="/songs/1", **overrides):
    values = dict(
        base_name=base_name,
        title=base_name.split(" - ", 1)[-1],
        artist=base_name.split(" - ", 1)[0],
        difficulty_name=difficulty,
        mapper=mapper,
        audio_path="%s/%s-%s.mp3" % (folder, mapper, difficulty),
        base_folder=folder,
        creators=[mapper] if mapper else [],
        show_difficulty=show_difficulty,
    )
    values.update(overrides)
    return SongEntry(**values)


class TestSongCatalogue(unittest.TestCase):
    def test_single_entry_uses_base_name(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry()])
        self.assertEqual(catalogue.names(), ["A - B"])
        self.assertEqual(catalogue.display_parts("A - B"), SongDisplayParts("A - B"))

    def test_colliding_base_labels_are_disambiguated_by_mapper(self):
        catalogue = SongCatalogue()
        catalogue.replace([
            _entry("X", folder="/songs/1"),
            _entry("Y", folder="/songs/2"),
            _entry("X", folder="/songs/3"),
        ])
        self.assertEqual(catalogue.names(), ["A - B (X)", "A - B (Y)", "A - B (X) [2]"])
        parts = catalogue.display_parts("A - B (X) [2]")
        self.assertEqual(parts.base_text, "A - B")
        self.assertEqual(parts.mapper_text, "X")
        self.assertEqual(parts.duplicate_suffix, "[2]")

    def test_difficulty_segment_when_shown(self):
        catalogue = SongCatalogue()
        catalogue.replace([
            _entry(difficulty="Easy", show_difficulty=True),
            _entry(difficulty="Insane", show_difficulty=True),
        ])
        self.assertEqual(catalogue.names(), ["A - B / Easy", "A - B / Insane"])
        self.assertEqual(catalogue.display_parts("A - B / Easy").difficulty_text, "Easy")
        self.assertIsNone(catalogue.display_parts("A - B / Easy").mapper_text)

    def test_blank_mapper_uses_placeholder_label(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry(""), _entry("Y", folder="/songs/2")])
        self.assertIn("A - B (%s)" % UNKNOWN_MAPPER, catalogue.songs)
        self.assertIn("A - B (Y)", catalogue.songs)

    def test_display_names_stay_unique(self):
        catalogue = SongCatalogue()
        entries = [_entry("X", folder="/songs/%d" % index) for index in range(5)]
        catalogue.replace(entries)
        self.assertEqual(len(catalogue), 5)
        self.assertEqual(len(set(catalogue.names())), 5)

    def test_insert_after_single_entry_adds_mapper_label(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry("X")])
        added = catalogue.insert(_entry("Y", folder="/songs/2"))
        self.assertEqual(added, "A - B (Y)")
        self.assertEqual(sorted(catalogue.names()), ["A - B", "A - B (Y)"])

    def test_surviving_suffixes_are_not_renumbered(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry("X", folder="/songs/%d" % index) for index in (1, 2, 3)])
        third_path = catalogue.song_path("A - B (X) [3]")
        self.assertTrue(catalogue.remove("A - B (X) [2]"))
        self.assertEqual(catalogue.song_path("A - B (X) [3]"), third_path)
        self.assertNotIn("A - B (X) [2]", catalogue)

        added = catalogue.insert(_entry("X", folder="/songs/4"))
        self.assertNotIn(added, ("A - B (X)", "A - B (X) [2]", "A - B (X) [3]"))
        self.assertEqual(len(set(catalogue.names())), 3)

    def test_counters_drain_after_skipping_occupied_names(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry("X", folder="/songs/%d" % index) for index in (1, 2, 3)])
        catalogue.remove("A - B (X) [2]")
        self.assertEqual(catalogue.insert(_entry("X", folder="/songs/4")), "A - B (X) [4]")
        self.assertEqual(catalogue.canonical_display_counters, {"A - B (X)": 3})

        for name in catalogue.names():
            catalogue.remove(name)
        self.assertEqual(catalogue.base_display_counts, {})
        self.assertEqual(catalogue.canonical_display_counters, {})

        self.assertEqual(catalogue.insert(_entry("Y", folder="/songs/5")), "A - B")
        self.assertEqual(catalogue.insert(_entry("X", folder="/songs/6")), "A - B (X)")

    def test_remove_releases_counters(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry("X"), _entry("Y", folder="/songs/2")])
        for name in catalogue.names():
            catalogue.remove(name)
        self.assertEqual(len(catalogue), 0)
        self.assertEqual(catalogue.base_display_counts, {})
        self.assertEqual(catalogue.canonical_display_counters, {})
        self.assertFalse(catalogue.remove("A - B (X)"))

    def test_names_in_folder_uses_normalized_paths(self):
        catalogue = SongCatalogue()
        folder = os.path.join(os.sep, "songs", "pack")
        catalogue.replace([_entry("X", folder=folder + os.sep + "." + os.sep)])
        self.assertEqual(catalogue.names_in_folder(folder), ["A - B"])
        self.assertEqual(catalogue.export_entries()[0].base_folder, normalize_folder_path(folder))

    def test_replace_reports_progress_per_entry(self):
        catalogue = SongCatalogue()
        progress = mock.Mock()
        entries = [_entry("X"), _entry("Y", folder="/songs/2")]
        catalogue.replace(entries, progress)
        self.assertEqual(
            progress.call_args_list,
            [mock.call(1, 2, entries[0]), mock.call(2, 2, entries[1])],
        )

    def test_metadata_and_accessors(self):
        catalogue = SongCatalogue()
        catalogue.replace([_entry("X", tags=["tv", "Anime"], video_path="/songs/1/v.mp4", video_offset_millis=-50)])
        metadata = catalogue.metadata("A - B")
        self.assertEqual(metadata.mapper, "X")
        self.assertEqual(metadata.difficulty, "Normal")
        self.assertEqual(metadata.tags, ("tv", "Anime"))
        self.assertEqual(catalogue.video_path("A - B"), "/songs/1/v.mp4")
        self.assertEqual(catalogue.video_offset("A - B"), -50)
        self.assertIsNone(catalogue.background_path("A - B"))
        self.assertEqual(catalogue.creators("A - B"), ["X"])
        self.assertIsNone(catalogue.metadata("missing"))

    def test_search_matches_names_and_tags(self):
        catalogue = SongCatalogue()
        catalogue.replace([
            _entry("X", base_name="Artist - Alpha", tags=["anime"]),
            _entry("Y", base_name="Other - Beta", folder="/songs/2"),
        ])
        self.assertEqual(catalogue.search("ANIME"), ["Artist - Alpha"])
        self.assertEqual(catalogue.search("beta"), ["Other - Beta"])
        self.assertEqual(len(catalogue.search("")), 2)


class TestDisplayParts(unittest.TestCase):
    def test_split_display_name_reads_all_segments(self):
        parts = split_display_name("A - B / Hard (X) [2]")
        self.assertEqual(parts, SongDisplayParts("A - B", "Hard", "X", "[2]"))

    def test_split_display_name_respects_expected_mapper(self):
        parts = split_display_name("Song (TV Size)")
        self.assertEqual(parts.mapper_text, "TV Size")
        catalogue = SongCatalogue()
        catalogue.replace([_entry("X", base_name="Artist - Song (TV Size)")])
        resolved = resolve_display_parts(catalogue, "Artist - Song (TV Size)")
        self.assertEqual(resolved.base_text, "Artist - Song (TV Size)")
        self.assertIsNone(resolved.mapper_text)

    def test_blank_segments_are_normalised(self):
        parts = SongDisplayParts("A - B", difficulty_text="  ", mapper_text=" X ")
        self.assertIsNone(parts.difficulty_text)
        self.assertEqual(parts.mapper_text, "X")


if __name__ == "__main__":
    unittest.main()
