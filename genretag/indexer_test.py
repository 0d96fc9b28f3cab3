import json
import logging
from pathlib import Path

import pytest

from conftest import write_manifest
from genretag.common import TrackId
from genretag.config import Config
from genretag.indexer import (
    LibraryDirectoryError,
    PathIndex,
    SidecarEntry,
    dump_path_index,
    index_library,
    parse_manifest,
)


def _grouping(config: Config, collection: str, grouping: str, files: list[str]) -> Path:
    d = config.music_source_dir / collection / grouping
    d.mkdir(parents=True)
    for f in files:
        (d / f).touch()
    return d


def test_index_library(config: Config) -> None:
    grouping = _grouping(config, "Artist", "Album", ["a.ogg", "b.ogg"])
    write_manifest(grouping, ["id1\t\t\t\ta.ogg", "id2\t\t\t\tb.ogg"])

    result = index_library(config.music_source_dir)
    assert dict(result.paths.items()) == {
        TrackId("id1"): grouping / "a.ogg",
        TrackId("id2"): grouping / "b.ogg",
    }
    assert result.found == 2
    assert result.not_found == 0
    assert result.duplicates == 0
    assert result.errors == 0
    assert result.missing_manifests == 0


def test_index_library_missing_manifest(config: Config, caplog: pytest.LogCaptureFixture) -> None:
    with_manifest = _grouping(config, "Artist", "Album 1", ["a.ogg"])
    write_manifest(with_manifest, ["id1\t\t\t\ta.ogg"])
    without_manifest = _grouping(config, "Artist", "Album 2", ["b.ogg"])

    with caplog.at_level(logging.ERROR):
        result = index_library(config.music_source_dir)
    assert dict(result.paths.items()) == {TrackId("id1"): with_manifest / "a.ogg"}
    assert result.missing_manifests == 1
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert str(without_manifest) in errors[0].getMessage()


def test_index_library_not_found(config: Config, caplog: pytest.LogCaptureFixture) -> None:
    grouping = _grouping(config, "Artist", "Album", ["a.ogg"])
    write_manifest(grouping, ["id1\t\t\t\ta.ogg", "id2\t\t\t\tmissing.ogg", "id3\ttoo\tshort"])

    result = index_library(config.music_source_dir)
    assert dict(result.paths.items()) == {TrackId("id1"): grouping / "a.ogg"}
    assert result.found == 1
    assert result.not_found == 2
    assert "missing.ogg" in caplog.text


def test_index_library_absolute_path_fallback(config: Config) -> None:
    grouping = _grouping(config, "Artist", "Album", ["a.ogg"])
    write_manifest(grouping, [f"id1\t\t\t\t{grouping / 'a.ogg'}"])

    result = index_library(config.music_source_dir)
    assert dict(result.paths.items()) == {TrackId("id1"): grouping / "a.ogg"}
    assert result.not_found == 0


def test_index_library_duplicates(config: Config, caplog: pytest.LogCaptureFixture) -> None:
    g1 = _grouping(config, "Artist", "Album 1", ["a.ogg"])
    write_manifest(g1, ["id1\t\t\t\ta.ogg"])
    g2 = _grouping(config, "Artist", "Album 2", ["b.ogg"])
    write_manifest(g2, ["id1\t\t\t\tb.ogg"])

    result = index_library(config.music_source_dir)
    # Groupings are walked in name order, so Album 2 is the last write.
    assert dict(result.paths.items()) == {TrackId("id1"): g2 / "b.ogg"}
    assert result.found == 2
    assert result.duplicates == 1
    # The replaced path is the one from the first write.
    assert f"was {g1 / 'a.ogg'}, replaced by {g2 / 'b.ogg'}" in caplog.text


def test_index_library_empty_manifest(config: Config) -> None:
    grouping = _grouping(config, "Artist", "Album", ["a.ogg"])
    (grouping / ".song_ids").touch()

    result = index_library(config.music_source_dir)
    assert len(result.paths) == 0
    assert result.found == 0
    assert result.not_found == 0
    assert result.missing_manifests == 0


def test_index_library_ignores_stray_files(config: Config) -> None:
    # Files at the collection level are not groupings.
    (config.music_source_dir / "stray.txt").touch()
    collection = config.music_source_dir / "Artist"
    collection.mkdir()
    (collection / "notes.txt").touch()
    grouping = _grouping(config, "Artist", "Album", ["a.ogg"])
    write_manifest(grouping, ["id1\t\t\t\ta.ogg"])

    result = index_library(config.music_source_dir)
    assert dict(result.paths.items()) == {TrackId("id1"): grouping / "a.ogg"}
    assert result.errors == 0


def test_index_library_custom_manifest_name(config: Config) -> None:
    grouping = _grouping(config, "Artist", "Album", ["a.ogg"])
    (grouping / ".ids").write_text("id1\t\t\t\ta.ogg\n")

    result = index_library(config.music_source_dir, manifest_name=".ids")
    assert dict(result.paths.items()) == {TrackId("id1"): grouping / "a.ogg"}


def test_index_library_base_dir_missing(isolated_dir: Path) -> None:
    with pytest.raises(LibraryDirectoryError):
        index_library(isolated_dir / "nonexistent")


def test_path_index_last_write_wins() -> None:
    paths = PathIndex()
    assert paths.insert(TrackId("id1"), Path("/p1")) is None
    assert paths.insert(TrackId("id1"), Path("/p2")) == Path("/p1")
    assert paths.get(TrackId("id1")) == Path("/p2")
    assert len(paths) == 1
    assert TrackId("id1") in paths


def test_parse_manifest() -> None:
    entries = parse_manifest("id1\ta\tb\tc\t01.ogg\textra\n\nid2\t\t\t\t02.ogg\n")
    assert entries == [
        SidecarEntry(fields=("id1", "a", "b", "c", "01.ogg", "extra")),
        SidecarEntry(fields=("id2", "", "", "", "02.ogg")),
    ]
    assert entries[0].track_id == TrackId("id1")
    assert entries[0].filename == "01.ogg"
    assert SidecarEntry.parse("id3\tshort").filename is None


def test_dump_path_index(config: Config, library: Path) -> None:
    result = index_library(config.music_source_dir)
    assert json.loads(dump_path_index(result.paths)) == [
        {"track_id": "id1", "path": str(library / "a.ogg")},
        {"track_id": "id2", "path": str(library / "b.ogg")},
    ]
    dumped = json.loads(dump_path_index(result.paths, with_genres=True))
    assert [d["genre"] for d in dumped] == [[], []]
