"""
The indexer module resolves the on-disk library into a map of catalog track ID -> file path.

The library is laid out in two levels, collection -> grouping, and each grouping directory is a flat
folder of audio files plus a tab-separated sidecar manifest. Each manifest line records a track ID in
its first field and the expected filename in its fifth field:

    <base>/<collection>/<grouping>/.song_ids
    <base>/<collection>/<grouping>/01. Track.ogg

Every problem we encounter here is recoverable: it is logged, counted, and the walk continues. The
only fatal condition is a base directory that cannot be read at all.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from genretag.audiotags import UnsupportedFiletypeError, read_genre
from genretag.common import GenretagExpectedError, TrackId

logger = logging.getLogger(__name__)

TRACK_ID_FIELD = 0
FILENAME_FIELD = 4


class LibraryDirectoryError(GenretagExpectedError):
    pass


@dataclass(frozen=True)
class SidecarEntry:
    fields: tuple[str, ...]

    @classmethod
    def parse(cls, line: str) -> SidecarEntry:
        return SidecarEntry(fields=tuple(line.split("\t")))

    @property
    def track_id(self) -> TrackId:
        return TrackId(self.fields[TRACK_ID_FIELD])

    @property
    def filename(self) -> str | None:
        try:
            return self.fields[FILENAME_FIELD]
        except IndexError:
            return None


def parse_manifest(text: str) -> list[SidecarEntry]:
    """Parse a manifest body into entries. Blank lines carry no entry and are skipped."""
    return [SidecarEntry.parse(line) for line in text.splitlines() if line.strip()]


@dataclass
class PathIndex:
    paths: dict[TrackId, Path] = dataclasses.field(default_factory=dict)

    def insert(self, track_id: TrackId, path: Path) -> Path | None:
        """Map track_id to path. The last write wins; returns the path that was replaced, if any."""
        previous = self.paths.get(track_id)
        self.paths[track_id] = path
        return previous

    def get(self, track_id: TrackId) -> Path | None:
        return self.paths.get(track_id)

    def items(self) -> Iterator[tuple[TrackId, Path]]:
        yield from self.paths.items()

    def __contains__(self, track_id: object) -> bool:
        return track_id in self.paths

    def __len__(self) -> int:
        return len(self.paths)


@dataclass
class IndexResult:
    paths: PathIndex = dataclasses.field(default_factory=PathIndex)
    found: int = 0
    not_found: int = 0
    duplicates: int = 0
    errors: int = 0
    missing_manifests: int = 0

    def summary(self) -> str:
        return "\n".join(
            [
                f"Tracks found successfully: {self.found}",
                f"Tracks not found: {self.not_found}",
                f"Duplicates: {self.duplicates}",
                f"Errors: {self.errors}",
                f"Folders without a manifest: {self.missing_manifests}",
            ]
        )


def index_library(base_dir: Path, manifest_name: str = ".song_ids") -> IndexResult:
    """
    Walk base_dir -> collections -> groupings and build the PathIndex from each grouping's manifest.
    Raises LibraryDirectoryError if base_dir itself is unreadable.
    """
    base_dir = base_dir.absolute()
    try:
        collections = _scandir_sorted(base_dir)
    except OSError as e:
        raise LibraryDirectoryError(f"Failed to read music source directory {base_dir}: {e}") from e

    result = IndexResult()
    logger.debug(f"Indexing {len(collections)} collection entries in {base_dir}")
    for collection in collections:
        for grouping in _subdirectories(collection, result):
            _index_grouping(Path(grouping.path), manifest_name, result)

    logger.info(
        f"Indexed {len(result.paths)} tracks from {base_dir} "
        f"({result.not_found} not found, {result.duplicates} duplicates, {result.errors} errors)"
    )
    return result


def _scandir_sorted(path: Path) -> list[os.DirEntry[str]]:
    with os.scandir(path) as it:
        return sorted(it, key=lambda e: e.name)


def _subdirectories(collection: os.DirEntry[str], result: IndexResult) -> list[os.DirEntry[str]]:
    """Return the grouping directories of a collection. Non-directories are ignored."""
    try:
        if not collection.is_dir():
            return []
        return [g for g in _scandir_sorted(Path(collection.path)) if g.is_dir()]
    except OSError as e:
        result.errors += 1
        logger.error(f"Failed to read collection directory {collection.path}: {e}")
        return []


def _index_grouping(grouping: Path, manifest_name: str, result: IndexResult) -> None:
    try:
        files = _scandir_sorted(grouping)
    except OSError as e:
        result.errors += 1
        logger.error(f"Failed to read grouping directory {grouping}: {e}")
        return

    manifest = next((f for f in files if f.name == manifest_name), None)
    if manifest is None:
        result.missing_manifests += 1
        logger.error(f"No {manifest_name} file found for grouping directory {grouping}")
        return

    try:
        text = Path(manifest.path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        result.errors += 1
        logger.error(f"Failed to read manifest {manifest.path}: {e}")
        return
    if not text:
        logger.debug(f"Skipping {grouping}: empty manifest")
        return

    for entry in parse_manifest(text):
        filename = entry.filename
        if filename is None:
            result.not_found += 1
            logger.error(f"Malformed manifest entry in {manifest.path}: {entry.fields}")
            continue
        # Match on the bare filename first. Some entries were recorded with an absolute path
        # instead, so fall back to comparing against the full path.
        match = next((f for f in files if f.name == filename), None)
        if match is None:
            match = next((f for f in files if f.path == filename), None)
        if match is None:
            result.not_found += 1
            logger.error(f"No file found in {grouping} matching manifest entry {entry.fields}")
            continue

        path = Path(match.path)
        result.found += 1
        previous = result.paths.insert(entry.track_id, path)
        if previous is not None:
            result.duplicates += 1
            logger.debug(f"Path for track {entry.track_id} was {previous}, replaced by {path}")


def dump_path_index(paths: PathIndex, with_genres: bool = False) -> str:
    """Dump the PathIndex as JSON, optionally with each file's current genre tag."""
    rv: list[dict[str, Any]] = []
    for track, path in sorted(paths.items()):
        entry: dict[str, Any] = {"track_id": str(track), "path": str(path)}
        if with_genres:
            try:
                entry["genre"] = read_genre(path)
            except UnsupportedFiletypeError as e:
                logger.warning(f"Failed to read the genre of {path}: {e}")
                entry["genre"] = None
        rv.append(entry)
    return json.dumps(rv, indent=2)
