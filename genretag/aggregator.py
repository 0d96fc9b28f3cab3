"""
The aggregator module resolves track IDs to genres through the catalog. Tracks do not have genres of
their own; their artists do. So for every track we look up its artists, look up each artist's
genres, and give the track the union of its artists' genres.

The PathIndex is split into pages, and each page is processed by its own concurrent task:

1. Sleep a random jitter, so that tasks started together do not hit the catalog's rate limit together.
2. Fetch the page's tracks in one batched request, yielding a local working set of track -> artists.
3. Explode the working set into (track, artist) rows, page those, and fetch each page of artists.
   Every artist's genres go into the shared ArtistGenreCache.
4. Redistribute: for each artist in the shared cache, append its genres to every local track that
   references it and strike the artist off that track. A track with no artists left is resolved.

Tasks share the artist cache, so a task may resolve its tracks with artists that a sibling task
fetched. Whatever a task cannot resolve from the cache as it stands when the task finishes is left
over; once every task has joined, the leftovers get one more redistribution against the complete
cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import threading
from dataclasses import dataclass

from genretag.catalog import Catalog, CatalogAuthError
from genretag.common import ArtistId, TrackId, chunk, uniq
from genretag.indexer import PathIndex

logger = logging.getLogger(__name__)

# A task-local map of track -> artists whose genres have not yet been applied to the track.
WorkingSet = dict[TrackId, list[ArtistId]]


class ArtistGenreCache:
    """
    Artist -> genres, shared by all aggregation tasks. An artist's genres are the same no matter
    which task fetched them, so a later insert may overwrite an earlier one.
    """

    def __init__(self) -> None:
        self._genres: dict[ArtistId, list[str]] = {}
        self._lock = threading.Lock()

    def insert(self, artist: ArtistId, genres: list[str]) -> None:
        with self._lock:
            self._genres[artist] = uniq(genres)

    def get(self, artist: ArtistId) -> list[str] | None:
        with self._lock:
            genres = self._genres.get(artist)
            return list(genres) if genres is not None else None

    def snapshot(self) -> list[tuple[ArtistId, list[str]]]:
        with self._lock:
            return [(a, list(g)) for a, g in self._genres.items()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._genres)


class GenreByTrack:
    """Track -> accumulated genres, shared by all aggregation tasks. Tasks only ever append."""

    def __init__(self) -> None:
        self._genres: dict[TrackId, list[str]] = {}
        self._lock = threading.Lock()

    def extend(self, track: TrackId, genres: list[str]) -> None:
        with self._lock:
            self._genres.setdefault(track, []).extend(genres)

    def get(self, track: TrackId) -> list[str] | None:
        with self._lock:
            genres = self._genres.get(track)
            return list(genres) if genres is not None else None

    def freeze(self) -> dict[TrackId, list[str]]:
        with self._lock:
            return {t: finalize_genres(g) for t, g in self._genres.items()}


def finalize_genres(genres: list[str]) -> list[str]:
    """Collapse an accumulated genre list into a sorted list without duplicates."""
    return sorted(set(genres))


def redistribute(
    working: WorkingSet,
    cache: list[tuple[ArtistId, list[str]]],
    track_genres: GenreByTrack,
) -> None:
    """
    Apply every cached artist's genres to the tracks in the working set that reference the artist,
    and remove the artist from those tracks. Tracks left without artists are removed from the
    working set. Mutates working in place.
    """
    for artist, genres in cache:
        for track in list(working):
            artists = working[track]
            if not artists:
                # Tracks enter the working set with at least one artist and leave it as soon as their
                # last artist is applied, so this means our bookkeeping is broken.
                logger.error(f"Track {track} is pending with no artists left; dropping it")
                del working[track]
                continue
            if artist not in artists:
                continue
            track_genres.extend(track, genres)
            artists.remove(artist)
            if not artists:
                del working[track]


@dataclass
class AggregateResult:
    genres: dict[TrackId, list[str]]
    tasks: int
    failed_tasks: int
    failed_tracks: int
    unresolved: int

    def summary(self) -> str:
        return "\n".join(
            [
                f"Aggregation tasks: {self.tasks} (failed: {self.failed_tasks})",
                f"Tracks in failed tasks: {self.failed_tracks}",
                f"Tracks with genres: {len(self.genres)}",
                f"Unresolved tracks: {self.unresolved}",
            ]
        )


def aggregate_genres(
    catalog: Catalog,
    paths: PathIndex,
    *,
    page_size: int = 50,
    jitter_ms_per_track: int = 10,
    reconcile: bool = True,
) -> AggregateResult:
    """Resolve the genres of every track in the PathIndex. Blocks until every task has finished."""
    return asyncio.run(
        _aggregate_genres(
            catalog,
            paths,
            page_size=page_size,
            jitter_ms_per_track=jitter_ms_per_track,
            reconcile=reconcile,
        )
    )


async def _aggregate_genres(
    catalog: Catalog,
    paths: PathIndex,
    *,
    page_size: int,
    jitter_ms_per_track: int,
    reconcile: bool,
) -> AggregateResult:
    artist_cache = ArtistGenreCache()
    track_genres = GenreByTrack()

    track_ids = [t for t, _ in paths.items()]
    jitter_ms = jitter_ms_per_track * len(track_ids)
    pages = [p for p in chunk(track_ids, page_size) if p]
    logger.info(f"Aggregating genres for {len(track_ids)} tracks in {len(pages)} tasks")

    tasks = [
        asyncio.create_task(
            _aggregate_page(i, catalog, page, page_size, jitter_ms, artist_cache, track_genres)
        )
        for i, page in enumerate(pages)
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    leftovers: list[WorkingSet] = []
    failed = 0
    failed_tracks = 0
    auth_error: CatalogAuthError | None = None
    for i, res in enumerate(results):
        if isinstance(res, BaseException):
            failed += 1
            # Whatever the task resolved before failing stays in GenreByTrack. The rest of its page
            # is neither reconciled nor counted as unresolved.
            failed_tracks += len(pages[i])
            logger.error(
                f"Aggregation task {i} failed for tracks {', '.join(map(str, pages[i]))}: {res}",
                exc_info=res,
            )
            if isinstance(res, CatalogAuthError) and auth_error is None:
                auth_error = res
            continue
        leftovers.append(res)
    if auth_error is not None:
        raise auth_error

    if reconcile:
        for working in leftovers:
            redistribute(working, artist_cache.snapshot(), track_genres)

    unresolved = 0
    for working in leftovers:
        for track, artists in working.items():
            unresolved += 1
            logger.warning(
                f"Track {track} was left without genres for artists {', '.join(map(str, artists))}"
            )

    return AggregateResult(
        genres=track_genres.freeze(),
        tasks=len(tasks),
        failed_tasks=failed,
        failed_tracks=failed_tracks,
        unresolved=unresolved,
    )


async def _aggregate_page(
    i: int,
    catalog: Catalog,
    page: list[TrackId],
    page_size: int,
    jitter_ms: int,
    artist_cache: ArtistGenreCache,
    track_genres: GenreByTrack,
) -> WorkingSet:
    """Process one page of tracks. Returns the part of the working set this task left unresolved."""
    # Try to stay under the catalog's rate limit.
    if jitter_ms > 0:
        await asyncio.sleep(random.randrange(jitter_ms) / 1000)

    working: WorkingSet = {}
    for track in await catalog.tracks(page):
        artists = uniq(track.artists)
        if not artists:
            logger.debug(f"Task {i}: track {track.id} has no artists")
            continue
        working[track.id] = artists
    logger.debug(f"Task {i}: artists by track {working}")

    rows = [(track, artist) for track, artists in working.items() for artist in artists]
    for artist_page in chunk(rows, page_size):
        for artist in await catalog.artists(uniq([a for _, a in artist_page])):
            artist_cache.insert(artist.id, artist.genres)
    logger.debug(f"Task {i}: artist cache holds {len(artist_cache)} artists")

    redistribute(working, artist_cache.snapshot(), track_genres)
    if working:
        logger.warning(
            f"Task {i}: {len(working)} tracks still have unresolved artists: {working}"
        )
    return working


def dump_genres(genres: dict[TrackId, list[str]]) -> str:
    return json.dumps({str(t): g for t, g in sorted(genres.items())}, indent=2)
