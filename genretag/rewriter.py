"""
The rewriter module writes each track's genres into its audio file.

Rather than editing tags in place, we remux: every audio stream is stream-copied packet by packet into
a fresh Ogg container at a temporary sibling path with the genre tag injected, and the temporary file
then replaces the original. No audio is decoded or re-encoded. Non-audio streams (cover art, data)
are dropped.

Where the tag goes depends on the source container: if it carries container-level tags, the genre is
written at the container level; otherwise it is written on the tags of the primary audio stream, as
Ogg-family files carry their tags per-stream.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import av
import av.error

from genretag.common import GenretagError, TrackId
from genretag.indexer import PathIndex

logger = logging.getLogger(__name__)

GENRE_TAG = "genre"
GENRE_SEPARATOR = ","
OUTPUT_FORMAT = "ogg"


class RewriteError(GenretagError):
    pass


@dataclass
class RewriteResult:
    rewritten: int = 0
    failed: int = 0
    missing: int = 0
    skipped: int = 0

    def summary(self) -> str:
        return "\n".join(
            [
                f"Files rewritten: {self.rewritten}",
                f"Files failed: {self.failed}",
                f"Tracks without a path: {self.missing}",
                f"Tracks without genres: {self.skipped}",
            ]
        )


def temp_path_for(path: Path, temp_suffix: str = ".tmp") -> Path:
    return path.with_name(path.name + temp_suffix)


def rewrite_genre(path: Path, genres: list[str], temp_suffix: str = ".tmp") -> None:
    """
    Rewrite the file at path so that its genre tag is the comma-joined genres. The original is only
    replaced once the rewritten file has been fully written and closed; on failure, the original is
    left untouched and the temporary file is removed.
    """
    value = GENRE_SEPARATOR.join(genres)
    tmp = temp_path_for(path, temp_suffix)
    logger.info(f"Processing file {path}")
    try:
        try:
            _remux_with_genre(path, tmp, value)
            tmp.replace(path)
        except (av.error.FFmpegError, OSError, ValueError) as e:
            raise RewriteError(f"Failed to rewrite {path}: {e}") from e
    except BaseException:
        # The original is untouched on every failure path. Only the temporary file needs removing.
        tmp.unlink(missing_ok=True)
        raise
    logger.debug(f"Wrote {GENRE_TAG}={value!r} to {path}")


def _remux_with_genre(src: Path, dst: Path, value: str) -> None:
    with av.open(str(src)) as icontainer:
        best_audio = icontainer.streams.best("audio")
        if best_audio is None:
            raise RewriteError(f"Failed to rewrite {src}: no audio stream found")
        tag_container = bool(icontainer.metadata)

        with av.open(str(dst), mode="w", format=OUTPUT_FORMAT) as ocontainer:
            # Input stream index -> output stream.
            stream_mapping: dict[int, Any] = {}
            for istream in icontainer.streams:
                if istream.type != "audio":
                    logger.debug(f"Dropping {istream.type} stream {istream.index} of {src}")
                    continue
                # Copies the codec parameters verbatim and resets the source container's codec tag.
                stream_mapping[istream.index] = ocontainer.add_stream_from_template(istream)

            if tag_container:
                ocontainer.metadata.update(_with_genre(icontainer.metadata, value))
            else:
                ostream = stream_mapping[best_audio.index]
                ostream.metadata.update(_with_genre(best_audio.metadata, value))

            ocontainer.start_encoding()

            for packet in icontainer.demux():
                ostream = stream_mapping.get(packet.stream.index)
                if ostream is None:
                    continue
                # The demuxer emits an empty flush packet per stream at EOF.
                if packet.dts is None:
                    continue
                # The packet still carries its byte position in the input. The muxer never reads it.
                # Reassigning the stream makes mux() rescale the timestamps from the input stream's
                # time base into the output stream's.
                packet.stream = ostream
                ocontainer.mux(packet)
        # Closing the output container writes the trailer.


def _with_genre(metadata: dict[str, str], value: str) -> dict[str, str]:
    """Copy metadata, replacing any existing genre tag regardless of its key's case."""
    rv = {k: v for k, v in metadata.items() if k.lower() != GENRE_TAG}
    rv[GENRE_TAG] = value
    return rv


def rewrite_library(
    paths: PathIndex,
    genres: dict[TrackId, list[str]],
    *,
    max_proc: int,
    temp_suffix: str = ".tmp",
) -> RewriteResult:
    """
    Rewrite every track that has genres, in parallel. A failure only affects its own file, and is
    logged and counted.
    """
    result = RewriteResult()
    jobs: list[tuple[TrackId, Path, list[str]]] = []
    for track, track_genres in genres.items():
        path = paths.get(track)
        if path is None:
            result.missing += 1
            logger.error(f"No path known for track {track}; not writing genres {track_genres}")
            continue
        if not track_genres:
            result.skipped += 1
            logger.debug(f"No genres to write for track {track} ({path})")
            continue
        jobs.append((track, path, track_genres))

    logger.info(f"Rewriting {len(jobs)} files with {max_proc} threads")
    with ThreadPoolExecutor(max_workers=max_proc, thread_name_prefix="rewrite") as executor:
        futures: dict[Future[None], tuple[TrackId, Path]] = {
            executor.submit(rewrite_genre, path, track_genres, temp_suffix): (track, path)
            for track, path, track_genres in jobs
        }
        for future in as_completed(futures):
            track, path = futures[future]
            try:
                future.result()
            except Exception as e:
                result.failed += 1
                logger.error(f"Failed to write genres for track {track} to {path}: {e}", exc_info=e)
                continue
            result.rewritten += 1
    return result
