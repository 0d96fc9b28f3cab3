import logging
from collections.abc import Iterator
from fractions import Fraction
from pathlib import Path
from typing import Any

import av
import pytest
from click.testing import CliRunner

from genretag.catalog import (
    Catalog,
    CatalogArtist,
    CatalogRequestError,
    CatalogTrack,
)
from genretag.common import ArtistId, TrackId
from genretag.config import Config

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".song_ids"


@pytest.fixture(autouse=True)
def debug_logging() -> None:
    logging.getLogger().setLevel(logging.DEBUG)
    logging.getLogger("genretag").setLevel(logging.NOTSET)


@pytest.fixture()
def isolated_dir() -> Iterator[Path]:
    with CliRunner().isolated_filesystem():
        yield Path.cwd()


@pytest.fixture()
def config(isolated_dir: Path) -> Config:
    music_source_dir = isolated_dir / "source"
    music_source_dir.mkdir()
    return Config(
        music_source_dir=music_source_dir,
        spotify_client_id="client-id",
        spotify_client_secret="client-secret",
        manifest_name=MANIFEST_NAME,
        page_size=50,
        jitter_ms_per_track=0,
        max_proc=2,
        temp_suffix=".tmp",
        reconcile_unresolved=True,
    )


@pytest.fixture()
def library(config: Config) -> Path:
    """A library with one collection/grouping holding two tracks: id1 -> a.ogg, id2 -> b.ogg."""
    grouping = config.music_source_dir / "Artist" / "Album"
    grouping.mkdir(parents=True)
    write_opus(grouping / "a.ogg", stream_tags={"title": "Track A"})
    write_opus(grouping / "b.ogg", stream_tags={"title": "Track B"})
    write_manifest(grouping, ["id1\t\t\t\ta.ogg", "id2\t\t\t\tb.ogg"])
    return grouping


def write_manifest(grouping: Path, lines: list[str]) -> None:
    (grouping / MANIFEST_NAME).write_text("".join(line + "\n" for line in lines))


def write_opus(
    path: Path,
    *,
    stream_tags: dict[str, str] | None = None,
    num_frames: int = 25,
    codec: str = "libopus",
) -> None:
    """Encode num_frames * 20ms of silence into an Ogg file. Opus unless told otherwise."""
    with av.open(str(path), mode="w", format="ogg") as container:
        stream = container.add_stream(codec, rate=48000)
        if stream_tags:
            stream.metadata.update(stream_tags)
        _encode_silence(container, stream, num_frames)


def write_mkv(
    path: Path,
    *,
    container_tags: dict[str, str],
    num_frames: int = 25,
) -> None:
    """
    Write a Matroska file with container-level tags, an Opus audio stream of num_frames * 20ms of
    silence, and a short blank video stream.
    """
    with av.open(str(path), mode="w", format="matroska") as container:
        container.metadata.update(container_tags)
        audio = container.add_stream("libopus", rate=48000)
        video = container.add_stream("mpeg4", rate=25)
        video.width = 64
        video.height = 64
        video.pix_fmt = "yuv420p"
        _encode_silence(container, audio, num_frames)
        for i in range(num_frames // 2):
            frame = av.VideoFrame(64, 64, "yuv420p")
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
            frame.pts = i
            frame.time_base = Fraction(1, 25)
            for packet in video.encode(frame):
                container.mux(packet)
        for packet in video.encode(None):
            container.mux(packet)


def _encode_silence(container: Any, stream: Any, num_frames: int) -> None:
    for i in range(num_frames):
        frame = av.AudioFrame(format="s16", layout="stereo", samples=960)
        for plane in frame.planes:
            plane.update(bytes(plane.buffer_size))
        frame.sample_rate = 48000
        frame.pts = i * 960
        frame.time_base = Fraction(1, 48000)
        for packet in stream.encode(frame):
            container.mux(packet)
    for packet in stream.encode(None):
        container.mux(packet)


def read_packets(path: Path) -> list[bytes]:
    """The payloads of every audio packet in the file, in order."""
    with av.open(str(path)) as container:
        return [
            bytes(p)
            for p in container.demux(container.streams.audio[0])
            if p.dts is not None
        ]


class FakeCatalog(Catalog):
    """An in-memory catalog. Records every batched request it receives."""

    def __init__(
        self,
        tracks: dict[str, list[str]],
        artists: dict[str, list[str]],
        failing_tracks: set[str] | None = None,
        omit_artists_once: set[str] | None = None,
        error: Exception | None = None,
    ):
        self._tracks = tracks
        self._artists = artists
        self._failing_tracks = failing_tracks or set()
        self._omit_artists_once = set(omit_artists_once or set())
        self._error = error
        self.track_requests: list[list[TrackId]] = []
        self.artist_requests: list[list[ArtistId]] = []

    async def tracks(self, ids: list[TrackId]) -> list[CatalogTrack]:
        self.track_requests.append(ids)
        if self._error is not None:
            raise self._error
        if any(str(i) in self._failing_tracks for i in ids):
            raise CatalogRequestError(f"Catalog request tracks failed for {ids}")
        return [
            CatalogTrack(id=i, artists=[ArtistId(a) for a in self._tracks[str(i)]])
            for i in ids
            if str(i) in self._tracks
        ]

    async def artists(self, ids: list[ArtistId]) -> list[CatalogArtist]:
        self.artist_requests.append(ids)
        rv: list[CatalogArtist] = []
        for i in ids:
            if str(i) in self._omit_artists_once:
                self._omit_artists_once.remove(str(i))
                continue
            if str(i) in self._artists:
                rv.append(CatalogArtist(id=i, genres=self._artists[str(i)]))
        return rv
