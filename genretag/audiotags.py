"""
The audiotags module reads the current genre tag of an audio file, abstracting over the tag formats
of the audio containers we support.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import mutagen
import mutagen.flac
import mutagen.id3
import mutagen.mp3
import mutagen.mp4
import mutagen.oggflac
import mutagen.oggopus
import mutagen.oggvorbis

from genretag.common import GenretagExpectedError

logger = logging.getLogger(__name__)


class UnsupportedFiletypeError(GenretagExpectedError):
    pass


def read_genre(p: Path) -> list[str]:
    """Read the genre tag of an audio file on disk, split on commas."""
    try:
        m = mutagen.File(p)  # type: ignore
    except mutagen.MutagenError as e:  # type: ignore
        raise UnsupportedFiletypeError(f"Failed to open file: {e}") from e
    if m is None:
        raise UnsupportedFiletypeError(f"{p} is not a supported audio file")

    if isinstance(m, mutagen.mp3.MP3):
        values = _get_tag(m.tags, ["TCON"])
    elif isinstance(m, mutagen.mp4.MP4):
        values = _get_tag(m.tags, ["\xa9gen"])
    elif isinstance(
        m,
        (
            mutagen.flac.FLAC,
            mutagen.oggflac.OggFLAC,
            mutagen.oggopus.OggOpus,
            mutagen.oggvorbis.OggVorbis,
        ),
    ):
        values = _get_tag(m.tags, ["genre"])
    else:
        raise UnsupportedFiletypeError(f"{p} is not a supported audio file")
    return _split_tag(values)


def _get_tag(t: Any, keys: list[str]) -> list[str]:
    if not t:
        return []
    for k in keys:
        try:
            raw = t[k]
        except KeyError:
            continue
        if isinstance(raw, mutagen.id3.TextFrame):
            return [str(x) for x in raw.text]
        if isinstance(raw, list):
            return [str(x) for x in raw]
        return [str(raw)]
    return []


def _split_tag(values: list[str]) -> list[str]:
    return [g.strip() for v in values for g in v.split(",") if g.strip()]
