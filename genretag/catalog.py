"""
The catalog module wraps the external music catalog (Spotify) behind the two batched lookups the
aggregator needs: track -> artists and artist -> genres.

Lookups are exposed as coroutines. spotipy is a blocking HTTP client, so each request runs in a
worker thread and the awaiting task suspends until it completes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOauthError

from genretag.common import ArtistId, GenretagError, GenretagExpectedError, TrackId

if TYPE_CHECKING:
    from genretag.config import Config

logger = logging.getLogger(__name__)

# The catalog's hard cap on ids per batched request.
MAX_IDS_PER_REQUEST = 50


class CatalogAuthError(GenretagExpectedError):
    pass


class CatalogRequestError(GenretagError):
    pass


class CatalogResponseError(GenretagError):
    pass


@dataclass(frozen=True)
class CatalogTrack:
    id: TrackId
    artists: list[ArtistId]


@dataclass(frozen=True)
class CatalogArtist:
    id: ArtistId
    genres: list[str]


class Catalog:
    """The interface the aggregator consumes. Subclasses implement both lookups."""

    async def tracks(self, ids: list[TrackId]) -> list[CatalogTrack]:
        raise NotImplementedError

    async def artists(self, ids: list[ArtistId]) -> list[CatalogArtist]:
        raise NotImplementedError


class SpotifyCatalog(Catalog):
    def __init__(self, client: spotipy.Spotify):
        self.client = client

    async def tracks(self, ids: list[TrackId]) -> list[CatalogTrack]:
        _check_batch_size(ids)
        if not ids:
            return []
        res = await self._request(self.client.tracks, [str(i) for i in ids])
        return [_parse_track(t) for t in _items(res, "tracks") if t is not None]

    async def artists(self, ids: list[ArtistId]) -> list[CatalogArtist]:
        _check_batch_size(ids)
        if not ids:
            return []
        res = await self._request(self.client.artists, [str(i) for i in ids])
        return [_parse_artist(a) for a in _items(res, "artists") if a is not None]

    async def _request(self, fn: Any, ids: list[str]) -> Any:
        logger.debug(f"Requesting {fn.__name__} for {len(ids)} ids")
        try:
            return await asyncio.to_thread(fn, ids)
        except SpotifyOauthError as e:
            raise CatalogAuthError(f"Catalog rejected our credentials: {e}") from e
        except spotipy.SpotifyException as e:
            raise CatalogRequestError(
                f"Catalog request {fn.__name__} failed with HTTP {e.http_status}: {e.msg}"
            ) from e


def connect_catalog(c: Config) -> SpotifyCatalog:
    """
    Build an authenticated catalog client. We request an access token eagerly so that missing or
    rejected credentials abort the run before any work is done.
    """
    if not c.spotify_client_id or not c.spotify_client_secret:
        raise CatalogAuthError(
            "Catalog credentials not configured: set spotify_client_id and spotify_client_secret "
            "in the configuration file, or SPOTIPY_CLIENT_ID and SPOTIPY_CLIENT_SECRET in the environment"
        )
    auth_manager = SpotifyClientCredentials(
        client_id=c.spotify_client_id,
        client_secret=c.spotify_client_secret,
    )
    try:
        auth_manager.get_access_token(as_dict=False)
    except SpotifyOauthError as e:
        raise CatalogAuthError(f"Failed to authenticate with the catalog: {e}") from e
    return SpotifyCatalog(spotipy.Spotify(auth_manager=auth_manager))


def _check_batch_size(ids: list[Any]) -> None:
    if len(ids) > MAX_IDS_PER_REQUEST:
        raise ValueError(
            f"Batched catalog requests accept at most {MAX_IDS_PER_REQUEST} ids: got {len(ids)}"
        )


def _items(res: Any, key: str) -> list[Any]:
    if not isinstance(res, dict) or not isinstance(res.get(key), list):
        raise CatalogResponseError(f"Catalog response is missing the {key} list: {res!r}")
    items: list[Any] = res[key]
    missing = sum(1 for x in items if x is None)
    if missing:
        logger.warning(f"Catalog returned no {key} data for {missing} of {len(items)} requested ids")
    return items


def _parse_track(data: Any) -> CatalogTrack:
    try:
        return CatalogTrack(
            id=TrackId(str(data["id"])),
            artists=[ArtistId(str(a["id"])) for a in data["artists"] if a.get("id")],
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise CatalogResponseError(f"Malformed track in catalog response: {data!r}") from e


def _parse_artist(data: Any) -> CatalogArtist:
    try:
        genres = data["genres"]
        if not isinstance(genres, list):
            raise TypeError(f"genres must be a list: got {type(genres)}")
        return CatalogArtist(id=ArtistId(str(data["id"])), genres=[str(g) for g in genres])
    except (KeyError, TypeError) as e:
        raise CatalogResponseError(f"Malformed artist in catalog response: {data!r}") from e
