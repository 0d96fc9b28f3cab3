"""
The config module provides the config schema and parsing logic.

We take care to provide detailed errors when an invalid configuration is detected, and emit warnings
when unrecognized keys are found.
"""

from __future__ import annotations

import logging
import multiprocessing
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import appdirs
import tomllib

from genretag.common import GenretagExpectedError

XDG_CONFIG_GENRETAG = Path(appdirs.user_config_dir("genretag"))
CONFIG_PATH = XDG_CONFIG_GENRETAG / "config.toml"

# The catalog rejects batched lookups of more than 50 ids.
MAX_PAGE_SIZE = 50

logger = logging.getLogger(__name__)


class ConfigNotFoundError(GenretagExpectedError):
    pass


class ConfigDecodeError(GenretagExpectedError):
    pass


class MissingConfigKeyError(GenretagExpectedError):
    pass


class InvalidConfigValueError(GenretagExpectedError, ValueError):
    pass


@dataclass(frozen=True)
class Config:
    music_source_dir: Path

    # Catalog credentials. Either may be None; that is only an error once we connect to the catalog.
    spotify_client_id: str | None
    spotify_client_secret: str | None

    # The reserved filename of the sidecar manifest in each grouping directory.
    manifest_name: str
    # Maximum number of ids per batched catalog request, and the size of each aggregation chunk.
    page_size: int
    # Each aggregation task sleeps for a random [0, jitter_ms_per_track * num_tracks) milliseconds.
    jitter_ms_per_track: int
    # Maximum parallel threads for the rewrite phase. Defaults to nproc.
    max_proc: int
    temp_suffix: str
    reconcile_unresolved: bool

    @classmethod
    def parse(cls, config_path_override: Path | None = None) -> Config:
        # As we parse, delete consumed values from the data dictionary. If any are left over at the
        # end of the config, warn that unknown config keys were found.
        cfgpath = config_path_override or CONFIG_PATH
        try:
            with cfgpath.open("r") as fp:
                data = tomllib.loads(fp.read())
        except FileNotFoundError as e:
            raise ConfigNotFoundError(f"Configuration file not found ({cfgpath})") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigDecodeError(
                f"Failed to decode configuration file: invalid TOML: {e}"
            ) from e

        try:
            music_source_dir = Path(data["music_source_dir"]).expanduser()
            del data["music_source_dir"]
        except KeyError as e:
            raise MissingConfigKeyError(
                f"Missing key music_source_dir in configuration file ({cfgpath})"
            ) from e
        except (ValueError, TypeError) as e:
            raise InvalidConfigValueError(
                f"Invalid value for music_source_dir in configuration file ({cfgpath}): must be a path"
            ) from e

        try:
            spotify_client_id = data["spotify_client_id"]
            del data["spotify_client_id"]
            if not isinstance(spotify_client_id, str):
                raise ValueError(f"Must be a string: got {type(spotify_client_id)}")
        except KeyError:
            spotify_client_id = os.environ.get("SPOTIPY_CLIENT_ID") or None
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for spotify_client_id in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            spotify_client_secret = data["spotify_client_secret"]
            del data["spotify_client_secret"]
            if not isinstance(spotify_client_secret, str):
                raise ValueError(f"Must be a string: got {type(spotify_client_secret)}")
        except KeyError:
            spotify_client_secret = os.environ.get("SPOTIPY_CLIENT_SECRET") or None
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for spotify_client_secret in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            manifest_name = data["manifest_name"]
            del data["manifest_name"]
            if not isinstance(manifest_name, str) or not manifest_name:
                raise ValueError(f"Must be a non-empty string: got {manifest_name!r}")
            if "/" in manifest_name:
                raise ValueError(f"Must be a bare filename: got {manifest_name!r}")
        except KeyError:
            manifest_name = ".song_ids"
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for manifest_name in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            page_size = data["page_size"]
            del data["page_size"]
            if not isinstance(page_size, int) or isinstance(page_size, bool):
                raise ValueError(f"Must be an integer: got {type(page_size)}")
            if not 1 <= page_size <= MAX_PAGE_SIZE:
                raise ValueError(f"Must be between 1 and {MAX_PAGE_SIZE}: got {page_size}")
        except KeyError:
            page_size = MAX_PAGE_SIZE
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for page_size in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            jitter_ms_per_track = data["jitter_ms_per_track"]
            del data["jitter_ms_per_track"]
            if not isinstance(jitter_ms_per_track, int) or isinstance(jitter_ms_per_track, bool):
                raise ValueError(f"Must be an integer: got {type(jitter_ms_per_track)}")
            if jitter_ms_per_track < 0:
                raise ValueError(f"Must be a non-negative integer: got {jitter_ms_per_track}")
        except KeyError:
            jitter_ms_per_track = 10
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for jitter_ms_per_track in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            max_proc = int(data["max_proc"])
            del data["max_proc"]
            if max_proc <= 0:
                raise ValueError(f"must be a positive integer: got {max_proc}")
        except KeyError:
            max_proc = max(1, multiprocessing.cpu_count())
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for max_proc in configuration file ({cfgpath}): must be a positive integer"
            ) from e

        try:
            temp_suffix = data["temp_suffix"]
            del data["temp_suffix"]
            if not isinstance(temp_suffix, str):
                raise ValueError(f"Must be a string: got {type(temp_suffix)}")
            if len(temp_suffix) < 2 or not temp_suffix.startswith(".") or "/" in temp_suffix:
                raise ValueError(f"Must be an extension such as .tmp: got {temp_suffix!r}")
        except KeyError:
            temp_suffix = ".tmp"
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for temp_suffix in configuration file ({cfgpath}): {e}"
            ) from e

        try:
            reconcile_unresolved = data["reconcile_unresolved"]
            del data["reconcile_unresolved"]
            if not isinstance(reconcile_unresolved, bool):
                raise ValueError(f"Must be a bool: got {type(reconcile_unresolved)}")
        except KeyError:
            reconcile_unresolved = True
        except ValueError as e:
            raise InvalidConfigValueError(
                f"Invalid value for reconcile_unresolved in configuration file ({cfgpath}): {e}"
            ) from e

        if data:
            unrecognized_accessors: list[str] = []
            # Do a DFS over the data keys to assemble the map of unknown keys. State is a tuple of
            # ("accessor", node).
            dfs_state: deque[tuple[str, dict[str, Any]]] = deque([("", data)])
            while dfs_state:
                accessor, node = dfs_state.pop()
                if isinstance(node, dict):
                    for k, v in node.items():
                        child_accessor = k if not accessor else f"{accessor}.{k}"
                        dfs_state.append((child_accessor, v))
                    continue
                unrecognized_accessors.append(accessor)
            logger.warning(
                f"Unrecognized options found in configuration file: {', '.join(unrecognized_accessors)}"
            )

        return Config(
            music_source_dir=music_source_dir,
            spotify_client_id=spotify_client_id,
            spotify_client_secret=spotify_client_secret,
            manifest_name=manifest_name,
            page_size=page_size,
            jitter_ms_per_track=jitter_ms_per_track,
            max_proc=max_proc,
            temp_suffix=temp_suffix,
            reconcile_unresolved=reconcile_unresolved,
        )
