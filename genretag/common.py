"""
The common module is our ugly grab bag of common toys: the identifier types shared by every phase,
the error hierarchy, the chunking primitive, and logging setup.
"""

import logging
import logging.handlers
import math
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import appdirs

with (Path(__file__).parent / ".version").open("r") as fp:
    VERSION = fp.read().strip()

T = TypeVar("T")


class GenretagError(Exception):
    pass


class GenretagExpectedError(GenretagError):
    """These errors are printed without traceback."""

    pass


@dataclass(frozen=True, order=True)
class TrackId:
    """An opaque track identifier from the external catalog."""

    id: str

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True, order=True)
class ArtistId:
    """An opaque artist identifier from the external catalog. Never equal to a TrackId."""

    id: str

    def __str__(self) -> str:
        return self.id


def uniq(xs: list[T]) -> list[T]:
    rv: list[T] = []
    seen: set[T] = set()
    for x in xs:
        if x not in seen:
            rv.append(x)
            seen.add(x)
    return rv


def chunk(xs: list[T], size: int) -> list[list[T]]:
    """
    Partition xs into ceil(len(xs) / size) chunks. Every chunk except the last holds exactly size
    items; the last holds the remainder. An empty input produces no chunks.
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be a positive integer: got {size}")
    num_chunks = math.ceil(len(xs) / size)
    return [xs[i * size : (i + 1) * size] for i in range(num_chunks)]


__logging_initialized: set[str | None] = set()


def initialize_logging(logger_name: str | None = None) -> None:
    if logger_name in __logging_initialized:
        return
    __logging_initialized.add(logger_name)

    logger = logging.getLogger(logger_name)

    # appdirs by default has Unix log to $XDG_CACHE_HOME, but I'd rather write logs to $XDG_STATE_HOME.
    log_home = Path(appdirs.user_state_dir("genretag"))
    if appdirs.system == "darwin":
        log_home = Path(appdirs.user_log_dir("genretag"))

    # Useful for debugging problems inside the rewrite threads, since pytest captures our logging
    # output on its own.
    log_despite_testing = os.environ.get("LOG_TEST", False)

    # Add a logging handler for stderr unless we are testing. Pytest captures logging output on its
    # own, so by default, we do not attach our own.
    if "pytest" not in sys.modules or log_despite_testing:  # pragma: no cover
        log_home.mkdir(parents=True, exist_ok=True)
        log_file = log_home / "genretag.log"

        simple_formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        verbose_formatter = logging.Formatter(
            "[ts=%(asctime)s.%(msecs)03d] [pid=%(process)d] [thread=%(threadName)s] [src=%(name)s:%(lineno)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(simple_formatter if not log_despite_testing else verbose_formatter)
        logger.addHandler(stream_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=20 * 1024 * 1024,
            backupCount=10,
        )
        file_handler.setFormatter(verbose_formatter)
        logger.addHandler(file_handler)
