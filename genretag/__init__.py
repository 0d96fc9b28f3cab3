from genretag.aggregator import (
    AggregateResult,
    ArtistGenreCache,
    GenreByTrack,
    aggregate_genres,
    dump_genres,
    finalize_genres,
    redistribute,
)
from genretag.audiotags import UnsupportedFiletypeError, read_genre
from genretag.catalog import (
    Catalog,
    CatalogArtist,
    CatalogAuthError,
    CatalogRequestError,
    CatalogResponseError,
    CatalogTrack,
    SpotifyCatalog,
    connect_catalog,
)
from genretag.common import (
    VERSION,
    ArtistId,
    GenretagError,
    GenretagExpectedError,
    TrackId,
    chunk,
    initialize_logging,
)
from genretag.config import Config
from genretag.indexer import (
    IndexResult,
    LibraryDirectoryError,
    PathIndex,
    SidecarEntry,
    dump_path_index,
    index_library,
    parse_manifest,
)
from genretag.rewriter import RewriteError, RewriteResult, rewrite_genre, rewrite_library

__all__ = [
    # Plumbing
    "initialize_logging",
    "VERSION",
    # Errors
    "GenretagError",
    "GenretagExpectedError",
    "LibraryDirectoryError",
    "CatalogAuthError",
    "CatalogRequestError",
    "CatalogResponseError",
    "RewriteError",
    "UnsupportedFiletypeError",
    # Identifiers
    "TrackId",
    "ArtistId",
    # Utilities
    "chunk",
    # Configuration
    "Config",
    # Indexing
    "IndexResult",
    "PathIndex",
    "SidecarEntry",
    "dump_path_index",
    "index_library",
    "parse_manifest",
    # Catalog
    "Catalog",
    "CatalogArtist",
    "CatalogTrack",
    "SpotifyCatalog",
    "connect_catalog",
    # Aggregation
    "AggregateResult",
    "ArtistGenreCache",
    "GenreByTrack",
    "aggregate_genres",
    "dump_genres",
    "finalize_genres",
    "redistribute",
    # Rewriting
    "RewriteResult",
    "read_genre",
    "rewrite_genre",
    "rewrite_library",
]

initialize_logging(__name__)
