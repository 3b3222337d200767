"""
cardforge services.

Pipeline stages for building the compacted card dataset.
"""

from cardforge.services.catalog_cache import CatalogCache
from cardforge.services.compactor import (
    FORMAT_VERSION,
    MAGIC,
    AssetEntry,
    AssetKind,
    CompactedDataset,
    compact,
    decode_dataset,
    load_dataset,
    write_artwork_files,
    write_dataset,
)
from cardforge.services.fetcher import (
    CatalogFetcher,
    FetchEvent,
    FetchEventKind,
    classify_response,
)
from cardforge.services.image_pipeline import ArtworkCache, ImagePipeline, transcode
from cardforge.services.normalizer import NormalizationResult, normalize
from cardforge.services.orchestrator import DatasetBuilder
from cardforge.services.rate_limiter import TokenBucket

__all__ = [
    "FORMAT_VERSION",
    "MAGIC",
    "ArtworkCache",
    "AssetEntry",
    "AssetKind",
    "CatalogCache",
    "CatalogFetcher",
    "CompactedDataset",
    "DatasetBuilder",
    "FetchEvent",
    "FetchEventKind",
    "ImagePipeline",
    "NormalizationResult",
    "TokenBucket",
    "classify_response",
    "compact",
    "decode_dataset",
    "load_dataset",
    "normalize",
    "transcode",
    "write_artwork_files",
    "write_dataset",
]
