"""
Artwork Image Pipeline.

Downloads each card's artwork once, crops it square, shrinks it and
re-encodes it as WebP. Results are cached on disk keyed by the hash of the
source URL, so a rerun against an unchanged cache issues no requests.

INVARIANTS:
1. A cache hit does no network and no decode work
2. A decode failure flags the card, it never aborts the run
3. Cache writes are atomic renames; concurrent writers of one key are harmless
4. An unusable cache directory degrades to refetching, it never aborts the run
5. Only fatal fetch errors propagate out of process()
"""

import asyncio
import hashlib
import io
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

from PIL import Image, UnidentifiedImageError

from cardforge.models.card import ArtworkAsset, Card, SkippedArtwork
from cardforge.models.failure import (
    ArtworkDecodeError,
    PermanentFetchError,
    TransientFetchError,
)
from cardforge.services.fetcher import CatalogFetcher

logger = logging.getLogger(__name__)

TARGET_FORMAT = "WEBP"
CACHE_SUFFIX = ".webp"

# Formats named by URL suffix, used to describe cache hits without decoding
SUFFIX_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
    ".gif": "GIF",
}


def cache_key(url: str) -> str:
    """Content hash of a source URL, used as the cache file name."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def format_from_url(url: str) -> str:
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    return SUFFIX_FORMATS.get(suffix, "UNKNOWN")


def make_square(image: Image.Image) -> Image.Image:
    """
    Crop to a square of the shorter side.

    Wide artworks are centered horizontally; tall ones keep the top edge,
    which is where the art sits on full card scans.
    """
    size = min(image.width, image.height)
    left = (image.width - size) // 2
    return image.crop((left, 0, left + size, size))


def transcode(data: bytes, size: int, quality: int, url: str = "") -> tuple[bytes, str]:
    """
    Decode image bytes and re-encode them as a small square WebP.

    Runs synchronously; callers on the event loop should use a thread.

    Returns:
        (webp_bytes, source_format)

    Raises:
        ArtworkDecodeError: If the bytes are not a decodable image
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            source_format = image.format or "UNKNOWN"
            image.load()
            square = make_square(image.convert("RGB"))
            resized = square.resize((size, size), Image.Resampling.LANCZOS)

        output = io.BytesIO()
        resized.save(output, format=TARGET_FORMAT, quality=quality, method=6)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ArtworkDecodeError(url, str(e)) from e

    return output.getvalue(), source_format


class ArtworkCache:
    """
    Directory of transcoded artwork, one file per source URL hash.

    Safe to delete entirely; the next run refetches everything.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}{CACHE_SUFFIX}"

    def get(self, key: str) -> bytes | None:
        """Cached bytes for `key`, or None; an unreadable cache counts as a miss."""
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("ARTWORK_CACHE_READ_FAILED", extra={"path": str(path), "error": str(e)})
            return None

    def put(self, key: str, data: bytes) -> bool:
        """
        Store `data` under `key`.

        Returns:
            False if the cache directory is unusable; the artwork is still
            valid, it just gets fetched again next run
        """
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}-", suffix=".tmp")
        except OSError as e:
            logger.warning(
                "ARTWORK_CACHE_WRITE_FAILED",
                extra={"path": str(self.directory), "error": str(e)},
            )
            return False

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, self.path_for(key))
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            logger.warning(
                "ARTWORK_CACHE_WRITE_FAILED",
                extra={"path": str(self.path_for(key)), "error": str(e)},
            )
            return False
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return True


class ImagePipeline:
    """Turns a card's artwork reference into an ArtworkAsset."""

    def __init__(
        self,
        fetcher: CatalogFetcher,
        cache: ArtworkCache,
        *,
        size: int = 96,
        quality: int = 80,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._size = size
        self._quality = quality
        self.cache_hits = 0
        self.downloads = 0

    def _asset(self, card: Card, key: str, data: bytes, source_format: str) -> ArtworkAsset:
        return ArtworkAsset(
            card_id=card.id,
            cache_key=key,
            content_hash=content_hash(data),
            source_format=source_format,
            target_format=TARGET_FORMAT,
            data=data,
        )

    async def process(self, card: Card) -> ArtworkAsset | SkippedArtwork:
        """
        Produce the transcoded artwork for one card.

        Args:
            card: Canonical card with its artwork reference

        Returns:
            ArtworkAsset, or SkippedArtwork with the reason it was skipped

        Raises:
            FatalError: Authentication failures from the fetcher propagate
        """
        url = card.artwork_url
        if url is None:
            return SkippedArtwork(card.id, "no artwork reference")

        key = cache_key(url)
        cached = await asyncio.to_thread(self._cache.get, key)
        if cached is not None:
            self.cache_hits += 1
            return self._asset(card, key, cached, format_from_url(url))

        try:
            raw = await self._fetcher.fetch_asset(url)
        except (TransientFetchError, PermanentFetchError) as e:
            reason = f"artwork download failed: {e.detail or e.message}"
            logger.warning("ARTWORK_SKIPPED", extra={"card_id": card.id, "reason": reason})
            return SkippedArtwork(card.id, reason)

        self.downloads += 1
        try:
            data, source_format = await asyncio.to_thread(
                transcode, raw, self._size, self._quality, url
            )
        except ArtworkDecodeError as e:
            reason = f"artwork unavailable: {e.detail}"
            logger.warning("ARTWORK_SKIPPED", extra={"card_id": card.id, "reason": reason})
            return SkippedArtwork(card.id, reason)

        await asyncio.to_thread(self._cache.put, key, data)
        return self._asset(card, key, data, source_format)
