"""
Catalog cache service.

Keeps a local copy of the raw catalog tagged with the upstream database
version, so reruns only download the ~100MB catalog when it changed.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any

from cardforge.models.card import CatalogRecord
from cardforge.models.failure import (
    CatalogUnavailableError,
    PermanentFetchError,
    TransientFetchError,
)
from cardforge.services.fetcher import CatalogFetcher

logger = logging.getLogger(__name__)


class CatalogCache:
    """
    Local copy of the catalog at `path`.

    The file holds {"version": "...", "data": [...]}. Its mtime marks the
    last time the upstream version was checked.
    """

    def __init__(self, path: Path, check_interval: float = 24 * 60 * 60) -> None:
        self.path = path
        self.check_interval = check_interval

    def _read(self) -> tuple[str, list[CatalogRecord]] | None:
        try:
            with open(self.path, encoding="utf-8") as f:
                content: Any = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable catalog cache %s: %s", self.path, e)
            return None

        if not isinstance(content, dict) or not isinstance(content.get("data"), list):
            logger.warning("Ignoring malformed catalog cache %s", self.path)
            return None
        return str(content.get("version", "")), content["data"]

    def _write(self, version: str, records: list[CatalogRecord]) -> None:
        """Store the catalog; a failed write only costs a re-download next run."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".catalog-", suffix=".tmp"
            )
        except OSError as e:
            logger.warning("Could not cache catalog at %s: %s", self.path, e)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"version": version, "data": [dict(r) for r in records]}, f)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            logger.warning("Could not cache catalog at %s: %s", self.path, e)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _is_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except OSError:
            return True
        return age > self.check_interval

    def _touch(self) -> None:
        try:
            os.utime(self.path)
        except OSError as e:
            logger.warning("Could not mark %s as checked: %s", self.path, e)

    async def _download(self, fetcher: CatalogFetcher, version: str | None) -> list[CatalogRecord]:
        if version is None:
            version = await fetcher.fetch_database_version()
        records = await fetcher.fetch_catalog()
        self._write(version, records)
        logger.info("Cached catalog version %s at %s", version, self.path)
        return records

    async def load(self, fetcher: CatalogFetcher, use_cache: bool = True) -> list[CatalogRecord]:
        """
        Return catalog records, downloading only when needed.

        Args:
            fetcher: Fetcher used for version checks and downloads
            use_cache: If False, always download

        Returns:
            Raw catalog records.

        Raises:
            CatalogUnavailableError: If download fails and no usable local copy exists
            FatalError: Authentication or empty catalog failures propagate as-is
        """
        cached = self._read() if use_cache else None

        try:
            if cached is None:
                return await self._download(fetcher, None)

            local_version, records = cached
            if not self._is_stale():
                logger.info("Using cached catalog version %s", local_version)
                return records

            online_version = await fetcher.fetch_database_version()
            if online_version == local_version:
                self._touch()
                logger.info("Catalog version %s unchanged, using cache", local_version)
                return records

            logger.info("Catalog version changed: %s -> %s", local_version, online_version)
            return await self._download(fetcher, online_version)

        except (TransientFetchError, PermanentFetchError) as e:
            if cached is not None:
                logger.warning("Catalog refresh failed, falling back to cached copy: %s", e)
                return cached[1]
            raise CatalogUnavailableError(e) from e
