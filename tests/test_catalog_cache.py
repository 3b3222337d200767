"""Tests for the versioned catalog cache."""

import json
import os
import time
from pathlib import Path

import httpx
import pytest
import respx
from conftest import CARD_INFO_URL, VERSION_URL

from cardforge.config import Settings
from cardforge.models.failure import CatalogUnavailableError
from cardforge.services.catalog_cache import CatalogCache
from cardforge.services.fetcher import CatalogFetcher
from cardforge.services.rate_limiter import TokenBucket

ONLINE_RECORDS = [{"id": 1, "name": "Online"}]


def version_response(version: str) -> httpx.Response:
    return httpx.Response(200, json=[{"database_version": version}])


def write_cache(path: Path, version: str, records: list[dict], age: float = 0.0) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"version": version, "data": records}), encoding="utf-8")
    if age:
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))


async def load(settings: Settings, cache: CatalogCache, use_cache: bool = True) -> list:
    async with httpx.AsyncClient() as client:
        fetcher = CatalogFetcher.from_settings(
            client, TokenBucket(settings.requests_per_second), settings
        )
        return await cache.load(fetcher, use_cache=use_cache)


class TestCatalogCache:
    @pytest.mark.asyncio
    @respx.mock
    async def test_downloads_when_missing(self, settings: Settings) -> None:
        """Without a local copy the catalog is downloaded and stored."""
        respx.get(VERSION_URL).mock(return_value=version_response("1.0"))
        respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": ONLINE_RECORDS})
        )
        cache = CatalogCache(settings.catalog_cache_path)

        records = await load(settings, cache)

        assert records == ONLINE_RECORDS
        stored = json.loads(settings.catalog_cache_path.read_text(encoding="utf-8"))
        assert stored == {"version": "1.0", "data": ONLINE_RECORDS}

    @pytest.mark.asyncio
    @respx.mock
    async def test_fresh_cache_makes_no_requests(self, settings: Settings) -> None:
        """A cache younger than the check interval is used as-is."""
        write_cache(settings.catalog_cache_path, "1.0", [{"id": 7}])
        cache = CatalogCache(settings.catalog_cache_path, check_interval=3600)

        records = await load(settings, cache)

        assert records == [{"id": 7}]
        assert len(respx.calls) == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_stale_cache_same_version_is_reused(self, settings: Settings) -> None:
        """An unchanged upstream version only costs the version check."""
        write_cache(settings.catalog_cache_path, "1.0", [{"id": 7}], age=7200)
        respx.get(VERSION_URL).mock(return_value=version_response("1.0"))
        catalog = respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": ONLINE_RECORDS})
        )
        cache = CatalogCache(settings.catalog_cache_path, check_interval=3600)

        records = await load(settings, cache)

        assert records == [{"id": 7}]
        assert not catalog.called
        assert time.time() - settings.catalog_cache_path.stat().st_mtime < 60

    @pytest.mark.asyncio
    @respx.mock
    async def test_stale_cache_new_version_downloads(self, settings: Settings) -> None:
        """A changed upstream version triggers a full download."""
        write_cache(settings.catalog_cache_path, "1.0", [{"id": 7}], age=7200)
        respx.get(VERSION_URL).mock(return_value=version_response("2.0"))
        respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": ONLINE_RECORDS})
        )
        cache = CatalogCache(settings.catalog_cache_path, check_interval=3600)

        records = await load(settings, cache)

        assert records == ONLINE_RECORDS
        stored = json.loads(settings.catalog_cache_path.read_text(encoding="utf-8"))
        assert stored["version"] == "2.0"

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_cache_flag_forces_download(self, settings: Settings) -> None:
        """use_cache=False ignores a fresh local copy."""
        write_cache(settings.catalog_cache_path, "1.0", [{"id": 7}])
        respx.get(VERSION_URL).mock(return_value=version_response("1.0"))
        respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": ONLINE_RECORDS})
        )
        cache = CatalogCache(settings.catalog_cache_path, check_interval=3600)

        records = await load(settings, cache, use_cache=False)

        assert records == ONLINE_RECORDS

    @pytest.mark.asyncio
    @respx.mock
    async def test_falls_back_to_stale_copy_when_offline(self, settings: Settings) -> None:
        """If the refresh fails, the stale local copy is still used."""
        write_cache(settings.catalog_cache_path, "1.0", [{"id": 7}], age=7200)
        respx.get(VERSION_URL).mock(return_value=httpx.Response(503))
        cache = CatalogCache(settings.catalog_cache_path, check_interval=3600)

        records = await load(settings, cache)

        assert records == [{"id": 7}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_unavailable_without_local_copy(self, settings: Settings) -> None:
        """Download failure with no local copy is fatal."""
        respx.get(VERSION_URL).mock(return_value=httpx.Response(503))
        cache = CatalogCache(settings.catalog_cache_path)

        with pytest.raises(CatalogUnavailableError) as exc_info:
            await load(settings, cache)

        assert exc_info.value.fatal

    @pytest.mark.asyncio
    @respx.mock
    async def test_corrupt_cache_is_ignored(self, settings: Settings) -> None:
        """An unreadable local copy is treated as missing."""
        settings.catalog_cache_path.parent.mkdir(parents=True)
        settings.catalog_cache_path.write_text("{not json", encoding="utf-8")
        respx.get(VERSION_URL).mock(return_value=version_response("1.0"))
        respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": ONLINE_RECORDS})
        )
        cache = CatalogCache(settings.catalog_cache_path)

        records = await load(settings, cache)

        assert records == ONLINE_RECORDS

    @pytest.mark.asyncio
    @respx.mock
    async def test_unwritable_cache_still_returns_records(self, settings: Settings) -> None:
        """A cache directory that cannot be created costs a re-download, not the run."""
        settings.cache_dir.parent.mkdir(parents=True, exist_ok=True)
        settings.cache_dir.write_bytes(b"not a directory")
        respx.get(VERSION_URL).mock(return_value=version_response("1.0"))
        respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": ONLINE_RECORDS})
        )
        cache = CatalogCache(settings.catalog_cache_path)

        records = await load(settings, cache)

        assert records == ONLINE_RECORDS
        assert settings.cache_dir.read_bytes() == b"not a directory"

    @pytest.mark.asyncio
    @respx.mock
    async def test_failed_check_stamp_is_ignored(
        self, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """If the cache mtime cannot be bumped, the cached records are still used."""
        write_cache(settings.catalog_cache_path, "1.0", [{"id": 2}], age=48 * 60 * 60)
        respx.get(VERSION_URL).mock(return_value=version_response("1.0"))

        def refuse(*args: object, **kwargs: object) -> None:
            raise PermissionError("read-only file system")

        monkeypatch.setattr("cardforge.services.catalog_cache.os.utime", refuse)
        cache = CatalogCache(settings.catalog_cache_path)

        assert await load(settings, cache) == [{"id": 2}]

    def test_unstattable_copy_is_stale(self, tmp_path: Path) -> None:
        """A copy whose mtime cannot be read is due for a version check."""
        assert CatalogCache(tmp_path / "absent.json")._is_stale()
