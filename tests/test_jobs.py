"""Tests for the command-line jobs."""

import json
from pathlib import Path

import httpx
import pytest
import respx
from conftest import ARTWORK_URL_TEMPLATE, CARD_INFO_URL, VERSION_URL

from cardforge.config import Settings
from cardforge.jobs import build_dataset, inspect_dataset
from cardforge.models.card import Card, CardCategory
from cardforge.services.compactor import compact, write_dataset


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point environment settings at mocked URLs and tmp_path."""
    monkeypatch.setenv("CARDFORGE_CATALOG_URL", CARD_INFO_URL)
    monkeypatch.setenv("CARDFORGE_VERSION_URL", VERSION_URL)
    monkeypatch.setenv("CARDFORGE_ARTWORK_URL_TEMPLATE", ARTWORK_URL_TEMPLATE)
    monkeypatch.setenv("CARDFORGE_REQUESTS_PER_SECOND", "1000")
    monkeypatch.setenv("CARDFORGE_MAX_ATTEMPTS", "2")
    monkeypatch.setenv("CARDFORGE_BACKOFF_BASE", "0")
    monkeypatch.setenv("CARDFORGE_BACKOFF_MAX", "0")
    return tmp_path


class TestSettingsFromArgs:
    def test_flags_override_settings(self, tmp_path: Path) -> None:
        """Command-line flags replace the matching settings fields."""
        args = build_dataset.build_parser().parse_args(
            [
                "--output",
                str(tmp_path / "out.bin"),
                "--cache-dir",
                str(tmp_path / "cache"),
                "--concurrency",
                "3",
                "--rate",
                "2.5",
                "--embed-artwork",
                "--no-progress",
            ]
        )

        settings = build_dataset.settings_from_args(args, Settings())

        assert settings.output_path == tmp_path / "out.bin"
        assert settings.cache_dir == tmp_path / "cache"
        assert settings.max_concurrency == 3
        assert settings.requests_per_second == 2.5
        assert settings.artwork_mode == "embed"
        assert settings.show_progress is False

    def test_defaults_are_kept(self) -> None:
        """Without flags, settings are unchanged."""
        args = build_dataset.build_parser().parse_args([])
        base = Settings()

        settings = build_dataset.settings_from_args(args, base)

        assert settings == base


class TestBuildDatasetMain:
    @respx.mock
    def test_success_exits_zero(
        self,
        cli_env: Path,
        sample_records: list[dict],
        jpeg_bytes: bytes,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A successful run exits 0, writes the dataset and the JSON report."""
        respx.get(VERSION_URL).mock(
            return_value=httpx.Response(200, json=[{"database_version": "1"}])
        )
        respx.get(CARD_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": sample_records})
        )
        respx.get(url__startswith="https://images.test/").mock(
            return_value=httpx.Response(200, content=jpeg_bytes)
        )
        output = cli_env / "dist" / "cards.bin"
        report_path = cli_env / "report.json"

        code = build_dataset.main(
            [
                "--output",
                str(output),
                "--cache-dir",
                str(cli_env / "cache"),
                "--report",
                str(report_path),
                "--no-progress",
            ]
        )

        assert code == 0
        assert output.exists()
        report = json.loads(report_path.read_text(encoding="utf-8"))
        assert report["outcome"] == "success"
        assert report["cards_processed"] == 4
        assert "Dataset written" in capsys.readouterr().err

    @respx.mock
    def test_failure_exits_one(
        self, cli_env: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """A failed run exits 1 and writes nothing."""
        respx.get(VERSION_URL).mock(return_value=httpx.Response(503))
        output = cli_env / "dist" / "cards.bin"

        code = build_dataset.main(
            ["--output", str(output), "--cache-dir", str(cli_env / "cache"), "--no-progress"]
        )

        assert code == 1
        assert not output.exists()
        assert "catalog_unavailable" in capsys.readouterr().err


class TestInspectDatasetMain:
    def test_valid_dataset(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """A valid dataset exits 0 and prints its summary."""
        path = tmp_path / "cards.bin"
        card = Card(id=1, name="Pot of Greed", category=CardCategory.SPELL)
        write_dataset(path, compact([card], {}))

        code = inspect_dataset.main([str(path)])

        assert code == 0
        err = capsys.readouterr().err
        assert "Cards: 1" in err
        assert "spell=1" in err

    def test_corrupt_dataset(self, tmp_path: Path) -> None:
        """A corrupt dataset exits 1."""
        path = tmp_path / "cards.bin"
        path.write_bytes(b"garbage that is long enough to hold a header")

        assert inspect_dataset.main([str(path)]) == 1

    def test_missing_dataset(self, tmp_path: Path) -> None:
        """A missing file exits 1."""
        assert inspect_dataset.main([str(tmp_path / "absent.bin")]) == 1
