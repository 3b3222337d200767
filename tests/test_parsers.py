import pytest

from cardforge.parsers.ygoprodeck import (
    MalformedResponseError,
    parse_catalog,
    parse_database_version,
    resolve_artwork_url,
)

TEMPLATE = "https://images.test/cards_cropped/{id}.jpg"


class TestParseCatalog:
    def test_returns_data_records(self) -> None:
        records = parse_catalog({"data": [{"id": 1}, {"id": 2}]})

        assert [r["id"] for r in records] == [1, 2]

    def test_drops_non_object_entries(self) -> None:
        records = parse_catalog({"data": [{"id": 1}, "junk", None, 5]})

        assert records == [{"id": 1}]

    @pytest.mark.parametrize("payload", [None, [], "data", {"error": "x"}, {"data": {}}])
    def test_rejects_bad_envelope(self, payload: object) -> None:
        with pytest.raises(MalformedResponseError):
            parse_catalog(payload)


class TestParseDatabaseVersion:
    def test_reads_first_entry(self) -> None:
        payload = [{"database_version": "118.03", "last_update": "2024-06-01 12:00:00"}]

        assert parse_database_version(payload) == "118.03"

    def test_accepts_bare_object(self) -> None:
        assert parse_database_version({"database_version": 42}) == "42"

    @pytest.mark.parametrize("payload", [None, [], [{}], {"last_update": "x"}])
    def test_rejects_missing_version(self, payload: object) -> None:
        with pytest.raises(MalformedResponseError):
            parse_database_version(payload)


class TestResolveArtworkUrl:
    def test_prefers_own_image(self) -> None:
        record = {
            "card_images": [
                {"id": 2, "image_url_cropped": "https://x.test/2.jpg"},
                {"id": 1, "image_url_cropped": "https://x.test/1.jpg"},
            ]
        }

        assert resolve_artwork_url(record, 1, TEMPLATE) == "https://x.test/1.jpg"

    def test_falls_back_to_first_image(self) -> None:
        record = {"card_images": [{"id": 2, "image_url_cropped": "https://x.test/2.jpg"}]}

        assert resolve_artwork_url(record, 1, TEMPLATE) == "https://x.test/2.jpg"

    def test_falls_back_to_template(self) -> None:
        record = {"card_images": [{"id": 1}]}

        assert resolve_artwork_url(record, 1, TEMPLATE) == TEMPLATE.format(id=1)

    @pytest.mark.parametrize("images", [None, [], "x"])
    def test_no_images_means_no_artwork(self, images: object) -> None:
        assert resolve_artwork_url({"card_images": images}, 1, TEMPLATE) is None
