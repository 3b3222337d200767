"""
YGOPRODeck API v7 response parsing.

Decodes catalog and version responses into raw records. Only the envelope
is checked here; individual records stay untrusted and are handled by the
normalizer.

API guide: https://ygoprodeck.com/api-guide/
"""

from collections.abc import Mapping
from typing import Any

from cardforge.models.card import CatalogRecord

CARD_INFO_URL = "https://db.ygoprodeck.com/api/v7/cardinfo.php"
VERSION_URL = "https://db.ygoprodeck.com/api/v7/checkDBVer.php"
ARTWORK_URL_TEMPLATE = "https://images.ygoprodeck.com/images/cards_cropped/{id}.jpg"

# Types that are not playable cards and never make it into the dataset
EXCLUDED_TYPES = frozenset({"Token", "Skill Card"})


class MalformedResponseError(ValueError):
    """Raised when a response body does not have the expected envelope."""

    pass


def parse_catalog(payload: Any) -> list[CatalogRecord]:
    """
    Extract card records from a cardinfo.php response body.

    Args:
        payload: Decoded JSON body, expected as {"data": [...]}

    Returns:
        List of raw records. Non-object entries are dropped.

    Raises:
        MalformedResponseError: If the envelope is missing or not a list
    """
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(f"Expected JSON object, got {type(payload).__name__}")

    data = payload.get("data")
    if not isinstance(data, list):
        raise MalformedResponseError("Response has no 'data' list")

    return [record for record in data if isinstance(record, Mapping)]


def parse_database_version(payload: Any) -> str:
    """
    Extract the database version from a checkDBVer.php response body.

    The endpoint answers with a one-element list:
    [{"database_version": "118.03", "last_update": "2024-06-01 12:00:00"}]

    Raises:
        MalformedResponseError: If no version can be found
    """
    entry = payload[0] if isinstance(payload, list) and payload else payload
    if isinstance(entry, Mapping):
        version = entry.get("database_version")
        if version is not None:
            return str(version)
    raise MalformedResponseError("Response has no 'database_version'")


def resolve_artwork_url(record: CatalogRecord, card_id: int, template: str) -> str | None:
    """
    Resolve the cropped artwork URL for a record.

    Prefers the URL the API lists for the card's own image entry, falls back
    to the first listed image, then to the URL template. Returns None if the
    record lists no images at all.
    """
    images = record.get("card_images")
    if not isinstance(images, list) or not images:
        return None

    entries = [image for image in images if isinstance(image, Mapping)]
    own = [image for image in entries if image.get("id") == card_id]
    for image in own + entries:
        url = image.get("image_url_cropped")
        if isinstance(url, str) and url:
            return url

    return template.format(id=card_id)
