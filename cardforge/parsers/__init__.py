from cardforge.parsers.ygoprodeck import (
    ARTWORK_URL_TEMPLATE,
    CARD_INFO_URL,
    EXCLUDED_TYPES,
    VERSION_URL,
    MalformedResponseError,
    parse_catalog,
    parse_database_version,
    resolve_artwork_url,
)

__all__ = [
    "ARTWORK_URL_TEMPLATE",
    "CARD_INFO_URL",
    "EXCLUDED_TYPES",
    "VERSION_URL",
    "MalformedResponseError",
    "parse_catalog",
    "parse_database_version",
    "resolve_artwork_url",
]
