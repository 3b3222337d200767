"""
Canonical Card Models.

This module defines the boundary between raw catalog records and the
canonical cards written into the compacted dataset.

INVARIANTS:
- CatalogRecord is UNTRUSTED raw API data
- Card is the canonical, deduplicated form; ids are unique per catalog
- A Card without artwork is still valid, it is only flagged
- All models are frozen (immutable after construction)
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cardforge.models.failure import Diagnostic

# Raw element of the API's "data" array. Field set is not under our control.
CatalogRecord = Mapping[str, Any]

# Stat sentinels. None means "not applicable / not present".
STAT_VARIABLE = -1  # card prints "?"
STAT_UNKNOWN = -2  # present but unparsable, or required and missing

UNKNOWN_TEXT = ""


class CardCategory(str, Enum):
    """Top-level card category."""

    MONSTER = "monster"
    SPELL = "spell"
    TRAP = "trap"
    UNKNOWN = "unknown"


class CardLimit(str, Enum):
    """TCG banlist status."""

    UNLIMITED = "unlimited"
    SEMI_LIMITED = "semi_limited"
    LIMITED = "limited"
    BANNED = "banned"


@dataclass(frozen=True, slots=True)
class SetMembership:
    """A printing of a card in a set."""

    set_code: str
    rarity: str


@dataclass(frozen=True, slots=True)
class Card:
    """
    Canonical card entity.

    Attributes:
        id: Canonical identifier (card password), unique across the catalog
        name: Card name, UNKNOWN_TEXT if the source had none
        category: Monster, spell, trap, or unknown
        card_type: Upstream type line (e.g., "XYZ Monster", "Spell Card")
        race: Monster race, or the spell/trap subtype (e.g., "Quick-Play")
        attribute: Monster attribute (e.g., "DARK")
        archetype: Archetype name, if any
        description: Effect or flavor text
        atk: Attack stat, STAT_VARIABLE for "?", STAT_UNKNOWN if unparsable
        def_: Defense stat, same encoding as atk
        level: Level or rank, same encoding as atk
        link_value: Link rating for link monsters
        link_markers: Link arrow directions (e.g., "Top", "Bottom-Left")
        pendulum_scale: Pendulum scale for pendulum monsters
        limit: TCG banlist status
        sets: Set memberships in first-observed order
        alternate_ids: Ids of alternate artworks
        artwork_url: Artwork source, None when no artwork could be resolved
        diagnostics: Normalizer notes, not part of equality or the dataset
    """

    id: int
    name: str
    category: CardCategory
    card_type: str = UNKNOWN_TEXT
    race: str | None = None
    attribute: str | None = None
    archetype: str | None = None
    description: str = UNKNOWN_TEXT
    atk: int | None = None
    def_: int | None = None
    level: int | None = None
    link_value: int | None = None
    link_markers: tuple[str, ...] = ()
    pendulum_scale: int | None = None
    limit: CardLimit = CardLimit.UNLIMITED
    sets: tuple[SetMembership, ...] = ()
    alternate_ids: tuple[int, ...] = ()
    artwork_url: str | None = None
    diagnostics: tuple[Diagnostic, ...] = field(default=(), compare=False)

    @property
    def has_artwork(self) -> bool:
        return self.artwork_url is not None

    @property
    def is_link_monster(self) -> bool:
        return self.category is CardCategory.MONSTER and "Link" in self.card_type


@dataclass(frozen=True, slots=True)
class ArtworkAsset:
    """
    A transcoded artwork image.

    Attributes:
        card_id: Card this artwork belongs to
        cache_key: sha256 of the source URL, names the cache file
        content_hash: sha256 of the transcoded bytes
        source_format: Format of the downloaded image (e.g., "JPEG")
        target_format: Format of data (e.g., "WEBP")
        data: Transcoded image bytes
    """

    card_id: int
    cache_key: str
    content_hash: str
    source_format: str
    target_format: str
    data: bytes = field(repr=False)


@dataclass(frozen=True, slots=True)
class SkippedArtwork:
    """Artwork that could not be produced for a card."""

    card_id: int
    reason: str
